"""
Assembled feature table and read-only partition views.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence, Union

import numpy as np
import pandas as pd

from ..dataio.config import SUCCESS_LABEL
from ..dataio.data_structures import SchemaError, VocabularyError
from ..features import FeatureSchema, FeatureVector

logger = logging.getLogger(__name__)

LABEL_COLUMN = "feedback"
SESSION_COLUMN = "session_id"


def _readonly(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


class Dataset:
    """
    Ordered sequence of FeatureVectors from all sessions.

    Rows keep the order they were given in (session order, then trial
    order). The underlying arrays are read-only.
    """

    def __init__(self, schema: FeatureSchema, vectors: Sequence[FeatureVector]):
        self._schema = schema
        self._vectors = tuple(vectors)

        fingerprint = schema.vocabulary.fingerprint
        for v in self._vectors:
            if v.vocabulary_fingerprint != fingerprint:
                raise VocabularyError(
                    f"Feature vector was built against vocabulary {v.vocabulary_fingerprint}, "
                    f"not the current {fingerprint}; recompute it",
                    session_id=v.session_id, trial_idx=v.trial_idx,
                )
            if len(v) != len(schema):
                raise SchemaError(
                    f"Feature vector has {len(v)} values; schema expects {len(schema)}",
                    session_id=v.session_id, trial_idx=v.trial_idx,
                )

        if self._vectors:
            X = np.vstack([v.values for v in self._vectors])
        else:
            X = np.empty((0, len(schema)), dtype=float)
        self._X = _readonly(X)
        self._labels = _readonly(np.array([v.feedback for v in self._vectors], dtype=object))
        self._session_ids = _readonly(np.array([v.session_id for v in self._vectors], dtype=object))
        self._trial_indices = _readonly(np.array([v.trial_idx for v in self._vectors], dtype=int))

    def __len__(self) -> int:
        return len(self._vectors)

    @property
    def schema(self) -> FeatureSchema:
        return self._schema

    @property
    def feature_names(self) -> List[str]:
        return list(self._schema.columns)

    @property
    def n_features(self) -> int:
        return len(self._schema)

    @property
    def vectors(self) -> tuple:
        return self._vectors

    @property
    def X(self) -> np.ndarray:
        return self._X

    @property
    def labels(self) -> np.ndarray:
        return self._labels

    @property
    def session_ids(self) -> np.ndarray:
        return self._session_ids

    @property
    def trial_indices(self) -> np.ndarray:
        return self._trial_indices

    def class_counts(self) -> Dict[str, int]:
        values, counts = np.unique(self._labels.astype(str), return_counts=True)
        return {str(v): int(c) for v, c in zip(values, counts)}

    def success_rate(self) -> float:
        if len(self) == 0:
            return float('nan')
        return float(np.mean(self._labels == SUCCESS_LABEL))

    def view(self, indices: Sequence[int], name: str) -> "DatasetView":
        return DatasetView(self, indices, name)

    def to_dataframe(self) -> pd.DataFrame:
        """Feature table with columns [features..., feedback, session_id]."""
        df = pd.DataFrame(self._X, columns=self.feature_names)
        df[LABEL_COLUMN] = self._labels
        df[SESSION_COLUMN] = self._session_ids
        return df

    def save_csv(self, filepath: Union[str, Path]) -> None:
        """Write the feature table as CSV."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        self.to_dataframe().to_csv(filepath, index=False)
        logger.info(f"Feature table ({len(self)} rows x {self.n_features} features) saved to {filepath}")


class DatasetView:
    """Read-only subset of a Dataset selected by row indices."""

    def __init__(self, dataset: Dataset, indices: Sequence[int], name: str):
        self.dataset = dataset
        self.name = name
        self._indices = _readonly(np.sort(np.asarray(indices, dtype=int)))

    def __len__(self) -> int:
        return len(self._indices)

    @property
    def indices(self) -> np.ndarray:
        return self._indices

    @property
    def feature_names(self) -> List[str]:
        return self.dataset.feature_names

    @property
    def X(self) -> np.ndarray:
        return _readonly(self.dataset.X[self._indices])

    @property
    def labels(self) -> np.ndarray:
        return _readonly(self.dataset.labels[self._indices])

    @property
    def session_ids(self) -> np.ndarray:
        return _readonly(self.dataset.session_ids[self._indices])

    def class_counts(self) -> Dict[str, int]:
        values, counts = np.unique(self.labels.astype(str), return_counts=True)
        return {str(v): int(c) for v, c in zip(values, counts)}

    def success_rate(self) -> float:
        if len(self) == 0:
            return float('nan')
        return float(np.mean(self.labels == SUCCESS_LABEL))

    def to_dataframe(self) -> pd.DataFrame:
        return self.dataset.to_dataframe().iloc[self._indices].reset_index(drop=True)
