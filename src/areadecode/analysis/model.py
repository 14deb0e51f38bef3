"""
Trial-outcome classifier: fitting, prediction and held-out evaluation.

A bagged-tree ensemble (random forest) is fitted on the Training
partition's feature columns only. The session identifier travels with
every row for inspection but never enters the predictor matrix.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import joblib
import numpy as np
from sklearn.ensemble import RandomForestClassifier

from ..assembly.split import check_stratifiable
from ..assembly.table import Dataset, DatasetView
from ..dataio.config import EXPERIMENT_CONFIG, MODEL_CONFIG, ModelConfig
from ..dataio.data_structures import SplitError
from ..features import FeatureVector
from .metrics import (
    accuracy_from_confusion, importance_by_block, outcome_confusion_matrix,
    per_class_recall, rank_importances,
)

logger = logging.getLogger(__name__)

Partition = Union[Dataset, DatasetView]


class TrainedModel:
    """Fitted ensemble plus the feature layout it was trained on. Immutable after fit."""

    def __init__(self, estimator: RandomForestClassifier, feature_names: Sequence[str],
                 vocabulary_fingerprint: str, n_training: int):
        self._estimator = estimator
        self._feature_names = tuple(feature_names)
        self._importances = {
            name: float(score) for name, score in zip(self._feature_names, estimator.feature_importances_)
        }
        self.vocabulary_fingerprint = vocabulary_fingerprint
        self.n_training = n_training

    @property
    def feature_names(self) -> Tuple[str, ...]:
        return self._feature_names

    @property
    def classes(self) -> List[str]:
        return [str(c) for c in self._estimator.classes_]

    def _as_row(self, feature_row: Union[Sequence[float], Mapping[str, float], FeatureVector]) -> np.ndarray:
        if isinstance(feature_row, FeatureVector):
            if feature_row.vocabulary_fingerprint != self.vocabulary_fingerprint:
                raise ValueError(
                    f"Feature vector was built against vocabulary {feature_row.vocabulary_fingerprint}; "
                    f"the model expects {self.vocabulary_fingerprint}"
                )
            row = feature_row.values
        elif isinstance(feature_row, Mapping):
            missing = [n for n in self._feature_names if n not in feature_row]
            if missing:
                raise KeyError(f"Feature row is missing columns: {missing[:5]}")
            row = [feature_row[n] for n in self._feature_names]
        else:
            row = feature_row
        row = np.asarray(row, dtype=float).reshape(1, -1)
        if row.shape[1] != len(self._feature_names):
            raise ValueError(f"Feature row has {row.shape[1]} values; the model expects {len(self._feature_names)}")
        return row

    def predict(self, feature_row: Union[Sequence[float], Mapping[str, float], FeatureVector]) -> str:
        """Predict "success" or "failure" for one feature row."""
        return str(self._estimator.predict(self._as_row(feature_row))[0])

    def predict_many(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=float)
        if X.ndim != 2 or X.shape[1] != len(self._feature_names):
            raise ValueError(f"Expected an (n, {len(self._feature_names)}) matrix, got shape {X.shape}")
        return self._estimator.predict(X).astype(str)

    def feature_importance(self) -> Dict[str, float]:
        """Impurity-decrease importance per feature name (non-negative, sums to 1)."""
        return dict(self._importances)

    def ranked_importance(self) -> List[Tuple[str, float]]:
        return rank_importances(list(self._importances), list(self._importances.values()))

    def save(self, filepath: Union[str, Path]) -> None:
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(self, filepath)
        logger.info(f"Trained model saved to {filepath}")

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> "TrainedModel":
        model = joblib.load(Path(filepath))
        if not isinstance(model, cls):
            raise TypeError(f"{filepath} does not contain a {cls.__name__}")
        return model


class ModelTrainer:
    """Fits the random-forest classifier on a Training partition."""

    def __init__(self, config: Optional[ModelConfig] = None):
        self.config = config or MODEL_CONFIG

    def build_estimator(self) -> RandomForestClassifier:
        return RandomForestClassifier(
            n_estimators=self.config.n_estimators,
            max_features=self.config.max_features,
            bootstrap=self.config.bootstrap,
            class_weight=self.config.class_weight,
            random_state=self.config.random_state,
            n_jobs=self.config.n_jobs,
        )

    def fit(self, training: Partition) -> TrainedModel:
        """
        Fit on the partition's feature columns to predict feedback.

        Raises:
            SplitError: the partition has fewer than 2 trials or a single class.
        """
        labels = np.asarray(training.labels).astype(str)
        try:
            check_stratifiable(labels)
        except SplitError as e:
            logger.error(f"Refusing to train: {e}")
            raise

        X = training.X
        logger.info(f"--- Fitting random forest: {X.shape[0]} trials x {X.shape[1]} features, "
                    f"{self.config.n_estimators} trees, class_weight={self.config.class_weight} ---")
        estimator = self.build_estimator()
        estimator.fit(X, labels)

        dataset = training.dataset if isinstance(training, DatasetView) else training
        model = TrainedModel(
            estimator=estimator,
            feature_names=training.feature_names,
            vocabulary_fingerprint=dataset.schema.vocabulary.fingerprint,
            n_training=len(labels),
        )
        logger.info(f"--- Fit complete; top feature: {model.ranked_importance()[0][0]} ---")
        return model


@dataclass
class EvaluationReport:
    """Held-out performance of a TrainedModel."""
    accuracy: float
    confusion_matrix: np.ndarray
    labels: List[str]
    recall: Dict[str, float]
    ranked_importances: List[Tuple[str, float]]
    n_training: int
    n_validation: int
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accuracy': self.accuracy,
            'labels': list(self.labels),
            'confusion_matrix': self.confusion_matrix.astype(int).tolist(),
            'recall': {k: (None if np.isnan(v) else v) for k, v in self.recall.items()},
            'ranked_importances': [[name, score] for name, score in self.ranked_importances],
            'n_training': self.n_training,
            'n_validation': self.n_validation,
            'metrics': self.metrics,
        }

    def save_json(self, filepath: Union[str, Path]) -> None:
        """Save the report as human-readable JSON."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=4)
        logger.info(f"Evaluation report saved to {filepath}")


class ModelEvaluator:
    """Scores a TrainedModel on a Validation partition."""

    def __init__(self, labels: Optional[Sequence[str]] = None):
        self.labels = list(labels or EXPERIMENT_CONFIG.class_labels)

    def evaluate(self, model: TrainedModel, validation: Partition) -> EvaluationReport:
        if len(validation) == 0:
            raise SplitError("Cannot evaluate on an empty validation partition")
        logger.info(f"--- Evaluating on {len(validation)} validation trials ---")

        y_true = np.asarray(validation.labels).astype(str)
        y_pred = model.predict_many(validation.X)
        cm = outcome_confusion_matrix(y_true, y_pred, self.labels)
        accuracy = accuracy_from_confusion(cm)
        recall = per_class_recall(cm, self.labels)

        report = EvaluationReport(
            accuracy=accuracy,
            confusion_matrix=cm,
            labels=self.labels,
            recall=recall,
            ranked_importances=model.ranked_importance(),
            n_training=model.n_training,
            n_validation=len(y_true),
            metrics={
                'importance_by_block': importance_by_block(model.feature_importance()),
                'validation_success_rate': float(np.mean(y_true == self.labels[0])),
            },
        )
        logger.info(f"Validation accuracy {accuracy:.3f}; recall "
                    + ", ".join(f"{k}={v:.3f}" for k, v in recall.items()))
        return report


def train_and_evaluate(training: Partition, validation: Partition,
                       config: Optional[ModelConfig] = None) -> Tuple[TrainedModel, EvaluationReport]:
    """Fit on Training and score on Validation."""
    model = ModelTrainer(config).fit(training)
    return model, ModelEvaluator().evaluate(model, validation)
