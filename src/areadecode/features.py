# src/areadecode/features.py
"""
Deterministic, reusable feature calculators for trial spike matrices.

Every session records its own population of neurons, so nothing is
aligned at the neuron level. Each trial is instead summarised per brain
area and projected onto the global AreaVocabulary, which gives a
fixed-width vector whatever areas the session happened to record:

    [contrast_left, contrast_right,
     total_spikes__<area> ..., early_rate__<area> ..., late_rate__<area> ...]

Functions here take numpy arrays and the frozen vocabulary, return numpy
arrays or small records, and **never** write to disk.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from .dataio.config import FEATURE_CONFIG
from .dataio.data_structures import (
    DegenerateWindowWarning, SchemaError, Session, Trial,
)
from .vocabulary import AreaVocabulary

logger = logging.getLogger(__name__)

STIMULUS_COLUMNS = ("contrast_left", "contrast_right")
AREA_BLOCKS = ("total_spikes", "early_rate", "late_rate")
INDICATOR_BLOCK = "recorded"
MISSING_AREA_POLICIES = ("zero", "nan", "indicator")


# ─────────────────────────────────────────────────────────────────────────────
# Per-neuron window statistics
# ─────────────────────────────────────────────────────────────────────────────

def split_time_bins(n_time_bins: int) -> Tuple[slice, slice]:
    """
    Split the time axis into early and late halves.

    The early half is the first ⌊T/2⌋ bins and the late half holds the
    rest, so an odd extra bin lands in the late half.
    """
    mid = n_time_bins // 2
    return slice(0, mid), slice(mid, n_time_bins)


def _window_mean(spikes: np.ndarray, window: slice, name: str,
                 session_id: Optional[str], trial_idx: Optional[int]) -> np.ndarray:
    """Per-neuron mean spikes per bin inside a window; 0 for an empty window."""
    width = len(range(*window.indices(spikes.shape[1])))
    if width == 0:
        warnings.warn(
            f"[session={session_id}, trial={trial_idx}] {name} window is empty "
            f"({spikes.shape[1]} time bins); its mean is set to 0",
            DegenerateWindowWarning,
            stacklevel=3,
        )
        return np.zeros(spikes.shape[0], dtype=float)
    return spikes[:, window].mean(axis=1)


@dataclass(frozen=True)
class NeuronWindowStats:
    """Per-neuron activity summaries for one trial; each array has shape (n_neurons,)."""
    total_spikes: np.ndarray
    mean_rate: np.ndarray
    early_rate: np.ndarray
    late_rate: np.ndarray


def neuron_window_stats(spikes: np.ndarray, session_id: Optional[str] = None,
                        trial_idx: Optional[int] = None) -> NeuronWindowStats:
    """
    Computes total spike count and mean firing rate per neuron, overall and
    within the early/late halves of the trial window.

    Args:
        spikes: (N_neurons, T_bins) spike-count matrix.
        session_id, trial_idx: Context for degenerate-window warnings.

    Returns:
        NeuronWindowStats with rates in spikes per time bin.
    """
    spikes = np.asarray(spikes, dtype=float)
    early, late = split_time_bins(spikes.shape[1])
    return NeuronWindowStats(
        total_spikes=spikes.sum(axis=1),
        mean_rate=_window_mean(spikes, slice(0, spikes.shape[1]), "full", session_id, trial_idx),
        early_rate=_window_mean(spikes, early, "early", session_id, trial_idx),
        late_rate=_window_mean(spikes, late, "late", session_id, trial_idx),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Schema, grouping and vectors
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FeatureSchema:
    """
    Fixed column layout derived from a frozen vocabulary.

    The name→index map is built once here and shared by every vector.
    """
    vocabulary: AreaVocabulary
    missing_area_policy: str = "zero"
    columns: Tuple[str, ...] = field(init=False)
    _index: Dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.missing_area_policy not in MISSING_AREA_POLICIES:
            raise ValueError(f"Unknown missing-area policy: {self.missing_area_policy}")
        blocks = AREA_BLOCKS + ((INDICATOR_BLOCK,) if self.missing_area_policy == "indicator" else ())
        columns = list(STIMULUS_COLUMNS)
        for block in blocks:
            columns.extend(f"{block}__{area}" for area in self.vocabulary)
        object.__setattr__(self, 'columns', tuple(columns))
        object.__setattr__(self, '_index', {name: i for i, name in enumerate(columns)})

    def __len__(self) -> int:
        return len(self.columns)

    @property
    def blocks(self) -> Tuple[str, ...]:
        if self.missing_area_policy == "indicator":
            return AREA_BLOCKS + (INDICATOR_BLOCK,)
        return AREA_BLOCKS

    @property
    def fill_value(self) -> float:
        return np.nan if self.missing_area_policy == "nan" else 0.0

    def column_index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise KeyError(f"Unknown feature column '{name}'") from None

    def block_offset(self, block: str) -> int:
        """Index of the first column of an area block."""
        return len(STIMULUS_COLUMNS) + self.blocks.index(block) * len(self.vocabulary)

    def block_slice(self, block: str) -> slice:
        start = self.block_offset(block)
        return slice(start, start + len(self.vocabulary))


@dataclass(frozen=True)
class AreaGrouping:
    """
    Neuron rows grouped by vocabulary position for one session.

    Built once per session and reused for all of its trials.
    """
    session_id: str
    neuron_areas: Tuple[str, ...]
    vocab_positions: np.ndarray
    neuron_indices: Tuple[np.ndarray, ...]

    @classmethod
    def build(cls, session: Session, vocabulary: AreaVocabulary) -> "AreaGrouping":
        positions = []
        indices = []
        for area, rows in session.area_index.items():
            positions.append(vocabulary.index_of(area, session_id=session.session_id))
            indices.append(rows)
        logger.debug(f"Grouped {session.n_neurons} neurons of {session.session_id} "
                      f"into {len(positions)} vocabulary areas")
        return cls(
            session_id=session.session_id,
            neuron_areas=session.neuron_areas,
            vocab_positions=np.asarray(positions, dtype=int),
            neuron_indices=tuple(indices),
        )


@dataclass(frozen=True, eq=False)
class FeatureVector:
    """One trial's fixed-width features plus its label and owning session."""
    session_id: str
    trial_idx: int
    values: np.ndarray
    feedback: str
    vocabulary_fingerprint: str

    def __post_init__(self):
        values = np.array(self.values, dtype=float)
        values.flags.writeable = False
        object.__setattr__(self, 'values', values)

    def __len__(self) -> int:
        return len(self.values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeatureVector):
            return NotImplemented
        return (self.session_id == other.session_id
                and self.trial_idx == other.trial_idx
                and self.feedback == other.feedback
                and self.vocabulary_fingerprint == other.vocabulary_fingerprint
                and np.array_equal(self.values, other.values, equal_nan=True))

    def as_dict(self, schema: FeatureSchema) -> Dict[str, float]:
        """Column name -> value mapping (features only)."""
        return dict(zip(schema.columns, self.values.tolist()))


# ─────────────────────────────────────────────────────────────────────────────
# Extraction
# ─────────────────────────────────────────────────────────────────────────────

class FeatureExtractor:
    """
    Converts trials into FeatureVectors keyed to a frozen AreaVocabulary.

    Areas a session never recorded are filled according to the
    missing-area policy: "zero" (default), "nan", or "indicator" (zero
    plus a recorded__<area> 0/1 column per area).
    """

    def __init__(self, vocabulary: AreaVocabulary, missing_area_policy: Optional[str] = None):
        self.vocabulary = vocabulary
        self.schema = FeatureSchema(vocabulary, missing_area_policy or FEATURE_CONFIG.missing_area_policy)
        self._groupings: Dict[str, AreaGrouping] = {}

    @property
    def n_features(self) -> int:
        return len(self.schema)

    def grouping_for(self, session: Session) -> AreaGrouping:
        """Cached area grouping for a session (rebuilt if the cached one has other labels)."""
        grouping = self._groupings.get(session.session_id)
        if grouping is None or grouping.neuron_areas != session.neuron_areas:
            grouping = AreaGrouping.build(session, self.vocabulary)
            self._groupings[session.session_id] = grouping
        return grouping

    def extract(self, trial: Trial, session: Session) -> FeatureVector:
        """Build one trial's FeatureVector."""
        if trial.n_neurons != session.n_neurons:
            raise SchemaError(
                f"Spike matrix has {trial.n_neurons} rows, but the session lists {session.n_neurons} neuron areas",
                session_id=session.session_id, trial_idx=trial.trial_idx,
            )
        grouping = self.grouping_for(session)
        schema = self.schema

        values = np.full(len(schema), schema.fill_value, dtype=float)
        values[0] = trial.contrast_left
        values[1] = trial.contrast_right

        stats = neuron_window_stats(trial.spikes, session.session_id, trial.trial_idx)
        total_off = schema.block_offset("total_spikes")
        early_off = schema.block_offset("early_rate")
        late_off = schema.block_offset("late_rate")
        for pos, rows in zip(grouping.vocab_positions, grouping.neuron_indices):
            values[total_off + pos] = stats.total_spikes[rows].sum()
            values[early_off + pos] = stats.early_rate[rows].mean()
            values[late_off + pos] = stats.late_rate[rows].mean()

        if schema.missing_area_policy == "indicator":
            recorded = schema.block_slice(INDICATOR_BLOCK)
            values[recorded] = 0.0
            values[recorded.start + grouping.vocab_positions] = 1.0

        return FeatureVector(
            session_id=session.session_id,
            trial_idx=trial.trial_idx,
            values=values,
            feedback=trial.feedback,
            vocabulary_fingerprint=self.vocabulary.fingerprint,
        )

    def extract_session(self, session: Session) -> List[FeatureVector]:
        """Extract every trial of a session, in trial order."""
        logger.debug(f"Extracting {len(session.trials)} trials from {session.session_id}")
        return [self.extract(trial, session) for trial in session.trials]
