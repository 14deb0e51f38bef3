from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Iterator, Sequence, Tuple, Union
import numpy as np
import pandas as pd
from pathlib import Path
import warnings
import logging

from .config import EXPERIMENT_CONFIG

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Custom exception for data validation errors. Inherits from ValueError for broader compatibility."""

    def __init__(self, message: str, session_id: Optional[str] = None, trial_idx: Optional[int] = None):
        self.session_id = session_id
        self.trial_idx = trial_idx
        context = []
        if session_id is not None:
            context.append(f"session={session_id}")
        if trial_idx is not None:
            context.append(f"trial={trial_idx}")
        if context:
            message = f"[{', '.join(context)}] {message}"
        super().__init__(message)


class SchemaError(ValidationError):
    """Spike data shape disagrees with the session's neuron list or the dataset-wide bin count."""
    pass


class VocabularyError(ValidationError):
    """An area label is missing from the frozen vocabulary, or vectors were built against another vocabulary."""
    pass


class SplitError(ValidationError):
    """A dataset cannot be meaningfully stratified or trained on."""
    pass


class DegenerateWindowWarning(UserWarning):
    """A time window has no bins; its mean is defined as 0."""
    pass


class DataValidator:
    """Utility class for validating trial metadata."""

    @staticmethod
    def validate_contrast(value: float, side: str) -> None:
        """Validate a contrast is one of the presented levels."""
        if not any(np.isclose(value, level) for level in EXPERIMENT_CONFIG.contrast_levels):
            raise SchemaError(
                f"contrast{side}={value} is not one of {list(EXPERIMENT_CONFIG.contrast_levels)}"
            )

    @staticmethod
    def validate_feedback(code: int) -> None:
        """Validate feedbackType is one of the known codes (+1 / -1)."""
        if code not in EXPERIMENT_CONFIG.feedback_labels:
            raise SchemaError(
                f"feedbackType={code} is not one of {sorted(EXPERIMENT_CONFIG.feedback_labels)}"
            )

    @staticmethod
    def validate_spike_matrix(spikes: np.ndarray) -> None:
        """Validate spikes is a 2D matrix of finite, non-negative integer counts."""
        if spikes.ndim != 2:
            raise SchemaError(f"Spike matrix must be 2D (neurons x time bins), got shape {spikes.shape}")
        if spikes.size and not np.all(np.isfinite(spikes)):
            raise SchemaError("Spike matrix contains non-finite values")
        if spikes.size and np.any(spikes < 0):
            raise SchemaError("Spike matrix contains negative counts")
        if spikes.size and not np.all(spikes == np.round(spikes)):
            raise SchemaError("Spike matrix contains non-integer counts")


@dataclass(frozen=True, eq=False)
class Trial:
    """One stimulus-response episode with its spike-count matrix."""
    trial_idx: int
    contrast_left: float
    contrast_right: float
    feedback_type: int
    spikes: np.ndarray  # Shape: (n_neurons, n_time_bins)
    session_id: Optional[str] = None

    def __post_init__(self):
        """Validate trial information after initialization."""
        object.__setattr__(self, 'contrast_left', float(self.contrast_left))
        object.__setattr__(self, 'contrast_right', float(self.contrast_right))
        object.__setattr__(self, 'feedback_type', int(self.feedback_type))
        try:
            try:
                spikes = np.array(self.spikes, dtype=float)
            except (TypeError, ValueError) as e:
                raise SchemaError(f"Spike matrix is not a rectangular numeric array: {e}") from e
            spikes.flags.writeable = False
            object.__setattr__(self, 'spikes', spikes)
            if self.trial_idx < 0:
                raise SchemaError(f"Trial index {self.trial_idx} must be non-negative")
            DataValidator.validate_contrast(self.contrast_left, "Left")
            DataValidator.validate_contrast(self.contrast_right, "Right")
            DataValidator.validate_feedback(self.feedback_type)
            DataValidator.validate_spike_matrix(self.spikes)
        except SchemaError as e:
            # Re-raise with more context
            raise SchemaError(f"Invalid Trial: {e}", session_id=self.session_id, trial_idx=self.trial_idx) from e

    @property
    def feedback(self) -> str:
        """Trial outcome as a class label ("success" / "failure")."""
        return EXPERIMENT_CONFIG.feedback_labels[self.feedback_type]

    @property
    def n_neurons(self) -> int:
        return self.spikes.shape[0]

    @property
    def n_time_bins(self) -> int:
        return self.spikes.shape[1]

    def to_dict(self) -> Dict[str, Any]:
        """Convert metadata (without spikes) to a dictionary."""
        return {
            'session_id': self.session_id,
            'trial_idx': self.trial_idx,
            'contrast_left': self.contrast_left,
            'contrast_right': self.contrast_right,
            'feedback_type': self.feedback_type,
            'feedback': self.feedback,
            'total_spikes': float(self.spikes.sum()),
        }


@dataclass(frozen=True, eq=False)
class Session:
    """One recording session: a neuron->area list and its ordered trials."""

    session_id: str
    mouse_name: str
    date_exp: str
    neuron_areas: Tuple[str, ...]
    trials: Tuple[Trial, ...]

    # Internal cache: area label -> row indices into the spike matrices
    _area_index: Dict[str, np.ndarray] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        """Validate session structure and build the area grouping once."""
        logger.debug(f"Initializing Session {self.session_id}")
        object.__setattr__(self, 'neuron_areas', tuple(str(a) for a in self.neuron_areas))
        object.__setattr__(self, 'trials', tuple(self.trials))

        if not self.neuron_areas:
            warnings.warn(f"Session '{self.session_id}' has no neurons.")
        if not self.trials:
            warnings.warn(f"Session '{self.session_id}' has no trials.")

        n_neurons = len(self.neuron_areas)
        widths = set()
        for trial in self.trials:
            if trial.n_neurons != n_neurons:
                # Never truncate or pad spike data
                raise SchemaError(
                    f"Spike matrix has {trial.n_neurons} rows, but the session lists {n_neurons} neuron areas",
                    session_id=self.session_id, trial_idx=trial.trial_idx,
                )
            widths.add(trial.n_time_bins)
        if len(widths) > 1:
            raise SchemaError(
                f"Trials have inconsistent time-bin counts {sorted(widths)}",
                session_id=self.session_id,
            )

        area_index: Dict[str, List[int]] = {}
        for neuron_idx, area in enumerate(self.neuron_areas):
            area_index.setdefault(area, []).append(neuron_idx)
        object.__setattr__(self, '_area_index', {
            area: np.asarray(indices, dtype=int) for area, indices in area_index.items()
        })
        logger.debug(f"Session {self.session_id}: {n_neurons} neurons in {len(area_index)} areas, "
                     f"{len(self.trials)} trials")

    @property
    def n_neurons(self) -> int:
        return len(self.neuron_areas)

    @property
    def n_time_bins(self) -> Optional[int]:
        """Time-bin count shared by all trials, or None for a session without trials."""
        return self.trials[0].n_time_bins if self.trials else None

    @property
    def areas(self) -> List[str]:
        """Distinct area labels in first-seen neuron order."""
        return list(self._area_index)

    @property
    def area_index(self) -> Dict[str, np.ndarray]:
        """Mapping area label -> neuron row indices (built once at construction)."""
        return self._area_index

    def success_rate(self) -> float:
        if not self.trials:
            return float('nan')
        return float(np.mean([t.feedback_type == 1 for t in self.trials]))

    def compute_summary_stats(self) -> Dict[str, Any]:
        """Compute summary statistics for the session."""
        stats = {
            'session_id': self.session_id,
            'mouse_name': self.mouse_name,
            'date_exp': self.date_exp,
            'n_neurons': self.n_neurons,
            'n_trials': len(self.trials),
            'n_areas': len(self._area_index),
            'areas': self.areas,
            'n_time_bins': self.n_time_bins,
        }
        if self.trials:
            stats['success_rate'] = self.success_rate()
            stats['mean_firing_rate'] = float(np.mean([t.spikes.mean() for t in self.trials]))
            stats['contrast_counts'] = {
                'left': pd.Series([t.contrast_left for t in self.trials]).value_counts().sort_index().to_dict(),
                'right': pd.Series([t.contrast_right for t in self.trials]).value_counts().sort_index().to_dict(),
            }
        return stats

    def trials_dataframe(self) -> pd.DataFrame:
        """Per-trial metadata as a DataFrame (one row per trial)."""
        return pd.DataFrame([t.to_dict() for t in self.trials])


class SessionStore:
    """
    Ordered, read-only collection of sessions sharing one time-bin width.

    Session order is significant: it defines vocabulary first-seen order
    and the row order of the assembled dataset.
    """

    def __init__(self, sessions: Sequence[Session]):
        self._sessions: Tuple[Session, ...] = tuple(sessions)
        ids = [s.session_id for s in self._sessions]
        if len(set(ids)) != len(ids):
            raise SchemaError(f"Duplicate session identifiers: {ids}")

        widths = {s.session_id: s.n_time_bins for s in self._sessions if s.n_time_bins is not None}
        if len(set(widths.values())) > 1:
            reference = next(iter(widths.values()))
            offender = next(sid for sid, w in widths.items() if w != reference)
            raise SchemaError(
                f"Time-bin count {widths[offender]} disagrees with the dataset-wide width {reference}",
                session_id=offender,
            )
        self._n_time_bins = next(iter(widths.values()), None)
        logger.info(f"SessionStore holds {len(self._sessions)} sessions, "
                    f"{self.n_trials} trials, {self._n_time_bins} time bins per trial")

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(self._sessions)

    def __getitem__(self, idx: int) -> Session:
        return self._sessions[idx]

    @property
    def sessions(self) -> Tuple[Session, ...]:
        return self._sessions

    @property
    def n_time_bins(self) -> Optional[int]:
        return self._n_time_bins

    @property
    def n_trials(self) -> int:
        return sum(len(s.trials) for s in self._sessions)

    def get_session(self, session_id: str) -> Optional[Session]:
        for session in self._sessions:
            if session.session_id == session_id:
                return session
        return None

    def summary_dataframe(self) -> pd.DataFrame:
        """One row of summary statistics per session."""
        rows = []
        for session in self._sessions:
            stats = session.compute_summary_stats()
            stats.pop('contrast_counts', None)
            stats['areas'] = ", ".join(stats['areas'])
            rows.append(stats)
        return pd.DataFrame(rows)

    def save_summary(self, filepath: Union[str, Path]) -> None:
        """Save the per-session summary table as CSV."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        self.summary_dataframe().to_csv(filepath, index=False)
        logger.info(f"Session summary saved to {filepath}")
