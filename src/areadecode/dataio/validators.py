"""
Data validation and quality assurance for session recordings.

Structural problems (shape mismatches, unknown labels) are raised as
exceptions while the Session objects are built. The checks here are the
non-fatal kind: they flag sessions that are valid but may behave poorly
downstream (few neurons, lopsided outcomes, silent populations).
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field
import logging

from .data_structures import Session, SessionStore
from .config          import VALIDATION_CONFIG, EXPERIMENT_CONFIG

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Container for validation results."""
    is_valid: bool
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)

    def add_warning(self, message: str) -> None:
        """Add a warning message and log it."""
        self.warnings.append(message)
        logger.warning(f"VALIDATION WARNING: {message}")

    def add_error(self, message: str) -> None:
        """Add an error message, mark as invalid, and log it."""
        self.errors.append(message)
        self.is_valid = False
        logger.error(f"VALIDATION ERROR: {message}")

    def add_metric(self, name: str, value: Any) -> None:
        """Add a validation metric."""
        self.metrics[name] = value


class DataIntegrityValidator:
    """Validates data integrity and consistency of a single session."""

    def __init__(self, config: Optional[object] = None, expected_time_bins: Optional[int] = None):
        self.config = config or VALIDATION_CONFIG
        self.expected_time_bins = expected_time_bins or EXPERIMENT_CONFIG.expected_time_bins

    def validate_session(self, session: Session) -> ValidationResult:
        """Comprehensive validation of session data."""
        logger.info(f"--- Starting Data Integrity Validation for Session: {session.session_id} ---")
        result = ValidationResult(is_valid=True)

        self._validate_basic_structure(session, result)
        self._validate_neurons(session, result)
        self._validate_trials(session, result)
        self._validate_spike_activity(session, result)

        logger.info(f"--- Validation Complete for {session.session_id}: "
                    f"Valid={result.is_valid}, Errors={len(result.errors)}, Warnings={len(result.warnings)} ---")
        return result

    def _validate_basic_structure(self, session: Session, result: ValidationResult) -> None:
        """Validate identifiers and the experiment date."""
        logger.debug("Validating basic structure...")
        if not session.session_id:
            result.add_error("Invalid or missing session ID")
        if not session.mouse_name:
            result.add_warning("Missing mouse name")
        if pd.isna(pd.to_datetime(session.date_exp, errors='coerce')):
            result.add_warning(f"Experiment date '{session.date_exp}' is not an ISO date")

        result.add_metric("session_id", session.session_id)
        result.add_metric("mouse_name", session.mouse_name)

    def _validate_neurons(self, session: Session, result: ValidationResult) -> None:
        """Validate neuron count and area labels."""
        logger.debug("Validating neuron areas...")
        n_neurons = session.n_neurons
        if n_neurons == 0:
            result.add_error("No neurons found in session")
            return
        elif n_neurons < self.config.min_neurons_per_session:
            result.add_warning(f"Low neuron count: {n_neurons} (threshold: < {self.config.min_neurons_per_session})")

        blank = [i for i, area in enumerate(session.neuron_areas) if not area.strip()]
        if blank:
            result.add_warning(f"{len(blank)} neurons have a blank area label (e.g. neuron {blank[0]})")

        neurons_per_area = {area: len(idx) for area, idx in session.area_index.items()}
        result.add_metric("n_neurons", n_neurons)
        result.add_metric("n_areas", len(neurons_per_area))
        result.add_metric("neurons_per_area", neurons_per_area)

    def _validate_trials(self, session: Session, result: ValidationResult) -> None:
        """Validate trial count, bin width and outcome balance."""
        logger.debug("Validating trial information...")
        n_trials = len(session.trials)
        if n_trials == 0:
            result.add_warning("No trials found in session")
            return
        elif n_trials < self.config.min_trials_per_session:
            result.add_warning(f"Low trial count: {n_trials} (threshold: < {self.config.min_trials_per_session})")

        if session.n_time_bins != self.expected_time_bins:
            result.add_warning(f"Trials have {session.n_time_bins} time bins; expected {self.expected_time_bins}")

        success_rate = session.success_rate()
        minority = min(success_rate, 1.0 - success_rate)
        if minority < self.config.min_class_fraction:
            result.add_warning(f"Outcome imbalance: success rate {success_rate:.1%} leaves a minority class "
                               f"below {self.config.min_class_fraction:.0%}")

        trials_df = session.trials_dataframe()
        result.add_metric("n_trials", n_trials)
        result.add_metric("n_time_bins", session.n_time_bins)
        result.add_metric("success_rate", success_rate)
        result.add_metric("contrast_pairs", int(trials_df.groupby(['contrast_left', 'contrast_right']).ngroups))

    def _validate_spike_activity(self, session: Session, result: ValidationResult) -> None:
        """Flag silent neurons and empty trials."""
        logger.debug("Validating spike activity...")
        if not session.trials or session.n_neurons == 0:
            return

        per_neuron_totals = np.sum([t.spikes.sum(axis=1) for t in session.trials], axis=0)
        silent = int(np.sum(per_neuron_totals == 0))
        silent_fraction = silent / session.n_neurons
        if silent_fraction > self.config.max_silent_neuron_fraction:
            result.add_warning(f"{silent} of {session.n_neurons} neurons ({silent_fraction:.1%}) never spike")

        empty_trials = [t.trial_idx for t in session.trials if t.spikes.sum() == 0]
        if empty_trials:
            result.add_warning(f"{len(empty_trials)} trials contain no spikes (e.g. trial {empty_trials[0]})")

        result.add_metric("n_silent_neurons", silent)
        result.add_metric("n_empty_trials", len(empty_trials))
        result.add_metric("mean_spikes_per_trial", float(np.mean([t.spikes.sum() for t in session.trials])))


def validate_session_comprehensive(session: Session) -> ValidationResult:
    """Run all integrity checks on one session."""
    return DataIntegrityValidator().validate_session(session)


def validate_store(store: SessionStore) -> Dict[str, ValidationResult]:
    """Run integrity checks on every session of a store, keyed by session id."""
    logger.info(f"--- Validating {len(store)} sessions ---")
    validator = DataIntegrityValidator()
    results = {session.session_id: validator.validate_session(session) for session in store}
    n_invalid = sum(not r.is_valid for r in results.values())
    n_warned = sum(bool(r.warnings) for r in results.values())
    logger.info(f"--- Store validation complete: {n_invalid} invalid, {n_warned} with warnings ---")
    return results


def validation_summary(results: Dict[str, ValidationResult]) -> pd.DataFrame:
    """Tabulate validation results, one row per session."""
    return pd.DataFrame([
        {
            'session_id': session_id,
            'is_valid': r.is_valid,
            'n_errors': len(r.errors),
            'n_warnings': len(r.warnings),
            'n_neurons': r.metrics.get('n_neurons'),
            'n_trials': r.metrics.get('n_trials'),
            'success_rate': r.metrics.get('success_rate'),
        }
        for session_id, r in results.items()
    ])
