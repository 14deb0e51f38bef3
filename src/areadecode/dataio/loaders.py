# loaders.py

import hashlib
import numpy as np
from pathlib import Path
from typing import Dict, List, Any, Optional, Sequence, Union
import joblib
import logging
from tqdm import tqdm

from .data_structures import Session, SessionStore, Trial, ValidationError
from .config          import FILESYSTEM_CONFIG


# Set up logging
logger = logging.getLogger(__name__)


class LoadingError(Exception):
    """Custom exception for data loading errors."""
    pass


class RecordValidator:
    """Validator for per-session record structure."""

    REQUIRED_FIELDS = ['mouseName', 'dateExperiment', 'neuronArea']
    TRIAL_FIELDS = ['contrastLeft', 'contrastRight', 'feedbackType', 'spikes']

    @classmethod
    def validate_record_structure(cls, record: Dict[str, Any], record_idx: int) -> None:
        """Validate that a session record has the required fields in either supported layout."""
        logger.debug(f"--- Validating structure of record {record_idx} ---")
        missing_fields = [f for f in cls.REQUIRED_FIELDS if f not in record]

        if 'trials' in record:
            for trial_idx, trial in enumerate(record['trials']):
                missing_trial = [f for f in cls.TRIAL_FIELDS if f not in trial]
                if missing_trial:
                    missing_fields.append(f"trials[{trial_idx}].{missing_trial}")
                    break
        else:
            missing_fields.extend(f for f in cls.TRIAL_FIELDS if f not in record)

        if missing_fields:
            error_msg = f"Missing required fields in session record {record_idx}: {missing_fields}"
            logger.error(error_msg)
            raise LoadingError(error_msg)

    @classmethod
    def validate_trial_columns(cls, record: Dict[str, Any], record_idx: int) -> int:
        """Validate that column-form trial fields all have the same length and return it."""
        lengths = {name: len(record[name]) for name in cls.TRIAL_FIELDS}
        if len(set(lengths.values())) > 1:
            error_msg = f"Inconsistent per-trial column lengths in session record {record_idx}: {lengths}"
            logger.error(error_msg)
            raise LoadingError(error_msg)
        return next(iter(lengths.values()))


class SessionRecordParser:
    """Converts SessionStore records into validated Session objects."""

    def __init__(self, validate: bool = True):
        self.validate = validate

    def parse_record(self, record: Dict[str, Any], record_idx: int) -> Session:
        """Build one Session from a record, raising on any structural problem."""
        if self.validate:
            RecordValidator.validate_record_structure(record, record_idx)

        session_id = str(record.get('sessionId', f"session{record_idx + 1}"))
        logger.info(f"--- Parsing session record {record_idx} as '{session_id}' ---")

        trial_records = self._trial_records(record, record_idx)
        trials = [
            Trial(
                trial_idx=trial_idx,
                contrast_left=tr['contrastLeft'],
                contrast_right=tr['contrastRight'],
                feedback_type=tr['feedbackType'],
                spikes=tr['spikes'],
                session_id=session_id,
            )
            for trial_idx, tr in enumerate(trial_records)
        ]

        session = Session(
            session_id=session_id,
            mouse_name=str(record['mouseName']),
            date_exp=str(record['dateExperiment']),
            neuron_areas=tuple(record['neuronArea']),
            trials=tuple(trials),
        )
        logger.info(f"Parsed '{session_id}': {session.n_neurons} neurons, {len(trials)} trials")
        return session

    def _trial_records(self, record: Dict[str, Any], record_idx: int) -> List[Dict[str, Any]]:
        if 'trials' in record:
            return list(record['trials'])
        n_trials = RecordValidator.validate_trial_columns(record, record_idx)
        return [
            {name: record[name][i] for name in RecordValidator.TRIAL_FIELDS}
            for i in range(n_trials)
        ]


class SessionLoader:
    """Main class for turning session records into a SessionStore."""

    def __init__(self, validate: bool = True, show_progress: bool = True):
        self.validate = validate
        self.show_progress = show_progress
        self.parser = SessionRecordParser(validate=validate)

    def load_store(self, records: Sequence[Dict[str, Any]]) -> SessionStore:
        """Parse every record (in order) and return the SessionStore."""
        logger.info(f"--- Building SessionStore from {len(records)} records ---")
        sessions = []
        for record_idx, record in enumerate(tqdm(records, desc="Parsing sessions",
                                                 disable=not self.show_progress)):
            try:
                sessions.append(self.parser.parse_record(record, record_idx))
            except ValidationError:
                logger.error(f"Session record {record_idx} failed validation; aborting build")
                raise
        return SessionStore(sessions)

    @staticmethod
    def _bundle_key(bundle_path: Path) -> Dict[str, Any]:
        """Identity of a bundle on disk: resolved path, size and modification time."""
        stat = bundle_path.stat()
        return {'source': str(bundle_path.resolve()), 'size': stat.st_size, 'mtime_ns': stat.st_mtime_ns}

    @staticmethod
    def cache_path_for(bundle_path: Path) -> Path:
        """Cache file for a bundle; bundles sharing a file name get distinct caches."""
        digest = hashlib.sha1(str(Path(bundle_path).resolve()).encode("utf-8")).hexdigest()[:10]
        return FILESYSTEM_CONFIG.cache_dir / f"{Path(bundle_path).stem}_{digest}{FILESYSTEM_CONFIG.cache_file_suffix}"

    def _load_cached(self, cache_path: Path, key: Dict[str, Any]) -> Optional[SessionStore]:
        try:
            payload = joblib.load(cache_path)
        except Exception as e:
            logger.warning(f"Ignoring unreadable cache {cache_path}: {e}")
            return None
        if not isinstance(payload, dict) or payload.get('key') != key:
            logger.info(f"Cache {cache_path} was built from another bundle state; rebuilding")
            return None
        return payload['store']

    def load_store_from_file(self, bundle_path: Path, use_cache: bool = True) -> SessionStore:
        """
        Load a joblib bundle holding a list of session records.

        Parsed stores are cached in the configured cache directory so a
        rebuild skips record parsing. A cache entry is only reused when the
        bundle's resolved path, size and modification time all match.
        """
        bundle_path = Path(bundle_path)
        if not bundle_path.exists():
            raise LoadingError(f"Session record bundle not found: {bundle_path}")

        cache_path = self.cache_path_for(bundle_path)
        key = self._bundle_key(bundle_path)

        if use_cache and cache_path.exists():
            store = self._load_cached(cache_path, key)
            if store is not None:
                logger.info(f"Loading from cache: {cache_path}")
                return store

        try:
            records = joblib.load(bundle_path)
        except Exception as e:
            logger.error(f"CRITICAL: Failed to load record bundle {bundle_path}. Error: {str(e)}")
            raise LoadingError(f"Failed to load record bundle {bundle_path}: {str(e)}") from e

        if not isinstance(records, (list, tuple)):
            raise LoadingError(f"Record bundle {bundle_path} must contain a list of session records, "
                               f"got {type(records).__name__}")

        store = self.load_store(records)

        if use_cache:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            joblib.dump({'key': key, 'store': store}, cache_path)
            logger.info(f"Cached to {cache_path}")

        return store


# Convenience functions
def load_store(records: Sequence[Dict[str, Any]], validate: bool = True) -> SessionStore:
    """Build a SessionStore from in-memory session records."""
    return SessionLoader(validate=validate, show_progress=False).load_store(records)


def load_store_from_file(bundle_path: Union[str, Path], use_cache: bool = True) -> SessionStore:
    """Build a SessionStore from a joblib bundle of session records."""
    return SessionLoader().load_store_from_file(Path(bundle_path), use_cache=use_cache)
