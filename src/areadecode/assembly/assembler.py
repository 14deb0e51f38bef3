"""
Dataset assembly: run the extractor over every trial of every session.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from joblib import Parallel, delayed
from tqdm import tqdm

from ..dataio.config import FEATURE_CONFIG, SPLIT_CONFIG, FeatureConfig, SplitConfig
from ..dataio.data_structures import Session, SessionStore, ValidationError
from ..features import FeatureExtractor, FeatureVector
from ..vocabulary import AreaVocabulary
from .split import DatasetSplit, stratified_split
from .table import Dataset

logger = logging.getLogger(__name__)


def _extract_session(extractor: FeatureExtractor, session: Session) -> List[FeatureVector]:
    """Worker entry point; logs which session failed before re-raising."""
    try:
        return extractor.extract_session(session)
    except ValidationError:
        logger.error(f"Feature extraction aborted for session {session.session_id}")
        raise


class DatasetAssembler:
    """
    Builds the Dataset from a SessionStore and splits it.

    The vocabulary is either supplied (already frozen) or built from the
    same store before any extraction starts. Extraction may run in
    parallel across sessions; vectors are re-sorted by (session order,
    trial index) before the table is formed.
    """

    def __init__(self,
                 feature_config: Optional[FeatureConfig] = None,
                 split_config: Optional[SplitConfig] = None):
        self.feature_config = feature_config or FEATURE_CONFIG
        self.split_config = split_config or SPLIT_CONFIG

    def build_vocabulary(self, store: SessionStore) -> AreaVocabulary:
        return AreaVocabulary.build(store, ordering=self.feature_config.vocabulary_ordering)

    def assemble(self, store: SessionStore, vocabulary: Optional[AreaVocabulary] = None) -> Dataset:
        """Extract every trial (session order, then trial order) into one Dataset."""
        if vocabulary is None:
            vocabulary = self.build_vocabulary(store)

        extractor = FeatureExtractor(vocabulary, self.feature_config.missing_area_policy)
        n_jobs = self.feature_config.n_jobs
        logger.info(f"--- Starting feature extraction: {len(store)} sessions, {store.n_trials} trials, "
                    f"{extractor.n_features} features, n_jobs={n_jobs} ---")

        sessions = tqdm(store, desc="Extracting features", total=len(store),
                        disable=not self.feature_config.show_progress)
        if n_jobs == 1:
            per_session = [_extract_session(extractor, session) for session in sessions]
        else:
            per_session = Parallel(n_jobs=n_jobs)(
                delayed(_extract_session)(extractor, session) for session in sessions
            )

        session_order = {session.session_id: i for i, session in enumerate(store)}
        vectors = [v for chunk in per_session for v in chunk]
        vectors.sort(key=lambda v: (session_order[v.session_id], v.trial_idx))

        dataset = Dataset(extractor.schema, vectors)
        logger.info(f"--- Feature extraction complete: {len(dataset)} rows, classes {dataset.class_counts()} ---")
        return dataset

    def split(self, dataset: Dataset) -> DatasetSplit:
        return stratified_split(dataset,
                                train_fraction=self.split_config.train_fraction,
                                random_seed=self.split_config.random_seed)

    def build(self, store: SessionStore, vocabulary: Optional[AreaVocabulary] = None) -> DatasetSplit:
        """Assemble the dataset and split it in one call."""
        return self.split(self.assemble(store, vocabulary))
