# src/areadecode/assembly/__init__.py

"""
High-level helper facade for dataset assembly.

The primary entry point is `build_dataset`, which orchestrates the whole
path from a SessionStore to a stratified Training/Validation split:
vocabulary first (a barrier), then per-trial extraction, then the split.

Example
-------
>>> from areadecode.dataio.loaders import load_store
>>> from areadecode.assembly import build_dataset
>>> store = load_store(records)
>>> split = build_dataset(store, random_seed=141)
>>> split.training.X.shape
"""

from __future__ import annotations
from typing import TYPE_CHECKING, Optional

from .assembler import DatasetAssembler
from .split import DatasetSplit, check_stratifiable, stratified_split
from .table import Dataset, DatasetView, LABEL_COLUMN, SESSION_COLUMN
from ..dataio.config import FeatureConfig, SplitConfig, FEATURE_CONFIG, SPLIT_CONFIG

if TYPE_CHECKING:
    from ..dataio.data_structures import SessionStore
    from ..vocabulary import AreaVocabulary

# Define the public API of the 'assembly' package
__all__ = [
    "DatasetAssembler",
    "Dataset",
    "DatasetView",
    "DatasetSplit",
    "LABEL_COLUMN",
    "SESSION_COLUMN",
    "check_stratifiable",
    "stratified_split",
    "build_dataset",
]


def build_dataset(
    store: SessionStore,
    *,
    vocabulary: Optional[AreaVocabulary] = None,
    vocabulary_ordering: str | None = None,
    missing_area_policy: str | None = None,
    n_jobs: int | None = None,
    train_fraction: float | None = None,
    random_seed: int | None = None,
) -> DatasetSplit:
    """
    End-to-end utility from sessions to a split feature table.

    Args:
        store: The SessionStore to featurise.
        vocabulary: A frozen vocabulary to reuse; built from `store` when None.
        vocabulary_ordering: "lexicographic" or "first_seen".
        missing_area_policy: "zero", "nan" or "indicator".
        n_jobs: Parallel extraction workers (joblib semantics).
        train_fraction: Share of trials in Training.
        random_seed: Seed of the stratified split.

    Returns:
        A DatasetSplit holding the Dataset and its two partitions.
    """
    feature_config = FeatureConfig(
        vocabulary_ordering=vocabulary_ordering or FEATURE_CONFIG.vocabulary_ordering,
        missing_area_policy=missing_area_policy or FEATURE_CONFIG.missing_area_policy,
        n_jobs=FEATURE_CONFIG.n_jobs if n_jobs is None else n_jobs,
        show_progress=FEATURE_CONFIG.show_progress,
    )
    split_config = SplitConfig(
        train_fraction=SPLIT_CONFIG.train_fraction if train_fraction is None else train_fraction,
        random_seed=SPLIT_CONFIG.random_seed if random_seed is None else random_seed,
    )
    return DatasetAssembler(feature_config, split_config).build(store, vocabulary)
