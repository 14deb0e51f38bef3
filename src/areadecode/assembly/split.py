"""
Label-stratified train/validation split.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from sklearn.model_selection import train_test_split

from ..dataio.config import SPLIT_CONFIG
from ..dataio.data_structures import SplitError
from .table import Dataset, DatasetView

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatasetSplit:
    """Disjoint Training and Validation views over one Dataset."""
    dataset: Dataset
    training: DatasetView
    validation: DatasetView
    random_seed: int


def check_stratifiable(labels: np.ndarray) -> None:
    """Raise SplitError when labels cannot support a stratified split."""
    if len(labels) < 2:
        raise SplitError(f"Cannot stratify a dataset with {len(labels)} trials; at least 2 are required")
    classes = np.unique(labels.astype(str))
    if len(classes) < 2:
        raise SplitError(f"Cannot stratify a single-class dataset (only '{classes[0]}' present)")


def stratified_split(dataset: Dataset,
                     train_fraction: Optional[float] = None,
                     random_seed: Optional[int] = None) -> DatasetSplit:
    """
    Split a dataset into Training and Validation, preserving the success/failure ratio.

    The split depends only on the seed and the dataset's row order, so the
    same input always gives the same partitions. Rows inside each view
    keep their dataset order.

    Raises:
        SplitError: fewer than 2 trials, a single class, or too few trials
            per class for the requested fractions.
    """
    train_fraction = SPLIT_CONFIG.train_fraction if train_fraction is None else train_fraction
    random_seed = SPLIT_CONFIG.random_seed if random_seed is None else random_seed

    labels = dataset.labels
    try:
        check_stratifiable(labels)
    except SplitError as e:
        logger.error(f"Split configuration error: {e}")
        raise

    indices = np.arange(len(dataset))
    try:
        train_idx, val_idx = train_test_split(
            indices,
            train_size=train_fraction,
            stratify=labels.astype(str),
            random_state=random_seed,
            shuffle=True,
        )
    except ValueError as e:
        logger.error(f"Stratified split failed: {e}")
        raise SplitError(f"Stratified split failed for {len(dataset)} trials "
                         f"({dataset.class_counts()}): {e}") from e

    training = dataset.view(train_idx, "training")
    validation = dataset.view(val_idx, "validation")
    logger.info(f"Split {len(dataset)} trials -> training {len(training)} "
                f"(success {training.success_rate():.1%}), validation {len(validation)} "
                f"(success {validation.success_rate():.1%}); full success rate {dataset.success_rate():.1%}")
    return DatasetSplit(dataset=dataset, training=training, validation=validation, random_seed=random_seed)
