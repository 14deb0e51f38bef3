"""
Classification metrics for trial-outcome decoding.
"""

import numpy as np
from sklearn.metrics import confusion_matrix
from typing import Dict, List, Sequence, Tuple

from ..dataio.config import EXPERIMENT_CONFIG


def outcome_confusion_matrix(y_true, y_pred, labels: Sequence[str] = None) -> np.ndarray:
    """
    2x2 confusion matrix over the outcome classes.

    Args:
        y_true (array-like): True labels.
        y_pred (array-like): Predicted labels.
        labels (sequence): Class order for rows/columns; defaults to
            ("success", "failure").

    Returns:
        np.ndarray: Counts with rows = true class, columns = predicted class.
    """
    labels = list(labels or EXPERIMENT_CONFIG.class_labels)
    y_true = np.asarray(y_true).astype(str)
    y_pred = np.asarray(y_pred).astype(str)
    return confusion_matrix(y_true, y_pred, labels=labels)


def accuracy_from_confusion(cm: np.ndarray) -> float:
    """
    Accuracy as (TP + TN) / total, read off the matrix diagonal.

    Args:
        cm (np.ndarray): Square confusion matrix.

    Returns:
        float: Fraction of correct predictions.
    """
    cm = np.asarray(cm)
    total = cm.sum()
    if total == 0:
        raise ValueError("Cannot compute accuracy from an empty confusion matrix")
    return float(np.trace(cm) / total)


def per_class_recall(cm: np.ndarray, labels: Sequence[str] = None) -> Dict[str, float]:
    """
    Recall of each class (diagonal over row sums); NaN for a class absent from y_true.

    With imbalanced outcomes this exposes how much better the majority
    class is recovered than the minority class.
    """
    labels = list(labels or EXPERIMENT_CONFIG.class_labels)
    cm = np.asarray(cm, dtype=float)
    recalls = {}
    for i, label in enumerate(labels):
        support = cm[i].sum()
        recalls[label] = float(cm[i, i] / support) if support > 0 else float('nan')
    return recalls


def rank_importances(feature_names: Sequence[str], scores: Sequence[float]) -> List[Tuple[str, float]]:
    """
    Features sorted by decreasing importance; ties keep column order.
    """
    if len(feature_names) != len(scores):
        raise ValueError(f"Got {len(feature_names)} feature names but {len(scores)} scores")
    order = np.argsort(-np.asarray(scores, dtype=float), kind='stable')
    return [(feature_names[i], float(scores[i])) for i in order]


def importance_by_block(importances: Dict[str, float]) -> Dict[str, float]:
    """
    Sum importances by feature family (the part of the column name before '__').

    e.g. {'contrast_left': .., 'total_spikes': .., 'early_rate': .., 'late_rate': ..}
    """
    blocks: Dict[str, float] = {}
    for name, score in importances.items():
        block = name.split("__", 1)[0]
        blocks[block] = blocks.get(block, 0.0) + float(score)
    return blocks
