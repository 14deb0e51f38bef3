"""
Global brain-area vocabulary.

The vocabulary is the union of every session's neuron-area labels. Its
order defines feature-column identity, so it is built once per dataset
build, frozen, and passed explicitly to the feature extractor.
"""
from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Tuple

from .dataio.config import FEATURE_CONFIG
from .dataio.data_structures import SessionStore, VocabularyError

logger = logging.getLogger(__name__)

ORDERINGS = ("lexicographic", "first_seen")


@dataclass(frozen=True)
class AreaVocabulary:
    """
    Ordered, deduplicated set of area labels.

    Args:
        areas: Area labels in column order.
        ordering: Rule that produced the order ("lexicographic" or "first_seen").
    """
    areas: Tuple[str, ...]
    ordering: str = "lexicographic"
    _index: Dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        areas = tuple(str(a) for a in self.areas)
        if len(set(areas)) != len(areas):
            raise VocabularyError(f"Area vocabulary contains duplicates: {areas}")
        if self.ordering not in ORDERINGS:
            raise ValueError(f"Unknown vocabulary ordering: {self.ordering}")
        object.__setattr__(self, 'areas', areas)
        object.__setattr__(self, '_index', {area: i for i, area in enumerate(areas)})

    @classmethod
    def build(cls, store: Iterable, ordering: str | None = None) -> "AreaVocabulary":
        """
        Derive the vocabulary from every session in the store.

        "first_seen" keeps the order in which labels first appear, scanning
        sessions in store order and neurons in row order. "lexicographic"
        sorts the union by Python string ordering. An empty store gives an
        empty vocabulary.
        """
        ordering = ordering or FEATURE_CONFIG.vocabulary_ordering
        logger.info(f"--- Building area vocabulary ({ordering} ordering) ---")

        seen: Dict[str, None] = {}
        n_sessions = 0
        for session in store:
            n_sessions += 1
            for area in session.neuron_areas:
                seen.setdefault(area, None)

        areas = list(seen)
        if ordering == "lexicographic":
            areas = sorted(areas)
        elif ordering not in ORDERINGS:
            raise ValueError(f"Unknown vocabulary ordering: {ordering}")

        vocabulary = cls(tuple(areas), ordering=ordering)
        if not areas:
            logger.warning(f"Area vocabulary is empty ({n_sessions} sessions); "
                           f"feature vectors will hold only the stimulus columns")
        logger.info(f"--- Vocabulary complete: {len(areas)} areas from {n_sessions} sessions ---")
        return vocabulary

    def __len__(self) -> int:
        return len(self.areas)

    def __iter__(self) -> Iterator[str]:
        return iter(self.areas)

    def __contains__(self, area: object) -> bool:
        return area in self._index

    def index_of(self, area: str, session_id: str | None = None) -> int:
        """Column position of an area; unknown areas are a vocabulary/session mismatch."""
        try:
            return self._index[area]
        except KeyError:
            raise VocabularyError(
                f"Area '{area}' is not in the frozen vocabulary ({len(self)} areas); "
                f"the vocabulary must be built from the same sessions",
                session_id=session_id,
            ) from None

    def covers(self, store: SessionStore) -> bool:
        """True when every area label in the store is in this vocabulary."""
        return all(area in self._index for session in store for area in session.neuron_areas)

    @property
    def fingerprint(self) -> str:
        """Stable digest of the ordered labels; vectors built against another digest are stale."""
        digest = hashlib.sha1("\x1f".join(self.areas).encode("utf-8"))
        return digest.hexdigest()[:12]
