"""Face embedding comparison.

Embeddings are fixed-length vectors produced by the face capability
(see services/face_service.py). Similarity is plain Euclidean distance:
lower means more alike.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple, TypeVar

import numpy as np

from core.errors import FaceMatchError
from core.settings import FACE_MATCH_THRESHOLD_OVERRIDE

logger = logging.getLogger(__name__)

# Maximum distance still accepted as "same person". The most sensitive
# security parameter in the system; initial identification and the
# re-verification during clock-in both read it.
DEFAULT_FACE_MATCH_THRESHOLD = 0.55
FACE_MATCH_THRESHOLD = (
    float(FACE_MATCH_THRESHOLD_OVERRIDE)
    if FACE_MATCH_THRESHOLD_OVERRIDE
    else DEFAULT_FACE_MATCH_THRESHOLD
)

T = TypeVar("T")


@dataclass(frozen=True)
class FaceVerdict:
    error: Optional[FaceMatchError]
    distance: Optional[float] = None

    @property
    def matched(self) -> bool:
        return self.error is None


def match_score(probe: Sequence[float], reference: Sequence[float]) -> float:
    probe_vec = np.asarray(probe, dtype=np.float64)
    reference_vec = np.asarray(reference, dtype=np.float64)
    return float(np.linalg.norm(probe_vec - reference_vec))


def is_same_person(distance: float, threshold: float = FACE_MATCH_THRESHOLD) -> bool:
    # Boundary inclusive
    return distance <= threshold


def verify_against_reference(
    probe: Optional[Sequence[float]],
    reference: Optional[Sequence[float]],
    threshold: float = FACE_MATCH_THRESHOLD,
) -> FaceVerdict:
    """Compare one probe against one known employee's reference."""
    if probe is None:
        return FaceVerdict(FaceMatchError.NO_FACE_DETECTED)
    if reference is None or len(reference) == 0:
        return FaceVerdict(FaceMatchError.NO_REFERENCE_EMBEDDING)

    distance = match_score(probe, reference)
    if not is_same_person(distance, threshold):
        return FaceVerdict(FaceMatchError.BELOW_THRESHOLD, distance)
    return FaceVerdict(None, distance)


def best_match(
    probe: Sequence[float],
    candidates: Iterable[Tuple[T, Optional[Sequence[float]]]],
    threshold: float = FACE_MATCH_THRESHOLD,
) -> Tuple[Optional[T], Optional[float]]:
    """Open-set scan: closest candidate whose distance passes the threshold.

    Candidates without a reference embedding are skipped. Ties keep the
    earliest candidate.
    """
    winner = None
    winner_distance = None
    for candidate, reference in candidates:
        if reference is None or len(reference) == 0:
            continue
        distance = match_score(probe, reference)
        if not is_same_person(distance, threshold):
            continue
        if winner_distance is None or distance < winner_distance:
            winner, winner_distance = candidate, distance
    return winner, winner_distance
