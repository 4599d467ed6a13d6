"""
Candidate Matcher
=================
Scores a capture against every enrolled template and applies the
acceptance threshold to the best candidate.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from ..errors import IncompatibleImage
from .ssim import DEFAULT_BLOCK_SIZE, score

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.36


@dataclass(frozen=True, eq=False)
class BiometricTemplate:
    """An enrolled fingerprint. Read-only to the matcher."""

    person_id: str
    image: np.ndarray = field(repr=False)
    person_name: Optional[str] = None


@dataclass(frozen=True, eq=False)
class CaptureSample:
    """A freshly acquired fingerprint, discarded after matching."""

    image: np.ndarray = field(repr=False)


@dataclass(frozen=True)
class MatchResult:
    """
    MATCH(person_id, score) or NO_MATCH(best_score).

    ``score`` is the best score seen in both cases; it is informational and
    is -inf when nothing could be scored.
    """

    matched: bool
    score: float
    person_id: Optional[str] = None
    person_name: Optional[str] = None

    @classmethod
    def match(cls, person_id: str, score: float, person_name: Optional[str] = None) -> "MatchResult":
        return cls(matched=True, score=score, person_id=person_id, person_name=person_name)

    @classmethod
    def no_match(cls, best_score: float = -math.inf) -> "MatchResult":
        return cls(matched=False, score=best_score)

    @property
    def best_score(self) -> float:
        return self.score


Roster = Sequence[BiometricTemplate]


def match(
    capture: CaptureSample,
    roster: Roster,
    threshold: float = DEFAULT_THRESHOLD,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> MatchResult:
    """
    Find the best-scoring template for a capture.

    Every template is scored (no early exit). The first template reaching the
    maximum wins, so ties resolve by roster order. Templates whose raster
    cannot be compared with the capture are logged and skipped.

    Args:
        capture: The scanned sample
        roster: Snapshot of enrolled templates
        threshold: Minimum best score for a MATCH
        block_size: SSIM block edge length

    Returns:
        MATCH if the best score is >= threshold, otherwise NO_MATCH
    """
    best: Optional[BiometricTemplate] = None
    best_score = -math.inf

    for template in roster:
        try:
            similarity = score(capture.image, template.image, block_size)
        except IncompatibleImage as e:
            logger.warning(f"Skipping template for {template.person_id}: {e}")
            continue

        logger.debug(f"SSIM with {template.person_id}: {similarity:.4f}")

        if similarity > best_score:
            best_score = similarity
            best = template

    if best is not None and best_score >= threshold:
        return MatchResult.match(best.person_id, best_score, best.person_name)

    if best is not None:
        logger.debug(f"Best candidate {best.person_id} below threshold: {best_score:.4f} < {threshold}")
    return MatchResult.no_match(best_score)


class CandidateMatcher:
    """``match`` bound to a configured threshold and block size."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD, block_size: int = DEFAULT_BLOCK_SIZE):
        self.threshold = float(threshold)
        self.block_size = int(block_size)

    def match(self, capture: CaptureSample, roster: Roster) -> MatchResult:
        return match(capture, roster, threshold=self.threshold, block_size=self.block_size)
