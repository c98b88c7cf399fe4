"""
Candidate Scoring and robust method strategies.

A candidate position is scored against the full set of resolvable readings
using range residuals r_i = ||x - p_i|| - d_i:

- RANSAC / PROSAC: number of inliers |r_i| < τ (higher is better)
- MSAC: bounded cost Σ min(r_i², τ²) (lower is better)
- LMedS / PROMedS: median of r_i² (lower is better); the inlier threshold is
  derived afterwards from the median (robust standard deviation estimate)

Each method is an AlgorithmKind with a ScoringStrategy looked up from
STRATEGIES; the engine dispatches on the strategy flags.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
import math

import numpy as np

# Consistency constant between the median absolute deviation and the
# standard deviation of a normal distribution
MAD_TO_STD = 1.4826


class AlgorithmKind(Enum):
    """Robust estimation method."""

    RANSAC = "RANSAC"
    LMEDS = "LMedS"
    MSAC = "MSAC"
    PROSAC = "PROSAC"
    PROMEDS = "PROMedS"

    @classmethod
    def parse(cls, value) -> "AlgorithmKind":
        """
        Parse a method from an AlgorithmKind or a case-insensitive name.

        Raises:
            ValueError: If the name is unknown
        """
        if isinstance(value, cls):
            return value
        for kind in cls:
            if str(value).upper() in (kind.name, kind.value.upper()):
                return kind
        raise ValueError(f"Unknown robust method: {value!r}")


@dataclass(frozen=True)
class ScoringStrategy:
    """
    Scoring and stopping behaviour of a robust method.

    Attributes:
        score: Function (residuals, threshold) -> score
        higher_is_better: Comparison direction of the score
        uses_threshold: True if a fixed inlier threshold τ is required
        median_based: True for LMedS-family (adaptive threshold, early exit)
        progressive: True for quality-biased progressive sampling
        adaptive_stopping: True if the confidence-based iteration bound applies
    """

    score: Callable[[np.ndarray, float], float]
    higher_is_better: bool
    uses_threshold: bool
    median_based: bool
    progressive: bool
    adaptive_stopping: bool

    def is_better(
        self,
        score: float,
        best: Optional[float],
        inlier_cost: Optional[float] = None,
        best_inlier_cost: Optional[float] = None,
    ) -> bool:
        """
        True if score strictly improves on best (None means no best yet).

        Equal scores are ordered by the sum of squared inlier residuals
        (lower is better) when both costs are given, so a candidate that
        explains the same number of readings more tightly replaces the best.
        """
        if best is None:
            return True
        if score == best:
            if inlier_cost is None or best_inlier_cost is None:
                return False
            return inlier_cost < best_inlier_cost
        if self.higher_is_better:
            return score > best
        return score < best


def inlier_count_score(residuals: np.ndarray, threshold: float) -> float:
    """Number of residuals strictly inside the threshold."""
    return float(np.count_nonzero(np.abs(residuals) < threshold))


def truncated_quadratic_score(residuals: np.ndarray, threshold: float) -> float:
    """MSAC cost Σ min(r², τ²)."""
    return float(np.sum(np.minimum(residuals ** 2, threshold ** 2)))


def median_squared_score(residuals: np.ndarray, threshold: float = 0.0) -> float:
    """Median of squared residuals (threshold unused)."""
    return float(np.median(residuals ** 2))


_RANSAC_STRATEGY = ScoringStrategy(
    score=inlier_count_score,
    higher_is_better=True,
    uses_threshold=True,
    median_based=False,
    progressive=False,
    adaptive_stopping=True,
)

_MEDIAN_STRATEGY = ScoringStrategy(
    score=median_squared_score,
    higher_is_better=False,
    uses_threshold=False,
    median_based=True,
    progressive=False,
    adaptive_stopping=False,
)

STRATEGIES = {
    AlgorithmKind.RANSAC: _RANSAC_STRATEGY,
    AlgorithmKind.LMEDS: _MEDIAN_STRATEGY,
    AlgorithmKind.MSAC: ScoringStrategy(
        score=truncated_quadratic_score,
        higher_is_better=False,
        uses_threshold=True,
        median_based=False,
        progressive=False,
        adaptive_stopping=True,
    ),
    AlgorithmKind.PROSAC: ScoringStrategy(
        score=inlier_count_score,
        higher_is_better=True,
        uses_threshold=True,
        median_based=False,
        progressive=True,
        adaptive_stopping=True,
    ),
    AlgorithmKind.PROMEDS: ScoringStrategy(
        score=median_squared_score,
        higher_is_better=False,
        uses_threshold=False,
        median_based=True,
        progressive=True,
        adaptive_stopping=False,
    ),
}


def get_strategy(method) -> ScoringStrategy:
    """Look up the scoring strategy of a robust method."""
    return STRATEGIES[AlgorithmKind.parse(method)]


def compute_residuals(candidate: np.ndarray, positions: np.ndarray, distances: np.ndarray) -> np.ndarray:
    """
    Signed range residuals of a candidate against every reading.

    Args:
        candidate: Candidate position (dims,)
        positions: (N, dims) source positions
        distances: (N,) measured distances

    Returns:
        (N,) residuals ||candidate - p_i|| - d_i
    """
    return np.linalg.norm(positions - candidate, axis=1) - distances


def median_inlier_threshold(
    median_squared: float,
    num_readings: int,
    subset_size: int,
    inlier_factor: float,
) -> float:
    """
    Robust inlier threshold derived from the median squared residual.

    τ̂ = inlier_factor · 1.4826 · (1 + 5 / (n - m)) · sqrt(median)

    The small-sample correction uses max(n - m, 1) when n == m.
    """
    correction = 1.0 + 5.0 / max(num_readings - subset_size, 1)
    return inlier_factor * MAD_TO_STD * correction * math.sqrt(max(median_squared, 0.0))


def required_iterations(confidence: float, inlier_ratio: float, subset_size: int) -> float:
    """
    Iterations needed to draw an all-inlier subset with the given confidence.

    k = log(1 - confidence) / log(1 - w^m)

    Returns:
        0 when every reading is an inlier, inf when none is
    """
    if inlier_ratio <= 0.0:
        return math.inf

    outlier_free = inlier_ratio ** subset_size
    if outlier_free >= 1.0:
        return 0.0

    denominator = math.log(1.0 - outlier_free)
    if denominator == 0.0:
        return math.inf

    return math.log(1.0 - confidence) / denominator
