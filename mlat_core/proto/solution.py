"""
Position Solution Output Schema.

Defines the result published by a successful robust estimation.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from mlat_core.proto.point import Point


@dataclass(frozen=True, eq=False)
class Solution:
    """
    Robust position estimate.

    Attributes:
        position: Estimated position (Point2D or Point3D)
        covariance: Position covariance (dims x dims, m²), if kept
        inlier_count: Number of readings classified as inliers
        iterations_used: Sampling iterations performed
        final_cost: Weighted sum of squared residuals of the published position
            over the inliers
        method: Name of the robust method used (e.g. "RANSAC")
        inliers: Inlier flags aligned with the fingerprint readings
            (unresolvable readings are always False)
        residuals: Signed residuals (m) of the best sampled candidate, aligned
            with the fingerprint readings (nan for unresolvable readings)
        refined: True if the position comes from the final inlier refinement
        low_confidence: True if refinement failed and the best unrefined
            sampled candidate was published instead
        inlier_threshold: Threshold (m) used to classify inliers

    Notes:
        - A new Solution is created for every successful estimate; it is
          never mutated afterwards
    """

    position: Point
    covariance: Optional[np.ndarray]
    inlier_count: int
    iterations_used: int
    final_cost: float
    method: str
    inliers: Tuple[bool, ...] = ()
    residuals: Tuple[float, ...] = ()
    refined: bool = False
    low_confidence: bool = False
    inlier_threshold: Optional[float] = None

    def __post_init__(self):
        """Validate solution."""
        if self.inlier_count < 0:
            raise ValueError(f"Inlier count cannot be negative: {self.inlier_count}")

        if self.iterations_used < 0:
            raise ValueError(f"Iterations cannot be negative: {self.iterations_used}")

        if self.covariance is not None:
            cov = np.array(self.covariance, dtype=float)
            cov.setflags(write=False)
            object.__setattr__(self, 'covariance', cov)

    @property
    def dims(self) -> int:
        return self.position.dims

    @property
    def position_std(self) -> Optional[Tuple[float, ...]]:
        """Per-axis position standard deviation (m), if covariance is kept."""
        if self.covariance is None:
            return None
        return tuple(float(np.sqrt(max(v, 0.0))) for v in np.diag(self.covariance))

    @property
    def inlier_ratio(self) -> float:
        """Fraction of fingerprint readings classified as inliers."""
        if not self.inliers:
            return 0.0
        return self.inlier_count / len(self.inliers)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'position': self.position.as_tuple(),
            'covariance': None if self.covariance is None else self.covariance.tolist(),
            'inlier_count': self.inlier_count,
            'iterations_used': self.iterations_used,
            'final_cost': self.final_cost,
            'method': self.method,
            'inliers': list(self.inliers),
            'refined': self.refined,
            'low_confidence': self.low_confidence,
            'inlier_threshold': self.inlier_threshold,
        }
