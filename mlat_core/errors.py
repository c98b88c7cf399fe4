"""
Error taxonomy for robust position estimation.

Surfaced to callers:
- NotReadyError: estimate() called without enough resolvable readings
- LockedError: configuration change attempted during estimate()
- EstimationFailedError: no candidate ever met the minimum-inlier bar

Internal (caught by the engine, counted as drop reasons):
- DegenerateSubsetError: collinear/coplanar subset, unsolvable
- SolverConvergenceError: nonlinear solve did not converge
"""

from typing import Optional


class PositioningError(Exception):
    """Base class for all position estimation errors."""


class NotReadyError(PositioningError):
    """Estimator is not ready (sources/fingerprint missing or too few readings)."""

    def __init__(self, message: str, resolvable_readings: int = 0, min_required: int = 0):
        super().__init__(message)
        self.resolvable_readings = resolvable_readings
        self.min_required = min_required


class LockedError(PositioningError):
    """Mutation attempted while an estimation is in progress."""


class DegenerateSubsetError(PositioningError):
    """Source positions are rank-deficient (collinear in 2D, coplanar in 3D)."""


class SolverConvergenceError(PositioningError):
    """Nonlinear least squares failed to converge within its iteration budget."""

    def __init__(self, message: str, iterations: int = 0):
        super().__init__(message)
        self.iterations = iterations


class EstimationFailedError(PositioningError):
    """
    Robust estimation reached the failed state.

    Attributes:
        iterations: Number of iterations attempted
        best_inlier_count: Largest inlier count seen for any solved candidate
            (None if no candidate could be solved at all)
    """

    def __init__(
        self,
        message: str,
        iterations: int = 0,
        best_inlier_count: Optional[int] = None,
    ):
        super().__init__(
            f"{message} (iterations={iterations}, "
            f"best_inlier_count={best_inlier_count})"
        )
        self.iterations = iterations
        self.best_inlier_count = best_inlier_count
