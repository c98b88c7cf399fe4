"""
Trilateration Solver (N-source weighted multilateration).

Solves a position from distances to N >= dims + 1 known positions by
minimizing the weighted sum of squared range residuals:

    J(x) = Σ_i w_i (||x - p_i|| - d_i)²,    w_i = q_i / σ_i²

where σ_i is the distance standard deviation and q_i an optional quality
weight normalised to (0, 1].

Two solvers:
- solve_linear(): closed-form least squares on differenced sphere equations,
  used only as a fast initial guess (accepts N >= dims)
- solve(): damped Gauss-Newton (Levenberg-Marquardt) refinement, returns the
  position and its covariance (Jᵀ W J)⁻¹

Both are pure functions of their inputs.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence
import logging

import numpy as np

from mlat_core.config import SOLVER_CONFIG
from mlat_core.errors import DegenerateSubsetError, SolverConvergenceError
from mlat_core.metrics import get_metrics

logger = logging.getLogger(__name__)

# Ranges below this are treated as zero when building the Jacobian
_MIN_RANGE = 1e-12
_MAX_DAMPING = 1e16


@dataclass
class SolverConfig:
    """
    Configuration for the nonlinear trilateration solver.

    Attributes:
        max_iterations: Maximum Levenberg-Marquardt iterations
        tolerance: Relative step / cost-decrease convergence threshold
        initial_damping: Initial damping factor (lambda)
        degeneracy_tolerance: Minimum ratio between the smallest and largest
            singular values of the centered source geometry
    """

    max_iterations: int = SOLVER_CONFIG["max_iterations"]
    tolerance: float = SOLVER_CONFIG["tolerance"]
    initial_damping: float = SOLVER_CONFIG["initial_damping"]
    degeneracy_tolerance: float = SOLVER_CONFIG["degeneracy_tolerance"]

    def __post_init__(self):
        """Validate solver configuration."""
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1: {self.max_iterations}")
        if self.tolerance <= 0:
            raise ValueError(f"tolerance must be positive: {self.tolerance}")
        if self.initial_damping <= 0:
            raise ValueError(f"initial_damping must be positive: {self.initial_damping}")
        if self.degeneracy_tolerance <= 0:
            raise ValueError(
                f"degeneracy_tolerance must be positive: {self.degeneracy_tolerance}"
            )


@dataclass
class TrilaterationResult:
    """
    Result of a nonlinear trilateration solve.

    Attributes:
        position: Estimated position (dims,)
        covariance: Position covariance (dims, dims)
        cost: Weighted sum of squared residuals at the solution
        iterations: Iterations used
    """

    position: np.ndarray
    covariance: np.ndarray = field(repr=False)
    cost: float
    iterations: int


class TrilaterationSolver:
    """
    Weighted nonlinear trilateration for 2D or 3D positions.

    Usage:
        solver = TrilaterationSolver(dims=3)

        result = solver.solve(positions, distances, distance_stds)
        print(result.position, result.covariance)

    Raises (from solve):
        DegenerateSubsetError: collinear (2D) / coplanar (3D) positions
        SolverConvergenceError: no convergence within max_iterations
    """

    def __init__(self, dims: int, config: Optional[SolverConfig] = None):
        """
        Initialize solver.

        Args:
            dims: Number of dimensions (2 or 3)
            config: Solver configuration (uses defaults if None)
        """
        if dims not in (2, 3):
            raise ValueError(f"dims must be 2 or 3: {dims}")

        self.dims = dims
        self.config = config or SolverConfig()
        self.metrics = get_metrics()

    @property
    def min_required(self) -> int:
        """Minimum number of positions for the nonlinear solver."""
        return self.dims + 1

    @property
    def min_required_linear(self) -> int:
        """Minimum number of positions for the closed-form initial guess."""
        return self.dims

    def is_degenerate(self, positions) -> bool:
        """
        Check whether positions are rank-deficient.

        Positions spanning fewer than dims affine directions (collinear in 2D,
        coplanar in 3D) do not determine a unique position.
        """
        points = self._as_positions(positions)
        if points.shape[0] < self.dims + 1:
            return True

        centered = points - points.mean(axis=0)
        singular_values = np.linalg.svd(centered, compute_uv=False)
        if singular_values[0] <= 0.0:
            return True

        return singular_values[self.dims - 1] <= (
            self.config.degeneracy_tolerance * singular_values[0]
        )

    def solve_linear(self, positions, distances) -> np.ndarray:
        """
        Closed-form position from differenced sphere equations.

        Subtracting the first sphere equation from the others gives the
        linear system 2 (p_i - p_0)·x = |p_i|² - |p_0|² - d_i² + d_0².

        Args:
            positions: (N, dims) known positions, N >= dims
            distances: (N,) measured distances

        Returns:
            Position estimate (dims,); minimum-norm when underdetermined
        """
        points = self._as_positions(positions)
        ranges = np.asarray(distances, dtype=float)
        self._check_sizes(points, ranges, self.min_required_linear)

        p0 = points[0]
        A = 2.0 * (points[1:] - p0)
        b = (
            np.sum(points[1:] ** 2, axis=1) - np.dot(p0, p0)
            - ranges[1:] ** 2 + ranges[0] ** 2
        )

        return np.linalg.lstsq(A, b, rcond=None)[0]

    def solve(
        self,
        positions,
        distances,
        distance_stds: Optional[Sequence[float]] = None,
        quality_scores: Optional[Sequence[float]] = None,
        initial_position: Optional[Sequence[float]] = None,
    ) -> TrilaterationResult:
        """
        Solve position by weighted nonlinear least squares.

        Args:
            positions: (N, dims) known positions, N >= dims + 1
            distances: (N,) measured distances (m)
            distance_stds: (N,) distance standard deviations (m), 1 if None
            quality_scores: (N,) quality scores (higher is better), optional
            initial_position: Initial guess; closed-form solution if None

        Returns:
            TrilaterationResult with position and covariance
        """
        points = self._as_positions(positions)
        ranges = np.asarray(distances, dtype=float)
        self._check_sizes(points, ranges, self.min_required)

        self.metrics.increment('trilateration_solves')

        if self.is_degenerate(points):
            self.metrics.increment('trilateration_failures')
            raise DegenerateSubsetError(
                f"{points.shape[0]} positions are rank-deficient in {self.dims}D"
            )

        weights = self._compute_weights(ranges.size, distance_stds, quality_scores)

        if initial_position is not None:
            x = np.array(initial_position, dtype=float).reshape(self.dims)
        else:
            x = self.solve_linear(points, ranges)

        try:
            x, cost, iterations = self._levenberg_marquardt(points, ranges, weights, x)
        except SolverConvergenceError:
            self.metrics.increment('trilateration_failures')
            raise

        covariance = self._compute_covariance(points, weights, x)

        self.metrics.record_histogram('solver_iterations', iterations)

        return TrilaterationResult(
            position=x,
            covariance=covariance,
            cost=cost,
            iterations=iterations,
        )

    def _levenberg_marquardt(
        self,
        points: np.ndarray,
        ranges: np.ndarray,
        weights: np.ndarray,
        x: np.ndarray,
    ):
        """
        Levenberg-Marquardt iteration with Marquardt diagonal scaling.

        Returns:
            Tuple of (position, cost, iterations)
        """
        tol = self.config.tolerance
        damping = self.config.initial_damping
        sqrt_w = np.sqrt(weights)

        if not np.all(np.isfinite(x)):
            raise SolverConvergenceError("initial position is not finite", 0)

        residuals, jacobian = self._residuals_and_jacobian(points, ranges, x)
        cost = float(np.sum(weights * residuals ** 2))

        for iteration in range(1, self.config.max_iterations + 1):
            if cost == 0.0:
                return x, cost, iteration

            jw = jacobian * sqrt_w[:, None]
            rw = residuals * sqrt_w
            JTJ = jw.T @ jw
            JTr = jw.T @ rw

            if not np.any(JTr):
                return x, cost, iteration

            scale = np.diag(JTJ).copy()
            scale[scale <= 0.0] = 1.0

            try:
                delta_x = np.linalg.solve(JTJ + damping * np.diag(scale), -JTr)
            except np.linalg.LinAlgError:
                delta_x = np.linalg.lstsq(JTJ + damping * np.diag(scale), -JTr, rcond=None)[0]

            step_norm = np.linalg.norm(delta_x)
            small_step = step_norm <= tol * (np.linalg.norm(x) + tol)

            x_new = x + delta_x
            residuals_new, jacobian_new = self._residuals_and_jacobian(points, ranges, x_new)
            cost_new = float(np.sum(weights * residuals_new ** 2))

            if np.isfinite(cost_new) and cost_new < cost:
                decrease = (cost - cost_new) / cost
                x, residuals, jacobian, cost = x_new, residuals_new, jacobian_new, cost_new
                damping = max(damping / 10.0, 1e-15)

                if small_step or decrease <= tol:
                    return x, cost, iteration
            else:
                # Cannot improve any further from here
                if small_step:
                    return x, cost, iteration

                damping *= 10.0
                if damping > _MAX_DAMPING:
                    break

        raise SolverConvergenceError(
            f"no convergence after {self.config.max_iterations} iterations "
            f"(cost={cost:.3e})",
            self.config.max_iterations,
        )

    def _compute_covariance(
        self,
        points: np.ndarray,
        weights: np.ndarray,
        x: np.ndarray,
    ) -> np.ndarray:
        """Position covariance (Jᵀ W J)⁻¹ at the solution."""
        _, jacobian = self._residuals_and_jacobian(points, np.zeros(points.shape[0]), x)
        information = jacobian.T @ (jacobian * weights[:, None])

        try:
            return np.linalg.inv(information)
        except np.linalg.LinAlgError:
            logger.debug("Singular information matrix, using pseudo-inverse")
            return np.linalg.pinv(information)

    def _residuals_and_jacobian(
        self,
        points: np.ndarray,
        ranges: np.ndarray,
        x: np.ndarray,
    ):
        """Range residuals (computed - measured) and their Jacobian wrt x."""
        diff = x - points
        computed = np.linalg.norm(diff, axis=1)

        residuals = computed - ranges

        jacobian = np.zeros_like(diff)
        nonzero = computed > _MIN_RANGE
        jacobian[nonzero] = diff[nonzero] / computed[nonzero, None]

        return residuals, jacobian

    def _compute_weights(
        self,
        count: int,
        distance_stds: Optional[Sequence[float]],
        quality_scores: Optional[Sequence[float]],
    ) -> np.ndarray:
        """Per-reading weights q_i / σ_i²."""
        if distance_stds is None:
            weights = np.ones(count)
        else:
            stds = np.asarray(distance_stds, dtype=float)
            if stds.shape != (count,):
                raise ValueError(f"Expected {count} standard deviations, got {stds.shape}")
            if np.any(stds <= 0):
                raise ValueError("Standard deviations must be strictly positive")
            weights = 1.0 / stds ** 2

        if quality_scores is not None:
            weights = weights * normalize_quality_scores(quality_scores, count)

        return weights

    def _as_positions(self, positions) -> np.ndarray:
        """Convert a sequence of points / arrays to an (N, dims) array."""
        if isinstance(positions, np.ndarray):
            points = positions.astype(float, copy=False)
        else:
            points = np.array(
                [p.to_array() if hasattr(p, 'to_array') else p for p in positions],
                dtype=float,
            )

        if points.ndim != 2 or points.shape[1] != self.dims:
            raise ValueError(
                f"Positions must have shape (N, {self.dims}), got {points.shape}"
            )
        return points

    @staticmethod
    def _check_sizes(points: np.ndarray, ranges: np.ndarray, min_required: int):
        if ranges.shape != (points.shape[0],):
            raise ValueError(
                f"positions ({points.shape[0]}) and distances ({ranges.shape}) differ in length"
            )
        if points.shape[0] < min_required:
            raise ValueError(
                f"At least {min_required} positions required, got {points.shape[0]}"
            )


def normalize_quality_scores(quality_scores: Sequence[float], count: int) -> np.ndarray:
    """
    Map quality scores to weights in (0, 1].

    Scores are shifted so the worst maps to 1 and then divided by the best,
    so equal scores give uniform weights.
    """
    scores = np.asarray(quality_scores, dtype=float)
    if scores.shape != (count,):
        raise ValueError(f"Expected {count} quality scores, got {scores.shape}")

    shifted = scores - scores.min() + 1.0
    return shifted / shifted.max()
