"""
Robust Estimator Engine.

Orchestrates one robust position estimation:

    sample minimal subset -> solve -> score against all readings
        -> keep if strictly better (ties go to the tighter inlier set)
        -> iterate until stop rule
    then refine once with every inlier of the best candidate

States: IDLE -> RUNNING -> {SUCCEEDED, FAILED}

Stop rules:
- RANSAC / MSAC / PROSAC: confidence-based bound
  k = log(1 - confidence) / log(1 - w^m), recomputed after each improvement
- LMedS / PROMedS: early exit once the robust residual estimate of the best
  candidate falls below stop_threshold
- Always bounded by max_iterations
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence
import logging
import math
import numbers

import numpy as np

from mlat_core.config import ROBUST_ESTIMATOR_CONFIG
from mlat_core.errors import (
    DegenerateSubsetError,
    EstimationFailedError,
    SolverConvergenceError,
)
from mlat_core.localization.sampling import create_sampler
from mlat_core.localization.scoring import (
    AlgorithmKind,
    compute_residuals,
    get_strategy,
    median_inlier_threshold,
    required_iterations,
)
from mlat_core.localization.trilateration_solver import TrilaterationSolver
from mlat_core.metrics import get_metrics

logger = logging.getLogger(__name__)


class EngineState(Enum):
    """Lifecycle state of a robust estimation run."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RobustEstimatorConfig:
    """
    Configuration for robust position estimation.

    Attributes:
        method: Robust method (RANSAC, LMedS, MSAC, PROSAC, PROMedS)
        threshold: Inlier residual threshold τ (m), RANSAC/MSAC/PROSAC
        stop_threshold: Early-exit threshold (m), LMedS/PROMedS
        confidence: Desired probability of an outlier-free subset, in (0, 1)
        max_iterations: Maximum sampling iterations
        progress_delta: Progress fraction between progress notifications
        inlier_factor: Multiplier on the LMedS robust std estimate
        max_degenerate_retries: Redraws allowed for a degenerate subset
        refine_result: Refine the best candidate with all its inliers
        keep_covariance: Publish the position covariance
        min_inliers: Minimum inliers to accept a candidate (None = Nmin)
        min_inlier_ratio: Minimum inlier fraction to accept a candidate
    """

    method: AlgorithmKind = AlgorithmKind.RANSAC
    threshold: float = ROBUST_ESTIMATOR_CONFIG["threshold"]
    stop_threshold: float = ROBUST_ESTIMATOR_CONFIG["stop_threshold"]
    confidence: float = ROBUST_ESTIMATOR_CONFIG["confidence"]
    max_iterations: int = ROBUST_ESTIMATOR_CONFIG["max_iterations"]
    progress_delta: float = ROBUST_ESTIMATOR_CONFIG["progress_delta"]
    inlier_factor: float = ROBUST_ESTIMATOR_CONFIG["inlier_factor"]
    max_degenerate_retries: int = ROBUST_ESTIMATOR_CONFIG["max_degenerate_retries"]
    refine_result: bool = ROBUST_ESTIMATOR_CONFIG["refine_result"]
    keep_covariance: bool = ROBUST_ESTIMATOR_CONFIG["keep_covariance"]
    min_inliers: Optional[int] = None
    min_inlier_ratio: float = ROBUST_ESTIMATOR_CONFIG["min_inlier_ratio"]

    def __post_init__(self):
        """Validate configuration."""
        self.method = AlgorithmKind.parse(self.method)
        validate_parameter('threshold', self.threshold)
        validate_parameter('stop_threshold', self.stop_threshold)
        validate_parameter('confidence', self.confidence)
        validate_parameter('max_iterations', self.max_iterations)
        validate_parameter('progress_delta', self.progress_delta)
        validate_parameter('inlier_factor', self.inlier_factor)
        validate_parameter('max_degenerate_retries', self.max_degenerate_retries)
        validate_parameter('min_inliers', self.min_inliers)
        validate_parameter('min_inlier_ratio', self.min_inlier_ratio)


def _is_integer(value) -> bool:
    # bool is an Integral subclass but not a count
    return isinstance(value, numbers.Integral) and not isinstance(value, bool)


def validate_parameter(name: str, value):
    """
    Validate a single robust estimator parameter.

    Raises:
        ValueError: If the value is out of range
    """
    if name in ('threshold', 'stop_threshold', 'inlier_factor'):
        if not value > 0:
            raise ValueError(f"{name} must be positive: {value}")
    elif name == 'confidence':
        if not 0.0 < value < 1.0:
            raise ValueError(f"confidence must be in (0, 1): {value}")
    elif name == 'max_iterations':
        if not _is_integer(value) or value < 1:
            raise ValueError(f"max_iterations must be a positive integer: {value!r}")
    elif name == 'progress_delta':
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"progress_delta must be in [0, 1]: {value}")
    elif name == 'max_degenerate_retries':
        if not _is_integer(value) or value < 0:
            raise ValueError(
                f"max_degenerate_retries must be a non-negative integer: {value!r}"
            )
    elif name == 'min_inliers':
        if value is not None and (not _is_integer(value) or value < 1):
            raise ValueError(f"min_inliers must be a positive integer: {value!r}")
    elif name == 'min_inlier_ratio':
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"min_inlier_ratio must be in [0, 1]: {value}")


@dataclass
class EngineHooks:
    """
    Optional callbacks invoked synchronously during a run.

    Attributes:
        on_next_iteration: f(iteration)
        on_solution_improved: f(iteration, score, inlier_count)
        on_progress: f(progress) with progress in [0, 1]
    """

    on_next_iteration: Optional[Callable[[int], None]] = None
    on_solution_improved: Optional[Callable[[int, float, int], None]] = None
    on_progress: Optional[Callable[[float], None]] = None


@dataclass
class _Candidate:
    """Best-so-far sampled candidate."""

    position: np.ndarray
    covariance: np.ndarray
    score: float
    residuals: np.ndarray
    inliers: np.ndarray
    inlier_threshold: float
    robust_threshold: Optional[float] = None

    @property
    def inlier_count(self) -> int:
        return int(np.count_nonzero(self.inliers))

    @property
    def inlier_cost(self) -> float:
        """Sum of squared residuals over the inliers."""
        return float(np.sum(self.residuals[self.inliers] ** 2))


@dataclass
class EngineResult:
    """
    Outcome of a successful run.

    Attributes:
        position: Published position (dims,)
        covariance: Position covariance or None
        inliers: (N,) inlier mask over the engine's readings
        residuals: (N,) residuals of the best sampled candidate
        iterations: Iterations performed
        best_score: Score of the best sampled candidate
        final_cost: Weighted squared residual sum over inliers at position
        inlier_threshold: Threshold used to classify inliers (m)
        refined: True if the position comes from the inlier refinement
        low_confidence: True if refinement failed
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    inliers: np.ndarray = field(repr=False)
    residuals: np.ndarray = field(repr=False)
    iterations: int
    best_score: float
    final_cost: float
    inlier_threshold: float
    refined: bool
    low_confidence: bool

    @property
    def inlier_count(self) -> int:
        return int(np.count_nonzero(self.inliers))


class RobustEstimatorEngine:
    """
    One engine, many strategies: runs any AlgorithmKind over resolved readings.

    Usage:
        engine = RobustEstimatorEngine(TrilaterationSolver(3), config)
        result = engine.run(positions, distances, stds, rng=rng)

    The engine holds no reference to the inputs after run() returns.
    """

    def __init__(
        self,
        solver: TrilaterationSolver,
        config: Optional[RobustEstimatorConfig] = None,
    ):
        """
        Initialize engine.

        Args:
            solver: Trilateration solver (defines dims and Nmin)
            config: Robust configuration (uses defaults if None)
        """
        self.solver = solver
        self.config = config or RobustEstimatorConfig()
        self.metrics = get_metrics()
        self.state = EngineState.IDLE

    @property
    def subset_size(self) -> int:
        """Minimal subset size Nmin."""
        return self.solver.min_required

    def run(
        self,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_stds: np.ndarray,
        quality_scores: Optional[Sequence[float]] = None,
        rng: Optional[np.random.Generator] = None,
        hooks: Optional[EngineHooks] = None,
    ) -> EngineResult:
        """
        Run robust estimation.

        Args:
            positions: (N, dims) source positions of the resolvable readings
            distances: (N,) measured distances
            distance_stds: (N,) strictly positive distance stds
            quality_scores: (N,) reading quality, used by progressive methods
            rng: Random generator (new unseeded generator if None)
            hooks: Optional progress/diagnostic callbacks

        Returns:
            EngineResult

        Raises:
            EstimationFailedError: If no candidate met the inlier requirement
        """
        config = self.config
        strategy = get_strategy(config.method)
        hooks = hooks or EngineHooks()
        rng = rng if rng is not None else np.random.default_rng()

        n = distances.shape[0]
        m = self.subset_size
        max_iterations = int(config.max_iterations)

        self.state = EngineState.RUNNING
        self.metrics.increment('robust_estimate_attempts')
        logger.debug(
            "Robust %s run: %d readings, subset size %d", config.method.value, n, m
        )

        if not strategy.progressive:
            quality_scores = None

        min_inliers = max(
            config.min_inliers if config.min_inliers is not None else m,
            int(math.ceil(config.min_inlier_ratio * n)),
        )

        sampler = create_sampler(
            strategy.progressive,
            n,
            m,
            rng,
            quality_scores=quality_scores,
            max_iterations=max_iterations,
            max_retries=config.max_degenerate_retries,
        )

        def is_degenerate(subset: np.ndarray) -> bool:
            return self.solver.is_degenerate(positions[subset])

        best: Optional[_Candidate] = None
        best_inlier_count_seen: Optional[int] = None
        iteration_limit = float(max_iterations)
        iterations = 0
        last_progress = 0.0

        while iterations < min(iteration_limit, max_iterations):
            iterations += 1
            if hooks.on_next_iteration is not None:
                hooks.on_next_iteration(iterations)

            candidate = self._evaluate_subset(
                sampler.sample(iterations, is_degenerate),
                positions, distances, distance_stds, quality_scores,
                strategy, n, m,
            )

            if candidate is not None:
                count = candidate.inlier_count
                if best_inlier_count_seen is None or count > best_inlier_count_seen:
                    best_inlier_count_seen = count

                if count < min_inliers:
                    self.metrics.increment_drop('below_min_inliers')
                elif strategy.is_better(
                    candidate.score,
                    best.score if best else None,
                    candidate.inlier_cost,
                    best.inlier_cost if best else None,
                ):
                    best = candidate
                    if hooks.on_solution_improved is not None:
                        hooks.on_solution_improved(iterations, candidate.score, count)

                    if strategy.adaptive_stopping:
                        iteration_limit = required_iterations(
                            config.confidence, count / n, m
                        )

                    if (
                        strategy.median_based
                        and candidate.robust_threshold < config.stop_threshold
                    ):
                        logger.debug(
                            "Early exit at iteration %d (robust threshold %.3e)",
                            iterations, candidate.robust_threshold,
                        )
                        break

            progress = iterations / max(1.0, min(iteration_limit, max_iterations))
            if hooks.on_progress is not None and progress - last_progress >= config.progress_delta:
                last_progress = min(progress, 1.0)
                hooks.on_progress(last_progress)

        if hooks.on_progress is not None and last_progress < 1.0:
            hooks.on_progress(1.0)

        if best is None:
            self.state = EngineState.FAILED
            self.metrics.increment('robust_estimate_failed')
            self.metrics.increment_drop('estimation_failed')
            logger.warning(
                "Robust %s estimation failed after %d iterations "
                "(best inlier count %s, required %d)",
                config.method.value, iterations, best_inlier_count_seen, min_inliers,
            )
            raise EstimationFailedError(
                f"No candidate reached {min_inliers} inliers",
                iterations=iterations,
                best_inlier_count=best_inlier_count_seen,
            )

        result = self._finish(best, positions, distances, distance_stds, quality_scores, iterations)

        self.state = EngineState.SUCCEEDED
        self.metrics.increment('robust_estimate_success')
        self.metrics.record_histogram('robust_iterations', iterations)
        self.metrics.record_histogram('robust_inlier_ratio', result.inlier_count / n)

        return result

    def _evaluate_subset(
        self,
        subset: Optional[np.ndarray],
        positions: np.ndarray,
        distances: np.ndarray,
        distance_stds: np.ndarray,
        quality_scores: Optional[Sequence[float]],
        strategy,
        n: int,
        m: int,
    ) -> Optional[_Candidate]:
        """Solve a minimal subset and score it against every reading."""
        if subset is None:
            # Counted as a used iteration
            return None

        qualities = None
        if quality_scores is not None:
            qualities = np.asarray(quality_scores, dtype=float)[subset]

        try:
            solved = self.solver.solve(
                positions[subset],
                distances[subset],
                distance_stds[subset],
                qualities,
            )
        except DegenerateSubsetError:
            self.metrics.increment_drop('degenerate_subset')
            return None
        except SolverConvergenceError as e:
            self.metrics.increment_drop('solver_failed')
            logger.debug("Rejected subset %s: %s", subset.tolist(), e)
            return None

        residuals = compute_residuals(solved.position, positions, distances)
        score = strategy.score(residuals, self.config.threshold)

        robust_threshold = None
        if strategy.median_based:
            robust_threshold = median_inlier_threshold(
                score, n, m, self.config.inlier_factor
            )
            inlier_threshold = max(robust_threshold, self.config.stop_threshold)
        else:
            inlier_threshold = self.config.threshold

        return _Candidate(
            position=solved.position,
            covariance=solved.covariance,
            score=score,
            residuals=residuals,
            inliers=np.abs(residuals) < inlier_threshold,
            inlier_threshold=inlier_threshold,
            robust_threshold=robust_threshold,
        )

    def _finish(
        self,
        best: _Candidate,
        positions: np.ndarray,
        distances: np.ndarray,
        distance_stds: np.ndarray,
        quality_scores: Optional[Sequence[float]],
        iterations: int,
    ) -> EngineResult:
        """Refine the best candidate with all of its inliers."""
        position = best.position
        covariance = best.covariance
        refined = False
        low_confidence = False

        inlier_idx = np.flatnonzero(best.inliers)

        if self.config.refine_result:
            qualities = None
            if quality_scores is not None:
                qualities = np.asarray(quality_scores, dtype=float)[inlier_idx]

            try:
                if inlier_idx.size < self.subset_size:
                    raise DegenerateSubsetError(
                        f"only {inlier_idx.size} inliers for refinement"
                    )
                solved = self.solver.solve(
                    positions[inlier_idx],
                    distances[inlier_idx],
                    distance_stds[inlier_idx],
                    qualities,
                    initial_position=best.position,
                )
                position = solved.position
                covariance = solved.covariance
                refined = True
            except (DegenerateSubsetError, SolverConvergenceError) as e:
                self.metrics.increment_drop('refine_failed')
                logger.warning("Inlier refinement failed, keeping best sample: %s", e)
                low_confidence = True

        final_residuals = compute_residuals(
            position, positions[inlier_idx], distances[inlier_idx]
        )
        final_cost = float(np.sum((final_residuals / distance_stds[inlier_idx]) ** 2))

        return EngineResult(
            position=np.array(position, dtype=float),
            covariance=covariance if self.config.keep_covariance else None,
            inliers=best.inliers.copy(),
            residuals=best.residuals.copy(),
            iterations=iterations,
            best_score=best.score,
            final_cost=final_cost,
            inlier_threshold=best.inlier_threshold,
            refined=refined,
            low_confidence=low_confidence,
        )
