"""
Robust Position Estimator Facade.

Binds a dimensionality (2D/3D) and a reading type (ranging or RSSI) to the
robust engine, and owns the configuration, the listener and the lock.

Usage:
    estimator = RobustRangingPositionEstimator(
        dims=3,
        method=AlgorithmKind.PROSAC,
        sources=located_sources,
        fingerprint=fingerprint,
        source_quality_scores=scores,
    )
    estimator.threshold = 0.05
    estimator.random_generator = np.random.default_rng(42)

    if estimator.is_ready:
        solution = estimator.estimate()
        print(solution.position, solution.inlier_count)

Threading: single-threaded and non-reentrant. The locked flag is a plain
boolean; callers must not share an estimator between threads, and must not
mutate the sources or fingerprint while estimate() runs (they are not copied).
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple
import logging
import math

import numpy as np

from mlat_core.config import ROBUST_ESTIMATOR_CONFIG
from mlat_core.errors import LockedError, NotReadyError
from mlat_core.localization.robust_engine import (
    EngineHooks,
    EngineState,
    RobustEstimatorConfig,
    RobustEstimatorEngine,
    validate_parameter,
)
from mlat_core.localization.scoring import AlgorithmKind
from mlat_core.localization.trilateration_solver import SolverConfig, TrilaterationSolver
from mlat_core.metrics import get_metrics
from mlat_core.proto.point import point_from_array
from mlat_core.proto.radio_source import LocatedRadioSource
from mlat_core.proto.reading import (
    Fingerprint,
    RangingReading,
    RssiReading,
    index_sources,
)
from mlat_core.proto.solution import Solution

logger = logging.getLogger(__name__)

DistanceConverter = Callable[[RssiReading, LocatedRadioSource], Tuple[float, Optional[float]]]


@dataclass
class EstimatorListener:
    """
    Optional callbacks for estimation events.

    All callbacks are invoked synchronously on the calling thread; a missing
    callback is a no-op.

    Attributes:
        on_estimate_start: f(estimator)
        on_estimate_end: f(estimator), after a successful estimate
        on_next_iteration: f(estimator, iteration)
        on_solution_improved: f(estimator, iteration, score, inlier_count)
        on_progress: f(estimator, progress) with progress in [0, 1]
    """

    on_estimate_start: Optional[Callable] = None
    on_estimate_end: Optional[Callable] = None
    on_next_iteration: Optional[Callable] = None
    on_solution_improved: Optional[Callable] = None
    on_progress: Optional[Callable] = None


class _ConfigParameter:
    """Property backed by a RobustEstimatorConfig field, rejected while locked."""

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self
        return getattr(obj._config, self.name)

    def __set__(self, obj, value):
        obj._check_unlocked()
        validate_parameter(self.name, value)
        setattr(obj._config, self.name, value)


class RobustPositionEstimator:
    """
    Base robust position estimator.

    Subclasses define how a reading becomes a (distance, std) pair through
    _reading_distance() and which reading type they accept.
    """

    READING_TYPE = RangingReading

    threshold = _ConfigParameter()
    stop_threshold = _ConfigParameter()
    confidence = _ConfigParameter()
    max_iterations = _ConfigParameter()
    progress_delta = _ConfigParameter()
    inlier_factor = _ConfigParameter()
    max_degenerate_retries = _ConfigParameter()
    refine_result = _ConfigParameter()
    keep_covariance = _ConfigParameter()
    min_inliers = _ConfigParameter()
    min_inlier_ratio = _ConfigParameter()

    def __init__(
        self,
        dims: int = 3,
        method=AlgorithmKind.RANSAC,
        sources: Optional[Sequence[LocatedRadioSource]] = None,
        fingerprint: Optional[Fingerprint] = None,
        listener: Optional[EstimatorListener] = None,
        source_quality_scores: Optional[Sequence[float]] = None,
        reading_quality_scores: Optional[Sequence[float]] = None,
        config: Optional[RobustEstimatorConfig] = None,
        solver_config: Optional[SolverConfig] = None,
        random_generator: Optional[np.random.Generator] = None,
    ):
        """
        Initialize estimator.

        Args:
            dims: Number of dimensions (2 or 3)
            method: Robust method (ignored if config is given)
            sources: Located radio sources
            fingerprint: Readings at the unknown position
            listener: Optional event callbacks
            source_quality_scores: Quality per source (aligned with sources)
            reading_quality_scores: Quality per reading (aligned with fingerprint)
            config: Robust configuration (defaults if None)
            solver_config: Trilateration solver configuration
            random_generator: Random generator (unseeded if None)
        """
        self._solver = TrilaterationSolver(dims, solver_config)
        self._config = config or RobustEstimatorConfig(method=method)
        self.metrics = get_metrics()

        self._locked = False
        self._engine: Optional[RobustEstimatorEngine] = None
        self._solution: Optional[Solution] = None

        self._sources = None
        self._fingerprint = None
        self._source_quality_scores = None
        self._reading_quality_scores = None
        self._listener = listener
        self._random_generator = random_generator or np.random.default_rng()
        self._use_reading_position_covariances = ROBUST_ESTIMATOR_CONFIG[
            "use_reading_position_covariances"
        ]
        self._fallback_distance_std = ROBUST_ESTIMATOR_CONFIG["fallback_distance_std"]

        if sources is not None:
            self.sources = sources
        if fingerprint is not None:
            self.fingerprint = fingerprint
        if source_quality_scores is not None:
            self.source_quality_scores = source_quality_scores
        if reading_quality_scores is not None:
            self.reading_quality_scores = reading_quality_scores

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def dims(self) -> int:
        return self._solver.dims

    @property
    def min_required_sources(self) -> int:
        """Minimum number of resolvable readings (Nmin = dims + 1)."""
        return self._solver.min_required

    @property
    def is_locked(self) -> bool:
        """True while estimate() is running."""
        return self._locked

    @property
    def state(self) -> EngineState:
        """State of the most recent run (IDLE before the first one)."""
        return self._engine.state if self._engine is not None else EngineState.IDLE

    @property
    def solution(self) -> Optional[Solution]:
        """Most recently published solution (kept until a new run succeeds)."""
        return self._solution

    @property
    def is_ready(self) -> bool:
        """True if estimate() can run with the current configuration."""
        return self._not_ready_reason() is None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def method(self) -> AlgorithmKind:
        return self._config.method

    @method.setter
    def method(self, value):
        self._check_unlocked()
        self._config.method = AlgorithmKind.parse(value)

    @property
    def sources(self) -> Optional[Sequence[LocatedRadioSource]]:
        return self._sources

    @sources.setter
    def sources(self, sources: Optional[Sequence[LocatedRadioSource]]):
        self._check_unlocked()
        if sources is not None:
            for located in sources:
                if not isinstance(located, LocatedRadioSource):
                    raise ValueError(f"Not a located radio source: {located!r}")
                if located.dims != self.dims:
                    raise ValueError(
                        f"Source {located.source_id!r} is {located.dims}D, "
                        f"estimator is {self.dims}D"
                    )
        self._sources = sources

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        return self._fingerprint

    @fingerprint.setter
    def fingerprint(self, fingerprint: Optional[Fingerprint]):
        self._check_unlocked()
        if fingerprint is not None:
            for reading in fingerprint:
                if not isinstance(reading, self.READING_TYPE):
                    raise ValueError(
                        f"{type(self).__name__} expects {self.READING_TYPE.__name__}, "
                        f"got {type(reading).__name__}"
                    )
        self._fingerprint = fingerprint

    @property
    def source_quality_scores(self) -> Optional[Sequence[float]]:
        return self._source_quality_scores

    @source_quality_scores.setter
    def source_quality_scores(self, scores: Optional[Sequence[float]]):
        self._check_unlocked()
        self._source_quality_scores = _validate_scores(scores)

    @property
    def reading_quality_scores(self) -> Optional[Sequence[float]]:
        return self._reading_quality_scores

    @reading_quality_scores.setter
    def reading_quality_scores(self, scores: Optional[Sequence[float]]):
        self._check_unlocked()
        self._reading_quality_scores = _validate_scores(scores)

    @property
    def listener(self) -> Optional[EstimatorListener]:
        return self._listener

    @listener.setter
    def listener(self, listener: Optional[EstimatorListener]):
        self._check_unlocked()
        self._listener = listener

    @property
    def random_generator(self) -> np.random.Generator:
        return self._random_generator

    @random_generator.setter
    def random_generator(self, rng: np.random.Generator):
        self._check_unlocked()
        if not isinstance(rng, np.random.Generator):
            raise ValueError(f"random_generator must be a numpy Generator: {rng!r}")
        self._random_generator = rng

    @property
    def use_reading_position_covariances(self) -> bool:
        """Inflate distance stds with the source position uncertainty."""
        return self._use_reading_position_covariances

    @use_reading_position_covariances.setter
    def use_reading_position_covariances(self, value: bool):
        self._check_unlocked()
        self._use_reading_position_covariances = bool(value)

    @property
    def fallback_distance_std(self) -> float:
        """Distance std (m) substituted when a reading has none."""
        return self._fallback_distance_std

    @fallback_distance_std.setter
    def fallback_distance_std(self, value: float):
        self._check_unlocked()
        if not value > 0:
            raise ValueError(f"fallback_distance_std must be positive: {value}")
        self._fallback_distance_std = float(value)

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def estimate(self) -> Solution:
        """
        Run robust estimation and publish a new Solution.

        Returns:
            The new Solution (also available as self.solution)

        Raises:
            LockedError: If an estimation is already running
            NotReadyError: If sources/fingerprint are missing or too few
                readings can be resolved
            EstimationFailedError: If no candidate met the inlier requirement
        """
        self._check_unlocked()

        reason = self._not_ready_reason()
        if reason is not None:
            self.metrics.increment('robust_estimate_not_ready')
            raise NotReadyError(
                reason,
                resolvable_readings=len(self._resolvable_indices()),
                min_required=self.min_required_sources,
            )

        self._locked = True
        # Fresh engine per run: no internal state survives between runs
        self._engine = RobustEstimatorEngine(self._solver, self._config)
        self._engine.state = EngineState.RUNNING
        try:
            self._notify('on_estimate_start')

            indices, positions, distances, stds = self._resolve_measurements()
            qualities = self._combined_quality_scores(indices)

            result = self._engine.run(
                positions,
                distances,
                stds,
                quality_scores=qualities,
                rng=self._random_generator,
                hooks=self._build_hooks(),
            )

            self._solution = self._build_solution(result, indices)
            logger.debug(
                "%s estimate: %s, %d inliers, %d iterations",
                self._config.method.value,
                self._solution.position,
                self._solution.inlier_count,
                self._solution.iterations_used,
            )

            self._notify('on_estimate_end')
            return self._solution
        finally:
            # Errors raised outside the engine loop still end the run
            if self._engine.state is EngineState.RUNNING:
                self._engine.state = EngineState.FAILED
            self._locked = False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_unlocked(self):
        if self._locked:
            raise LockedError(f"{type(self).__name__} is locked during estimation")

    def _not_ready_reason(self) -> Optional[str]:
        if self._sources is None:
            return "sources not set"
        if self._fingerprint is None:
            return "fingerprint not set"
        if (
            self._source_quality_scores is not None
            and len(self._source_quality_scores) != len(self._sources)
        ):
            return (
                f"{len(self._source_quality_scores)} source quality scores "
                f"for {len(self._sources)} sources"
            )
        if (
            self._reading_quality_scores is not None
            and len(self._reading_quality_scores) != len(self._fingerprint)
        ):
            return (
                f"{len(self._reading_quality_scores)} reading quality scores "
                f"for {len(self._fingerprint)} readings"
            )

        resolvable = len(self._resolvable_indices())
        if resolvable < self.min_required_sources:
            return (
                f"{resolvable} resolvable readings, "
                f"{self.min_required_sources} required"
            )
        return None

    def _resolvable_indices(self) -> List[int]:
        """Fingerprint indices whose source is among the located sources."""
        if self._sources is None or self._fingerprint is None:
            return []
        source_index = index_sources(self._sources)
        return [
            i for i, reading in enumerate(self._fingerprint)
            if reading.source_id in source_index
        ]

    def _resolve_measurements(self):
        """
        Resolve readings to source positions, distances and stds.

        Returns:
            Tuple of (fingerprint indices, positions, distances, stds)
        """
        source_index = index_sources(self._sources)

        indices = []
        positions = []
        distances = []
        stds = []
        for i, reading in enumerate(self._fingerprint):
            located_idx = source_index.get(reading.source_id)
            if located_idx is None:
                self.metrics.increment_drop('unresolved_reading')
                continue

            located = self._sources[located_idx]
            distance, std = self._reading_distance(reading, located)

            if std is None or not std > 0:
                if std is not None:
                    self.metrics.increment_drop('invalid_std')
                std = self._fallback_distance_std

            if self._use_reading_position_covariances and located.position_covariance is not None:
                std = math.sqrt(std ** 2 + located.position_variance)

            indices.append(i)
            positions.append(located.position.to_array())
            distances.append(distance)
            stds.append(std)

        return (
            indices,
            np.array(positions, dtype=float),
            np.array(distances, dtype=float),
            np.array(stds, dtype=float),
        )

    def _reading_distance(self, reading, located: LocatedRadioSource) -> Tuple[float, Optional[float]]:
        """Distance (m) and its std (None if unknown) of a ranging reading."""
        return reading.distance_m, reading.distance_std_m

    def _combined_quality_scores(self, indices: List[int]) -> Optional[np.ndarray]:
        """
        Per-resolved-reading quality: source score + reading score.

        Returns None when neither source nor reading scores are set.
        """
        if self._source_quality_scores is None and self._reading_quality_scores is None:
            return None

        source_index = index_sources(self._sources)
        scores = np.zeros(len(indices))
        for k, i in enumerate(indices):
            if self._source_quality_scores is not None:
                located_idx = source_index[self._fingerprint[i].source_id]
                scores[k] += self._source_quality_scores[located_idx]
            if self._reading_quality_scores is not None:
                scores[k] += self._reading_quality_scores[i]
        return scores

    def _build_hooks(self) -> EngineHooks:
        listener = self._listener
        if listener is None:
            return EngineHooks()

        hooks = EngineHooks()
        if listener.on_next_iteration is not None:
            hooks.on_next_iteration = lambda it: listener.on_next_iteration(self, it)
        if listener.on_solution_improved is not None:
            hooks.on_solution_improved = (
                lambda it, score, count: listener.on_solution_improved(self, it, score, count)
            )
        if listener.on_progress is not None:
            hooks.on_progress = lambda progress: listener.on_progress(self, progress)
        return hooks

    def _notify(self, event: str):
        if self._listener is None:
            return
        callback = getattr(self._listener, event)
        if callback is not None:
            callback(self)

    def _build_solution(self, result, indices: List[int]) -> Solution:
        """Map engine output (resolved readings) back onto the fingerprint."""
        num_readings = len(self._fingerprint)
        inliers = [False] * num_readings
        residuals = [float('nan')] * num_readings
        for k, i in enumerate(indices):
            inliers[i] = bool(result.inliers[k])
            residuals[i] = float(result.residuals[k])

        return Solution(
            position=point_from_array(result.position),
            covariance=result.covariance,
            inlier_count=result.inlier_count,
            iterations_used=result.iterations,
            final_cost=result.final_cost,
            method=self._config.method.value,
            inliers=tuple(inliers),
            residuals=tuple(residuals),
            refined=result.refined,
            low_confidence=result.low_confidence,
            inlier_threshold=result.inlier_threshold,
        )


class RobustRangingPositionEstimator(RobustPositionEstimator):
    """Robust estimator for ranging readings (distances measured directly)."""

    READING_TYPE = RangingReading


class RobustRssiPositionEstimator(RobustPositionEstimator):
    """
    Robust estimator for RSSI readings.

    Received power is converted to distance by an injected converter
    (path-loss model), called once per resolved reading:

        distance_m, distance_std_m = distance_converter(reading, located_source)
    """

    READING_TYPE = RssiReading

    def __init__(self, dims: int = 3, method=AlgorithmKind.RANSAC,
                 distance_converter: Optional[DistanceConverter] = None, **kwargs):
        """
        Initialize estimator.

        Args:
            dims: Number of dimensions (2 or 3)
            method: Robust method
            distance_converter: f(reading, located_source) -> (distance_m, std_m)
            **kwargs: Passed to RobustPositionEstimator
        """
        self._distance_converter = distance_converter
        super().__init__(dims, method, **kwargs)

    @property
    def distance_converter(self) -> Optional[DistanceConverter]:
        return self._distance_converter

    @distance_converter.setter
    def distance_converter(self, converter: Optional[DistanceConverter]):
        self._check_unlocked()
        self._distance_converter = converter

    def _not_ready_reason(self) -> Optional[str]:
        if self._distance_converter is None:
            return "distance converter not set"
        return super()._not_ready_reason()

    def _reading_distance(self, reading, located: LocatedRadioSource) -> Tuple[float, Optional[float]]:
        distance, std = self._distance_converter(reading, located)
        if not (math.isfinite(distance) and distance >= 0):
            raise ValueError(
                f"Converted distance for source {reading.source_id!r} is invalid: {distance}"
            )
        return distance, std


def create_estimator(
    method=AlgorithmKind.RANSAC,
    dims: int = 3,
    rssi: bool = False,
    **kwargs,
) -> RobustPositionEstimator:
    """
    Create a robust position estimator.

    Args:
        method: Robust method (AlgorithmKind or name, e.g. "PROMedS")
        dims: Number of dimensions (2 or 3)
        rssi: True for RSSI readings (requires distance_converter kwarg)
        **kwargs: Estimator arguments (sources, fingerprint, listener, ...)

    Returns:
        Configured estimator
    """
    method = AlgorithmKind.parse(method)
    if rssi:
        return RobustRssiPositionEstimator(dims, method, **kwargs)
    return RobustRangingPositionEstimator(dims, method, **kwargs)


def _validate_scores(scores: Optional[Sequence[float]]) -> Optional[Sequence[float]]:
    if scores is None:
        return None
    if not all(math.isfinite(float(s)) for s in scores):
        raise ValueError("Quality scores must be finite")
    return scores
