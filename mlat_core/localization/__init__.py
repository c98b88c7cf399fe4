"""
Localization Module: Robust multilateration.

Key classes:
- TrilaterationSolver: Weighted nonlinear trilateration (LM) + linear guess
- UniformSampler / ProgressiveSampler: Minimal subset selection
- AlgorithmKind / ScoringStrategy: RANSAC, LMedS, MSAC, PROSAC, PROMedS
- RobustEstimatorEngine: Sample -> solve -> score -> refine loop
- RobustRangingPositionEstimator / RobustRssiPositionEstimator: Facades
"""

from .trilateration_solver import (
    TrilaterationSolver,
    SolverConfig,
    TrilaterationResult,
    normalize_quality_scores,
)
from .sampling import (
    UniformSampler,
    ProgressiveSampler,
    create_sampler,
)
from .scoring import (
    AlgorithmKind,
    ScoringStrategy,
    STRATEGIES,
    get_strategy,
    compute_residuals,
    median_inlier_threshold,
    required_iterations,
)
from .robust_engine import (
    RobustEstimatorEngine,
    RobustEstimatorConfig,
    EngineState,
    EngineHooks,
    EngineResult,
)
from .position_estimator import (
    EstimatorListener,
    RobustPositionEstimator,
    RobustRangingPositionEstimator,
    RobustRssiPositionEstimator,
    create_estimator,
)

__all__ = [
    # Solver
    'TrilaterationSolver',
    'SolverConfig',
    'TrilaterationResult',
    'normalize_quality_scores',
    # Sampling
    'UniformSampler',
    'ProgressiveSampler',
    'create_sampler',
    # Scoring
    'AlgorithmKind',
    'ScoringStrategy',
    'STRATEGIES',
    'get_strategy',
    'compute_residuals',
    'median_inlier_threshold',
    'required_iterations',
    # Engine
    'RobustEstimatorEngine',
    'RobustEstimatorConfig',
    'EngineState',
    'EngineHooks',
    'EngineResult',
    # Facade
    'EstimatorListener',
    'RobustPositionEstimator',
    'RobustRangingPositionEstimator',
    'RobustRssiPositionEstimator',
    'create_estimator',
]
