"""
Default configuration for the robust multilateration core.

Component configs (SolverConfig, RobustEstimatorConfig) take their defaults
from the dictionaries below.
"""

import logging

# Nonlinear trilateration solver
SOLVER_CONFIG = {
    "max_iterations": 100,            # Levenberg-Marquardt iteration budget
    "tolerance": 1e-10,               # Relative step/cost convergence threshold
    "initial_damping": 1e-3,          # Initial LM damping factor
    "degeneracy_tolerance": 1e-9,     # Min singular value ratio of source geometry
}

# Robust estimator (RANSAC / LMedS / MSAC / PROSAC / PROMedS)
ROBUST_ESTIMATOR_CONFIG = {
    "threshold": 1e-2,                # Inlier threshold (m) for RANSAC/MSAC/PROSAC
    "stop_threshold": 1e-4,           # Early-exit threshold (m) for LMedS/PROMedS
    "confidence": 0.99,               # Probability of drawing an outlier-free subset
    "max_iterations": 5000,           # Upper bound on sampling iterations
    "progress_delta": 0.05,           # Fraction of progress between notifications
    "inlier_factor": 1.5,             # Multiplier on LMedS robust std estimate
    "max_degenerate_retries": 10,     # Redraws of a degenerate subset
    "refine_result": True,            # Final refinement with all inliers
    "keep_covariance": True,          # Publish covariance with the solution
    "use_reading_position_covariances": True,
    "fallback_distance_std": 1e-3,    # Std (m) used when a reading has none
    "min_inlier_ratio": 0.0,          # Minimum fraction of inliers to accept
}

# Logging
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}


def configure_logging(level: str = None):
    """
    Configure root logging for applications embedding the estimator.

    Library modules only create loggers; handlers are left to the application.

    Args:
        level: Log level name (defaults to LOGGING_CONFIG["level"])
    """
    logging.basicConfig(
        level=getattr(logging, (level or LOGGING_CONFIG["level"]).upper()),
        format=LOGGING_CONFIG["format"],
    )
