"""
Robust Multilateration Core Package.

Outlier-resistant 2D/3D position estimation from ranging (or RSSI-derived)
readings to radio sources with known locations.

Package structure:
- proto: Data model (points, radio sources, readings, fingerprints, solutions)
- localization: Trilateration solver, sampling, scoring, robust engine, facade
- metrics: Diagnostics, counters, histograms
- config: Default parameters and logging setup
- errors: Error taxonomy surfaced to callers
"""

__version__ = "0.1.0"
__author__ = "Robust Multilateration Team"

from .errors import (
    PositioningError,
    NotReadyError,
    LockedError,
    DegenerateSubsetError,
    SolverConvergenceError,
    EstimationFailedError,
)
