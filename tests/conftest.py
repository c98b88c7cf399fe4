"""
Pytest configuration and shared fixtures for robust multilateration tests.

This module provides reusable fixtures and scenario builders for testing the
trilateration solver, sampling, scoring, the robust engine and the estimator
facades.
"""

import sys
import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import numpy as np
import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from mlat_core.proto import (
    Fingerprint,
    LocatedRadioSource,
    Point3D,
    RadioSource,
    RangingReading,
    point_from_array,
)


# =============================================================================
# Concrete 3D Scenario Fixtures
# =============================================================================


@pytest.fixture
def true_position_3d() -> Tuple[float, float, float]:
    """True device position of the reference 3D scenario."""
    return (10.0, 20.0, 5.0)


@pytest.fixture
def sources_3d() -> List[LocatedRadioSource]:
    """
    Four non-coplanar located sources.

    Returns:
        Sources at (0,0,0), (30,0,0), (0,30,0), (0,0,30).
    """
    coords = [
        (0.0, 0.0, 0.0),
        (30.0, 0.0, 0.0),
        (0.0, 30.0, 0.0),
        (0.0, 0.0, 30.0),
    ]
    return [
        LocatedRadioSource(RadioSource(f"AP{i}", 2.4e9), Point3D(*c))
        for i, c in enumerate(coords)
    ]


@pytest.fixture
def fingerprint_3d(sources_3d, true_position_3d) -> Fingerprint:
    """Exact distances from the true position to each of sources_3d."""
    true = Point3D(*true_position_3d)
    return Fingerprint([
        RangingReading(s.source, true.distance_to(s.position)) for s in sources_3d
    ])


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator for reproducible tests."""
    return np.random.default_rng(12345)


# =============================================================================
# Scenario Builder
# =============================================================================


@dataclass
class Scenario:
    """
    Synthetic multilateration scenario.

    Attributes:
        true_position: True device position (dims,)
        sources: Located sources (one per reading)
        fingerprint: Ranging readings, same order as sources
        outlier_indices: Indices of readings perturbed as outliers
    """

    true_position: np.ndarray
    sources: List[LocatedRadioSource]
    fingerprint: Fingerprint
    outlier_indices: List[int]

    @property
    def positions(self) -> np.ndarray:
        return np.array([s.position.to_array() for s in self.sources])

    @property
    def distances(self) -> np.ndarray:
        return np.array([r.distance_m for r in self.fingerprint])

    @property
    def inlier_indices(self) -> List[int]:
        return [i for i in range(len(self.sources)) if i not in self.outlier_indices]


def build_scenario(
    rng: np.random.Generator,
    dims: int,
    num_inliers: int,
    num_outliers: int = 0,
    outlier_error: float = 1.0,
    noise_std: float = 0.0,
    min_pos: float = -50.0,
    max_pos: float = 50.0,
    distance_std: Optional[float] = None,
) -> Scenario:
    """
    Build a random scenario with inlier and outlier readings.

    Outliers are lengthened by outlier_error to 2 * outlier_error meters
    (non-line-of-sight ranges are always too long).

    Args:
        rng: Random generator
        dims: 2 or 3
        num_inliers: Readings consistent with the true position
        num_outliers: Readings perturbed by at least outlier_error
        outlier_error: Minimum outlier perturbation (m)
        noise_std: Gaussian noise added to every distance (m)
        min_pos: Minimum coordinate value
        max_pos: Maximum coordinate value
        distance_std: Std stored on each reading (None = unknown)

    Returns:
        Scenario
    """
    total = num_inliers + num_outliers
    true_position = rng.uniform(min_pos, max_pos, dims)

    sources = []
    readings = []
    outlier_indices = sorted(rng.choice(total, size=num_outliers, replace=False).tolist())

    for i in range(total):
        position = rng.uniform(min_pos, max_pos, dims)
        located = LocatedRadioSource(RadioSource(f"S{i}"), point_from_array(position))

        distance = float(np.linalg.norm(true_position - position))
        if noise_std > 0:
            distance = abs(distance + rng.normal(0.0, noise_std))
        if i in outlier_indices:
            distance += outlier_error * (1.0 + rng.uniform(0.0, 1.0))

        sources.append(located)
        readings.append(RangingReading(located.source, distance, distance_std))

    return Scenario(
        true_position=true_position,
        sources=sources,
        fingerprint=Fingerprint(readings),
        outlier_indices=outlier_indices,
    )


# =============================================================================
# Helper Functions
# =============================================================================


def calculate_distance(p1, p2) -> float:
    """
    Euclidean distance between two points of equal dimension.

    Args:
        p1: First point (tuple or array).
        p2: Second point (tuple or array).

    Returns:
        Distance in the same units as input.
    """
    return math.sqrt(sum((a - b) ** 2 for a, b in zip(p1, p2)))
