"""
Unit tests for candidate scoring and method strategies.

Tests cover:
- Score functions (inlier count, truncated quadratic, median)
- Strategy flags and comparison direction
- Method name parsing
- Adaptive iteration bound and median-derived threshold
"""

import math

import numpy as np
import pytest

from mlat_core.localization import (
    AlgorithmKind,
    compute_residuals,
    get_strategy,
    median_inlier_threshold,
    required_iterations,
)
from mlat_core.localization.scoring import (
    inlier_count_score,
    median_squared_score,
    truncated_quadratic_score,
)


RESIDUALS = np.array([0.001, -0.002, 0.5, -3.0, 0.0])


class TestScoreFunctions:
    """Tests for the per-method score functions."""

    def test_inlier_count(self):
        """Test inliers are residuals strictly inside the threshold."""
        assert inlier_count_score(RESIDUALS, 0.01) == 3.0
        assert inlier_count_score(RESIDUALS, 0.002) == 2.0

    def test_truncated_quadratic(self):
        """Test MSAC cost caps each squared residual at τ²."""
        expected = 0.001 ** 2 + 0.002 ** 2 + 1.0 + 1.0 + 0.0
        assert truncated_quadratic_score(RESIDUALS, 1.0) == pytest.approx(expected)

    def test_median_squared(self):
        """Test median of squared residuals."""
        assert median_squared_score(RESIDUALS) == pytest.approx(0.002 ** 2)

    def test_compute_residuals(self):
        """Test signed range residuals."""
        positions = np.array([[0.0, 0.0], [3.0, 4.0]])
        residuals = compute_residuals(np.zeros(2), positions, np.array([1.0, 4.0]))

        np.testing.assert_allclose(residuals, [-1.0, 1.0])


class TestStrategies:
    """Tests for strategy lookup and comparison."""

    @pytest.mark.parametrize("method,higher,threshold,median,progressive", [
        (AlgorithmKind.RANSAC, True, True, False, False),
        (AlgorithmKind.MSAC, False, True, False, False),
        (AlgorithmKind.PROSAC, True, True, False, True),
        (AlgorithmKind.LMEDS, False, False, True, False),
        (AlgorithmKind.PROMEDS, False, False, True, True),
    ])
    def test_flags(self, method, higher, threshold, median, progressive):
        """Test each method's strategy flags."""
        strategy = get_strategy(method)

        assert strategy.higher_is_better is higher
        assert strategy.uses_threshold is threshold
        assert strategy.median_based is median
        assert strategy.progressive is progressive
        assert strategy.adaptive_stopping is not median

    def test_is_better_strict(self):
        """Test improvement must be strict in the method's direction."""
        ransac = get_strategy(AlgorithmKind.RANSAC)
        lmeds = get_strategy(AlgorithmKind.LMEDS)

        assert ransac.is_better(5.0, None)
        assert ransac.is_better(5.0, 4.0)
        assert not ransac.is_better(4.0, 4.0)
        assert lmeds.is_better(0.1, 0.2)
        assert not lmeds.is_better(0.2, 0.2)

    def test_is_better_ties_broken_by_inlier_cost(self):
        """Test equal inlier counts prefer the tighter inlier set."""
        ransac = get_strategy(AlgorithmKind.RANSAC)
        prosac = get_strategy(AlgorithmKind.PROSAC)

        assert ransac.is_better(5.0, 5.0, 1e-12, 4e-5)
        assert prosac.is_better(5.0, 5.0, 0.0, 1e-6)
        assert not ransac.is_better(5.0, 5.0, 4e-5, 1e-12)
        assert not ransac.is_better(5.0, 5.0, 1e-6, 1e-6)
        # Count still dominates the cost
        assert not ransac.is_better(4.0, 5.0, 0.0, 1.0)
        assert ransac.is_better(6.0, 5.0, 1.0, 0.0)

    @pytest.mark.parametrize("name,expected", [
        ("ransac", AlgorithmKind.RANSAC),
        ("LMedS", AlgorithmKind.LMEDS),
        ("LMEDS", AlgorithmKind.LMEDS),
        ("msac", AlgorithmKind.MSAC),
        ("Prosac", AlgorithmKind.PROSAC),
        ("promeds", AlgorithmKind.PROMEDS),
        (AlgorithmKind.MSAC, AlgorithmKind.MSAC),
    ])
    def test_parse(self, name, expected):
        """Test case-insensitive method parsing."""
        assert AlgorithmKind.parse(name) is expected

    def test_parse_unknown_raises(self):
        """Test unknown method names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown"):
            AlgorithmKind.parse("HOUGH")


class TestStoppingRules:
    """Tests for iteration bound and median-derived threshold."""

    def test_required_iterations(self):
        """Test adaptive iteration bound."""
        assert required_iterations(0.99, 0.5, 4) == pytest.approx(71.3551, rel=1e-4)

    def test_required_iterations_all_inliers(self):
        """Test all-inlier ratio needs no further iterations."""
        assert required_iterations(0.99, 1.0, 4) == 0.0

    def test_required_iterations_no_inliers(self):
        """Test zero inlier ratio never bounds iterations."""
        assert math.isinf(required_iterations(0.99, 0.0, 4))

    def test_required_iterations_decreases_with_ratio(self):
        """Test more inliers need fewer iterations."""
        assert required_iterations(0.99, 0.8, 4) < required_iterations(0.99, 0.6, 4)

    def test_median_inlier_threshold(self):
        """Test robust threshold from the median squared residual."""
        assert median_inlier_threshold(1.0, 10, 4, 1.5) == pytest.approx(4.07715, rel=1e-5)

    def test_median_inlier_threshold_minimal_set(self):
        """Test small-sample correction when n == m."""
        expected = 1.0 * 1.4826 * 6.0 * 0.5
        assert median_inlier_threshold(0.25, 4, 4, 1.0) == pytest.approx(expected)
