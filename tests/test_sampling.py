"""
Unit tests for subset samplers.

Tests cover:
- Uniform sampling (distinct, sorted, reproducible)
- Degenerate-subset retries
- Progressive (quality-biased) window growth
"""

import numpy as np
import pytest

from mlat_core.localization import ProgressiveSampler, UniformSampler, create_sampler


class TestUniformSampler:
    """Tests for uniform subset sampling."""

    def test_subsets_distinct_and_sorted(self, rng):
        """Test subsets contain distinct in-range indices in ascending order."""
        sampler = UniformSampler(num_readings=10, subset_size=4, rng=rng)

        for iteration in range(1, 101):
            subset = sampler.sample(iteration)

            assert len(subset) == 4
            assert len(set(subset.tolist())) == 4
            assert np.all(np.diff(subset) > 0)
            assert subset.min() >= 0 and subset.max() < 10

    def test_reproducible_for_seed(self):
        """Test identical seeds give identical subset sequences."""
        a = UniformSampler(12, 3, np.random.default_rng(7))
        b = UniformSampler(12, 3, np.random.default_rng(7))

        for iteration in range(1, 51):
            np.testing.assert_array_equal(a.sample(iteration), b.sample(iteration))

    def test_invalid_sizes_raise(self, rng):
        """Test that invalid subset sizes raise ValueError."""
        with pytest.raises(ValueError):
            UniformSampler(3, 4, rng)
        with pytest.raises(ValueError):
            UniformSampler(3, 0, rng)
        with pytest.raises(ValueError):
            UniformSampler(5, 3, rng, max_retries=-1)

    def test_degenerate_retries_exhausted(self, rng):
        """Test always-degenerate subsets give None after all retries."""
        sampler = UniformSampler(6, 3, rng, max_retries=4)
        calls = []

        def always_degenerate(subset):
            calls.append(subset)
            return True

        before = sampler.metrics.get_drop_count('degenerate_subset')
        assert sampler.sample(1, always_degenerate) is None

        assert len(calls) == 5
        assert sampler.metrics.get_drop_count('degenerate_subset') == before + 5

    def test_degenerate_retry_succeeds(self, rng):
        """Test a degenerate first draw is redrawn."""
        sampler = UniformSampler(6, 3, rng, max_retries=2)
        outcomes = iter([True, False])

        subset = sampler.sample(1, lambda s: next(outcomes))

        assert subset is not None
        assert len(subset) == 3


class TestProgressiveSampler:
    """Tests for quality-biased progressive sampling."""

    def test_without_quality_is_full_window(self, rng):
        """Test that without quality scores the whole set is eligible."""
        sampler = ProgressiveSampler(10, 4, rng)

        assert not sampler.progressive
        assert sampler.window_size == 10
        assert len(sampler.sample(1)) == 4

    def test_quality_length_mismatch_raises(self, rng):
        """Test mismatched quality scores raise ValueError."""
        with pytest.raises(ValueError, match="quality"):
            ProgressiveSampler(10, 4, rng, quality_scores=[1.0] * 9)

    def test_first_subset_from_top_quality(self, rng):
        """Test the first subset is drawn from the m + 1 best readings."""
        quality = np.arange(10, dtype=float)
        sampler = ProgressiveSampler(10, 4, rng, quality_scores=quality, max_iterations=50)

        subset = sampler.sample(1)

        top = set(np.argsort(-quality)[:5].tolist())
        assert set(subset.tolist()) <= top

    def test_ties_keep_fingerprint_order(self, rng):
        """Test equal quality scores keep their original order."""
        sampler = ProgressiveSampler(5, 2, rng, quality_scores=[1.0, 2.0, 1.0, 2.0, 1.0])

        assert sampler.sorted_indices.tolist() == [1, 3, 0, 2, 4]

    def test_window_grows_to_all_readings(self, rng):
        """Test the window never shrinks, grows by at most one, and reaches n."""
        n, m, max_iterations = 10, 4, 50
        sampler = ProgressiveSampler(
            n, m, rng, quality_scores=rng.uniform(0.0, 1.0, n), max_iterations=max_iterations,
        )

        previous = sampler.window_size
        for iteration in range(1, max_iterations + n + 2):
            subset = sampler.sample(iteration)
            window = sampler.window_size

            assert previous <= window <= previous + 1
            assert set(subset.tolist()) <= set(sampler.sorted_indices[:window].tolist())
            previous = window

        assert sampler.window_size == n

    def test_every_reading_reachable(self, rng):
        """Test every reading is eventually sampled."""
        n = 8
        sampler = ProgressiveSampler(
            n, 3, rng, quality_scores=np.linspace(1.0, 0.0, n), max_iterations=30,
        )

        seen = set()
        for iteration in range(1, 300):
            seen.update(sampler.sample(iteration).tolist())

        assert seen == set(range(n))


class TestCreateSampler:
    """Tests for the sampler factory."""

    def test_uniform(self, rng):
        """Test non-progressive methods get a uniform sampler."""
        sampler = create_sampler(False, 8, 4, rng, quality_scores=[1.0] * 8)

        assert type(sampler) is UniformSampler

    def test_progressive(self, rng):
        """Test progressive methods get a progressive sampler."""
        sampler = create_sampler(True, 8, 4, rng, quality_scores=list(range(8)))

        assert isinstance(sampler, ProgressiveSampler)
        assert sampler.progressive
