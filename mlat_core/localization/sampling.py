"""
Sample Selection for robust estimation.

Two samplers draw minimal subsets of reading indices:
- UniformSampler: uniform without replacement (RANSAC, LMedS, MSAC)
- ProgressiveSampler: quality-biased progressive sampling (PROSAC, PROMedS),
  growing a prefix window of the quality-sorted readings as iterations
  proceed (Chum & Matas growth function)

Both take an injected numpy Generator so runs are reproducible for a fixed
seed, and both retry degenerate subsets a bounded number of times.
"""

from typing import Callable, Optional, Sequence
import math

import numpy as np

from mlat_core.metrics import get_metrics

DegeneracyCheck = Callable[[np.ndarray], bool]


class UniformSampler:
    """
    Draw subsets of distinct indices uniformly at random.

    Usage:
        sampler = UniformSampler(num_readings=8, subset_size=4, rng=rng)
        subset = sampler.sample(iteration, is_degenerate)
        if subset is None:
            # every retry was degenerate, skip this iteration
    """

    def __init__(
        self,
        num_readings: int,
        subset_size: int,
        rng: np.random.Generator,
        max_retries: int = 10,
    ):
        """
        Initialize sampler.

        Args:
            num_readings: Total number of readings to sample from
            subset_size: Indices per subset (Nmin)
            rng: Random generator (the only state advanced by sampling)
            max_retries: Redraws allowed when a subset is degenerate
        """
        if subset_size < 1:
            raise ValueError(f"subset_size must be >= 1: {subset_size}")
        if num_readings < subset_size:
            raise ValueError(
                f"Need at least {subset_size} readings to sample, got {num_readings}"
            )
        if max_retries < 0:
            raise ValueError(f"max_retries cannot be negative: {max_retries}")

        self.num_readings = num_readings
        self.subset_size = subset_size
        self.rng = rng
        self.max_retries = max_retries
        self.metrics = get_metrics()

    def sample(
        self,
        iteration: int,
        is_degenerate: Optional[DegeneracyCheck] = None,
    ) -> Optional[np.ndarray]:
        """
        Draw one non-degenerate subset.

        Args:
            iteration: 1-based iteration number
            is_degenerate: Predicate rejecting unusable subsets

        Returns:
            Sorted array of subset_size reading indices, or None if every
            attempt (1 + max_retries) was degenerate
        """
        for _ in range(self.max_retries + 1):
            subset = np.sort(self._draw(iteration))
            if is_degenerate is None or not is_degenerate(subset):
                return subset
            self.metrics.increment_drop('degenerate_subset')
        return None

    def _draw(self, iteration: int) -> np.ndarray:
        return self.rng.choice(self.num_readings, size=self.subset_size, replace=False)


class ProgressiveSampler(UniformSampler):
    """
    Quality-biased progressive sampling (PROSAC).

    Readings are sorted once by descending quality. Subsets are drawn from a
    prefix window of the sorted readings which grows with the iteration count
    following the PROSAC growth function, so high-quality readings are tried
    first while every reading is eventually reachable.

    Without quality scores the window is the full set and sampling is uniform.
    """

    def __init__(
        self,
        num_readings: int,
        subset_size: int,
        rng: np.random.Generator,
        quality_scores: Optional[Sequence[float]] = None,
        max_iterations: int = 5000,
        max_retries: int = 10,
    ):
        """
        Initialize sampler.

        Args:
            num_readings: Total number of readings to sample from
            subset_size: Indices per subset (Nmin)
            rng: Random generator
            quality_scores: Per-reading quality (higher is better), optional
            max_iterations: Iteration budget driving the window growth
            max_retries: Redraws allowed when a subset is degenerate
        """
        super().__init__(num_readings, subset_size, rng, max_retries)

        if quality_scores is not None and len(quality_scores) != num_readings:
            raise ValueError(
                f"Expected {num_readings} quality scores, got {len(quality_scores)}"
            )

        self.progressive = quality_scores is not None
        if self.progressive:
            # Stable so equal scores keep fingerprint order
            self.sorted_indices = np.argsort(
                -np.asarray(quality_scores, dtype=float), kind='stable'
            )
        else:
            self.sorted_indices = np.arange(num_readings)

        self._init_growth(max(1, max_iterations))

    def _init_growth(self, max_iterations: int):
        """Initialize the PROSAC growth schedule."""
        m = self.subset_size
        n_total = self.num_readings

        # T_n: expected number of samples drawn from the first n readings
        t_n = float(max_iterations)
        for i in range(m):
            t_n *= (m - i) / (n_total - i)

        self._window = m
        self._t_n = t_n
        self._t_n_prime = 1
        self._max_iterations = max_iterations

    @property
    def window_size(self) -> int:
        """Current number of top-quality readings eligible for sampling."""
        return self._window if self.progressive else self.num_readings

    def _draw(self, iteration: int) -> np.ndarray:
        if not self.progressive:
            return super()._draw(iteration)

        m = self.subset_size

        # Grow the window when the schedule says so
        if iteration >= self._t_n_prime and self._window < self.num_readings:
            n = self._window
            t_next = self._t_n * (n + 1) / (n + 1 - m)
            self._t_n_prime += int(math.ceil(t_next - self._t_n))
            self._t_n = t_next
            self._window = n + 1

        n = self._window
        if self._t_n_prime < iteration or n == m:
            # Schedule exhausted for this window: draw from the whole window
            picks = self.rng.choice(n, size=m, replace=False)
        else:
            # Newest reading plus m - 1 from the rest of the window
            rest = self.rng.choice(n - 1, size=m - 1, replace=False)
            picks = np.append(rest, n - 1)

        return self.sorted_indices[picks]


def create_sampler(
    progressive: bool,
    num_readings: int,
    subset_size: int,
    rng: np.random.Generator,
    quality_scores: Optional[Sequence[float]] = None,
    max_iterations: int = 5000,
    max_retries: int = 10,
) -> UniformSampler:
    """
    Create the sampler matching a robust method.

    Args:
        progressive: True for PROSAC / PROMedS
        num_readings: Total number of readings
        subset_size: Indices per subset
        rng: Random generator
        quality_scores: Per-reading quality, used only when progressive
        max_iterations: Iteration budget (progressive growth schedule)
        max_retries: Degenerate-subset redraws

    Returns:
        UniformSampler or ProgressiveSampler
    """
    if progressive:
        return ProgressiveSampler(
            num_readings,
            subset_size,
            rng,
            quality_scores=quality_scores,
            max_iterations=max_iterations,
            max_retries=max_retries,
        )
    return UniformSampler(num_readings, subset_size, rng, max_retries)
