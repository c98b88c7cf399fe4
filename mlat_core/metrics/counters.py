"""
Estimation counters.

Thread-safe tallies shared by the solver, samplers, engine and facades:
- run counters (robust_estimate_*, trilateration_*)
- drop counters keyed by reason (DROP_REASONS), also summed into 'dropped'
- bounded sample windows (robust_iterations, robust_inlier_ratio,
  solver_iterations)
"""

from collections import Counter, defaultdict, deque
from functools import partial
from typing import Deque, Dict, List
import logging
import threading

logger = logging.getLogger(__name__)

# Samples kept per histogram; older samples are discarded first
HISTOGRAM_WINDOW = 5000


class MetricsCollector:
    """
    Thread-safe counters and sample windows.

    Usage:
        collector = MetricsCollector()
        collector.increment('robust_estimate_attempts')
        collector.increment_drop('degenerate_subset')
        collector.record_histogram('robust_iterations', 42)
    """

    # Why a subset, candidate or reading was discarded
    DROP_REASONS = {
        'degenerate_subset': 'Sampled sources collinear/coplanar',
        'solver_failed': 'Nonlinear trilateration did not converge',
        'unresolved_reading': 'Reading source not among located sources',
        'below_min_inliers': 'Candidate below minimum inlier requirement',
        'refine_failed': 'Final inlier refinement failed',
        'estimation_failed': 'No acceptable candidate found',
        'invalid_std': 'Non-positive standard deviation replaced by fallback',
    }

    def __init__(self, histogram_window: int = HISTOGRAM_WINDOW):
        self._lock = threading.Lock()
        self._counters: Counter = Counter()
        self._drops: Counter = Counter()
        self._histograms: Dict[str, Deque[float]] = defaultdict(
            partial(deque, maxlen=histogram_window)
        )

    def increment(self, counter_name: str, value: int = 1):
        """Add value to a named counter."""
        with self._lock:
            self._counters[counter_name] += value

    def increment_drop(self, reason: str, value: int = 1):
        """
        Count a discarded subset, candidate or reading.

        Unknown reasons are logged and still counted.
        """
        if reason not in self.DROP_REASONS:
            logger.warning("Unknown drop reason '%s'", reason)

        with self._lock:
            self._drops[reason] += value
            self._counters['dropped'] += value

    def get_counter(self, counter_name: str) -> int:
        """Current value of a counter (0 if never incremented)."""
        with self._lock:
            return self._counters[counter_name]

    def get_drop_count(self, reason: str) -> int:
        """Current value of a drop reason counter."""
        with self._lock:
            return self._drops[reason]

    def record_histogram(self, histogram_name: str, value: float):
        """Append a sample to a bounded histogram window."""
        with self._lock:
            self._histograms[histogram_name].append(value)

    def get_histogram(self, histogram_name: str) -> List[float]:
        """Copy of the retained samples, oldest first."""
        with self._lock:
            return list(self._histograms.get(histogram_name, ()))

    def reset(self):
        """Clear every counter and histogram."""
        with self._lock:
            self._counters.clear()
            self._drops.clear()
            self._histograms.clear()
