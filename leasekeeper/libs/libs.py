from collections import deque
from functools import wraps
from math import ceil
from threading import RLock
from time import perf_counter
from typing import Any, Callable

from leasekeeper.config.config import config

LIBS_CONF = config.get("libs")
METRICS_MAX_SIZE = int(LIBS_CONF.get("metrics_max_size"))
REPORTED_PERCENTILES: tuple[int, ...] = (5, 25, 50, 75, 95, 99)


class Metrics:
    """Rolling window of latency samples in milliseconds.

    Only the newest `max_size` samples are kept. Percentiles use the
    nearest-rank method over a sorted copy of the window.
    """

    def __init__(self, max_size: int = METRICS_MAX_SIZE):
        self._lock = RLock()
        self._samples: deque[float] = deque(maxlen=max_size)

    def add_sample(self, duration: float) -> None:
        with self._lock:
            self._samples.append(duration)

    def get_count(self) -> int:
        with self._lock:
            return len(self._samples)

    def get_percentile(self, percentile: float) -> float:
        """Sample at `percentile` (0-100), 0.0 while the window is empty."""
        if not 0 <= percentile <= 100:
            raise ValueError("Percentile must be between 0 and 100.")
        with self._lock:
            _window = sorted(self._samples)
        if not _window:
            return 0.0
        _rank = max(1, ceil(percentile / 100 * len(_window)))
        return float(_window[_rank - 1])

    def get_stats(self, percentiles: tuple[int, ...] | list[int] = REPORTED_PERCENTILES) -> dict:
        """Sample count plus one `p<N>` entry per requested percentile."""
        with self._lock:
            _report: dict[str, float] = {"count": len(self._samples)}
            for _percentile in percentiles:
                _report[f"p{_percentile}"] = self.get_percentile(_percentile)
            return _report

    def clear(self):
        with self._lock:
            self._samples.clear()


def measure_latency_decorator(metrics: Metrics):
    """Record how long each call of the wrapped function takes.

    The sample is added even when the call raises.

    Args:
        metrics: Window receiving one millisecond sample per call.

    """

    def decorator(func: Callable):
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            _started = perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                metrics.add_sample((perf_counter() - _started) * 1000)

        return wrapper

    return decorator
