"""DHCP service metrics.

`dhcp_metrics` is a module-level object intended to be shared across the app.
"""

from collections import Counter
from threading import RLock
from time import time

from leasekeeper.libs.libs import Metrics

dhcp_metrics = Metrics()


class DHCPStats:
    """Runtime counters of received and sent DHCP messages.

    Keys follow the pattern `received_<type>` / `sent_<type>` plus
    `received_total`, `received_malformed`, `sent_total`,
    `dropped_duplicate` and `pool_exhausted`.
    """

    def __init__(self):
        self._lock = RLock()
        self._counters: Counter[str] = Counter()
        self._start_time = time()

    def increment(self, key: str, count: int = 1):
        with self._lock:
            self._counters[key] += count

    def get(self, key: str) -> int:
        with self._lock:
            return self._counters[key]

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "start_time": self._start_time,
                "last_updated": time(),
                **self._counters,
            }
