from ipaddress import IPv4Address
from random import Random
from threading import RLock
from time import time
from typing import Callable

from leasekeeper.services.dhcp.models import DynamicLease

MAX_IPV4 = int(IPv4Address("255.255.255.255"))


class DynamicLeasePool:
    """Fixed-size, index-addressed table of dynamic leases.

    Index ``i`` maps to ``start + i`` for ``0 <= i < size``. An index with
    no entry, or with an entry whose expiry has passed, is free. Expired
    entries are not swept; they are overwritten when the index is handed
    out again.

    Each owner holds at most one entry. Reserving a second index for the
    same MAC drops the first one, and overwriting an index drops the
    previous owner's claim to it.
    """

    def __init__(
        self,
        start: IPv4Address | str,
        size: int,
        clock: Callable[[], float] = time,
        rng: Random | None = None,
    ):
        _start = IPv4Address(start)
        if size <= 0:
            raise ValueError("Pool size must be positive.")
        if int(_start) + size - 1 > MAX_IPV4:
            raise ValueError("Pool runs past 255.255.255.255.")

        self._lock = RLock()
        self._start: IPv4Address = _start
        self._size: int = size
        self._clock = clock
        self._rng: Random = rng or Random()
        self._leases: dict[int, DynamicLease] = {}
        self._owners: dict[str, int] = {}

    @property
    def start(self) -> IPv4Address:
        return self._start

    @property
    def size(self) -> int:
        return self._size

    def ip_for(self, index: int) -> IPv4Address:
        self._check_index(index)
        return self._start + index

    def index_of(self, ip: IPv4Address | str) -> int | None:
        """Pool index of `ip`, None when outside the range."""
        _offset = int(IPv4Address(ip)) - int(self._start)
        if 0 <= _offset < self._size:
            return _offset
        return None

    def __contains__(self, ip: object) -> bool:
        if not isinstance(ip, (IPv4Address, str)):
            return False
        return self.index_of(ip) is not None

    def get(self, index: int) -> DynamicLease | None:
        with self._lock:
            return self._leases.get(index)

    def is_live(self, index: int) -> bool:
        with self._lock:
            _lease = self._leases.get(index)
            return bool(_lease and _lease.is_live(self._clock()))

    def is_available_for(self, index: int, mac: str) -> bool:
        """Free, expired, or already owned by `mac`."""
        with self._lock:
            _lease = self._leases.get(index)
            return _lease is None or _lease.mac == mac or not _lease.is_live(self._clock())

    def find_by_owner(self, mac: str) -> int | None:
        """Index held by `mac`, live or not yet reclaimed."""
        with self._lock:
            return self._owners.get(mac)

    def allocate_free(self) -> int | None:
        """First free index scanning from a random start and wrapping around."""
        with self._lock:
            _now = self._clock()
            _begin = self._rng.randrange(self._size)
            for _first, _last in ((_begin, self._size), (0, _begin)):
                for _index in range(_first, _last):
                    _lease = self._leases.get(_index)
                    if _lease is None or not _lease.is_live(_now):
                        return _index
            return None

    def reserve(self, index: int, mac: str, duration: float) -> DynamicLease:
        """Install or overwrite the entry at `index` for `mac`."""
        self._check_index(index)
        with self._lock:
            _previous = self._leases.get(index)
            if _previous and _previous.mac != mac and self._owners.get(_previous.mac) == index:
                del self._owners[_previous.mac]

            _held = self._owners.get(mac)
            if _held is not None and _held != index:
                self._leases.pop(_held, None)

            _lease = DynamicLease(index=index, mac=mac, expiry=self._clock() + duration)
            self._leases[index] = _lease
            self._owners[mac] = index
            return _lease

    def release(self, mac: str) -> int | None:
        """Drop the entry owned by `mac`; returns the freed index, None if nothing held."""
        with self._lock:
            _index = self._owners.pop(mac, None)
            if _index is not None:
                self._leases.pop(_index, None)
            return _index

    def leases(self) -> list[DynamicLease]:
        """Snapshot of all entries, expired ones included."""
        with self._lock:
            return sorted(self._leases.values(), key=lambda lease: lease.index)

    def live_count(self) -> int:
        with self._lock:
            _now = self._clock()
            return sum(1 for _lease in self._leases.values() if _lease.is_live(_now))

    def _check_index(self, index: int):
        if not 0 <= index < self._size:
            raise IndexError(f"Pool index {index} outside [0, {self._size}).")
