from ipaddress import IPv4Address
from logging import Logger
from time import time
from types import MappingProxyType
from typing import Container, Iterable

from leasekeeper.services.dhcp.models import DirectoryRow, StaticBinding
from leasekeeper.services.dhcp.utils import ZERO_MAC, normalize_mac

# Informational only, static bindings never expire while the server runs
STATIC_BOOKKEEPING_TTL = 3600


class DirectoryError(Exception):
    """Directory data is unreadable or inconsistent; the server must not start."""


class StaticBindingTable:
    """Read-only MAC <-> IP table of pre-provisioned clients.

    Built once from directory rows. Lookups need no locking since the
    table is never mutated after construction.
    """

    def __init__(self, bindings: Iterable[StaticBinding] = ()):
        _by_mac: dict[str, StaticBinding] = {}
        _by_ip: dict[IPv4Address, StaticBinding] = {}
        for _binding in bindings:
            _by_mac.setdefault(_binding.mac, _binding)
            _by_ip.setdefault(_binding.ip, _binding)
        self._by_mac = MappingProxyType(_by_mac)
        self._by_ip = MappingProxyType(_by_ip)

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[DirectoryRow],
        logger: Logger,
        strict: bool = True,
        now: float | None = None,
        excluded: Container | None = None,
    ) -> "StaticBindingTable":
        """Build the table from directory rows.

        A row contributes only with a non-zero IP and a non-placeholder MAC.
        A malformed MAC raises DirectoryError in strict mode, otherwise the
        row is logged and skipped. The same applies to a row whose IP is in
        `excluded`, the addresses handed out by the dynamic pool.
        """
        _now = time() if now is None else now
        _bindings: list[StaticBinding] = []
        _seen_macs: set[str] = set()

        for _row in rows:
            try:
                _mac = normalize_mac(_row.mac)
            except ValueError as err:
                if strict:
                    raise DirectoryError(
                        f"Directory row ID:{_row.id} has wrong MAC format {_row.mac!r}."
                    ) from err
                logger.error("Skipping directory row ID:%s wrong MAC format %r.", _row.id, _row.mac)
                continue

            if _row.ip is None or _mac == ZERO_MAC:
                continue

            if excluded is not None and _row.ip in excluded:
                if strict:
                    raise DirectoryError(f"Directory row ID:{_row.id} binds IP:{_row.ip} inside the dynamic pool.")
                logger.error("Skipping directory row ID:%s, IP:%s is inside the dynamic pool.", _row.id, _row.ip)
                continue

            if _mac in _seen_macs:
                logger.warning("Duplicate static binding for MAC:%s ignored (ID:%s).", _mac, _row.id)
                continue
            _seen_macs.add(_mac)

            logger.debug("Found static lease: %s -> %s active:%s.", _mac, _row.ip, _row.active)
            _bindings.append(
                StaticBinding(
                    mac=_mac,
                    ip=_row.ip,
                    expiry=_now + STATIC_BOOKKEEPING_TTL,
                    active=_row.active,
                )
            )

        logger.info("Loaded %s static bindings.", len(_bindings))
        return cls(_bindings)

    def lookup_ip(self, mac: str) -> IPv4Address | None:
        """IP bound to this MAC."""
        _binding = self._by_mac.get(mac.lower())
        return _binding.ip if _binding else None

    def lookup_mac(self, ip: IPv4Address | str) -> str | None:
        """MAC owning this IP."""
        _binding = self._by_ip.get(IPv4Address(ip))
        return _binding.mac if _binding else None

    def owns(self, mac: str, ip: IPv4Address) -> bool:
        """True if `mac` has a static binding for exactly `ip`."""
        return self.lookup_ip(mac) == ip

    def get(self, mac: str) -> StaticBinding | None:
        return self._by_mac.get(mac.lower())

    def __len__(self) -> int:
        return len(self._by_mac)

    def __contains__(self, mac: object) -> bool:
        return isinstance(mac, str) and mac.lower() in self._by_mac
