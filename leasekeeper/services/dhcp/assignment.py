from dataclasses import dataclass
from ipaddress import IPv4Address
from logging import Logger

from leasekeeper.services.dhcp.lease_pool import DynamicLeasePool
from leasekeeper.services.dhcp.models import DHCPLeaseType, OptionSet
from leasekeeper.services.dhcp.static_bindings import StaticBindingTable
from leasekeeper.services.dhcp.utils import parse_ipv4


@dataclass(frozen=True)
class Assignment:
    ip: IPv4Address
    options: OptionSet
    lease_type: DHCPLeaseType


class AssignmentEngine:
    """Decides which address a client is offered or confirmed.

    Static bindings answer with the `allowed` option set, the dynamic pool
    with the `denied` one. Callers are expected to serialise calls; the
    message handler holds its lock around every decision.
    """

    def __init__(
        self,
        pool: DynamicLeasePool,
        statics: StaticBindingTable,
        allowed_options: OptionSet,
        denied_options: OptionSet,
        lease_time: int,
        offer_hold: int,
        logger: Logger,
    ):
        self.pool = pool
        self.statics = statics
        self.allowed_options = allowed_options
        self.denied_options = denied_options
        self.lease_time = lease_time
        self.offer_hold = offer_hold
        self.logger = logger

    def offer(self, mac: str) -> Assignment | None:
        """Address to OFFER on DISCOVER, None when the pool is exhausted.

        Tried in order: static binding, the client's previous dynamic
        address, a fresh index from the pool.
        """
        for _attempt in (self._offer_static, self._offer_previous, self._offer_fresh):
            _assignment = _attempt(mac)
            if _assignment:
                return _assignment

        self.logger.warning("No more free IPs available for MAC:%s.", mac)
        return None

    def _offer_static(self, mac: str) -> Assignment | None:
        _ip = self.statics.lookup_ip(mac)
        if _ip is None:
            return None
        self.logger.info("DHCPOFFER static IP:%s to MAC:%s.", _ip, mac)
        return Assignment(ip=_ip, options=self.allowed_options, lease_type=DHCPLeaseType.STATIC)

    def _offer_previous(self, mac: str) -> Assignment | None:
        _index = self.pool.find_by_owner(mac)
        if _index is None:
            return None
        if not self.pool.is_live(_index):
            self._hold(_index, mac)
        _ip = self.pool.ip_for(_index)
        self.logger.info("DHCPOFFER old IP:%s to MAC:%s.", _ip, mac)
        return Assignment(ip=_ip, options=self.denied_options, lease_type=DHCPLeaseType.DYNAMIC)

    def _offer_fresh(self, mac: str) -> Assignment | None:
        _index = self.pool.allocate_free()
        if _index is None:
            return None
        self._hold(_index, mac)
        _ip = self.pool.ip_for(_index)
        self.logger.info("DHCPOFFER new IP:%s to MAC:%s.", _ip, mac)
        return Assignment(ip=_ip, options=self.denied_options, lease_type=DHCPLeaseType.DYNAMIC)

    def _hold(self, index: int, mac: str):
        """Keep an offered index for the client until it sends its REQUEST."""
        if self.offer_hold > 0:
            self.pool.reserve(index, mac, self.offer_hold)

    def confirm(self, mac: str, requested_ip: str) -> Assignment | None:
        """Address to ACK on REQUEST, None to NAK."""
        _requested = parse_ipv4(requested_ip)
        if _requested is None:
            self.logger.debug("REQUEST from MAC:%s without valid requested IP %r.", mac, requested_ip)
            return None

        _index = self.pool.index_of(_requested)
        if _index is not None:
            return self._confirm_dynamic(mac, _index)
        return self._confirm_static(mac, _requested)

    def _confirm_dynamic(self, mac: str, index: int) -> Assignment | None:
        if not self.pool.is_available_for(index, mac):
            _holder = self.pool.get(index)
            self.logger.info(
                "DHCPNAK IP:%s held by MAC:%s, refused for MAC:%s.",
                self.pool.ip_for(index),
                _holder.mac if _holder else None,
                mac,
            )
            return None

        self.pool.reserve(index, mac, self.lease_time)
        _ip = self.pool.ip_for(index)
        self.logger.info("DHCPACK IP:%s is granted for MAC:%s.", _ip, mac)
        return Assignment(ip=_ip, options=self.denied_options, lease_type=DHCPLeaseType.DYNAMIC)

    def _confirm_static(self, mac: str, requested: IPv4Address) -> Assignment | None:
        if not self.statics.owns(mac, requested):
            self.logger.info("DHCPNAK IP:%s is not a static binding of MAC:%s.", requested, mac)
            return None
        self.logger.info("DHCPACK granting static IP:%s to MAC:%s.", requested, mac)
        return Assignment(ip=requested, options=self.allowed_options, lease_type=DHCPLeaseType.STATIC)

    def release(self, mac: str) -> int | None:
        """Drop the client's dynamic lease, if any."""
        _index = self.pool.release(mac)
        if _index is None:
            self.logger.debug("Nothing to release for MAC:%s.", mac)
        else:
            self.logger.info("Released IP:%s of MAC:%s.", self.pool.ip_for(_index), mac)
        return _index
