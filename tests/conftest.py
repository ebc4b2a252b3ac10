import logging
from ipaddress import IPv4Address
from random import Random

import pytest

from leasekeeper.services.dhcp.assignment import AssignmentEngine
from leasekeeper.services.dhcp.lease_pool import DynamicLeasePool
from leasekeeper.services.dhcp.message_handler import DHCPMessageHandler
from leasekeeper.services.dhcp.models import DirectoryRow, OptionSet
from leasekeeper.services.dhcp.static_bindings import StaticBindingTable

LEASE_TIME = 3600
OFFER_HOLD = 60


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FixedRandom:
    """Stands in for random.Random, always starts the scan at `start`."""

    def __init__(self, start: int):
        self.start = start

    def randrange(self, stop: int) -> int:
        return self.start % stop


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("leasekeeper-test")


@pytest.fixture
def server_ip() -> IPv4Address:
    return IPv4Address("192.168.1.2")


@pytest.fixture
def allowed_options() -> OptionSet:
    return OptionSet(
        subnet_mask=IPv4Address("255.255.254.0"),
        router=IPv4Address("134.130.172.1"),
        dns=IPv4Address("134.130.4.1"),
    )


@pytest.fixture
def denied_options() -> OptionSet:
    return OptionSet(
        subnet_mask=IPv4Address("255.255.255.0"),
        router=IPv4Address("192.168.1.1"),
        dns=IPv4Address("192.168.1.1"),
    )


@pytest.fixture
def pool(clock) -> DynamicLeasePool:
    return DynamicLeasePool(start="192.168.1.10", size=5, clock=clock, rng=Random(7))


@pytest.fixture
def statics(logger) -> StaticBindingTable:
    return StaticBindingTable.from_rows(
        [DirectoryRow(id=1, mac="AA:BB:CC:DD:EE:03", ip=IPv4Address("192.168.2.9"))],
        logger=logger,
    )


@pytest.fixture
def engine(pool, statics, allowed_options, denied_options, logger) -> AssignmentEngine:
    return AssignmentEngine(
        pool=pool,
        statics=statics,
        allowed_options=allowed_options,
        denied_options=denied_options,
        lease_time=LEASE_TIME,
        offer_hold=OFFER_HOLD,
        logger=logger,
    )


@pytest.fixture
def handler(engine, server_ip, logger) -> DHCPMessageHandler:
    return DHCPMessageHandler(engine=engine, server_ip=server_ip, logger=logger)
