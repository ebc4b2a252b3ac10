from ipaddress import IPv4Address

import pytest
from scapy.layers.dhcp import BOOTP, DHCP
from scapy.layers.inet import IP, UDP
from scapy.layers.l2 import Ether

from leasekeeper.services.dhcp.models import (
    DHCPConfig,
    DHCPMessage,
    DHCPOptionCode,
    DHCPReply,
    DHCPResponseFactory,
    DHCPType,
    OptionSet,
)
from leasekeeper.services.dhcp.utils import normalize_mac, parse_ipv4

CLIENT_MAC = "aa:bb:cc:dd:ee:01"
SERVER_IP = "192.168.1.2"
RELAY_INFO = bytes([1, 6, 0, 4, 0, 1, 0, 17, 2, 10, 1, 8]) + b"switch01"


def client_packet(dhcp_options: list, giaddr: str = "0.0.0.0", ciaddr: str = "0.0.0.0"):
    return (
        Ether(src=CLIENT_MAC, dst="ff:ff:ff:ff:ff:ff")
        / IP(src="0.0.0.0", dst="255.255.255.255")
        / UDP(sport=68, dport=67)
        / BOOTP(op=1, xid=0xCAFE, chaddr=bytes.fromhex(CLIENT_MAC.replace(":", "")), giaddr=giaddr, ciaddr=ciaddr)
        / DHCP(options=dhcp_options + ["end"])
    )


@pytest.fixture
def factory() -> DHCPResponseFactory:
    return DHCPResponseFactory(
        DHCPConfig(
            server_ip=SERVER_IP,
            server_mac="02:00:00:00:00:05",
            port=67,
            broadcast_mac="ff:ff:ff:ff:ff:ff",
            broadcast_ip="255.255.255.255",
            flags=0x8000,
            renewal_time_ratio=0.5,
            rebinding_time_ratio=0.875,
        )
    )


def test_dhcp_type():
    assert DHCPType.DISCOVER == 1
    assert DHCPType.INFORM == 8
    assert str(DHCPType.ACK) == "5"
    assert DHCPType.from_value(3) is DHCPType.REQUEST
    # Negative
    assert DHCPType.from_value(99) is None
    assert DHCPType.from_value(-1) is None


def test_normalize_mac():
    assert normalize_mac("AA:BB:CC:DD:EE:01") == CLIENT_MAC
    assert normalize_mac("aa-bb-cc-dd-ee-01") == CLIENT_MAC
    assert normalize_mac("aabb.ccdd.ee01") == CLIENT_MAC
    assert normalize_mac(" aa:bb:cc:dd:ee:01 ") == CLIENT_MAC

    # Negative
    for raw in ("", "aa:bb:cc:dd:ee", "aa:bb-cc:dd:ee:01", "gg:bb:cc:dd:ee:01", "aabbccddee01", None):
        with pytest.raises(ValueError):
            normalize_mac(raw)


def test_parse_ipv4():
    assert parse_ipv4("192.168.1.1") == IPv4Address("192.168.1.1")
    assert parse_ipv4(bytes([192, 168, 1, 1])) == IPv4Address("192.168.1.1")
    assert parse_ipv4(IPv4Address("10.0.0.1")) == IPv4Address("10.0.0.1")

    # Negative
    assert parse_ipv4("") is None
    assert parse_ipv4(None) is None
    assert parse_ipv4("300.1.1.1") is None
    assert parse_ipv4("192.168.1") is None
    assert parse_ipv4(bytes([192, 168, 1])) is None
    assert parse_ipv4(3232235777) is None


def test_option_set(denied_options):
    options = OptionSet.from_config({"subnet_mask": "255.255.255.0", "router": "192.168.1.1", "dns": "192.168.1.1"})

    assert options == denied_options
    assert options.select([]) == [
        (DHCPOptionCode.SUBNET_MASK, IPv4Address("255.255.255.0")),
        (DHCPOptionCode.ROUTER, IPv4Address("192.168.1.1")),
        (DHCPOptionCode.DOMAIN_NAME_SERVER, IPv4Address("192.168.1.1")),
    ]
    assert options.select([3, 15, 1, 3]) == [
        (DHCPOptionCode.ROUTER, IPv4Address("192.168.1.1")),
        (DHCPOptionCode.SUBNET_MASK, IPv4Address("255.255.255.0")),
    ]
    # Negative
    assert options.select([12, 42]) == []


def test_dhcp_message_from_packet():
    raw = client_packet(
        [
            ("message-type", "request"),
            ("requested_addr", "192.168.1.11"),
            ("server_id", SERVER_IP),
            ("hostname", b"laptop"),
            ("param_req_list", [1, 3, 6]),
        ]
    )
    msg = DHCPMessage.from_packet(Ether(bytes(raw)))

    assert msg.mac == CLIENT_MAC
    assert msg.dhcp_type == DHCPType.REQUEST
    assert msg.xid == 0xCAFE
    assert msg.src_ip == "0.0.0.0"
    assert msg.requested_ip == "192.168.1.11"
    assert msg.server_id == SERVER_IP
    assert msg.hostname == "laptop"
    assert msg.param_req_list == [1, 3, 6]
    assert msg.relay_agent_info == b""
    assert msg.dedup_key == (0xCAFE, CLIENT_MAC, DHCPType.REQUEST)


def test_dhcp_message_from_packet_defaults():
    msg = DHCPMessage.from_packet(Ether(bytes(client_packet([("message-type", "discover")]))))

    assert msg.dhcp_type == DHCPType.DISCOVER
    assert msg.requested_ip == ""
    assert msg.server_id == ""
    assert msg.hostname == "unknown"
    assert msg.param_req_list == []

    # Not yet dissected, type still carried by name
    assert DHCPMessage.from_packet(client_packet([("message-type", "release")])).dhcp_type == DHCPType.RELEASE

    # Negative
    assert DHCPMessage.from_packet(client_packet([])).dhcp_type == -1
    assert DHCPMessage.from_packet(client_packet([("message-type", "bogus")])).dhcp_type == -1


def test_factory_offer(factory, denied_options):
    request = client_packet([("message-type", "discover")])
    reply = DHCPReply(
        dhcp_type=DHCPType.OFFER,
        server_ip=IPv4Address(SERVER_IP),
        your_ip=IPv4Address("192.168.1.11"),
        lease_time=3600,
        options=denied_options.select([]),
    )

    packet = factory.build(reply, request)

    assert packet[Ether].dst == "ff:ff:ff:ff:ff:ff"
    assert packet[IP].src == SERVER_IP
    assert packet[IP].dst == "255.255.255.255"
    assert (packet[UDP].sport, packet[UDP].dport) == (67, 68)
    assert packet[BOOTP].op == 2
    assert packet[BOOTP].xid == 0xCAFE
    assert packet[BOOTP].yiaddr == "192.168.1.11"
    assert packet[BOOTP].chaddr[:6] == bytes.fromhex("aabbccddee01")
    assert packet[DHCP].options == [
        ("message-type", 2),
        ("server_id", SERVER_IP),
        ("subnet_mask", "255.255.255.0"),
        ("router", "192.168.1.1"),
        ("name_server", "192.168.1.1"),
        ("lease_time", 3600),
        ("renewal_time", 1800),
        ("rebinding_time", 3150),
        "end",
    ]

    decoded = Ether(bytes(packet))
    assert decoded[BOOTP].yiaddr == "192.168.1.11"
    assert ("message-type", 2) in decoded[DHCP].options
    assert ("lease_time", 3600) in decoded[DHCP].options


def test_factory_nak(factory):
    request = client_packet([("message-type", "request")], ciaddr="192.168.1.11")
    reply = DHCPReply(dhcp_type=DHCPType.NAK, server_ip=IPv4Address(SERVER_IP))

    packet = factory.build(reply, request)

    assert packet[BOOTP].yiaddr == "0.0.0.0"
    assert packet[BOOTP].ciaddr == "0.0.0.0"
    assert packet[DHCP].options == [("message-type", 6), ("server_id", SERVER_IP), "end"]


def test_factory_relayed_reply_echoes_relay_info(factory, denied_options):
    request = client_packet(
        [("message-type", "discover"), ("relay_agent_information", RELAY_INFO)],
        giaddr="10.20.0.1",
    )
    reply = DHCPReply(
        dhcp_type=DHCPType.OFFER,
        server_ip=IPv4Address(SERVER_IP),
        your_ip=IPv4Address("192.168.1.11"),
        lease_time=3600,
        options=denied_options.select([1]),
    )

    packet = factory.build(reply, request)

    assert packet[IP].dst == "10.20.0.1"
    assert packet[UDP].dport == 67
    assert packet[BOOTP].giaddr == "10.20.0.1"
    assert packet[DHCP].options[-2] == ("relay_agent_information", RELAY_INFO)


def test_factory_rejects_client_types(factory):
    request = client_packet([("message-type", "inform")])

    # Negative
    with pytest.raises(RuntimeError):
        factory.build(DHCPReply(dhcp_type=DHCPType.INFORM, server_ip=IPv4Address(SERVER_IP)), request)
