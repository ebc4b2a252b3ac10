from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum, IntEnum, unique
from ipaddress import IPv4Address
from time import time

from scapy.layers.dhcp import BOOTP, DHCP
from scapy.layers.inet import IP, UDP
from scapy.layers.l2 import Ether
from scapy.packet import Packet

from leasekeeper.services.dhcp.utils import (
    NO_IP_ASSIGNED,
    extract_dhcp_type_from_packet,
    extract_hostname_from_packet,
    extract_mac_from_packet,
    extract_param_req_list,
    extract_relay_agent_info,
    extract_req_addr_from_packet,
    extract_server_id_from_dhcp_packet,
)

DHCP_SERVER_PORT = 67
DHCP_CLIENT_PORT = 68


@unique
class DHCPType(IntEnum):
    DISCOVER = 1
    OFFER = 2
    REQUEST = 3
    DECLINE = 4
    ACK = 5
    NAK = 6
    RELEASE = 7
    INFORM = 8

    def __str__(self) -> str:
        return str(self.value)

    @classmethod
    def from_value(cls, value: int) -> "DHCPType | None":
        try:
            return cls(value)
        except ValueError:
            return None


@unique
class DHCPOptionCode(IntEnum):
    """DHCP option codes used by the server (RFC 2132, RFC 3046)"""

    SUBNET_MASK = 1
    ROUTER = 3
    DOMAIN_NAME_SERVER = 6
    HOSTNAME = 12
    REQUESTED_IP = 50
    LEASE_TIME = 51
    MESSAGE_TYPE = 53
    SERVER_ID = 54
    PARAM_REQ_LIST = 55
    RENEWAL_TIME = 58
    REBINDING_TIME = 59
    RELAY_AGENT_INFO = 82


@unique
class DHCPLeaseType(str, Enum):
    """Define DHCP lease type"""

    STATIC = "static"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class OptionSet:
    """Network parameters handed to a client: subnet mask, router and DNS."""

    subnet_mask: IPv4Address
    router: IPv4Address
    dns: IPv4Address

    @classmethod
    def from_config(cls, options: dict) -> "OptionSet":
        return cls(
            subnet_mask=IPv4Address(options["subnet_mask"]),
            router=IPv4Address(options["router"]),
            dns=IPv4Address(options["dns"]),
        )

    def as_dict(self) -> dict[int, IPv4Address]:
        return {
            DHCPOptionCode.SUBNET_MASK: self.subnet_mask,
            DHCPOptionCode.ROUTER: self.router,
            DHCPOptionCode.DOMAIN_NAME_SERVER: self.dns,
        }

    def select(self, param_req_list: list[int]) -> list[tuple[int, IPv4Address]]:
        """Options in the order the client asked for them, or all of them
        when the client sent no parameter request list."""
        _available = self.as_dict()
        if not param_req_list:
            return list(_available.items())

        _selected = []
        _seen: set[int] = set()
        for _code in param_req_list:
            if _code in _available and _code not in _seen:
                _seen.add(_code)
                _selected.append((DHCPOptionCode(_code), _available[_code]))
        return _selected


@dataclass
class DHCPMessage:
    """Decoded view of an incoming client message."""

    mac: str
    dhcp_type: int
    xid: int = 0
    src_ip: str = NO_IP_ASSIGNED
    ciaddr: str = NO_IP_ASSIGNED
    giaddr: str = NO_IP_ASSIGNED
    requested_ip: str = ""
    server_id: str = ""
    hostname: str = "unknown"
    param_req_list: list[int] = field(default_factory=list)
    relay_agent_info: bytes = b""
    packet: Packet | None = field(default=None, repr=False)
    received: float = field(default_factory=time)

    @classmethod
    def from_packet(cls, packet: Packet) -> "DHCPMessage":
        return cls(
            mac=extract_mac_from_packet(packet),
            dhcp_type=extract_dhcp_type_from_packet(packet),
            xid=packet[BOOTP].xid,
            src_ip=packet[IP].src if packet.haslayer(IP) else NO_IP_ASSIGNED,
            ciaddr=packet[BOOTP].ciaddr,
            giaddr=packet[BOOTP].giaddr,
            requested_ip=extract_req_addr_from_packet(packet),
            server_id=extract_server_id_from_dhcp_packet(packet),
            hostname=extract_hostname_from_packet(packet),
            param_req_list=extract_param_req_list(packet),
            relay_agent_info=extract_relay_agent_info(packet),
            packet=packet,
        )

    @property
    def dedup_key(self) -> tuple[int, str, int]:
        return (self.xid, self.mac, self.dhcp_type)


@dataclass(frozen=True)
class DHCPReply:
    """What to send back: type, addresses, lease time and options."""

    dhcp_type: DHCPType
    server_ip: IPv4Address
    your_ip: IPv4Address | None = None
    lease_time: int = 0
    options: list[tuple[int, IPv4Address]] = field(default_factory=list)


@dataclass(frozen=True)
class StaticBinding:
    mac: str
    ip: IPv4Address
    expiry: float
    active: bool = True


@dataclass(frozen=True)
class DynamicLease:
    index: int
    mac: str
    expiry: float

    def is_live(self, now: float) -> bool:
        return self.expiry > now


@dataclass(frozen=True)
class DirectoryRow:
    """One device row from the directory; `ip` is None when unassigned."""

    id: int
    mac: str
    ip: IPv4Address | None
    active: bool = True
    valid_to: datetime | None = None


@dataclass
class DHCPConfig:
    """
    DHCP wire configuration used when encoding replies
    """

    server_ip: str
    server_mac: str
    port: int
    broadcast_mac: str
    broadcast_ip: str
    flags: int
    renewal_time_ratio: float
    rebinding_time_ratio: float


@dataclass
class BOOTPOptions:
    """
    Common BOOTP options

    Attributes:
        op (int): Message opcode/type.
            - 1 = BOOTREQUEST (client request)
            - 2 = BOOTREPLY (server reply)
        xid (int): Transaction ID, random number chosen by client.
        flags (int): Flags field (e.g., 0x8000 for broadcast reply).
        chaddr (bytes): Client hardware address padded to 16 bytes.
        yiaddr (str): 'Your' IP address, the IP address assigned to the client.
        siaddr (str): Server IP address, address of the DHCP server sending the reply.
        ciaddr (str): Client IP address (current IP address, if any).
        giaddr (str): Relay agent IP address (0.0.0.0 if none).
    """

    op: int
    xid: int
    flags: int
    chaddr: bytes
    yiaddr: str
    siaddr: str
    ciaddr: str
    giaddr: str


_SCAPY_OPTION_NAMES = {
    DHCPOptionCode.SUBNET_MASK: "subnet_mask",
    DHCPOptionCode.ROUTER: "router",
    DHCPOptionCode.DOMAIN_NAME_SERVER: "name_server",
}


class DHCPResponseFactory:
    """
    Factory class to encode DHCPReply objects as scapy packets.

    Usage:
        factory = DHCPResponseFactory(DHCPConfig(...))
        packet = factory.build(reply, request_packet)

    Notes:
        - `request_packet` must contain a BOOTP layer; xid and chaddr are echoed.
        - Relayed requests (giaddr set) are answered unicast to the relay on port 67.
        - Relay Agent Information (option 82) is echoed back as RFC 3046 requires.
        - NAK carries only message type and server identifier.
    """

    def __init__(self, dhcp_config: DHCPConfig):
        self._config = dhcp_config

    def build(self, reply: DHCPReply, request_packet: Packet) -> Packet:
        """Build and return a DHCP response packet for the given reply."""
        _cfg = self._config
        _request = request_packet[BOOTP]
        _relayed = _request.giaddr not in (None, NO_IP_ASSIGNED)

        _bootp_opts = BOOTPOptions(
            op=2,
            xid=_request.xid,
            flags=_cfg.flags,
            chaddr=bytes(_request.chaddr[:6]) + b"\x00" * 10,
            yiaddr=str(reply.your_ip) if reply.your_ip else NO_IP_ASSIGNED,
            siaddr=_cfg.server_ip,
            ciaddr=NO_IP_ASSIGNED if reply.dhcp_type == DHCPType.NAK else _request.ciaddr,
            giaddr=_request.giaddr,
        )

        if _relayed:
            _dst_ip, _dport = _request.giaddr, DHCP_SERVER_PORT
        else:
            _dst_ip = _cfg.broadcast_ip
            _dport = request_packet[UDP].sport if request_packet.haslayer(UDP) else DHCP_CLIENT_PORT

        return (
            Ether(src=_cfg.server_mac, dst=_cfg.broadcast_mac)
            / IP(src=_cfg.server_ip, dst=_dst_ip)
            / UDP(sport=_cfg.port, dport=_dport)
            / BOOTP(**asdict(_bootp_opts))
            / DHCP(options=self._build_dhcp_opts(reply, request_packet))
        )

    def _build_dhcp_opts(self, reply: DHCPReply, request_packet: Packet) -> list:
        """Create DHCP options list corresponding to the DHCP message type."""
        _cfg = self._config
        _options: list = [
            ("message-type", int(reply.dhcp_type)),
            ("server_id", str(reply.server_ip)),
        ]

        if reply.dhcp_type in (DHCPType.OFFER, DHCPType.ACK):
            for _code, _value in reply.options:
                _options.append((_SCAPY_OPTION_NAMES[_code], str(_value)))
            if reply.lease_time:
                _options.extend(
                    [
                        ("lease_time", reply.lease_time),
                        ("renewal_time", int(reply.lease_time * _cfg.renewal_time_ratio)),
                        ("rebinding_time", int(reply.lease_time * _cfg.rebinding_time_ratio)),
                    ]
                )
        elif reply.dhcp_type != DHCPType.NAK:
            raise RuntimeError(f"Unknown DHCP reply type: {reply.dhcp_type}")

        _relay_info = extract_relay_agent_info(request_packet)
        if _relay_info:
            _options.append(("relay_agent_information", _relay_info))

        _options.append("end")
        return _options
