import re
from ipaddress import AddressValueError, IPv4Address
from typing import Any

from scapy.layers.dhcp import BOOTP, DHCP, DHCPTypes
from scapy.packet import Packet

_DHCP_TYPE_BY_NAME = {_name: _code for _code, _name in DHCPTypes.items()}

DEFAULT_HOSTNAME = "unknown"
DEFAULT_DHCP_TYPE = -1
NO_IP_ASSIGNED = "0.0.0.0"
ZERO_MAC = "00:00:00:00:00:00"

_MAC_SEPARATED = re.compile(r"^[0-9a-f]{2}([:-])(?:[0-9a-f]{2}\1){4}[0-9a-f]{2}$")
_MAC_DOTTED = re.compile(r"^[0-9a-f]{4}\.[0-9a-f]{4}\.[0-9a-f]{4}$")


def normalize_mac(raw: str) -> str:
    """Return a MAC as lowercase colon separated octets.

    Accepts ``aa:bb:cc:dd:ee:ff``, ``aa-bb-cc-dd-ee-ff`` and ``aabb.ccdd.eeff``.

    Raises:
        ValueError: If `raw` is not one of the accepted forms.

    """
    if not isinstance(raw, str):
        raise ValueError(f"MAC must be str, got {type(raw).__name__}.")
    _mac = raw.strip().lower()
    if _MAC_SEPARATED.match(_mac):
        return _mac.replace("-", ":")
    if _MAC_DOTTED.match(_mac):
        _digits = _mac.replace(".", "")
        return ":".join(_digits[i : i + 2] for i in range(0, 12, 2))
    raise ValueError(f"Invalid MAC address {raw!r}.")


def parse_ipv4(value: Any) -> IPv4Address | None:
    """Parse an IPv4 address from str, 4 raw bytes or IPv4Address; None if invalid."""
    if isinstance(value, IPv4Address):
        return value
    if isinstance(value, bytes) and len(value) != 4:
        return None
    if not isinstance(value, (str, bytes)) or not value:
        return None
    try:
        return IPv4Address(value)
    except AddressValueError:
        return None


def _get_option(packet: Packet, name: str) -> Any:
    for _opt in packet[DHCP].options:
        if isinstance(_opt, tuple) and _opt[0] == name:
            return _opt[1]
    return None


def extract_mac_from_packet(packet: Packet) -> str:
    """Client hardware address from BOOTP chaddr."""
    return packet[BOOTP].chaddr[:6].hex(":")


def extract_dhcp_type_from_packet(packet: Packet) -> int:
    """Extract the DHCP message type from the packet."""
    _type = _get_option(packet, "message-type")
    if _type is None:
        return DEFAULT_DHCP_TYPE
    if isinstance(_type, str):
        # Packets built locally keep scapy's type names until dissected
        return _DHCP_TYPE_BY_NAME.get(_type, DEFAULT_DHCP_TYPE)
    return int(_type)


def extract_req_addr_from_packet(packet: Packet) -> str:
    """Extract the requested IP address from a DHCP packet (Option 50)."""
    _addr = _get_option(packet, "requested_addr")
    return str(_addr) if _addr is not None else ""


def extract_server_id_from_dhcp_packet(packet: Packet) -> str:
    """Extract the DHCP Server Identifier from a DHCP packet (Option 54)."""
    _server_id = _get_option(packet, "server_id")
    return str(_server_id) if _server_id is not None else ""


def extract_hostname_from_packet(packet: Packet) -> str:
    _hostname = _get_option(packet, "hostname")
    if isinstance(_hostname, str):
        return _hostname
    if isinstance(_hostname, bytes):
        return _hostname.decode(errors="ignore")
    return DEFAULT_HOSTNAME


def extract_param_req_list(packet: Packet) -> list[int]:
    """Extracts the 'param_req_list' from the DHCP packet (Option 55)."""
    _param_req_list = _get_option(packet, "param_req_list")
    if not _param_req_list:
        return []
    if isinstance(_param_req_list, int):
        return [_param_req_list]
    return [int(_code) for _code in _param_req_list]


def extract_relay_agent_info(packet: Packet) -> bytes:
    """Raw Relay Agent Information (Option 82), empty if absent."""
    _info = _get_option(packet, "relay_agent_information")
    if _info is None:
        return b""
    if isinstance(_info, str):
        return _info.encode("latin-1")
    return bytes(_info)
