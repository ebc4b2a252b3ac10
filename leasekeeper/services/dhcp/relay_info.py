"""Relay Agent Information (option 82, RFC 3046) decoding.

The option value is a sequence of SubOpt/Length/Value tuples::

     SubOpt  Len     Sub-option Value
    +------+------+------+------+------+------+--...-+------+
    |  1   |   N  |  s1  |  s2  |  s3  |  s4  |      |  sN  |   Agent Circuit ID
    +------+------+------+------+------+------+--...-+------+
    |  2   |   N  |  i1  |  i2  |  i3  |  i4  |      |  iN  |   Agent Remote ID
    +------+------+------+------+------+------+--...-+------+

The values read here are for logging only and never influence an
address assignment, so nothing in this module raises on bad input.
"""

from dataclasses import dataclass
from typing import Any

CIRCUIT_ID = 1
REMOTE_ID = 2

# Switch port is carried as two bytes at this offset of the Circuit ID
CIRCUIT_PORT_OFFSET = 4
# Remote ID starts with a type/length pair before the switch name
REMOTE_ID_NAME_OFFSET = 2


@dataclass(frozen=True)
class RelayInfo:
    circuit_id: bytes | None = None
    remote_id: bytes | None = None
    port: str | None = None
    switch: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.port is None and self.switch is None


def parse_sub_options(raw: bytes) -> dict[int, bytes]:
    """Split an option 82 value into {sub-option code: value}.

    The first occurrence of a code wins. Parsing stops at a truncated tuple.
    """
    _sub_options: dict[int, bytes] = {}
    _index = 0
    while _index + 2 <= len(raw):
        _code = raw[_index]
        _length = raw[_index + 1]
        _value = raw[_index + 2 : _index + 2 + _length]
        if len(_value) < _length:
            break
        _sub_options.setdefault(_code, _value)
        _index += 2 + _length
    return _sub_options


def extract_relay_info(raw: Any) -> RelayInfo:
    """Best-effort port and switch identity from a raw option 82 value."""
    if not raw:
        return RelayInfo()
    if isinstance(raw, str):
        raw = raw.encode("latin-1")
    try:
        _sub_options = parse_sub_options(bytes(raw))
    except (TypeError, ValueError):
        return RelayInfo()

    _circuit_id = _sub_options.get(CIRCUIT_ID)
    _remote_id = _sub_options.get(REMOTE_ID)

    _port = None
    if _circuit_id and len(_circuit_id) >= CIRCUIT_PORT_OFFSET + 2:
        _port = f"{_circuit_id[CIRCUIT_PORT_OFFSET]}/{_circuit_id[CIRCUIT_PORT_OFFSET + 1]}"

    _switch = None
    if _remote_id and len(_remote_id) > REMOTE_ID_NAME_OFFSET:
        _switch = _remote_id[REMOTE_ID_NAME_OFFSET:].decode("ascii", errors="replace")

    return RelayInfo(
        circuit_id=_circuit_id,
        remote_id=_remote_id,
        port=_port,
        switch=_switch,
    )
