from datetime import datetime
from ipaddress import AddressValueError, IPv4Address
from json import JSONDecodeError, load
from logging import Logger
from pathlib import Path
from sqlite3 import Error as SQLiteError
from sqlite3 import connect
from typing import Container, Iterator

from leasekeeper.services.dhcp.models import DirectoryRow
from leasekeeper.services.dhcp.static_bindings import DirectoryError, StaticBindingTable

ZERO_DATE = "0001-01-01"
USER_ROWS_QUERY = """
    SELECT ID, Active, Net, MAC, IP, validto
    FROM user
    ORDER BY Net, Room DESC
"""


def encode_row_ip(network_base: IPv4Address, net: int, host: int) -> IPv4Address | None:
    """Address of a directory row: network_base + net.host; None when host is 0."""
    if not host:
        return None
    if not (0 <= net <= 255 and 0 < host <= 255):
        raise ValueError(f"Net {net} / IP {host} out of octet range.")
    return network_base + (net << 8) + host


def parse_valid_to(value) -> datetime | None:
    """None for no expiry (NULL, empty or the zero date)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    _text = str(value).strip()
    if not _text or _text.startswith(ZERO_DATE):
        return None
    return datetime.fromisoformat(_text)


def is_row_active(active_flag, valid_to: datetime | None) -> bool:
    """Active flag set and validity not in the past."""
    if not active_flag:
        return False
    if valid_to is None:
        return True
    return valid_to >= datetime.now(valid_to.tzinfo)


class SQLiteDirectory:
    """Device directory stored in a SQLite `user` table."""

    def __init__(self, path: Path, network_base: IPv4Address, logger: Logger):
        self._path = Path(path)
        self._network_base = IPv4Address(network_base)
        self.logger = logger

    def fetch_rows(self) -> list[DirectoryRow]:
        if not self._path.is_file():
            raise DirectoryError(f"Directory database {self._path} not found.")
        try:
            _conn = connect(f"file:{self._path}?mode=ro", uri=True)
            try:
                _records = _conn.execute(USER_ROWS_QUERY).fetchall()
            finally:
                _conn.close()
        except SQLiteError as err:
            raise DirectoryError(f"Couldn't select rows from {self._path}: {err}") from err

        self.logger.debug("Fetched %s directory rows from %s.", len(_records), self._path)
        return list(self._to_rows(_records))

    def _to_rows(self, records) -> Iterator[DirectoryRow]:
        for _id, _active, _net, _mac, _ip, _valid_to in records:
            try:
                _valid_until = parse_valid_to(_valid_to)
                _address = encode_row_ip(self._network_base, int(_net or 0), int(_ip or 0))
            except (TypeError, ValueError) as err:
                raise DirectoryError(f"Directory row ID:{_id} is malformed: {err}") from err
            yield DirectoryRow(
                id=int(_id),
                mac=_mac or "",
                ip=_address,
                active=is_row_active(_active, _valid_until),
                valid_to=_valid_until,
            )


class JSONDirectory:
    """Static map file of the form {"payload": {MAC: IP}}."""

    def __init__(self, path: Path, logger: Logger):
        self._path = Path(path)
        self.logger = logger

    def fetch_rows(self) -> list[DirectoryRow]:
        try:
            with open(self._path, encoding="utf-8", mode="r") as file_handle:
                _payload = load(file_handle).get("payload")
        except (OSError, JSONDecodeError, AttributeError) as err:
            raise DirectoryError(f"Failed to read {self._path}: {err}") from err

        if not isinstance(_payload, dict):
            raise DirectoryError(f"{self._path} has no payload mapping.")

        _rows = []
        for _index, (_mac, _ip) in enumerate(_payload.items()):
            try:
                _address = IPv4Address(_ip)
            except (AddressValueError, ValueError) as err:
                raise DirectoryError(f"Static map entry {_mac} has invalid IP {_ip!r}.") from err
            _rows.append(
                DirectoryRow(
                    id=_index,
                    mac=_mac,
                    ip=_address if int(_address) else None,
                )
            )
        self.logger.debug("Read %s static map entries from %s.", len(_rows), self._path)
        return _rows


def load_static_bindings(
    source: str,
    path: Path,
    network_base: IPv4Address,
    logger: Logger,
    strict: bool = True,
    excluded: Container | None = None,
) -> StaticBindingTable:
    """Query the configured directory once and build the static table."""
    if source == "sqlite":
        _directory = SQLiteDirectory(path=path, network_base=network_base, logger=logger)
    elif source == "json":
        _directory = JSONDirectory(path=path, logger=logger)
    else:
        raise DirectoryError(f"Unknown directory source {source!r}.")

    return StaticBindingTable.from_rows(
        _directory.fetch_rows(),
        logger=logger,
        strict=strict,
        excluded=excluded,
    )
