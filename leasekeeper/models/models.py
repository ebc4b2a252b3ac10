import logging
from enum import IntEnum, unique


@unique
class LogLevel(IntEnum):
    """Log levels accepted by MainLogger, by name ("debug") or number (10)."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            _name = value.strip().upper()
            if _name in cls.__members__:
                return cls.__members__[_name]
        # Unknown levels fall back to the most verbose one
        return cls.DEBUG
