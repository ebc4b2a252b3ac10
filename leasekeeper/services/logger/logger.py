import logging.config
from os import getenv

from leasekeeper.config.config import config
from leasekeeper.models.models import LogLevel

LOGGER_CONFIG = config.get("logging")
LOGGER_NAMESPACE = "leasekeeper"
DEFAULT_LOG_LEVEL = getenv("LOG_LEVEL", "INFO")

logging.config.dictConfig(LOGGER_CONFIG)


class MainLogger:
    """Hands out one logger per service, all children of `leasekeeper`."""

    @classmethod
    def get_logger(cls, service_name: str = "MAIN", log_level: str | int | None = None) -> logging.Logger:
        """Logger for `service_name`.

        Args:
            service_name(str): Service the records belong to, e.g. "DHCP".
            log_level(str | int | None): Level name or number, LOG_LEVEL env when omitted.
        Returns:
            logging.Logger: `leasekeeper.<service_name>` logger.
        """
        logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{service_name.lower()}")
        logger.setLevel(LogLevel(log_level if log_level is not None else DEFAULT_LOG_LEVEL))
        return logger
