import sys
from logging import Logger
from signal import SIGABRT, SIGINT, SIGQUIT, SIGTERM, signal
from threading import Event

from leasekeeper.services.dhcp.metrics import dhcp_metrics
from leasekeeper.services.dhcp.server import DHCPServer, create_dhcp_server
from leasekeeper.services.dhcp.static_bindings import DirectoryError
from leasekeeper.services.logger.logger import MainLogger

logger: Logger = MainLogger.get_logger(service_name="MAIN")
stop_requested = Event()


def request_stop(signum: int, frame):
    """Signal handler, wakes up main() so the server is stopped cleanly.

    Args:
        signum (int): The signal number received.
        frame (frame object): Current stack frame.

    """
    logger.debug("Got signal %s, stopping.", signum)
    stop_requested.set()


def install_signal_handlers():
    for _signum in (SIGINT, SIGTERM, SIGQUIT, SIGABRT):
        signal(_signum, request_stop)


def report(dhcp_server: DHCPServer):
    """Log message counters and decision latency collected since start."""
    logger.info("DHCP counters: %s", dhcp_server.handler.stats.snapshot())
    logger.info("DHCP decision latency ms: %s", dhcp_metrics.get_stats())


def main() -> int:
    install_signal_handlers()

    try:
        dhcp_server = create_dhcp_server()
    except DirectoryError as err:
        logger.critical("Static bindings unusable, not starting: %s", err)
        return 1

    try:
        dhcp_server.start()
    except (RuntimeError, OSError) as err:
        logger.critical("DHCP server failed to start: %s", err)
        return 1

    logger.info("Serving DHCP on %s as %s.", dhcp_server.interface, dhcp_server.server_ip)
    stop_requested.wait()

    dhcp_server.stop()
    report(dhcp_server)
    logger.info("Shutdown complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
