from ipaddress import IPv4Address
from logging import Logger
from queue import Empty, Full, Queue
from threading import RLock, Thread, current_thread

from cachetools import TTLCache
from scapy.packet import Packet
from scapy.sendrecv import sendp, sniff

from leasekeeper.config.config import config
from leasekeeper.services.dhcp.assignment import AssignmentEngine
from leasekeeper.services.dhcp.directory import load_static_bindings
from leasekeeper.services.dhcp.lease_pool import DynamicLeasePool
from leasekeeper.services.dhcp.message_handler import DHCPMessageHandler
from leasekeeper.services.dhcp.models import (
    DHCPConfig,
    DHCPMessage,
    DHCPResponseFactory,
    OptionSet,
)
from leasekeeper.services.logger.logger import MainLogger

DHCP_CONFIG = config.get("dhcp")
INTERFACE = str(DHCP_CONFIG.get("interface"))
PORT = int(DHCP_CONFIG.get("port"))
SERVER_IP = str(DHCP_CONFIG.get("ip"))
SERVER_MAC = str(DHCP_CONFIG.get("mac"))
BROADCAST_IP = str(DHCP_CONFIG.get("broadcast_ip"))
BROADCAST_MAC = str(DHCP_CONFIG.get("broadcast_mac"))

POOL_START = str(DHCP_CONFIG.get("pool_start"))
POOL_SIZE = int(DHCP_CONFIG.get("pool_size"))
LEASE_TIME = int(DHCP_CONFIG.get("lease_time_seconds"))
OFFER_HOLD = int(DHCP_CONFIG.get("offer_hold_seconds"))
RENEWAL_TIME_RATIO = float(DHCP_CONFIG.get("renewal_time_ratio"))
REBINDING_TIME_RATIO = float(DHCP_CONFIG.get("rebinding_time_ratio"))
OPTIONS = DHCP_CONFIG.get("options")

WORKERS = int(DHCP_CONFIG.get("workers"))
RECEIVED_QUEUE_SIZE = int(DHCP_CONFIG.get("rcvd_queue_size"))
DEDUP = DHCP_CONFIG.get("dedup")
DEDUP_SIZE = int(DEDUP.get("size"))
DEDUP_TTL = float(DEDUP.get("ttl"))
TIMEOUTS = DHCP_CONFIG.get("timeouts")
WORKER_GET_TIMEOUT = float(TIMEOUTS.get("worker_get"))
WORKER_JOIN_TIMEOUT = float(TIMEOUTS.get("worker_join"))
BOOTP_FLAG_BROADCAST = 0x8000

STATIC_CONFIG = config.get("static")

dhcp_logger: Logger = MainLogger.get_logger(service_name="DHCP", log_level="debug")


class DHCPServer:
    """Sniffs DHCP traffic, feeds it to the message handler and sends replies.

    One listener thread enqueues packets; worker threads decode, drop our
    own traffic and retransmitted duplicates, ask the handler for a reply
    and send it on the interface.
    """

    def __init__(
        self,
        handler: DHCPMessageHandler,
        response_factory: DHCPResponseFactory,
        logger: Logger = dhcp_logger,
        interface: str = INTERFACE,
        port: int = PORT,
        server_ip: str = SERVER_IP,
        server_mac: str = SERVER_MAC,
        workers: int = WORKERS,
        received_queue_size: int = RECEIVED_QUEUE_SIZE,
        dedup_size: int = DEDUP_SIZE,
        dedup_ttl: float = DEDUP_TTL,
    ):
        self._lock = RLock()
        self._running = False
        self._workers: dict[str, Thread] = {}
        self.handler = handler
        self.response_factory = response_factory
        self.logger = logger
        self.interface = interface
        self.port = port
        self.server_ip = server_ip
        self.server_mac = server_mac.lower()
        self.worker_count = workers
        self._received_queue: Queue = Queue(maxsize=received_queue_size)
        self._dedup_cache: TTLCache = TTLCache(maxsize=dedup_size, ttl=dedup_ttl)

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start all necessary threads"""
        with self._lock:
            if self._running:
                raise RuntimeError("Server already running.")
            self._running = True

            _traffic_listener = Thread(
                target=self._traffic_listener, name="dhcp-traffic-listener", daemon=True
            )
            _traffic_listener.start()
            self._workers["dhcp-traffic-listener"] = _traffic_listener

            for _index in range(self.worker_count):
                _worker = Thread(target=self._processor, name=f"dhcp-worker-{_index}", daemon=True)
                _worker.start()
                self._workers[f"dhcp-worker-{_index}"] = _worker
            self.logger.info("Started %s on %s.", self.__class__.__name__, self.interface)

    def stop(self, worker_join_timeout: float = WORKER_JOIN_TIMEOUT):
        with self._lock:
            if not self._running:
                raise RuntimeError("Server not running.")
            self._running = False
            _threads = list(self._workers.values())
            self._workers.clear()

        # Joined outside the lock, workers finishing a packet still need it
        for _thread in _threads:
            if _thread.is_alive():
                _thread.join(timeout=worker_join_timeout)
        self.logger.info("Stopped %s.", self.__class__.__name__)

    def _traffic_listener(self):
        """Start sniffing for DHCP packets on the interface"""
        sniff(
            iface=self.interface,
            filter=f"ip and udp and port {self.port}",
            prn=self._listen,
            stop_filter=lambda _: not self._running,
            store=False,
        )

    def _listen(self, packet: Packet):
        """Callback for sniffed DHCP packets; enqueues into processing queue."""
        try:
            self._received_queue.put_nowait(packet)
        except Full:
            self.logger.warning("Queue full.")

    def _processor(self, worker_get_timeout: float = WORKER_GET_TIMEOUT):
        """Main processor function multi threaded."""
        while self._running:
            try:
                _packet = self._received_queue.get(timeout=worker_get_timeout)
            except Empty:
                continue
            try:
                self._process(_packet)
            except Exception as err:
                self.logger.error("%s processing %s.", current_thread().name, err)
            finally:
                self._received_queue.task_done()

    def _process(self, packet: Packet) -> Packet | None:
        """Decode, filter, decide and send; returns the sent packet if any."""
        dhcp_message = DHCPMessage.from_packet(packet)

        if dhcp_message.mac == self.server_mac or dhcp_message.src_ip == self.server_ip:
            return None

        with self._lock:
            if dhcp_message.dedup_key in self._dedup_cache:
                self.handler.stats.increment("dropped_duplicate")
                return None
            self._dedup_cache[dhcp_message.dedup_key] = dhcp_message.received

        _reply = self.handler.handle_message(dhcp_message)
        if _reply is None:
            return None

        _response = self.response_factory.build(_reply, packet)
        self._send_response(_response)
        return _response

    def _send_response(self, packet: Packet):
        """Send a DHCP packet on the configured network interface."""
        try:
            sendp(packet, iface=self.interface, verbose=False)
        except OSError as err:
            self.logger.error("Failed to send DHCP response %s.", err)


def create_dhcp_server(logger: Logger = dhcp_logger) -> DHCPServer:
    """Build the server from config around a freshly loaded static table.

    Raises:
        DirectoryError: The static bindings can't be loaded.

    """
    _pool = DynamicLeasePool(start=POOL_START, size=POOL_SIZE)
    _statics = load_static_bindings(
        source=STATIC_CONFIG.get("source"),
        path=config.resolve_path(STATIC_CONFIG.get("path")),
        network_base=IPv4Address(STATIC_CONFIG.get("network_base")),
        logger=logger,
        strict=bool(STATIC_CONFIG.get("strict", True)),
        excluded=_pool,
    )
    _engine = AssignmentEngine(
        pool=_pool,
        statics=_statics,
        allowed_options=OptionSet.from_config(OPTIONS.get("allowed")),
        denied_options=OptionSet.from_config(OPTIONS.get("denied")),
        lease_time=LEASE_TIME,
        offer_hold=OFFER_HOLD,
        logger=logger,
    )
    _handler = DHCPMessageHandler(engine=_engine, server_ip=IPv4Address(SERVER_IP), logger=logger)
    _response_factory = DHCPResponseFactory(
        DHCPConfig(
            server_ip=SERVER_IP,
            server_mac=SERVER_MAC,
            port=PORT,
            broadcast_mac=BROADCAST_MAC,
            broadcast_ip=BROADCAST_IP,
            flags=BOOTP_FLAG_BROADCAST,
            renewal_time_ratio=RENEWAL_TIME_RATIO,
            rebinding_time_ratio=REBINDING_TIME_RATIO,
        )
    )
    return DHCPServer(handler=_handler, response_factory=_response_factory, logger=logger)
