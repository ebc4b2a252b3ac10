from ipaddress import IPv4Address
from logging import Logger
from threading import RLock

from leasekeeper.libs.libs import measure_latency_decorator
from leasekeeper.services.dhcp.assignment import Assignment, AssignmentEngine
from leasekeeper.services.dhcp.metrics import DHCPStats, dhcp_metrics
from leasekeeper.services.dhcp.models import DHCPMessage, DHCPReply, DHCPType
from leasekeeper.services.dhcp.relay_info import extract_relay_info
from leasekeeper.services.dhcp.utils import parse_ipv4


def is_request_valid(dhcp_msg: DHCPMessage) -> bool:
    """Validates a parsed DHCPMessage object for required fields.

    Returns:
        bool: True if valid, False otherwise.

    """
    if not dhcp_msg.mac or DHCPType.from_value(dhcp_msg.dhcp_type) is None:
        return False

    return True


class DHCPMessageHandler:
    """Maps each client message type to an engine decision and shapes the reply.

    Stateless between messages apart from the lease pool and static table
    behind the engine. Every message is decided under one lock, so
    concurrent workers can't hand the same index to two clients.

    Dispatch:
        * DISCOVER -> OFFER, or no reply when the pool is exhausted
        * REQUEST  -> ACK / NAK, or no reply when addressed to another server
        * RELEASE, DECLINE -> drop the client's dynamic lease, no reply
        * INFORM   -> logged only, no reply
    """

    def __init__(
        self,
        engine: AssignmentEngine,
        server_ip: IPv4Address,
        logger: Logger,
        stats: DHCPStats | None = None,
    ):
        self._lock = RLock()
        self.engine = engine
        self.server_ip = IPv4Address(server_ip)
        self.logger = logger
        self.stats = stats or DHCPStats()

    @measure_latency_decorator(metrics=dhcp_metrics)
    def handle_message(self, dhcp_msg: DHCPMessage) -> DHCPReply | None:
        """Process an incoming DHCP message based on its DHCP type.

        Args:
            dhcp_msg (DHCPMessage): Parsed DHCP message object.

        Returns:
            DHCPReply | None: Reply to send, None when nothing is sent.

        """
        with self._lock:
            try:
                self.stats.increment("received_total")

                if not is_request_valid(dhcp_msg):
                    self.stats.increment("received_malformed")
                    return None

                _dhcp_type = DHCPType(dhcp_msg.dhcp_type)
                self.stats.increment(f"received_{_dhcp_type.name.lower()}")
                self._log_relay_info(dhcp_msg)

                match _dhcp_type:
                    case DHCPType.DISCOVER:
                        _reply = self._handle_discover(dhcp_msg)
                    case DHCPType.REQUEST:
                        _reply = self._handle_request(dhcp_msg)
                    case DHCPType.RELEASE | DHCPType.DECLINE:
                        _reply = self._handle_release(dhcp_msg)
                    case DHCPType.INFORM:
                        _reply = self._handle_inform(dhcp_msg)
                    case _:
                        self.logger.warning("Unexpected dhcp type %s from MAC:%s.", _dhcp_type.name, dhcp_msg.mac)
                        _reply = None

                if _reply:
                    self.stats.increment("sent_total")
                    self.stats.increment(f"sent_{_reply.dhcp_type.name.lower()}")
                return _reply

            except Exception as err:
                self.logger.exception(
                    "%s error processing message: %s.",
                    self.__class__.__name__,
                    err,
                )
                return None

    def _handle_discover(self, dhcp_msg: DHCPMessage) -> DHCPReply | None:
        self.logger.debug(
            "DHCPDISCOVER XID:%s MAC:%s hostname:%s.",
            dhcp_msg.xid,
            dhcp_msg.mac,
            dhcp_msg.hostname,
        )

        _assignment = self.engine.offer(dhcp_msg.mac)
        if _assignment is None:
            self.stats.increment("pool_exhausted")
            return None
        return self._build_reply(DHCPType.OFFER, _assignment, dhcp_msg)

    def _handle_request(self, dhcp_msg: DHCPMessage) -> DHCPReply | None:
        self.logger.debug(
            "DHCPREQUEST XID:%s for IP:%s from MAC:%s.",
            dhcp_msg.xid,
            dhcp_msg.requested_ip or None,
            dhcp_msg.mac,
        )

        if not self._is_for_me(dhcp_msg):
            self.logger.debug("DHCPREQUEST for server %s, not for me.", dhcp_msg.server_id)
            return None

        _assignment = self.engine.confirm(dhcp_msg.mac, dhcp_msg.requested_ip)
        if _assignment is None:
            return DHCPReply(dhcp_type=DHCPType.NAK, server_ip=self.server_ip)
        return self._build_reply(DHCPType.ACK, _assignment, dhcp_msg)

    def _handle_release(self, dhcp_msg: DHCPMessage) -> None:
        self.logger.debug(
            "DHCP%s XID:%s MAC:%s.",
            DHCPType(dhcp_msg.dhcp_type).name,
            dhcp_msg.xid,
            dhcp_msg.mac,
        )
        self.engine.release(dhcp_msg.mac)
        return None

    def _handle_inform(self, dhcp_msg: DHCPMessage) -> None:
        self.logger.info(
            "DHCPINFORM from MAC:%s IP:%s hostname:%s.",
            dhcp_msg.mac,
            dhcp_msg.ciaddr,
            dhcp_msg.hostname,
        )
        return None

    def _is_for_me(self, dhcp_msg: DHCPMessage) -> bool:
        """No server identifier, or ours."""
        if not dhcp_msg.server_id:
            return True
        return parse_ipv4(dhcp_msg.server_id) == self.server_ip

    def _build_reply(self, dhcp_type: DHCPType, assignment: Assignment, dhcp_msg: DHCPMessage) -> DHCPReply:
        return DHCPReply(
            dhcp_type=dhcp_type,
            server_ip=self.server_ip,
            your_ip=assignment.ip,
            lease_time=self.engine.lease_time,
            options=assignment.options.select(dhcp_msg.param_req_list),
        )

    def _log_relay_info(self, dhcp_msg: DHCPMessage):
        _relay = extract_relay_info(dhcp_msg.relay_agent_info)
        if not _relay.is_empty:
            self.logger.debug(
                "Relay info MAC:%s port:%s switch:%s.",
                dhcp_msg.mac,
                _relay.port,
                _relay.switch,
            )
