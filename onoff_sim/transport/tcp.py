"""TCP endpoints for the dumbbell simulation.

This module provides a compact NewReno-style sender (FlowEndpoint) and the
receiving PacketSink installed on the server. The sender exposes the
``CongestionWindow`` and ``RTT`` trace sources, the sink exposes ``Rx``.

The sender implements slow start, congestion avoidance, fast retransmit with
window inflation, partial-ACK handling and a retransmission timer with the
RFC 6298 estimator and Karn's rule. Connection setup and teardown are not
modelled: a connected endpoint can send immediately.
"""

import logging
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from typing import Dict, Optional, Tuple

from onoff_sim.core.enums import PacketFlag
from onoff_sim.core.errors import ConfigurationError
from onoff_sim.core.hooks import TracedSubject
from onoff_sim.core.node import Node
from onoff_sim.core.packet import IPV4_HEADER_SIZE, TCP_HEADER_SIZE, Packet, Payload
from onoff_sim.core.scheduler import EventHandle, Scheduler

logger = logging.getLogger(__name__)

DEFAULT_MTU = 1500
DEFAULT_SEGMENT_SIZE = DEFAULT_MTU - (IPV4_HEADER_SIZE + TCP_HEADER_SIZE)
DEFAULT_SEND_BUFFER = 131072
DEFAULT_INITIAL_CWND = 10
DEFAULT_INITIAL_RTO = 1.0
MIN_RTO = 1.0
MAX_RTO = 60.0
CLOCK_GRANULARITY = 0.001
DUPACK_THRESHOLD = 3
INITIAL_SSTHRESH = 0xFFFFFFFF


def segment_size_for_mtu(mtu: int) -> int:
    """Maximum segment size carried by an IPv4/TCP packet of ``mtu`` bytes."""
    mss = mtu - (IPV4_HEADER_SIZE + TCP_HEADER_SIZE)
    if mss <= 0:
        raise ConfigurationError(f"MTU {mtu} leaves no room for payload")
    return mss


class FlowEndpoint(TracedSubject):
    """Sending side of one client-to-server TCP flow.

    Attributes:
        scheduler: Event scheduler.
        node: Node the endpoint is bound to.
        port: Local port.
        remote: Remote (address, port), set by ``connect``.
        segment_size: Maximum payload per segment in bytes.
        send_buffer: Send buffer capacity in bytes.
        cwnd: Congestion window in bytes.
        ssthresh: Slow start threshold in bytes.
        last_rtt: Most recent RTT sample in seconds.
        rto: Current retransmission timeout in seconds.
        snd_una: Oldest unacknowledged sequence number.
        snd_nxt: Next sequence number to send.
        snd_max: Highest sequence number sent so far.
    """

    trace_sources = ("CongestionWindow", "RTT")

    def __init__(
        self,
        scheduler: Scheduler,
        node: Node,
        segment_size: int = DEFAULT_SEGMENT_SIZE,
        send_buffer: int = DEFAULT_SEND_BUFFER,
        initial_cwnd: int = DEFAULT_INITIAL_CWND,
        initial_rtt: float = 0.0,
        initial_rto: float = DEFAULT_INITIAL_RTO,
    ) -> None:
        super().__init__()
        if segment_size <= 0 or send_buffer <= 0 or initial_cwnd <= 0:
            raise ConfigurationError(
                "Segment size, send buffer and initial window must be positive"
            )
        self.scheduler = scheduler
        self.node = node
        self.port = node.bind(self)
        self.remote: Optional[Tuple[IPv4Address, int]] = None
        self.segment_size = segment_size
        self.send_buffer = send_buffer
        self.initial_cwnd = initial_cwnd

        self.cwnd = 0
        self.ssthresh = INITIAL_SSTHRESH
        self.last_rtt = initial_rtt
        self.srtt: Optional[float] = None
        self.rttvar = 0.0
        self.rto = initial_rto

        self.snd_una = 0
        self.snd_nxt = 0
        self.snd_max = 0
        self.buffered_end = 0
        self.dupacks = 0
        self.in_recovery = False
        self.recover = 0

        # seq -> (send time, length, retransmitted)
        self._sent: Dict[int, Tuple[float, int, bool]] = {}
        self._rto_event: Optional[EventHandle] = None

        self.segments_sent = 0
        self.retransmissions = 0
        self.timeouts = 0

    @property
    def connected(self) -> bool:
        return self.remote is not None

    @property
    def bytes_in_flight(self) -> int:
        return self.snd_nxt - self.snd_una

    @property
    def tx_available(self) -> int:
        """Free space in the send buffer, in bytes."""
        return self.send_buffer - (self.buffered_end - self.snd_una)

    @property
    def local_address(self) -> Optional[IPv4Address]:
        """Address of the interface used to reach the remote."""
        if self.remote is not None:
            device = self.node.routing_table.get(self.remote[0])
            if device is not None:
                return device.address
        return self.node.address

    def connect(self, address: IPv4Address, port: int) -> None:
        """Associate the endpoint with its remote counterpart.

        Opens the congestion window to its initial value.
        """
        if self.node.routing_table.get(address) is None:
            raise ConfigurationError(f"{self.node.name} has no route to {address}")
        self.remote = (address, port)
        logger.debug("%s:%d connected to %s:%d", self.node.name, self.port, address, port)
        self._set_cwnd(self.initial_cwnd * self.segment_size)

    def send(self, byte_count: int) -> int:
        """Queue application data for transmission.

        Args:
            byte_count: Number of bytes to send.

        Returns:
            ``byte_count`` if the data was accepted, 0 if the send buffer
            lacks room for all of it.
        """
        if self.remote is None:
            raise ConfigurationError("send() on an endpoint that is not connected")
        if byte_count <= 0 or byte_count > self.tx_available:
            return 0
        self.buffered_end += byte_count
        self._send_pending()
        return byte_count

    def _send_pending(self) -> None:
        while self.snd_nxt < self.buffered_end:
            length = min(self.segment_size, self.buffered_end - self.snd_nxt)
            if self.bytes_in_flight + length > self.cwnd:
                break
            self._transmit(self.snd_nxt, length)
            self.snd_nxt += length
            self.snd_max = max(self.snd_max, self.snd_nxt)

    def _transmit(self, seq: int, length: int) -> None:
        address, port = self.remote
        packet = Packet(
            self.local_address,
            address,
            self.port,
            port,
            PacketFlag.DATA,
            seq=seq,
            payload_size=length,
            creation_time=self.scheduler.now,
        )
        retransmitted = seq in self._sent or seq < self.snd_max
        if retransmitted:
            self.retransmissions += 1
        self._sent[seq] = (self.scheduler.now, length, retransmitted)
        self.segments_sent += 1
        if self._rto_event is None or not self._rto_event.pending:
            self._rto_event = self.scheduler.schedule_in(self.rto, self._on_timeout)
        self.node.send(packet)

    def _retransmit_head(self) -> None:
        entry = self._sent.get(self.snd_una)
        length = entry[1] if entry else min(self.segment_size, self.buffered_end - self.snd_una)
        self._transmit(self.snd_una, length)

    def receive(self, packet: Packet) -> None:
        """Process an acknowledgement from the remote side."""
        if not packet.is_ack:
            return
        ack = packet.ack
        if ack > self.snd_una:
            self._on_new_ack(ack)
        elif ack == self.snd_una and self.snd_una < self.snd_max:
            self._on_duplicate_ack()

    def _on_new_ack(self, ack: int) -> None:
        self._sample_rtt(ack)
        acked = ack - self.snd_una
        for seq in [s for s, (_, length, _) in self._sent.items() if s + length <= ack]:
            del self._sent[seq]
        self.snd_una = ack
        if self.snd_nxt < self.snd_una:
            self.snd_nxt = self.snd_una
        self.dupacks = 0

        if self.in_recovery:
            if ack >= self.recover:
                self.in_recovery = False
                self._set_cwnd(self.ssthresh)
            else:
                self._retransmit_head()
                self._set_cwnd(max(self.cwnd - acked + self.segment_size, self.segment_size))
        elif self.cwnd < self.ssthresh:
            self._set_cwnd(self.cwnd + min(acked, self.segment_size))
        else:
            increment = max(1, self.segment_size * self.segment_size // self.cwnd)
            self._set_cwnd(self.cwnd + increment)

        self.scheduler.cancel(self._rto_event)
        self._rto_event = None
        if self.snd_una < self.snd_max:
            self._rto_event = self.scheduler.schedule_in(self.rto, self._on_timeout)
        self._send_pending()

    def _on_duplicate_ack(self) -> None:
        self.dupacks += 1
        if self.in_recovery:
            self._set_cwnd(self.cwnd + self.segment_size)
            self._send_pending()
        elif self.dupacks == DUPACK_THRESHOLD:
            self.ssthresh = max(self.bytes_in_flight // 2, 2 * self.segment_size)
            self.recover = self.snd_max
            self.in_recovery = True
            logger.debug(
                "%s:%d fast retransmit at %d", self.node.name, self.port, self.snd_una
            )
            self._retransmit_head()
            self._set_cwnd(self.ssthresh + DUPACK_THRESHOLD * self.segment_size)

    def _sample_rtt(self, ack: int) -> None:
        for seq, (sent_at, length, retransmitted) in self._sent.items():
            if seq + length == ack:
                if not retransmitted:
                    self._update_rtt(self.scheduler.now - sent_at)
                return

    def _update_rtt(self, sample: float) -> None:
        if self.srtt is None:
            self.srtt = sample
            self.rttvar = sample / 2
        else:
            self.rttvar = 0.75 * self.rttvar + 0.25 * abs(self.srtt - sample)
            self.srtt = 0.875 * self.srtt + 0.125 * sample
        self.rto = min(max(self.srtt + max(CLOCK_GRANULARITY, 4 * self.rttvar), MIN_RTO), MAX_RTO)
        old, self.last_rtt = self.last_rtt, sample
        self.fire("RTT", old, sample)

    def _on_timeout(self) -> None:
        self._rto_event = None
        if self.snd_una >= self.snd_max:
            return
        self.timeouts += 1
        logger.debug("%s:%d retransmission timeout, rto=%s", self.node.name, self.port, self.rto)
        self.ssthresh = max((self.snd_max - self.snd_una) // 2, 2 * self.segment_size)
        self.in_recovery = False
        self.dupacks = 0
        self.rto = min(self.rto * 2, MAX_RTO)
        self.snd_nxt = self.snd_una
        self._set_cwnd(self.segment_size)
        self._send_pending()

    def _set_cwnd(self, value: int) -> None:
        if value != self.cwnd:
            old, self.cwnd = self.cwnd, value
            self.fire("CongestionWindow", old, value)

    def close(self) -> None:
        """Stop the retransmission timer."""
        self.scheduler.cancel(self._rto_event)
        self._rto_event = None

    def __repr__(self) -> str:
        return f"FlowEndpoint({self.node.name}:{self.port} -> {self.remote})"


@dataclass
class _Connection:
    rcv_nxt: int = 0
    out_of_order: Dict[int, int] = field(default_factory=dict)


class PacketSink(TracedSubject):
    """Receiving application on the server.

    Acknowledges every data segment cumulatively and fires ``Rx`` with the
    newly delivered in-order bytes and the sender's address.

    Attributes:
        scheduler: Event scheduler.
        node: Node the sink is installed on.
        port: Listening port.
        active: Whether the sink currently accepts data.
        total_bytes: In-order bytes delivered so far.
        packets_ignored: Segments received while inactive.
    """

    trace_sources = ("Rx",)

    def __init__(self, scheduler: Scheduler, node: Node, port: int) -> None:
        super().__init__()
        self.scheduler = scheduler
        self.node = node
        self.port = node.bind(self, port)
        self.active = False
        self.total_bytes = 0
        self.packets_ignored = 0
        self.connections: Dict[Tuple[IPv4Address, int], _Connection] = {}
        node.add_application(self)

    def start(self, start_time: float, stop_time: float) -> None:
        """Schedule activation and deactivation of the sink."""
        self.scheduler.schedule(start_time, self._set_active, True)
        self.scheduler.schedule(stop_time, self._set_active, False)

    def _set_active(self, active: bool) -> None:
        self.active = active

    def receive(self, packet: Packet) -> None:
        """Accept a data segment and answer with a cumulative ACK."""
        if packet.is_ack:
            return
        if not self.active:
            self.packets_ignored += 1
            return
        conn = self.connections.setdefault(
            (packet.src_address, packet.src_port), _Connection()
        )
        start, end = packet.seq, packet.seq + packet.payload_size
        if start > conn.rcv_nxt:
            conn.out_of_order[start] = max(conn.out_of_order.get(start, 0), packet.payload_size)
        delivered = 0
        if start <= conn.rcv_nxt < end:
            delivered = end - conn.rcv_nxt
            conn.rcv_nxt = end
        delivered += self._drain(conn)
        if delivered:
            self.total_bytes += delivered
            self.fire("Rx", Payload(delivered, self.scheduler.now), packet.src_address)

        ack = Packet(
            packet.dst_address,
            packet.src_address,
            self.port,
            packet.src_port,
            PacketFlag.ACK,
            ack=conn.rcv_nxt,
            creation_time=self.scheduler.now,
        )
        self.node.send(ack)

    @staticmethod
    def _drain(conn: _Connection) -> int:
        delivered = 0
        progress = True
        while progress:
            progress = False
            for seq in sorted(conn.out_of_order):
                if seq > conn.rcv_nxt:
                    break
                end = seq + conn.out_of_order.pop(seq)
                if end > conn.rcv_nxt:
                    delivered += end - conn.rcv_nxt
                    conn.rcv_nxt = end
                progress = True
        return delivered


def bind_socket(scheduler: Scheduler, node: Node, protocol: str = "tcp", **kwargs) -> FlowEndpoint:
    """Create a transport endpoint bound to ``node``.

    Args:
        scheduler: Event scheduler.
        node: Node to bind to.
        protocol: Transport protocol; only ``"tcp"`` is supported.
        **kwargs: Passed on to FlowEndpoint.
    """
    if protocol.lower() != "tcp":
        raise ConfigurationError(f"Unsupported transport protocol: {protocol}")
    return FlowEndpoint(scheduler, node, **kwargs)


def send(endpoint: FlowEndpoint, byte_count: int) -> int:
    """Hand ``byte_count`` bytes to ``endpoint``; returns the bytes accepted."""
    return endpoint.send(byte_count)
