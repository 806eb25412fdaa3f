"""Point-to-point links for the dumbbell simulation.

This module defines the LinkProfile value, the NetDevice attached to each
end of a link, and the PointToPointLink joining two nodes.
"""

import logging
from collections import deque
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv4Network
from typing import TYPE_CHECKING, Deque, Optional, Tuple, Union

from onoff_sim.core.errors import ConfigurationError
from onoff_sim.core.hooks import TracedSubject
from onoff_sim.core.packet import Packet
from onoff_sim.core.scheduler import Scheduler
from onoff_sim.core.units import parse_data_rate, parse_time

if TYPE_CHECKING:
    from onoff_sim.core.node import Node

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_LIMIT = 100


@dataclass(frozen=True)
class LinkProfile:
    """Bandwidth and propagation delay of a link.

    Attributes:
        bandwidth: Link capacity in bits per second.
        delay: Propagation delay in seconds.
    """

    bandwidth: float
    delay: float

    @classmethod
    def parse(cls, bandwidth: Union[str, float], delay: Union[str, float]) -> "LinkProfile":
        """Build a profile from ns-3 style strings such as ``"8Mbps"``, ``"2ms"``."""
        return cls(parse_data_rate(bandwidth), parse_time(delay))

    def __str__(self) -> str:
        return f"{self.bandwidth/1000000:.1f}Mbps/{self.delay*1000:.1f}ms"


class NetDevice(TracedSubject):
    """One end of a point-to-point link.

    Packets are serialized one at a time; packets arriving while the device
    is busy wait in a drop-tail queue.

    Attributes:
        scheduler: Event scheduler.
        node: Node the device is installed on.
        link: Link the device is attached to.
        address: Interface address, assigned by the topology builder.
        queue_limit: Maximum number of queued packets.
        busy: Whether the device is currently transmitting.
        packets_sent: Number of packets fully transmitted.
        bytes_sent: Number of bytes fully transmitted.
        packets_dropped: Number of packets dropped at the queue.
    """

    trace_sources = ("PhyTxBegin", "PhyTxDrop")

    def __init__(
        self,
        scheduler: Scheduler,
        node: "Node",
        link: "PointToPointLink",
        queue_limit: int = DEFAULT_QUEUE_LIMIT,
    ) -> None:
        super().__init__()
        if queue_limit < 1:
            raise ConfigurationError(f"Queue limit must be positive, got {queue_limit}")
        self.scheduler = scheduler
        self.node = node
        self.link = link
        self.address: Optional[IPv4Address] = None
        self.queue_limit = queue_limit
        self.queue: Deque[Packet] = deque()
        self.busy = False
        self.packets_sent = 0
        self.bytes_sent = 0
        self.packets_dropped = 0

    def send(self, packet: Packet) -> bool:
        """Transmit a packet, or queue it if the device is busy.

        Args:
            packet: The packet to send.

        Returns:
            False if the packet was dropped because the queue is full.
        """
        if not self.busy:
            self._transmit(packet)
            return True
        if len(self.queue) >= self.queue_limit:
            self.packets_dropped += 1
            self.fire("PhyTxDrop", packet)
            return False
        self.queue.append(packet)
        return True

    def _transmit(self, packet: Packet) -> None:
        self.busy = True
        self.fire("PhyTxBegin", packet)
        delay = self.link.calculate_transmission_delay(packet.wire_size)
        self.scheduler.schedule_in(delay, self._transmit_complete, packet)

    def _transmit_complete(self, packet: Packet) -> None:
        self.packets_sent += 1
        self.bytes_sent += packet.wire_size
        peer = self.link.peer(self)
        self.scheduler.schedule_in(self.link.propagation_delay, peer.receive, packet)
        if self.queue:
            self._transmit(self.queue.popleft())
        else:
            self.busy = False

    def receive(self, packet: Packet) -> None:
        """Hand a packet arriving from the link to the owning node."""
        self.node.receive(packet, self)

    def __repr__(self) -> str:
        return f"NetDevice(node={self.node.id}, address={self.address})"


class PointToPointLink:
    """Represents a bidirectional point-to-point link between two nodes.

    Attributes:
        index: Position of the link in the topology's link arena.
        profile: Bandwidth and delay of the link.
        devices: The two devices, in endpoint order.
        network: Address block assigned to the link.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        index: int,
        node_a: "Node",
        node_b: "Node",
        profile: LinkProfile,
        queue_limit: int = DEFAULT_QUEUE_LIMIT,
    ) -> None:
        """Initialize a link and install a device on each endpoint.

        Args:
            scheduler: Event scheduler.
            index: Position of the link in the topology.
            node_a: First endpoint.
            node_b: Second endpoint.
            profile: Bandwidth and delay of the link.
            queue_limit: Drop-tail queue size of both devices, in packets.
        """
        if node_a is node_b:
            raise ConfigurationError("A link must join two distinct nodes")
        self.index = index
        self.profile = profile
        self.network: Optional[IPv4Network] = None
        self.devices: Tuple[NetDevice, NetDevice] = (
            NetDevice(scheduler, node_a, self, queue_limit),
            NetDevice(scheduler, node_b, self, queue_limit),
        )
        node_a.add_device(self.devices[0])
        node_b.add_device(self.devices[1])

    @property
    def capacity(self) -> float:
        return self.profile.bandwidth

    @property
    def propagation_delay(self) -> float:
        return self.profile.delay

    @property
    def endpoints(self) -> Tuple[int, int]:
        """Indices of the two endpoint nodes."""
        return self.devices[0].node.id, self.devices[1].node.id

    def peer(self, device: NetDevice) -> NetDevice:
        """Return the device at the other end of the link."""
        if device is self.devices[0]:
            return self.devices[1]
        if device is self.devices[1]:
            return self.devices[0]
        raise ValueError(f"{device} is not attached to {self}")

    def calculate_transmission_delay(self, packet_size: int) -> float:
        """Calculate transmission delay based on packet size and link capacity.

        Args:
            packet_size: Size of the packet in bytes.

        Returns:
            Transmission delay in seconds.
        """
        return (packet_size * 8) / self.capacity

    def get_total_delay(self, packet_size: int) -> float:
        """Calculate total delay for a packet (transmission + propagation)."""
        return self.calculate_transmission_delay(packet_size) + self.propagation_delay

    def __repr__(self) -> str:
        a, b = self.endpoints
        return f"Link({a}<->{b}, {self.capacity/1000000:.1f}Mbps, {self.propagation_delay*1000:.1f}ms)"
