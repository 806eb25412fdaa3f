"""Packet class for the dumbbell simulation.

This module defines the Packet class, which represents a TCP segment or
acknowledgement traveling through the simulated network.
"""

import itertools
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from typing import ClassVar, List, Tuple

from onoff_sim.core.enums import PacketFlag

IPV4_HEADER_SIZE = 20
TCP_HEADER_SIZE = 20
PPP_HEADER_SIZE = 2


@dataclass
class Packet:
    """Represents a network packet.

    Attributes:
        src_address: Address of the sending interface.
        dst_address: Address of the destination interface.
        src_port: Transport source port.
        dst_port: Transport destination port.
        flag: Whether this is a data segment or an acknowledgement.
        seq: Sequence number of the first payload byte.
        ack: Cumulative acknowledgement number (next expected byte).
        payload_size: Size of the application payload in bytes.
        creation_time: Time when packet was created.
        id: Unique identifier for the packet.
        hops: Nodes visited by the packet with arrival times.
    """

    src_address: IPv4Address
    dst_address: IPv4Address
    src_port: int
    dst_port: int
    flag: PacketFlag = PacketFlag.DATA
    seq: int = 0
    ack: int = 0
    payload_size: int = 0
    creation_time: float = 0.0
    id: int = field(init=False)
    hops: List[Tuple[int, float]] = field(default_factory=list, repr=False)

    _id_counter: ClassVar[itertools.count] = itertools.count(1)

    def __post_init__(self) -> None:
        self.id = next(type(self)._id_counter)

    @property
    def size(self) -> int:
        """Size at the IP layer: payload plus TCP and IPv4 headers."""
        return self.payload_size + TCP_HEADER_SIZE + IPV4_HEADER_SIZE

    @property
    def wire_size(self) -> int:
        """Size on a point-to-point link, including the PPP header."""
        return self.size + PPP_HEADER_SIZE

    @property
    def is_ack(self) -> bool:
        return self.flag is PacketFlag.ACK

    def record_hop(self, node: int, time: float) -> None:
        """Record a hop in the packet's journey.

        Args:
            node: Node index where the packet has arrived.
            time: Current simulation time.
        """
        self.hops.append((node, time))


@dataclass(frozen=True)
class Payload:
    """Application data unit handed to the transport layer.

    Attributes:
        size: Size in bytes.
        creation_time: Time the application produced it.
    """

    size: int
    creation_time: float = 0.0
