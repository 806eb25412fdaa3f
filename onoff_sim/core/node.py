"""Node class for the dumbbell simulation.

This module defines the Node class, which represents an addressable endpoint
(gateway, router or server) in the simulated network.
"""

import logging
from ipaddress import IPv4Address
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from onoff_sim.core.enums import NodeRole
from onoff_sim.core.errors import ConfigurationError
from onoff_sim.core.packet import Packet
from onoff_sim.core.scheduler import Scheduler

if TYPE_CHECKING:
    from onoff_sim.core.link import NetDevice

logger = logging.getLogger(__name__)

EPHEMERAL_PORT_START = 49153


class PacketReceiver(Protocol):
    """Transport endpoint bound to a port on a node."""

    def receive(self, packet: Packet) -> None: ...


class Node:
    """Represents a network node (gateway, router or server).

    Attributes:
        scheduler: Event scheduler.
        id: Index of the node in the topology's node arena.
        role: Role of the node in the dumbbell.
        name: Human readable name, e.g. ``gw3``.
        devices: Installed network devices, one per attached link.
        routing_table: Outgoing device for each destination address.
        applications: Installed applications (traffic sources and sinks).
        packets_received: Number of packets delivered to local endpoints.
        packets_forwarded: Number of packets forwarded to another node.
        packets_dropped: Number of packets dropped for lack of route or port.
    """

    def __init__(
        self, scheduler: Scheduler, node_id: int, role: NodeRole, name: str
    ) -> None:
        self.scheduler = scheduler
        self.id = node_id
        self.role = role
        self.name = name
        self.devices: List["NetDevice"] = []
        self.routing_table: Dict[IPv4Address, "NetDevice"] = {}
        self.applications: List[Any] = []
        self.endpoints: Dict[int, PacketReceiver] = {}
        self.packets_received = 0
        self.packets_forwarded = 0
        self.packets_dropped = 0
        self._next_port = EPHEMERAL_PORT_START

    @property
    def addresses(self) -> List[IPv4Address]:
        """Addresses of all interfaces, in device order."""
        return [d.address for d in self.devices if d.address is not None]

    @property
    def address(self) -> Optional[IPv4Address]:
        """Address of the first interface."""
        addresses = self.addresses
        return addresses[0] if addresses else None

    def add_device(self, device: "NetDevice") -> None:
        """Attach a network device to this node."""
        if device.node is not self:
            raise ValueError("Device belongs to another node")
        self.devices.append(device)

    def add_application(self, application: Any) -> None:
        """Install an application on this node."""
        self.applications.append(application)

    def set_routing_table(self, routing_table: Dict[IPv4Address, "NetDevice"]) -> None:
        """Set the routing table for this node.

        Args:
            routing_table: Dictionary mapping destination addresses to devices.
        """
        self.routing_table = routing_table

    def bind(self, endpoint: PacketReceiver, port: Optional[int] = None) -> int:
        """Bind a transport endpoint to a port.

        Args:
            endpoint: Receiver of packets addressed to the port.
            port: Port number, or None for the next ephemeral port.

        Returns:
            The bound port.
        """
        if port is None:
            while self._next_port in self.endpoints:
                self._next_port += 1
            port = self._next_port
            self._next_port += 1
        if port in self.endpoints:
            raise ConfigurationError(f"Port {port} already bound on {self.name}")
        self.endpoints[port] = endpoint
        return port

    def send(self, packet: Packet) -> bool:
        """Send a locally generated packet towards its destination.

        Returns:
            False if the packet could not be routed or was dropped at the queue.
        """
        return self._forward(packet)

    def receive(self, packet: Packet, device: "NetDevice") -> None:
        """Handle a packet arriving on one of the node's devices.

        Args:
            packet: The packet that arrived.
            device: Device it arrived on.
        """
        packet.record_hop(self.id, self.scheduler.now)
        if packet.dst_address in self.addresses:
            endpoint = self.endpoints.get(packet.dst_port)
            if endpoint is None:
                self.packets_dropped += 1
                logger.debug("%s: no endpoint on port %d", self.name, packet.dst_port)
                return
            self.packets_received += 1
            endpoint.receive(packet)
            return
        self.packets_forwarded += 1
        self._forward(packet)

    def _forward(self, packet: Packet) -> bool:
        device = self.routing_table.get(packet.dst_address)
        if device is None:
            self.packets_dropped += 1
            logger.debug("%s: no route to %s", self.name, packet.dst_address)
            return False
        return device.send(packet)

    def __repr__(self) -> str:
        return f"Node({self.id}, {self.name})"
