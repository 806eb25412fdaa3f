"""Dumbbell topology construction.

This module defines the Topology value, which owns the node and link arenas
of a simulated network, and ``build_dumbbell``, which creates N gateways
connected to one router, connected in turn to one server::

    gw0 ----+
    gw1 ----+---- router0 ---- server0
    ...     |
    gwN-1 --+
"""

import logging
from dataclasses import dataclass, field
from ipaddress import IPv4Address, IPv4Network
from typing import Dict, Iterable, List, Optional

import networkx as nx

from onoff_sim.core.enums import NodeRole
from onoff_sim.core.errors import ConfigurationError
from onoff_sim.core.link import DEFAULT_QUEUE_LIMIT, LinkProfile, NetDevice, PointToPointLink
from onoff_sim.core.node import Node
from onoff_sim.core.scheduler import Scheduler

logger = logging.getLogger(__name__)

GATEWAY_NETWORK_BASE = "10.1.{i}.0"
SERVER_NETWORK_BASE = "10.2.1.0"
POINT_TO_POINT_NETMASK = "255.255.255.252"


@dataclass
class Topology:
    """An addressed, routable network.

    Attributes:
        scheduler: Event scheduler shared by every node and link.
        nodes: Node arena; a node's ``id`` is its index here.
        links: Link arena; a link's ``index`` is its index here.
        gateways: Node indices of the gateways, in flow order.
        router: Node index of the shared router.
        server: Node index of the server.
        graph: Undirected NetworkX view of nodes and links.
    """

    scheduler: Scheduler
    nodes: List[Node] = field(default_factory=list)
    links: List[PointToPointLink] = field(default_factory=list)
    gateways: List[int] = field(default_factory=list)
    router: int = -1
    server: int = -1
    graph: nx.Graph = field(default_factory=nx.Graph)

    def add_node(self, role: NodeRole, name: str) -> Node:
        """Create a node and append it to the arena."""
        node = Node(self.scheduler, len(self.nodes), role, name)
        self.nodes.append(node)
        self.graph.add_node(node.id, role=role.value, name=name)
        return node

    def add_link(
        self,
        a: int,
        b: int,
        profile: LinkProfile,
        queue_limit: int = DEFAULT_QUEUE_LIMIT,
    ) -> PointToPointLink:
        """Connect two nodes with a point-to-point link.

        Args:
            a: Index of the first endpoint.
            b: Index of the second endpoint.
            profile: Bandwidth and delay of the link.
            queue_limit: Device queue size in packets.

        Returns:
            The created link.
        """
        if a not in self.graph or b not in self.graph:
            raise ConfigurationError(f"Nodes {a} and/or {b} do not exist")
        if self.graph.has_edge(a, b):
            raise ConfigurationError(f"Nodes {a} and {b} are already connected")
        link = PointToPointLink(
            self.scheduler, len(self.links), self.nodes[a], self.nodes[b], profile, queue_limit
        )
        self.links.append(link)
        self.graph.add_edge(
            a, b, link=link.index, capacity=profile.bandwidth, delay=profile.delay
        )
        return link

    @property
    def gateway_nodes(self) -> List[Node]:
        return [self.nodes[i] for i in self.gateways]

    @property
    def router_node(self) -> Node:
        return self.nodes[self.router]

    @property
    def server_node(self) -> Node:
        return self.nodes[self.server]

    def link_between(self, a: int, b: int) -> PointToPointLink:
        """Return the link joining two adjacent nodes."""
        if not self.graph.has_edge(a, b):
            raise KeyError(f"No link between {a} and {b}")
        return self.links[self.graph.edges[a, b]["link"]]

    def device_towards(self, node: int, neighbour: int) -> NetDevice:
        """Return the device on ``node`` attached to the link to ``neighbour``."""
        link = self.link_between(node, neighbour)
        return link.devices[0] if link.devices[0].node.id == node else link.devices[1]

    def node_by_address(self, address: IPv4Address) -> Optional[Node]:
        """Find the node owning an interface address."""
        for node in self.nodes:
            if address in node.addresses:
                return node
        return None

    def path(self, source: int, destination: int) -> List[int]:
        """Node indices on the path from ``source`` to ``destination``."""
        return nx.shortest_path(self.graph, source, destination)

    def is_tree(self) -> bool:
        """True if every node reaches every other through exactly one path."""
        return len(self.graph) > 0 and nx.is_tree(self.graph)

    def compute_routing_tables(self) -> None:
        """Compute shortest paths and set routing tables for all nodes."""
        shortest_paths = nx.all_pairs_dijkstra_path(self.graph, weight="delay")

        for source, paths in shortest_paths:
            routing_table: Dict[IPv4Address, NetDevice] = {}
            for destination, path in paths.items():
                if source != destination and len(path) > 1:
                    device = self.device_towards(source, path[1])
                    for address in self.nodes[destination].addresses:
                        routing_table[address] = device
            self.nodes[source].set_routing_table(routing_table)


def make_network(base: str, netmask: str = POINT_TO_POINT_NETMASK) -> IPv4Network:
    """Parse an address block such as ``10.1.3.0`` / ``255.255.255.252``.

    Raises:
        ConfigurationError: If the block is malformed or has fewer than two
            host addresses.
    """
    try:
        network = IPv4Network(f"{base}/{netmask}")
    except ValueError as exc:
        raise ConfigurationError(f"Malformed address block {base}/{netmask}: {exc}") from exc
    if network.num_addresses < 4:
        raise ConfigurationError(f"Address block {network} has fewer than two hosts")
    return network


def assign_addresses(links: Iterable[PointToPointLink], networks: Iterable[IPv4Network]) -> None:
    """Give the two devices of each link the first two hosts of its block.

    Raises:
        ConfigurationError: If two blocks overlap.
    """
    used: List[IPv4Network] = []
    for link, network in zip(links, networks):
        for other in used:
            if network.overlaps(other):
                raise ConfigurationError(f"Address blocks {network} and {other} overlap")
        used.append(network)
        hosts = network.hosts()
        link.network = network
        for device in link.devices:
            device.address = next(hosts)
        logger.debug("Assigned %s to %s", network, link)


def build_dumbbell(
    gateway_count: int,
    router_profile: LinkProfile,
    server_profile: LinkProfile,
    scheduler: Optional[Scheduler] = None,
    gateway_base: str = GATEWAY_NETWORK_BASE,
    server_base: str = SERVER_NETWORK_BASE,
    netmask: str = POINT_TO_POINT_NETMASK,
    queue_limit: int = DEFAULT_QUEUE_LIMIT,
) -> Topology:
    """Create a dumbbell topology with ``gateway_count`` gateways.

    Args:
        gateway_count: Number of gateways, at least one.
        router_profile: Bandwidth and delay of each gateway-router link.
        server_profile: Bandwidth and delay of the router-server link.
        scheduler: Event scheduler; a new one is created if omitted.
        gateway_base: Network address of gateway link ``i``, formatted with ``i``.
        server_base: Network address of the router-server link.
        netmask: Netmask applied to every block.
        queue_limit: Device queue size in packets.

    Returns:
        The addressed topology with populated routing tables.
    """
    if gateway_count <= 0:
        raise ConfigurationError(f"Gateway count must be positive, got {gateway_count}")

    networks = [make_network(gateway_base.format(i=i), netmask) for i in range(gateway_count)]
    networks.append(make_network(server_base, netmask))

    logger.info("Creating Topology")
    topology = Topology(scheduler if scheduler is not None else Scheduler())

    for i in range(gateway_count):
        topology.gateways.append(topology.add_node(NodeRole.GATEWAY, f"gw{i}").id)
    topology.router = topology.add_node(NodeRole.ROUTER, "router0").id
    topology.server = topology.add_node(NodeRole.SERVER, "server0").id

    for gateway in topology.gateways:
        topology.add_link(gateway, topology.router, router_profile, queue_limit)
    topology.add_link(topology.router, topology.server, server_profile, queue_limit)

    logger.info("Assigning address")
    assign_addresses(topology.links, networks)
    topology.compute_routing_tables()

    logger.debug(
        "Built dumbbell with %d gateways, %d links", gateway_count, len(topology.links)
    )
    return topology
