"""Simulation driver for the dumbbell experiment.

This module defines the Simulation class, which wires the topology, the
transport endpoints, the ON/OFF sources and the tracer pipeline together,
runs the scheduler until the stop time and tears everything down.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from onoff_sim.config import ScenarioConfig
from onoff_sim.core.errors import SimulationError
from onoff_sim.core.scheduler import Scheduler
from onoff_sim.core.topology import Topology, build_dumbbell
from onoff_sim.tracing.observers import TracerPipeline
from onoff_sim.traffic.onoff import OnOffSource
from onoff_sim.transport.tcp import FlowEndpoint, PacketSink, bind_socket, segment_size_for_mtu
from onoff_sim.utils.metrics import calculate_fairness_index
from onoff_sim.utils.rng import StreamFactory

logger = logging.getLogger(__name__)


class Simulation:
    """Dumbbell simulation environment.

    Attributes:
        config: Scenario parameters.
        scheduler: Event scheduler driving the run.
        topology: Built network, once ``build`` ran.
        sink: Packet sink on the server.
        endpoints: Client endpoints, one per flow.
        sources: ON/OFF sources, one per flow.
        tracer: Tracer pipeline owning the output streams.
        metrics: Summary of the last run.
    """

    def __init__(self, config: Optional[ScenarioConfig] = None) -> None:
        """Initialize the simulation.

        Args:
            config: Scenario parameters; defaults reproduce the reference run.
        """
        self.config = config if config is not None else ScenarioConfig()
        self.config.validate()
        self.scheduler = Scheduler()
        self.random_streams = StreamFactory(self.config.seed)
        self.topology: Optional[Topology] = None
        self.sink: Optional[PacketSink] = None
        self.endpoints: List[FlowEndpoint] = []
        self.sources: List[OnOffSource] = []
        self.tracer: Optional[TracerPipeline] = None
        self.metrics: Dict[str, Any] = {}

        self.hooks: Dict[str, List[Callable[..., Any]]] = {
            "sim_start": [],  # the scheduler is about to run
            "sim_end": [],  # the run finished
        }

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback function for a specific event type.

        Args:
            event_type: The type of event to register for.
            callback: The function to call when the event occurs.
        """
        if event_type not in self.hooks:
            raise ValueError(f"Unknown hook type: {event_type}")
        self.hooks[event_type].append(callback)

    def call_hooks(self, event_type: str, *args: Any, **kwargs: Any) -> None:
        """Call all registered callbacks for the given event type."""
        for callback in self.hooks.get(event_type, []):
            callback(*args, **kwargs)

    def build(self) -> Topology:
        """Create the addressed dumbbell topology."""
        config = self.config
        self.topology = build_dumbbell(
            config.gateway_count,
            config.gateway_link,
            config.server_link,
            scheduler=self.scheduler,
            gateway_base=config.gateway_network,
            server_base=config.server_network,
            netmask=config.netmask,
            queue_limit=config.queue_limit,
        )
        return self.topology

    def install_applications(self) -> None:
        """Install the packet sink on the server and one source per gateway."""
        if self.topology is None:
            raise SimulationError("build() must run before install_applications()")
        config = self.config
        topology = self.topology

        logger.info("Creating Socket")
        self.sink = PacketSink(self.scheduler, topology.server_node, config.sink_port)
        self.sink.start(config.sink_start, config.stop_time)
        remote = (topology.server_node.address, config.sink_port)

        segment_size = segment_size_for_mtu(config.mtu)
        on_time = config.on_time_variable()
        off_time = config.off_time_variable()
        if config.legacy_single_gateway:
            logger.warning("Installing every source application on gateway 0")

        for i, gateway in enumerate(topology.gateway_nodes):
            endpoint = bind_socket(
                self.scheduler,
                gateway,
                "tcp",
                segment_size=segment_size,
                send_buffer=config.send_buffer,
                initial_cwnd=config.initial_cwnd,
                initial_rtt=config.initial_rtt,
            )
            source = OnOffSource(
                self.scheduler,
                endpoint,
                remote,
                self.random_streams.stream(),
                data_rate=config.data_rate,
                packet_size=config.packet_size,
                on_time=on_time,
                off_time=off_time,
                max_bytes=config.max_bytes,
                name=f"onoff-{i}",
            )
            host = topology.gateway_nodes[0] if config.legacy_single_gateway else gateway
            host.add_application(source)
            source.install(config.source_start, config.sim_time)
            self.endpoints.append(endpoint)
            self.sources.append(source)

        logger.debug("Installed %d sources, segment size %d", len(self.sources), segment_size)

    def register_tracers(self) -> TracerPipeline:
        """Attach every tracer; must run before ``run``."""
        if self.topology is None or self.sink is None:
            raise SimulationError("Applications must be installed before tracers")
        config = self.config
        self.tracer = TracerPipeline(
            self.scheduler, config.output_dir, config.file_prefix, config.file_suffix
        )
        for i, endpoint in enumerate(self.endpoints):
            self.tracer.attach(endpoint, "cwnd", i)
            self.tracer.attach(endpoint, "rtt", i)
        for i, source in enumerate(self.sources):
            self.tracer.attach(source, "tx", i)
        for i, gateway in enumerate(self.topology.gateways):
            device = self.topology.device_towards(gateway, self.topology.router)
            self.tracer.attach(device, "phytx", i)
        self.tracer.attach(self.sink, "rx")
        return self.tracer

    def run(self) -> Dict[str, Any]:
        """Run the scheduler until the stop time.

        Returns:
            Dictionary of calculated metrics.
        """
        stop_time = self.config.stop_time
        if self.config.progress:
            count = 10
            interval = stop_time / count
            for step in range(1, count + 1):
                self.scheduler.schedule(
                    step * interval,
                    lambda progress=step * 100 / count: logger.info("Progress: %.2f%%", progress),
                )

        self.call_hooks("sim_start", self)
        logger.info("Running simulation until %.1fs", stop_time)
        self.scheduler.run(stop_time)

        self.calculate_metrics()
        self.call_hooks("sim_end", self.metrics)
        return self.metrics

    def teardown(self) -> None:
        """Stop sources, cancel transport timers and close every stream."""
        for source in self.sources:
            source.stop()
        for endpoint in self.endpoints:
            endpoint.close()
        if self.tracer is not None:
            self.tracer.close()

    def execute(self) -> Dict[str, Any]:
        """Build, install, trace and run, always tearing down afterwards."""
        try:
            self.build()
            self.install_applications()
            self.register_tracers()
            return self.run()
        finally:
            self.teardown()

    def calculate_metrics(self) -> Dict[str, Any]:
        """Calculate per-flow and aggregate metrics of the run.

        Returns:
            Dictionary of calculated metrics.
        """
        duration = self.scheduler.now
        received: Dict[int, int] = {}
        if self.sink is not None:
            for i, endpoint in enumerate(self.endpoints):
                conn = self.sink.connections.get((endpoint.local_address, endpoint.port))
                received[i] = conn.rcv_nxt if conn is not None else 0

        flows = []
        for i, (endpoint, source) in enumerate(zip(self.endpoints, self.sources)):
            flows.append(
                {
                    "flow": i,
                    "packets_sent": source.packets_sent,
                    "packets_rejected": source.packets_rejected,
                    "bytes_sent": source.total_bytes,
                    "bytes_received": received.get(i, 0),
                    "segments_sent": endpoint.segments_sent,
                    "retransmissions": endpoint.retransmissions,
                    "timeouts": endpoint.timeouts,
                    "final_cwnd": endpoint.cwnd,
                    "srtt": endpoint.srtt,
                }
            )

        throughputs = {
            i: bytes_received / duration for i, bytes_received in received.items()
        } if duration > 0 else {}

        packet_drops = 0
        if self.topology is not None:
            packet_drops = sum(
                device.packets_dropped for link in self.topology.links for device in link.devices
            )

        total_received = self.sink.total_bytes if self.sink is not None else 0
        self.metrics = {
            "duration": duration,
            "events": self.scheduler.executed_count,
            "flows": flows,
            "total_packets_sent": sum(f["packets_sent"] for f in flows),
            "total_bytes_received": total_received,
            "throughput": total_received / duration if duration > 0 else 0.0,
            "packet_drops": packet_drops,
            "fairness_index": calculate_fairness_index(throughputs),
            "trace_records": {
                stream.name: stream.record_count for stream in self.tracer.streams.values()
            } if self.tracer is not None else {},
        }
        return self.metrics
