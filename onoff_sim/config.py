"""Scenario configuration.

ScenarioConfig gathers every parameter of a dumbbell experiment. The defaults
reproduce the reference experiment: ten gateways on 8Mbps/2ms links, a
10Mbps/5ms server link, and ON/OFF sources sending 5096-byte packets at
8Mb/s with constant one-second active periods and exponential idle periods
of mean one second.
"""

from dataclasses import dataclass, field
from typing import Union

from onoff_sim.core.errors import ConfigurationError
from onoff_sim.core.link import DEFAULT_QUEUE_LIMIT, LinkProfile
from onoff_sim.core.topology import (
    GATEWAY_NETWORK_BASE,
    POINT_TO_POINT_NETMASK,
    SERVER_NETWORK_BASE,
)
from onoff_sim.core.units import parse_data_rate, parse_time
from onoff_sim.traffic.generators import RandomVariable, parse_random_variable
from onoff_sim.transport.tcp import (
    DEFAULT_INITIAL_CWND,
    DEFAULT_MTU,
    DEFAULT_SEND_BUFFER,
)

__all__ = ["ScenarioConfig", "parse_data_rate", "parse_time"]


@dataclass
class ScenarioConfig:
    """Parameters of one simulation run.

    Attributes:
        gateway_count: Number of gateways (and flows).
        sim_time: Time at which the sources stop, in seconds.
        stop_margin: Extra time the scheduler keeps running after sim_time.
        mtu: Link MTU in bytes; the TCP segment size is derived from it.
        gateway_link: Bandwidth/delay of each gateway-router link.
        server_link: Bandwidth/delay of the router-server link.
        queue_limit: Device queue size in packets.
        packet_size: Application packet size in bytes.
        data_rate: Source rate while active.
        on_time: Active period distribution (object or ns-3 style string).
        off_time: Idle period distribution (object or ns-3 style string).
        max_bytes: Per-source byte limit, 0 for none.
        source_start: Start time of every source.
        sink_start: Start time of the server's packet sink.
        sink_port: Server port.
        send_buffer: TCP send buffer in bytes.
        initial_cwnd: Initial congestion window in segments.
        initial_rtt: Value reported as the RTT before the first sample.
        seed: Scenario seed for the per-source random streams.
        output_dir: Directory receiving the trace files.
        file_prefix: Prepended to every trace file name.
        file_suffix: Appended to every trace file name.
        gateway_network: Address block of gateway link ``i``.
        server_network: Address block of the server link.
        netmask: Netmask of every block.
        legacy_single_gateway: Install every source application on gateway 0,
            as the reference program did; sockets stay on their own gateway.
        progress: Log progress every 10 % of the run.
    """

    gateway_count: int = 10
    sim_time: float = 360.0
    stop_margin: float = 5.0
    mtu: int = DEFAULT_MTU
    gateway_link: LinkProfile = field(default_factory=lambda: LinkProfile.parse("8Mbps", "2ms"))
    server_link: LinkProfile = field(default_factory=lambda: LinkProfile.parse("10Mbps", "5ms"))
    queue_limit: int = DEFAULT_QUEUE_LIMIT
    packet_size: int = 5096
    data_rate: Union[str, float] = "8Mb/s"
    on_time: Union[str, RandomVariable] = "ns3::ConstantRandomVariable[Constant=1]"
    off_time: Union[str, RandomVariable] = "ns3::ExponentialRandomVariable[Mean=1]"
    max_bytes: int = 0
    source_start: float = 1.0
    sink_start: float = 0.1
    sink_port: int = 8080
    send_buffer: int = DEFAULT_SEND_BUFFER
    initial_cwnd: int = DEFAULT_INITIAL_CWND
    initial_rtt: float = 0.0
    seed: int = 1
    output_dir: str = "."
    file_prefix: str = ""
    file_suffix: str = ""
    gateway_network: str = GATEWAY_NETWORK_BASE
    server_network: str = SERVER_NETWORK_BASE
    netmask: str = POINT_TO_POINT_NETMASK
    legacy_single_gateway: bool = False
    progress: bool = False

    @property
    def stop_time(self) -> float:
        """Time at which the scheduler halts."""
        return self.sim_time + self.stop_margin

    def on_time_variable(self) -> RandomVariable:
        return _as_variable(self.on_time)

    def off_time_variable(self) -> RandomVariable:
        return _as_variable(self.off_time)

    def validate(self) -> None:
        """Check the configuration before anything is built.

        Raises:
            ConfigurationError: On the first invalid parameter.
        """
        if self.gateway_count <= 0:
            raise ConfigurationError(f"gateway_count must be positive, got {self.gateway_count}")
        if self.sim_time <= 0 or self.stop_margin < 0:
            raise ConfigurationError("sim_time must be positive and stop_margin non-negative")
        if not 0 <= self.sink_start <= self.stop_time:
            raise ConfigurationError(f"sink_start {self.sink_start} outside the run")
        if not 0 <= self.source_start <= self.sim_time:
            raise ConfigurationError(f"source_start {self.source_start} outside the run")
        if self.packet_size <= 0:
            raise ConfigurationError(f"packet_size must be positive, got {self.packet_size}")
        if not 0 < self.sink_port < 65536:
            raise ConfigurationError(f"Invalid sink port {self.sink_port}")
        if self.initial_rtt < 0:
            raise ConfigurationError("initial_rtt must not be negative")
        parse_data_rate(self.data_rate)
        self.on_time_variable().validate()
        self.off_time_variable().validate()


def _as_variable(value: Union[str, RandomVariable]) -> RandomVariable:
    if isinstance(value, RandomVariable):
        return value
    if isinstance(value, str):
        return parse_random_variable(value)
    raise ConfigurationError(f"Expected a random variable, got {value!r}")
