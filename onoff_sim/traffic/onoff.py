"""ON/OFF traffic source.

This module defines the OnOffSource, which alternates between active periods,
during which it hands fixed-size packets to its transport endpoint at a
constant rate, and idle periods whose durations are drawn from a random
variable::

    IDLE_WAIT -> ACTIVE -> IDLE_WAIT -> ... -> STOPPED

Every emission is a separately scheduled event.
"""

import logging
from ipaddress import IPv4Address
from typing import Optional, Tuple, Union

import numpy as np

from onoff_sim.core.enums import SourceState
from onoff_sim.core.errors import ConfigurationError
from onoff_sim.core.hooks import TracedSubject
from onoff_sim.core.packet import Payload
from onoff_sim.core.scheduler import EventHandle, Scheduler
from onoff_sim.core.units import parse_data_rate
from onoff_sim.traffic.generators import Constant, Exponential, RandomVariable
from onoff_sim.transport.tcp import FlowEndpoint, send

logger = logging.getLogger(__name__)


class OnOffSource(TracedSubject):
    """ON/OFF application driving exactly one flow endpoint.

    Attributes:
        scheduler: Event scheduler.
        endpoint: Transport endpoint the source sends through.
        remote: Address and port the endpoint connects to on start.
        data_rate: Sending rate while active, in bits per second.
        packet_size: Size of each packet in bytes.
        on_time: Distribution of active period durations.
        off_time: Distribution of idle period durations.
        max_bytes: Total bytes to send before stopping; 0 means no limit.
        state: Current phase.
        next_transition_time: When the current phase is scheduled to end.
        packets_sent: Packets accepted by the endpoint.
        packets_rejected: Packets refused because the send buffer was full.
        total_bytes: Bytes accepted by the endpoint.
    """

    trace_sources = ("Tx", "StateChange")

    def __init__(
        self,
        scheduler: Scheduler,
        endpoint: FlowEndpoint,
        remote: Tuple[IPv4Address, int],
        rng: np.random.Generator,
        data_rate: Union[str, float] = "8Mbps",
        packet_size: int = 5096,
        on_time: Optional[RandomVariable] = None,
        off_time: Optional[RandomVariable] = None,
        max_bytes: int = 0,
        name: str = "onoff",
    ) -> None:
        super().__init__()
        self.scheduler = scheduler
        self.endpoint = endpoint
        self.remote = remote
        self.rng = rng
        self.data_rate = parse_data_rate(data_rate)
        self.packet_size = packet_size
        self.on_time = on_time if on_time is not None else Constant(1.0)
        self.off_time = off_time if off_time is not None else Exponential(1.0)
        self.max_bytes = max_bytes
        self.name = name
        self._validate()

        self.state = SourceState.IDLE_WAIT
        self.next_transition_time: Optional[float] = None
        self.packets_sent = 0
        self.packets_rejected = 0
        self.total_bytes = 0
        self._transition_event: Optional[EventHandle] = None
        self._send_event: Optional[EventHandle] = None
        self._stop_event: Optional[EventHandle] = None

    def _validate(self) -> None:
        if self.packet_size <= 0:
            raise ConfigurationError(f"Packet size must be positive, got {self.packet_size}")
        if self.max_bytes < 0:
            raise ConfigurationError(f"max_bytes must not be negative, got {self.max_bytes}")
        for variable in (self.on_time, self.off_time):
            if not isinstance(variable, RandomVariable):
                raise ConfigurationError(f"Expected a RandomVariable, got {variable!r}")
            variable.validate()

    @property
    def interval(self) -> float:
        """Time between two packets of an active period."""
        return self.packet_size * 8 / self.data_rate

    def install(self, start_time: float, stop_time: Optional[float] = None) -> None:
        """Schedule the source to start and, optionally, to stop.

        Args:
            start_time: Time of the first transition to ACTIVE.
            stop_time: Time of the forced transition to STOPPED.
        """
        if stop_time is not None and stop_time < start_time:
            raise ConfigurationError(
                f"{self.name}: stop time {stop_time} precedes start time {start_time}"
            )
        self.next_transition_time = start_time
        self._transition_event = self.scheduler.schedule(start_time, self._start)
        if stop_time is not None:
            self._stop_event = self.scheduler.schedule(stop_time, self.stop)

    def draw_idle_duration(self) -> float:
        """Sample the length of an idle period from this source's stream."""
        return self.off_time.sample(self.rng)

    def _start(self) -> None:
        if not self.endpoint.connected:
            self.endpoint.connect(*self.remote)
        self._enter_active()

    def _enter_active(self) -> None:
        self._transition_event = None
        if self.state is SourceState.STOPPED:
            return
        self._set_state(SourceState.ACTIVE)
        duration = self.on_time.sample(self.rng)
        self.next_transition_time = self.scheduler.now + duration
        self._transition_event = self.scheduler.schedule_in(duration, self._enter_idle)
        self._send_event = self.scheduler.schedule_in(self.interval, self._send_packet)

    def _send_packet(self) -> None:
        self._send_event = None
        if self.state is not SourceState.ACTIVE:
            return
        if send(self.endpoint, self.packet_size):
            self.packets_sent += 1
            self.total_bytes += self.packet_size
            self.fire("Tx", Payload(self.packet_size, self.scheduler.now))
        else:
            self.packets_rejected += 1
        if self.max_bytes and self.total_bytes >= self.max_bytes:
            logger.debug("%s reached max_bytes at %s", self.name, self.scheduler.now)
            self.stop()
            return
        self._send_event = self.scheduler.schedule_in(self.interval, self._send_packet)

    def _enter_idle(self) -> None:
        self._transition_event = None
        self.scheduler.cancel(self._send_event)
        self._send_event = None
        self._set_state(SourceState.IDLE_WAIT)
        idle = self.draw_idle_duration()
        self.next_transition_time = self.scheduler.now + idle
        self._transition_event = self.scheduler.schedule_in(idle, self._enter_active)

    def stop(self) -> None:
        """Force the source into STOPPED and cancel its pending events."""
        if self.state is SourceState.STOPPED:
            return
        for event in (self._transition_event, self._send_event, self._stop_event):
            self.scheduler.cancel(event)
        self._transition_event = self._send_event = self._stop_event = None
        self.next_transition_time = None
        self._set_state(SourceState.STOPPED)
        logger.debug(
            "%s stopped at %s after %d packets", self.name, self.scheduler.now, self.packets_sent
        )

    def _set_state(self, state: SourceState) -> None:
        if state is not self.state:
            old, self.state = self.state, state
            self.fire("StateChange", old, state)

    def __repr__(self) -> str:
        return f"OnOffSource({self.name}, {self.state.name})"
