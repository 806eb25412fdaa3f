"""Tracer pipeline.

Observers connect to the trace sources of simulation objects and append one
record to their output stream each time the source fires, within the same
event execution. One observer class exists per metric:

========  ==================  =================================
metric    trace source        line
========  ==================  =================================
cwnd      CongestionWindow    ``<time> <old_cwnd> <new_cwnd>``
rtt       RTT                 ``<time> <rtt_seconds>``
tx        Tx                  ``<time> <packet_size_bytes>``
phytx     PhyTxBegin          ``<time> <packet_size_bytes>``
rx        Rx                  ``<address> <time> <packet_size_bytes>``
========  ==================  =================================
"""

import logging
import os
from abc import ABC, abstractmethod
from ipaddress import IPv4Address
from typing import Dict, Optional, Tuple, Type

from onoff_sim.core.errors import ConfigurationError, TraceIOError
from onoff_sim.core.hooks import TracedSubject
from onoff_sim.core.packet import Packet, Payload
from onoff_sim.core.scheduler import Scheduler
from onoff_sim.tracing.streams import OutputStream, TraceRecord

logger = logging.getLogger(__name__)


class TraceObserver(ABC):
    """Writes observations of one subject to one output stream.

    Attributes:
        stream: Destination stream.
        flow_index: Flow the observed subject belongs to, if any.
        scheduler: Source of the current virtual time.
    """

    trace_source = ""
    subject_first = False

    def __init__(
        self, stream: OutputStream, flow_index: Optional[int], scheduler: Scheduler
    ) -> None:
        self.stream = stream
        self.flow_index = flow_index
        self.scheduler = scheduler

    def record(self, *values, time: Optional[float] = None) -> None:
        self.stream.write(
            TraceRecord(self.scheduler.now if time is None else time, self.flow_index, values)
        )

    @abstractmethod
    def notify(self, *args) -> None:
        """Called synchronously when the trace source fires."""


class CwndObserver(TraceObserver):
    trace_source = "CongestionWindow"

    def notify(self, old: int, new: int) -> None:
        self.record(old, new)


class RttObserver(TraceObserver):
    """Records RTT samples, preceded once by the initial value at time 0.

    Attributes:
        first_observation: True until the first sample for this flow arrives.
    """

    trace_source = "RTT"

    def __init__(
        self, stream: OutputStream, flow_index: Optional[int], scheduler: Scheduler
    ) -> None:
        super().__init__(stream, flow_index, scheduler)
        self.first_observation = True

    def notify(self, old: float, new: float) -> None:
        if self.first_observation:
            self.record(float(old), time=0.0)
            self.first_observation = False
        self.record(float(new))


class TxObserver(TraceObserver):
    trace_source = "Tx"

    def notify(self, payload: Payload) -> None:
        self.record(payload.size)


class PhyTxObserver(TraceObserver):
    trace_source = "PhyTxBegin"

    def notify(self, packet: Packet) -> None:
        self.record(packet.wire_size)


class RxObserver(TraceObserver):
    trace_source = "Rx"
    subject_first = True

    def notify(self, payload: Payload, address: IPv4Address) -> None:
        self.stream.write(TraceRecord(self.scheduler.now, address, (payload.size,)))


OBSERVERS: Dict[str, Type[TraceObserver]] = {
    "cwnd": CwndObserver,
    "rtt": RttObserver,
    "tx": TxObserver,
    "phytx": PhyTxObserver,
    "rx": RxObserver,
}


class TracerPipeline:
    """Owns the output streams and the observers writing to them.

    Attributes:
        scheduler: Event scheduler whose clock timestamps the records.
        output_dir: Directory receiving one file per stream.
        prefix: Prepended to every file name.
        suffix: Appended to every file name.
        streams: Open streams keyed by (metric, flow index).
        observers: Every registered observer.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        output_dir: str = ".",
        prefix: str = "",
        suffix: str = "",
    ) -> None:
        self.scheduler = scheduler
        self.output_dir = output_dir
        self.prefix = prefix
        self.suffix = suffix
        self.streams: Dict[Tuple[str, Optional[int]], OutputStream] = {}
        self.observers = []
        try:
            os.makedirs(output_dir, exist_ok=True)
        except OSError as exc:
            raise TraceIOError(f"Cannot create output directory {output_dir}: {exc}") from exc

    @staticmethod
    def stream_name(metric_name: str, flow_index: Optional[int]) -> str:
        return metric_name if flow_index is None else f"{metric_name}-{flow_index}"

    def open_stream(self, metric_name: str, flow_index: Optional[int]) -> OutputStream:
        """Return the stream for (metric, flow), opening it on first use."""
        key = (metric_name, flow_index)
        if key not in self.streams:
            name = self.stream_name(metric_name, flow_index)
            path = os.path.join(self.output_dir, f"{self.prefix}{name}{self.suffix}")
            self.streams[key] = OutputStream(
                name, path, subject_first=OBSERVERS[metric_name].subject_first
            )
        return self.streams[key]

    def attach(
        self, subject: TracedSubject, metric_name: str, flow_index: Optional[int] = None
    ) -> OutputStream:
        """Trace ``metric_name`` of ``subject`` into its output stream.

        Args:
            subject: Object exposing the metric's trace source.
            metric_name: One of ``cwnd``, ``rtt``, ``tx``, ``phytx``, ``rx``.
            flow_index: Flow index used in the stream name; None for shared
                streams such as ``rx``.

        Returns:
            The output stream receiving the records.

        Raises:
            ConfigurationError: If the metric is unknown or the simulation
                has already started running.
        """
        if metric_name not in OBSERVERS:
            raise ConfigurationError(f"Unknown metric: {metric_name}")
        if self.scheduler.started:
            raise ConfigurationError(
                f"Cannot attach {metric_name} tracer after the simulation started"
            )
        observer_class = OBSERVERS[metric_name]
        if observer_class.trace_source not in getattr(subject, "trace_sources", ()):
            raise ConfigurationError(
                f"{type(subject).__name__} has no {observer_class.trace_source} trace source"
            )
        stream = self.open_stream(metric_name, flow_index)
        observer = observer_class(stream, flow_index, self.scheduler)
        subject.trace_connect(observer_class.trace_source, observer)
        self.observers.append(observer)
        logger.debug("Attached %s tracer to %r", stream.name, subject)
        return stream

    def flush(self) -> None:
        for stream in self.streams.values():
            stream.flush()

    def close(self) -> None:
        """Close every stream."""
        for stream in self.streams.values():
            stream.close()

    def __enter__(self) -> "TracerPipeline":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
