"""ON/OFF dumbbell simulation harness.

Discrete-event simulation of many ON/OFF TCP sources funnelling through a
shared router to a single server, with per-flow congestion window, RTT,
transmit and receive traces written to plain text files.
"""

from onoff_sim.config import ScenarioConfig
from onoff_sim.core.errors import (
    ConfigurationError,
    SchedulingError,
    SimulationError,
    TraceIOError,
)
from onoff_sim.core.scheduler import EventHandle, Scheduler
from onoff_sim.core.topology import Topology, build_dumbbell
from onoff_sim.simulation import Simulation
from onoff_sim.tracing.observers import TracerPipeline
from onoff_sim.traffic.onoff import OnOffSource

__version__ = "0.1.0"

__all__ = [
    "ScenarioConfig",
    "SimulationError",
    "ConfigurationError",
    "SchedulingError",
    "TraceIOError",
    "Scheduler",
    "EventHandle",
    "Topology",
    "build_dumbbell",
    "Simulation",
    "TracerPipeline",
    "OnOffSource",
]
