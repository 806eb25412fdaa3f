"""Exception types raised by the simulation harness.

Every failure is fatal: the simulation is a single deterministic pass, so
errors propagate out of the run loop instead of being retried.
"""


class SimulationError(Exception):
    """Base class for all simulation errors."""


class ConfigurationError(SimulationError):
    """Invalid scenario parameters, detected before any event runs."""


class SchedulingError(SimulationError):
    """Logic defect in event scheduling, e.g. scheduling into the past."""


class TraceIOError(SimulationError):
    """An output stream could not be opened or written."""
