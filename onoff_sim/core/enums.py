"""Enumerations for the dumbbell simulation.

This module defines enumerations used throughout the simulator.
"""

from enum import Enum


class SourceState(Enum):
    """Phases of an ON/OFF traffic source.

    Attributes:
        IDLE_WAIT: Waiting for the next active period.
        ACTIVE: Emitting packets at the configured rate.
        STOPPED: Terminal state, no further packets are emitted.
    """

    IDLE_WAIT = 1
    ACTIVE = 2
    STOPPED = 3


class NodeRole(Enum):
    """Role of a node in the dumbbell topology."""

    GATEWAY = "gw"
    ROUTER = "router"
    SERVER = "server"


class PacketFlag(Enum):
    """Kind of transport segment carried by a packet."""

    DATA = 1
    ACK = 2
