"""Core components for the dumbbell simulation.

This module contains the event scheduler, packets, links, nodes and the
topology builder.
"""
