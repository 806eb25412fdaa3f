"""Trace capture for the dumbbell simulation.

This module provides the output streams and the observers that record
congestion window, RTT, transmit and receive events.
"""
