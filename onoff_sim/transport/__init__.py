"""Transport layer for the dumbbell simulation.

This module provides the TCP flow endpoints and the server's packet sink.
"""
