"""Traffic generation for the dumbbell simulation.

This module provides the ON/OFF source and the random variables that shape
its active and idle periods.
"""
