"""Parsing of ns-3 style data rate and time strings.

Accepts values such as ``"8Mbps"``, ``"8Mb/s"``, ``"10Gbps"``, ``"2ms"`` or
``"1s"``. Plain numbers are taken as bits per second and seconds.
"""

import re
from typing import Union

from onoff_sim.core.errors import ConfigurationError

_NUMBER = r"([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)"
_RATE_RE = re.compile(_NUMBER + r"\s*([kKMGT]?)(b|B)(ps|/s)$")
_TIME_RE = re.compile(_NUMBER + r"\s*(s|ms|us|ns|ps|min|h)$")

_RATE_PREFIX = {"": 1, "k": 1e3, "K": 1e3, "M": 1e6, "G": 1e9, "T": 1e12}
_TIME_UNIT = {
    "s": 1.0,
    "ms": 1e-3,
    "us": 1e-6,
    "ns": 1e-9,
    "ps": 1e-12,
    "min": 60.0,
    "h": 3600.0,
}


def parse_data_rate(value: Union[str, float, int]) -> float:
    """Convert a data rate to bits per second.

    Args:
        value: Number of bits per second, or a string like ``"8Mbps"``.
            An upper case ``B`` denotes bytes.

    Returns:
        The rate in bits per second.

    Raises:
        ConfigurationError: If the value is malformed or not positive.
    """
    if isinstance(value, (int, float)):
        rate = float(value)
    else:
        match = _RATE_RE.match(value.strip())
        if match is None:
            raise ConfigurationError(f"Malformed data rate: {value!r}")
        number, prefix, unit, _ = match.groups()
        rate = float(number) * _RATE_PREFIX[prefix] * (8 if unit == "B" else 1)
    if rate <= 0:
        raise ConfigurationError(f"Data rate must be positive, got {value!r}")
    return rate


def parse_time(value: Union[str, float, int]) -> float:
    """Convert a time value to seconds.

    Args:
        value: Number of seconds, or a string like ``"2ms"``.

    Returns:
        The time in seconds.

    Raises:
        ConfigurationError: If the value is malformed or negative.
    """
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _TIME_RE.match(value.strip())
        if match is None:
            raise ConfigurationError(f"Malformed time value: {value!r}")
        number, unit = match.groups()
        seconds = float(number) * _TIME_UNIT[unit]
    if seconds < 0:
        raise ConfigurationError(f"Time must not be negative, got {value!r}")
    return seconds
