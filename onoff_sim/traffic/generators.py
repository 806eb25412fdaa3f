"""Random variables for traffic generation.

This module provides the distributions used to draw ON and OFF period
durations: constant, exponential (Poisson-like gaps), uniform and Pareto
(heavy-tailed). Every variable draws from a caller-supplied NumPy generator,
so each traffic source can own an independent stream.
"""

import math
import re
from abc import ABC, abstractmethod
from typing import Dict, Type

import numpy as np

from onoff_sim.core.errors import ConfigurationError


class RandomVariable(ABC):
    """Abstract base class for non-negative random durations."""

    @property
    @abstractmethod
    def mean(self) -> float:
        """Expected value of the distribution."""

    @abstractmethod
    def sample(self, rng: np.random.Generator) -> float:
        """Draw one value.

        Args:
            rng: Generator owned by the caller.
        """

    def validate(self) -> None:
        """Reject degenerate distributions.

        Raises:
            ConfigurationError: If the mean is not a positive finite number.
        """
        mean = self.mean
        if not (mean > 0 and math.isfinite(mean)):
            raise ConfigurationError(f"{self!r} has degenerate mean {mean}")


class Constant(RandomVariable):
    """Always returns ``value``."""

    def __init__(self, value: float) -> None:
        self.value = float(value)
        self.validate()

    @property
    def mean(self) -> float:
        return self.value

    def sample(self, rng: np.random.Generator) -> float:
        return self.value

    def __repr__(self) -> str:
        return f"Constant({self.value})"


class Exponential(RandomVariable):
    """Exponential distribution with the given mean (rate 1/mean).

    Args:
        mean: Expected value.
        bound: Upper bound; values above it are redrawn. 0 means unbounded.
    """

    def __init__(self, mean: float, bound: float = 0.0) -> None:
        self._mean = float(mean)
        self.bound = float(bound)
        self.validate()
        if self.bound < 0:
            raise ConfigurationError(f"Exponential bound must not be negative, got {bound}")

    @property
    def mean(self) -> float:
        return self._mean

    def sample(self, rng: np.random.Generator) -> float:
        while True:
            value = float(rng.exponential(self._mean))
            if self.bound == 0 or value <= self.bound:
                return value

    def __repr__(self) -> str:
        return f"Exponential(mean={self._mean}, bound={self.bound})"


class Uniform(RandomVariable):
    """Uniform distribution on ``[low, high)``."""

    def __init__(self, low: float, high: float) -> None:
        self.low = float(low)
        self.high = float(high)
        if self.low < 0 or self.high <= self.low:
            raise ConfigurationError(f"Invalid uniform range [{low}, {high})")
        self.validate()

    @property
    def mean(self) -> float:
        return (self.low + self.high) / 2

    def sample(self, rng: np.random.Generator) -> float:
        return float(rng.uniform(self.low, self.high))

    def __repr__(self) -> str:
        return f"Uniform({self.low}, {self.high})"


class Pareto(RandomVariable):
    """Pareto (heavy-tailed) distribution.

    Args:
        scale: Minimum value.
        shape: Shape parameter; must exceed 1 for a finite mean.
    """

    def __init__(self, scale: float, shape: float = 1.5) -> None:
        self.scale = float(scale)
        self.shape = float(shape)
        if self.shape <= 1:
            raise ConfigurationError(f"Pareto shape must exceed 1, got {shape}")
        self.validate()

    @property
    def mean(self) -> float:
        return self.shape * self.scale / (self.shape - 1)

    def sample(self, rng: np.random.Generator) -> float:
        return float((rng.pareto(self.shape) + 1) * self.scale)

    def __repr__(self) -> str:
        return f"Pareto(scale={self.scale}, shape={self.shape})"


_SPEC_RE = re.compile(r"^(?:ns3::)?(\w+?)(?:RandomVariable)?(?:\[(.*)\])?$")

_VARIABLES: Dict[str, Type[RandomVariable]] = {
    "constant": Constant,
    "exponential": Exponential,
    "uniform": Uniform,
    "pareto": Pareto,
}

_PARAMETERS: Dict[str, Dict[str, str]] = {
    "constant": {"constant": "value"},
    "exponential": {"mean": "mean", "bound": "bound"},
    "uniform": {"min": "low", "max": "high"},
    "pareto": {"scale": "scale", "shape": "shape"},
}


def parse_random_variable(spec: str) -> RandomVariable:
    """Build a random variable from an ns-3 style attribute string.

    Examples: ``"ns3::ConstantRandomVariable[Constant=1]"``,
    ``"ns3::ExponentialRandomVariable[Mean=1]"``, ``"Uniform[Min=0|Max=2]"``.

    Raises:
        ConfigurationError: If the string is malformed or names an unknown
            distribution or parameter.
    """
    match = _SPEC_RE.match(spec.strip())
    if match is None:
        raise ConfigurationError(f"Malformed random variable: {spec!r}")
    name, params = match.group(1).lower(), match.group(2)
    if name not in _VARIABLES:
        raise ConfigurationError(f"Unknown random variable: {match.group(1)}")

    kwargs: Dict[str, float] = {}
    for item in filter(None, (params or "").split("|")):
        key, sep, value = item.partition("=")
        parameter = _PARAMETERS[name].get(key.strip().lower())
        if not sep or parameter is None:
            raise ConfigurationError(f"Invalid parameter {item!r} in {spec!r}")
        try:
            kwargs[parameter] = float(value)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid value {value!r} in {spec!r}") from exc

    try:
        return _VARIABLES[name](**kwargs)
    except TypeError as exc:
        raise ConfigurationError(f"Missing parameters in {spec!r}") from exc
