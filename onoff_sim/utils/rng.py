import numpy as np
from typing import List


class StreamFactory:
    """
    Hands out independent pseudo-random streams derived from one scenario seed.

    Each call to ``stream()`` spawns a child of a NumPy SeedSequence, so the
    streams are statistically independent of each other and the whole set is
    reproducible given the seed and the order of requests.
    """

    def __init__(self, seed: int):
        """
        Initialize the factory with a seed value.

        Args:
            seed (int): The scenario seed.
        """
        self.seed = seed
        self._sequence = np.random.SeedSequence(seed)
        self.issued = 0

    def stream(self) -> np.random.Generator:
        """
        Return a new independent generator.

        Returns:
            numpy.random.Generator: A generator seeded from the next child sequence.
        """
        (child,) = self._sequence.spawn(1)
        self.issued += 1
        return np.random.default_rng(child)

    def streams(self, count: int) -> List[np.random.Generator]:
        """
        Return ``count`` new independent generators.

        Args:
            count (int): Number of generators.

        Returns:
            list: The generators, in request order.
        """
        return [self.stream() for _ in range(count)]
