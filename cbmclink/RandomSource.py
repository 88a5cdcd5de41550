#!/usr/bin/env python3
"""
Pseudo-Random Source

Thin wrapper around a numpy ``Generator`` offering the draws used by the
link growth operator: uniform numbers on ``[0, bound)``, uniform directions on
the unit sphere and roulette-wheel selection of an index given non-negative
weights.

A RandomSource is a single stream. Independent workers must each own their
own stream (see ``RandomSource.spawn``); sharing one stream between threads
would interleave draws and break reproducibility.
"""

import logging
import math
from typing import List, Optional, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)


class RandomSource:
    """
    Seedable uniform random stream with weighted selection.

    Parameters
    ----------
    seed : int, sequence of int or np.random.SeedSequence, optional
        Seed of the stream; None draws fresh entropy from the OS
    """

    def __init__(self, seed: Optional[Union[int, Sequence[int], np.random.SeedSequence]] = None):
        if isinstance(seed, np.random.SeedSequence):
            self._seed_sequence = seed
        else:
            self._seed_sequence = np.random.SeedSequence(seed)
        self._rng = np.random.default_rng(self._seed_sequence)

    def __repr__(self) -> str:
        return f"RandomSource(entropy={self._seed_sequence.entropy})"

    @property
    def generator(self) -> np.random.Generator:
        return self._rng

    def spawn(self, n: int) -> List['RandomSource']:
        """Independent child streams, one per concurrent worker."""
        return [RandomSource(child) for child in self._seed_sequence.spawn(n)]

    def rand(self, bound: float = 1.0) -> float:
        """Uniform draw on ``[0, bound)``."""
        return bound * float(self._rng.random())

    def randint(self, bound: int) -> int:
        """Uniform integer on ``[0, bound)``."""
        return int(self._rng.integers(bound))

    def unit_vector(self) -> np.ndarray:
        """Direction drawn uniformly on the unit sphere."""
        cos_theta = 2.0 * self.rand() - 1.0
        sin_theta = math.sqrt(max(0.0, 1.0 - cos_theta * cos_theta))
        phi = self.rand(2.0 * math.pi)
        return np.array([sin_theta * math.cos(phi), sin_theta * math.sin(phi), cos_theta])

    def pick_weighted(self, weights: np.ndarray, count: Optional[int] = None,
                      total: Optional[float] = None) -> int:
        """
        Roulette-wheel selection of an index.

        The probability of index ``i`` is ``weights[i] / total``. An index whose
        weight is exactly zero is never returned while any weight is positive.
        When every weight is zero the choice falls back to a uniform index.

        Parameters
        ----------
        weights : np.ndarray
            Non-negative weights
        count : Optional[int]
            Number of leading entries of ``weights`` to consider; defaults to all
        total : Optional[float]
            Sum of the considered weights, computed when not given

        Returns
        -------
        int
            Selected index in ``[0, count)``
        """
        if count is None:
            count = len(weights)
        if count <= 0:
            raise ValueError("Cannot pick from an empty set of weights")
        weights = np.asarray(weights[:count], dtype=float)
        if total is None:
            total = float(np.sum(weights))

        if math.isinf(total):
            # Overflowing Boltzmann factors dominate everything finite
            candidates = np.flatnonzero(np.isinf(weights))
            if len(candidates) > 0:
                return int(candidates[self.randint(len(candidates))])
        if not total > 0.0 or not math.isfinite(total):
            logger.debug(f"pick_weighted: total weight {total} over {count} entries; picking uniformly")
            return self.randint(count)

        draw = self.rand(total)
        cumulative = np.cumsum(weights)
        index = int(np.searchsorted(cumulative, draw, side='right'))
        if index >= count:
            # Rounding put the draw past the last partial sum
            index = int(np.flatnonzero(weights > 0.0)[-1])
        return index
