#!/usr/bin/env python3
"""
Bond Length Sampling

Draws the focus-atom bond length of a new conformation, or measures it for an
existing one, together with its bond energy and Boltzmann weight.

A free bond is drawn from ``b^3 * exp(-beta * U(b * L0))`` on the fractional
stretch interval ``b in [0.9, 1.1]`` by two nested rejection steps: the first
accepts the radial Jacobian ``b^3`` against its maximum ``1.1^3 = 1.331``, the
second accepts the Boltzmann factor. Neither step needs the normalisation of
the target density.
"""

import math
from dataclasses import dataclass
from typing import NamedTuple, Optional

from .ForceField import ForceFieldParams, boltzmann_factor
from .LinkTopology import LinkTopology
from .RandomSource import RandomSource
from .TrialMolecule import TrialMolecule

BOND_STRETCH_MIN = 0.9
BOND_STRETCH_RANGE = 0.2
# Maximum of b^3 on the stretch interval
CUBIC_NORMALIZATION = 1.331
DEFAULT_MAX_ATTEMPTS = 1000000


class SamplingError(RuntimeError):
    """A rejection sampler exhausted its attempts."""


@dataclass(frozen=True)
class BondSample:
    """Bond length with its energy and Boltzmann weight."""
    length: float
    energy: float
    weight: float


def _weighed(forcefield: ForceFieldParams, topology: LinkTopology, length: float) -> BondSample:
    energy = forcefield.bond_energy(topology.bond_kind, length)
    return BondSample(length, energy, float(boltzmann_factor(forcefield.beta, energy)))


def sample_new_bond(forcefield: ForceFieldParams, topology: LinkTopology, prng: RandomSource,
                    max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> BondSample:
    """
    Bond length of a new conformation.

    Parameters
    ----------
    forcefield : ForceFieldParams
        Force field tables
    topology : LinkTopology
        Link being grown
    prng : RandomSource
        Random stream
    max_attempts : int
        Boltzmann acceptance attempts before giving up

    Returns
    -------
    BondSample
        Equilibrium length for a fixed bond, otherwise a sampled length

    Raises
    ------
    SamplingError
        If no length is accepted within ``max_attempts``
    """
    if topology.bond_fixed:
        return _weighed(forcefield, topology, topology.eq_bond_length)

    for _ in range(max_attempts):
        while True:
            bond = BOND_STRETCH_RANGE * prng.rand() + BOND_STRETCH_MIN
            if bond * bond * bond / CUBIC_NORMALIZATION >= prng.rand():
                break
        sample = _weighed(forcefield, topology, bond * topology.eq_bond_length)
        if sample.weight >= prng.rand():
            return sample
    raise SamplingError(f"No bond length accepted for bond kind {topology.bond_kind!r} "
                        f"after {max_attempts} attempts")


def measure_old_bond(forcefield: ForceFieldParams, topology: LinkTopology, length: float) -> BondSample:
    """Energy and weight of the measured bond length of an existing conformation."""
    return _weighed(forcefield, topology, length)


class ChainBonds(NamedTuple):
    """Bond lengths along prevprev-prev-focus-atom; None where the chain stops."""
    prevprev_prev: Optional[float]
    prev_focus: Optional[float]
    focus_atom: float


def chain_bonds(mol: TrialMolecule, topology: LinkTopology, length: float) -> ChainBonds:
    """Measure the upstream bonds of the link and pair them with ``length``."""
    prev_focus = None
    prevprev_prev = None
    if topology.prev is not None:
        prev_focus = math.sqrt(mol.get_dist_sq(topology.prev, topology.focus))
        if topology.prevprev is not None:
            prevprev_prev = math.sqrt(mol.get_dist_sq(topology.prevprev, topology.prev))
    return ChainBonds(prevprev_prev, prev_focus, length)
