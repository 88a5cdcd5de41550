#!/usr/bin/env python3
"""
Force Field Parameters

This module provides the immutable parameter tables used by the link growth
operator: bonded functional forms (bond stretch, angle bend, dihedral torsion),
the scaling of intramolecular 1-3 and 1-4 nonbonded pairs, and the inverse
thermal energy ``beta``.

Conventions:
    - Lengths in Angstroms
    - Angles in radians
    - Energies in kcal/mol, so ``beta`` is in mol/kcal
    - Bond energy:     k * (r - r0)^2
    - Angle energy:    k * (theta - theta0)^2
    - Dihedral energy: sum_i k_i * (1 + cos(n_i * phi - delta_i))

Classes:
    BondParameters: Harmonic bond stretch parameters
    AngleParameters: Harmonic angle bend parameters
    DihedralParameters: Fourier series torsion parameters
    ForceFieldParams: Read-only container of all the above plus beta

Functions:
    boltzmann_factor: exp(-beta * E) with a capped exponent
"""

import math
from types import MappingProxyType
from typing import Dict, Hashable, Mapping, NamedTuple, Tuple, Union

import numpy as np
import openmm.unit as unit

# Largest exponent of a Boltzmann factor. A link multiplies three stage
# weights, each a sum of at most a few hundred capped factors, so the product
# stays well inside the float range.
MAX_EXPONENT = 100.0


def boltzmann_factor(beta: float, energy: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """
    Boltzmann factor ``exp(-beta * energy)`` with the exponent capped at ``MAX_EXPONENT``.

    Strongly attractive energies give a large finite weight instead of an
    overflow. Repulsive energies, including ``inf``, underflow to 0.

    Parameters
    ----------
    beta : float
        Inverse thermal energy (mol/kcal)
    energy : float or np.ndarray
        Energy in kcal/mol; NaN propagates

    Returns
    -------
    float or np.ndarray
        Same shape as ``energy``
    """
    return np.exp(np.minimum(-beta * np.asarray(energy, dtype=float), MAX_EXPONENT))


class BondParameters(NamedTuple):
    """Harmonic bond: force constant, equilibrium length, rigid flag."""
    k: float
    length: float
    fixed: bool = False


class AngleParameters(NamedTuple):
    """Harmonic angle: force constant, equilibrium angle (radians), rigid flag."""
    k: float
    theta: float
    fixed: bool = False


class DihedralParameters(NamedTuple):
    """Fourier torsion made of (k, n, delta) terms."""
    terms: Tuple[Tuple[float, int, float], ...] = ()


class ForceFieldParams:
    """
    Read-only force field tables shared by every link.

    Instances are constructed once at simulation start and passed by reference
    to every component that needs them. The tables are exposed through
    read-only mappings; nothing in the package mutates them.

    Attributes
    ----------
    bonds : Mapping[Hashable, BondParameters]
        Bond parameters by bond kind
    angles : Mapping[Hashable, AngleParameters]
        Angle parameters by angle kind
    dihedrals : Mapping[Hashable, DihedralParameters]
        Dihedral parameters by dihedral kind
    beta : float
        Inverse thermal energy in mol/kcal
    scaling_13 : float
        Scaling of Lennard-Jones and Coulomb 1-3 interactions (0 excludes them)
    scaling_14 : float
        Scaling of Lennard-Jones 1-4 interactions
    scaling_coulomb_14 : float
        Scaling of Coulomb 1-4 interactions
    """

    def __init__(self, bonds: Dict[Hashable, BondParameters],
                 angles: Dict[Hashable, AngleParameters],
                 dihedrals: Dict[Hashable, DihedralParameters],
                 beta: float,
                 scaling_13: float = 0.0,
                 scaling_14: float = 0.5,
                 scaling_coulomb_14: float = 0.5):
        if not beta > 0.0 or not math.isfinite(beta):
            raise ValueError(f"beta must be a positive finite number, got {beta}")
        self._bonds = MappingProxyType(dict(bonds))
        self._angles = MappingProxyType(dict(angles))
        self._dihedrals = MappingProxyType(dict(dihedrals))
        self._beta = float(beta)
        self._scaling_13 = float(scaling_13)
        self._scaling_14 = float(scaling_14)
        self._scaling_coulomb_14 = float(scaling_coulomb_14)

    @classmethod
    def from_temperature(cls, temperature: float,
                         bonds: Dict[Hashable, BondParameters],
                         angles: Dict[Hashable, AngleParameters],
                         dihedrals: Dict[Hashable, DihedralParameters],
                         **kwargs) -> 'ForceFieldParams':
        """
        Create force field tables with beta derived from a temperature.

        Parameters
        ----------
        temperature : float or openmm.unit.Quantity
            Temperature, in Kelvin when given as a plain number
        bonds, angles, dihedrals : dict
            Parameter tables keyed by kind
        **kwargs
            Nonbonded scaling factors forwarded to the constructor

        Returns
        -------
        ForceFieldParams
            Tables with ``beta = 1 / (kB * T)`` in mol/kcal
        """
        if not unit.is_quantity(temperature):
            temperature = temperature * unit.kelvin
        kT = unit.BOLTZMANN_CONSTANT_kB * unit.AVOGADRO_CONSTANT_NA * temperature
        beta = 1.0 / kT.value_in_unit(unit.kilocalories_per_mole)
        return cls(bonds, angles, dihedrals, beta, **kwargs)

    @property
    def beta(self) -> float:
        return self._beta

    @property
    def scaling_13(self) -> float:
        return self._scaling_13

    @property
    def scaling_14(self) -> float:
        return self._scaling_14

    @property
    def scaling_coulomb_14(self) -> float:
        return self._scaling_coulomb_14

    @property
    def bonds(self) -> Mapping[Hashable, BondParameters]:
        return self._bonds

    @property
    def angles(self) -> Mapping[Hashable, AngleParameters]:
        return self._angles

    @property
    def dihedrals(self) -> Mapping[Hashable, DihedralParameters]:
        return self._dihedrals

    def __repr__(self) -> str:
        return (f"ForceFieldParams(n_bonds={len(self._bonds)}, n_angles={len(self._angles)}, "
                f"n_dihedrals={len(self._dihedrals)}, beta={self._beta:.6g})")

    # Bond stretch

    def bond_energy(self, kind: Hashable, length: float) -> float:
        """Energy of a bond of the given kind stretched to ``length``."""
        params = self._bonds[kind]
        return params.k * (length - params.length) ** 2

    def bond_length(self, kind: Hashable) -> float:
        return self._bonds[kind].length

    def bond_fixed(self, kind: Hashable) -> bool:
        return self._bonds[kind].fixed

    # Angle bend

    def angle_energy(self, kind: Hashable, theta: float) -> float:
        """Energy of an angle of the given kind bent to ``theta`` (radians)."""
        params = self._angles[kind]
        if params.fixed:
            return 0.0
        return params.k * (theta - params.theta) ** 2

    def angle(self, kind: Hashable) -> float:
        return self._angles[kind].theta

    def angle_fixed(self, kind: Hashable) -> bool:
        return self._angles[kind].fixed

    # Dihedral torsion

    def dihedral_energy(self, kind: Hashable, phi: float) -> float:
        """Energy of a dihedral of the given kind at torsion ``phi`` (radians)."""
        energy = 0.0
        for k, n, delta in self._dihedrals[kind].terms:
            energy += k * (1.0 + math.cos(n * phi - delta))
        return energy


def canonical_kind(*atom_types: str) -> Tuple[str, ...]:
    """
    Return the orientation-independent kind key for a bonded term.

    A bonded term read forwards or backwards is the same term, so the key is
    the lexicographically smaller of the two orientations.

    Parameters
    ----------
    *atom_types : str
        Atom types along the bonded term

    Returns
    -------
    Tuple[str, ...]
        Canonical kind key
    """
    forward = tuple(atom_types)
    backward = tuple(reversed(forward))
    return min(forward, backward)