#!/usr/bin/env python3
"""
Trial Molecule State

This module provides the state of a molecule while it is grown (new
conformation) or retraced (old conformation) atom by atom, together with the
energy record accumulated along the way.

A new molecule starts with no atoms placed; ``add_atom`` places them as the
growth proceeds. An old molecule knows every coordinate from the start, but
only the atoms listed as existing take part in energy sums until
``confirm_old_atom`` marks the retraced ones.

Classes:
    Energy: Energy decomposition of a molecule or of one growth step
    TrialMolecule: Coordinates, existence mask, growth frame, running weight
"""

from dataclasses import dataclass, fields
from typing import Iterable, Optional, Tuple

import numpy as np

from .Geometry import (
    BoxDimensions,
    calc_angle,
    cartesian_to_internal,
    growth_basis,
    internal_to_cartesian,
    virtual_reference,
)
from .MoleculeKind import MoleculeKind


@dataclass(frozen=True)
class Energy:
    """
    Energy decomposition (kcal/mol).

    Attributes
    ----------
    intra_bond : float
        Bond, angle and dihedral energy
    intra_nonbond : float
        Intramolecular nonbonded energy (1-3, 1-4 and beyond)
    inter : float
        Intermolecular Lennard-Jones energy
    real : float
        Real-space electrostatic energy
    recip : float
        Reciprocal-space electrostatic energy
    self_energy : float
        Ewald self energy
    correction : float
        Ewald intramolecular exclusion correction
    """
    intra_bond: float = 0.0
    intra_nonbond: float = 0.0
    inter: float = 0.0
    real: float = 0.0
    recip: float = 0.0
    self_energy: float = 0.0
    correction: float = 0.0

    def __add__(self, other: 'Energy') -> 'Energy':
        if not isinstance(other, Energy):
            return NotImplemented
        return Energy(*(getattr(self, f.name) + getattr(other, f.name) for f in fields(self)))

    @property
    def total(self) -> float:
        return sum(getattr(self, f.name) for f in fields(self))

    def as_tuple(self) -> Tuple[float, ...]:
        return tuple(getattr(self, f.name) for f in fields(self))


class TrialMolecule:
    """
    A molecule being grown or retraced.

    Attributes
    ----------
    kind : MoleculeKind
        Connectivity and parameters of the molecule
    box : BoxDimensions
        Periodic box holding the molecule
    coordinates : np.ndarray
        Nx3 coordinates; meaningful only for existing atoms of a new molecule
    weight : float
        Running Rosenbluth weight
    energy : Energy
        Running energy decomposition
    """

    def __init__(self, kind: MoleculeKind, box: BoxDimensions,
                 coordinates: Optional[np.ndarray] = None,
                 existing: Optional[Iterable[int]] = None):
        self.kind = kind
        self.box = box
        if coordinates is None:
            self.coordinates = np.zeros((kind.num_atoms, 3))
        else:
            self.coordinates = np.array(coordinates, dtype=float).reshape(kind.num_atoms, 3)
        self._exists = np.zeros(kind.num_atoms, dtype=bool)
        if existing is not None:
            self._exists[list(existing)] = True
        self.weight = 1.0
        self.energy = Energy()
        self._origin: Optional[np.ndarray] = None
        self._basis: Optional[np.ndarray] = None

    def __repr__(self) -> str:
        return (f"TrialMolecule(kind={self.kind.name!r}, n_existing={int(self._exists.sum())}/"
                f"{self.kind.num_atoms}, weight={self.weight:.6g})")

    @classmethod
    def new(cls, kind: MoleculeKind, box: BoxDimensions) -> 'TrialMolecule':
        """Empty molecule to be grown."""
        return cls(kind, box)

    @classmethod
    def old(cls, kind: MoleculeKind, box: BoxDimensions, coordinates: np.ndarray,
            existing: Iterable[int] = ()) -> 'TrialMolecule':
        """Existing conformation to be retraced, with ``existing`` atoms already confirmed."""
        return cls(kind, box, coordinates, existing)

    # Atom state

    def atom_exists(self, atom: int) -> bool:
        return bool(self._exists[atom])

    def existing_atoms(self) -> np.ndarray:
        return np.flatnonzero(self._exists)

    def atom_position(self, atom: int) -> np.ndarray:
        return self.coordinates[atom].copy()

    def add_atom(self, atom: int, position: np.ndarray) -> None:
        """Place a newly grown atom."""
        self.coordinates[atom] = position
        self._exists[atom] = True

    def confirm_old_atom(self, atom: int) -> None:
        """Mark a retraced atom as part of the molecule."""
        self._exists[atom] = True

    def mult_weight(self, factor: float) -> None:
        self.weight *= factor

    def add_energy(self, energy: Energy) -> None:
        self.energy = self.energy + energy

    # Geometry

    def unwrapped(self, atom: int, reference: np.ndarray) -> np.ndarray:
        """Position of ``atom`` as the image closest to ``reference``."""
        return reference + self.box.min_image(self.coordinates[atom] - reference)

    def get_dist_sq(self, a: int, b: int) -> float:
        return float(self.box.distance_sq(self.coordinates[a], self.coordinates[b]))

    def get_theta(self, a: int, b: int, c: int) -> float:
        """Angle a-b-c in radians."""
        center = self.coordinates[b]
        return calc_angle(self.unwrapped(a, center), center, self.unwrapped(c, center))

    def set_basis(self, focus: int, prev: int, prevprev: Optional[int] = None) -> None:
        """
        Anchor the growth frame at ``focus``.

        Without ``prevprev`` the frame uses a deterministic virtual reference,
        so the dihedral of a chain with two upstream atoms is still well
        defined for both growing and retracing.
        """
        origin = self.coordinates[focus].copy()
        prev_pos = self.unwrapped(prev, origin)
        if prevprev is None:
            prevprev_pos = virtual_reference(origin, prev_pos)
        else:
            prevprev_pos = self.unwrapped(prevprev, origin)
        self._origin = origin
        self._basis = growth_basis(origin, prev_pos, prevprev_pos)

    def _require_basis(self) -> None:
        if self._basis is None:
            raise RuntimeError("Growth frame not set; call set_basis first")

    def get_rect_coords(self, bond: float, theta: float, phi: float) -> np.ndarray:
        """Unwrapped Cartesian position from internal coordinates in the current frame."""
        self._require_basis()
        return internal_to_cartesian(self._origin, self._basis, bond, theta, phi)

    def old_theta_and_phi(self, atom: int) -> Tuple[float, float]:
        """Measured (theta, phi) of an existing atom in the current frame."""
        self._require_basis()
        _, theta, phi = cartesian_to_internal(self._origin, self._basis,
                                              self.unwrapped(atom, self._origin))
        return theta, phi
