#!/usr/bin/env python3
"""
Short-Range Energy Evaluation

This module provides the pairwise energy evaluator consulted during link
growth: batch intermolecular and intramolecular (beyond 1-4) energies of a set
of trial positions, and the scalar 1-3 and 1-4 intramolecular energies implied
by a trial bond angle or dihedral.

Functional forms:
    - Lennard-Jones 12-6 with Lorentz-Berthelot mixing, truncated at the cutoff
    - Coulomb, damped by erfc(alpha * r) when an Ewald splitting parameter is
      given (the remainder is handled by the long-range evaluator)
    - 1-3 pairs scaled by ``scaling_13``; 1-4 pairs by ``scaling_14`` (LJ) and
      ``scaling_coulomb_14`` (Coulomb), undamped and without cutoff

Coincident atoms produce NaN energies (numpy floating-point semantics), never
an exception; callers decide how to treat them.

Classes:
    MoleculeCoordinates: Kinds and coordinates of the molecules in a box
    PairwiseEnergyCalculator: Lennard-Jones and real-space Coulomb evaluator
"""

from typing import List, Optional, Tuple

import numpy as np
from scipy.special import erfc

from .ForceField import ForceFieldParams
from .Geometry import BoxDimensions
from .MoleculeKind import MoleculeKind

# Coulomb constant in kcal Angstrom / (mol e^2)
COULOMB_CONSTANT = 332.0637133


class MoleculeCoordinates:
    """
    Kinds and coordinates of the molecules sharing a box.

    The index of an entry is the molecule index used by the evaluators to
    exclude a molecule's interaction with itself.
    """

    def __init__(self):
        self._entries: List[Tuple[MoleculeKind, np.ndarray]] = []

    def add(self, kind: MoleculeKind, coordinates: np.ndarray) -> int:
        """Add a molecule and return its index."""
        coordinates = np.array(coordinates, dtype=float).reshape(kind.num_atoms, 3)
        self._entries.append((kind, coordinates))
        return len(self._entries) - 1

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index: int) -> Tuple[MoleculeKind, np.ndarray]:
        return self._entries[index]

    def __iter__(self):
        return iter(self._entries)


class PairwiseEnergyCalculator:
    """
    Pairwise Lennard-Jones and real-space Coulomb energies.

    Parameters
    ----------
    forcefield : ForceFieldParams
        Supplies the 1-3 and 1-4 scaling factors
    molecules : MoleculeCoordinates
        Molecules in the box
    cutoff : float
        Nonbonded cutoff in Angstroms
    ewald_alpha : Optional[float]
        Ewald splitting parameter (1/Angstrom); None for plain Coulomb
    coulomb_constant : float
        Coulomb constant in the energy units of the force field
    """

    def __init__(self, forcefield: ForceFieldParams, molecules: MoleculeCoordinates,
                 cutoff: float = 10.0, ewald_alpha: Optional[float] = None,
                 coulomb_constant: float = COULOMB_CONSTANT):
        if cutoff <= 0.0:
            raise ValueError(f"cutoff must be positive, got {cutoff}")
        self.forcefield = forcefield
        self.molecules = molecules
        self.cutoff = float(cutoff)
        self.ewald_alpha = ewald_alpha
        self.coulomb_constant = coulomb_constant

    @staticmethod
    def _lennard_jones(r2: np.ndarray, sigma: np.ndarray, epsilon: np.ndarray) -> np.ndarray:
        with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
            s6 = (sigma * sigma / r2) ** 3
            return 4.0 * epsilon * (s6 * s6 - s6)

    def _coulomb(self, r2: np.ndarray, qq: np.ndarray, damped: bool) -> np.ndarray:
        with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
            r = np.sqrt(r2)
            if damped and self.ewald_alpha is not None:
                return self.coulomb_constant * qq * erfc(self.ewald_alpha * r) / r
            return self.coulomb_constant * qq / r

    def _mixed(self, kind: MoleculeKind, atom: int, other_kind: MoleculeKind,
               others: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        sigma = 0.5 * (kind.sigma[atom] + other_kind.sigma[others])
        epsilon = np.sqrt(kind.epsilon[atom] * other_kind.epsilon[others])
        qq = kind.charges[atom] * other_kind.charges[others]
        return sigma, epsilon, qq

    def _pair_energies(self, positions: np.ndarray, kind: MoleculeKind, atom: int,
                       other_kind: MoleculeKind, other_coords: np.ndarray,
                       others: np.ndarray, box: BoxDimensions) -> Tuple[np.ndarray, np.ndarray]:
        """LJ and real-space sums over ``others`` for every trial position."""
        sigma, epsilon, qq = self._mixed(kind, atom, other_kind, others)
        r2 = box.distance_sq(other_coords[others][np.newaxis, :, :], positions[:, np.newaxis, :])
        inside = r2 < self.cutoff * self.cutoff
        lj = np.where(inside, self._lennard_jones(r2, sigma, epsilon), 0.0)
        coulomb = np.where(inside, self._coulomb(r2, qq, damped=True), 0.0)
        return lj.sum(axis=1), coulomb.sum(axis=1)

    def particle_inter(self, positions: np.ndarray, kind: MoleculeKind, atom: int,
                       mol_index: Optional[int], box: BoxDimensions,
                       inter: np.ndarray, real: np.ndarray) -> None:
        """
        Intermolecular energy of each trial position.

        Parameters
        ----------
        positions : np.ndarray
            Trial positions (n_trials, 3), wrapped into the box
        kind : MoleculeKind
            Kind of the molecule being grown
        atom : int
            Index of the growing atom within its molecule
        mol_index : Optional[int]
            Index of the growing molecule in ``molecules`` (excluded); None
            when the molecule is not part of the box yet
        box : BoxDimensions
            Periodic box
        inter, real : np.ndarray
            Output buffers (n_trials,) for LJ and real-space Coulomb energies
        """
        n_trials = len(positions)
        inter[:n_trials] = 0.0
        real[:n_trials] = 0.0
        for index, (other_kind, other_coords) in enumerate(self.molecules):
            if index == mol_index:
                continue
            others = np.arange(other_kind.num_atoms)
            lj, coulomb = self._pair_energies(positions, kind, atom, other_kind,
                                              other_coords, others, box)
            inter[:n_trials] += lj
            real[:n_trials] += coulomb

    def particle_nonbonded(self, trial_mol, positions: np.ndarray, atom: int,
                           box: BoxDimensions, nonbonded: np.ndarray) -> None:
        """
        Intramolecular energy beyond 1-4 of each trial position.

        Only atoms already existing in ``trial_mol`` and separated from
        ``atom`` by four or more bonds contribute.

        Parameters
        ----------
        trial_mol : TrialMolecule
            Molecule being grown or retraced
        positions : np.ndarray
            Trial positions (n_trials, 3)
        atom : int
            Growing atom
        box : BoxDimensions
            Periodic box
        nonbonded : np.ndarray
            Output buffer (n_trials,)
        """
        n_trials = len(positions)
        kind = trial_mol.kind
        partners = np.array([i for i in kind.atoms_beyond_1_4(atom) if trial_mol.atom_exists(i)],
                            dtype=int)
        if len(partners) == 0:
            nonbonded[:n_trials] = 0.0
            return
        lj, coulomb = self._pair_energies(positions, kind, atom, kind,
                                          trial_mol.coordinates, partners, box)
        nonbonded[:n_trials] = lj + coulomb

    def _scaled_pair(self, dist_sq: float, kind: MoleculeKind, a: int, b: int,
                     lj_scale: float, coulomb_scale: float) -> float:
        r2 = np.float64(dist_sq)
        sigma = 0.5 * (kind.sigma[a] + kind.sigma[b])
        epsilon = np.sqrt(kind.epsilon[a] * kind.epsilon[b])
        qq = kind.charges[a] * kind.charges[b]
        energy = lj_scale * self._lennard_jones(r2, sigma, epsilon)
        if coulomb_scale != 0.0 and qq != 0.0:
            energy = energy + coulomb_scale * self._coulomb(r2, qq, damped=False)
        return float(energy)

    def intra_energy_1_3(self, dist_sq: float, a: int, b: int, kind: MoleculeKind) -> float:
        """Scaled nonbonded energy of a 1-3 pair at squared distance ``dist_sq``."""
        scale = self.forcefield.scaling_13
        if scale == 0.0:
            return 0.0
        return self._scaled_pair(dist_sq, kind, a, b, scale, scale)

    def intra_energy_1_4(self, dist_sq: float, a: int, b: int, kind: MoleculeKind) -> float:
        """Scaled nonbonded energy of a 1-4 pair at squared distance ``dist_sq``."""
        lj_scale = self.forcefield.scaling_14
        coulomb_scale = self.forcefield.scaling_coulomb_14
        if lj_scale == 0.0 and coulomb_scale == 0.0:
            return 0.0
        return self._scaled_pair(dist_sq, kind, a, b, lj_scale, coulomb_scale)
