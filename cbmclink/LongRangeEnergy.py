#!/usr/bin/env python3
"""
Long-Range (Ewald) Energy Terms

This module provides the Ewald terms that change when a single charged atom
is inserted into, or removed from, a molecule:

    - Self energy:  -k * q_a^2 * alpha / sqrt(pi)
    - Correction:   -k * q_a * sum_i q_i * erf(alpha * r_ai) / r_ai over the
                    atoms i of the same molecule already present

The reciprocal-space sum is not evaluated here; the link growth operator only
needs the per-atom terms above.

Classes:
    EwaldCalculator: Batch self and correction energies for trial positions
"""

import math

import numpy as np
from scipy.special import erf

from .Geometry import BoxDimensions
from .MoleculeKind import MoleculeKind
from .ShortRangeEnergy import COULOMB_CONSTANT


class EwaldCalculator:
    """
    Ewald self and intramolecular correction energies.

    Parameters
    ----------
    alpha : float
        Ewald splitting parameter (1/Angstrom)
    coulomb_constant : float
        Coulomb constant in the energy units of the force field
    """

    def __init__(self, alpha: float, coulomb_constant: float = COULOMB_CONSTANT):
        if alpha <= 0.0:
            raise ValueError(f"Ewald alpha must be positive, got {alpha}")
        self.alpha = float(alpha)
        self.coulomb_constant = coulomb_constant

    def __repr__(self) -> str:
        return f"EwaldCalculator(alpha={self.alpha})"

    def swap_self(self, kind: MoleculeKind, atom: int, self_energy: np.ndarray) -> None:
        """
        Self energy of the growing atom, identical for every trial.

        Parameters
        ----------
        kind : MoleculeKind
            Kind of the molecule being grown
        atom : int
            Growing atom
        self_energy : np.ndarray
            Output buffer, filled entirely
        """
        charge = kind.charges[atom]
        self_energy[:] = -self.coulomb_constant * charge * charge * self.alpha / math.sqrt(math.pi)

    def _correction(self, kind: MoleculeKind, atom: int, partners: np.ndarray,
                    r2: np.ndarray) -> np.ndarray:
        qq = kind.charges[atom] * kind.charges[partners]
        r = np.sqrt(r2)
        with np.errstate(divide='ignore', invalid='ignore'):
            return -self.coulomb_constant * np.sum(qq * erf(self.alpha * r) / r, axis=-1)

    def _partners(self, trial_mol, atom: int) -> np.ndarray:
        return np.array([i for i in trial_mol.existing_atoms() if i != atom], dtype=int)

    def swap_correction(self, trial_mol, positions: np.ndarray, atom: int,
                        box: BoxDimensions, correction: np.ndarray) -> None:
        """
        Correction energy of each trial position against the existing atoms.

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
        correction : np.ndarray
            Output buffer (n_trials,)
        """
        n_trials = len(positions)
        partners = self._partners(trial_mol, atom)
        if len(partners) == 0:
            correction[:n_trials] = 0.0
            return
        r2 = box.distance_sq(trial_mol.coordinates[partners][np.newaxis, :, :],
                             positions[:, np.newaxis, :])
        correction[:n_trials] = self._correction(trial_mol.kind, atom, partners, r2)

    def correction_old_molecule(self, trial_mol, atom: int) -> float:
        """Correction energy of an existing atom at its current position."""
        partners = self._partners(trial_mol, atom)
        if len(partners) == 0:
            return 0.0
        r2 = np.array([trial_mol.get_dist_sq(i, atom) for i in partners])
        return float(self._correction(trial_mol.kind, atom, partners, r2))
