#!/usr/bin/env python3
"""
Nonbonded Reweighting of Candidate Placements

Scales the weight of each candidate placement by the Boltzmann factor of its
nonbonded energy: intermolecular Lennard-Jones, real-space electrostatics,
intramolecular interactions beyond 1-4, and the Ewald self and correction
terms. The energy kinds are independent of one another and are evaluated as
separate tasks; the workspace runs them in order or on its thread pool.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .AngleSampler import BIGNUM
from .ForceField import boltzmann_factor
from .LinkTopology import LinkTopology
from .TrialMolecule import TrialMolecule
from .TrialWorkspace import TrialWorkspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NonbondedTerms:
    """Nonbonded energy decomposition of one placement (kcal/mol)."""
    inter: float
    real: float
    nonbonded: float
    self_energy: float
    correction: float

    @property
    def total(self) -> float:
        return self.inter + self.real + self.nonbonded + self.self_energy + self.correction


class NonbondedReweighter:
    """
    Nonbonded stage of one link.

    Works on the first ``count`` rows of the workspace placement buffers
    (``positions``, ``lj_weights`` and the per-kind energy arrays).

    Parameters
    ----------
    workspace : TrialWorkspace
        Arena holding the placement buffers and the evaluators
    topology : LinkTopology
        Resolved link
    """

    def __init__(self, workspace: TrialWorkspace, topology: LinkTopology):
        self.workspace = workspace
        self.topology = topology

    def evaluate(self, mol: TrialMolecule, mol_index: Optional[int], count: int) -> None:
        """
        Wrap the candidate positions into the box and fill the energy buffers.

        Parameters
        ----------
        mol : TrialMolecule
            Molecule being grown or retraced
        mol_index : Optional[int]
            Index of the molecule among the evaluator's molecules (excluded
            from the intermolecular sum); None if it is not in the box
        count : int
            Number of candidate placements
        """
        ws = self.workspace
        atom = self.topology.atom
        box = mol.box
        positions = ws.positions[:count]
        box.wrap(positions)

        def inter_and_real():
            ws.calc.particle_inter(positions, mol.kind, atom, mol_index, box, ws.inter, ws.real)

        def nonbonded():
            ws.calc.particle_nonbonded(mol, positions, atom, box, ws.nonbonded)

        def self_energy():
            if ws.ewald is None:
                ws.self_energy[:count] = 0.0
            else:
                ws.ewald.swap_self(mol.kind, atom, ws.self_energy[:count])

        def correction():
            if ws.ewald is None:
                ws.correction[:count] = 0.0
            else:
                ws.ewald.swap_correction(mol, positions, atom, box, ws.correction)

        ws.run_tasks([inter_and_real, nonbonded, self_energy, correction])

    def recompute_old_correction(self, mol: TrialMolecule) -> None:
        """Correction energy of placement 0 taken from the existing conformation."""
        ws = self.workspace
        if ws.ewald is not None:
            ws.correction[0] = ws.ewald.correction_old_molecule(mol, self.topology.atom)

    def reweight(self, count: int) -> float:
        """
        Multiply each placement weight by its nonbonded Boltzmann factor.

        Returns
        -------
        float
            Sum of the updated weights
        """
        ws = self.workspace
        energy = (ws.inter[:count] + ws.real[:count] + ws.nonbonded[:count]
                  + ws.self_energy[:count] + ws.correction[:count])
        energy = np.where(np.isnan(energy), BIGNUM, energy)
        ws.lj_weights[:count] *= boltzmann_factor(ws.beta, energy)
        total = float(ws.lj_weights[:count].sum())
        if not math.isfinite(total):
            logger.debug(f"reweight: non-finite batch weight {total} for atom {self.topology.atom}")
        return total

    def terms(self, index: int) -> NonbondedTerms:
        ws = self.workspace
        return NonbondedTerms(inter=float(ws.inter[index]),
                              real=float(ws.real[index]),
                              nonbonded=float(ws.nonbonded[index]),
                              self_energy=float(ws.self_energy[index]),
                              correction=float(ws.correction[index]))

    def select(self, count: int, total: float) -> int:
        """Weighted choice of the winning placement."""
        ws = self.workspace
        return ws.prng.pick_weighted(ws.lj_weights, count, total)
