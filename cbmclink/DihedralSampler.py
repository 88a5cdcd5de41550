#!/usr/bin/env python3
"""
Dihedral Trials and Candidate Placements

Every candidate placement of the growing atom gets its own set of dihedral
trials prevprev-prev-focus-atom. A trial is weighed by the Boltzmann factor of
its torsion energy plus the 1-4 nonbonded energy of the prevprev-atom pair; the
pair distance follows from the internal coordinates of the chain. One dihedral
is picked per placement and converted, together with the bond length and bond
angle, into a Cartesian position in the growth frame of the molecule.

Chain termini:
    - No dihedral term: phi is drawn uniformly once per placement in the frame
      built on a virtual reference point; the placement weight is 1.
    - No angle term: the direction is drawn uniformly on the sphere; the
      placement weight is 1.

Classes:
    DihedralTrials: Summary of one set of dihedral trials
    Placement: One candidate position with its bonded energies and weight
    DihedralSampler: Generates placements for new and existing conformations
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .AngleSampler import clamp_nan
from .BondSampler import ChainBonds
from .ForceField import boltzmann_factor
from .Geometry import dihedral_dist_sq
from .LinkTopology import LinkTopology
from .TrialMolecule import TrialMolecule
from .TrialWorkspace import TrialWorkspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DihedralTrials:
    """
    Dihedral trials of one placement, stored in the workspace buffers.

    Attributes
    ----------
    count : int
        Number of filled entries
    weight : float
        Sum of the Boltzmann factors of the trials
    """
    count: int
    weight: float


@dataclass(frozen=True)
class Placement:
    """
    One candidate position of the growing atom.

    Attributes
    ----------
    position : np.ndarray
        Unwrapped Cartesian position (3,)
    phi : Optional[float]
        Dihedral of the position in the growth frame; None without an angle term
    torsion : float
        Dihedral energy of ``phi``
    one_four : float
        1-4 nonbonded energy of the prevprev-atom pair
    weight : float
        Sum of the Boltzmann factors of the dihedral trials
    """
    position: np.ndarray
    phi: Optional[float]
    torsion: float
    one_four: float
    weight: float


class DihedralSampler:
    """
    Placement generator of one link.

    The growth frame of the molecule must be aligned on the link (see
    ``TrialMolecule.set_basis``) before any placement is generated.

    Parameters
    ----------
    workspace : TrialWorkspace
        Arena holding the dihedral buffers, the force field and the evaluators
    topology : LinkTopology
        Resolved link
    """

    def __init__(self, workspace: TrialWorkspace, topology: LinkTopology):
        self.workspace = workspace
        self.topology = topology

    def _one_four(self, mol: TrialMolecule, dist_sq: float) -> float:
        topo = self.topology
        return clamp_nan(self.workspace.calc.intra_energy_1_4(dist_sq, topo.prevprev, topo.atom, mol.kind))

    def _upstream_angle(self, mol: TrialMolecule) -> float:
        topo = self.topology
        return mol.get_theta(topo.prevprev, topo.prev, topo.focus)

    def generate(self, mol: TrialMolecule, bonds: ChainBonds, theta: float,
                 count: Optional[int] = None) -> DihedralTrials:
        """
        Draw dihedral trials into the workspace buffers.

        Parameters
        ----------
        mol : TrialMolecule
            Molecule being grown or retraced
        bonds : ChainBonds
            Bond lengths along the chain
        theta : float
            Angle prev-focus-atom of this step
        count : Optional[int]
            Number of trials; defaults to ``n_dih_trials``

        Returns
        -------
        DihedralTrials
        """
        ws = self.workspace
        ff = ws.forcefield
        if count is None:
            count = ws.settings.n_dih_trials
        theta1 = self._upstream_angle(mol)
        for trial in range(count):
            phi = ws.prng.rand(2.0 * math.pi)
            ws.dihedrals[trial] = phi
            ws.dihedral_energy[trial] = ff.dihedral_energy(self.topology.dihedral_kind, phi)
            dist_sq = dihedral_dist_sq(bonds.prevprev_prev, bonds.prev_focus, bonds.focus_atom,
                                       theta1, theta, phi)
            ws.nonbonded_1_4[trial] = self._one_four(mol, dist_sq)
            ws.dihedral_weights[trial] = boltzmann_factor(ws.beta, ws.dihedral_energy[trial]
                                                          + ws.nonbonded_1_4[trial])
        return DihedralTrials(count=count, weight=float(ws.dihedral_weights[:count].sum()))

    def _free_direction(self, mol: TrialMolecule, bonds: ChainBonds) -> Placement:
        # No angle term: isotropic direction around the focus atom
        origin = mol.atom_position(self.topology.focus)
        position = origin + bonds.focus_atom * self.workspace.prng.unit_vector()
        return Placement(position=position, phi=None, torsion=0.0, one_four=0.0, weight=1.0)

    def place(self, mol: TrialMolecule, bonds: ChainBonds, theta: float) -> Placement:
        """
        Generate one candidate placement.

        Parameters
        ----------
        mol : TrialMolecule
            Molecule being grown or retraced, with its growth frame aligned
        bonds : ChainBonds
            Bond lengths along the chain
        theta : float
            Angle prev-focus-atom of this step

        Returns
        -------
        Placement
        """
        topo = self.topology
        ws = self.workspace
        if not topo.has_angle:
            return self._free_direction(mol, bonds)
        if not topo.has_dihedral:
            phi = ws.prng.rand(2.0 * math.pi)
            return Placement(position=mol.get_rect_coords(bonds.focus_atom, theta, phi),
                             phi=phi, torsion=0.0, one_four=0.0, weight=1.0)

        trials = self.generate(mol, bonds, theta)
        winner = ws.prng.pick_weighted(ws.dihedral_weights, trials.count, trials.weight)
        phi = float(ws.dihedrals[winner])
        return Placement(position=mol.get_rect_coords(bonds.focus_atom, theta, phi),
                         phi=phi,
                         torsion=float(ws.dihedral_energy[winner]),
                         one_four=float(ws.nonbonded_1_4[winner]),
                         weight=trials.weight)

    def place_existing(self, mol: TrialMolecule, bonds: ChainBonds,
                       theta: float, phi: float) -> Placement:
        """
        Placement of an existing atom at its measured dihedral.

        The weight sums the Boltzmann factor of the measured dihedral and of
        ``n_dih_trials - 1`` random dihedrals, all at the measured angle.

        Parameters
        ----------
        mol : TrialMolecule
            Molecule being retraced, with its growth frame aligned
        bonds : ChainBonds
            Measured bond lengths along the chain
        theta : float
            Measured angle prev-focus-atom
        phi : float
            Measured dihedral in the growth frame
        """
        topo = self.topology
        ws = self.workspace
        position = mol.atom_position(topo.atom)
        if not topo.has_angle:
            return Placement(position=position, phi=None, torsion=0.0, one_four=0.0, weight=1.0)
        if not topo.has_dihedral:
            return Placement(position=position, phi=phi, torsion=0.0, one_four=0.0, weight=1.0)

        torsion = ws.forcefield.dihedral_energy(topo.dihedral_kind, phi)
        one_four = self._one_four(mol, mol.get_dist_sq(topo.prevprev, topo.atom))
        weight = float(boltzmann_factor(ws.beta, torsion + one_four))
        trials = self.generate(mol, bonds, theta, count=ws.settings.n_dih_trials - 1)
        logger.debug(f"place_existing: atom {topo.atom} measured phi {phi:.6g}, "
                     f"own weight {weight:.6g}, trial weight {trials.weight:.6g}")
        return Placement(position=position, phi=phi, torsion=torsion, one_four=one_four,
                         weight=weight + trials.weight)
