#!/usr/bin/env python3
"""
Link Growth Operator

This module provides DCLink, the configurational-bias step that places one
atom bonded to an already placed focus atom. The step runs the same stages in
both directions of a Monte Carlo move:

    1. Bond length: sampled (new) or measured (old)
    2. Bond angle: trials weighed by bending and 1-3 energies
    3. Placements: per placement, dihedral trials weighed by torsion and 1-4
       energies, converted into Cartesian candidates
    4. Nonbonded reweighting of the candidates

Growing a new conformation picks a candidate at every stage. Retracing an
existing conformation draws the same number of trials but puts the measured
geometry in place of the chosen one, so the Rosenbluth weights of both
directions are comparable in the acceptance rule of the enclosing move.

The weight applied to the molecule is the product of the bond weight, the
summed angle weights and the summed reweighted placement weights; the energy
added to the molecule is the decomposition of the chosen (or measured)
configuration.

Classes:
    LinkState: Stage reached by a DCLink
    LinkResult: Outcome of one growth or retrace step
    DCLink: The link growth operator
"""

import enum
import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .AngleSampler import AngleSample, AngleSampler
from .BondSampler import BondSample, ChainBonds, chain_bonds, measure_old_bond, sample_new_bond
from .DihedralSampler import DihedralSampler, Placement
from .LinkTopology import LinkTopology, resolve_link
from .MoleculeKind import MoleculeKind
from .NonbondedReweighter import NonbondedReweighter
from .TrialMolecule import Energy, TrialMolecule
from .TrialWorkspace import TrialWorkspace

logger = logging.getLogger(__name__)


class LinkState(enum.Enum):
    """Stage reached by the current evaluation of a DCLink."""
    UNINITIALIZED = 0
    TOPOLOGY_RESOLVED = 1
    BOND_SET = 2
    ANGLE_SET = 3
    PLACEMENTS_GENERATED = 4
    NONBONDED_EVALUATED = 5
    FINALIZED = 6


@dataclass(frozen=True)
class LinkResult:
    """
    Outcome of one growth or retrace step.

    Attributes
    ----------
    bond_length : float
        Focus-atom bond length
    theta : Optional[float]
        Angle prev-focus-atom (radians); None without an angle term
    phi : Optional[float]
        Dihedral in the growth frame (radians); None without an angle term
    position : np.ndarray
        Position of the atom, wrapped into the box
    energy : Energy
        Energy added to the molecule
    bond_weight : float
        Boltzmann factor of the bond length
    bend_weight : float
        Sum of the Boltzmann factors of the angle trials
    nonbonded_weight : float
        Sum of the reweighted placement weights
    weight : float
        Factor applied to the molecule weight
    winner : int
        Index of the chosen placement (0 when retracing)
    """
    bond_length: float
    theta: Optional[float]
    phi: Optional[float]
    position: np.ndarray
    energy: Energy
    bond_weight: float
    bend_weight: float
    nonbonded_weight: float
    weight: float
    winner: int


class DCLink:
    """
    Grows or retraces one atom bonded to a focus atom.

    A DCLink is built once per link of a molecule kind and reused for every
    move. Its per-evaluation state lives in the workspace buffers and in the
    stage records kept between ``prepare_*`` and ``build_*``, so a DCLink
    serves one evaluation at a time.

    Parameters
    ----------
    workspace : TrialWorkspace
        Arena shared by the links of a simulation
    topology : LinkTopology
        Resolved link

    Examples
    --------
    >>> link = DCLink.from_molecule_kind(workspace, kind, atom=2, focus=1)
    >>> result = link.grow_new(new_mol, mol_index=None)
    >>> result.weight > 0.0
    True
    """

    def __init__(self, workspace: TrialWorkspace, topology: LinkTopology):
        self.workspace = workspace
        self.topology = topology
        self.angle_sampler = AngleSampler(workspace, topology)
        self.dihedral_sampler = DihedralSampler(workspace, topology)
        self.reweighter = NonbondedReweighter(workspace, topology)

        self.state = LinkState.TOPOLOGY_RESOLVED
        self._direction: Optional[str] = None
        self._bond: Optional[BondSample] = None
        self._bonds: Optional[ChainBonds] = None
        self._angle: Optional[AngleSample] = None
        self._old_bend_weight = 0.0

    @classmethod
    def from_molecule_kind(cls, workspace: TrialWorkspace, kind: MoleculeKind,
                           atom: int, focus: int) -> 'DCLink':
        """
        Resolve the link ``focus -> atom`` of ``kind`` and build the operator.

        Raises
        ------
        MalformedTopologyError
            If ``atom`` is not bonded to ``focus`` or a force-field term is missing
        """
        topology = resolve_link(kind, workspace.forcefield, atom, focus).unwrap()
        logger.debug(f"from_molecule_kind: {kind.name} link {focus}->{atom}, prev={topology.prev}, "
                     f"prevprev={topology.prevprev}")
        return cls(workspace, topology)

    def __repr__(self) -> str:
        topo = self.topology
        return f"DCLink(atom={topo.atom}, focus={topo.focus}, state={self.state.name})"

    # =========================================================================
    # New conformation
    # =========================================================================

    def prepare_new(self, mol: TrialMolecule, mol_index: Optional[int] = None) -> None:
        """Sample the bond length and the bond angle of a new conformation."""
        topo = self.topology
        ws = self.workspace
        self.state = LinkState.TOPOLOGY_RESOLVED
        self._direction = None
        self._bond = sample_new_bond(ws.forcefield, topo, ws.prng)
        self._bonds = chain_bonds(mol, topo, self._bond.length)
        self.state = LinkState.BOND_SET
        self._angle = self.angle_sampler.sample_new(mol, self._bonds.prev_focus, self._bond.length)
        self.state = LinkState.ANGLE_SET
        self._direction = 'new'

    def build_new(self, mol: TrialMolecule, mol_index: Optional[int] = None) -> LinkResult:
        """
        Generate the candidate placements, pick one and add the atom to ``mol``.

        Parameters
        ----------
        mol : TrialMolecule
            Molecule being grown
        mol_index : Optional[int]
            Index of the molecule among the evaluator's molecules

        Returns
        -------
        LinkResult

        Raises
        ------
        RuntimeError
            If ``prepare_new`` did not run first
        """
        self._require_prepared('new')
        ws = self.workspace
        count = ws.settings.n_lj_trials
        theta = self._angle.theta

        self._align_basis(mol)
        for trial in range(count):
            self._store(trial, theta, self.dihedral_sampler.place(mol, self._bonds, theta))
        self.state = LinkState.PLACEMENTS_GENERATED

        self.reweighter.evaluate(mol, mol_index, count)
        self.state = LinkState.NONBONDED_EVALUATED

        total = self.reweighter.reweight(count)
        winner = self.reweighter.select(count, total)
        mol.add_atom(self.topology.atom, ws.positions[winner].copy())
        return self._finalize(mol, winner, total)

    def grow_new(self, mol: TrialMolecule, mol_index: Optional[int] = None) -> LinkResult:
        """Run ``prepare_new`` and ``build_new`` while holding the workspace."""
        with self.workspace.claim():
            self.prepare_new(mol, mol_index)
            return self.build_new(mol, mol_index)

    # =========================================================================
    # Existing conformation
    # =========================================================================

    def prepare_old(self, mol: TrialMolecule, mol_index: Optional[int] = None) -> None:
        """Measure the bond length and draw the random angle trials of an existing conformation."""
        topo = self.topology
        ws = self.workspace
        self.state = LinkState.TOPOLOGY_RESOLVED
        self._direction = None
        length = math.sqrt(mol.get_dist_sq(topo.focus, topo.atom))
        self._bond = measure_old_bond(ws.forcefield, topo, length)
        self._bonds = chain_bonds(mol, topo, length)
        self.state = LinkState.BOND_SET
        self._old_bend_weight = self.angle_sampler.sample_old(mol, self._bonds.prev_focus, length)
        self._angle = None
        self.state = LinkState.ANGLE_SET
        self._direction = 'old'

    def build_old(self, mol: TrialMolecule, mol_index: Optional[int] = None) -> LinkResult:
        """
        Weigh the existing position of the atom against fresh candidates and confirm it.

        Placement 0 is the existing position; the remaining placements are
        generated exactly as for a new conformation, at the measured bond
        length and angle.

        Raises
        ------
        RuntimeError
            If ``prepare_old`` did not run first
        """
        self._require_prepared('old')
        topo = self.topology
        ws = self.workspace
        count = ws.settings.n_lj_trials

        self._align_basis(mol)
        theta, phi = 0.0, 0.0
        if topo.has_angle:
            theta, phi = mol.old_theta_and_phi(topo.atom)
        self._angle = self.angle_sampler.incorporate_old(mol, theta, self._old_bend_weight)

        self._store(0, theta, self.dihedral_sampler.place_existing(mol, self._bonds, theta, phi))
        for trial in range(1, count):
            self._store(trial, theta, self.dihedral_sampler.place(mol, self._bonds, theta))
        self.state = LinkState.PLACEMENTS_GENERATED

        self.reweighter.evaluate(mol, mol_index, count)
        self.reweighter.recompute_old_correction(mol)
        self.state = LinkState.NONBONDED_EVALUATED

        total = self.reweighter.reweight(count)
        mol.confirm_old_atom(topo.atom)
        return self._finalize(mol, 0, total)

    def retrace_old(self, mol: TrialMolecule, mol_index: Optional[int] = None) -> LinkResult:
        """Run ``prepare_old`` and ``build_old`` while holding the workspace."""
        with self.workspace.claim():
            self.prepare_old(mol, mol_index)
            return self.build_old(mol, mol_index)

    # =========================================================================
    # Shared stages
    # =========================================================================

    def _require_prepared(self, direction: str) -> None:
        if self.state is not LinkState.ANGLE_SET or self._direction != direction:
            raise RuntimeError(f"build_{direction} called in state {self.state.name}; "
                               f"call prepare_{direction} first")

    def _align_basis(self, mol: TrialMolecule) -> None:
        topo = self.topology
        if topo.has_angle:
            mol.set_basis(topo.focus, topo.prev, topo.prevprev)

    def _store(self, trial: int, theta: float, placement: Placement) -> None:
        ws = self.workspace
        ws.positions[trial] = placement.position
        ws.lj_weights[trial] = placement.weight
        ws.bonded[trial] = placement.torsion
        ws.one_four[trial] = placement.one_four
        ws.trial_theta[trial] = theta
        ws.trial_phi[trial] = placement.phi if placement.phi is not None else np.nan

    def _finalize(self, mol: TrialMolecule, winner: int, nonbonded_weight: float) -> LinkResult:
        topo = self.topology
        ws = self.workspace
        bond = self._bond
        angle = self._angle
        terms = self.reweighter.terms(winner)

        weight = nonbonded_weight * angle.bend_weight * bond.weight
        energy = Energy(intra_bond=float(ws.bonded[winner]) + angle.energy + bond.energy,
                        intra_nonbond=terms.nonbonded + angle.one_three + float(ws.one_four[winner]),
                        inter=terms.inter,
                        real=terms.real,
                        recip=0.0,
                        self_energy=terms.self_energy,
                        correction=terms.correction)
        mol.mult_weight(weight)
        mol.add_energy(energy)
        self.state = LinkState.FINALIZED
        self._direction = None

        has_angle = topo.has_angle
        result = LinkResult(bond_length=bond.length,
                            theta=float(ws.trial_theta[winner]) if has_angle else None,
                            phi=float(ws.trial_phi[winner]) if has_angle else None,
                            position=ws.positions[winner].copy(),
                            energy=energy,
                            bond_weight=bond.weight,
                            bend_weight=angle.bend_weight,
                            nonbonded_weight=nonbonded_weight,
                            weight=weight,
                            winner=winner)
        logger.debug(f"_finalize: atom {topo.atom} winner {winner}, bond {bond.length:.6g}, "
                     f"weight {weight:.6g}, energy {energy.total:.6g}")
        return result
