#!/usr/bin/env python3
"""
Bond Angle Sampling

Generates the bond angle trials of a link step. Each trial angle prev-focus-atom
is weighed by the Boltzmann factor of its bending energy plus the 1-3 nonbonded
energy of the prev-atom pair, whose distance follows from the law of cosines.

For a new conformation one angle is chosen among the trials. For an existing
conformation one fewer trial is drawn and the measured angle completes the set,
so both directions sum the same number of Boltzmann factors.
"""

import logging
import math
from dataclasses import dataclass

from .ForceField import boltzmann_factor
from .Geometry import angle_dist_sq
from .LinkTopology import LinkTopology
from .TrialMolecule import TrialMolecule
from .TrialWorkspace import TrialWorkspace

logger = logging.getLogger(__name__)

# Finite stand-in for energies of degenerate geometries
BIGNUM = 1.0e15


def clamp_nan(energy: float) -> float:
    """Replace a NaN energy by ``BIGNUM``."""
    return BIGNUM if math.isnan(energy) else energy


@dataclass(frozen=True)
class AngleSample:
    """
    Outcome of the angle stage.

    Attributes
    ----------
    theta : float
        Chosen (or measured) angle prev-focus-atom, radians
    energy : float
        Bending energy of ``theta``
    one_three : float
        1-3 nonbonded energy of the prev-atom pair at ``theta``
    bend_weight : float
        Sum of the Boltzmann factors of all angle trials
    """
    theta: float
    energy: float
    one_three: float
    bend_weight: float


# Link without an angle term: nothing to weigh
NO_ANGLE = AngleSample(theta=0.0, energy=0.0, one_three=0.0, bend_weight=1.0)


class AngleSampler:
    """
    Angle trials of one link.

    Parameters
    ----------
    workspace : TrialWorkspace
        Arena holding the angle buffers, the force field and the evaluators
    topology : LinkTopology
        Resolved link
    """

    def __init__(self, workspace: TrialWorkspace, topology: LinkTopology):
        self.workspace = workspace
        self.topology = topology

    def _trial_angle(self) -> float:
        if self.topology.angle_fixed:
            return self.topology.fixed_angle
        return self.workspace.prng.rand(math.pi)

    def _one_three(self, mol: TrialMolecule, dist_sq: float) -> float:
        topo = self.topology
        return clamp_nan(self.workspace.calc.intra_energy_1_3(dist_sq, topo.prev, topo.atom, mol.kind))

    def _fill_trials(self, mol: TrialMolecule, bond_prev: float, bond: float, count: int) -> float:
        """Draw ``count`` trials into the workspace buffers and return their weight sum."""
        ws = self.workspace
        ff = ws.forcefield
        kind = self.topology.angle_kind
        for trial in range(count):
            theta = self._trial_angle()
            ws.angles[trial] = theta
            ws.angle_energy[trial] = ff.angle_energy(kind, theta)
            ws.nonbonded_1_3[trial] = self._one_three(mol, angle_dist_sq(bond_prev, bond, theta))
            ws.angle_weights[trial] = boltzmann_factor(ws.beta, ws.angle_energy[trial]
                                                       + ws.nonbonded_1_3[trial])
        return float(ws.angle_weights[:count].sum())

    def sample_new(self, mol: TrialMolecule, bond_prev: float, bond: float) -> AngleSample:
        """
        Draw the angle trials of a new conformation and pick one.

        Parameters
        ----------
        mol : TrialMolecule
            Molecule being grown
        bond_prev : float
            Bond length prev-focus
        bond : float
            Bond length focus-atom of this step

        Returns
        -------
        AngleSample
        """
        if not self.topology.has_angle:
            return NO_ANGLE
        ws = self.workspace
        count = ws.settings.n_angle_trials
        bend_weight = self._fill_trials(mol, bond_prev, bond, count)
        winner = ws.prng.pick_weighted(ws.angle_weights, count, bend_weight)
        logger.debug(f"sample_new: atom {self.topology.atom} picked angle trial {winner} of {count}, "
                     f"bend weight {bend_weight:.6g}")
        return AngleSample(theta=float(ws.angles[winner]),
                           energy=float(ws.angle_energy[winner]),
                           one_three=float(ws.nonbonded_1_3[winner]),
                           bend_weight=bend_weight)

    def sample_old(self, mol: TrialMolecule, bond_prev: float, bond: float) -> float:
        """
        Weight sum of the random angle trials of an existing conformation.

        The measured angle is added later by ``incorporate_old``.
        """
        if not self.topology.has_angle:
            return 0.0
        return self._fill_trials(mol, bond_prev, bond, self.workspace.settings.n_angle_trials - 1)

    def incorporate_old(self, mol: TrialMolecule, theta: float, partial_weight: float) -> AngleSample:
        """
        Complete the angle stage of an existing conformation.

        Parameters
        ----------
        mol : TrialMolecule
            Molecule being retraced
        theta : float
            Measured angle prev-focus-atom
        partial_weight : float
            Weight sum returned by ``sample_old``
        """
        if not self.topology.has_angle:
            return NO_ANGLE
        topo = self.topology
        ws = self.workspace
        energy = ws.forcefield.angle_energy(topo.angle_kind, theta)
        one_three = self._one_three(mol, mol.get_dist_sq(topo.prev, topo.atom))
        bend_weight = partial_weight + float(boltzmann_factor(ws.beta, energy + one_three))
        return AngleSample(theta=theta, energy=energy, one_three=one_three, bend_weight=bend_weight)
