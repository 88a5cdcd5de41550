#!/usr/bin/env python3
"""
Example: Using the cbmclink Python API

This script regrows the tail of a united-atom pentane in a periodic box shared
with a second pentane, once as a new conformation and once retracing the
current one, and reports the Rosenbluth weights of both directions and the
resulting acceptance probability of the regrowth move.
"""

import math
import sys
from pathlib import Path

import numpy as np

# Add repository root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from cbmclink import (
    AngleParameters,
    BondParameters,
    BoxDimensions,
    DCLink,
    DihedralParameters,
    ForceFieldParams,
    LinkSettings,
    MoleculeCoordinates,
    MoleculeKind,
    PairwiseEnergyCalculator,
    RandomSource,
    TrialMolecule,
    TrialWorkspace,
)

# TraPPE-UA alkane chain
FORCEFIELD = dict(
    bonds={('C', 'C'): BondParameters(k=0.0, length=1.54, fixed=True)},
    angles={('C', 'C', 'C'): AngleParameters(k=62.1, theta=math.radians(114.0))},
    dihedrals={('C', 'C', 'C', 'C'): DihedralParameters(
        terms=((0.7055, 1, 0.0), (-0.1355, 2, math.pi), (1.5725, 3, 0.0)))},
)

PENTANE = np.array([[0.000, 0.000, 0.000],
                    [1.540, 0.000, 0.000],
                    [2.186, 1.398, 0.000],
                    [3.726, 1.398, 0.000],
                    [4.372, 2.796, 0.000]])


def example_1_regrowth(seed=2024):
    """Example 1: Regrow two terminal atoms and compute the acceptance probability."""
    print("=" * 70)
    print("Example 1: Tail Regrowth")
    print("=" * 70)

    ff = ForceFieldParams.from_temperature(300.0, **FORCEFIELD)
    kind = MoleculeKind.from_bonds('PEN', ['C'] * 5, [(i, i + 1) for i in range(4)],
                                   sigma=[3.75] * 5, epsilon=[0.195] * 5)
    box = BoxDimensions([30.0, 30.0, 30.0])

    # Molecule 0 is the one being regrown; molecule 1 is a neighbour
    current = PENTANE + 10.0
    molecules = MoleculeCoordinates()
    index = molecules.add(kind, current)
    molecules.add(kind, PENTANE + np.array([12.0, 15.0, 13.5]))
    calc = PairwiseEnergyCalculator(ff, molecules, cutoff=14.0)

    settings = LinkSettings(n_angle_trials=100, n_dih_trials=10, n_lj_trials=4)
    with TrialWorkspace(ff, calc, RandomSource(seed), settings=settings) as ws:
        links = [DCLink.from_molecule_kind(ws, kind, atom=3, focus=2),
                 DCLink.from_molecule_kind(ws, kind, atom=4, focus=3)]

        new_mol = TrialMolecule.new(kind, box)
        for atom in range(3):
            new_mol.add_atom(atom, current[atom].copy())
        old_mol = TrialMolecule.old(kind, box, current, existing=[0, 1, 2])

        for link in links:
            grown = link.grow_new(new_mol, mol_index=index)
            print(f"   grow    atom {link.topology.atom}: theta={math.degrees(grown.theta):7.2f} deg, "
                  f"phi={math.degrees(grown.phi):7.2f} deg, weight={grown.weight:.4e}")
        for link in links:
            retraced = link.retrace_old(old_mol, mol_index=index)
            print(f"   retrace atom {link.topology.atom}: theta={math.degrees(retraced.theta):7.2f} deg, "
                  f"phi={math.degrees(retraced.phi):7.2f} deg, weight={retraced.weight:.4e}")

    acceptance = min(1.0, new_mol.weight / old_mol.weight) if old_mol.weight > 0.0 else 1.0
    print(f"\n   W(new) = {new_mol.weight:.4e}, U(new) = {new_mol.energy.total:.3f} kcal/mol")
    print(f"   W(old) = {old_mol.weight:.4e}, U(old) = {old_mol.energy.total:.3f} kcal/mol")
    print(f"   Acceptance probability: {acceptance:.4f}")
    return new_mol, old_mol


def example_2_parallel_workspaces(seed=7):
    """Example 2: Independent workspaces on spawned random streams."""
    print("\n" + "=" * 70)
    print("Example 2: Replicated Workspaces")
    print("=" * 70)

    ff = ForceFieldParams.from_temperature(300.0, **FORCEFIELD)
    kind = MoleculeKind.from_bonds('PEN', ['C'] * 5, [(i, i + 1) for i in range(4)],
                                   sigma=[3.75] * 5, epsilon=[0.195] * 5)
    box = BoxDimensions([30.0, 30.0, 30.0])
    calc = PairwiseEnergyCalculator(ff, MoleculeCoordinates())

    primary = TrialWorkspace(ff, calc, RandomSource(seed), settings=LinkSettings(parallel=True))
    for i, ws in enumerate([primary] + primary.replicate(3)):
        with ws:
            link = DCLink.from_molecule_kind(ws, kind, atom=4, focus=3)
            mol = TrialMolecule.new(kind, box)
            for atom in range(4):
                mol.add_atom(atom, PENTANE[atom] + 10.0)
            result = link.grow_new(mol)
            print(f"   workspace {i}: weight={result.weight:.4e}, "
                  f"torsion+bend={result.energy.intra_bond:.3f} kcal/mol")


if __name__ == '__main__':
    example_1_regrowth()
    example_2_parallel_workspaces()
