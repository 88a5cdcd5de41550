#!/usr/bin/env python3
"""
Unit tests for the DCLink growth operator.

Tests a hand-computed single-trial growth step, agreement of the energy
decomposition between growing an atom and retracing it, finite non-negative
weights, identical results with and without the thread pool, chain termini
without angle or dihedral terms, and misuse of the operator and workspace.
"""

import math
import unittest
import sys
from pathlib import Path

import numpy as np

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cbmclink import (
    AngleParameters,
    BondParameters,
    BoxDimensions,
    DCLink,
    DihedralParameters,
    EwaldCalculator,
    ForceFieldParams,
    LinkSettings,
    LinkState,
    MoleculeCoordinates,
    MoleculeKind,
    PairwiseEnergyCalculator,
    RandomSource,
    TrialMolecule,
    TrialWorkspace,
    WorkspaceBusyError,
)
from cbmclink.ForceField import MAX_EXPONENT
from cbmclink.Geometry import calc_angle, calc_distance

BETA = 1.0 / 0.596
THETA0 = math.radians(114.0)
ORIGIN = np.array([10.0, 10.0, 10.0])
CHAIN_COORDS = ORIGIN + np.array([[0.0, 0.0, 0.0],
                                  [1.5, 0.0, 0.0],
                                  [2.0, 1.4, 0.0],
                                  [3.4, 1.6, 0.3]])


def make_forcefield(bond_fixed=False, scaling_13=0.0):
    return ForceFieldParams(
        bonds={('C', 'C'): BondParameters(k=120.0, length=1.5, fixed=bond_fixed)},
        angles={('C', 'C', 'C'): AngleParameters(k=62.1, theta=THETA0)},
        dihedrals={('C', 'C', 'C', 'C'): DihedralParameters(terms=((0.7, 1, 0.0), (-0.2, 2, math.pi)))},
        beta=BETA,
        scaling_13=scaling_13,
    )


def make_chain(n_atoms, charges=None, sigma=2.0, epsilon=0.1):
    return MoleculeKind.from_bonds('CHN', ['C'] * n_atoms, [(i, i + 1) for i in range(n_atoms - 1)],
                                   charges=charges, sigma=[sigma] * n_atoms, epsilon=[epsilon] * n_atoms)


def placed(kind, box, n_placed):
    """New molecule with its first ``n_placed`` atoms at CHAIN_COORDS."""
    mol = TrialMolecule.new(kind, box)
    for atom in range(n_placed):
        mol.add_atom(atom, CHAIN_COORDS[atom].copy())
    return mol


def lennard_jones(r2, sigma, epsilon):
    s6 = (sigma * sigma / r2) ** 3
    return 4.0 * epsilon * (s6 * s6 - s6)


class TestSingleTrialReference(unittest.TestCase):
    """Test one growth step against a hand-computed reference."""

    def setUp(self):
        """Set up test fixtures."""
        self.ff = make_forcefield(bond_fixed=True)
        self.kind = make_chain(4)
        self.box = BoxDimensions()
        calc = PairwiseEnergyCalculator(self.ff, MoleculeCoordinates())
        settings = LinkSettings(n_angle_trials=1, n_dih_trials=1, n_lj_trials=1)
        self.ws = TrialWorkspace(self.ff, calc, RandomSource(2718), settings=settings)
        self.link = DCLink.from_molecule_kind(self.ws, self.kind, atom=3, focus=2)

    def assertRelativeEqual(self, actual, expected, rtol=1e-9):
        self.assertLessEqual(abs(actual - expected), rtol * abs(expected),
                             f"{actual} != {expected} within relative {rtol}")

    def test_four_atom_growth(self):
        """Test weight and energies of a fixed-bond, single-trial step."""
        mol = placed(self.kind, self.box, 3)
        result = self.link.grow_new(mol)
        theta, phi = result.theta, result.phi

        # Bond: rigid at equilibrium, no energy, unit weight
        self.assertEqual(result.bond_length, 1.5)
        self.assertEqual(result.bond_weight, 1.0)

        # Angle: the only trial is chosen
        u_bend = 62.1 * (theta - THETA0) ** 2
        self.assertRelativeEqual(result.bend_weight, math.exp(-BETA * u_bend))

        # Dihedral: 1-4 distance from internal coordinates
        b0 = 1.5
        b1 = math.sqrt(0.5 ** 2 + 1.4 ** 2)
        b2 = 1.5
        cos1 = (-1.5 * 0.5) / (b0 * b1)
        sin1 = math.sqrt(1.0 - cos1 * cos1)
        d2 = (b0 * b0 + b1 * b1 + b2 * b2 - 2.0 * b0 * b1 * cos1 - 2.0 * b1 * b2 * math.cos(theta)
              + 2.0 * b0 * b2 * (cos1 * math.cos(theta) - sin1 * math.sin(theta) * math.cos(phi)))
        u_14 = 0.5 * lennard_jones(d2, 2.0, 0.1)
        u_tors = 0.7 * (1.0 + math.cos(phi)) - 0.2 * (1.0 + math.cos(2.0 * phi - math.pi))

        # Nothing beyond 1-4, no other molecules, no charges
        self.assertRelativeEqual(result.nonbonded_weight, math.exp(-BETA * (u_tors + u_14)))

        expected_weight = math.exp(-BETA * u_bend) * math.exp(-BETA * (u_tors + u_14))
        self.assertGreater(expected_weight, 0.0)
        self.assertRelativeEqual(result.weight, expected_weight)
        self.assertRelativeEqual(mol.weight, expected_weight)

        self.assertRelativeEqual(result.energy.intra_bond, u_tors + u_bend)
        self.assertRelativeEqual(result.energy.intra_nonbond, u_14)
        self.assertEqual(result.energy.inter, 0.0)
        self.assertEqual(result.energy.real, 0.0)
        self.assertEqual(result.energy.recip, 0.0)
        self.assertEqual(result.energy.self_energy, 0.0)
        self.assertEqual(result.energy.correction, 0.0)

        # Placed atom realises the sampled internal coordinates
        position = mol.atom_position(3)
        self.assertTrue(mol.atom_exists(3))
        self.assertAlmostEqual(calc_distance(CHAIN_COORDS[2], position), 1.5, places=10)
        self.assertAlmostEqual(calc_angle(CHAIN_COORDS[1], CHAIN_COORDS[2], position), theta, places=10)
        self.assertAlmostEqual(float(np.sum((position - CHAIN_COORDS[0]) ** 2)), d2, places=9)
        self.assertEqual(self.link.state, LinkState.FINALIZED)


class TestGrowAndRetrace(unittest.TestCase):
    """Test growing then retracing the same atom in a charged, periodic system."""

    def setUp(self):
        """Set up test fixtures."""
        self.ff = make_forcefield()
        self.box = BoxDimensions([25.0, 25.0, 25.0])
        self.kind = make_chain(5, charges=[0.2, -0.1, 0.1, -0.3, 0.1])
        solvent = MoleculeKind('ION', ['NA'], [], charges=[1.0], sigma=[2.5], epsilon=[0.1])
        molecules = MoleculeCoordinates()
        molecules.add(solvent, [[16.5, 13.0, 11.0]])
        molecules.add(solvent, [[9.0, 15.5, 8.0]])
        self.calc = PairwiseEnergyCalculator(self.ff, molecules, cutoff=9.0, ewald_alpha=0.3)
        self.ewald = EwaldCalculator(alpha=0.3)

    def workspace(self, seed, parallel=False):
        settings = LinkSettings(n_angle_trials=6, n_dih_trials=4, n_lj_trials=3, parallel=parallel)
        return TrialWorkspace(self.ff, self.calc, RandomSource(seed), self.ewald, settings)

    def test_retrace_reproduces_energy(self):
        """Test retracing a grown atom yields the same energy decomposition."""
        with self.workspace(5) as ws:
            link = DCLink.from_molecule_kind(ws, self.kind, atom=4, focus=3)
            new_mol = placed(self.kind, self.box, 4)
            grown = link.grow_new(new_mol)

            old_mol = TrialMolecule.old(self.kind, self.box, new_mol.coordinates, existing=[0, 1, 2, 3])
            retraced = link.retrace_old(old_mol)

        self.assertEqual(retraced.winner, 0)
        self.assertTrue(old_mol.atom_exists(4))
        np.testing.assert_allclose(retraced.position, grown.position, atol=1e-12)
        self.assertAlmostEqual(retraced.bond_length, grown.bond_length, places=10)
        self.assertAlmostEqual(retraced.theta, grown.theta, places=8)
        for field, expected in zip(('intra_bond', 'intra_nonbond', 'inter', 'real', 'recip',
                                    'self_energy', 'correction'), grown.energy.as_tuple()):
            self.assertAlmostEqual(getattr(retraced.energy, field), expected, places=6, msg=field)
        # Ewald terms and the 1-5 pair are exercised
        self.assertNotEqual(grown.energy.self_energy, 0.0)
        self.assertNotEqual(grown.energy.correction, 0.0)
        self.assertAlmostEqual(old_mol.weight, retraced.weight)

    def test_weights_finite_and_non_negative(self):
        """Test total weights over many seeds."""
        for seed in range(15):
            with self.subTest(seed=seed):
                ws = self.workspace(seed)
                link = DCLink.from_molecule_kind(ws, self.kind, atom=4, focus=3)
                new_mol = placed(self.kind, self.box, 4)
                grown = link.grow_new(new_mol)
                old_mol = TrialMolecule.old(self.kind, self.box, CHAIN_COORDS.tolist() + [[14.5, 11.0, 9.8]],
                                            existing=[0, 1, 2, 3])
                retraced = link.retrace_old(old_mol)
                for result in (grown, retraced):
                    self.assertTrue(math.isfinite(result.weight))
                    self.assertGreaterEqual(result.weight, 0.0)
                    self.assertTrue(math.isfinite(result.energy.total))

    def test_parallel_matches_sequential(self):
        """Test the thread pool does not change any result."""
        results = []
        for parallel in (False, True):
            with self.workspace(77, parallel=parallel) as ws:
                link = DCLink.from_molecule_kind(ws, self.kind, atom=4, focus=3)
                new_mol = placed(self.kind, self.box, 4)
                grown = link.grow_new(new_mol)
                old_mol = TrialMolecule.old(self.kind, self.box, new_mol.coordinates, existing=[0, 1, 2, 3])
                retraced = link.retrace_old(old_mol)
                results.append((grown, retraced))
        (seq_new, seq_old), (par_new, par_old) = results
        for seq, par in ((seq_new, par_new), (seq_old, par_old)):
            self.assertEqual(seq.weight, par.weight)
            self.assertEqual(seq.energy, par.energy)
            self.assertEqual(seq.winner, par.winner)
            np.testing.assert_array_equal(seq.position, par.position)

    def test_new_atom_is_wrapped(self):
        """Test the grown atom lies inside the periodic box."""
        ws = self.workspace(3)
        link = DCLink.from_molecule_kind(ws, self.kind, atom=4, focus=3)
        new_mol = placed(self.kind, self.box, 4)
        result = link.grow_new(new_mol)
        self.assertTrue(np.all(result.position >= 0.0))
        self.assertTrue(np.all(result.position < 25.0))


class TestChainTermini(unittest.TestCase):
    """Test links without dihedral or angle terms."""

    def setUp(self):
        """Set up test fixtures."""
        self.ff = make_forcefield()
        self.box = BoxDimensions()
        calc = PairwiseEnergyCalculator(self.ff, MoleculeCoordinates())
        self.ws = TrialWorkspace(self.ff, calc, RandomSource(9), settings=LinkSettings(n_lj_trials=3))

    def test_no_dihedral(self):
        """Test placement weights of one per candidate without a dihedral term."""
        kind = make_chain(3)
        link = DCLink.from_molecule_kind(self.ws, kind, atom=2, focus=1)
        mol = placed(kind, self.box, 2)
        result = link.grow_new(mol)
        self.assertEqual(result.nonbonded_weight, 3.0)
        self.assertAlmostEqual(result.weight, 3.0 * result.bend_weight * result.bond_weight, places=12)
        self.assertAlmostEqual(calc_angle(CHAIN_COORDS[0], CHAIN_COORDS[1], mol.atom_position(2)),
                               result.theta, places=10)

        old_mol = TrialMolecule.old(kind, self.box, mol.coordinates, existing=[0, 1])
        retraced = link.retrace_old(old_mol)
        self.assertAlmostEqual(retraced.theta, result.theta, places=8)
        self.assertAlmostEqual(retraced.energy.intra_bond, result.energy.intra_bond, places=8)

    def test_no_angle(self):
        """Test a diatomic link places the atom at the bond length."""
        kind = make_chain(2)
        link = DCLink.from_molecule_kind(self.ws, kind, atom=1, focus=0)
        mol = placed(kind, self.box, 1)
        result = link.grow_new(mol)
        self.assertIsNone(result.theta)
        self.assertIsNone(result.phi)
        self.assertEqual(result.bend_weight, 1.0)
        self.assertAlmostEqual(calc_distance(CHAIN_COORDS[0], mol.atom_position(1)), result.bond_length,
                               places=12)

        old_mol = TrialMolecule.old(kind, self.box, mol.coordinates, existing=[0])
        retraced = link.retrace_old(old_mol)
        self.assertAlmostEqual(retraced.bond_length, result.bond_length, places=12)
        # The retraced bond length is re-measured from coordinates
        for actual, expected in zip(retraced.energy.as_tuple(), result.energy.as_tuple()):
            self.assertAlmostEqual(actual, expected, places=10)


class TestAttractiveOneThree(unittest.TestCase):
    """Test a strongly attractive, LJ-free 1-3 pair such as a hydroxyl hydrogen."""

    def setUp(self):
        """Set up test fixtures."""
        # Rigid bonds and a near-zero rigid angle put the charged ends 0.075 A apart
        self.ff = ForceFieldParams(
            bonds={('C', 'C'): BondParameters(k=120.0, length=1.5, fixed=True)},
            angles={('C', 'C', 'C'): AngleParameters(k=62.1, theta=0.05, fixed=True)},
            dihedrals={},
            beta=BETA,
            scaling_13=1.0,
        )
        self.kind = make_chain(3, charges=[0.4, 0.0, -0.4], sigma=0.0, epsilon=0.0)
        self.box = BoxDimensions()
        calc = PairwiseEnergyCalculator(self.ff, MoleculeCoordinates())
        settings = LinkSettings(n_angle_trials=200, n_lj_trials=4)
        self.ws = TrialWorkspace(self.ff, calc, RandomSource(31), settings=settings)
        self.link = DCLink.from_molecule_kind(self.ws, self.kind, atom=2, focus=1)

    def test_grow_weight_stays_finite(self):
        """Test Boltzmann factors beyond the float range give a capped finite weight."""
        mol = placed(self.kind, self.box, 2)
        result = self.link.grow_new(mol)
        # -beta * U_13 is far above the cap
        self.assertGreater(-BETA * result.energy.intra_nonbond, MAX_EXPONENT)
        self.assertAlmostEqual(result.bend_weight / (200 * math.exp(MAX_EXPONENT)), 1.0, places=12)
        self.assertTrue(math.isfinite(result.weight))
        self.assertGreater(result.weight, 0.0)
        self.assertTrue(math.isfinite(mol.weight))

    def test_retrace_weight_stays_finite(self):
        """Test the measured angle of an existing conformation is capped the same way."""
        grown = placed(self.kind, self.box, 2)
        self.link.grow_new(grown)
        old_mol = TrialMolecule.old(self.kind, self.box, grown.coordinates, existing=[0, 1])
        result = self.link.retrace_old(old_mol)
        self.assertAlmostEqual(result.bend_weight / (200 * math.exp(MAX_EXPONENT)), 1.0, places=9)
        self.assertTrue(math.isfinite(result.weight))
        self.assertGreater(result.weight, 0.0)


class TestMisuse(unittest.TestCase):
    """Test the operator and workspace contracts."""

    def setUp(self):
        """Set up test fixtures."""
        ff = make_forcefield()
        calc = PairwiseEnergyCalculator(ff, MoleculeCoordinates())
        self.ws = TrialWorkspace(ff, calc, RandomSource(1), settings=LinkSettings(n_angle_trials=3))
        self.kind = make_chain(4)
        self.link = DCLink.from_molecule_kind(self.ws, self.kind, atom=3, focus=2)
        self.mol = placed(self.kind, BoxDimensions(), 3)

    def test_build_before_prepare(self):
        """Test build without prepare raises RuntimeError."""
        self.assertEqual(self.link.state, LinkState.TOPOLOGY_RESOLVED)
        with self.assertRaises(RuntimeError):
            self.link.build_new(self.mol)
        with self.assertRaises(RuntimeError):
            self.link.build_old(self.mol)

    def test_build_other_direction(self):
        """Test build_old after prepare_new raises RuntimeError."""
        self.link.prepare_new(self.mol)
        with self.assertRaises(RuntimeError):
            self.link.build_old(self.mol)
        # The prepared direction still completes
        result = self.link.build_new(self.mol)
        self.assertTrue(self.mol.atom_exists(3))
        self.assertGreaterEqual(result.weight, 0.0)

    def test_prepare_reaches_angle_set(self):
        """Test both directions stop at ANGLE_SET and prepare restarts the sequence."""
        self.link.grow_new(self.mol)
        self.assertEqual(self.link.state, LinkState.FINALIZED)

        old_mol = TrialMolecule.old(self.kind, BoxDimensions(), self.mol.coordinates, existing=[0, 1, 2])
        self.link.prepare_old(old_mol)
        self.assertEqual(self.link.state, LinkState.ANGLE_SET)
        with self.assertRaises(RuntimeError):
            self.link.build_new(old_mol)

        # A fresh prepare replaces the pending one
        new_mol = placed(self.kind, BoxDimensions(), 3)
        self.link.prepare_new(new_mol)
        self.assertEqual(self.link.state, LinkState.ANGLE_SET)
        with self.assertRaises(RuntimeError):
            self.link.build_old(new_mol)
        self.link.build_new(new_mol)
        self.assertEqual(self.link.state, LinkState.FINALIZED)

    def test_build_twice(self):
        """Test a finished evaluation cannot be built again."""
        self.link.grow_new(self.mol)
        with self.assertRaises(RuntimeError):
            self.link.build_new(self.mol)

    def test_busy_workspace(self):
        """Test a held workspace rejects a second evaluation."""
        with self.ws.claim():
            with self.assertRaises(WorkspaceBusyError):
                self.link.grow_new(self.mol)
        self.assertFalse(self.mol.atom_exists(3))

    def test_repr(self):
        """Test the operator identifies its link."""
        self.assertIn("atom=3", repr(self.link))
        self.assertIn("focus=2", repr(self.link))


def run_tests():
    """Run all tests."""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    # Add all test classes
    suite.addTests(loader.loadTestsFromTestCase(TestSingleTrialReference))
    suite.addTests(loader.loadTestsFromTestCase(TestGrowAndRetrace))
    suite.addTests(loader.loadTestsFromTestCase(TestChainTermini))
    suite.addTests(loader.loadTestsFromTestCase(TestAttractiveOneThree))
    suite.addTests(loader.loadTestsFromTestCase(TestMisuse))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return result.wasSuccessful()


if __name__ == '__main__':
    success = run_tests()
    sys.exit(0 if success else 1)
