#!/usr/bin/env python3
"""
Unit tests for the short-range and Ewald energy evaluators.

Tests Lennard-Jones and Coulomb pair energies, the cutoff, exclusion of the
growing molecule, intramolecular pairs beyond 1-4, scaled 1-3/1-4 energies,
NaN propagation for coincident atoms, and the Ewald self and correction terms.
"""

import math
import unittest
import sys
from pathlib import Path

import numpy as np
from scipy.special import erf, erfc

# Add parent directory to path for package imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cbmclink import (
    BoxDimensions,
    EwaldCalculator,
    ForceFieldParams,
    MoleculeCoordinates,
    MoleculeKind,
    PairwiseEnergyCalculator,
    TrialMolecule,
)
from cbmclink.ShortRangeEnergy import COULOMB_CONSTANT


def single_site(name='AR', charge=0.0, sigma=3.4, epsilon=0.238):
    """One-atom molecule kind."""
    return MoleculeKind(name, [name], [], charges=[charge], sigma=[sigma], epsilon=[epsilon])


def chain_kind(n_atoms, charge=0.0, sigma=3.0, epsilon=0.2):
    """Linear chain of identical sites."""
    return MoleculeKind.from_bonds('CHN', ['C'] * n_atoms, [(i, i + 1) for i in range(n_atoms - 1)],
                                   charges=[charge] * n_atoms, sigma=[sigma] * n_atoms,
                                   epsilon=[epsilon] * n_atoms)


class TestIntermolecular(unittest.TestCase):
    """Test particle_inter."""

    def setUp(self):
        """Set up test fixtures."""
        self.ff = ForceFieldParams({}, {}, {}, beta=1.0)
        self.box = BoxDimensions([30.0, 30.0, 30.0])
        self.kind = single_site()

    def test_lennard_jones_minimum(self):
        """Test the LJ energy at r = 2^(1/6) sigma is -epsilon."""
        molecules = MoleculeCoordinates()
        molecules.add(self.kind, [[5.0, 5.0, 5.0]])
        calc = PairwiseEnergyCalculator(self.ff, molecules)
        r_min = 2.0 ** (1.0 / 6.0) * 3.4
        positions = np.array([[5.0 + r_min, 5.0, 5.0]])
        inter, real = np.zeros(1), np.zeros(1)
        calc.particle_inter(positions, self.kind, 0, None, self.box, inter, real)
        self.assertAlmostEqual(inter[0], -0.238, places=10)
        self.assertEqual(real[0], 0.0)

    def test_cutoff_and_exclusion(self):
        """Test pairs beyond the cutoff and the growing molecule are skipped."""
        molecules = MoleculeCoordinates()
        own = molecules.add(self.kind, [[1.0, 1.0, 1.0]])
        molecules.add(self.kind, [[20.0, 1.0, 1.0]])
        calc = PairwiseEnergyCalculator(self.ff, molecules, cutoff=8.0)
        positions = np.array([[4.0, 1.0, 1.0], [16.0, 1.0, 1.0]])
        inter, real = np.zeros(2), np.zeros(2)
        calc.particle_inter(positions, self.kind, 0, own, self.box, inter, real)
        # First trial: other molecule 14 A away (beyond cutoff), own molecule excluded
        self.assertEqual(inter[0], 0.0)
        s6 = (3.4 / 4.0) ** 6
        self.assertAlmostEqual(inter[1], 4.0 * 0.238 * (s6 * s6 - s6), places=12)

    def test_minimum_image_pairs(self):
        """Test that interactions use the nearest periodic image."""
        molecules = MoleculeCoordinates()
        molecules.add(self.kind, [[29.0, 0.0, 0.0]])
        calc = PairwiseEnergyCalculator(self.ff, molecules)
        inter_a, real_a = np.zeros(1), np.zeros(1)
        inter_b, real_b = np.zeros(1), np.zeros(1)
        calc.particle_inter(np.array([[3.0, 0.0, 0.0]]), self.kind, 0, None, self.box, inter_a, real_a)
        calc.particle_inter(np.array([[25.0, 0.0, 0.0]]), self.kind, 0, None, self.box, inter_b, real_b)
        self.assertAlmostEqual(inter_a[0], inter_b[0], places=12)

    def test_damped_coulomb(self):
        """Test real-space Coulomb with and without Ewald damping."""
        ion = single_site('NA', charge=1.0, sigma=0.0, epsilon=0.0)
        counter = single_site('CL', charge=-1.0, sigma=0.0, epsilon=0.0)
        molecules = MoleculeCoordinates()
        molecules.add(counter, [[0.0, 0.0, 0.0]])
        positions = np.array([[3.0, 0.0, 0.0]])

        plain = PairwiseEnergyCalculator(self.ff, molecules)
        inter, real = np.zeros(1), np.zeros(1)
        plain.particle_inter(positions, ion, 0, None, self.box, inter, real)
        self.assertAlmostEqual(real[0], -COULOMB_CONSTANT / 3.0, places=9)

        damped = PairwiseEnergyCalculator(self.ff, molecules, ewald_alpha=0.3)
        damped.particle_inter(positions, ion, 0, None, self.box, inter, real)
        self.assertAlmostEqual(real[0], -COULOMB_CONSTANT * erfc(0.9) / 3.0, places=9)

    def test_coincident_atoms_give_nan(self):
        """Test coincident positions produce NaN rather than an exception."""
        molecules = MoleculeCoordinates()
        molecules.add(self.kind, [[2.0, 2.0, 2.0]])
        calc = PairwiseEnergyCalculator(self.ff, molecules)
        inter, real = np.zeros(1), np.zeros(1)
        calc.particle_inter(np.array([[2.0, 2.0, 2.0]]), self.kind, 0, None, self.box, inter, real)
        self.assertTrue(math.isnan(inter[0]))

    def test_invalid_cutoff(self):
        """Test that a non-positive cutoff is rejected."""
        with self.assertRaises(ValueError):
            PairwiseEnergyCalculator(self.ff, MoleculeCoordinates(), cutoff=0.0)


class TestIntramolecular(unittest.TestCase):
    """Test particle_nonbonded and the scaled 1-3/1-4 pair energies."""

    def setUp(self):
        """Set up test fixtures."""
        self.box = BoxDimensions()
        self.kind = chain_kind(6, charge=0.2)
        self.ff = ForceFieldParams({}, {}, {}, beta=1.0, scaling_13=0.0,
                                   scaling_14=0.5, scaling_coulomb_14=0.8)
        self.calc = PairwiseEnergyCalculator(self.ff, MoleculeCoordinates())

    def test_only_existing_atoms_beyond_1_4(self):
        """Test that only placed atoms four or more bonds away contribute."""
        coords = np.array([[1.5 * i, 0.0, 0.0] for i in range(6)])
        mol = TrialMolecule.old(self.kind, self.box, coords, existing=[0, 1, 2, 3])
        positions = np.array([[6.0, 4.0, 0.0]])
        nonbonded = np.zeros(1)
        # Atom 5: only atom 0 (and atom 1, four bonds) are beyond 1-4
        self.calc.particle_nonbonded(mol, positions, 5, self.box, nonbonded)

        expected = 0.0
        for partner in (0, 1):
            r2 = float(np.sum((positions[0] - coords[partner]) ** 2))
            s6 = (9.0 / r2) ** 3
            expected += 4.0 * 0.2 * (s6 * s6 - s6) + COULOMB_CONSTANT * 0.04 / math.sqrt(r2)
        self.assertAlmostEqual(nonbonded[0], expected, places=10)

    def test_no_partners(self):
        """Test that an atom without distant partners has zero energy."""
        coords = np.zeros((6, 3))
        mol = TrialMolecule.old(self.kind, self.box, coords, existing=[2, 3])
        nonbonded = np.full(2, 7.0)
        self.calc.particle_nonbonded(mol, np.ones((2, 3)), 0, self.box, nonbonded)
        np.testing.assert_array_equal(nonbonded, 0.0)

    def test_one_three_excluded_by_default(self):
        """Test that 1-3 pairs contribute nothing with zero scaling."""
        self.assertEqual(self.calc.intra_energy_1_3(4.0, 0, 2, self.kind), 0.0)

    def test_one_three_scaled(self):
        """Test 1-3 energy scaling for LJ and Coulomb alike."""
        ff = ForceFieldParams({}, {}, {}, beta=1.0, scaling_13=0.25)
        calc = PairwiseEnergyCalculator(ff, MoleculeCoordinates())
        r2 = 6.25
        s6 = (9.0 / r2) ** 3
        expected = 0.25 * (4.0 * 0.2 * (s6 * s6 - s6) + COULOMB_CONSTANT * 0.04 / 2.5)
        self.assertAlmostEqual(calc.intra_energy_1_3(r2, 0, 2, self.kind), expected, places=10)

    def test_one_four_scaled(self):
        """Test separate LJ and Coulomb 1-4 scaling."""
        r2 = 10.0
        s6 = (9.0 / r2) ** 3
        expected = (0.5 * 4.0 * 0.2 * (s6 * s6 - s6)
                    + 0.8 * COULOMB_CONSTANT * 0.04 / math.sqrt(r2))
        self.assertAlmostEqual(self.calc.intra_energy_1_4(r2, 0, 3, self.kind), expected, places=10)

    def test_one_four_coincident_is_nan(self):
        """Test that zero distance gives NaN."""
        self.assertTrue(math.isnan(self.calc.intra_energy_1_4(0.0, 0, 3, self.kind)))


class TestEwald(unittest.TestCase):
    """Test the Ewald self and correction terms."""

    def setUp(self):
        """Set up test fixtures."""
        self.kind = MoleculeKind.from_bonds('WAT', ['O', 'H', 'H'], [(0, 1), (0, 2)],
                                            charges=[-0.834, 0.417, 0.417])
        self.box = BoxDimensions([20.0, 20.0, 20.0])
        self.coords = np.array([[5.0, 5.0, 5.0], [5.9572, 5.0, 5.0], [4.76, 5.9266, 5.0]])
        self.ewald = EwaldCalculator(alpha=0.28)

    def test_invalid_alpha(self):
        """Test that alpha must be positive."""
        with self.assertRaises(ValueError):
            EwaldCalculator(alpha=0.0)

    def test_self_energy(self):
        """Test -k q^2 alpha / sqrt(pi) for every trial."""
        buffer = np.zeros(3)
        self.ewald.swap_self(self.kind, 0, buffer)
        expected = -COULOMB_CONSTANT * 0.834 ** 2 * 0.28 / math.sqrt(math.pi)
        np.testing.assert_allclose(buffer, expected, rtol=1e-12)

    def test_correction_against_existing_atoms(self):
        """Test the correction sums over placed atoms other than the growing one."""
        mol = TrialMolecule.old(self.kind, self.box, self.coords, existing=[0])
        positions = self.coords[[2]].copy()
        correction = np.zeros(1)
        self.ewald.swap_correction(mol, positions, 2, self.box, correction)
        r = float(np.linalg.norm(self.coords[2] - self.coords[0]))
        expected = -COULOMB_CONSTANT * (-0.834 * 0.417) * erf(0.28 * r) / r
        self.assertAlmostEqual(correction[0], expected, places=10)
        self.assertAlmostEqual(self.ewald.correction_old_molecule(mol, 2), expected, places=10)

    def test_correction_without_partners(self):
        """Test zero correction for the first atom of a molecule."""
        mol = TrialMolecule.new(self.kind, self.box)
        correction = np.full(2, 3.0)
        self.ewald.swap_correction(mol, np.zeros((2, 3)), 0, self.box, correction)
        np.testing.assert_array_equal(correction, 0.0)
        self.assertEqual(self.ewald.correction_old_molecule(mol, 0), 0.0)


def run_tests():
    """Run all tests."""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    # Add all test classes
    suite.addTests(loader.loadTestsFromTestCase(TestIntermolecular))
    suite.addTests(loader.loadTestsFromTestCase(TestIntramolecular))
    suite.addTests(loader.loadTestsFromTestCase(TestEwald))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return result.wasSuccessful()


if __name__ == '__main__':
    success = run_tests()
    sys.exit(0 if success else 1)
