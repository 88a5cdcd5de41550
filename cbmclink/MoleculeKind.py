#!/usr/bin/env python3
"""
Molecule Kind Connectivity

This module provides the MoleculeKind class, the static description shared by
every molecule of one kind: per-atom nonbonded parameters and the bonded
terms (bonds, angles, dihedrals), each tagged with a force field kind.

Bonded terms are stored as tuples of 0-based atom indices followed by the kind:
    - Bond:     (a0, a1, kind)
    - Angle:    (a0, a1, a2, kind), a1 is the vertex
    - Dihedral: (a0, a1, a2, a3, kind), a1-a2 is the central bond

The ``atom_end_*`` lookups return terms oriented so that ``a0`` is the
queried atom, which is what the link growth operator needs to find the chain
that anchors a growing atom.

Classes:
    Bond, Angle, Dihedral: Bonded terms
    MoleculeKind: Connectivity and nonbonded parameters of a molecule kind

Functions:
    build_neighbors_from_bonds: Map each atom to its bonded neighbours
    get_atoms_at_distances: Atoms at 0, 1, 2 and 3 bonds from a given atom
"""

import copy
from collections import defaultdict
from typing import Dict, Hashable, Iterable, List, NamedTuple, Optional, Sequence, Set, Tuple

import numpy as np
from openmm.app import Topology

from .ForceField import canonical_kind


class Bond(NamedTuple):
    a0: int
    a1: int
    kind: Hashable


class Angle(NamedTuple):
    a0: int
    a1: int
    a2: int
    kind: Hashable


class Dihedral(NamedTuple):
    a0: int
    a1: int
    a2: int
    a3: int
    kind: Hashable


def build_neighbors_from_bonds(bonds: Iterable[Tuple[int, int]]) -> Dict[int, Set[int]]:
    """
    Build a neighbors dictionary from bonds.

    Parameters
    ----------
    bonds : iterable
        Iterable of (atom1, atom2, ...) tuples; extra fields are ignored

    Returns
    -------
    Dict[int, Set[int]]
        Dictionary mapping atom indices to sets of their bonded neighbors
    """
    neighbors = defaultdict(set)
    for bond in bonds:
        atom1_idx, atom2_idx = bond[0], bond[1]
        neighbors[atom1_idx].add(atom2_idx)
        neighbors[atom2_idx].add(atom1_idx)
    return neighbors


def get_atoms_at_distances(atom_idx: int, neighbors: Dict[int, Set[int]]) -> Tuple[Set[int], Set[int], Set[int], Set[int]]:
    """
    Get sets of atoms at distances 0, 1, 2, and 3 from a given atom.

    - atoms_a (distance 0): the atom itself
    - atoms_b (distance 1): direct neighbors
    - atoms_c (distance 2): neighbors of neighbors, excluding distance 0 and 1
    - atoms_d (distance 3): neighbors of distance 2 atoms, excluding closer atoms

    Parameters
    ----------
    atom_idx : int
        The starting atom index
    neighbors : Dict[int, Set[int]]
        Dictionary mapping atom indices to sets of their bonded neighbors

    Returns
    -------
    Tuple[Set[int], Set[int], Set[int], Set[int]]
        Tuple of (atoms_a, atoms_b, atoms_c, atoms_d) sets
    """
    atoms_a = {atom_idx}
    atoms_b = set(neighbors.get(atom_idx, ())) - atoms_a
    atoms_c = set()
    atoms_d = set()

    for atm_b in atoms_b:
        for atm_c in neighbors.get(atm_b, ()):
            if atm_c not in atoms_a and atm_c not in atoms_b:
                atoms_c.add(atm_c)

    for atm_c in atoms_c:
        for atm_d in neighbors.get(atm_c, ()):
            if atm_d not in atoms_a and atm_d not in atoms_b and atm_d not in atoms_c:
                atoms_d.add(atm_d)

    return atoms_a, atoms_b, atoms_c, atoms_d


class MoleculeKind:
    """
    Static connectivity and nonbonded parameters of one molecule kind.

    Attributes
    ----------
    name : str
        Kind name
    atom_names : List[str]
        Atom names
    atom_types : List[str]
        Atom types (used to derive bonded kinds in ``from_bonds``)
    charges, sigma, epsilon : np.ndarray
        Per-atom partial charge (e), LJ sigma (Angstrom) and LJ epsilon (kcal/mol)
    bonds : List[Bond]
    angles : List[Angle]
    dihedrals : List[Dihedral]
    """

    # Topological separation reported for pairs four or more bonds apart
    FAR = 4

    def __init__(self, name: str, atom_names: Sequence[str],
                 bonds: Sequence[Tuple],
                 angles: Sequence[Tuple] = (),
                 dihedrals: Sequence[Tuple] = (),
                 charges: Optional[Sequence[float]] = None,
                 sigma: Optional[Sequence[float]] = None,
                 epsilon: Optional[Sequence[float]] = None,
                 atom_types: Optional[Sequence[str]] = None):
        self.name = name
        self.atom_names = list(atom_names)
        n_atoms = len(self.atom_names)
        self.atom_types = list(atom_types) if atom_types is not None else list(self.atom_names)
        self.charges = np.zeros(n_atoms) if charges is None else np.asarray(charges, dtype=float)
        self.sigma = np.zeros(n_atoms) if sigma is None else np.asarray(sigma, dtype=float)
        self.epsilon = np.zeros(n_atoms) if epsilon is None else np.asarray(epsilon, dtype=float)
        self.bonds = [Bond(*b) for b in bonds]
        self.angles = [Angle(*a) for a in angles]
        self.dihedrals = [Dihedral(*d) for d in dihedrals]
        self._validate()

        self._neighbors = build_neighbors_from_bonds(self.bonds)
        self._separation = self._compute_separation()

    def _validate(self) -> None:
        """Validate indices and per-atom array sizes."""
        n_atoms = len(self.atom_names)
        for label, values in (('atom_types', self.atom_types), ('charges', self.charges),
                              ('sigma', self.sigma), ('epsilon', self.epsilon)):
            if len(values) != n_atoms:
                raise ValueError(f"{label} has {len(values)} entries, expected {n_atoms}")
        for label, terms in (('Bond', self.bonds), ('Angle', self.angles), ('Dihedral', self.dihedrals)):
            for term_idx, term in enumerate(terms):
                atoms = term[:-1]
                for atom in atoms:
                    if not isinstance(atom, (int, np.integer)):
                        raise ValueError(f"{label} {term_idx} atom indices must be integers")
                    if atom < 0 or atom >= n_atoms:
                        raise ValueError(f"{label} {term_idx} atom index {atom} out of range [0, {n_atoms-1}]")
                if len(set(atoms)) != len(atoms):
                    raise ValueError(f"{label} {term_idx} repeats an atom: {atoms}")

    def _compute_separation(self) -> np.ndarray:
        n_atoms = self.num_atoms
        separation = np.full((n_atoms, n_atoms), self.FAR, dtype=int)
        for i in range(n_atoms):
            for distance, atoms in enumerate(get_atoms_at_distances(i, self._neighbors)):
                for j in atoms:
                    separation[i, j] = distance
        return separation

    def __repr__(self) -> str:
        return (f"MoleculeKind(name={self.name!r}, n_atoms={self.num_atoms}, n_bonds={len(self.bonds)}, "
                f"n_angles={len(self.angles)}, n_dihedrals={len(self.dihedrals)})")

    @property
    def num_atoms(self) -> int:
        return len(self.atom_names)

    @property
    def neighbors(self) -> Dict[int, Set[int]]:
        """Bonded neighbours of each atom (returns copy)."""
        return copy.deepcopy(dict(self._neighbors))

    def separation(self, i: int, j: int) -> int:
        """
        Number of bonds between two atoms, capped at ``MoleculeKind.FAR``.

        Pairs in different connected components also report ``FAR``.
        """
        return int(self._separation[i, j])

    def atoms_beyond_1_4(self, atom: int) -> np.ndarray:
        """Indices of atoms separated from ``atom`` by four or more bonds."""
        return np.nonzero(self._separation[atom] >= self.FAR)[0]

    def atom_bonds(self, atom: int) -> List[Bond]:
        """All bonds involving ``atom``, oriented so that ``a0 == atom``."""
        result = []
        for bond in self.bonds:
            if bond.a0 == atom:
                result.append(bond)
            elif bond.a1 == atom:
                result.append(Bond(bond.a1, bond.a0, bond.kind))
        return result

    def atom_end_angles(self, atom: int) -> List[Angle]:
        """All angles with ``atom`` as a terminal, oriented so that ``a0 == atom``."""
        result = []
        for angle in self.angles:
            if angle.a0 == atom:
                result.append(angle)
            elif angle.a2 == atom:
                result.append(Angle(angle.a2, angle.a1, angle.a0, angle.kind))
        return result

    def atom_end_dihedrals(self, atom: int) -> List[Dihedral]:
        """All dihedrals with ``atom`` as a terminal, oriented so that ``a0 == atom``."""
        result = []
        for dih in self.dihedrals:
            if dih.a0 == atom:
                result.append(dih)
            elif dih.a3 == atom:
                result.append(Dihedral(dih.a3, dih.a2, dih.a1, dih.a0, dih.kind))
        return result

    @classmethod
    def from_bonds(cls, name: str, atom_types: Sequence[str],
                   bonds: Sequence[Tuple[int, int]],
                   atom_names: Optional[Sequence[str]] = None,
                   charges: Optional[Sequence[float]] = None,
                   sigma: Optional[Sequence[float]] = None,
                   epsilon: Optional[Sequence[float]] = None) -> 'MoleculeKind':
        """
        Create a molecule kind generating angles and dihedrals from bonds.

        Every path of three atoms in the bond graph becomes an angle, every path
        of four atoms a dihedral. Kinds are the canonical tuples of the atom
        types along each term (see ``canonical_kind``), so a force field keyed by
        type tuples can serve any kind built this way.

        Parameters
        ----------
        name : str
            Kind name
        atom_types : Sequence[str]
            Atom type of each atom
        bonds : Sequence[Tuple[int, int]]
            Bonded pairs (0-based)
        atom_names : Optional[Sequence[str]]
            Atom names; defaults to type plus index
        charges, sigma, epsilon : Optional[Sequence[float]]
            Per-atom nonbonded parameters

        Returns
        -------
        MoleculeKind
            Molecule kind with generated angles and dihedrals
        """
        atom_types = list(atom_types)
        if atom_names is None:
            atom_names = [f"{atype}{idx}" for idx, atype in enumerate(atom_types)]
        neighbors = build_neighbors_from_bonds(bonds)

        def kind_of(*atoms):
            return canonical_kind(*(atom_types[a] for a in atoms))

        bond_terms = [(a0, a1, kind_of(a0, a1)) for a0, a1 in bonds]

        angle_terms = []
        for vertex in sorted(neighbors):
            ends = sorted(neighbors[vertex])
            for i, a0 in enumerate(ends):
                for a2 in ends[i + 1:]:
                    angle_terms.append((a0, vertex, a2, kind_of(a0, vertex, a2)))

        dihedral_terms = []
        for a1, a2 in sorted((min(b[0], b[1]), max(b[0], b[1])) for b in bonds):
            for a0 in sorted(neighbors[a1] - {a2}):
                for a3 in sorted(neighbors[a2] - {a1}):
                    if a3 == a0:
                        continue
                    dihedral_terms.append((a0, a1, a2, a3, kind_of(a0, a1, a2, a3)))

        return cls(name, atom_names, bond_terms, angle_terms, dihedral_terms,
                   charges=charges, sigma=sigma, epsilon=epsilon, atom_types=atom_types)

    @classmethod
    def from_topology(cls, topology: Topology, name: Optional[str] = None,
                      atom_types: Optional[Sequence[str]] = None,
                      charges: Optional[Sequence[float]] = None,
                      sigma: Optional[Sequence[float]] = None,
                      epsilon: Optional[Sequence[float]] = None) -> 'MoleculeKind':
        """
        Create a molecule kind from an OpenMM topology.

        Atom types default to the element symbols of the topology atoms.

        Parameters
        ----------
        topology : openmm.app.Topology
            Topology with atoms and bonds of a single molecule
        name : Optional[str]
            Kind name; defaults to the name of the first residue
        atom_types : Optional[Sequence[str]]
            Atom types overriding the element symbols
        charges, sigma, epsilon : Optional[Sequence[float]]
            Per-atom nonbonded parameters

        Returns
        -------
        MoleculeKind
            Molecule kind with generated angles and dihedrals
        """
        atoms = list(topology.atoms())
        if atom_types is None:
            atom_types = [atom.element.symbol if atom.element is not None else atom.name for atom in atoms]
        if name is None:
            residues = list(topology.residues())
            name = residues[0].name if residues else 'MOL'
        bonds = [(bond.atom1.index, bond.atom2.index) for bond in topology.bonds()]
        return cls.from_bonds(name, atom_types, bonds,
                              atom_names=[atom.name for atom in atoms],
                              charges=charges, sigma=sigma, epsilon=epsilon)
