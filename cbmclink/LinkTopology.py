#!/usr/bin/env python3
"""
Link Topology Lookup

Resolves, for a growing atom and its focus atom within a molecule kind, the
bonded terms that control the growth step: the focus-atom bond, the angle
ending at the atom with the focus as vertex, and the dihedral ending at the
atom across the focus. The chain atoms ``prev`` and ``prevprev`` anchor the
local frame in which the atom is placed.

Missing angle or dihedral terms are a legitimate chain-terminus case and are
reported as absent (``None``). A growing atom that is not bonded to its focus
is a configuration error: ``resolve_link`` returns a failed resolution that the
caller must handle, and ``LinkResolution.unwrap`` raises
``MalformedTopologyError``.
"""

import logging
from dataclasses import dataclass
from typing import Hashable, Optional

from .ForceField import ForceFieldParams
from .MoleculeKind import MoleculeKind

logger = logging.getLogger(__name__)


class MalformedTopologyError(ValueError):
    """The growing atom and focus atom do not form a valid link."""


@dataclass(frozen=True)
class LinkTopology:
    """
    Bonded context of one growth step.

    Attributes
    ----------
    atom : int
        Growing atom
    focus : int
        Already placed atom bonded to ``atom``
    prev : Optional[int]
        Atom bonded to ``focus`` that closes the bond angle, None if absent
    prevprev : Optional[int]
        Atom bonded to ``prev`` that closes the dihedral, None if absent
    bond_kind : Hashable
    angle_kind : Optional[Hashable]
    dihedral_kind : Optional[Hashable]
    bond_fixed : bool
        The bond length is rigid
    angle_fixed : bool
        The bond angle is rigid
    eq_bond_length : float
        Equilibrium focus-atom bond length
    fixed_angle : Optional[float]
        Rigid angle value (radians) when ``angle_fixed``
    """
    atom: int
    focus: int
    prev: Optional[int]
    prevprev: Optional[int]
    bond_kind: Hashable
    angle_kind: Optional[Hashable]
    dihedral_kind: Optional[Hashable]
    bond_fixed: bool
    angle_fixed: bool
    eq_bond_length: float
    fixed_angle: Optional[float] = None

    @property
    def has_angle(self) -> bool:
        return self.angle_kind is not None

    @property
    def has_dihedral(self) -> bool:
        return self.dihedral_kind is not None


@dataclass(frozen=True)
class LinkResolution:
    """Outcome of ``resolve_link``: a topology or an error message."""
    topology: Optional[LinkTopology] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.topology is not None

    def unwrap(self) -> LinkTopology:
        """
        Return the topology.

        Raises
        ------
        MalformedTopologyError
            If the resolution failed
        """
        if self.topology is None:
            raise MalformedTopologyError(self.error)
        return self.topology


def resolve_link(kind: MoleculeKind, forcefield: ForceFieldParams,
                 atom: int, focus: int) -> LinkResolution:
    """
    Resolve the bonded context of growing ``atom`` from ``focus``.

    Parameters
    ----------
    kind : MoleculeKind
        Connectivity of the molecule kind
    forcefield : ForceFieldParams
        Force field tables supplying fixed flags and equilibrium values
    atom : int
        Growing atom (0-based)
    focus : int
        Focus atom (0-based)

    Returns
    -------
    LinkResolution
        Successful resolution with a LinkTopology, or failure with a message
    """
    n_atoms = kind.num_atoms
    for label, idx in (('atom', atom), ('focus', focus)):
        if idx < 0 or idx >= n_atoms:
            return LinkResolution(error=f"{label} index {idx} out of range [0, {n_atoms-1}] "
                                        f"for molecule kind {kind.name!r}")
    if atom == focus:
        return LinkResolution(error=f"atom and focus are the same atom ({atom})")

    bond = next((b for b in kind.atom_bonds(atom) if b.a1 == focus), None)
    if bond is None:
        return LinkResolution(error=f"atom {atom} is not bonded to focus {focus} "
                                    f"in molecule kind {kind.name!r}")

    dihedral = next((d for d in kind.atom_end_dihedrals(atom) if d.a1 == focus), None)
    angles = [a for a in kind.atom_end_angles(atom) if a.a1 == focus]
    angle = None
    if dihedral is not None:
        angle = next((a for a in angles if a.a2 == dihedral.a2), None)
        if angle is None:
            return LinkResolution(error=f"dihedral {tuple(dihedral[:4])} has no matching angle "
                                        f"({atom}, {focus}, {dihedral.a2}) in molecule kind {kind.name!r}")
    elif angles:
        angle = angles[0]
    if len(angles) > 1:
        logger.debug(f"resolve_link: {len(angles)} angles end at atom {atom} around focus {focus}; "
                     f"using prev={angle.a2}")

    prev = angle.a2 if angle is not None else None
    prevprev = dihedral.a3 if dihedral is not None else None

    for table, term in ((forcefield.bonds, bond), (forcefield.angles, angle), (forcefield.dihedrals, dihedral)):
        if term is not None and term.kind not in table:
            return LinkResolution(error=f"force field has no parameters for kind {term.kind!r} "
                                        f"needed by link ({atom}, {focus})")

    bond_fixed = forcefield.bond_fixed(bond.kind)
    eq_bond_length = forcefield.bond_length(bond.kind)
    angle_fixed = angle is not None and forcefield.angle_fixed(angle.kind)
    fixed_angle = forcefield.angle(angle.kind) if angle_fixed else None

    topology = LinkTopology(
        atom=atom,
        focus=focus,
        prev=prev,
        prevprev=prevprev,
        bond_kind=bond.kind,
        angle_kind=angle.kind if angle is not None else None,
        dihedral_kind=dihedral.kind if dihedral is not None else None,
        bond_fixed=bond_fixed,
        angle_fixed=angle_fixed,
        eq_bond_length=eq_bond_length,
        fixed_angle=fixed_angle,
    )
    return LinkResolution(topology=topology)
