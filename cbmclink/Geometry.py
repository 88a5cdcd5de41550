#!/usr/bin/env python3
"""
Geometry Utilities

This module provides the geometry needed to grow an atom from internal
coordinates: periodic box handling, distances/angles/dihedrals between points,
closed-form distances implied by internal coordinates, and the conversion of
(bond length, bond angle, dihedral) into Cartesian positions in the local frame
of a growing chain.

Conventions:
    - Lengths in Angstroms, angles in radians
    - Growth frame anchored at ``focus``: ``w`` points from focus to prev,
      ``u`` is the component of (prevprev - prev) orthogonal to ``w``, and
      ``v = w x u``
    - theta is the angle prev-focus-atom; phi = 0 places the atom cis to prevprev

Classes:
    BoxDimensions: Orthorhombic periodic box (or no box)

Functions:
    calc_distance: Distance between two points
    calc_angle: Angle at the middle of three points
    calc_dihedral: Dihedral angle of four points
    angle_dist_sq: Squared 1-3 distance implied by two bonds and an angle
    dihedral_dist_sq: Squared 1-4 distance implied by internal coordinates
    growth_basis: Orthonormal growth frame for a chain
    virtual_reference: Reference point for a chain without a prevprev atom
    internal_to_cartesian: Position from (r, theta, phi) in a growth frame
    cartesian_to_internal: (theta, phi) of a position in a growth frame
"""

import math
from typing import Optional, Sequence, Tuple

import numpy as np

# Vectors shorter than this are treated as degenerate
_EPS = 1e-10


class BoxDimensions:
    """
    Orthorhombic periodic box.

    A box created without lengths is non-periodic: wrapping is the identity
    and the minimum image of a vector is the vector itself.

    Attributes
    ----------
    lengths : Optional[np.ndarray]
        Box edge lengths (3,) in Angstroms, or None for no periodicity
    """

    def __init__(self, lengths: Optional[Sequence[float]] = None):
        if lengths is None:
            self.lengths = None
        else:
            self.lengths = np.asarray(lengths, dtype=float).reshape(3)
            if np.any(self.lengths <= 0.0):
                raise ValueError(f"Box lengths must be positive, got {self.lengths}")

    def __repr__(self) -> str:
        return f"BoxDimensions(lengths={None if self.lengths is None else self.lengths.tolist()})"

    @property
    def periodic(self) -> bool:
        return self.lengths is not None

    def wrap(self, positions: np.ndarray) -> np.ndarray:
        """Wrap positions into the primary cell, in place. Returns the array."""
        if self.lengths is not None:
            positions -= self.lengths * np.floor(positions / self.lengths)
        return positions

    def min_image(self, delta: np.ndarray) -> np.ndarray:
        """Minimum image convention applied to displacement vectors."""
        delta = np.asarray(delta, dtype=float)
        if self.lengths is None:
            return delta
        return delta - self.lengths * np.round(delta / self.lengths)

    def distance_sq(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """
        Squared minimum-image distance between points.

        Broadcasts over leading dimensions: ``a`` of shape (N, 3) against
        ``b`` of shape (M, 1, 3) gives an (M, N) result.
        """
        delta = self.min_image(np.asarray(b, dtype=float) - np.asarray(a, dtype=float))
        return np.sum(delta * delta, axis=-1)


# =============================================================================
# Geometry Calculation Helpers
# =============================================================================

def calc_distance(p1: np.ndarray, p2: np.ndarray) -> float:
    """Distance between two points."""
    return float(np.linalg.norm(np.asarray(p2) - np.asarray(p1)))


def calc_angle(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray) -> float:
    """
    Calculate angle at p2 between p1-p2-p3.

    Returns
    -------
    float
        Angle in radians, 0 for degenerate (zero-length) arms
    """
    v1 = np.asarray(p1, dtype=float) - np.asarray(p2, dtype=float)
    v2 = np.asarray(p3, dtype=float) - np.asarray(p2, dtype=float)
    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 < _EPS or norm2 < _EPS:
        return 0.0
    cos_angle = np.clip(np.dot(v1, v2) / (norm1 * norm2), -1.0, 1.0)
    return float(np.arccos(cos_angle))


def calc_dihedral(p1: np.ndarray, p2: np.ndarray, p3: np.ndarray, p4: np.ndarray) -> float:
    """
    Calculate dihedral angle for atoms p1-p2-p3-p4 (atan2 method).

    Returns
    -------
    float
        Dihedral in radians on [-pi, pi], 0 for collinear arrangements
    """
    b1 = np.asarray(p2, dtype=float) - np.asarray(p1, dtype=float)
    b2 = np.asarray(p3, dtype=float) - np.asarray(p2, dtype=float)
    b3 = np.asarray(p4, dtype=float) - np.asarray(p3, dtype=float)

    n1 = np.cross(b1, b2)
    n2 = np.cross(b2, b3)
    norm_n1 = np.linalg.norm(n1)
    norm_n2 = np.linalg.norm(n2)
    norm_b2 = np.linalg.norm(b2)

    if norm_n1 > _EPS and norm_n2 > _EPS and norm_b2 > _EPS:
        n1 = n1 / norm_n1
        n2 = n2 / norm_n2
        m1 = np.cross(n1, b2 / norm_b2)
        x = np.dot(n1, n2)
        y = np.dot(m1, n2)
        return float(-np.arctan2(y, x))
    return 0.0


def angle_dist_sq(b1: float, b2: float, theta: float) -> float:
    """
    Squared distance between the terminal atoms of an angle.

    Parameters
    ----------
    b1, b2 : float
        Lengths of the two bonds meeting at the vertex
    theta : float
        Angle at the vertex (radians)
    """
    return b1 * b1 + b2 * b2 - 2.0 * b1 * b2 * math.cos(theta)


def dihedral_dist_sq(b0: float, b1: float, b2: float,
                     theta1: float, theta2: float, phi: float) -> float:
    """
    Squared distance between the terminal atoms of a dihedral A-B-C-D.

    Parameters
    ----------
    b0, b1, b2 : float
        Bond lengths A-B, B-C, C-D
    theta1 : float
        Angle A-B-C (radians)
    theta2 : float
        Angle B-C-D (radians)
    phi : float
        Dihedral A-B-C-D (radians)
    """
    cos1, sin1 = math.cos(theta1), math.sin(theta1)
    cos2, sin2 = math.cos(theta2), math.sin(theta2)
    return (b0 * b0 + b1 * b1 + b2 * b2
            - 2.0 * b0 * b1 * cos1
            - 2.0 * b1 * b2 * cos2
            + 2.0 * b0 * b2 * (cos1 * cos2 - sin1 * sin2 * math.cos(phi)))


# =============================================================================
# Growth Frame
# =============================================================================

def virtual_reference(focus: np.ndarray, prev: np.ndarray) -> np.ndarray:
    """
    Deterministic reference point standing in for a missing prevprev atom.

    The point lies one Angstrom from ``prev``, perpendicular to the
    focus-prev bond, on the side of the Cartesian axis least aligned with it.
    """
    w = np.asarray(prev, dtype=float) - np.asarray(focus, dtype=float)
    w = w / np.linalg.norm(w)
    axis = np.zeros(3)
    axis[int(np.argmin(np.abs(w)))] = 1.0
    perpendicular = axis - np.dot(axis, w) * w
    return np.asarray(prev, dtype=float) + perpendicular / np.linalg.norm(perpendicular)


def growth_basis(focus: np.ndarray, prev: np.ndarray, prevprev: np.ndarray) -> np.ndarray:
    """
    Orthonormal growth frame anchored at ``focus``.

    Parameters
    ----------
    focus, prev, prevprev : np.ndarray
        Unwrapped positions of the chain atoms (prev and prevprev already
        brought to the minimum image of focus)

    Returns
    -------
    np.ndarray
        3x3 array with rows ``u``, ``v``, ``w``

    Raises
    ------
    ValueError
        If focus and prev coincide
    """
    focus = np.asarray(focus, dtype=float)
    prev = np.asarray(prev, dtype=float)
    w = prev - focus
    rw = np.linalg.norm(w)
    if rw < _EPS:
        raise ValueError(f"Degenerate growth frame: focus and prev coincide (distance {rw:.2e} Å)")
    w = w / rw

    ref = np.asarray(prevprev, dtype=float) - prev
    u = ref - np.dot(ref, w) * w
    ru = np.linalg.norm(u)
    if ru < _EPS:
        # prevprev on the focus-prev line
        u = virtual_reference(focus, prev) - prev
        ru = np.linalg.norm(u)
    u = u / ru
    v = np.cross(w, u)
    return np.array([u, v, w])


def internal_to_cartesian(origin: np.ndarray, basis: np.ndarray,
                          r: float, theta: float, phi: float) -> np.ndarray:
    """
    Cartesian position of an atom from internal coordinates.

    Parameters
    ----------
    origin : np.ndarray
        Position of the focus atom
    basis : np.ndarray
        Growth frame from ``growth_basis``
    r : float
        Bond length focus-atom
    theta : float
        Angle prev-focus-atom (radians)
    phi : float
        Dihedral prevprev-prev-focus-atom (radians)

    Returns
    -------
    np.ndarray
        Position (3,)
    """
    sin_theta = math.sin(theta)
    local = np.array([sin_theta * math.cos(phi), sin_theta * math.sin(phi), math.cos(theta)])
    return np.asarray(origin, dtype=float) + r * (local @ basis)


def cartesian_to_internal(origin: np.ndarray, basis: np.ndarray,
                          position: np.ndarray) -> Tuple[float, float, float]:
    """
    Internal coordinates of a position in a growth frame.

    Returns
    -------
    Tuple[float, float, float]
        (r, theta, phi) with theta on [0, pi] and phi on [0, 2*pi)
    """
    delta = np.asarray(position, dtype=float) - np.asarray(origin, dtype=float)
    r = float(np.linalg.norm(delta))
    if r < _EPS:
        return r, 0.0, 0.0
    local = basis @ (delta / r)
    theta = float(np.arccos(np.clip(local[2], -1.0, 1.0)))
    phi = float(np.arctan2(local[1], local[0])) % (2.0 * math.pi)
    return r, theta, phi
