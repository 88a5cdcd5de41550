"""
CBMCLink

This package provides the link growth step of configurational-bias Monte Carlo:
- Bond length, bond angle and dihedral trials biased by their Boltzmann factors
- Nonbonded reweighting of candidate positions (Lennard-Jones, real-space and
  Ewald electrostatics)
- Rosenbluth weights for growing a new conformation and retracing an old one
"""

__version__ = "1.0.0"

# Import main classes for easier access
from .DCLink import DCLink, LinkResult, LinkState
from .ForceField import AngleParameters, BondParameters, DihedralParameters, ForceFieldParams
from .Geometry import BoxDimensions
from .LinkTopology import LinkTopology, MalformedTopologyError, resolve_link
from .LongRangeEnergy import EwaldCalculator
from .MoleculeKind import MoleculeKind
from .RandomSource import RandomSource
from .ShortRangeEnergy import MoleculeCoordinates, PairwiseEnergyCalculator
from .TrialMolecule import Energy, TrialMolecule
from .TrialWorkspace import LinkSettings, TrialWorkspace, WorkspaceBusyError
from .BondSampler import SamplingError

__all__ = [
    'DCLink',
    'LinkResult',
    'LinkState',
    'AngleParameters',
    'BondParameters',
    'DihedralParameters',
    'ForceFieldParams',
    'BoxDimensions',
    'LinkTopology',
    'MalformedTopologyError',
    'resolve_link',
    'EwaldCalculator',
    'MoleculeKind',
    'RandomSource',
    'MoleculeCoordinates',
    'PairwiseEnergyCalculator',
    'Energy',
    'TrialMolecule',
    'LinkSettings',
    'TrialWorkspace',
    'WorkspaceBusyError',
    'SamplingError',
]
