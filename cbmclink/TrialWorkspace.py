#!/usr/bin/env python3
"""
Shared Trial Workspace

This module provides the arena reused by every link evaluation of a
simulation: scratch buffers sized to the maximum number of angle, dihedral
and placement trials, plus handles to the random source, the force field and
the energy evaluators.

Buffers are mutated in place on every call. A workspace therefore serves one
evaluation at a time; concurrent workers each need their own workspace (see
``TrialWorkspace.replicate``), and ``TrialWorkspace.claim`` raises
``WorkspaceBusyError`` when that contract is broken.

Classes:
    LinkSettings: Trial counts and fan-out configuration
    TrialWorkspace: Scratch buffers and collaborators
    WorkspaceBusyError: Raised when a workspace is claimed twice
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional

import numpy as np

from .ForceField import ForceFieldParams
from .LongRangeEnergy import EwaldCalculator
from .RandomSource import RandomSource
from .ShortRangeEnergy import PairwiseEnergyCalculator

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_ANGLE_TRIALS = 100
DEFAULT_DIHEDRAL_TRIALS = 10
DEFAULT_LJ_TRIALS = 4
DEFAULT_MAX_WORKERS = 4


class WorkspaceBusyError(RuntimeError):
    """A workspace was claimed while another evaluation was using it."""


@dataclass(frozen=True)
class LinkSettings:
    """
    Simulation-wide trial counts.

    Attributes
    ----------
    n_angle_trials : int
        Bond angle trials per link (retracing draws one fewer)
    n_dih_trials : int
        Dihedral trials per placement
    n_lj_trials : int
        Candidate placements evaluated against the nonbonded energy
    parallel : bool
        Evaluate the independent nonbonded energy kinds concurrently
    max_workers : int
        Size of the thread pool used when ``parallel`` is set
    """
    n_angle_trials: int = DEFAULT_ANGLE_TRIALS
    n_dih_trials: int = DEFAULT_DIHEDRAL_TRIALS
    n_lj_trials: int = DEFAULT_LJ_TRIALS
    parallel: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS

    def __post_init__(self):
        for name in ('n_angle_trials', 'n_dih_trials', 'n_lj_trials', 'max_workers'):
            value = getattr(self, name)
            if not isinstance(value, (int, np.integer)) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")


class TrialWorkspace:
    """
    Scratch buffers and collaborators shared by link evaluations.

    Parameters
    ----------
    forcefield : ForceFieldParams
        Force field tables
    calc : PairwiseEnergyCalculator
        Short-range energy evaluator
    prng : RandomSource
        Random stream owned by this workspace
    ewald : Optional[EwaldCalculator]
        Long-range evaluator; None when electrostatics are not Ewald-summed
    settings : Optional[LinkSettings]
        Trial counts; defaults to ``LinkSettings()``
    """

    def __init__(self, forcefield: ForceFieldParams, calc: PairwiseEnergyCalculator,
                 prng: RandomSource, ewald: Optional[EwaldCalculator] = None,
                 settings: Optional[LinkSettings] = None):
        self.forcefield = forcefield
        self.calc = calc
        self.prng = prng
        self.ewald = ewald
        self.settings = settings if settings is not None else LinkSettings()

        n_angle = self.settings.n_angle_trials
        n_dih = self.settings.n_dih_trials
        n_lj = self.settings.n_lj_trials

        # Angle trials
        self.angles = np.zeros(n_angle)
        self.angle_energy = np.zeros(n_angle)
        self.angle_weights = np.zeros(n_angle)
        self.nonbonded_1_3 = np.zeros(n_angle)

        # Dihedral trials of one placement
        self.dihedrals = np.zeros(n_dih)
        self.dihedral_energy = np.zeros(n_dih)
        self.dihedral_weights = np.zeros(n_dih)
        self.nonbonded_1_4 = np.zeros(n_dih)

        # Placements (LJ trials)
        self.positions = np.zeros((n_lj, 3))
        self.lj_weights = np.zeros(n_lj)
        self.bonded = np.zeros(n_lj)
        self.one_four = np.zeros(n_lj)
        self.trial_theta = np.zeros(n_lj)
        self.trial_phi = np.zeros(n_lj)
        self.inter = np.zeros(n_lj)
        self.real = np.zeros(n_lj)
        self.nonbonded = np.zeros(n_lj)
        self.self_energy = np.zeros(n_lj)
        self.correction = np.zeros(n_lj)

        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.settings.parallel:
            self._executor = ThreadPoolExecutor(max_workers=self.settings.max_workers,
                                                thread_name_prefix='cbmclink')

    def __repr__(self) -> str:
        s = self.settings
        return (f"TrialWorkspace(n_angle_trials={s.n_angle_trials}, n_dih_trials={s.n_dih_trials}, "
                f"n_lj_trials={s.n_lj_trials}, parallel={s.parallel})")

    def __enter__(self) -> 'TrialWorkspace':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Shut down the thread pool, if any."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    @property
    def beta(self) -> float:
        return self.forcefield.beta

    @contextmanager
    def claim(self) -> Iterator['TrialWorkspace']:
        """
        Hold the workspace for the duration of one evaluation.

        Raises
        ------
        WorkspaceBusyError
            If another evaluation currently holds the workspace
        """
        if not self._lock.acquire(blocking=False):
            raise WorkspaceBusyError("TrialWorkspace is already in use by another evaluation; "
                                     "use one workspace per concurrent worker")
        try:
            yield self
        finally:
            self._lock.release()

    def run_tasks(self, tasks: List[Callable[[], None]]) -> None:
        """
        Run independent tasks and wait for all of them.

        Tasks must write disjoint buffers. With a thread pool they run
        concurrently; otherwise in order. Exceptions propagate to the caller.
        """
        if self._executor is None:
            for task in tasks:
                task()
            return
        futures = [self._executor.submit(task) for task in tasks]
        for future in futures:
            future.result()

    def replicate(self, n: int) -> List['TrialWorkspace']:
        """
        Independent workspaces for ``n`` concurrent workers.

        Each replica shares the read-only collaborators but owns its buffers
        and a random stream spawned from this workspace's stream.
        """
        streams = self.prng.spawn(n)
        logger.debug(f"replicate: creating {n} workspaces with independent random streams")
        return [TrialWorkspace(self.forcefield, self.calc, stream, self.ewald, self.settings)
                for stream in streams]
