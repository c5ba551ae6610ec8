"""Core data types for snail-ibm.

This module is the SINGLE SOURCE OF TRUTH for:
  - AGENT_DTYPE: NumPy structured array dtype for individual snails
  - ENV_DTYPE: one row of the environment time series
  - AgentTable: the arena holding live snails (stable schema for 0, 1 or N)
  - Release quanta and the egg incubation delay
  - Error types shared across modules

All modules import agent fields from here. No other module defines them.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════

EGG_QUANTUM = 0.015        # mg C per egg released from the RH buffer
CERCARIA_QUANTUM = 4.0e-5  # mg C per cercaria released from the RP buffer
INCUBATION_TICKS = 10      # days between laying and hatching


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class PredationPolicy(str, Enum):
    """Size-selectivity of the predator. Mutually exclusive, never blended."""
    WINDOW = "window"            # uniform hazard inside [gape_min, gape_max]
    EXPONENTIAL = "exponential"  # hazard scaled by exp(-gradient * LG)


class ResourceMode(str, Enum):
    """How the resource pool is replenished each tick."""
    LOGISTIC = "logistic"   # r·F·(1 − F/K), closed form over one step
    DETRITUS = "detritus"   # constant (or pulsed) detrital increment


# ═══════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════

class InvariantViolation(RuntimeError):
    """An internal invariant broke (implementation bug, never recoverable)."""


class IntegrationError(RuntimeError):
    """Non-finite DEB output when the run is configured to abort on it."""


class NonFiniteStateWarning(RuntimeWarning):
    """Non-finite DEB output was coerced to zero (run continues)."""


# ═══════════════════════════════════════════════════════════════════════
# AGENT_DTYPE — canonical structured array for individual snails
# ═══════════════════════════════════════════════════════════════════════

AGENT_DTYPE = np.dtype([
    ('ID',      np.int64),    # unique, monotonically increasing, never reused
    ('L',       np.float64),  # structural length (mm)
    ('e',       np.float64),  # scaled reserve density (-)
    ('D',       np.float64),  # maturity / reproduction investment (mg C)
    ('RH',      np.float64),  # host reproduction buffer, egg mass (mg C)
    ('P',       np.float64),  # parasite biomass within host (mg C)
    ('RP',      np.float64),  # parasite reproduction buffer, cercarial mass (mg C)
    ('DAM',     np.float64),  # cumulative damage (-)
    ('HAZ',     np.float64),  # hazard accumulated over the current day
    ('LG',      np.float64),  # realized (shell) length (mm)
    ('DEBmass', np.float64),  # structure + reserve mass (mg C)
    ('Appmass', np.float64),  # apparent mass incl. shell (mg C)
    ('repro',   np.int64),    # eggs released this tick
    ('Cercs',   np.int64),    # cercariae released this tick
    ('t',       np.int64),    # tick of last update
])

AGENT_FIELDS = AGENT_DTYPE.names

# DEB state carried through the integrator, in vector order
DEB_STATE_FIELDS = ('L', 'e', 'D', 'RH', 'P', 'RP', 'DAM')


ENV_DTYPE = np.dtype([
    ('tick', np.int64),
    ('F',    np.float64),  # resource density (mg C / L)
    ('M',    np.int64),    # miracidia in the environment (count)
    ('Z',    np.float64),  # cercariae density (1 / L)
    ('G',    np.int64),    # eggs laid this tick
])


def allocate_agents(max_n: int) -> np.ndarray:
    """Allocate a zeroed agent array.

    Args:
        max_n: Number of rows (array capacity).

    Returns:
        Zeroed structured array of shape (max_n,) with AGENT_DTYPE.
    """
    return np.zeros(max_n, dtype=AGENT_DTYPE)


# ═══════════════════════════════════════════════════════════════════════
# AGENT TABLE — arena + index
# ═══════════════════════════════════════════════════════════════════════

class AgentTable:
    """Live snails stored in the contiguous prefix of a structured array.

    Rows are kept in creation order, so the ID column is strictly increasing
    and lookups by ID are a binary search. Removal compacts the prefix; the
    dtype never changes, so a table of 0 or 1 agents has exactly the same
    columns as a table of N.
    """

    def __init__(self, capacity: int = 64, next_id: int = 1):
        self._data = allocate_agents(max(int(capacity), 1))
        self._n = 0
        self.next_id = int(next_id)

    def __len__(self) -> int:
        return self._n

    @property
    def capacity(self) -> int:
        return len(self._data)

    def view(self) -> np.ndarray:
        """Writable view of the live rows (invalidated by add/keep)."""
        return self._data[:self._n]

    def snapshot(self) -> np.ndarray:
        """Independent copy of the live rows with AGENT_DTYPE."""
        return self._data[:self._n].copy()

    def _reserve(self, n_total: int) -> None:
        if n_total <= len(self._data):
            return
        new_cap = len(self._data)
        while new_cap < n_total:
            new_cap *= 2
        grown = allocate_agents(new_cap)
        grown[:self._n] = self._data[:self._n]
        self._data = grown

    def add(
        self,
        n: int,
        L,
        LG,
        e,
        tick: int,
    ) -> np.ndarray:
        """Append n new snails with freshly allocated IDs.

        L, LG and e may be scalars or arrays of length n. All other state
        (buffers, parasite, damage, hazard) starts at zero.

        Returns:
            The IDs assigned, shape (n,).
        """
        n = int(n)
        if n < 0:
            raise ValueError(f"cannot add a negative number of agents ({n})")
        ids = np.arange(self.next_id, self.next_id + n, dtype=np.int64)
        if n == 0:
            return ids
        self._reserve(self._n + n)
        rows = self._data[self._n:self._n + n]
        rows[:] = 0
        rows['ID'] = ids
        rows['L'] = L
        rows['LG'] = LG
        rows['e'] = e
        rows['t'] = tick
        self._n += n
        self.next_id += n
        return ids

    def keep(self, mask: np.ndarray) -> int:
        """Retain only rows where mask is True, preserving order.

        Returns:
            Number of rows removed.
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self._n,):
            raise InvariantViolation(
                f"survival mask has shape {mask.shape}, table has {self._n} rows"
            )
        survivors = self._data[:self._n][mask]
        n_keep = len(survivors)
        self._data[:n_keep] = survivors
        self._data[n_keep:self._n] = 0
        removed = self._n - n_keep
        self._n = n_keep
        return removed

    def clear(self) -> None:
        """Install an empty table (IDs keep counting from next_id)."""
        self._data[:self._n] = 0
        self._n = 0

    def index_of(self, agent_id: int) -> Optional[int]:
        """Row index of agent_id, or None if it is not alive."""
        ids = self._data['ID'][:self._n]
        i = int(np.searchsorted(ids, agent_id))
        if i < self._n and ids[i] == agent_id:
            return i
        return None
