"""Survival, egg and cercaria release, and delayed births.

Survival: an agent dies this tick iff u < 1 − exp(−HAZ), u ~ U[0, 1),
one draw per agent in table order from the 'survival' stream. HAZ is the
hazard accumulated over this tick only.

Release: the egg buffer RH and the cercarial buffer RP are converted into
whole quanta (EGG_QUANTUM, CERCARIA_QUANTUM); the remainder stays in the
buffer and is always strictly smaller than one quantum.

Births: eggs laid INCUBATION_TICKS earlier hatch with probability `hatch`
(one binomial draw from the 'hatching' stream). Hatchlings enter the table
with fresh IDs at the fixed birth size.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from snail_ibm.config import DemographySection
from snail_ibm.types import INCUBATION_TICKS, AgentTable


# ═══════════════════════════════════════════════════════════════════════
# SURVIVAL
# ═══════════════════════════════════════════════════════════════════════

def survival_probability(HAZ: np.ndarray) -> np.ndarray:
    """exp(−HAZ): 1 at HAZ = 0, strictly decreasing in HAZ."""
    return np.exp(-np.asarray(HAZ, dtype=np.float64))


def draw_survival(survival: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Boolean survival mask, one uniform variate per agent.

    Args:
        survival: (N,) probability exp(−HAZ) of surviving this tick, as
            returned by the DEB integrator.
        rng: The 'survival' stream.
    """
    survival = np.asarray(survival, dtype=np.float64)
    u = rng.random(len(survival))
    dies = u < 1.0 - survival
    return ~dies


# ═══════════════════════════════════════════════════════════════════════
# RELEASE OF WHOLE QUANTA
# ═══════════════════════════════════════════════════════════════════════

def release_quanta(buffer: np.ndarray, quantum: float) -> Tuple[np.ndarray, np.ndarray]:
    """Split buffers into released whole units and the retained remainder.

    Uses floor-division with an exact remainder, so
    count·quantum + remainder ≈ buffer and 0 ≤ remainder < quantum.

    Returns:
        (counts as int64, remainder)
    """
    buffer = np.maximum(np.asarray(buffer, dtype=np.float64), 0.0)
    counts, remainder = np.divmod(buffer, quantum)
    # fmod can land a hair above zero only; guard the upper bound anyway
    over = remainder >= quantum
    if over.any():
        counts[over] += 1
        remainder[over] = 0.0
    return counts.astype(np.int64), remainder


# ═══════════════════════════════════════════════════════════════════════
# BIRTHS
# ═══════════════════════════════════════════════════════════════════════

def incubated_eggs(egg_history: np.ndarray, tick: int) -> int:
    """Eggs laid INCUBATION_TICKS before `tick` (0 until that many have passed).

    Args:
        egg_history: Eggs laid per tick, index = tick.
    """
    src = tick - INCUBATION_TICKS
    if src < 1:
        return 0
    return int(egg_history[src])


def hatch(n_eggs: int, p_hatch: float, rng: np.random.Generator) -> int:
    """Binomial(n_eggs, p_hatch) hatchlings."""
    if n_eggs <= 0:
        return 0
    return int(rng.binomial(int(n_eggs), p_hatch))


def add_hatchlings(table: AgentTable, n: int, tick: int,
                   cfg: DemographySection) -> np.ndarray:
    """Append n hatchlings at the fixed birth size. Returns their IDs."""
    return table.add(n, L=cfg.birth_L, LG=cfg.birth_L, e=cfg.birth_e, tick=tick)
