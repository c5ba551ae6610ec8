"""Shared environmental pools and their per-tick updates.

The Environment holds four scalars for the whole (well-mixed) population:
  F  resource density (mg C / L)
  M  miracidia in the water (integer count)
  Z  cercariae density (1 / L)
  G  eggs laid this tick (integer count)

It is created once per run and mutated in place once per tick.

Resource supply is either logistic regrowth (closed form over one step)
or a detrital increment. External inputs that vary in time (detritus,
miracidia) are precomputed into an InputSchedule, so pulsed inputs are
an explicit per-tick lookup rather than a parameter change mid-run.

Update rules with agents present:
  F' = max(0, supply(F) − Σ ingested / ENV)
  M' = miracidia left free by the infection partition + input(t)
  Z' = Z·exp(−m_Z·step) + Σ Cercs / ENV
  G' = Σ repro

With no agents the same rules reduce to closed-form decay/growth, with
M' = round(M·exp(−m_M·step)) + input(t).
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from snail_ibm.config import ResourceSection, SimulationConfig, TransmissionSection
from snail_ibm.types import ENV_DTYPE, ResourceMode


@dataclass
class Environment:
    """Mutable shared pools for one simulation run."""
    F: float = 0.0
    M: int = 0
    Z: float = 0.0
    G: int = 0

    def as_row(self, tick: int) -> np.ndarray:
        """One ENV_DTYPE record of the current state."""
        row = np.zeros((), dtype=ENV_DTYPE)
        row['tick'] = tick
        row['F'] = self.F
        row['M'] = self.M
        row['Z'] = self.Z
        row['G'] = self.G
        return row


def initial_environment(config: SimulationConfig) -> Environment:
    sim = config.simulation
    return Environment(F=float(sim.F_init), M=int(sim.M_init),
                       Z=float(sim.Z_init), G=0)


# ═══════════════════════════════════════════════════════════════════════
# CLOSED-FORM GROWTH AND DECAY
# ═══════════════════════════════════════════════════════════════════════

def logistic_growth(F: float, r: float, K: float, dt: float) -> float:
    """Exact solution of dF/dt = r·F·(1 − F/K) after dt.

    F(dt) = K·F / (F + (K − F)·exp(−r·dt))
    """
    if F <= 0.0:
        return 0.0
    return K * F / (F + (K - F) * np.exp(-r * dt))


def decay(x: float, rate: float, dt: float) -> float:
    """Exponential decay x·exp(−rate·dt)."""
    return x * np.exp(-rate * dt)


# ═══════════════════════════════════════════════════════════════════════
# INPUT SCHEDULE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class InputSchedule:
    """External inputs per tick; index 0 is unused (ticks start at 1)."""
    detritus: np.ndarray   # (n_ticks + 1,) mg C / L added to F
    miracidia: np.ndarray  # (n_ticks + 1,) miracidia added to M

    def detritus_at(self, tick: int) -> float:
        return float(self.detritus[tick])

    def miracidia_at(self, tick: int) -> int:
        return int(self.miracidia[tick])


def _pulsed(n_ticks: int, per_tick: float, ticks, size, dtype) -> np.ndarray:
    out = np.zeros(n_ticks + 1, dtype=dtype)
    if ticks:
        if size is None:
            # same total as continuous input over the run
            size = per_tick * n_ticks / len(ticks)
        out[list(ticks)] = size
    else:
        out[1:] = per_tick
    return out


def build_input_schedule(config: SimulationConfig) -> InputSchedule:
    """Turn continuous/pulsed input settings into per-tick arrays."""
    n = config.simulation.n_ticks
    res: ResourceSection = config.resource
    tr: TransmissionSection = config.transmission

    if res.mode == ResourceMode.DETRITUS.value:
        detritus = _pulsed(n, res.Det, res.pulse_ticks, res.pulse_size, np.float64)
    else:
        detritus = np.zeros(n + 1, dtype=np.float64)

    if tr.M_pulse_ticks:
        size = tr.M_pulse_size
        if size is None:
            size = int(round(tr.M_in * n / len(tr.M_pulse_ticks)))
        miracidia = _pulsed(n, tr.M_in, tr.M_pulse_ticks, size, np.int64)
    else:
        miracidia = _pulsed(n, tr.M_in, (), None, np.int64)
    return InputSchedule(detritus=detritus, miracidia=miracidia)


# ═══════════════════════════════════════════════════════════════════════
# ENVIRONMENT UPDATES
# ═══════════════════════════════════════════════════════════════════════

def resource_supply(F: float, tick: int, res: ResourceSection,
                    schedule: InputSchedule, dt: float) -> float:
    """Resource density after one step of supply, before consumption."""
    if res.mode == ResourceMode.LOGISTIC.value:
        return logistic_growth(F, res.r, res.K, dt)
    return F + schedule.detritus_at(tick)


def update_environment(
    env: Environment,
    tick: int,
    ingested_total: float,
    miracidia_free: int,
    cercariae_released: int,
    eggs_released: int,
    config: SimulationConfig,
    schedule: InputSchedule,
) -> Environment:
    """Apply one tick of pool dynamics from aggregated agent outputs.

    Args:
        env: Environment (modified in place).
        tick: Current tick (1-based).
        ingested_total: Food eaten by all agents this tick (mg C).
        miracidia_free: Miracidia left unconverted by the infection partition.
        cercariae_released: Total cercariae shed this tick.
        eggs_released: Total eggs laid this tick.

    Returns:
        The same Environment object.
    """
    tr = config.transmission
    supplied = resource_supply(env.F, tick, config.resource, schedule, tr.step)
    env.F = max(0.0, float(supplied - ingested_total / tr.ENV))
    env.M = int(miracidia_free) + schedule.miracidia_at(tick)
    env.Z = float(decay(env.Z, tr.m_Z, tr.step) + cercariae_released / tr.ENV)
    env.G = int(eggs_released)
    return env


def update_environment_empty(
    env: Environment,
    tick: int,
    config: SimulationConfig,
    schedule: InputSchedule,
) -> Environment:
    """Closed-form pool dynamics when no snails are alive."""
    tr = config.transmission
    env.F = max(0.0, float(resource_supply(env.F, tick, config.resource,
                                           schedule, tr.step)))
    env.M = int(round(decay(env.M, tr.m_M, tr.step))) + schedule.miracidia_at(tick)
    env.Z = float(decay(env.Z, tr.m_Z, tr.step))
    env.G = 0
    return env
