"""DEB integrator for snail hosts with a within-host parasite.

The right-hand side is a kappa-rule Dynamic Energy Budget model in
scaled-reserve form:

    f        = F / (Fh + F)                       scaled functional response
    ingest   = iM · f · L²
    p_C      = e·EM·L² · (EG·v + pM·L) / (EG + κ·e·EM),   v = yEF·iM / EM
    dL/dt    = (κ·p_C − pM·L³) / (3·EG·L²)        negative when starving
    dE/dt    = yEF·ingest − p_C − a_P,            e = E / (EM·L³)

Maturity D accrues (1 − κ)·p_C − kJ·D until puberty (D = DR); afterwards
that flux fills the egg buffer RH, reduced by parasitic castration. The
parasite P drains reserve at a_P = iPM·e·P·c / (c + P) with c = ph·L³,
splitting the uptake between its own biomass and the cercarial buffer RP.
Damage DAM accrues with parasite density and is repaired at rate kr.
HAZ integrates baseline + θ·DAM + starvation hazard over the step and
ING integrates food ingested, both from zero each day.

Two integrators implement the same batch contract:
  - SolveIVPIntegrator: scipy.integrate.solve_ivp, one call per agent
    (optionally on a thread pool)
  - RK4Integrator: fixed-step classical Runge–Kutta, vectorized over agents

Non-finite output is coerced to zero and reported (see coerce_nonfinite).
"""

from __future__ import annotations

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Tuple

import numpy as np
from scipy.integrate import solve_ivp

from snail_ibm.config import DEBSection, SimulationConfig
from snail_ibm.demography import survival_probability
from snail_ibm.types import (
    DEB_STATE_FIELDS,
    IntegrationError,
    NonFiniteStateWarning,
)

logger = logging.getLogger(__name__)

# Row layout of the integrated vector: DEB state, then HAZ and ING
N_DEB = len(DEB_STATE_FIELDS)
IDX_HAZ = N_DEB
IDX_ING = N_DEB + 1
N_ODE = N_DEB + 2


# ═══════════════════════════════════════════════════════════════════════
# RIGHT-HAND SIDE
# ═══════════════════════════════════════════════════════════════════════

def functional_response(food: float, Fh: float) -> float:
    """Scaled type-II feeding response f ∈ [0, 1)."""
    if food <= 0:
        return 0.0
    return food / (Fh + food)


def deb_rhs(t, y, food, baseline_hazard, p: DEBSection):
    """Derivatives of (L, e, D, RH, P, RP, DAM, HAZ, ING).

    Works on a single state (shape (9,)) or a batch (shape (9, N)); the
    hazard may be a scalar or an (N,) array. Agents with L ≤ 0 are inert
    apart from the baseline hazard.
    """
    y = np.asarray(y, dtype=np.float64)
    L = np.maximum(y[0], 0.0)
    e = np.maximum(y[1], 0.0)
    D = np.maximum(y[2], 0.0)
    P = np.maximum(y[4], 0.0)
    DAM = np.maximum(y[6], 0.0)

    alive = L > 0.0
    Ls = np.where(alive, L, 1.0)
    L2 = Ls * Ls
    L3 = L2 * Ls

    f = functional_response(food, p.Fh)
    ingestion = p.iM * f * L2
    v = p.yEF * p.iM / p.EM
    E_dens = e * p.EM
    p_C = E_dens * L2 * (p.EG * v + p.pM * Ls) / (p.EG + p.kappa * E_dens)

    cap = p.ph * L3
    a_P = p.iPM * e * P * cap / (cap + P)

    dL = (p.kappa * p_C - p.pM * L3) / (3.0 * p.EG * L2)
    dE = p.yEF * ingestion - p_C - a_P
    de = dE / (p.EM * L3) - 3.0 * e * dL / Ls

    p_R = (1.0 - p.kappa) * p_C - p.kJ * np.minimum(D, p.DR)
    mature = D >= p.DR
    dD = np.where(mature, 0.0, p_R)
    dRH = np.where(mature, np.maximum(p_R, 0.0) * cap / (cap + P), 0.0)

    dP = p.yPE * (1.0 - p.alpha) * a_P - p.mP * P
    dRP = p.yRP * p.alpha * a_P
    dDAM = p.kd * P / L3 - p.kr * DAM

    if p.e_crit > 0:
        starve = p.h_starve * np.maximum(0.0, 1.0 - e / p.e_crit)
    else:
        starve = 0.0
    dHAZ = baseline_hazard + p.theta * DAM + starve

    out = np.stack(np.broadcast_arrays(
        dL, de, dD, dRH, dP, dRP, dDAM, dHAZ, ingestion,
    )).astype(np.float64)
    live = alive.astype(np.float64)
    out[:IDX_HAZ] *= live
    out[IDX_HAZ] = np.where(alive, out[IDX_HAZ], baseline_hazard)
    out[IDX_ING] *= live
    return out


# ═══════════════════════════════════════════════════════════════════════
# DERIVED QUANTITIES
# ═══════════════════════════════════════════════════════════════════════

def derived_masses(L: np.ndarray, e: np.ndarray, LG: np.ndarray,
                   p: DEBSection) -> Tuple[np.ndarray, np.ndarray]:
    """DEBmass (structure + reserve) and Appmass (DEBmass + shell).

    Returns:
        (DEBmass, Appmass), both in mg C.
    """
    L3 = np.asarray(L, dtype=np.float64) ** 3
    deb_mass = L3 * (p.struct_density + np.asarray(e) * p.EM)
    app_mass = deb_mass + p.shell_coef * np.asarray(LG, dtype=np.float64) ** p.shell_exp
    return deb_mass, app_mass


def coerce_nonfinite(values: np.ndarray) -> np.ndarray:
    """Replace NaN/±inf with 0 in place (per column of a (k, N) batch).

    Returns:
        Boolean mask (N,) of columns that contained a non-finite value.
    """
    bad = ~np.isfinite(values)
    repaired = bad.any(axis=0)
    if repaired.any():
        values[bad] = 0.0
    return repaired


# ═══════════════════════════════════════════════════════════════════════
# INTEGRATORS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class DEBOutput:
    """One step of DEB integration for a batch of N agents."""
    state: np.ndarray      # (N, 7) L, e, D, RH, P, RP, DAM
    HAZ: np.ndarray        # (N,) hazard accumulated over the step
    survival: np.ndarray   # (N,) exp(−HAZ)
    LG: np.ndarray         # (N,) grown (shell) length, never decreasing
    ingested: np.ndarray   # (N,) food eaten over the step (mg C)
    repaired: np.ndarray   # (N,) bool, non-finite output coerced to zero


class DEBIntegrator:
    """Base class: advances a batch of agents by one time unit.

    Subclasses implement `_advance(y0, food, hazard, dt)` on a (9, N)
    initial vector whose HAZ and ING rows are zero.
    """

    def __init__(self, params: DEBSection, on_nonfinite: str = "repair"):
        if on_nonfinite not in ("repair", "raise"):
            raise ValueError(f"on_nonfinite must be 'repair' or 'raise', got {on_nonfinite!r}")
        self.params = params
        self.on_nonfinite = on_nonfinite

    def _advance(self, y0: np.ndarray, food: float, hazard: np.ndarray,
                 dt: float) -> np.ndarray:
        raise NotImplementedError

    def integrate(
        self,
        state: np.ndarray,
        LG: np.ndarray,
        food: float,
        hazard: np.ndarray,
        dt: float = 1.0,
    ) -> DEBOutput:
        """Advance every agent by dt.

        Args:
            state: (N, 7) array of L, e, D, RH, P, RP, DAM.
            LG: (N,) current shell length.
            food: Shared resource density for the step.
            hazard: (N,) baseline hazard (background + predation).
            dt: Time step (days).
        """
        state = np.asarray(state, dtype=np.float64).reshape(-1, N_DEB)
        n = state.shape[0]
        hazard = np.broadcast_to(np.asarray(hazard, dtype=np.float64), (n,))
        y0 = np.zeros((N_ODE, n), dtype=np.float64)
        y0[:N_DEB] = state.T

        if n > 0:
            y1 = np.array(self._advance(y0, float(food), hazard, dt),
                          dtype=np.float64)
        else:
            y1 = y0

        repaired = coerce_nonfinite(y1)
        if repaired.any():
            n_bad = int(repaired.sum())
            if self.on_nonfinite == "raise":
                raise IntegrationError(
                    f"non-finite DEB output for {n_bad} of {n} agents"
                )
            logger.warning("coerced non-finite DEB output to zero for %d agents", n_bad)
            warnings.warn(
                f"non-finite DEB output coerced to zero for {n_bad} agents",
                NonFiniteStateWarning,
                stacklevel=2,
            )
        np.maximum(y1, 0.0, out=y1)

        new_state = y1[:N_DEB].T.copy()
        haz = y1[IDX_HAZ].copy()
        LG_new = np.maximum(np.asarray(LG, dtype=np.float64), new_state[:, 0])
        return DEBOutput(
            state=new_state,
            HAZ=haz,
            survival=survival_probability(haz),
            LG=LG_new,
            ingested=y1[IDX_ING].copy(),
            repaired=repaired,
        )


class SolveIVPIntegrator(DEBIntegrator):
    """One `solve_ivp` call per agent.

    Agents share no state during a step, so with workers > 1 the calls
    run on a thread pool; results are collected in agent order.
    """

    def __init__(self, params: DEBSection, on_nonfinite: str = "repair",
                 workers: int = 1):
        super().__init__(params, on_nonfinite)
        self.workers = max(int(workers), 1)

    def _solve_one(self, y0: np.ndarray, food: float, hazard: float,
                   dt: float) -> np.ndarray:
        p = self.params
        with np.errstate(all='ignore'):
            sol = solve_ivp(
                deb_rhs, (0.0, dt), y0,
                method=p.method,
                args=(food, hazard, p),
                rtol=p.rtol,
                atol=p.atol,
            )
        if not sol.success:
            logger.debug("solve_ivp failed: %s", sol.message)
            return np.full(N_ODE, np.nan)
        return sol.y[:, -1]

    def _advance(self, y0, food, hazard, dt):
        n = y0.shape[1]
        jobs = [(y0[:, i], food, float(hazard[i]), dt) for i in range(n)]
        if self.workers > 1 and n > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as ex:
                cols = list(ex.map(lambda job: self._solve_one(*job), jobs))
        else:
            cols = [self._solve_one(*job) for job in jobs]
        return np.column_stack(cols)


class RK4Integrator(DEBIntegrator):
    """Fixed-step classical Runge–Kutta, vectorized across all agents."""

    def __init__(self, params: DEBSection, on_nonfinite: str = "repair",
                 substeps: int = 24):
        super().__init__(params, on_nonfinite)
        if substeps < 1:
            raise ValueError(f"substeps must be >= 1, got {substeps}")
        self.substeps = int(substeps)

    def _advance(self, y0, food, hazard, dt):
        p = self.params
        h = dt / self.substeps
        y = y0.copy()
        with np.errstate(all='ignore'):
            for k in range(self.substeps):
                t = k * h
                k1 = deb_rhs(t, y, food, hazard, p)
                k2 = deb_rhs(t + h / 2, y + h / 2 * k1, food, hazard, p)
                k3 = deb_rhs(t + h / 2, y + h / 2 * k2, food, hazard, p)
                k4 = deb_rhs(t + h, y + h * k3, food, hazard, p)
                y = y + h / 6.0 * (k1 + 2 * k2 + 2 * k3 + k4)
        return y


def make_integrator(config: SimulationConfig) -> DEBIntegrator:
    """Build the integrator named by config.deb.integrator."""
    deb = config.deb
    sim = config.simulation
    if deb.integrator == "rk4":
        return RK4Integrator(deb, sim.on_nonfinite, substeps=deb.substeps)
    return SolveIVPIntegrator(deb, sim.on_nonfinite, workers=sim.workers)
