"""Exposure and infection of snails by free-living miracidia.

Each miracidium faces competing exponential hazards over one step: death
at rate m_M and encounter with snail i at rate ε/ENV. An encounter infects
with probability σ; a failed encounter kills the miracidium. With
S = Σ rate_i and q = exp(−(m_M + S)·step):

    P(free)       = q
    P(infects i)  = (1 − q)·σ·rate_i / (m_M + S)
    P(dies)       = (1 − q)·m_M / (m_M + S)
                    + Σ_i (1 − q)·(1 − σ)·rate_i / (m_M + S)

The whole stock M is partitioned with a single multinomial draw over
[free, infect_1 … infect_N, dies]. Each miracidium assigned to snail i
adds P_increment to that snail's parasite biomass.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from snail_ibm.config import TransmissionSection
from snail_ibm.types import InvariantViolation

# Tolerance on Σ outcome probabilities
_PROB_TOL = 1e-9


@dataclass
class InfectionOutcome:
    """Result of partitioning the miracidia stock for one tick."""
    infections: np.ndarray  # (N,) miracidia that infected each agent
    n_free: int             # miracidia returned to the free pool
    n_died: int             # miracidia that died (natural or failed encounter)

    @property
    def n_infected(self) -> int:
        return int(self.infections.sum())


def encounter_rates(L: np.ndarray, cfg: TransmissionSection) -> np.ndarray:
    """Per-agent encounter rate ε/ENV, zero for agents with L ≤ 0."""
    L = np.asarray(L, dtype=np.float64)
    return np.where(L > 0.0, cfg.epsilon / cfg.ENV, 0.0)


def outcome_probabilities(rates: np.ndarray, cfg: TransmissionSection) -> np.ndarray:
    """Multinomial probabilities [free, infect_1 … infect_N, dies].

    Raises:
        InvariantViolation: If the probabilities do not sum to 1.
    """
    rates = np.asarray(rates, dtype=np.float64)
    total = cfg.m_M + rates.sum()
    probs = np.zeros(len(rates) + 2, dtype=np.float64)
    if total <= 0.0:
        probs[0] = 1.0
        return probs

    p_free = np.exp(-total * cfg.step)
    p_leave = 1.0 - p_free
    probs[0] = p_free
    probs[1:-1] = p_leave * cfg.sigma * rates / total
    probs[-1] = (p_leave * cfg.m_M / total
                 + np.sum(p_leave * (1.0 - cfg.sigma) * rates / total))

    err = abs(probs.sum() - 1.0)
    if err > _PROB_TOL:
        raise InvariantViolation(
            f"infection outcome probabilities sum to {probs.sum():.12f}"
        )
    return probs


def partition_miracidia(
    M: int,
    L: np.ndarray,
    cfg: TransmissionSection,
    rng: np.random.Generator,
) -> InfectionOutcome:
    """Assign every miracidium to infection, death or persistence.

    Args:
        M: Miracidia stock (count).
        L: (N,) structural lengths of living agents.
        cfg: Transmission configuration.
        rng: The 'infection' stream.

    Raises:
        InvariantViolation: If outcome counts do not sum to M.
    """
    M = int(M)
    rates = encounter_rates(L, cfg)
    probs = outcome_probabilities(rates, cfg)
    # absorb float rounding so numpy sees Σ p[:-1] ≤ 1
    probs = np.clip(probs, 0.0, 1.0)
    probs /= probs.sum()
    counts = rng.multinomial(M, probs)

    if int(counts.sum()) != M:
        raise InvariantViolation(
            f"multinomial consumed {int(counts.sum())} of {M} miracidia"
        )
    return InfectionOutcome(
        infections=counts[1:-1].astype(np.int64),
        n_free=int(counts[0]),
        n_died=int(counts[-1]),
    )


def apply_infections(P: np.ndarray, infections: np.ndarray,
                     cfg: TransmissionSection) -> np.ndarray:
    """Parasite biomass after adding P_increment per successful miracidium."""
    return np.asarray(P, dtype=np.float64) + infections * cfg.P_increment
