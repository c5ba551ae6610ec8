"""Size-selective predation hazard.

Predators follow a type-II functional response shared by the whole prey
population: per-capita prey mortality from N_pred predators is

    h_pred = a·N_pred / (1 + a·h·N)

where N is the number of living snails. How that hazard falls on each
snail depends on its shell length LG under one of two exclusive policies:

  window:       h_pred for gape_min ≤ LG ≤ gape_max, 0 otherwise
  exponential:  h_pred · exp(−gradient·LG) for every snail

The baseline (background) hazard is added to every snail under both.
"""

from __future__ import annotations

import numpy as np

from snail_ibm.config import PredationSection
from snail_ibm.types import PredationPolicy


def type2_response(pred_N: float, a: float, h: float, N: int) -> float:
    """Per-prey hazard a·N_pred / (1 + a·h·N)."""
    if pred_N <= 0.0 or a <= 0.0:
        return 0.0
    return a * pred_N / (1.0 + a * h * N)


def window_selectivity(LG: np.ndarray, gape_min: float,
                       gape_max: float) -> np.ndarray:
    """1 inside the gape window (inclusive), 0 outside."""
    LG = np.asarray(LG, dtype=np.float64)
    return ((LG >= gape_min) & (LG <= gape_max)).astype(np.float64)


def exponential_selectivity(LG: np.ndarray, gradient: float) -> np.ndarray:
    """exp(−gradient·LG); decays with size for gradient > 0, grows for < 0."""
    return np.exp(-gradient * np.asarray(LG, dtype=np.float64))


def predation_hazard(
    LG: np.ndarray,
    cfg: PredationSection,
    baseline: float = 0.0,
) -> np.ndarray:
    """Per-agent hazard (baseline + predation) for the current population.

    Args:
        LG: (N,) shell lengths of the living agents; N sets the density.
        cfg: Predation configuration.
        baseline: Background hazard added to every agent.

    Returns:
        (N,) hazard array.
    """
    LG = np.asarray(LG, dtype=np.float64)
    h_pred = type2_response(cfg.pred_N, cfg.pred_a, cfg.pred_h, len(LG))
    if h_pred == 0.0:
        return np.full(len(LG), float(baseline))

    if cfg.policy == PredationPolicy.WINDOW.value:
        selectivity = window_selectivity(LG, cfg.gape_min, cfg.gape_max)
    elif cfg.policy == PredationPolicy.EXPONENTIAL.value:
        selectivity = exponential_selectivity(LG, cfg.gradient)
    else:
        raise ValueError(f"unknown predation policy {cfg.policy!r}")
    return baseline + h_pred * selectivity
