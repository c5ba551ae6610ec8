"""Seeded RNG streams for reproducible simulations.

Uses NumPy's SeedSequence → PCG64 hierarchy so that each stochastic
process draws from its own stream:
  - 'init':      initial lengths of the founding population
  - 'infection': multinomial partition of the miracidia stock
  - 'survival':  per-agent survival draws
  - 'hatching':  binomial hatching of incubated eggs

Each stream is consumed in a fixed order every tick, so the same seed
replays bit-for-bit, and work that carries no randomness (DEB integration)
can run concurrently without perturbing any draw.
"""

from __future__ import annotations

from typing import Dict, List

import numpy as np

STREAM_NAMES = ('init', 'infection', 'survival', 'hatching')


def create_rng_streams(seed: int) -> Dict[str, np.random.Generator]:
    """Create independent RNG streams for one simulation run.

    Args:
        seed: Master RNG seed (non-negative integer).

    Returns:
        Dictionary mapping stream names to numpy Generator instances.

    Example:
        >>> rngs = create_rng_streams(42)
        >>> rngs['survival'].random(3)  # reproducible
    """
    ss = np.random.SeedSequence(seed)
    child_seeds = ss.spawn(len(STREAM_NAMES))
    return {
        name: np.random.Generator(np.random.PCG64(child))
        for name, child in zip(STREAM_NAMES, child_seeds)
    }


def replicate_seeds(master_seed: int, n_replicates: int) -> List[int]:
    """Derive independent per-replicate seeds from one master seed."""
    ss = np.random.SeedSequence(master_seed)
    return [int(child.generate_state(1)[0]) for child in ss.spawn(n_replicates)]

