"""Shared fixtures for snail-ibm tests."""

import pytest

from snail_ibm.config import SimulationConfig, default_config, override_config


def small_config(**sections) -> SimulationConfig:
    """Short, small run on the vectorized RK4 integrator.

    Keyword arguments are section dicts merged over the small defaults, e.g.
    small_config(predation={'pred_N': 2.0}).
    """
    base = {
        'simulation': {'n_ticks': 12, 'n_initial': 8, 'seed': 7},
        'deb': {'integrator': 'rk4', 'substeps': 8},
        'transmission': {'M_in': 20},
    }
    for key, values in sections.items():
        base.setdefault(key, {}).update(values)
    return override_config(default_config(), base)


@pytest.fixture
def cfg() -> SimulationConfig:
    return small_config()
