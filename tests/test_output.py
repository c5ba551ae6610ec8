"""Tests for snail_ibm.output — result container and .npz persistence."""

import numpy as np
import pytest

from conftest import small_config
from snail_ibm.model import run_simulation
from snail_ibm.output import SimulationResult, load_result, save_result
from snail_ibm.types import AGENT_DTYPE, ENV_DTYPE


class TestSimulationResult:
    def test_allocate(self, cfg):
        result = SimulationResult.allocate(cfg)
        assert result.n_ticks == cfg.simulation.n_ticks
        assert result.env.dtype == ENV_DTYPE
        assert len(result.env) == cfg.simulation.n_ticks + 1
        assert result.births.dtype == np.int64
        assert result.agents == []

    def test_agents_at(self, cfg):
        result = run_simulation(cfg)
        np.testing.assert_array_equal(result.agents_at(0), result.agents[0])


class TestPersistence:
    def test_save_and_load(self, tmp_path, cfg):
        result = run_simulation(cfg)
        path = tmp_path / "nested" / "run.npz"
        save_result(result, path)
        assert path.exists()

        loaded = load_result(path)
        assert loaded.n_ticks == result.n_ticks
        assert loaded.config == result.config
        np.testing.assert_array_equal(loaded.env, result.env)
        np.testing.assert_array_equal(loaded.population, result.population)
        np.testing.assert_array_equal(loaded.cercariae_released,
                                      result.cercariae_released)
        assert len(loaded.agents) == len(result.agents)
        for a, b in zip(loaded.agents, result.agents):
            assert a.dtype == AGENT_DTYPE
            np.testing.assert_array_equal(a, b)

    def test_without_agent_tables(self, tmp_path):
        result = run_simulation(small_config(simulation={'record_agents': False}))
        path = tmp_path / "run.npz"
        save_result(result, path)
        loaded = load_result(path)
        assert loaded.agents == []
        with pytest.raises(ValueError):
            loaded.agents_at(0)

    def test_empty_population(self, tmp_path):
        result = run_simulation(small_config(simulation={'n_initial': 0}))
        path = tmp_path / "empty.npz"
        save_result(result, path)
        loaded = load_result(path)
        assert all(len(a) == 0 for a in loaded.agents)
        assert len(loaded.agents) == result.n_ticks + 1
