"""Tests for snail_ibm.model — the coupled simulation loop."""

import math

import numpy as np
import pytest

from conftest import small_config
from snail_ibm.config import (
    ConfigError,
    DemographySection,
    PredationSection,
    SimulationConfig,
)
from snail_ibm.model import (
    initialize_population,
    replicate_configs,
    run_replicates,
    run_simulation,
)
from snail_ibm.types import AGENT_DTYPE, CERCARIA_QUANTUM, EGG_QUANTUM, INCUBATION_TICKS


def _assert_results_equal(a, b):
    np.testing.assert_array_equal(a.env, b.env)
    np.testing.assert_array_equal(a.population, b.population)
    np.testing.assert_array_equal(a.infections, b.infections)
    assert len(a.agents) == len(b.agents)
    for x, y in zip(a.agents, b.agents):
        np.testing.assert_array_equal(x, y)


# ═══════════════════════════════════════════════════════════════════════
# INITIALIZATION
# ═══════════════════════════════════════════════════════════════════════

class TestInitializePopulation:
    def test_lengths_in_range(self, cfg):
        table = initialize_population(cfg, np.random.default_rng(1))
        agents = table.view()
        assert len(table) == cfg.simulation.n_initial
        assert np.all(agents['L'] >= cfg.simulation.L_min)
        assert np.all(agents['L'] <= cfg.simulation.L_max)
        np.testing.assert_array_equal(agents['LG'], agents['L'])
        np.testing.assert_array_equal(agents['ID'], np.arange(1, len(table) + 1))
        assert np.all(agents['DEBmass'] > 0.0)
        assert np.all(agents['Appmass'] > agents['DEBmass'])

    def test_empty(self):
        config = small_config(simulation={'n_initial': 0})
        table = initialize_population(config, np.random.default_rng(1))
        assert len(table) == 0


# ═══════════════════════════════════════════════════════════════════════
# OUTPUT SCHEMA
# ═══════════════════════════════════════════════════════════════════════

class TestSchema:
    @pytest.mark.parametrize("n_initial", [0, 1, 8])
    def test_stable_dtype(self, n_initial):
        result = run_simulation(small_config(simulation={'n_initial': n_initial}))
        assert len(result.agents) == result.n_ticks + 1
        for table in result.agents:
            assert table.dtype == AGENT_DTYPE
        assert len(result.env) == result.n_ticks + 1
        np.testing.assert_array_equal(result.env['tick'], np.arange(result.n_ticks + 1))

    def test_series_lengths(self, cfg):
        result = run_simulation(cfg)
        for name in ('population', 'n_infected', 'infections', 'births',
                     'deaths', 'repaired', 'cercariae_released'):
            assert len(getattr(result, name)) == cfg.simulation.n_ticks + 1

    def test_record_agents_off(self):
        result = run_simulation(small_config(simulation={'record_agents': False}))
        assert result.agents == []
        with pytest.raises(ValueError):
            result.agents_at(3)
        assert result.population[0] == 8


# ═══════════════════════════════════════════════════════════════════════
# INVARIANTS
# ═══════════════════════════════════════════════════════════════════════

class TestInvariants:
    @pytest.fixture
    def result(self):
        return run_simulation(small_config(
            simulation={'n_ticks': 16},
            deb={'DR': 0.0},
            transmission={'M_in': 200, 'epsilon': 5.0},
        ))

    def test_population_accounting(self, result):
        for t in range(1, result.n_ticks + 1):
            assert result.population[t] == (
                result.population[t - 1] - result.deaths[t] + result.births[t]
            )
            assert result.population[t] == len(result.agents[t])

    def test_miracidia_conserved(self, result):
        for t in range(1, result.n_ticks + 1):
            if result.population[t - 1] == 0:
                continue
            total = (result.infections[t] + result.miracidia_free[t]
                     + result.miracidia_died[t])
            assert total == result.env['M'][t - 1]

    def test_release_buffers_below_quantum(self, result):
        for table in result.agents:
            assert np.all(table['RH'] < EGG_QUANTUM)
            assert np.all(table['RP'] < CERCARIA_QUANTUM)
            assert np.all(table['RH'] >= 0.0)

    def test_state_non_negative_and_finite(self, result):
        for table in result.agents:
            for name in ('L', 'e', 'D', 'P', 'DAM', 'HAZ', 'LG'):
                assert np.all(np.isfinite(table[name]))
                assert np.all(table[name] >= 0.0)
        assert np.all(result.env['F'] >= 0.0)
        assert np.all(result.env['M'] >= 0)

    def test_shell_length_monotone(self, result):
        for before, after in zip(result.agents[:-1], result.agents[1:]):
            common, i, j = np.intersect1d(before['ID'], after['ID'],
                                          return_indices=True)
            assert np.all(after['LG'][j] >= before['LG'][i])

    def test_ids_unique_and_ordered(self, result):
        for table in result.agents:
            assert np.all(np.diff(table['ID']) > 0)

    def test_no_births_during_incubation(self, result):
        assert not result.births[:INCUBATION_TICKS + 1].any()

    def test_births_bounded_by_lagged_eggs(self, result):
        G = result.env['G']
        for t in range(INCUBATION_TICKS + 1, result.n_ticks + 1):
            assert result.births[t] <= G[t - INCUBATION_TICKS]

    def test_mature_population_reproduces(self, result):
        assert result.env['G'][1:INCUBATION_TICKS].sum() > 0
        assert result.births.sum() > 0
        newest = result.agents[-1]['ID'].max()
        assert newest > 8

    def test_infection_occurs(self, result):
        assert result.infections.sum() > 0
        assert result.n_infected.max() > 0
        assert np.all(result.n_infected <= result.population)


# ═══════════════════════════════════════════════════════════════════════
# SCENARIOS
# ═══════════════════════════════════════════════════════════════════════

class TestScenarios:
    def test_reproducible(self, cfg):
        _assert_results_equal(run_simulation(cfg), run_simulation(cfg))

    def test_seed_changes_run(self):
        a = run_simulation(small_config(simulation={'seed': 1}))
        b = run_simulation(small_config(simulation={'seed': 2}))
        assert not np.array_equal(a.agents[0]['L'], b.agents[0]['L'])

    def test_single_snail_without_hazard_survives(self):
        result = run_simulation(small_config(
            simulation={'n_initial': 1},
            transmission={'M_in': 0},
            demography={'background_hazard': 0.0},
        ))
        np.testing.assert_array_equal(result.population, 1)
        assert result.agents[-1]['ID'][0] == 1
        assert result.agents[-1]['HAZ'][0] == pytest.approx(0.0, abs=1e-12)

    def test_empty_population_environment(self):
        result = run_simulation(small_config(
            simulation={'n_initial': 0, 'M_init': 1000},
            transmission={'M_in': 0},
        ))
        assert not result.population.any()
        M = result.env['M']
        for t in range(1, result.n_ticks + 1):
            assert M[t] == int(round(M[t - 1] * np.exp(-0.9 * 1.0)))
        assert not result.env['G'].any()

    def test_heavy_predation_extinction(self):
        result = run_simulation(small_config(
            simulation={'n_ticks': 20},
            predation={'pred_N': 50.0, 'gape_min': 0.0, 'gape_max': math.inf},
        ))
        assert result.final_population == 0
        assert result.deaths.sum() == 8

    def test_window_excludes_large_snails(self):
        result = run_simulation(small_config(
            simulation={'L_min': 9.0, 'L_max': 10.0},
            predation={'pred_N': 50.0, 'gape_min': 0.0, 'gape_max': 4.0},
            demography={'background_hazard': 0.0},
            transmission={'M_in': 0},
        ))
        assert result.final_population == 8

    def test_unbounded_window_equals_flat_exponential(self):
        window = run_simulation(small_config(
            predation={'pred_N': 2.0, 'gape_min': 0.0, 'gape_max': math.inf},
        ))
        flat = run_simulation(small_config(
            predation={'pred_N': 2.0, 'policy': 'exponential', 'gradient': 0.0,
                       'gape_min': None, 'gape_max': None},
        ))
        _assert_results_equal(window, flat)

    def test_pulsed_resource(self):
        result = run_simulation(small_config(
            resource={'mode': 'detritus', 'Det': 0.5, 'pulse_ticks': [1, 6]},
        ))
        assert result.env['F'][1] > 0.0

    def test_threaded_solve_ivp_identical(self):
        serial = small_config(
            simulation={'n_ticks': 3, 'n_initial': 4, 'workers': 1},
            deb={'integrator': 'solve_ivp'},
        )
        threaded = small_config(
            simulation={'n_ticks': 3, 'n_initial': 4, 'workers': 2},
            deb={'integrator': 'solve_ivp'},
        )
        _assert_results_equal(run_simulation(serial), run_simulation(threaded))


class TestConfigChecks:
    def test_unknown_policy_rejected_before_first_tick(self):
        config = SimulationConfig(predation=PredationSection(policy='blend', pred_N=0.0))
        with pytest.raises(ConfigError) as excinfo:
            run_simulation(config)
        assert excinfo.value.parameter == 'predation.policy'

    def test_bad_hatch_probability_rejected(self):
        config = SimulationConfig(demography=DemographySection(hatch=1.7))
        with pytest.raises(ConfigError) as excinfo:
            run_simulation(config)
        assert excinfo.value.parameter == 'demography.hatch'

    def test_half_day_tick_halves_hazard(self):
        result = run_simulation(small_config(
            simulation={'n_ticks': 2},
            transmission={'M_in': 0, 'step': 0.5},
            demography={'background_hazard': 0.01},
        ))
        haz = result.agents[1]['HAZ']
        assert len(haz) > 0
        np.testing.assert_allclose(haz, 0.005, rtol=1e-9)


class TestReplicates:
    def test_distinct_seeds(self, cfg):
        configs = replicate_configs(cfg, 3)
        seeds = [c.simulation.seed for c in configs]
        assert len(set(seeds)) == 3
        assert all(c.deb == cfg.deb for c in configs)

    def test_serial_matches_pool(self, cfg):
        serial = run_replicates(cfg, 2, workers=1)
        pooled = run_replicates(cfg, 2, workers=2)
        assert len(serial) == 2
        for a, b in zip(serial, pooled):
            _assert_results_equal(a, b)
