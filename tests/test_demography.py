"""Tests for snail_ibm.demography — survival, release and births."""

import numpy as np
import pytest

from snail_ibm.config import DemographySection
from snail_ibm.demography import (
    add_hatchlings,
    draw_survival,
    hatch,
    incubated_eggs,
    release_quanta,
    survival_probability,
)
from snail_ibm.types import CERCARIA_QUANTUM, EGG_QUANTUM, INCUBATION_TICKS, AgentTable


class TestSurvival:
    def test_probability(self):
        np.testing.assert_allclose(survival_probability([0.0, 1.0]), [1.0, np.exp(-1.0)])

    def test_zero_hazard_always_survives(self):
        alive = draw_survival(survival_probability(np.zeros(1000)), np.random.default_rng(0))
        assert alive.all()

    def test_huge_hazard_always_dies(self):
        alive = draw_survival(survival_probability(np.full(100, 1e6)), np.random.default_rng(0))
        assert not alive.any()

    def test_one_draw_per_agent(self):
        rng_a = np.random.default_rng(4)
        rng_b = np.random.default_rng(4)
        draw_survival(np.full(7, 0.3), rng_a)
        rng_b.random(7)
        assert rng_a.random() == rng_b.random()

    def test_death_rate(self):
        HAZ = np.full(100_000, 0.2)
        alive = draw_survival(survival_probability(HAZ), np.random.default_rng(9))
        assert alive.mean() == pytest.approx(np.exp(-0.2), abs=0.01)

    def test_empty(self):
        assert draw_survival(np.zeros(0), np.random.default_rng(0)).shape == (0,)


class TestReleaseQuanta:
    def test_whole_units(self):
        counts, rest = release_quanta(np.array([0.0, 0.014, 0.031, 0.1501]), EGG_QUANTUM)
        np.testing.assert_array_equal(counts, [0, 0, 2, 10])
        assert counts.dtype == np.int64
        assert np.all(rest >= 0.0)
        assert np.all(rest < EGG_QUANTUM)

    def test_mass_conserved(self):
        buffer = np.random.default_rng(1).uniform(0.0, 0.01, 200)
        counts, rest = release_quanta(buffer, CERCARIA_QUANTUM)
        np.testing.assert_allclose(counts * CERCARIA_QUANTUM + rest, buffer, rtol=1e-12)
        assert np.all(rest < CERCARIA_QUANTUM)

    def test_negative_buffer_clipped(self):
        counts, rest = release_quanta(np.array([-1e-9]), EGG_QUANTUM)
        assert counts[0] == 0
        assert rest[0] == 0.0


class TestBirths:
    def test_no_eggs_before_incubation(self):
        history = np.full(30, 100, dtype=np.int64)
        for tick in range(INCUBATION_TICKS + 1):
            assert incubated_eggs(history, tick) == 0

    def test_eggs_from_lag(self):
        history = np.zeros(30, dtype=np.int64)
        history[3] = 17
        assert incubated_eggs(history, 3 + INCUBATION_TICKS) == 17
        assert incubated_eggs(history, 4 + INCUBATION_TICKS) == 0

    def test_hatch_bounds(self):
        rng = np.random.default_rng(2)
        assert hatch(0, 0.5, rng) == 0
        assert hatch(40, 1.0, rng) == 40
        assert hatch(40, 0.0, rng) == 0
        assert 0 <= hatch(40, 0.5, rng) <= 40

    def test_hatch_no_eggs_consumes_no_draw(self):
        rng_a = np.random.default_rng(6)
        rng_b = np.random.default_rng(6)
        hatch(0, 0.5, rng_a)
        assert rng_a.random() == rng_b.random()

    def test_add_hatchlings(self):
        table = AgentTable()
        table.add(2, L=5.0, LG=5.0, e=0.9, tick=0)
        cfg = DemographySection(birth_L=0.75, birth_e=0.8)
        ids = add_hatchlings(table, 3, tick=12, cfg=cfg)
        np.testing.assert_array_equal(ids, [3, 4, 5])
        born = table.view()[2:]
        assert np.all(born['L'] == 0.75)
        assert np.all(born['LG'] == 0.75)
        assert np.all(born['e'] == 0.8)
        assert np.all(born['P'] == 0.0)
        assert np.all(born['t'] == 12)

    @pytest.mark.parametrize("n_eggs,p_hatch", [(40, 0.5), (250, 0.1), (7, 0.9)])
    def test_hatch_binomial_moments(self, n_eggs, p_hatch):
        rng = np.random.default_rng(21)
        draws = np.array([hatch(n_eggs, p_hatch, rng) for _ in range(20_000)])
        mean = n_eggs * p_hatch
        var = n_eggs * p_hatch * (1.0 - p_hatch)
        assert draws.mean() == pytest.approx(mean, rel=0.02)
        assert draws.var() == pytest.approx(var, rel=0.05)
        assert draws.min() >= 0
        assert draws.max() <= n_eggs
