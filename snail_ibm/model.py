"""Simulation loop: snails ↔ parasites ↔ resource ↔ predator.

Daily tick, in fixed order:
  1. Read the environment (F, M, Z, G)
  2. If any snails are alive:
       a. Infection: multinomial partition of the miracidia stock
       b. Predation: per-agent hazard (background + type-II predator)
       c. DEB integration of every agent (no inter-agent dependency)
       d. Derived masses; release of whole eggs / cercariae
       e. Survival draws; compaction of the agent table
       f. Environment update from aggregated outputs
     Otherwise: closed-form environment update, empty table
  3. Births from eggs laid INCUBATION_TICKS earlier
  4. Record and advance

Every random draw comes from a named stream (see rng.py) in table order,
and all DEB results are collected before the first survival draw, so runs
with the same seed are identical regardless of integrator threading.
"""

from __future__ import annotations

import logging
from multiprocessing import Pool
from typing import Dict, List, Optional

import numpy as np

from snail_ibm.config import (
    SimulationConfig,
    default_config,
    override_config,
    validate_config,
)
from snail_ibm.deb import DEBIntegrator, derived_masses, make_integrator
from snail_ibm.demography import (
    add_hatchlings,
    draw_survival,
    hatch,
    incubated_eggs,
    release_quanta,
)
from snail_ibm.environment import (
    Environment,
    InputSchedule,
    build_input_schedule,
    initial_environment,
    update_environment,
    update_environment_empty,
)
from snail_ibm.infection import apply_infections, partition_miracidia
from snail_ibm.output import SimulationResult
from snail_ibm.perf import PerfMonitor
from snail_ibm.predation import predation_hazard
from snail_ibm.rng import create_rng_streams, replicate_seeds
from snail_ibm.types import (
    CERCARIA_QUANTUM,
    DEB_STATE_FIELDS,
    EGG_QUANTUM,
    AgentTable,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# POPULATION INITIALIZATION
# ═══════════════════════════════════════════════════════════════════════

def update_derived_masses(agents: np.ndarray, config: SimulationConfig) -> None:
    """Recompute DEBmass and Appmass in place."""
    deb_mass, app_mass = derived_masses(agents['L'], agents['e'], agents['LG'], config.deb)
    agents['DEBmass'] = deb_mass
    agents['Appmass'] = app_mass


def initialize_population(config: SimulationConfig,
                          rng: np.random.Generator) -> AgentTable:
    """Founding snails with L ~ U(L_min, L_max), LG = L, default e.

    IDs run 1..n_initial.
    """
    sim = config.simulation
    table = AgentTable(capacity=max(64, 2 * sim.n_initial))
    L = rng.uniform(sim.L_min, sim.L_max, sim.n_initial)
    table.add(sim.n_initial, L=L, LG=L, e=sim.e_init, tick=0)
    update_derived_masses(table.view(), config)
    return table


# ═══════════════════════════════════════════════════════════════════════
# ONE TICK FOR A NON-EMPTY POPULATION
# ═══════════════════════════════════════════════════════════════════════

def advance_population(
    tick: int,
    table: AgentTable,
    env: Environment,
    config: SimulationConfig,
    integrator: DEBIntegrator,
    rngs: Dict[str, np.random.Generator],
    schedule: InputSchedule,
    perf: PerfMonitor,
) -> Dict[str, int]:
    """Infection → predation → DEB → release → survival → environment.

    Mutates `table` and `env` in place.

    Returns:
        Per-tick counts: infections, miracidia_free, miracidia_died,
        deaths, repaired, cercariae, eggs.
    """
    tr = config.transmission
    agents = table.view()

    with perf.track("infection"):
        outcome = partition_miracidia(env.M, agents['L'], tr, rngs['infection'])
        agents['P'] = apply_infections(agents['P'], outcome.infections, tr)

    with perf.track("predation"):
        hazard = predation_hazard(
            agents['LG'], config.predation,
            baseline=config.demography.background_hazard,
        )

    with perf.track("deb"):
        agents['HAZ'] = 0.0
        state = np.column_stack([agents[f] for f in DEB_STATE_FIELDS])
        out = integrator.integrate(state, agents['LG'], env.F, hazard, tr.step)
        for j, name in enumerate(DEB_STATE_FIELDS):
            agents[name] = out.state[:, j]
        agents['HAZ'] = out.HAZ
        agents['LG'] = out.LG
        agents['t'] = tick
        update_derived_masses(agents, config)

    agents['repro'], agents['RH'] = release_quanta(agents['RH'], EGG_QUANTUM)
    agents['Cercs'], agents['RP'] = release_quanta(agents['RP'], CERCARIA_QUANTUM)
    eggs = int(agents['repro'].sum())
    cercariae = int(agents['Cercs'].sum())
    ingested = float(out.ingested.sum())

    with perf.track("demography"):
        survived = draw_survival(out.survival, rngs['survival'])
        deaths = table.keep(survived)

    with perf.track("environment"):
        update_environment(
            env, tick,
            ingested_total=ingested,
            miracidia_free=outcome.n_free,
            cercariae_released=cercariae,
            eggs_released=eggs,
            config=config,
            schedule=schedule,
        )

    return {
        'infections': outcome.n_infected,
        'miracidia_free': outcome.n_free,
        'miracidia_died': outcome.n_died,
        'deaths': deaths,
        'repaired': int(out.repaired.sum()),
        'cercariae': cercariae,
        'eggs': eggs,
    }


# ═══════════════════════════════════════════════════════════════════════
# SIMULATION
# ═══════════════════════════════════════════════════════════════════════

def _record(result: SimulationResult, tick: int, table: AgentTable,
            env: Environment, record_agents: bool) -> None:
    agents = table.view()
    result.env[tick] = env.as_row(tick)
    result.population[tick] = len(table)
    result.n_infected[tick] = int(np.count_nonzero(agents['P'] > 0.0))
    if record_agents:
        result.agents.append(table.snapshot())


def run_simulation(
    config: Optional[SimulationConfig] = None,
    integrator: Optional[DEBIntegrator] = None,
    perf: Optional[PerfMonitor] = None,
) -> SimulationResult:
    """Run one simulation for config.simulation.n_ticks ticks.

    Args:
        config: Run configuration; defaults if None.
        integrator: DEB integrator; built from config.deb if None.
        perf: Optional timing monitor.

    Returns:
        SimulationResult with the per-tick environment series and agent tables.

    Raises:
        ConfigError: If the configuration is invalid. Checked before the
            first tick, including for configs built from the section classes.
    """
    if config is None:
        config = default_config()
    validate_config(config)
    if integrator is None:
        integrator = make_integrator(config)
    if perf is None:
        perf = PerfMonitor(enabled=False)
    perf.start()

    sim = config.simulation
    dem = config.demography
    n_ticks = sim.n_ticks

    rngs = create_rng_streams(sim.seed)
    schedule = build_input_schedule(config)
    table = initialize_population(config, rngs['init'])
    env = initial_environment(config)
    egg_history = np.zeros(n_ticks + 1, dtype=np.int64)

    result = SimulationResult.allocate(config)
    _record(result, 0, table, env, sim.record_agents)
    logger.info(
        "starting run: %d ticks, %d snails, seed %d, predation=%s",
        n_ticks, len(table), sim.seed, config.predation.policy,
    )

    for tick in range(1, n_ticks + 1):
        if len(table) > 0:
            counts = advance_population(
                tick, table, env, config, integrator, rngs, schedule, perf,
            )
            result.infections[tick] = counts['infections']
            result.miracidia_free[tick] = counts['miracidia_free']
            result.miracidia_died[tick] = counts['miracidia_died']
            result.deaths[tick] = counts['deaths']
            result.repaired[tick] = counts['repaired']
            result.cercariae_released[tick] = counts['cercariae']
        else:
            with perf.track("environment"):
                update_environment_empty(env, tick, config, schedule)
                table.clear()

        egg_history[tick] = env.G

        with perf.track("births"):
            n_eggs = incubated_eggs(egg_history, tick)
            n_born = hatch(n_eggs, dem.hatch, rngs['hatching'])
            if n_born > 0:
                start = len(table)
                add_hatchlings(table, n_born, tick, dem)
                update_derived_masses(table.view()[start:], config)
            result.births[tick] = n_born

        _record(result, tick, table, env, sim.record_agents)
        logger.debug(
            "tick %d: N=%d F=%.4g M=%d Z=%.4g G=%d births=%d deaths=%d",
            tick, len(table), env.F, env.M, env.Z, env.G,
            n_born, result.deaths[tick],
        )

    perf.stop()
    logger.info(
        "run complete: final population %d, total cercariae %d",
        len(table), int(result.cercariae_released.sum()),
    )
    return result


# ═══════════════════════════════════════════════════════════════════════
# REPLICATES
# ═══════════════════════════════════════════════════════════════════════

def replicate_configs(config: SimulationConfig,
                      n_replicates: int) -> List[SimulationConfig]:
    """One configuration per replicate, differing only in seed."""
    seeds = replicate_seeds(config.simulation.seed, n_replicates)
    return [override_config(config, {'simulation': {'seed': s}}) for s in seeds]


def run_replicates(
    config: SimulationConfig,
    n_replicates: int,
    workers: int = 1,
) -> List[SimulationResult]:
    """Run independent replicates; results are in replicate order.

    With workers > 1 replicates run in a process pool.
    """
    configs = replicate_configs(config, n_replicates)
    if workers <= 1 or n_replicates <= 1:
        return [run_simulation(c) for c in configs]
    with Pool(processes=workers) as pool:
        return pool.map(run_simulation, configs)
