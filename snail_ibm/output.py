"""Simulation output: per-tick time series and agent tables.

The engine's only output is a SimulationResult; summary statistics,
catch/sampling filters and plotting consume it from outside the core.

Layout (index = tick, row 0 = initial state):
  env          ENV_DTYPE records (tick, F, M, Z, G)
  agents       list of AGENT_DTYPE arrays (empty list if not recorded)
  population   living snails after births
  n_infected   living snails carrying parasite biomass
  infections   miracidia that infected hosts; miracidia_free / miracidia_died
  births, deaths, repaired, cercariae_released

Persistence uses one compressed .npz: all agent tables share one dtype,
so they are stored concatenated with an offsets array.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import yaml

from snail_ibm.config import SimulationConfig, config_from_dict, config_to_dict
from snail_ibm.types import AGENT_DTYPE, ENV_DTYPE

_SERIES = (
    'population', 'n_infected', 'infections', 'miracidia_free',
    'miracidia_died', 'births', 'deaths', 'repaired', 'cercariae_released',
)


@dataclass
class SimulationResult:
    """Results of one simulation run."""
    config: Optional[SimulationConfig] = None
    n_ticks: int = 0
    env: Optional[np.ndarray] = None
    agents: List[np.ndarray] = field(default_factory=list)

    population: Optional[np.ndarray] = None
    n_infected: Optional[np.ndarray] = None
    infections: Optional[np.ndarray] = None
    miracidia_free: Optional[np.ndarray] = None
    miracidia_died: Optional[np.ndarray] = None
    births: Optional[np.ndarray] = None
    deaths: Optional[np.ndarray] = None
    repaired: Optional[np.ndarray] = None
    cercariae_released: Optional[np.ndarray] = None

    @classmethod
    def allocate(cls, config: SimulationConfig) -> 'SimulationResult':
        n = config.simulation.n_ticks
        result = cls(config=config, n_ticks=n,
                     env=np.zeros(n + 1, dtype=ENV_DTYPE))
        for name in _SERIES:
            setattr(result, name, np.zeros(n + 1, dtype=np.int64))
        return result

    @property
    def final_population(self) -> int:
        return int(self.population[-1])

    def agents_at(self, tick: int) -> np.ndarray:
        """Agent table recorded at `tick`.

        Raises:
            ValueError: If agent tables were not recorded for this run.
        """
        if not self.agents:
            raise ValueError("agent tables were not recorded (simulation.record_agents=False)")
        return self.agents[tick]


def save_result(result: SimulationResult, path: Union[str, Path]) -> None:
    """Save a result to a compressed .npz file."""
    arrays = {'env': result.env}
    for name in _SERIES:
        arrays[name] = getattr(result, name)

    if result.agents:
        sizes = np.array([len(a) for a in result.agents], dtype=np.int64)
        arrays['agent_offsets'] = np.concatenate([[0], np.cumsum(sizes)])
        arrays['agent_rows'] = np.concatenate(result.agents).astype(AGENT_DTYPE)

    if result.config is not None:
        arrays['config_yaml'] = np.array(yaml.safe_dump(config_to_dict(result.config)))

    Path(path).parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(path, **arrays)


def load_result(path: Union[str, Path]) -> SimulationResult:
    """Load a result written by save_result()."""
    with np.load(path, allow_pickle=False) as data:
        env = data['env']
        result = SimulationResult(n_ticks=len(env) - 1, env=env)
        for name in _SERIES:
            setattr(result, name, data[name])

        if 'agent_rows' in data.files:
            rows = data['agent_rows']
            offsets = data['agent_offsets']
            result.agents = [
                rows[offsets[i]:offsets[i + 1]].copy()
                for i in range(len(offsets) - 1)
            ]

        if 'config_yaml' in data.files:
            result.config = config_from_dict(yaml.safe_load(str(data['config_yaml'])))
    return result
