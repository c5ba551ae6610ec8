"""Configuration system for snail-ibm.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → programmatic overrides

Every section is a frozen dataclass, so a SimulationConfig cannot change
while a run is in progress. Variations between replicate runs are built
with `override_config()`, which returns a new validated object. Time-varying
inputs (pulsed detritus, pulsed miracidia) are expressed as tick lists here
and turned into an explicit per-tick schedule by the environment module.

Units: length mm, mass mg C, food mg C / L, volume L, time days.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from snail_ibm.types import PredationPolicy, ResourceMode


class ConfigError(ValueError):
    """Invalid or missing configuration value.

    Attributes:
        parameter: Dotted name of the offending field, e.g. 'predation.gape_max'.
    """

    def __init__(self, parameter: str, message: str):
        self.parameter = parameter
        super().__init__(f"{parameter}: {message}")


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SimulationSection:
    """Run control and initial conditions."""
    n_ticks: int = 200
    seed: int = 42
    n_initial: int = 60          # initial snails
    L_min: float = 5.0           # initial structural length drawn U(L_min, L_max)
    L_max: float = 10.0
    e_init: float = 0.9          # default scaled reserve density
    F_init: float = 3.0          # initial food (mg C / L)
    M_init: int = 0              # initial miracidia (count)
    Z_init: float = 0.0          # initial cercariae density (1 / L)
    workers: int = 1             # threads for per-agent DEB integration
    record_agents: bool = True   # keep the full per-tick agent tables
    on_nonfinite: str = "repair"  # 'repair' (zero + warn) or 'raise'


@dataclass(frozen=True)
class DEBSection:
    """Host DEB and within-host parasite constants.

    Defaults are broadly calibrated to a Biomphalaria-sized snail
    (maximum structural length ≈ 23 mm at ad libitum food).
    """
    iM: float = 0.0183      # max surface-specific ingestion (mg C mm⁻² d⁻¹)
    Fh: float = 0.5         # half-saturation food density (mg C / L)
    yEF: float = 0.5        # food → reserve assimilation efficiency
    EM: float = 0.0244      # max reserve density (mg C mm⁻³)
    kappa: float = 0.5      # fraction of mobilized reserve to soma
    pM: float = 0.0002      # volume-specific somatic maintenance (mg C mm⁻³ d⁻¹)
    EG: float = 0.02        # cost of structure (mg C mm⁻³)
    kJ: float = 0.002       # maturity maintenance rate (d⁻¹)
    DR: float = 2.0         # maturity at puberty (mg C)
    iPM: float = 0.5        # parasite mass-specific uptake of host reserve (d⁻¹)
    ph: float = 0.001       # parasite half-saturation density in host (mg C mm⁻³)
    yPE: float = 0.8        # host reserve → parasite biomass yield
    yRP: float = 0.8        # host reserve → cercarial mass yield
    alpha: float = 0.3      # fraction of parasite uptake to cercarial production
    mP: float = 0.05        # parasite biomass turnover (d⁻¹)
    kd: float = 1.0         # damage accrual per unit parasite density
    kr: float = 0.2         # damage repair rate (d⁻¹)
    theta: float = 5.0      # hazard per unit damage (d⁻¹)
    h_starve: float = 0.5   # max starvation hazard (d⁻¹)
    e_crit: float = 0.2     # reserve density below which starvation hazard rises
    struct_density: float = 0.05  # structural mass density (mg C mm⁻³)
    shell_coef: float = 0.02      # shell mass coefficient (mg C mm⁻ᶻ)
    shell_exp: float = 2.5        # shell mass–length exponent
    integrator: str = "solve_ivp"  # 'solve_ivp' (per agent) or 'rk4' (vectorized)
    method: str = "LSODA"   # solve_ivp method
    substeps: int = 24      # rk4 steps per tick
    rtol: float = 1e-6
    atol: float = 1e-10


@dataclass(frozen=True)
class TransmissionSection:
    """Free-living parasite stages and infection constants."""
    epsilon: float = 1.0           # per-snail search volume (L d⁻¹)
    sigma: float = 0.5             # infection success per encounter
    ENV: float = 60.0              # environment volume (L)
    m_M: float = 0.9               # miracidial death rate (d⁻¹)
    m_Z: float = 1.0               # cercarial death rate (d⁻¹)
    step: float = 1.0              # length of one tick (d); DEB, infection and decay all use it
    P_increment: float = 2.85e-5   # parasite biomass per successful miracidium (mg C)
    M_in: int = 0                  # miracidia added per tick (continuous)
    M_pulse_ticks: Tuple[int, ...] = ()   # non-empty → pulsed miracidial input
    M_pulse_size: Optional[int] = None    # None → same total as continuous


@dataclass(frozen=True)
class ResourceSection:
    """Resource pool dynamics."""
    mode: str = "logistic"         # 'logistic' or 'detritus'
    r: float = 1.0                 # logistic growth rate (d⁻¹)
    K: float = 3.0                 # carrying capacity (mg C / L)
    Det: float = 0.1               # detrital input per tick (mg C / L)
    pulse_ticks: Tuple[int, ...] = ()      # non-empty → pulsed detrital input
    pulse_size: Optional[float] = None     # None → same total as continuous


@dataclass(frozen=True)
class PredationSection:
    """Size-selective predator with a type-II functional response.

    The 'window' policy uses gape_min/gape_max; the 'exponential' policy
    uses gradient. Parameters of the inactive policy must be left unset.
    """
    pred_N: float = 0.0            # predator density
    pred_a: float = 0.05           # attack rate
    pred_h: float = 0.1            # handling time
    policy: str = "window"
    gape_min: Optional[float] = 0.0
    gape_max: Optional[float] = 8.0
    gradient: Optional[float] = None


@dataclass(frozen=True)
class DemographySection:
    """Background mortality and hatching."""
    background_hazard: float = 0.001  # baseline hazard (d⁻¹)
    hatch: float = 0.5                # egg hatching probability
    birth_L: float = 0.75             # structural and shell length at hatching (mm)
    birth_e: float = 0.9              # reserve density at hatching


@dataclass(frozen=True)
class SimulationConfig:
    """Complete, immutable run configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    deb: DEBSection = field(default_factory=DEBSection)
    transmission: TransmissionSection = field(default_factory=TransmissionSection)
    resource: ResourceSection = field(default_factory=ResourceSection)
    predation: PredationSection = field(default_factory=PredationSection)
    demography: DemographySection = field(default_factory=DemographySection)


_SOLVE_IVP_METHODS = {"RK45", "RK23", "DOP853", "Radau", "BDF", "LSODA"}

_SECTION_MAP = {
    'simulation': SimulationSection,
    'deb': DEBSection,
    'transmission': TransmissionSection,
    'resource': ResourceSection,
    'predation': PredationSection,
    'demography': DemographySection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(name: str, section_cls, data: Dict) -> Any:
    """Convert a dict to a section dataclass. Unknown keys are an error."""
    valid_fields = {f.name: f for f in dataclasses.fields(section_cls)}
    unknown = sorted(set(data) - set(valid_fields))
    if unknown:
        raise ConfigError(f"{name}.{unknown[0]}", "unknown parameter")
    kwargs = {}
    for key, value in data.items():
        # YAML gives lists; frozen sections store tuples
        if isinstance(value, list):
            value = tuple(value)
        kwargs[key] = value
    return section_cls(**kwargs)


def _dict_to_config(data: Dict) -> SimulationConfig:
    """Convert a merged dict to a SimulationConfig."""
    unknown = sorted(set(data) - set(_SECTION_MAP))
    if unknown:
        raise ConfigError(unknown[0], "unknown configuration section")
    sections = {}
    for key, cls in _SECTION_MAP.items():
        value = data.get(key)
        if value is None:
            sections[key] = cls()
        elif isinstance(value, dict):
            sections[key] = _dict_to_section(key, cls, value)
        else:
            raise ConfigError(key, f"expected a mapping, got {type(value).__name__}")
    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict[str, Dict[str, Any]]:
    """Plain nested dict of a configuration (tuples become lists)."""
    out = {}
    for key in _SECTION_MAP:
        section = dataclasses.asdict(getattr(config, key))
        out[key] = {
            k: list(v) if isinstance(v, tuple) else v
            for k, v in section.items()
        }
    return out


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def _require(cond: bool, parameter: str, message: str) -> None:
    if not cond:
        raise ConfigError(parameter, message)


def _check_number(section: Any, name: str, prefix: str,
                  positive: bool = False) -> None:
    value = getattr(section, name)
    param = f"{prefix}.{name}"
    _require(value is not None, param, "required")
    _require(
        isinstance(value, (int, float)) and not isinstance(value, bool),
        param, f"must be a number, got {value!r}",
    )
    _require(not math.isnan(value), param, "must not be NaN")
    if positive:
        _require(value > 0, param, f"must be positive, got {value}")
    else:
        _require(value >= 0, param, f"must be non-negative, got {value}")


def _check_probability(section: Any, name: str, prefix: str) -> None:
    _check_number(section, name, prefix)
    value = getattr(section, name)
    _require(value <= 1.0, f"{prefix}.{name}", f"must be in [0, 1], got {value}")


def _check_ticks(ticks: Tuple[int, ...], n_ticks: int, param: str) -> None:
    for tk in ticks:
        _require(
            isinstance(tk, int) and not isinstance(tk, bool),
            param, f"ticks must be integers, got {tk!r}",
        )
        _require(1 <= tk <= n_ticks, param,
                 f"tick {tk} outside 1..{n_ticks}")
    _require(len(set(ticks)) == len(ticks), param, "duplicate ticks")


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ConfigError on failure.

    Checks:
      - Run length, initial population and initial length range
      - Non-negative rates, positive volumes/steps, probabilities in [0, 1]
      - Resource mode and pulse compatibility
      - Predation policy and its (exclusive) size-selectivity parameters
    """
    sim = config.simulation
    _require(isinstance(sim.n_ticks, int) and sim.n_ticks >= 1,
             "simulation.n_ticks", f"must be an integer >= 1, got {sim.n_ticks!r}")
    _require(isinstance(sim.seed, int) and sim.seed >= 0,
             "simulation.seed", "must be a non-negative integer")
    _require(isinstance(sim.n_initial, int) and sim.n_initial >= 0,
             "simulation.n_initial", f"must be an integer >= 0, got {sim.n_initial!r}")
    _check_number(sim, 'L_min', 'simulation', positive=True)
    _check_number(sim, 'L_max', 'simulation', positive=True)
    _require(sim.L_min <= sim.L_max, "simulation.L_min",
             f"L_min ({sim.L_min}) must be <= L_max ({sim.L_max})")
    _check_number(sim, 'e_init', 'simulation')
    _check_number(sim, 'F_init', 'simulation')
    _require(isinstance(sim.M_init, int) and sim.M_init >= 0,
             "simulation.M_init", "must be an integer >= 0")
    _check_number(sim, 'Z_init', 'simulation')
    _require(isinstance(sim.workers, int) and sim.workers >= 1,
             "simulation.workers", "must be an integer >= 1")
    _require(sim.on_nonfinite in ("repair", "raise"),
             "simulation.on_nonfinite",
             f"must be 'repair' or 'raise', got {sim.on_nonfinite!r}")

    deb = config.deb
    for name in ('iM', 'Fh', 'EM', 'EG', 'pM'):
        _check_number(deb, name, 'deb', positive=True)
    for name in ('kJ', 'DR', 'iPM', 'ph', 'mP', 'kd', 'kr', 'theta',
                 'h_starve', 'e_crit', 'struct_density', 'shell_coef',
                 'shell_exp', 'rtol', 'atol'):
        _check_number(deb, name, 'deb')
    for name in ('yEF', 'kappa', 'yPE', 'yRP', 'alpha'):
        _check_probability(deb, name, 'deb')
    _require(deb.ph > 0, "deb.ph", "must be positive")
    _require(deb.integrator in ("solve_ivp", "rk4"), "deb.integrator",
             f"must be 'solve_ivp' or 'rk4', got {deb.integrator!r}")
    _require(deb.method in _SOLVE_IVP_METHODS, "deb.method",
             f"must be one of {sorted(_SOLVE_IVP_METHODS)}, got {deb.method!r}")
    _require(isinstance(deb.substeps, int) and deb.substeps >= 1,
             "deb.substeps", "must be an integer >= 1")

    tr = config.transmission
    _check_number(tr, 'epsilon', 'transmission')
    _check_probability(tr, 'sigma', 'transmission')
    _check_number(tr, 'ENV', 'transmission', positive=True)
    _check_number(tr, 'm_M', 'transmission')
    _check_number(tr, 'm_Z', 'transmission')
    _check_number(tr, 'step', 'transmission', positive=True)
    _check_number(tr, 'P_increment', 'transmission')
    _require(isinstance(tr.M_in, int) and tr.M_in >= 0,
             "transmission.M_in", "must be an integer >= 0")
    _check_ticks(tr.M_pulse_ticks, sim.n_ticks, "transmission.M_pulse_ticks")
    if tr.M_pulse_size is not None:
        _require(isinstance(tr.M_pulse_size, int) and tr.M_pulse_size >= 0,
                 "transmission.M_pulse_size", "must be an integer >= 0")
        _require(len(tr.M_pulse_ticks) > 0, "transmission.M_pulse_size",
                 "set without M_pulse_ticks")

    res = config.resource
    valid_modes = {m.value for m in ResourceMode}
    _require(res.mode in valid_modes, "resource.mode",
             f"must be one of {sorted(valid_modes)}, got {res.mode!r}")
    _check_number(res, 'r', 'resource')
    _check_number(res, 'K', 'resource', positive=True)
    _check_number(res, 'Det', 'resource')
    _check_ticks(res.pulse_ticks, sim.n_ticks, "resource.pulse_ticks")
    if res.pulse_ticks:
        _require(res.mode == ResourceMode.DETRITUS.value, "resource.pulse_ticks",
                 "pulsed input requires mode 'detritus'")
    if res.pulse_size is not None:
        _check_number(res, 'pulse_size', 'resource')
        _require(len(res.pulse_ticks) > 0, "resource.pulse_size",
                 "set without pulse_ticks")

    pred = config.predation
    _check_number(pred, 'pred_N', 'predation')
    _check_number(pred, 'pred_a', 'predation')
    _check_number(pred, 'pred_h', 'predation')
    valid_policies = {p.value for p in PredationPolicy}
    _require(pred.policy in valid_policies, "predation.policy",
             f"must be one of {sorted(valid_policies)}, got {pred.policy!r}")
    if pred.policy == PredationPolicy.WINDOW.value:
        _check_number(pred, 'gape_min', 'predation')
        _check_number(pred, 'gape_max', 'predation')
        _require(pred.gape_min <= pred.gape_max, "predation.gape_min",
                 f"gape_min ({pred.gape_min}) must be <= gape_max ({pred.gape_max})")
        _require(pred.gradient is None, "predation.gradient",
                 "must be unset under the 'window' policy")
    else:
        _require(pred.gradient is not None, "predation.gradient",
                 "required under the 'exponential' policy")
        _require(isinstance(pred.gradient, (int, float))
                 and math.isfinite(pred.gradient),
                 "predation.gradient", f"must be a finite number, got {pred.gradient!r}")
        _require(pred.gape_min is None and pred.gape_max is None,
                 "predation.gape_min",
                 "gape bounds must be unset under the 'exponential' policy")

    dem = config.demography
    _check_number(dem, 'background_hazard', 'demography')
    _check_probability(dem, 'hatch', 'demography')
    _check_number(dem, 'birth_L', 'demography', positive=True)
    _check_number(dem, 'birth_e', 'demography')


# ═══════════════════════════════════════════════════════════════════════
# ENTRY POINTS
# ═══════════════════════════════════════════════════════════════════════

def _read_yaml(path: Path) -> Dict:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(str(path), "top level must be a mapping")
    return data


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → overrides.
    Each layer overrides only the fields it specifies.

    Raises:
        FileNotFoundError: If base_path (or a given scenario_path) doesn't exist.
        ConfigError: If a key is unknown or validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")
    config_dict = _read_yaml(base_path)

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        deep_merge(config_dict, _read_yaml(scenario_path))

    if overrides is not None:
        deep_merge(config_dict, overrides)

    config = _dict_to_config(config_dict)
    validate_config(config)
    return config


def override_config(config: SimulationConfig,
                    overrides: Dict[str, Dict[str, Any]]) -> SimulationConfig:
    """Return a new validated configuration with nested overrides applied.

    Example:
        >>> cfg = override_config(default_config(), {'predation': {'pred_N': 2.0}})
    """
    merged = deep_merge(config_to_dict(config), overrides)
    new_config = _dict_to_config(merged)
    validate_config(new_config)
    return new_config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config


def config_from_dict(data: Dict) -> SimulationConfig:
    """Build and validate a configuration from a nested dict (e.g. parsed YAML)."""
    config = _dict_to_config(data)
    validate_config(config)
    return config
