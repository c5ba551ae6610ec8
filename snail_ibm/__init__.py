"""snail-ibm: DEB individual-based model of snail hosts, parasites and predators.

A well-mixed, individual-based model coupling:
  - Dynamic Energy Budget (DEB) physiology for each snail host
  - Free-living parasite stages (miracidia → hosts → cercariae)
  - A shared resource pool (logistic or detrital supply, optionally pulsed)
  - A size-selective predator adding a type-II mortality hazard
  - Stochastic survival and delayed (incubated) births

Typical use:
    from snail_ibm.config import default_config
    from snail_ibm.model import run_simulation

    result = run_simulation(default_config())
    result.population          # living snails per tick
    result.cercariae_released  # transmission potential per tick
"""

__version__ = "0.1.0"
