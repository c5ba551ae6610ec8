"""Per-component timing for snail-ibm runs.

    perf = PerfMonitor(enabled=True)
    result = run_simulation(config, perf=perf)
    print(perf.report())

The engine times six components of every tick: infection, predation, deb,
demography, environment and births. A disabled monitor hands back a
no-op context, so the tick loop can call track() unconditionally.
"""

import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class ComponentStats:
    """Wall-clock samples (seconds) of one component, one per tick."""
    samples: List[float] = field(default_factory=list)

    def add(self, seconds: float) -> None:
        self.samples.append(seconds)

    @property
    def call_count(self) -> int:
        return len(self.samples)

    @property
    def total_time(self) -> float:
        return float(sum(self.samples))

    @property
    def max_time(self) -> float:
        return max(self.samples, default=0.0)

    @property
    def mean_time(self) -> float:
        return self.total_time / len(self.samples) if self.samples else 0.0


class PerfMonitor:
    """Collects ComponentStats keyed by component name."""

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self.components: Dict[str, ComponentStats] = {}
        self._t_run: Optional[float] = None
        self.wall_time = 0.0

    def start(self) -> None:
        if self.enabled:
            self._t_run = time.perf_counter()

    def stop(self) -> None:
        if self.enabled and self._t_run is not None:
            self.wall_time = time.perf_counter() - self._t_run
            self._t_run = None

    def track(self, component: str):
        """Context manager timing one pass through `component`."""
        if not self.enabled:
            return nullcontext()
        return self._timed(component)

    @contextmanager
    def _timed(self, component: str):
        stats = self.components.setdefault(component, ComponentStats())
        t0 = time.perf_counter()
        try:
            yield
        finally:
            stats.add(time.perf_counter() - t0)

    def get_stats(self) -> Dict[str, ComponentStats]:
        return dict(self.components)

    def summary(self) -> dict:
        """Totals per component, slowest first, plus the run's wall time."""
        wall = self.wall_time or sum(s.total_time for s in self.components.values())
        ranked = sorted(self.components.items(),
                        key=lambda item: item[1].total_time, reverse=True)
        out = {}
        for name, stats in ranked:
            share = 100.0 * stats.total_time / wall if wall > 0 else 0.0
            out[name] = {
                'calls': stats.call_count,
                'seconds': round(stats.total_time, 4),
                'mean_ms': round(1e3 * stats.mean_time, 3),
                'max_ms': round(1e3 * stats.max_time, 3),
                'share_pct': round(share, 1),
            }
        out['_total_s'] = round(wall, 4)
        return out

    def report(self, title: str = "Tick loop timing") -> str:
        table = self.summary()
        header = (f"{'component':<12}{'calls':>7}{'seconds':>10}"
                  f"{'mean ms':>10}{'max ms':>10}{'share':>8}")
        rows = [title, header]
        for name, r in table.items():
            if name == '_total_s':
                continue
            rows.append(f"{name:<12}{r['calls']:>7}{r['seconds']:>10.4f}"
                        f"{r['mean_ms']:>10.3f}{r['max_ms']:>10.3f}{r['share_pct']:>7.1f}%")
        rows.append(f"{'TOTAL':<12}{'':>7}{table['_total_s']:>10.4f}")
        return "\n".join(rows)
