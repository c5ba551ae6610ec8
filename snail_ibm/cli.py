"""Command-line entry point.

Usage:
    snail-ibm run configs/base.yaml --out results/run.npz
    snail-ibm run configs/base.yaml --scenario configs/predator_window.yaml --replicates 4 --workers 4
    snail-ibm validate configs/base.yaml --scenario configs/pulsed_resource.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from snail_ibm.config import ConfigError, load_config
from snail_ibm.model import run_replicates, run_simulation
from snail_ibm.output import save_result
from snail_ibm.perf import PerfMonitor

logger = logging.getLogger("snail_ibm")


def _overrides(args: argparse.Namespace) -> Dict:
    sim = {}
    if args.seed is not None:
        sim['seed'] = args.seed
    if args.ticks is not None:
        sim['n_ticks'] = args.ticks
    return {'simulation': sim} if sim else {}


def _cmd_validate(args: argparse.Namespace) -> int:
    load_config(args.config, args.scenario, _overrides(args))
    print(f"{args.config}: OK")
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.scenario, _overrides(args))

    if args.replicates > 1:
        results = run_replicates(config, args.replicates, workers=args.workers)
    else:
        perf = PerfMonitor(enabled=args.timing)
        results = [run_simulation(config, perf=perf)]
        if args.timing:
            print(perf.report())

    for i, result in enumerate(results):
        print(
            f"replicate {i}: final population {result.final_population}, "
            f"cercariae released {int(result.cercariae_released.sum())}, "
            f"repaired integrations {int(result.repaired.sum())}"
        )
        if args.out:
            out = Path(args.out)
            if len(results) > 1:
                out = out.with_name(f"{out.stem}_rep{i}{out.suffix}")
            save_result(result, out)
            logger.info("saved %s", out)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snail-ibm",
        description="DEB individual-based model of snail hosts, parasites and predators.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v for INFO, -vv for per-tick DEBUG logging")
    sub = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("config", help="base YAML configuration")
        p.add_argument("--scenario", default=None, help="scenario YAML merged over the base")
        p.add_argument("--seed", type=int, default=None, help="override simulation.seed")
        p.add_argument("--ticks", type=int, default=None, help="override simulation.n_ticks")

    p_run = sub.add_parser("run", help="run the simulation")
    add_common(p_run)
    p_run.add_argument("--out", default=None, help="output .npz path")
    p_run.add_argument("--replicates", type=int, default=1,
                       help="independent replicates (seeds derived from --seed)")
    p_run.add_argument("--workers", type=int, default=1,
                       help="processes for replicate runs")
    p_run.add_argument("--timing", action="store_true",
                       help="print per-component timing")
    p_run.set_defaults(func=_cmd_run)

    p_val = sub.add_parser("validate", help="load and validate a configuration")
    add_common(p_val)
    p_val.set_defaults(func=_cmd_validate)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        return args.func(args)
    except (ConfigError, FileNotFoundError) as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
