"""
Command line entry point: `lattice-gauge`.

Subcommands:
    simulate     thermalize, measure and summarize a run
    validate-u1  compare the 2D U(1) plaquette with the Bessel-function result
    flow         thermalize, then run the gradient flow and report t0 and w0
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .core.config import (FieldConfig, FlowConfig, LatticeConfig, MonteCarloConfig,
                          SimulationConfig)
from .core.errors import ConvergenceFailure
from .diagnostics.exact_solutions import compare_u1_plaquette
from .diagnostics.mcmc_diag import binning_error, diagnose_history
from .logging_utils import configure_logging
from .models.gauge_field import LatticeGaugeField
from .observables.flow import GradientFlow
from .samplers.metropolis import MetropolisUpdater
from .storage.checkpoint import save_checkpoint

logger = logging.getLogger(__name__)


def _add_run_arguments(parser: argparse.ArgumentParser):
    parser.add_argument("--config", type=str, default=None,
                        help="JSON configuration file; command line options override it")
    parser.add_argument("--extents", type=int, nargs="+", default=None,
                        help="Lattice extents, one per dimension (default: 8 8)")
    parser.add_argument("--open", action="store_true",
                        help="Use open instead of periodic boundaries")
    parser.add_argument("--group", type=str, choices=["U1", "SU2", "SU3"], default=None,
                        help="Gauge group (default: U1)")
    parser.add_argument("--precision", type=str, choices=["single", "double", "extended"],
                        default=None, help="Floating precision (default: double)")
    parser.add_argument("--beta", type=float, default=None, help="Coupling (default: 1.0)")
    parser.add_argument("--start", type=str, choices=["cold", "hot"], default=None,
                        help="Initial configuration (default: cold)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--n-therm", type=int, default=None, help="Thermalization sweeps")
    parser.add_argument("--n-measurements", type=int, default=None,
                        help="Number of measurements")
    parser.add_argument("--interval", type=int, default=None,
                        help="Sweeps between measurements")
    parser.add_argument("--epsilon", type=float, default=None,
                        help="Metropolis proposal size")
    parser.add_argument("--n-hits", type=int, default=None, help="Metropolis hits per link")
    parser.add_argument("--n-jobs", type=int, default=None,
                        help="Worker threads per checkerboard pass")
    parser.add_argument("--progress", action="store_true", help="Show progress bars")


def build_config(args: argparse.Namespace) -> SimulationConfig:
    """Merge a JSON configuration file with command line overrides."""
    config = SimulationConfig.from_json(args.config) if args.config else SimulationConfig()
    data = config.to_dict()

    lattice = data["lattice"]
    if args.extents is not None:
        lattice["extents"] = args.extents
    if args.open:
        lattice["periodic"] = False

    field = data["field"]
    for key in ("group", "precision", "beta", "start", "seed"):
        value = getattr(args, key)
        if value is not None:
            field[key] = value

    mc = data["monte_carlo"]
    overrides = {
        "n_therm": args.n_therm,
        "n_measurements": args.n_measurements,
        "measurement_interval": args.interval,
        "epsilon": args.epsilon,
        "n_hits": args.n_hits,
        "n_jobs": args.n_jobs,
        "seed": args.seed,
    }
    for key, value in overrides.items():
        if value is not None:
            mc[key] = value

    flow = data["flow"]
    for key in ("step_size", "t_max"):
        value = getattr(args, key, None)
        if value is not None:
            flow[key] = value

    return SimulationConfig(
        lattice=LatticeConfig(**lattice),
        field=FieldConfig(**field),
        monte_carlo=MonteCarloConfig(**mc),
        flow=FlowConfig(**flow),
    )


def _build_run(config: SimulationConfig):
    lattice = config.lattice.build()
    field = LatticeGaugeField.from_config(config.field, lattice)
    updater = MetropolisUpdater(field, config.monte_carlo)
    return field, updater


def cmd_simulate(args: argparse.Namespace) -> int:
    config = build_config(args)
    field, updater = _build_run(config)
    history = updater.run(progress=args.progress)

    summary = diagnose_history(history, "plaquette")
    summary["acceptance_rate"] = updater.acceptance_rate
    summary["stats"] = updater.stats.to_dict()
    print(f"plaquette = {summary['mean']:.6f} +/- {summary['binning_error']:.6f} "
          f"(tau_int = {summary['tau_int']:.2f}, acceptance = {summary['acceptance_rate']:.3f})")

    if args.output_dir:
        output_dir = Path(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        history.to_csv(output_dir / "history.csv", index=False)
        config.save_json(output_dir / "config.json")
        with open(output_dir / "summary.json", "w") as f:
            json.dump(summary, f, indent=2)
        save_checkpoint(output_dir / "checkpoint", field, updater)
        logger.info(f"Results saved to {output_dir}")
    return 0


def cmd_validate_u1(args: argparse.Namespace) -> int:
    if args.extents is None:
        args.extents = [16, 16]
    args.group = "U1"
    config = build_config(args)
    if len(config.lattice.extents) != 2:
        print("validate-u1 needs a two-dimensional lattice", file=sys.stderr)
        return 2

    field, updater = _build_run(config)
    history = updater.run(progress=args.progress)
    values = history["plaquette"].to_numpy()
    result = compare_u1_plaquette(values.mean(), config.field.beta,
                                  error=binning_error(values), tolerance=args.tolerance)

    status = "PASS" if result["passed"] else "FAIL"
    print(f"{status}: measured {result['measured']:.6f}, exact {result['exact']:.12f}, "
          f"deviation {result['deviation']:.2e} (tolerance {result['tolerance']:.2e})")
    return 0 if result["passed"] else 1


def cmd_flow(args: argparse.Namespace) -> int:
    config = build_config(args)
    field, updater = _build_run(config)
    updater.thermalize(progress=args.progress)

    integrator = GradientFlow.from_config(config.flow)
    try:
        _, trajectory = integrator.run(field, progress=args.progress)
        t0 = trajectory.t0(config.flow.target)
    except ConvergenceFailure as e:
        print(f"Gradient flow failed: {e}", file=sys.stderr)
        return 2

    print(f"t0 = {t0:.6f}")
    try:
        print(f"w0 = {trajectory.w0(config.flow.target):.6f}")
    except ConvergenceFailure as e:
        logger.info(f"w0 not available: {e}")

    if args.output_dir:
        output_dir = Path(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        trajectory.to_dataframe().to_csv(output_dir / "flow.csv", index=False)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lattice-gauge",
        description="Monte Carlo simulation of lattice gauge theories"
    )
    parser.add_argument("--log-level", type=str, default="INFO",
                        help="Logging level (default: INFO)")
    parser.add_argument("--log-dir", type=str, default=None,
                        help="Directory for a log file (default: none)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate = subparsers.add_parser("simulate", help="Thermalize and measure")
    _add_run_arguments(simulate)
    simulate.add_argument("--output-dir", type=str, default=None,
                          help="Directory for history, summary and checkpoint")
    simulate.set_defaults(func=cmd_simulate)

    validate = subparsers.add_parser("validate-u1",
                                     help="Check 2D U(1) against the exact plaquette")
    _add_run_arguments(validate)
    validate.add_argument("--tolerance", type=float, default=1e-3,
                          help="Absolute tolerance floor (default: 1e-3)")
    validate.set_defaults(func=cmd_validate_u1)

    flow = subparsers.add_parser("flow", help="Gradient flow scale setting")
    _add_run_arguments(flow)
    flow.add_argument("--step-size", type=float, default=None, help="Flow step size")
    flow.add_argument("--t-max", type=float, default=None, help="Flow horizon")
    flow.add_argument("--output-dir", type=str, default=None,
                      help="Directory for the flow trajectory")
    flow.set_defaults(func=cmd_flow)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_dir)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
