#!/usr/bin/env python3
"""
LEO Satellite Handover Command Line Interface

Runs the handover engine against simulated or replayed link metrics,
prints a run summary and saves the ledger.
"""

import argparse
import logging
import sys
import time
from typing import List, Optional

from .config import HandoverConfig
from .engine import HandoverEngine
from .exceptions import ConfigurationError, InvalidInput
from .handover import POLICY_NAMES
from .scoring import SCORING_POLICY_NAMES
from .sources import ReplayMetricSource, SyntheticMetricSource

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="leo-handover",
        description="Predictive satellite link selection with hysteresis and lockout",
    )
    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser("run", help="Run the handover engine")
    run.add_argument("--config", help="YAML configuration file")
    run.add_argument("--cycles", type=int, help="Number of control cycles")
    run.add_argument("--seed", type=int, help="Seed for the metric simulator")
    run.add_argument("--predictor", choices=["baseline", "trend", "kalman"], help="Score predictor")
    run.add_argument("--scoring", choices=list(SCORING_POLICY_NAMES), help="Scoring policy")
    run.add_argument("--policy", choices=list(POLICY_NAMES), help="Handover switching policy")
    run.add_argument("--replay", help="Replay measurements from a long-format CSV file")
    run.add_argument("--output-dir", help="Directory for saved ledger files")
    run.add_argument("--no-save", action="store_true", help="Do not save the ledger")
    run.add_argument("--progress", action="store_true", help="Show a progress bar")
    run.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    init = subparsers.add_parser("init-config", help="Write the default configuration as YAML")
    init.add_argument("path", help="Destination YAML file")

    return parser


def _load_config(args: argparse.Namespace) -> HandoverConfig:
    config = HandoverConfig.from_yaml(args.config) if args.config else HandoverConfig()

    overrides = {}
    if args.predictor:
        overrides.setdefault('predictor', {})['name'] = args.predictor
    if args.scoring:
        overrides.setdefault('scoring', {})['policy'] = args.scoring
    if args.policy:
        overrides.setdefault('handover', {})['policy'] = args.policy
    if args.cycles is not None:
        overrides.setdefault('simulation', {})['cycles'] = args.cycles
    if args.seed is not None:
        overrides.setdefault('simulation', {})['seed'] = args.seed
    if args.output_dir:
        overrides.setdefault('output', {})['output_dir'] = args.output_dir

    return config.with_overrides(**overrides) if overrides else config


def print_summary(report: dict, duration: float) -> None:
    summary = report['run_summary']
    print("\n" + "=" * 60)
    print("🛰️  HANDOVER RUN RESULTS")
    print("=" * 60)
    print(f"   • Cycles processed: {summary['cycles']:,}")
    print(f"   • Handover events: {summary['handover_count']}")
    if summary['mean_cycles_between_handovers'] is not None:
        print(f"   • Mean cycles between handovers: {summary['mean_cycles_between_handovers']:.1f}")
    if 'peak_snr_db' in report:
        print(f"   • Peak SNR: {report['peak_snr_db']:.1f} dB")
    if 'mean_selected_score' in report:
        print(f"   • Mean score of active link: {report['mean_selected_score']:.2f}")
    if report.get('mean_positive_score') is not None:
        print(f"   • Average positive score: {report['mean_positive_score']:.3f}")
    if 'uptime_percent' in report:
        print(f"   • Uptime: {report['uptime_percent']:.1f}%")
    print(f"   • Run time: {duration:.2f} seconds")

    if report['dwell']:
        print(f"\n📡 DWELL PER SATELLITE:")
        for name, dwell in report['dwell'].items():
            print(f"   • {name}: {dwell['cycles']} cycles ({dwell['share_percent']:.1f}%)")


def run_command(args: argparse.Namespace) -> int:
    config = _load_config(args)

    cycles = args.cycles
    if args.replay:
        source = ReplayMetricSource.from_csv(args.replay)
        if source.cycles != list(range(1, len(source) + 1)):
            raise InvalidInput(f"Replay cycles in {args.replay} must run 1..N without gaps")
        if cycles is None:
            cycles = len(source)
    else:
        source = SyntheticMetricSource(config.candidates, seed=config.simulation.seed)

    engine = HandoverEngine(config)

    start_time = time.time()
    ledger = engine.run(source, cycles=cycles, progress=args.progress)
    duration = time.time() - start_time

    report = ledger.generate_report()
    print_summary(report, duration)

    if not args.no_save:
        saved_files = ledger.save(
            output_dir=config.output.output_dir,
            filename_prefix=config.output.filename_prefix,
            config=config.to_dict(),
        )
        print(f"\n💾 Files saved: {list(saved_files.values())}")
    return 0


def init_config_command(args: argparse.Namespace) -> int:
    HandoverConfig().save_yaml(args.path)
    print(f"✅ Default configuration written to {args.path}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, 'verbose', False) else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == "run":
        try:
            return run_command(args)
        except (ConfigurationError, InvalidInput) as e:
            logger.error(f"Run aborted: {e}")
            return 2
    elif args.command == "init-config":
        return init_config_command(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
