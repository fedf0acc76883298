from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

from worldsim.llm.config import SimulationConfig
from worldsim.llm.gateway import LLMGateway
from worldsim.log import configure_logging, progress
from worldsim.simulation.ground_truth import load_ground_truth
from worldsim.simulation.narrator import Narrator
from worldsim.simulation.snapshot_io import (
    ensure_directory,
    initial_snapshot_path,
    load_snapshot,
    output_paths,
    save_report,
    save_snapshot,
)


logger = logging.getLogger("worldsim")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="worldsim",
        description="Advance an LLM-narrated world simulation by one week.",
    )
    parser.add_argument("--output", required=True, help="Directory for snapshot and report files (created if absent)")
    parser.add_argument("--snapshot", help="Prior snapshot to resume from (JSON or freeform text)")
    parser.add_argument("--world", default="./world", help="Directory of ground truth text files")
    parser.add_argument("--provider", choices=["openai", "anthropic"])
    parser.add_argument("--model", help="Model name for the selected provider")
    parser.add_argument("--seed", type=int)
    parser.add_argument(
        "--save-initial",
        action="store_true",
        help="Also write the generated initial snapshot when starting without --snapshot",
    )
    parser.add_argument(
        "--outcome-sampling",
        action="store_true",
        help="Let experts delegate uncertain outcomes to weighted random sampling",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def build_config(args: argparse.Namespace) -> SimulationConfig:
    cfg = SimulationConfig.from_env(provider=args.provider)
    if args.model:
        cfg.set_model(args.model)
    if args.seed is not None:
        cfg.seed = args.seed
    if args.outcome_sampling:
        cfg.enable_outcome_sampling = True
    cfg.validate()
    return cfg


async def run(args: argparse.Namespace, config: SimulationConfig) -> tuple[Path, Path]:
    progress(logger, "Initialization", "Starting simulation")
    output_dir = ensure_directory(args.output)
    today = date.today()

    progress(logger, "Loading ground truth", str(args.world))
    ground_truth = load_ground_truth(args.world)
    logger.info("Loaded %d ground truth files", len(ground_truth))

    progress(logger, "Setup", f"Initializing simulation components (provider={config.provider} model={config.model})")
    gateway = LLMGateway(config)
    narrator = Narrator(gateway, config)

    if args.snapshot:
        progress(logger, "Loading snapshot", str(args.snapshot))
        current = load_snapshot(args.snapshot)
    else:
        progress(logger, "Initial Analysis", "Generating current world state")
        current = await narrator.generate_initial_snapshot(ground_truth)
        if args.save_initial:
            path = save_snapshot(current, initial_snapshot_path(output_dir, today))
            logger.info("Initial snapshot written to: %s", path)

    progress(logger, "Simulation", "Running one-week simulation")
    result = await narrator.simulate_one_week(current, ground_truth)

    progress(logger, "Output", "Writing simulation results")
    snapshot_path, report_path = output_paths(output_dir, today)
    save_snapshot(result.snapshot, snapshot_path)
    save_report(result.report, report_path)
    logger.info("Snapshot written to: %s", snapshot_path)
    logger.info("Report written to: %s", report_path)

    usage = gateway.usage_total
    logger.info(
        "Run used %d requests, %d input tokens, %d output tokens",
        gateway.request_count,
        usage.input_tokens,
        usage.output_tokens,
    )
    progress(logger, "Complete", "Simulation finished successfully")
    return snapshot_path, report_path


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)

    # Existing environment variables win over .env entries.
    load_dotenv(Path.cwd() / ".env", override=False)

    try:
        config = build_config(args)
        asyncio.run(run(args, config))
    except Exception:
        logger.exception("Simulation failed")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
