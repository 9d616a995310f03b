#!/usr/bin/env python3
"""Fork risk calculator CLI.

Scans recent Augur dispute events, computes the current fork risk and writes
the result document consumed by the website.

Usage:
    python -m forkwatch calculate
    python -m forkwatch calculate --full-rebuild --output public/data/fork-risk.json
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from packages.augur.config import DEFAULT_OUTPUT_PATH, RunMode, RunSettings, load_settings
from packages.augur.errors import ConfigLoadError, ResultWriteError
from packages.augur.risk import build_error_result
from packages.augur.runner import EXIT_RUN_FAILED, EXIT_WRITE_FAILED, publish, run_fork_risk

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forkwatch calculate",
        description="Calculate Augur fork risk from on-chain dispute events.",
    )
    parser.add_argument(
        "--full-rebuild",
        action="store_true",
        help="Ignore the event cache and rescan the full lookback window.",
    )
    parser.add_argument("--config", default=None, help="Path to a forkwatch YAML config file.")
    parser.add_argument("--cache-path", default=None, help="Event cache JSON path.")
    parser.add_argument("--output", default=None, help="Result document JSON path.")
    parser.add_argument("--contracts", default=None, help="Contracts/ABI JSON path.")
    parser.add_argument(
        "--rpc-url",
        action="append",
        default=None,
        help="RPC endpoint to try (repeatable, in priority order).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO).",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point.  Returns exit code (0 = success)."""
    parser = _build_parser()
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings(args.config)
    except ConfigLoadError as exc:
        logger.error(f"Invalid configuration: {exc}")
        fallback = RunSettings(output_path=Path(args.output or DEFAULT_OUTPUT_PATH))
        try:
            publish(fallback, build_error_result(str(exc)))
        except ResultWriteError as write_exc:
            logger.error(f"Failed to save error result: {write_exc}")
            return EXIT_WRITE_FAILED
        return EXIT_RUN_FAILED

    settings = settings.with_overrides(
        rpc_endpoints=tuple(args.rpc_url) if args.rpc_url else None,
        cache_path=Path(args.cache_path) if args.cache_path else None,
        output_path=Path(args.output) if args.output else None,
        contracts_path=Path(args.contracts) if args.contracts else None,
        mode=RunMode.FULL_REBUILD if args.full_rebuild else None,
    )

    logger.info(f"Starting fork risk calculation ({settings.mode.value} mode)")
    exit_code, result = run_fork_risk(settings)
    logger.info(
        f"Risk level: {result.risk_level.value} ({result.risk_percentage:.2f}% of fork threshold)"
    )
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
