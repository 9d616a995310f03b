"""Module entrypoint for running forkwatch CLI commands.

Usage: python -m forkwatch <command> [options]
"""

from __future__ import annotations

import sys
from typing import Optional

from tools.cli.cache_info import main as cache_info_main
from tools.cli.fork_risk import main as fork_risk_main


def print_usage() -> None:
    """Print CLI usage information."""
    print("forkwatch - Augur fork risk monitor")
    print("")
    print("Usage: forkwatch <command> [options]")
    print("       python -m forkwatch <command> [options]")
    print("")
    print("Commands:")
    print("  calculate         Scan dispute events and publish the fork risk document")
    print("  cache-info        Summarize the dispute event cache")
    print("")
    print("Options:")
    print("  -h, --help        Show this help message")
    print("  --version         Show version information")
    print("")
    print("Environment:")
    print("  FORK_RISK_MODE              incremental (default) or full-rebuild")
    print("  FORK_RISK_RPC_URLS          comma-separated RPC endpoints, in priority order")
    print("  FORK_RISK_CACHE_PATH        event cache JSON path")
    print("  FORK_RISK_OUTPUT_PATH       result document JSON path")
    print("  FORK_RISK_CONTRACTS_PATH    contracts/ABI JSON path")
    print("")
    print("Examples:")
    print("  forkwatch calculate")
    print("  forkwatch calculate --full-rebuild --log-level DEBUG")
    print("  forkwatch cache-info --cache-path cache/event-cache.json")


def print_version() -> None:
    """Print version information."""
    from forkwatch import __version__
    print(f"forkwatch {__version__}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entrypoint."""
    if argv is None:
        argv = sys.argv[1:]

    if len(argv) < 1:
        print_usage()
        return 1

    command = argv[0]

    if command in ("-h", "--help"):
        print_usage()
        return 0

    if command in ("-v", "--version"):
        print_version()
        return 0

    if command == "calculate":
        return fork_risk_main(argv[1:])
    if command == "cache-info":
        return cache_info_main(argv[1:])

    print(f"Unknown command: {command}", file=sys.stderr)
    print("Run 'forkwatch --help' for usage information.", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
