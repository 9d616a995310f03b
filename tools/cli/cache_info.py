#!/usr/bin/env python3
"""Print a summary of the dispute event cache.

Usage:
    python -m forkwatch cache-info
    python -m forkwatch cache-info --cache-path cache/event-cache.json
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from packages.augur.cache import SECTION_KEYS, validate_cache_document
from packages.augur.config import load_settings
from packages.augur.errors import ConfigLoadError


def summarize_cache(path: Path) -> Dict[str, Any]:
    """Describe the cache document at ``path`` without modifying it."""
    summary: Dict[str, Any] = {"path": str(path), "exists": path.exists()}
    if not path.exists():
        return summary

    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        summary.update({"valid": False, "reason": f"unreadable: {exc}"})
        return summary

    valid, reason = validate_cache_document(document)
    summary["valid"] = valid
    if not valid:
        summary["reason"] = reason
        return summary

    events = document["events"]
    blocks = [
        entry.get("blockNumber")
        for key in SECTION_KEYS.values()
        for entry in events[key]
        if isinstance(entry, dict) and isinstance(entry.get("blockNumber"), int)
    ]
    metadata = document["metadata"]
    summary.update(
        {
            "version": document["version"],
            "lastQueriedBlock": document["lastQueriedBlock"],
            "oldestEventBlock": document.get("oldestEventBlock"),
            "counts": {key: len(events[key]) for key in SECTION_KEYS.values()},
            "totalEventsTracked": metadata["totalEventsTracked"],
            "syncStatus": metadata.get("blockchainSyncStatus"),
            "generatedAt": metadata.get("cacheGeneratedAt"),
            "eventBlockRange": [min(blocks), max(blocks)] if blocks else None,
        }
    )
    return summary


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point.  Returns 0 when the cache is valid."""
    parser = argparse.ArgumentParser(
        prog="forkwatch cache-info",
        description="Summarize the dispute event cache.",
    )
    parser.add_argument("--config", default=None, help="Path to a forkwatch YAML config file.")
    parser.add_argument("--cache-path", default=None, help="Event cache JSON path.")
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    if args.cache_path:
        path = Path(args.cache_path)
    else:
        try:
            path = load_settings(args.config).cache_path
        except ConfigLoadError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1

    summary = summarize_cache(path)
    print(json.dumps(summary, indent=2))
    return 0 if summary.get("valid") else 1


if __name__ == "__main__":
    raise SystemExit(main())
