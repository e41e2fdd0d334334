#!/usr/bin/env python3
"""Clear leftovers of an interrupted run so the next run starts clean.

Removes unconsumed completion signals, temp files and the cancel sentinel
from the output directory. Optionally removes checkpoints, and drops one
file's outcomes from a run log so a RESUME run processes it again.

Usage:
    python scripts/reset-run.py CONFIG [--checkpoints] [--run-log LOG --file NAME]

Example:
    python scripts/reset-run.py tower-a.yaml --run-log out/logs/tower-a_20240301_080000.json --file L03.3dm
"""

import argparse
import json
from pathlib import Path

from modelbatch.core.config import BatchConfig
from modelbatch.core.errors import ConfigError
from modelbatch.host import TransientArtifactCleaner
from modelbatch.state.tracker import CHECKPOINT_PREFIX


def forget_file(run_log: Path, file_name: str) -> int:
    """Remove ``file_name``'s outcomes from a run log; returns how many."""
    data = json.loads(run_log.read_text())
    outcomes = data.get("file_outcomes", [])
    kept = [o for o in outcomes if o["file_name"].casefold() != file_name.casefold()]
    removed = len(outcomes) - len(kept)
    if removed:
        data["file_outcomes"] = kept
        run_log.write_text(json.dumps(data, indent=2))
    return removed


def main():
    parser = argparse.ArgumentParser(description="Reset leftovers of a modelbatch run")
    parser.add_argument("config", type=Path, help="Batch configuration file")
    parser.add_argument("--checkpoints", action="store_true",
                        help="Also delete checkpoint files")
    parser.add_argument("--run-log", type=Path, help="Run log to edit")
    parser.add_argument("--file", dest="file_name",
                        help="Model file to forget in --run-log")

    args = parser.parse_args()

    try:
        config = BatchConfig.from_file(args.config)
    except ConfigError as e:
        print(f"Cannot load config: {e}")
        return 1

    dirs = config.directories
    print(f"Cleaning {dirs.output_dir}...")
    TransientArtifactCleaner(
        dirs.output_dir, config.project_name, config.monitor.cancel_file_name
    ).cleanup()

    if args.checkpoints:
        checkpoint_dir = dirs.resolved_checkpoint_dir()
        for path in sorted(checkpoint_dir.glob(f"{CHECKPOINT_PREFIX}*.json")):
            print(f"  Deleting: {path}")
            path.unlink()

    if args.file_name:
        if args.run_log is None or not args.run_log.exists():
            print("--file needs an existing --run-log")
            return 1
        removed = forget_file(args.run_log, args.file_name)
        print(f"  Removed {removed} outcome(s) for {args.file_name} from {args.run_log}")
        print("\nTo reprocess it:")
        print(f"  modelbatch run {args.config} --mode RESUME --reference-log {args.run_log}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
