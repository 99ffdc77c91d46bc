"""
Command-line entrypoints.

Commands:
- validate: load a policy TOML config, build every component it names and
  print the resolved configuration
"""

from __future__ import annotations

import argparse
import sys
from datetime import UTC, datetime
from pathlib import Path

from config import PolicyConfig, parse_config, to_toml
from errors import ConfigurationError
from paths import RUNS_DIR, RunPaths
from policy.builder import build_policy
from toml_io import dump_toml, load_toml, save_toml


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="policycore")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser(
        "validate", help="Validate a policy config and build its components"
    )
    validate_parser.add_argument(
        "--config",
        type=Path,
        required=True,
        help="Path to TOML config",
    )
    validate_parser.add_argument(
        "--run-name",
        default=None,
        help="Create runs/<stamp>_<name>/ holding the resolved config",
    )
    validate_parser.add_argument(
        "--runs-dir",
        type=Path,
        default=RUNS_DIR,
        help="Base directory for run artifacts",
    )

    return parser


def _run_id(run_name: str) -> str:
    """Construct a UTC run_id with timestamp and name.

    Args:
        run_name: Human-readable run name.

    Returns:
        Run id string like "20240101_120000_name".
    """
    stamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
    return f"{stamp}_{run_name}"


def _validate(config_path: Path) -> PolicyConfig:
    """Load, validate and build the policy described by `config_path`."""
    cfg = parse_config(load_toml(config_path))
    # Building catches estimator/selector/rule wiring errors too.
    build_policy(cfg)
    return cfg


def main(argv: list[str] | None = None) -> int:
    """Main entrypoint.

    Returns:
        Process exit code (0 for success, 2 for configuration errors or an
        unreadable config file).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        cfg = _validate(args.config)
    except ConfigurationError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2
    except OSError as exc:
        # Missing or unreadable config file.
        print(f"cannot read config: {exc}", file=sys.stderr)
        return 2

    resolved = to_toml(cfg)
    print(dump_toml(resolved), end="")
    if args.run_name is not None:
        # Persist the resolved config next to an empty metrics directory.
        paths = RunPaths.create(_run_id(args.run_name), base_dir=args.runs_dir)
        save_toml(paths.config_toml, resolved)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
