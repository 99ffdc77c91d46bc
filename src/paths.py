"""
Centralized path conventions for runs/ outputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Final

# Default base directory for run artifacts.
RUNS_DIR: Final[Path] = Path("runs")


@dataclass(frozen=True, slots=True)
class RunPaths:
    """All filesystem paths for a single policy run."""

    root: Path
    metrics_dir: Path
    config_toml: Path

    @staticmethod
    def create(run_id: str, base_dir: Path = RUNS_DIR) -> RunPaths:
        """Create run directories under <base_dir>/<run_id>."""
        root = (base_dir / run_id).resolve()
        metrics_dir = root / "metrics"
        metrics_dir.mkdir(parents=True, exist_ok=True)
        return RunPaths(
            root=root,
            metrics_dir=metrics_dir,
            config_toml=root / "config.toml",
        )
