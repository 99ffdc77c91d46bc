"""
TOML metrics snapshots for policy updates.

All metrics artifacts are TOML and stored in <run root>/metrics/.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from paths import RunPaths
from toml_io import TomlValue, save_toml


@dataclass(frozen=True, slots=True)
class UpdateMetrics:
    """Summary of one trained batch."""

    step: int
    batch_size: int
    gradient_mean: float
    gradient_abs_max: float
    advantage_mean: float


type MetricsWriter = Callable[[UpdateMetrics], None]


def write_metrics_snapshot(paths: RunPaths, metrics: UpdateMetrics) -> None:
    """Write a metrics snapshot TOML file named by step."""
    # Zero-padded filenames sort lexicographically.
    filename = f"step_{metrics.step:010d}.toml"
    data: dict[str, TomlValue] = {
        "step": metrics.step,
        "batch_size": metrics.batch_size,
        "gradient_mean": metrics.gradient_mean,
        "gradient_abs_max": metrics.gradient_abs_max,
        "advantage_mean": metrics.advantage_mean,
    }
    save_toml(paths.metrics_dir / filename, data)


def snapshot_writer(paths: RunPaths) -> MetricsWriter:
    """Bind `write_metrics_snapshot` to a run directory."""

    def _write(metrics: UpdateMetrics) -> None:
        write_metrics_snapshot(paths, metrics)

    return _write
