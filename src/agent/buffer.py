"""
Experience buffer for decision states.

Design constraint:
- Fixed capacity ring buffer, oldest entries overwritten first
- Deterministic sampling given RNG

Estimators fill the buffer through `add`; whoever drives the training loop
reads it back with `chronological` or draws replay batches with
`sample_batch`.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax
import numpy as np

from agent.state import State
from errors import ConfigurationError
from rl_types import PRNGKey


@dataclass(frozen=True, slots=True)
class BufferConfig:
    """Buffer capacity."""

    capacity: int


class ExperienceBuffer:
    """A simple ring buffer of states recorded in learning mode."""

    def __init__(self, cfg: BufferConfig) -> None:
        """Initialize empty buffer."""
        if cfg.capacity < 1:
            raise ConfigurationError("buffer capacity must be at least 1")
        self._capacity = cfg.capacity
        self._items: list[State | None] = [None] * cfg.capacity
        self._size = 0
        self._write_idx = 0

    def __len__(self) -> int:
        return self._size

    def add(self, state: State) -> None:
        """Insert one state, overwriting the oldest when full."""
        self._items[self._write_idx] = state
        self._write_idx = (self._write_idx + 1) % self._capacity
        self._size = min(self._capacity, self._size + 1)

    def chronological(self) -> list[State]:
        """Return buffered states oldest first."""
        start = (self._write_idx - self._size) % self._capacity
        ordered: list[State] = []
        for offset in range(self._size):
            item = self._items[(start + offset) % self._capacity]
            if item is not None:
                ordered.append(item)
        return ordered

    def sample_batch(self, rng_key: PRNGKey, batch_size: int) -> list[State]:
        """Sample states uniformly with replacement.

        Raises:
            ValueError: If the buffer is empty.
        """
        if self._size == 0:
            raise ValueError("ExperienceBuffer is empty.")

        # Sample indices deterministically from RNG key.
        indices = jax.random.randint(rng_key, (batch_size,), 0, self._size)
        indices_np = np.asarray(jax.device_get(indices))
        ordered = self.chronological()
        return [ordered[int(i)] for i in indices_np]
