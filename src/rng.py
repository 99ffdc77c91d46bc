"""
Deterministic RNG utilities.

All randomness MUST flow through these helpers and explicit PRNGKey passing.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax

from rl_types import PRNGKey, Step


@dataclass(frozen=True, slots=True)
class RngStream:
    """A deterministic RNG stream derived from a base key.

    This class is intentionally small and purely functional: calling methods
    returns new keys without mutating state.
    """

    base_key: PRNGKey

    @staticmethod
    def from_seed(seed: int) -> RngStream:
        """Build a stream from an integer seed."""
        return RngStream(base_key=jax.random.PRNGKey(seed))

    def key_for_step(self, step: Step) -> PRNGKey:
        """Derive a deterministic key for a given draw counter.

        Args:
            step: Monotonic draw/step counter.

        Returns:
            A PRNGKey derived via fold_in.
        """
        # Fold in the step to keep deterministic per-draw keys.
        return jax.random.fold_in(self.base_key, int(step))


class KeyCounter:
    """Mutable draw counter over an RngStream.

    Owners that draw repeatedly (action selectors, buffers) keep one of these
    and call `next_key` once per random decision.
    """

    def __init__(self, seed: int) -> None:
        self._stream = RngStream.from_seed(seed)
        self._draws = 0

    @property
    def draws(self) -> int:
        """Number of keys handed out so far."""
        return self._draws

    def next_key(self) -> PRNGKey:
        """Return the key for the next draw and advance the counter."""
        key = self._stream.key_for_step(Step(self._draws))
        self._draws += 1
        return key
