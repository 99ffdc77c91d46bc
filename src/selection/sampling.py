"""
Score-proportional sampling selectors.

Both treat the legal scores as unnormalized probabilities; negative scores
count as zero.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
import numpy as np

from config import MultinomialConfig, SampledConfig, SelectorOptions
from errors import ConfigurationError
from selection.base import ActionSelector


def _as_distribution(values: np.ndarray) -> np.ndarray:
    """Normalize non-negative weights; uniform when they sum to zero."""
    # Negative scores carry no probability mass.
    weights = np.clip(values, 0.0, None)
    total = float(weights.sum())
    if total <= 0.0 or not np.isfinite(total):
        return np.full(values.shape, 1.0 / values.shape[0])
    return weights / total


class MultinomialSelector(ActionSelector):
    """Most frequent action over `number_of_trials` categorical draws."""

    def configure(self, options: SelectorOptions | None) -> None:
        if options is None:
            options = MultinomialConfig()
        if not isinstance(options, MultinomialConfig):
            raise ConfigurationError(
                f"MultinomialSelector got {type(options).__name__}"
            )
        self._cfg = options

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        probs = _as_distribution(values)
        # log(0) = -inf keeps zero-weight actions out of the draw.
        with np.errstate(divide="ignore"):
            logits = jnp.asarray(np.log(probs), dtype=jnp.float32)
        draws = jax.random.categorical(
            self._next_key(), logits, shape=(self._cfg.number_of_trials,)
        )
        # Majority vote over the draws; ties go to the lowest id.
        counts = np.bincount(np.asarray(draws), minlength=len(actions))
        return actions[int(np.argmax(counts))]


class SampledSelector(ActionSelector):
    """Cumulative-threshold sampling with a decaying threshold scale.

    The threshold is `total * threshold_current * u`; legal actions are
    walked best-first and the first one whose cumulative score reaches the
    threshold is taken. A smaller `threshold_current` biases the pick
    toward the best action.
    """

    threshold_current: float

    def configure(self, options: SelectorOptions | None) -> None:
        if options is None:
            options = SampledConfig()
        if not isinstance(options, SampledConfig):
            raise ConfigurationError(
                f"SampledSelector got {type(options).__name__}"
            )
        self._cfg = options
        self.threshold_current = options.threshold_initial

    def decay(self) -> None:
        if self.threshold_current <= self._cfg.threshold_min:
            return
        self.threshold_current = max(
            self._cfg.threshold_min,
            self.threshold_current * self._cfg.threshold_decay,
        )

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        # Walk best-first; equal scores keep ascending ids.
        weights = np.clip(values, 0.0, None)
        ranked = sorted(range(len(actions)), key=lambda i: -weights[i])
        # Scale the threshold down to bias toward the best action.
        draw = float(jax.random.uniform(self._next_key()))
        threshold = float(weights.sum()) * self.threshold_current * draw
        cumulative = 0.0
        for index in ranked:
            cumulative += float(weights[index])
            if threshold <= cumulative:
                return actions[index]
        # Rounding can leave the threshold just above the total.
        return actions[ranked[-1]]
