"""
Noise-perturbed arg-max selectors.
"""

from __future__ import annotations

import math

import jax
import numpy as np

from config import (
    NoisyConfig,
    NoisyNextBestConfig,
    OUNoiseConfig,
    SelectorOptions,
)
from errors import ConfigurationError
from selection.base import ActionSelector, greedy_action


def next_best_action(
    actions: list[int], values: np.ndarray, take_runner_up: bool
) -> int:
    """Best legal action, or the runner-up when asked and one exists."""
    # Rank by score descending; equal scores keep ascending ids.
    ranked = sorted(range(len(actions)), key=lambda i: -values[i])
    if take_runner_up and len(ranked) > 1:
        return actions[ranked[1]]
    return actions[ranked[0]]


def action_entropy(values: np.ndarray) -> float:
    """Shannon entropy of the legal scores, normalized to [0, 1].

    Scores are clipped at zero and normalized into a distribution; a
    non-positive total counts as uniform. A single action has entropy 0.
    """
    if values.shape[0] < 2:
        return 0.0
    weights = np.clip(values, 0.0, None)
    total = float(weights.sum())
    if total <= 0.0 or not np.isfinite(total):
        return 1.0
    probs = weights / total
    probs = probs[probs > 0.0]
    entropy = float(-(probs * np.log(probs)).sum())
    # Divide by the uniform entropy so the result is a probability.
    return min(1.0, entropy / math.log(values.shape[0]))


class NoisySelector(ActionSelector):
    """Arg-max after adding N(0, exploration_noise) to every legal score.

    `exploration_noise` is a variance. It decays geometrically once per
    learning-mode step and is floored at `min_exploration_noise`.
    """

    decays_per_step = True
    exploration_noise: float

    def configure(self, options: SelectorOptions | None) -> None:
        if options is None:
            options = NoisyConfig()
        if not isinstance(options, NoisyConfig):
            raise ConfigurationError(
                f"NoisySelector got {type(options).__name__}"
            )
        self._cfg = options
        self.exploration_noise = options.exploration_noise

    def decay(self) -> None:
        if self.exploration_noise <= self._cfg.min_exploration_noise:
            return
        self.exploration_noise = max(
            self._cfg.min_exploration_noise,
            self.exploration_noise * self._cfg.exploration_noise_decay,
        )

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        noise = np.asarray(
            jax.random.normal(self._next_key(), (len(actions),)),
            dtype=np.float64,
        )
        return greedy_action(
            actions, values + math.sqrt(self.exploration_noise) * noise
        )


class WeightedRandomSelector(ActionSelector):
    """Arg-max of each legal score times an independent N(0, 1) draw.

    Despite the name this is a noisy arg-max, not sampling proportional to
    score; use MultinomialSelector for the latter.
    """

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        noise = np.asarray(
            jax.random.normal(self._next_key(), (len(actions),)),
            dtype=np.float64,
        )
        return greedy_action(actions, values * noise)


class NoisyNextBestSelector(ActionSelector):
    """Runner-up action with probability `exploration_noise`, else the best."""

    exploration_noise: float

    def configure(self, options: SelectorOptions | None) -> None:
        if options is None:
            options = NoisyNextBestConfig()
        if not isinstance(options, NoisyNextBestConfig):
            raise ConfigurationError(
                f"NoisyNextBestSelector got {type(options).__name__}"
            )
        self._cfg = options
        self.exploration_noise = options.initial_exploration_noise

    def decay(self) -> None:
        if self.exploration_noise <= self._cfg.min_exploration_noise:
            return
        self.exploration_noise = max(
            self._cfg.min_exploration_noise,
            self.exploration_noise * self._cfg.exploration_noise_decay,
        )

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        draw = float(jax.random.uniform(self._next_key()))
        return next_best_action(actions, values, draw < self.exploration_noise)


class EntropyGreedySelector(ActionSelector):
    """Uniform legal action with probability equal to the score entropy.

    A flat score vector explores almost always, a peaked one almost never;
    otherwise the arg-max is taken.
    """

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        # Flatter scores make exploration more likely.
        draw = float(jax.random.uniform(self._next_key()))
        if draw < action_entropy(values):
            index = int(
                jax.random.randint(self._next_key(), (), 0, len(actions))
            )
            return actions[index]
        return greedy_action(actions, values)


class EntropyNoisyNextBestSelector(ActionSelector):
    """Runner-up action with probability equal to the score entropy."""

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        draw = float(jax.random.uniform(self._next_key()))
        return next_best_action(actions, values, draw < action_entropy(values))


class OUNoiseSelector(ActionSelector):
    """Arg-max after adding Ornstein-Uhlenbeck noise to every legal score.

    One noise process runs per action id and advances on every exploring
    decision: `x += theta * (mu - x) + sigma * N(0, 1)`. decay() restarts
    the processes at `mu` and shrinks sigma toward `min_sigma`, once per
    episode.
    """

    sigma: float

    def configure(self, options: SelectorOptions | None) -> None:
        if options is None:
            options = OUNoiseConfig()
        if not isinstance(options, OUNoiseConfig):
            raise ConfigurationError(
                f"OUNoiseSelector got {type(options).__name__}"
            )
        self._cfg = options
        self.sigma = options.sigma
        self.noise_state = np.zeros(0, dtype=np.float64)

    def decay(self) -> None:
        self.noise_state = np.full_like(self.noise_state, self._cfg.mu)
        self.sigma = max(
            self._cfg.min_sigma, self.sigma * self._cfg.sigma_decay
        )

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        # Grow the process vector so every legal action id has a slot.
        size = actions[-1] + 1
        if self.noise_state.shape[0] < size:
            grown = np.full(size, self._cfg.mu, dtype=np.float64)
            grown[: self.noise_state.shape[0]] = self.noise_state
            self.noise_state = grown

        # Advance every process one step toward mu plus fresh noise.
        gaussian = np.asarray(
            jax.random.normal(self._next_key(), self.noise_state.shape),
            dtype=np.float64,
        )
        self.noise_state = (
            self.noise_state
            + self._cfg.theta * (self._cfg.mu - self.noise_state)
            + self.sigma * gaussian
        )
        return greedy_action(actions, values + self.noise_state[actions])
