"""
Greedy and epsilon-greedy selection.
"""

from __future__ import annotations

import jax
import numpy as np

from config import EpsilonGreedyConfig, SelectorOptions
from errors import ConfigurationError
from selection.base import ActionSelector, greedy_action


class GreedySelector(ActionSelector):
    """Always the highest-scoring legal action (lowest id on ties)."""

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        return greedy_action(actions, values)


class EpsilonGreedySelector(ActionSelector):
    """Uniformly random legal action with probability epsilon, else greedy.

    Epsilon decays geometrically (`epsilon *= epsilon_decay_rate`) or, with
    `epsilon_decay_by_episode`, as `epsilon_initial / k` on the k-th decay.
    It never decays below `epsilon_min`.
    """

    epsilon: float

    def configure(self, options: SelectorOptions | None) -> None:
        if options is None:
            options = EpsilonGreedyConfig()
        if not isinstance(options, EpsilonGreedyConfig):
            raise ConfigurationError(
                f"EpsilonGreedySelector got {type(options).__name__}"
            )
        self._cfg = options
        self.epsilon = options.epsilon_initial
        self._decays = 0

    def decay(self) -> None:
        # Once at (or forced below) the floor, epsilon stays put.
        if self.epsilon <= self._cfg.epsilon_min:
            return
        if self._cfg.epsilon_decay_by_episode:
            self._decays += 1
            candidate = self._cfg.epsilon_initial / self._decays
        else:
            candidate = self.epsilon * self._cfg.epsilon_decay_rate
        self.epsilon = max(self._cfg.epsilon_min, candidate)

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        # One key decides whether to explore, the other which action.
        explore_key, pick_key = jax.random.split(self._next_key())
        if float(jax.random.uniform(explore_key)) < self.epsilon:
            index = int(jax.random.randint(pick_key, (), 0, len(actions)))
            return actions[index]
        return greedy_action(actions, values)
