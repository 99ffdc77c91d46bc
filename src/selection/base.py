"""
Executable policy base: turns a score vector into one legal action.

Conventions shared by every selector:
- legal actions are visited in ascending id order, so every arg-max tie
  resolves to the lowest action id
- scores arrive with the state-value slot already stripped (index = action)
- randomness comes from the selector's own KeyCounter (seeded, one key per
  random decision), never from global state
"""

from __future__ import annotations

import abc
from collections.abc import Iterable, Sequence
from typing import ClassVar

import numpy as np

from agent.state import State, sorted_actions
from config import SelectorOptions
from errors import ConfigurationError, InvalidActionSetError
from rl_types import PRNGKey, ScoreVector
from rng import KeyCounter


def greedy_action(actions: Sequence[int], values: np.ndarray) -> int:
    """Arg-max over `values`; the first maximum wins."""
    return actions[int(np.argmax(values))]


class ActionSelector(abc.ABC):
    """Strategy that picks an action from per-action scores."""

    # True when decay() is driven per learning-mode step, not per episode.
    decays_per_step: ClassVar[bool] = False

    def __init__(
        self,
        options: SelectorOptions | None = None,
        *,
        seed: int = 0,
        as_softmax: bool = False,
    ) -> None:
        self._keys = KeyCounter(seed)
        self.as_softmax = as_softmax
        self.learning = True
        self.configure(options)

    def select(
        self,
        scores: ScoreVector,
        legal_actions: Iterable[int],
        force_greedy: bool = False,
    ) -> int:
        """Pick one legal action.

        Args:
            scores: (A,) per-action scores.
            legal_actions: Non-empty set of legal action ids.
            force_greedy: Skip exploration and take the best action.

        Returns:
            An element of `legal_actions`.

        Raises:
            InvalidActionSetError: If `legal_actions` is empty or names an
                action outside the score vector.
        """
        actions = sorted_actions(legal_actions)
        values = self._legal_values(scores, actions)
        if force_greedy:
            return self._choose_greedy(actions, values)
        return self._choose(actions, values)

    def configure(self, options: SelectorOptions | None) -> None:
        """Apply options and reset exploration state.

        Selectors without options only accept None.
        """
        if options is not None:
            raise ConfigurationError(
                f"{type(self).__name__} takes no options, "
                f"got {type(options).__name__}"
            )

    def decay(self) -> None:
        """Advance the exploration schedule (no-op without one)."""

    def set_learning(self, learning: bool) -> None:
        self.learning = learning

    def record(self, state: State) -> None:
        """Observe a decided state in learning mode (no-op by default)."""

    def end_episode(self) -> None:
        """Episode boundary hook (no-op by default)."""

    @abc.abstractmethod
    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        """Exploring choice over legal `actions` and their `values`."""

    def _choose_greedy(self, actions: list[int], values: np.ndarray) -> int:
        return greedy_action(actions, values)

    def _next_key(self) -> PRNGKey:
        return self._keys.next_key()

    def _legal_values(
        self, scores: ScoreVector, actions: list[int]
    ) -> np.ndarray:
        """Gather legal scores on host, optionally exponentiated."""
        host = np.asarray(scores, dtype=np.float64).reshape(-1)
        if actions[-1] >= host.shape[0]:
            raise InvalidActionSetError(
                f"action {actions[-1]} outside score vector of "
                f"length {host.shape[0]}"
            )
        values = host[actions]
        return np.exp(values) if self.as_softmax else values
