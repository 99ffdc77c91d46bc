"""
Decision-point state and completed transitions.

State is owned by the orchestrator; the policy core only writes `action`
and `policy_value` (and the tree-search front end rewrites `policy_value`
at episode end). Transition is immutable once built and read-only to the
update engine.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from errors import InvalidActionSetError
from rl_types import Array


@dataclass(slots=True, eq=False)
class State:
    """Environment snapshot at one decision point.

    Attributes:
        features: Fixed-size numeric representation, shape (F,).
        legal_actions: Action ids that may be taken here.
        episode_id: Episode this state belongs to.
        time_step: Position within the episode (1-based).
        action: Action taken, None until decided.
        policy_value: Score the estimator gave the taken action.
        td_target: Return target, written once the consequence is known.
    """

    features: Array
    legal_actions: frozenset[int] = field(default_factory=frozenset)
    episode_id: int = 0
    time_step: int = 0
    action: int | None = None
    policy_value: float = 0.0
    td_target: float | None = None

    def __post_init__(self) -> None:
        # Accept any iterable of ints from callers.
        self.legal_actions = frozenset(int(a) for a in self.legal_actions)
        if any(action < 0 for action in self.legal_actions):
            raise InvalidActionSetError("action ids must be non-negative")

    def ordered_actions(self) -> list[int]:
        """Legal actions in ascending id order."""
        return sorted_actions(self.legal_actions)


def sorted_actions(legal_actions: Iterable[int]) -> list[int]:
    """Return legal actions in ascending id order.

    Ascending id order is the iteration order every selector uses, so ties
    always resolve to the lowest action id.

    Raises:
        InvalidActionSetError: If the set is empty.
    """
    actions = sorted(set(legal_actions))
    if not actions:
        raise InvalidActionSetError("legal action set is empty")
    return actions


@dataclass(frozen=True, slots=True)
class Transition:
    """Record of one decision whose consequence is known.

    Attributes:
        state: Originating state.
        action: Action taken in `state`.
        td_target: Temporal-difference target.
        advantage: td_target minus baseline value estimate.
        action_value: Tree-search action value (visit statistic), if any.
    """

    state: State
    action: int
    td_target: float
    advantage: float
    action_value: float | None = None

    @classmethod
    def from_state(
        cls, state: State, *, td_target: float, baseline: float
    ) -> Transition:
        """Build a transition from a decided state.

        Args:
            state: State whose `action` has been set by a policy.
            td_target: Temporal-difference target for the state.
            baseline: Baseline value estimate subtracted for the advantage.

        Returns:
            Transition carrying `state.policy_value` as its action value.

        Raises:
            InvalidActionSetError: If no action was taken in `state`.
        """
        if state.action is None:
            raise InvalidActionSetError("state has no action taken")
        return cls(
            state=state,
            action=state.action,
            td_target=td_target,
            advantage=td_target - baseline,
            action_value=state.policy_value,
        )
