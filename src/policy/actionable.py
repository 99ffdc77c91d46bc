"""
Action-taking facade: estimator scores in, legal action out.
"""

from __future__ import annotations

from agent.state import State
from estimator.base import FunctionEstimator, action_scores, state_value_offset
from selection.base import ActionSelector


class Policy:
    """Couples an action selector with a function estimator.

    In learning mode every decided state is forwarded to the estimator's
    experience buffer and to the selector's own bookkeeping; outside it the
    selector is always asked for the greedy choice.
    """

    def __init__(
        self, selector: ActionSelector, estimator: FunctionEstimator
    ) -> None:
        self.selector = selector
        self.estimator = estimator

    @property
    def learning(self) -> bool:
        return self.selector.learning

    @property
    def state_value_offset(self) -> int:
        return state_value_offset(self.estimator)

    def act(self, state: State, force_greedy: bool = False) -> None:
        """Decide `state.action` and record its score in `state.policy_value`.

        Raises:
            EstimatorError: If the estimator fails or returns a score vector
                of the wrong length.
            InvalidActionSetError: If the state has no legal actions.
        """
        # Score without the state-value slot, then let the selector decide.
        scores = action_scores(self.estimator, state.features)
        action = self.selector.select(
            scores,
            state.legal_actions,
            force_greedy=force_greedy or not self.learning,
        )
        state.action = action
        state.policy_value = float(scores[action])
        # Only learning-mode decisions feed the buffer and the selector.
        if self.learning:
            self.estimator.add(state)
            self.selector.record(state)
            if self.selector.decays_per_step:
                self.selector.decay()

    def set_learning(self, learning: bool) -> None:
        self.selector.set_learning(learning)

    def on_episode_end(self) -> None:
        """Close the episode and, in learning mode, advance exploration."""
        self.selector.end_episode()
        if self.learning and not self.selector.decays_per_step:
            self.selector.decay()
