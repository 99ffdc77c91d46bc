"""
Gradient rules plugged into the update engine.

A rule turns one transition into a scalar loss-convention gradient value;
the engine negates it into the ascent direction and writes it into the
taken action's target slot. Rules re-query their estimator at update time
rather than reusing decision-time scores, since the estimator may have
been trained since the decision was made.
"""

from __future__ import annotations

import math
from typing import Protocol

from agent.state import Transition
from config import ProximalPolicyConfig, VanillaPolicyGradientConfig
from errors import ComputationError
from estimator.base import FunctionEstimator, action_scores

# Guards against log(0) in the vanilla and tree-search rules.
LOG_EPSILON = 1e-15
MCTS_LOG_EPSILON = 1e-6


class GradientRule(Protocol):
    """Algorithm-specific hooks of the update engine."""

    estimator: FunctionEstimator

    def pre_process(self) -> None: ...

    def gradient_value(self, transition: Transition) -> float: ...

    def post_process(self) -> None: ...


def action_probability(
    estimator: FunctionEstimator, transition: Transition
) -> float:
    """Current score the estimator gives the transition's action."""
    scores = action_scores(estimator, transition.state.features)
    return float(scores[transition.action])


class VanillaPolicyGradient:
    """`log(p + 1e-15) * (advantage + entropy_coefficient * entropy)`."""

    def __init__(
        self,
        estimator: FunctionEstimator,
        cfg: VanillaPolicyGradientConfig | None = None,
    ) -> None:
        self.estimator = estimator
        self.cfg = cfg or VanillaPolicyGradientConfig()

    def pre_process(self) -> None:
        pass

    def post_process(self) -> None:
        pass

    def gradient_value(self, transition: Transition) -> float:
        # Re-query the live estimator; the state's stored score may be stale.
        scores = action_scores(self.estimator, transition.state.features)
        p = float(scores[transition.action])
        # Entropy bonus over the legal actions only.
        entropy = 0.0
        if self.cfg.apply_entropy:
            entropy = self._entropy(
                [float(scores[a]) for a in transition.state.ordered_actions()]
            )
        try:
            return math.log(p + LOG_EPSILON) * (
                transition.advantage + self.cfg.entropy_coefficient * entropy
            )
        except ValueError as exc:
            raise ComputationError(
                f"log of non-positive probability {p} for action "
                f"{transition.action}"
            ) from exc

    @staticmethod
    def _entropy(probabilities: list[float]) -> float:
        """Shannon entropy over the legal actions; zero terms are skipped."""
        return -sum(p * math.log(p) for p in probabilities if p > 0.0)


class ProximalPolicyUpdate:
    """Clipped-surrogate objective against a lagged reference estimator.

    The reference is a full copy of the live estimator, replaced wholesale
    (copy then swap) on every `update_cycle`-th call to `post_process`.
    """

    def __init__(
        self,
        estimator: FunctionEstimator,
        cfg: ProximalPolicyConfig | None = None,
    ) -> None:
        self.estimator = estimator
        self.cfg = cfg or ProximalPolicyConfig()
        self.reference = estimator.copy()
        self._calls = 0

    def pre_process(self) -> None:
        pass

    def post_process(self) -> None:
        """Count a batch and refresh the reference every `update_cycle`."""
        self._calls += 1
        if self._calls >= self.cfg.update_cycle:
            # Copy first so a failed copy keeps the old reference.
            snapshot = self.estimator.copy()
            self.reference = snapshot
            self._calls = 0

    def ratio(self, transition: Transition) -> float:
        """Live over reference probability; 1 when the reference gives 0."""
        current = action_probability(self.estimator, transition)
        previous = action_probability(self.reference, transition)
        if previous == 0.0:
            return 1.0
        return current / previous

    def gradient_value(self, transition: Transition) -> float:
        return self.clipped_objective(
            self.ratio(transition), transition.advantage
        )

    def clipped_objective(self, ratio: float, advantage: float) -> float:
        """`-min(ratio * A, clip(ratio, 1 - eps, 1 + eps) * A)`."""
        eps = self.cfg.epsilon
        clipped = min(max(ratio, 1.0 - eps), 1.0 + eps)
        return -min(ratio * advantage, clipped * advantage)


class MCTSPolicyUpdate:
    """Cross-entropy toward the tree search's visit-derived action value."""

    def __init__(self, estimator: FunctionEstimator) -> None:
        self.estimator = estimator

    def pre_process(self) -> None:
        pass

    def post_process(self) -> None:
        pass

    def gradient_value(self, transition: Transition) -> float:
        if transition.action_value is None:
            raise ComputationError(
                "tree-search update needs a transition action value"
            )
        p = action_probability(self.estimator, transition)
        try:
            return -transition.action_value * math.log(p + MCTS_LOG_EPSILON)
        except ValueError as exc:
            raise ComputationError(
                f"log of non-positive probability {p} for action "
                f"{transition.action}"
            ) from exc
