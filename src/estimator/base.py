"""
Function estimator contract consumed by the policy core.

The core treats an estimator as opaque: it predicts a score vector for a
state's features, trains on a batch of gradient targets, and can be copied
(deep, independent) or merged from another instance of the same kind.

Score/target layout:
- policy estimators: (num_actions,)
- combined state-action-value estimators: (1 + num_actions,), slot 0 is the
  state value ("state-value offset" = 1)
"""

from __future__ import annotations

from typing import Protocol, Self

import jax.numpy as jnp

from agent.state import State
from errors import EstimatorError
from rl_types import Array, ScoreVector


class FunctionEstimator(Protocol):
    """Trainable mapping from state features to per-action scores."""

    @property
    def num_actions(self) -> int: ...

    def is_state_action_value_function(self) -> bool: ...

    def predict(self, features: Array) -> ScoreVector: ...

    def train(self, features: Array, targets: Array) -> None: ...

    def copy(self) -> Self: ...

    def merge_from(self, other: Self, *, hard: bool) -> None: ...

    def add(self, state: State) -> None: ...


def state_value_offset(estimator: FunctionEstimator) -> int:
    """Leading slots before the first action score (0 or 1)."""
    return 1 if estimator.is_state_action_value_function() else 0


def score_width(estimator: FunctionEstimator) -> int:
    """Length of every score and target vector for `estimator`."""
    return estimator.num_actions + state_value_offset(estimator)


def action_scores(estimator: FunctionEstimator, features: Array) -> Array:
    """Predict and strip the state-value slot, leaving one score per action.

    Raises:
        EstimatorError: If the prediction has the wrong length.
    """
    scores = estimator.predict(features)
    expected = score_width(estimator)
    if scores.shape != (expected,):
        raise EstimatorError(
            f"estimator returned scores of shape {scores.shape}, "
            f"expected ({expected},)"
        )
    return scores[state_value_offset(estimator) :]


def output_gradients(
    outputs: Array, targets: Array, *, state_action_value: bool
) -> Array:
    """Gradient of the training loss with respect to estimator outputs.

    Policy-slot targets are ascent directions, so the loss gradient there is
    the negated target. In combined mode slot 0 is a squared-error value
    head, so its gradient is `output - td_target`.

    Args:
        outputs: (B, K) estimator outputs.
        targets: (B, K) gradient targets.
        state_action_value: Whether slot 0 is a value head.

    Returns:
        (B, K) gradients.
    """
    if not state_action_value:
        return -targets
    value_grad = outputs[:, :1] - targets[:, :1]
    return jnp.concatenate([value_grad, -targets[:, 1:]], axis=1)


def check_training_batch(features: Array, targets: Array, width: int) -> None:
    """Validate the shapes of a training batch.

    Raises:
        EstimatorError: If features/targets are not (B, F)/(B, width).
    """
    if features.ndim != 2 or targets.ndim != 2:
        raise EstimatorError("features and targets must be rank-2 batches")
    if features.shape[0] != targets.shape[0]:
        raise EstimatorError(
            f"batch size mismatch: {features.shape[0]} feature rows, "
            f"{targets.shape[0]} target rows"
        )
    if targets.shape[1] != width:
        raise EstimatorError(
            f"targets have width {targets.shape[1]}, expected {width}"
        )
