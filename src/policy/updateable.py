"""
Update engine: batch of transitions in, one estimator training call out.

For every non-empty batch:
1. rule.pre_process()
2. one gradient target per transition (most recent first unless
   `chronological`): slot 0 carries the TD target for combined
   state-action-value estimators, slot `action + offset` carries
   `-rule.gradient_value(transition)`
3. rule.post_process()
4. a single estimator.train call, or a contribution to the shared-estimator
   barrier whose completing call trains once for every registered agent

Targets are built completely before anything is submitted, so a batch that
fails during construction never reaches the estimator.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

import jax.numpy as jnp
import numpy as np

from agent.state import State, Transition
from agent.sync import Contribution, UpdateBarrier
from config import UpdateConfig
from errors import ComputationError, ConfigurationError, InvalidActionSetError
from estimator.base import FunctionEstimator, score_width
from policy.actionable import Policy
from policy.metrics import MetricsWriter, UpdateMetrics
from policy.rules import GradientRule
from rl_types import AgentId, Array


class UpdateablePolicy:
    """A Policy plus a gradient rule driving updates of its estimator."""

    def __init__(
        self,
        policy: Policy,
        rule: GradientRule,
        *,
        cfg: UpdateConfig | None = None,
        barrier: UpdateBarrier | None = None,
        agent_id: AgentId | None = None,
        metrics_writer: MetricsWriter | None = None,
    ) -> None:
        if rule.estimator is not policy.estimator:
            raise ConfigurationError(
                f"{type(rule).__name__} is bound to a different estimator "
                "than the policy"
            )
        if barrier is not None and agent_id is None:
            raise ConfigurationError("a shared estimator needs an agent_id")
        self.policy = policy
        self.rule = rule
        self.cfg = cfg or UpdateConfig()
        self.barrier = barrier
        self.agent_id = agent_id
        self.metrics_writer = metrics_writer
        self._trained_batches = 0
        if barrier is not None and agent_id is not None:
            barrier.register(agent_id)

    @property
    def estimator(self) -> FunctionEstimator:
        return self.policy.estimator

    def act(self, state: State, force_greedy: bool = False) -> None:
        self.policy.act(state, force_greedy)

    def set_learning(self, learning: bool) -> None:
        self.policy.set_learning(learning)

    def on_episode_end(self) -> None:
        self.policy.on_episode_end()

    def ready_to_update(self) -> bool:
        """Whether the next training call would cover every agent."""
        if self.barrier is None:
            return True
        return self.barrier.ready_to_update()

    def update(self, batch: Sequence[Transition]) -> None:
        """Train the estimator once on `batch`.

        An empty batch never reaches the estimator; with a shared estimator
        it still counts as this agent's (zero-row) contribution.

        Raises:
            ComputationError: If a gradient value cannot be computed.
            InvalidActionSetError: If a transition's action is not legal in
                its state.
            EstimatorError: Propagated unchanged from the estimator.
        """
        if not batch:
            if self.barrier is not None:
                self._submit(self._empty_contribution(), advantage_mean=0.0)
            return

        # Build every target before anything touches the estimator.
        self.rule.pre_process()
        features, targets = self.build_targets(batch)
        self.rule.post_process()

        # Train directly, or hand the rows to the shared-estimator barrier.
        advantage_mean = float(np.mean([t.advantage for t in batch]))
        self._submit(
            Contribution(features=features, targets=targets),
            advantage_mean=advantage_mean,
        )

    def build_targets(self, batch: Sequence[Transition]) -> tuple[Array, Array]:
        """Build (B, F) features and (B, K) gradient targets for `batch`.

        Rows follow the iteration order: most recent transition first by
        default, oldest first with `chronological`.
        """
        offset = self.policy.state_value_offset
        width = score_width(self.estimator)
        ordered = list(batch)
        if not self.cfg.chronological:
            ordered.reverse()

        # Fill targets on host; only the taken action's slot is non-zero.
        targets = np.zeros((len(ordered), width), dtype=np.float32)
        for row, transition in enumerate(ordered):
            self._check_action(transition, width - offset)
            value = self._gradient_value(transition)
            if offset:
                # Value slot trains toward the raw TD target.
                targets[row, 0] = transition.td_target
            targets[row, transition.action + offset] = -value

        # Stack features in the same row order as the targets.
        features = jnp.stack(
            [jnp.asarray(t.state.features, dtype=jnp.float32) for t in ordered]
        )
        return features, jnp.asarray(targets)

    def _gradient_value(self, transition: Transition) -> float:
        try:
            value = float(self.rule.gradient_value(transition))
        except (ZeroDivisionError, OverflowError) as exc:
            raise ComputationError(
                f"gradient for action {transition.action} failed: {exc}"
            ) from exc
        if not math.isfinite(value):
            raise ComputationError(
                f"non-finite gradient {value} for action {transition.action}"
            )
        return value

    @staticmethod
    def _check_action(transition: Transition, num_actions: int) -> None:
        action = transition.action
        if action not in transition.state.legal_actions:
            raise InvalidActionSetError(
                f"action {action} is not legal in its state"
            )
        if action >= num_actions:
            raise InvalidActionSetError(
                f"action {action} outside {num_actions} estimator actions"
            )

    def _empty_contribution(self) -> Contribution:
        width = score_width(self.estimator)
        return Contribution(
            features=jnp.zeros((0, 0), dtype=jnp.float32),
            targets=jnp.zeros((0, width), dtype=jnp.float32),
        )

    def _submit(
        self, contribution: Contribution, *, advantage_mean: float
    ) -> None:
        # Shared estimators wait until every registered agent contributed.
        if self.barrier is None or self.agent_id is None:
            combined: Contribution | None = contribution
        else:
            combined = self.barrier.contribute(self.agent_id, contribution)
        if combined is None or combined.rows == 0:
            return

        # One training call per batch, then report it.
        self.estimator.train(combined.features, combined.targets)
        self._trained_batches += 1
        if self.metrics_writer is not None:
            self.metrics_writer(
                self._metrics(combined, advantage_mean=advantage_mean)
            )

    def _metrics(
        self, batch: Contribution, *, advantage_mean: float
    ) -> UpdateMetrics:
        """Summarize a trained batch.

        Each row has a single non-zero action slot, so the row sum over the
        action slots recovers the written gradient target.
        """
        offset = self.policy.state_value_offset
        per_row = np.asarray(batch.targets, dtype=np.float64)[:, offset:].sum(
            axis=1
        )
        return UpdateMetrics(
            step=self._trained_batches,
            batch_size=batch.rows,
            gradient_mean=float(per_row.mean()),
            gradient_abs_max=float(np.abs(per_row).max()),
            advantage_mean=advantage_mean,
        )
