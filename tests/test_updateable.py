"""Tests for the update engine."""

from __future__ import annotations

import math

import chex
import jax.numpy as jnp
import pytest

from agent.state import State, Transition
from agent.sync import UpdateBarrier
from config import (
    EstimatorConfig,
    EstimatorKind,
    ProximalPolicyConfig,
    UpdateConfig,
    VanillaPolicyGradientConfig,
)
from errors import (
    ComputationError,
    ConfigurationError,
    EstimatorError,
    InvalidActionSetError,
)
from estimator.tabular import TabularFunctionEstimator
from policy.actionable import Policy
from policy.metrics import UpdateMetrics
from policy.rules import ProximalPolicyUpdate, VanillaPolicyGradient
from policy.updateable import UpdateablePolicy
from rl_types import AgentId, Array
from selection.greedy import GreedySelector

FEATURES_A = jnp.array([1.0, 0.0])
FEATURES_B = jnp.array([0.0, 1.0])
NO_ENTROPY = VanillaPolicyGradientConfig(apply_entropy=False)


class _SpyEstimator(TabularFunctionEstimator):
    """Tabular estimator that counts (and can fail) training calls."""

    def __init__(self, cfg: EstimatorConfig) -> None:
        super().__init__(cfg)
        self.train_calls: list[tuple[Array, Array]] = []
        self.fail = False

    def train(self, features: Array, targets: Array) -> None:
        if self.fail:
            raise EstimatorError("trainer offline")
        self.train_calls.append((features, targets))
        super().train(features, targets)


class _ConstantRule:
    """Rule returning a fixed (possibly broken) gradient value."""

    def __init__(
        self, estimator: TabularFunctionEstimator, value: float
    ) -> None:
        self.estimator = estimator
        self.value = value

    def pre_process(self) -> None:
        pass

    def post_process(self) -> None:
        pass

    def gradient_value(self, transition: Transition) -> float:
        if self.value == 0.0:
            return 1.0 / self.value
        return self.value


def _estimator(*, state_action_value: bool = False) -> _SpyEstimator:
    est = _SpyEstimator(
        EstimatorConfig(
            num_actions=3,
            kind=EstimatorKind.TABULAR,
            state_action_value=state_action_value,
            learning_rate=0.1,
        )
    )
    offset = [0.0] if state_action_value else []
    est.set_scores(FEATURES_A, jnp.array([*offset, 0.2, 0.5, 0.3]))
    est.set_scores(FEATURES_B, jnp.array([*offset, 0.6, 0.1, 0.3]))
    return est


def _transition(
    features: Array, action: int, advantage: float, td_target: float = 1.0
) -> Transition:
    state = State(features=features, legal_actions={0, 1, 2})
    return Transition(
        state=state, action=action, td_target=td_target, advantage=advantage
    )


def _engine(
    est: _SpyEstimator, cfg: UpdateConfig | None = None, **kwargs: object
) -> UpdateablePolicy:
    return UpdateablePolicy(
        Policy(GreedySelector(), est),
        VanillaPolicyGradient(est, NO_ENTROPY),
        cfg=cfg,
        **kwargs,  # type: ignore[arg-type]
    )


def test_empty_batch_never_trains() -> None:
    """update([]) is a no-op for the estimator."""
    est = _estimator()
    engine = _engine(est)
    engine.update([])
    assert est.train_calls == []


def test_targets_are_most_recent_first() -> None:
    """Rows run newest first; only the taken action's slot is set."""
    est = _estimator()
    engine = _engine(est)
    older = _transition(FEATURES_A, action=0, advantage=1.0)
    newer = _transition(FEATURES_B, action=2, advantage=2.0)
    features, targets = engine.build_targets([older, newer])

    chex.assert_trees_all_close(features, jnp.stack([FEATURES_B, FEATURES_A]))
    expected = jnp.array(
        [
            [0.0, 0.0, -math.log(0.3 + 1e-15) * 2.0],
            [-math.log(0.2 + 1e-15) * 1.0, 0.0, 0.0],
        ]
    )
    chex.assert_trees_all_close(targets, expected, rtol=1e-5)


def test_chronological_order_option() -> None:
    """chronological=True keeps the batch order."""
    est = _estimator()
    engine = _engine(est, UpdateConfig(chronological=True))
    older = _transition(FEATURES_A, action=0, advantage=1.0)
    newer = _transition(FEATURES_B, action=2, advantage=2.0)
    features, _ = engine.build_targets([older, newer])
    chex.assert_trees_all_close(features, jnp.stack([FEATURES_A, FEATURES_B]))


def test_combined_estimator_gets_td_target_in_slot_zero() -> None:
    """Slot 0 carries the raw TD target, actions shift by one."""
    est = _estimator(state_action_value=True)
    engine = _engine(est)
    transition = _transition(
        FEATURES_A, action=1, advantage=1.0, td_target=0.7
    )
    _, targets = engine.build_targets([transition])
    assert float(targets[0, 0]) == pytest.approx(0.7)
    assert float(targets[0, 2]) == pytest.approx(-math.log(0.5 + 1e-15))
    assert float(targets[0, 1]) == 0.0
    assert float(targets[0, 3]) == 0.0


def test_update_trains_once_toward_positive_advantage() -> None:
    """One training call per batch; positive advantage raises p(action)."""
    est = _estimator()
    engine = _engine(est)
    before = float(est.predict(FEATURES_A)[1])
    engine.update(
        [
            _transition(FEATURES_A, action=1, advantage=1.0),
            _transition(FEATURES_B, action=0, advantage=0.5),
        ]
    )
    assert len(est.train_calls) == 1
    assert est.train_calls[0][1].shape == (2, 3)
    assert float(est.predict(FEATURES_A)[1]) > before


def test_failed_update_leaves_estimator_untouched() -> None:
    """Errors while building targets abort before any training."""
    est = _estimator()
    rule = ProximalPolicyUpdate(est, ProximalPolicyConfig(update_cycle=1))
    engine = UpdateablePolicy(Policy(GreedySelector(), est), rule)
    params = est.parameters()
    reference = rule.reference

    illegal = Transition(
        state=State(features=FEATURES_B, legal_actions={0, 1}),
        action=2,
        td_target=1.0,
        advantage=1.0,
    )
    with pytest.raises(InvalidActionSetError):
        engine.update([_transition(FEATURES_A, 1, 1.0), illegal])

    assert est.train_calls == []
    chex.assert_trees_all_equal(est.parameters(), params)
    # post_process never ran, so the reference was not refreshed.
    assert rule.reference is reference


def test_arithmetic_failures_become_computation_errors() -> None:
    """Division by zero and non-finite values abort the batch."""
    for value in (0.0, math.inf, math.nan):
        est = _estimator()
        engine = UpdateablePolicy(
            Policy(GreedySelector(), est), _ConstantRule(est, value)
        )
        with pytest.raises(ComputationError):
            engine.update([_transition(FEATURES_A, 1, 1.0)])
        assert est.train_calls == []


def test_estimator_errors_propagate_unchanged() -> None:
    """A failing trainer surfaces its own error."""
    est = _estimator()
    est.fail = True
    engine = _engine(est)
    params = est.parameters()
    with pytest.raises(EstimatorError, match="trainer offline"):
        engine.update([_transition(FEATURES_A, 1, 1.0)])
    chex.assert_trees_all_equal(est.parameters(), params)


def test_rule_must_share_the_policy_estimator() -> None:
    """A rule bound to another estimator is a configuration error."""
    est = _estimator()
    with pytest.raises(ConfigurationError):
        _ = UpdateablePolicy(
            Policy(GreedySelector(), est),
            VanillaPolicyGradient(_estimator()),
        )


def test_shared_estimator_trains_once_per_round() -> None:
    """Agents sharing an estimator train it once all have contributed."""
    est = _estimator()
    barrier = UpdateBarrier()
    first = _engine(est, barrier=barrier, agent_id=AgentId("first"))
    second = _engine(est, barrier=barrier, agent_id=AgentId("second"))

    first.update([_transition(FEATURES_A, 1, 1.0)])
    assert est.train_calls == []
    assert not second.ready_to_update()

    second.update(
        [
            _transition(FEATURES_B, 0, 1.0),
            _transition(FEATURES_A, 2, 1.0),
        ]
    )
    assert len(est.train_calls) == 1
    features, _ = est.train_calls[0]
    assert features.shape == (3, 2)
    # Registration order: the first agent's row leads.
    chex.assert_trees_all_close(features[0], FEATURES_A)

    # An empty batch still counts as a contribution.
    first.update([])
    second.update([_transition(FEATURES_B, 0, 1.0)])
    assert len(est.train_calls) == 2
    assert est.train_calls[1][0].shape == (1, 2)

    # All-empty rounds skip training.
    first.update([])
    second.update([])
    assert len(est.train_calls) == 2


def test_shared_estimator_requires_agent_id() -> None:
    """A barrier without an agent id is rejected."""
    est = _estimator()
    with pytest.raises(ConfigurationError):
        _ = _engine(est, barrier=UpdateBarrier())


def test_metrics_writer_receives_batch_summary() -> None:
    """Every trained batch produces one UpdateMetrics record."""
    est = _estimator()
    written: list[UpdateMetrics] = []
    engine = _engine(est, metrics_writer=written.append)
    engine.update(
        [
            _transition(FEATURES_A, action=1, advantage=1.0),
            _transition(FEATURES_B, action=0, advantage=3.0),
        ]
    )
    engine.update([])
    assert len(written) == 1
    metrics = written[0]
    gradients = [-math.log(0.5) * 1.0, -math.log(0.6) * 3.0]
    assert metrics.step == 1
    assert metrics.batch_size == 2
    assert metrics.gradient_mean == pytest.approx(
        sum(gradients) / 2, rel=1e-5
    )
    assert metrics.gradient_abs_max == pytest.approx(max(gradients), rel=1e-5)
    assert metrics.advantage_mean == pytest.approx(2.0)


def test_facade_methods_delegate() -> None:
    """act/set_learning/on_episode_end forward to the wrapped policy."""
    est = _estimator()
    engine = _engine(est)
    state = State(features=FEATURES_A, legal_actions={0, 1, 2})
    engine.act(state)
    assert state.action == 1
    engine.set_learning(False)
    assert not engine.policy.learning
    engine.on_episode_end()
    assert engine.ready_to_update()
