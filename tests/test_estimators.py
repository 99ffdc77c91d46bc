"""Tests for the tabular and NNX function estimators."""

from __future__ import annotations

import chex
import jax
import jax.numpy as jnp
import pytest

from agent.state import State
from config import EstimatorConfig, EstimatorKind
from errors import EstimatorError
from estimator.base import action_scores, output_gradients
from estimator.nnx_estimator import NNXFunctionEstimator
from estimator.tabular import TabularFunctionEstimator

FEATURES = jnp.array([1.0, 0.0, -1.0, 0.5])


def _tabular(**overrides: object) -> TabularFunctionEstimator:
    return TabularFunctionEstimator(
        EstimatorConfig(
            num_actions=3,
            kind=EstimatorKind.TABULAR,
            learning_rate=0.1,
            **overrides,  # type: ignore[arg-type]
        )
    )


def _nnx(**overrides: object) -> NNXFunctionEstimator:
    return NNXFunctionEstimator(
        EstimatorConfig(
            num_actions=3,
            feature_size=4,
            hidden_sizes=(8,),
            learning_rate=0.05,
            **overrides,  # type: ignore[arg-type]
        )
    )


def test_output_gradients_layout() -> None:
    """Policy slots ascend on the target; slot 0 regresses to the TD target."""
    outputs = jnp.array([[0.2, 0.5, 0.3]])
    targets = jnp.array([[1.0, 0.0, 2.0]])
    chex.assert_trees_all_close(
        output_gradients(outputs, targets, state_action_value=False),
        -targets,
    )
    chex.assert_trees_all_close(
        output_gradients(outputs, targets, state_action_value=True),
        jnp.array([[-0.8, -0.0, -2.0]]),
    )


def test_tabular_starts_uniform() -> None:
    """Unseen rows are uniform, with a zero value slot in combined mode."""
    chex.assert_trees_all_close(
        _tabular().predict(FEATURES), jnp.full((3,), 1.0 / 3.0)
    )
    combined = _tabular(state_action_value=True)
    chex.assert_trees_all_close(
        combined.predict(FEATURES),
        jnp.array([0.0, 1.0 / 3.0, 1.0 / 3.0, 1.0 / 3.0]),
    )


def test_tabular_train_moves_target_slot() -> None:
    """One SGD step raises the slot with a positive target by lr * target."""
    est = _tabular()
    est.train(FEATURES[None, :], jnp.array([[0.0, 1.0, 0.0]]))
    chex.assert_trees_all_close(
        est.predict(FEATURES),
        jnp.array([1.0 / 3.0, 1.0 / 3.0 + 0.1, 1.0 / 3.0]),
        atol=1e-6,
    )


def test_tabular_rejects_bad_batches() -> None:
    """Shape mismatches surface as EstimatorError."""
    est = _tabular()
    with pytest.raises(EstimatorError):
        est.train(FEATURES[None, :], jnp.zeros((1, 4)))
    with pytest.raises(EstimatorError):
        est.train(FEATURES[None, :], jnp.zeros((2, 3)))
    with pytest.raises(EstimatorError):
        est.set_scores(FEATURES, jnp.zeros(5))


def test_tabular_copy_is_independent() -> None:
    """Mutating the original never changes the copy."""
    est = _tabular()
    est.set_scores(FEATURES, jnp.array([0.2, 0.3, 0.5]))
    snapshot = est.copy()
    est.train(FEATURES[None, :], jnp.array([[1.0, 0.0, 0.0]]))
    chex.assert_trees_all_close(
        snapshot.predict(FEATURES), jnp.array([0.2, 0.3, 0.5])
    )
    assert not jnp.allclose(est.predict(FEATURES), snapshot.predict(FEATURES))


def test_tabular_merge_hard_and_soft() -> None:
    """Hard merge overwrites; soft merge blends at rate tau."""
    est = _tabular(tau=0.25)
    other = _tabular()
    other.set_scores(FEATURES, jnp.array([1.0, 0.0, 0.0]))

    soft = est.copy()
    soft.merge_from(other, hard=False)
    expected = 0.25 * jnp.array([1.0, 0.0, 0.0]) + 0.75 * jnp.full(
        (3,), 1.0 / 3.0
    )
    chex.assert_trees_all_close(soft.predict(FEATURES), expected, atol=1e-6)

    est.merge_from(other, hard=True)
    chex.assert_trees_all_equal(est.parameters(), other.parameters())

    with pytest.raises(EstimatorError):
        est.merge_from(_tabular(state_action_value=True), hard=True)


def test_estimator_buffers_collect_states() -> None:
    """add() stores states in the estimator's experience buffer."""
    est = _tabular(buffer_capacity=2)
    states = [
        State(features=FEATURES, legal_actions={0, 1}, time_step=t)
        for t in range(3)
    ]
    for state in states:
        est.add(state)
    assert [s.time_step for s in est.buffer.chronological()] == [1, 2]
    # Replay batches come straight from the buffer.
    replay = est.buffer.sample_batch(jax.random.PRNGKey(0), 4)
    assert {s.time_step for s in replay} <= {1, 2}
    # Copies start with an empty buffer.
    assert len(est.copy().buffer) == 0


def test_nnx_predict_shapes() -> None:
    """Policy output is a distribution; combined mode prepends a value."""
    probs = _nnx().predict(FEATURES)
    assert probs.shape == (3,)
    assert float(probs.sum()) == pytest.approx(1.0, abs=1e-5)

    combined = _nnx(state_action_value=True).predict(FEATURES)
    assert combined.shape == (4,)
    assert -1.0 <= float(combined[0]) <= 1.0
    assert float(combined[1:].sum()) == pytest.approx(1.0, abs=1e-5)


def test_nnx_predict_rejects_wrong_features() -> None:
    """Feature vectors of the wrong size are an EstimatorError."""
    with pytest.raises(EstimatorError):
        _ = _nnx().predict(jnp.zeros(3))


def test_nnx_train_raises_target_probability() -> None:
    """Positive targets on one action raise its probability."""
    est = _nnx(number_of_iterations=5)
    before = float(est.predict(FEATURES)[2])
    targets = jnp.array([[0.0, 0.0, 1.0]])
    est.train(FEATURES[None, :], targets)
    assert est.step == 5
    assert float(est.predict(FEATURES)[2]) > before


def test_nnx_copy_independent_and_merge() -> None:
    """Copies keep their parameters while the original trains."""
    est = _nnx()
    snapshot = est.copy()
    before = snapshot.predict(FEATURES)
    est.train(FEATURES[None, :], jnp.array([[1.0, 0.0, 0.0]]))
    chex.assert_trees_all_equal(snapshot.predict(FEATURES), before)

    snapshot.merge_from(est, hard=True)
    chex.assert_trees_all_equal(snapshot.parameters(), est.parameters())


def test_nnx_failed_train_keeps_parameters() -> None:
    """A rejected batch leaves parameters and step untouched."""
    est = _nnx()
    params = est.parameters()
    with pytest.raises(EstimatorError):
        est.train(jnp.zeros((1, 5)), jnp.zeros((1, 3)))
    assert est.step == 0
    chex.assert_trees_all_equal(est.parameters(), params)


def test_action_scores_strips_value_slot() -> None:
    """action_scores returns one entry per action."""
    est = _tabular(state_action_value=True)
    est.set_scores(FEATURES, jnp.array([0.9, 0.1, 0.6, 0.3]))
    chex.assert_trees_all_close(
        action_scores(est, FEATURES), jnp.array([0.1, 0.6, 0.3])
    )
