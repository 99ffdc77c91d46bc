"""Tests for the tree-search selector front end."""

from __future__ import annotations

import jax.numpy as jnp
import pytest

from agent.state import State
from config import TreeSearchConfig
from errors import ConfigurationError
from selection.tree_search import TreeSearchSelector

SCORES = jnp.array([0.1, 0.7, 0.2])
ALL_ACTIONS = {0, 1, 2}


def _decide(selector: TreeSearchSelector, td_target: float) -> State:
    """Select one action the way Policy.act does and record the state."""
    state = State(features=jnp.zeros(2), legal_actions=ALL_ACTIONS)
    state.action = selector.select(SCORES, state.legal_actions)
    state.td_target = td_target
    selector.record(state)
    return state


def test_prior_guided_exploration_order() -> None:
    """Without noise, PUCT follows the prior until visits even it out."""
    selector = TreeSearchSelector(TreeSearchConfig(c_puct=1.0, epsilon=1.0))
    picks = []
    for _ in range(4):
        picks.append(selector.select(SCORES, ALL_ACTIONS))
        selector.end_episode()
    assert picks == [1, 1, 1, 2]
    assert selector.root is not None
    assert selector.root.visits == 4
    assert selector.root.edges[1].visits == 3


def test_end_episode_backs_up_targets_and_writes_policy_value() -> None:
    """Recorded TD targets flow into edge values and state policy values."""
    tau = 1.1
    selector = TreeSearchSelector(TreeSearchConfig(epsilon=1.0, tau=tau))
    first = _decide(selector, td_target=1.0)
    second = _decide(selector, td_target=0.5)
    selector.end_episode()

    assert selector.root is not None
    root_edge = selector.root.edges[first.action]
    assert root_edge.value == pytest.approx(1.0)
    assert root_edge.visits == 1
    child_edge = root_edge.child.edges[second.action]
    assert child_edge.value == pytest.approx(0.5)
    # One visit out of one parent visit.
    assert first.policy_value == pytest.approx(1.0)
    assert second.policy_value == pytest.approx(1.0)

    # A second episode through the root splits the root's visits.
    third = _decide(selector, td_target=0.0)
    selector.end_episode()
    edge = selector.root.edges[third.action]
    expected = (edge.visits / selector.root.visits) ** (1.0 / tau)
    assert third.policy_value == pytest.approx(expected)


def test_running_mean_backup() -> None:
    """Repeated backups through one edge average the targets."""
    selector = TreeSearchSelector(TreeSearchConfig(c_puct=0.0, epsilon=1.0))
    for target in (1.0, 0.0, 0.5):
        _decide(selector, td_target=target)
        selector.end_episode()
    assert selector.root is not None
    # c_puct = 0 ranks purely by value; ties keep the lowest id.
    edge = selector.root.edges[0]
    assert edge.backups == 3
    assert edge.value == pytest.approx(0.5)


def test_greedy_selection_uses_visit_counts() -> None:
    """Outside learning mode the most visited edge wins, without counting."""
    selector = TreeSearchSelector(TreeSearchConfig(c_puct=1.0, epsilon=1.0))
    for _ in range(3):
        selector.select(SCORES, ALL_ACTIONS)
        selector.end_episode()
    selector.set_learning(False)
    assert selector.root is not None
    visits_before = selector.root.visits
    assert selector.select(SCORES, ALL_ACTIONS) == 1
    selector.end_episode()
    assert selector.root.visits == visits_before


def test_force_greedy_on_fresh_tree_takes_lowest_id() -> None:
    """With no visits every policy value is 0, so ties go to action 0."""
    selector = TreeSearchSelector()
    assert selector.select(SCORES, ALL_ACTIONS, force_greedy=True) == 0


def test_reset_cycle_discards_tree() -> None:
    """decay() drops the tree every reset_cycle episodes."""
    selector = TreeSearchSelector(TreeSearchConfig(reset_cycle=2))
    selector.select(SCORES, ALL_ACTIONS)
    selector.end_episode()
    selector.decay()
    assert selector.root is not None
    selector.decay()
    assert selector.root is None


def test_no_reset_by_default() -> None:
    """reset_cycle = 0 keeps the tree forever."""
    selector = TreeSearchSelector()
    selector.select(SCORES, ALL_ACTIONS)
    selector.end_episode()
    for _ in range(5):
        selector.decay()
    assert selector.root is not None


def test_record_needs_a_decision() -> None:
    """Recording before any selection has no edge to bind to."""
    selector = TreeSearchSelector()
    state = State(features=jnp.zeros(2), legal_actions=ALL_ACTIONS)
    with pytest.raises(ConfigurationError):
        selector.record(state)
