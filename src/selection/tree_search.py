"""
Tree-search front end (MCTS selector).

The tree is grown along the trajectories actually played: every decision
point of an episode is a node, every legal action an edge carrying the
estimator's prior, a visit count and a running action value. Exploring
decisions take the PUCT arg-max with Dirichlet-noised priors; greedy
decisions take the most visited edge. At episode end the recorded states'
TD targets are backed up along the path and each state's `policy_value` is
replaced with its edge's visit-derived policy value, which becomes the
transition's action value for MCTSPolicyUpdate.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import jax
import jax.numpy as jnp
import numpy as np

from agent.state import State
from config import SelectorOptions, TreeSearchConfig
from errors import ConfigurationError
from selection.base import ActionSelector


@dataclass(slots=True, eq=False)
class SearchNode:
    """Decision point in the search tree."""

    visits: int = 0
    edges: dict[int, SearchEdge] = field(default_factory=dict)

    def set_priors(self, actions: list[int], values: np.ndarray) -> None:
        """Create missing edges and refresh priors over `actions`."""
        weights = np.clip(values, 0.0, None)
        total = float(weights.sum())
        if total <= 0.0 or not np.isfinite(total):
            priors = np.full(len(actions), 1.0 / len(actions))
        else:
            priors = weights / total
        for action, prior in zip(actions, priors, strict=True):
            edge = self.edges.get(action)
            if edge is None:
                self.edges[action] = SearchEdge(
                    action=action, prior=float(prior), parent=self
                )
            else:
                edge.prior = float(prior)


@dataclass(slots=True, eq=False)
class SearchEdge:
    """Action out of a node with its statistics."""

    action: int
    prior: float
    parent: SearchNode
    child: SearchNode = field(default_factory=SearchNode)
    visits: int = 0
    value: float = 0.0
    backups: int = 0

    def puct(self, c_puct: float, epsilon: float, noise: float) -> float:
        """Upper-confidence score used for exploring decisions."""
        prior = epsilon * self.prior + (1.0 - epsilon) * noise
        exploration = math.sqrt(self.parent.visits) / (1 + self.visits)
        return self.value + c_puct * prior * exploration

    def policy_value(self, tau: float) -> float:
        """(N_edge / N_parent) ** (1 / tau); 0 for unvisited nodes."""
        if self.parent.visits == 0:
            return 0.0
        return (self.visits / self.parent.visits) ** (1.0 / tau)

    def backup(self, target: float) -> None:
        """Fold one observed return into the running action value."""
        self.backups += 1
        self.value += (target - self.value) / self.backups


class TreeSearchSelector(ActionSelector):
    """PUCT selection over an episode-trajectory search tree."""

    def configure(self, options: SelectorOptions | None) -> None:
        if options is None:
            options = TreeSearchConfig()
        if not isinstance(options, TreeSearchConfig):
            raise ConfigurationError(
                f"TreeSearchSelector got {type(options).__name__}"
            )
        self._cfg = options
        self.root: SearchNode | None = None
        self._cursor: SearchNode | None = None
        self._path: list[SearchEdge] = []
        self._recorded: list[tuple[SearchEdge, State]] = []
        self._episodes = 0

    def record(self, state: State) -> None:
        """Bind `state` to the edge its decision just took."""
        if not self._path:
            raise ConfigurationError("record() called before any selection")
        self._recorded.append((self._path[-1], state))

    def end_episode(self) -> None:
        """Back up recorded returns into the edges their states chose."""
        # Latest decision first, as returns flow back from the episode end.
        for edge, state in reversed(self._recorded):
            target = 0.0 if state.td_target is None else state.td_target
            edge.backup(target)
            state.policy_value = edge.policy_value(self._cfg.tau)
        self._path = []
        self._recorded = []
        self._cursor = None

    def decay(self) -> None:
        """Count episodes and drop the tree every `reset_cycle` of them."""
        if self._cfg.reset_cycle < 1:
            return
        self._episodes += 1
        if self._episodes >= self._cfg.reset_cycle:
            self._episodes = 0
            self.root = None
            self._cursor = None

    def _choose(self, actions: list[int], values: np.ndarray) -> int:
        return self._decide(actions, values, explore=self.learning)

    def _choose_greedy(self, actions: list[int], values: np.ndarray) -> int:
        return self._decide(actions, values, explore=False)

    def _decide(
        self, actions: list[int], values: np.ndarray, *, explore: bool
    ) -> int:
        # Refresh priors from the current scores at this decision point.
        node = self._current_node()
        node.set_priors(actions, values)
        edges = [node.edges[action] for action in actions]

        # Explore with noisy PUCT, or exploit visit-derived policy values.
        if explore:
            node.visits += 1
            noise = np.asarray(
                jax.random.dirichlet(
                    self._next_key(), jnp.full((len(actions),), self._cfg.alpha)
                ),
                dtype=np.float64,
            )
            scores = [
                edge.puct(self._cfg.c_puct, self._cfg.epsilon, float(n))
                for edge, n in zip(edges, noise, strict=True)
            ]
        else:
            scores = [edge.policy_value(self._cfg.tau) for edge in edges]

        chosen = edges[int(np.argmax(scores))]
        # Only exploring decisions count as visits.
        if explore:
            chosen.visits += 1
        # Descend so the next decision starts at the chosen child.
        self._path.append(chosen)
        self._cursor = chosen.child
        return chosen.action

    def _current_node(self) -> SearchNode:
        if self._cursor is not None:
            return self._cursor
        if self.root is None:
            self.root = SearchNode()
        return self.root
