"""
Update barrier for estimators shared between several agents.

A shared estimator must be trained once per round, after every registered
agent has contributed its batch, not once per agent. The barrier collects
contributions keyed by agent id and releases the concatenated batch to the
caller whose contribution completes the round.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax.numpy as jnp

from errors import UnregisteredAgentError
from rl_types import AgentId, Array


@dataclass(frozen=True, slots=True)
class Contribution:
    """Features and gradient targets submitted by one agent."""

    features: Array  # (B, F)
    targets: Array  # (B, K)

    @property
    def rows(self) -> int:
        return int(self.targets.shape[0])


class UpdateBarrier:
    """Barrier keyed by the set of registered agents."""

    def __init__(self) -> None:
        self._registered: list[AgentId] = []
        self._pending: dict[AgentId, Contribution] = {}

    @property
    def registered(self) -> tuple[AgentId, ...]:
        return tuple(self._registered)

    def register(self, agent_id: AgentId) -> None:
        """Register an agent; registering twice is a no-op."""
        if agent_id not in self._registered:
            self._registered.append(agent_id)

    def ready_to_update(self) -> bool:
        """True when every registered agent has contributed this round."""
        return bool(self._registered) and all(
            agent_id in self._pending for agent_id in self._registered
        )

    def contribute(
        self, agent_id: AgentId, contribution: Contribution
    ) -> Contribution | None:
        """Submit one agent's batch for the current round.

        A second contribution from the same agent within a round replaces
        the first.

        Returns:
            The concatenated batch (registration order) when this call
            completes the round, otherwise None.

        Raises:
            UnregisteredAgentError: If `agent_id` was never registered.
        """
        if agent_id not in self._registered:
            raise UnregisteredAgentError(
                f"agent {agent_id!r} is not registered for the estimator"
            )
        self._pending[agent_id] = contribution
        if not self.ready_to_update():
            return None

        # Release the round and reset for the next one.
        parts = [self._pending[agent_id] for agent_id in self._registered]
        self._pending = {}
        non_empty = [part for part in parts if part.rows > 0]
        if not non_empty:
            return Contribution(
                features=parts[0].features, targets=parts[0].targets
            )
        return Contribution(
            features=jnp.concatenate([p.features for p in non_empty], axis=0),
            targets=jnp.concatenate([p.targets for p in non_empty], axis=0),
        )
