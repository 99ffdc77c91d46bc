"""
MLP policy (and optional state-value) network.

Input:
- features: (B, F)

Outputs:
- policy estimator: (B, A) action probabilities (softmax)
- combined estimator: (B, 1 + A), slot 0 is a tanh state value in [-1, 1]
"""

from __future__ import annotations

from dataclasses import dataclass

import jax
import jax.numpy as jnp
from flax import nnx

from config import EstimatorConfig
from rl_types import Array


@dataclass(frozen=True, slots=True)
class NetworkConfig:
    """Network shape."""

    feature_size: int
    num_actions: int
    hidden_sizes: tuple[int, ...]
    state_action_value: bool

    @staticmethod
    def from_estimator(cfg: EstimatorConfig) -> NetworkConfig:
        return NetworkConfig(
            feature_size=cfg.feature_size,
            num_actions=cfg.num_actions,
            hidden_sizes=cfg.hidden_sizes,
            state_action_value=cfg.state_action_value,
        )


class PolicyNetwork(nnx.Module):
    """Fully-connected trunk with policy and value heads."""

    def __init__(self, cfg: NetworkConfig, *, rngs: nnx.Rngs) -> None:
        """Initialize trunk layers and heads."""
        self.cfg = cfg
        sizes = (cfg.feature_size, *cfg.hidden_sizes)
        self.hidden = nnx.List(
            [
                nnx.Linear(d_in, d_out, rngs=rngs)
                for d_in, d_out in zip(sizes[:-1], sizes[1:], strict=True)
            ]
        )
        self.policy_head = nnx.Linear(sizes[-1], cfg.num_actions, rngs=rngs)
        # Built in both modes so the parameter tree shape is mode-independent.
        self.value_head = nnx.Linear(sizes[-1], 1, rngs=rngs)

    def __call__(self, features: Array) -> Array:
        """Forward pass.

        Args:
            features: (B, F)

        Returns:
            (B, A) probabilities, or (B, 1 + A) value + probabilities.
        """
        x = features
        for layer in self.hidden:
            x = nnx.relu(layer(x))
        probs = jax.nn.softmax(self.policy_head(x), axis=-1)
        if not self.cfg.state_action_value:
            return probs
        value = jnp.tanh(self.value_head(x))
        return jnp.concatenate([value, probs], axis=-1)
