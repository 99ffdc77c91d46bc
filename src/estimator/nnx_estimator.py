"""
Neural function estimator built on flax.nnx and optax.

Design:
- parameters are held functionally (graphdef + nnx.State + optax state) and
  replaced wholesale on every change, so copies never alias mutable state
- `train` runs jitted optimizer steps on a loss whose gradient with respect
  to the network outputs is `estimator.base.output_gradients`
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable
from dataclasses import dataclass
from typing import Self

import jax
import jax.numpy as jnp
import optax
from flax import nnx

from agent.buffer import BufferConfig, ExperienceBuffer
from agent.state import State
from config import EstimatorConfig
from errors import EstimatorError
from estimator.base import check_training_batch, output_gradients
from estimator.network import NetworkConfig, PolicyNetwork
from rl_types import Array, ScoreVector, Step

type ForwardFn = Callable[[nnx.State, Array], Array]
type TrainStepFn = Callable[
    [nnx.State, optax.OptState, Array, Array], tuple[nnx.State, optax.OptState]
]


@dataclass(frozen=True, slots=True)
class EstimatorState:
    """Immutable parameter/optimizer state."""

    step: Step
    params: nnx.State
    opt_state: optax.OptState


def make_optimizer(cfg: EstimatorConfig) -> optax.GradientTransformation:
    """Create the optax optimizer for estimator training."""
    return optax.adam(cfg.learning_rate)


def _make_forward(graphdef: nnx.GraphDef[PolicyNetwork]) -> ForwardFn:
    """Compile a forward pass for a fixed graph definition."""

    @jax.jit
    def forward(params: nnx.State, features: Array) -> Array:
        model = nnx.merge(graphdef, params)
        return model(features)

    return forward


def _make_train_step(
    graphdef: nnx.GraphDef[PolicyNetwork],
    tx: optax.GradientTransformation,
    state_action_value: bool,
) -> TrainStepFn:
    """Compile one optimizer step for a fixed graph definition."""

    @jax.jit
    def train_step(
        params: nnx.State,
        opt_state: optax.OptState,
        features: Array,
        targets: Array,
    ) -> tuple[nnx.State, optax.OptState]:
        def loss_fn(p: nnx.State) -> Array:
            outputs = nnx.merge(graphdef, p)(features)
            # d(loss)/d(outputs) == output gradients, averaged over the batch.
            out_grads = jax.lax.stop_gradient(
                output_gradients(
                    outputs, targets, state_action_value=state_action_value
                )
            )
            return jnp.sum(out_grads * outputs) / features.shape[0]

        grads = jax.grad(loss_fn)(params)
        updates, new_opt_state = tx.update(grads, opt_state, params)
        return optax.apply_updates(params, updates), new_opt_state

    return train_step


class NNXFunctionEstimator:
    """Policy (or combined value/policy) estimator backed by an MLP."""

    def __init__(self, cfg: EstimatorConfig) -> None:
        """Build the network, optimizer and compiled step functions."""
        if cfg.feature_size < 1:
            raise EstimatorError("nnx estimator needs feature_size >= 1")
        self._cfg = cfg
        model = PolicyNetwork(
            NetworkConfig.from_estimator(cfg), rngs=nnx.Rngs(cfg.seed)
        )
        self._graphdef, params = nnx.split(model)
        self._tx = make_optimizer(cfg)
        self._state = EstimatorState(
            step=Step(0), params=params, opt_state=self._tx.init(params)
        )
        self._forward = _make_forward(self._graphdef)
        self._train_step = _make_train_step(
            self._graphdef, self._tx, cfg.state_action_value
        )
        self.buffer = ExperienceBuffer(
            BufferConfig(capacity=cfg.buffer_capacity)
        )

    @property
    def num_actions(self) -> int:
        return self._cfg.num_actions

    @property
    def step(self) -> Step:
        """Number of optimizer steps taken."""
        return self._state.step

    def is_state_action_value_function(self) -> bool:
        return self._cfg.state_action_value

    def predict(self, features: Array) -> ScoreVector:
        """Score vector for a single feature vector.

        Raises:
            EstimatorError: If `features` does not have shape (F,).
        """
        x = jnp.asarray(features, dtype=jnp.float32)
        if x.shape != (self._cfg.feature_size,):
            raise EstimatorError(
                f"features have shape {x.shape}, "
                f"expected ({self._cfg.feature_size},)"
            )
        return self._forward(self._state.params, x[None, :])[0]

    def train(self, features: Array, targets: Array) -> None:
        """Run `number_of_iterations` optimizer steps on one batch."""
        x = jnp.asarray(features, dtype=jnp.float32)
        y = jnp.asarray(targets, dtype=jnp.float32)
        width = self._cfg.num_actions + int(self._cfg.state_action_value)
        check_training_batch(x, y, width)
        if x.shape[1] != self._cfg.feature_size:
            raise EstimatorError(
                f"features have width {x.shape[1]}, "
                f"expected {self._cfg.feature_size}"
            )
        if y.shape[0] == 0:
            return

        params, opt_state = self._state.params, self._state.opt_state
        for _ in range(self._cfg.number_of_iterations):
            params, opt_state = self._train_step(params, opt_state, x, y)
        # Swap in the new state only once every step succeeded.
        self._state = EstimatorState(
            step=Step(int(self._state.step) + self._cfg.number_of_iterations),
            params=params,
            opt_state=opt_state,
        )

    def copy(self) -> Self:
        """Independent estimator with identical parameters.

        Arrays are immutable and the state is replaced on every change, so
        sharing the current trees is a deep copy in effect.
        """
        duplicate = object.__new__(type(self))
        duplicate._cfg = self._cfg
        duplicate._graphdef = self._graphdef
        duplicate._tx = self._tx
        duplicate._state = self._state
        duplicate._forward = self._forward
        duplicate._train_step = self._train_step
        duplicate.buffer = ExperienceBuffer(
            BufferConfig(capacity=self._cfg.buffer_capacity)
        )
        return duplicate

    def merge_from(self, other: Self, *, hard: bool) -> None:
        """Overwrite (hard) or blend at rate tau (soft) from `other`.

        Raises:
            EstimatorError: If `other` has a different network shape.
        """
        if not isinstance(other, NNXFunctionEstimator) or (
            NetworkConfig.from_estimator(other._cfg)
            != NetworkConfig.from_estimator(self._cfg)
        ):
            raise EstimatorError("cannot merge incompatible estimators")
        if hard:
            params = other._state.params
        else:
            params = optax.incremental_update(
                other._state.params, self._state.params, self._cfg.tau
            )
        self._state = dataclasses.replace(self._state, params=params)

    def add(self, state: State) -> None:
        self.buffer.add(state)

    def parameters(self) -> nnx.State:
        """Current parameter tree."""
        return self._state.params
