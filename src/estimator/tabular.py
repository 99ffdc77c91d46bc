"""
Tabular function estimator: one score row per distinct feature vector.

Rows start at the uniform distribution over actions (value slot 0.0) and are
moved by optax SGD using the output-gradient semantics of
`estimator.base.output_gradients`.
"""

from __future__ import annotations

from typing import Self

import jax.numpy as jnp
import numpy as np
import optax

from agent.buffer import BufferConfig, ExperienceBuffer
from agent.state import State
from config import EstimatorConfig
from errors import EstimatorError
from estimator.base import check_training_batch, output_gradients
from rl_types import Array, ScoreVector


class TabularFunctionEstimator:
    """Lookup-table estimator keyed by the raw bytes of the features."""

    def __init__(self, cfg: EstimatorConfig) -> None:
        self._cfg = cfg
        self._table: dict[bytes, Array] = {}
        self._tx = optax.sgd(cfg.learning_rate)
        self.buffer = ExperienceBuffer(
            BufferConfig(capacity=cfg.buffer_capacity)
        )

    @property
    def num_actions(self) -> int:
        return self._cfg.num_actions

    def is_state_action_value_function(self) -> bool:
        return self._cfg.state_action_value

    def predict(self, features: Array) -> ScoreVector:
        """Return the row for `features` (the initial row if unseen)."""
        return self._table.get(self._key(features), self._initial_row())

    def set_scores(self, features: Array, scores: Array) -> None:
        """Overwrite the row for `features`.

        Raises:
            EstimatorError: If `scores` has the wrong length.
        """
        row = jnp.asarray(scores, dtype=jnp.float32)
        if row.shape != (self._width(),):
            raise EstimatorError(
                f"row has shape {row.shape}, expected ({self._width()},)"
            )
        self._table[self._key(features)] = row

    def train(self, features: Array, targets: Array) -> None:
        """Apply one SGD step per touched row using the mean gradient."""
        check_training_batch(features, targets, self._width())
        batch_size = int(targets.shape[0])
        if batch_size == 0:
            return

        keys = [self._key(row) for row in np.asarray(features)]
        outputs = jnp.stack([self.predict(row) for row in features])
        grads = output_gradients(
            outputs, targets, state_action_value=self._cfg.state_action_value
        )

        # Average gradients over the whole batch, summing repeated rows.
        row_grads: dict[bytes, Array] = {}
        for key, grad in zip(keys, grads, strict=True):
            row_grads[key] = row_grads.get(key, 0.0) + grad / batch_size
        params = {
            key: self._table.get(key, self._initial_row()) for key in row_grads
        }
        updates, _ = self._tx.update(row_grads, self._tx.init(params), params)
        self._table.update(optax.apply_updates(params, updates))

    def copy(self) -> Self:
        """Independent estimator with the same rows and an empty buffer."""
        duplicate = type(self)(self._cfg)
        duplicate._table = dict(self._table)
        return duplicate

    def merge_from(self, other: Self, *, hard: bool) -> None:
        """Overwrite (hard) or blend at rate tau (soft) from `other`.

        Raises:
            EstimatorError: If `other` is not a compatible tabular estimator.
        """
        if not isinstance(other, TabularFunctionEstimator) or (
            other._width() != self._width()
        ):
            raise EstimatorError("cannot merge incompatible estimators")
        if hard:
            self._table = dict(other._table)
            return
        for key, row in other._table.items():
            current = self._table.get(key, self._initial_row())
            self._table[key] = optax.incremental_update(
                row, current, self._cfg.tau
            )

    def add(self, state: State) -> None:
        self.buffer.add(state)

    def parameters(self) -> dict[bytes, Array]:
        """Snapshot of the table."""
        return dict(self._table)

    def _width(self) -> int:
        return self._cfg.num_actions + int(self._cfg.state_action_value)

    def _initial_row(self) -> Array:
        uniform = jnp.full(
            (self._cfg.num_actions,), 1.0 / self._cfg.num_actions
        )
        if self._cfg.state_action_value:
            return jnp.concatenate([jnp.zeros((1,)), uniform])
        return uniform

    @staticmethod
    def _key(features: Array) -> bytes:
        return np.asarray(features, dtype=np.float32).tobytes()
