"""
Core type aliases shared by the policy core.

Hard requirements:
- No Any
- Scores, targets and features are JAX arrays at module boundaries
- Prefer explicit type aliases and NewType wrappers for counters/IDs
"""

from __future__ import annotations

from typing import NewType

import jax

# Canonical array types used across modules.
type Array = jax.Array
# PRNGKey is a JAX uint32[2] array by convention.
type PRNGKey = jax.Array

# Per-action scores predicted by an estimator for one state.
type ScoreVector = jax.Array

# Strongly-typed integer wrappers for counters/IDs.
Step = NewType("Step", int)
AgentId = NewType("AgentId", str)
