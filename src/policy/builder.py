"""
Assemble estimators, selectors, policies and update rules from config.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import cast

from agent.sync import UpdateBarrier
from config import (
    EstimatorConfig,
    EstimatorKind,
    PolicyConfig,
    ProximalPolicyConfig,
    UpdateAlgorithm,
    UpdateConfig,
    VanillaPolicyGradientConfig,
)
from estimator.base import FunctionEstimator
from estimator.nnx_estimator import NNXFunctionEstimator
from estimator.tabular import TabularFunctionEstimator
from policy.actionable import Policy
from policy.metrics import MetricsWriter
from policy.rules import (
    GradientRule,
    MCTSPolicyUpdate,
    ProximalPolicyUpdate,
    VanillaPolicyGradient,
)
from policy.updateable import UpdateablePolicy
from rl_types import AgentId
from selection.factory import create_selector


def create_estimator(cfg: EstimatorConfig) -> FunctionEstimator:
    """Instantiate the estimator named by `cfg.kind`."""
    if cfg.kind is EstimatorKind.TABULAR:
        return TabularFunctionEstimator(cfg)
    return NNXFunctionEstimator(cfg)


def create_rule(
    cfg: UpdateConfig, estimator: FunctionEstimator
) -> GradientRule:
    """Instantiate the gradient rule named by `cfg.algorithm`."""
    if cfg.algorithm is UpdateAlgorithm.PPO:
        # UpdateConfig already matched the options to the algorithm.
        ppo_options = cast(
            ProximalPolicyConfig, cfg.options or ProximalPolicyConfig()
        )
        return ProximalPolicyUpdate(estimator, ppo_options)
    if cfg.algorithm is UpdateAlgorithm.MCTS:
        return MCTSPolicyUpdate(estimator)
    vpg_options = cast(
        VanillaPolicyGradientConfig,
        cfg.options or VanillaPolicyGradientConfig(),
    )
    return VanillaPolicyGradient(estimator, vpg_options)


@dataclass(frozen=True, slots=True)
class BuiltPolicy:
    """Everything `build_policy` wires together.

    `updateable` is None when the config has no `[update]` table.
    """

    estimator: FunctionEstimator
    policy: Policy
    updateable: UpdateablePolicy | None


def build_policy(
    cfg: PolicyConfig,
    *,
    estimator: FunctionEstimator | None = None,
    barrier: UpdateBarrier | None = None,
    agent_id: AgentId | None = None,
    metrics_writer: MetricsWriter | None = None,
) -> BuiltPolicy:
    """Build a policy (and its update engine) from a resolved config.

    Args:
        cfg: Validated policy configuration.
        estimator: Existing estimator to share; a new one is built from
            `cfg.estimator` when omitted.
        barrier: Shared-estimator barrier, for multi-agent training.
        agent_id: Id registered with `barrier`.
        metrics_writer: Receives UpdateMetrics after every trained batch.

    Returns:
        BuiltPolicy.
    """
    # Reuse a caller-supplied estimator so several agents can share it.
    if estimator is None:
        estimator = create_estimator(cfg.estimator)
    policy = Policy(create_selector(cfg.selector), estimator)
    # Without an update table the policy only acts.
    if cfg.update is None:
        return BuiltPolicy(estimator=estimator, policy=policy, updateable=None)
    updateable = UpdateablePolicy(
        policy,
        create_rule(cfg.update, estimator),
        cfg=cfg.update,
        barrier=barrier,
        agent_id=agent_id,
        metrics_writer=metrics_writer,
    )
    return BuiltPolicy(
        estimator=estimator, policy=policy, updateable=updateable
    )
