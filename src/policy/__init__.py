"""
Action-taking policies and their update engine.
"""

from policy.actionable import Policy
from policy.rules import (
    MCTSPolicyUpdate,
    ProximalPolicyUpdate,
    VanillaPolicyGradient,
)
from policy.updateable import UpdateablePolicy

__all__ = [
    "MCTSPolicyUpdate",
    "Policy",
    "ProximalPolicyUpdate",
    "UpdateablePolicy",
    "VanillaPolicyGradient",
]
