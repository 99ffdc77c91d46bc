"""
Error taxonomy for the policy core.

Every error also derives from the builtin a caller would naturally catch,
so `except ValueError` keeps working around configuration and action-set
mistakes.
"""

from __future__ import annotations


class PolicyCoreError(Exception):
    """Root of all errors raised by the policy core."""


class ConfigurationError(PolicyCoreError, ValueError):
    """Unknown, malformed or out-of-range option found during setup."""


class InvalidActionSetError(PolicyCoreError, ValueError):
    """Selection requested over an empty (or inconsistent) legal-action set."""


class EstimatorError(PolicyCoreError, RuntimeError):
    """Failure surfaced by a function estimator (predict/train/copy/merge)."""


class ComputationError(PolicyCoreError, ArithmeticError):
    """Numeric failure while constructing gradient targets."""


class UnregisteredAgentError(PolicyCoreError, ValueError):
    """An agent used the update barrier without registering first."""
