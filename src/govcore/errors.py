"""
govcore/errors.py

Exception taxonomy for governance operations.

Every error is raised synchronously to the caller of the operation that
failed. None of them are retried automatically: vote and delegation
mutations are weight-sensitive, so a failed call must be fixed and
re-issued by the caller.
"""


class GovernanceError(Exception):
    """Base class for all govcore errors."""
    pass


class ValidationError(GovernanceError):
    """Malformed input or a policy-bound violation (caller-fixable)."""
    pass


class NotFoundError(GovernanceError):
    """Unknown delegation, item or decision id."""
    pass


class StateError(GovernanceError):
    """Operation not valid for the entity's current lifecycle state."""
    pass


class ConfigError(GovernanceError):
    """Invalid policy configuration."""
    pass
