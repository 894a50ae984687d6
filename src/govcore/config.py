"""
govcore/config.py

Configuration constants and policy data classes for govcore.

Policy is supplied once, at construction of each component; there is no
reconfiguration while a decision is open. Defaults can be overridden from
the environment through GovernanceConfig.from_env():

    GOVCORE_MAX_DELEGATIONS_PER_ADDRESS=5
    GOVCORE_LOCK_PERIOD=86400
    GOVCORE_MIN_QUORUM_PERCENTAGE=10
    GOVCORE_VALIDATION_PERIOD=604800
    ...
"""

import os
import logging
from dataclasses import dataclass, field, asdict
from typing import Callable, Dict, Optional

from .errors import ConfigError

logger = logging.getLogger("govcore.config")


# ============================================================================
# CONSTANTS
# ============================================================================

ENV_PREFIX = "GOVCORE_"

# Delegation policy
DEFAULT_MAX_DELEGATIONS_PER_ADDRESS = 5
DEFAULT_MIN_DELEGATION_AMOUNT = 1
DEFAULT_MAX_DELEGATION_PERCENTAGE = 100
DEFAULT_LOCK_PERIOD = 24 * 3600          # 1 day before a delegation counts
DEFAULT_COOLDOWN_PERIOD = 3600           # 1 hour before it can be revoked

# Quorum policy (percent of total voting power)
DEFAULT_MIN_QUORUM_PERCENTAGE = 10
DEFAULT_MAX_QUORUM_PERCENTAGE = 40
DEFAULT_QUORUM_GROWTH_RATE = 5           # percentage points per growth period
DEFAULT_QUORUM_GROWTH_PERIOD = 24 * 3600
DEFAULT_MIN_VOTING_PERIOD = 3 * 24 * 3600
DEFAULT_MAX_VOTING_PERIOD = 30 * 24 * 3600

# Validator policy
DEFAULT_CHECK_INTERVAL = 300             # 5 minutes
DEFAULT_VALIDATION_PERIOD = 7 * 24 * 3600
DEFAULT_REQUIRED_VOTING_POWER = 0
DEFAULT_MIN_VOTES_REQUIRED = 1
DEFAULT_MAX_ADMIN_VOTING_POWER = 1_000
DEFAULT_MAX_DELEGATE_VOTING_POWER = 5_000
DEFAULT_MINORITY_PROTECTION_THRESHOLD = 20
DEFAULT_VETO_POWER_THRESHOLD = 33

# Two-thirds bar applied when the minority is too small to be protected
SUPERMAJORITY_PERCENTAGE = 66


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class DelegationConfig:
    """Policy bounds checked on every delegation mutation."""
    max_delegations_per_address: int = DEFAULT_MAX_DELEGATIONS_PER_ADDRESS
    min_delegation_amount: int = DEFAULT_MIN_DELEGATION_AMOUNT
    max_delegation_percentage: int = DEFAULT_MAX_DELEGATION_PERCENTAGE
    lock_period: float = DEFAULT_LOCK_PERIOD        # seconds
    cooldown_period: float = DEFAULT_COOLDOWN_PERIOD  # seconds

    def validate(self) -> None:
        """Raise ConfigError if the bounds are unusable."""
        if self.max_delegations_per_address < 1:
            raise ConfigError("max_delegations_per_address must be at least 1")
        if self.min_delegation_amount < 0:
            raise ConfigError("min_delegation_amount must not be negative")
        if not 0 <= self.max_delegation_percentage <= 100:
            raise ConfigError("max_delegation_percentage must be within 0-100")
        if self.lock_period < 0 or self.cooldown_period < 0:
            raise ConfigError("lock_period and cooldown_period must not be negative")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class QuorumConfig:
    """Time-growing quorum policy. Validated by the quorum tracker."""
    min_quorum_percentage: float = DEFAULT_MIN_QUORUM_PERCENTAGE
    max_quorum_percentage: float = DEFAULT_MAX_QUORUM_PERCENTAGE
    quorum_growth_rate: float = DEFAULT_QUORUM_GROWTH_RATE
    quorum_growth_period: float = DEFAULT_QUORUM_GROWTH_PERIOD
    min_voting_period: float = DEFAULT_MIN_VOTING_PERIOD
    max_voting_period: float = DEFAULT_MAX_VOTING_PERIOD

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ValidatorConfig:
    """Consensus validator policy."""
    check_interval: float = DEFAULT_CHECK_INTERVAL
    required_voting_power: int = DEFAULT_REQUIRED_VOTING_POWER
    validation_period: float = DEFAULT_VALIDATION_PERIOD
    min_votes_required: int = DEFAULT_MIN_VOTES_REQUIRED
    max_admin_voting_power: int = DEFAULT_MAX_ADMIN_VOTING_POWER
    max_delegate_voting_power: int = DEFAULT_MAX_DELEGATE_VOTING_POWER
    minority_protection_threshold: int = DEFAULT_MINORITY_PROTECTION_THRESHOLD  # percent
    veto_power_threshold: int = DEFAULT_VETO_POWER_THRESHOLD                    # percent

    def validate(self) -> None:
        """Raise ConfigError if the policy is unusable."""
        if self.check_interval <= 0:
            raise ConfigError("check_interval must be positive")
        if self.validation_period <= 0:
            raise ConfigError("validation_period must be positive")
        if self.required_voting_power < 0 or self.min_votes_required < 0:
            raise ConfigError("required_voting_power and min_votes_required must not be negative")
        if self.max_admin_voting_power < 0 or self.max_delegate_voting_power < 0:
            raise ConfigError("role voting power caps must not be negative")
        if not 0 <= self.minority_protection_threshold <= 100:
            raise ConfigError("minority_protection_threshold must be within 0-100")
        if not 0 <= self.veto_power_threshold <= 100:
            raise ConfigError("veto_power_threshold must be within 0-100")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class GovernanceConfig:
    """
    Complete configuration for the three governance components.

    Usage:
        config = GovernanceConfig.from_env()
        ledger = DelegationLedger(identity, config.delegation)
    """
    delegation: DelegationConfig = field(default_factory=DelegationConfig)
    quorum: QuorumConfig = field(default_factory=QuorumConfig)
    validator: ValidatorConfig = field(default_factory=ValidatorConfig)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "GovernanceConfig":
        """
        Build a configuration from GOVCORE_* environment variables.

        Unset variables keep their defaults. A value that cannot be parsed
        raises ConfigError.
        """
        env = os.environ if environ is None else environ
        return cls(
            delegation=_load_section(DelegationConfig, env),
            quorum=_load_section(QuorumConfig, env),
            validator=_load_section(ValidatorConfig, env),
        )

    def to_dict(self) -> dict:
        return {
            "delegation": self.delegation.to_dict(),
            "quorum": self.quorum.to_dict(),
            "validator": self.validator.to_dict(),
        }


def _load_section(section_cls, env) -> object:
    """Read every field of a config data class from the environment."""
    overrides = {}
    for name, field_def in section_cls.__dataclass_fields__.items():
        raw = env.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        convert: Callable[[str], object] = int if field_def.type in (int, "int") else float
        try:
            overrides[name] = convert(raw.strip())
        except ValueError:
            raise ConfigError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}")
        logger.debug(f"Config override {name}={overrides[name]}")
    return section_cls(**overrides)
