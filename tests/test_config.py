"""
govcore/tests/test_config.py

Tests for policy configuration and environment overrides.
"""

import pytest

from govcore.config import (
    DelegationConfig,
    QuorumConfig,
    ValidatorConfig,
    GovernanceConfig,
    DEFAULT_LOCK_PERIOD,
    DEFAULT_MIN_QUORUM_PERCENTAGE,
    DEFAULT_VETO_POWER_THRESHOLD,
)
from govcore.errors import ConfigError, GovernanceError


class TestDelegationConfig:
    """Tests for DelegationConfig."""

    def test_defaults(self):
        """Test default delegation bounds."""
        config = DelegationConfig()
        assert config.max_delegations_per_address == 5
        assert config.max_delegation_percentage == 100
        assert config.lock_period == DEFAULT_LOCK_PERIOD
        config.validate()

    def test_frozen(self):
        """Test configuration cannot change after construction."""
        config = DelegationConfig()
        with pytest.raises(Exception):
            config.lock_period = 0

    def test_invalid_max_delegations(self):
        """Test zero max delegations is rejected."""
        with pytest.raises(ConfigError):
            DelegationConfig(max_delegations_per_address=0).validate()

    def test_invalid_percentage(self):
        """Test max percentage above 100 is rejected."""
        with pytest.raises(ConfigError):
            DelegationConfig(max_delegation_percentage=150).validate()

    def test_negative_periods(self):
        """Test negative lock/cooldown periods are rejected."""
        with pytest.raises(ConfigError):
            DelegationConfig(lock_period=-1).validate()
        with pytest.raises(ConfigError):
            DelegationConfig(cooldown_period=-1).validate()


class TestValidatorConfig:
    """Tests for ValidatorConfig."""

    def test_defaults(self):
        """Test default validator policy."""
        config = ValidatorConfig()
        assert config.veto_power_threshold == DEFAULT_VETO_POWER_THRESHOLD
        assert config.min_votes_required == 1
        config.validate()

    def test_invalid_check_interval(self):
        """Test non-positive check interval is rejected."""
        with pytest.raises(ConfigError):
            ValidatorConfig(check_interval=0).validate()

    def test_invalid_thresholds(self):
        """Test out-of-range thresholds are rejected."""
        with pytest.raises(ConfigError):
            ValidatorConfig(minority_protection_threshold=101).validate()
        with pytest.raises(ConfigError):
            ValidatorConfig(veto_power_threshold=-1).validate()

    def test_config_error_is_governance_error(self):
        """Test ConfigError belongs to the governance error taxonomy."""
        with pytest.raises(GovernanceError):
            ValidatorConfig(validation_period=0).validate()


class TestGovernanceConfig:
    """Tests for GovernanceConfig and environment loading."""

    def test_from_env_defaults(self):
        """Test empty environment keeps every default."""
        config = GovernanceConfig.from_env({})
        assert config == GovernanceConfig()
        assert config.quorum.min_quorum_percentage == DEFAULT_MIN_QUORUM_PERCENTAGE

    def test_from_env_overrides(self):
        """Test GOVCORE_* variables override fields in each section."""
        config = GovernanceConfig.from_env({
            "GOVCORE_LOCK_PERIOD": "60",
            "GOVCORE_MAX_DELEGATIONS_PER_ADDRESS": "3",
            "GOVCORE_MIN_QUORUM_PERCENTAGE": "12.5",
            "GOVCORE_VETO_POWER_THRESHOLD": "25",
            "UNRELATED": "ignored",
        })
        assert config.delegation.lock_period == 60.0
        assert config.delegation.max_delegations_per_address == 3
        assert isinstance(config.delegation.max_delegations_per_address, int)
        assert config.quorum.min_quorum_percentage == 12.5
        assert config.validator.veto_power_threshold == 25

    def test_from_env_invalid_value(self):
        """Test unparseable value raises ConfigError."""
        with pytest.raises(ConfigError):
            GovernanceConfig.from_env({"GOVCORE_MIN_VOTES_REQUIRED": "many"})

    def test_from_env_reads_os_environ(self, monkeypatch):
        """Test os.environ is used when no mapping is given."""
        monkeypatch.setenv("GOVCORE_CHECK_INTERVAL", "30")
        config = GovernanceConfig.from_env()
        assert config.validator.check_interval == 30.0

    def test_to_dict(self):
        """Test configuration serialization."""
        data = GovernanceConfig().to_dict()
        assert set(data) == {"delegation", "quorum", "validator"}
        assert data["validator"]["minority_protection_threshold"] == 20
