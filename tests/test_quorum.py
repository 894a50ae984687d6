"""
govcore/tests/test_quorum.py

Tests for time-growing quorum tracking.
"""

import pytest

from govcore.config import QuorumConfig
from govcore.errors import ConfigError, NotFoundError, StateError, ValidationError
from govcore.identity.roles import StaticRoleProvider
from govcore.protocol.notifications import EventType, NotificationHub
from govcore.protocol.quorum import (
    QuorumTracker,
    QuorumStatus,
    validate_quorum_config,
    required_quorum_percentage,
    percent_of,
)


# ============================================================================
# TEST DATA
# ============================================================================

DAY = 24 * 3600


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def create_tracker(clock=None, notifier=None, balances=None, **config):
    identity = StaticRoleProvider(
        balances={"alice": 600, "bob": 300, "carol": 100} if balances is None else balances
    )
    return QuorumTracker(identity, QuorumConfig(**config), notifier=notifier, clock=clock or FakeClock())


# ============================================================================
# CONFIG TESTS
# ============================================================================

class TestQuorumConfigValidation:
    """Tests for validate_quorum_config."""

    def test_default_is_valid(self):
        """Test the default policy is consistent."""
        assert validate_quorum_config(QuorumConfig()) is True
        assert QuorumTracker.validate_quorum_config(QuorumConfig()) is True

    def test_min_above_max(self):
        """Test min quorum above max quorum is invalid."""
        assert validate_quorum_config(QuorumConfig(min_quorum_percentage=50, max_quorum_percentage=40)) is False

    def test_out_of_range(self):
        """Test percentages outside 0-100 are invalid."""
        assert validate_quorum_config(QuorumConfig(max_quorum_percentage=120)) is False

    def test_growth_period(self):
        """Test non-positive growth period is invalid."""
        assert validate_quorum_config(QuorumConfig(quorum_growth_period=0)) is False

    def test_voting_periods(self):
        """Test min voting period above max is invalid."""
        assert validate_quorum_config(QuorumConfig(min_voting_period=10, max_voting_period=5)) is False

    def test_tracker_rejects_invalid(self):
        """Test the tracker refuses an invalid policy."""
        with pytest.raises(ConfigError):
            create_tracker(min_quorum_percentage=50, max_quorum_percentage=40)


# ============================================================================
# CALCULATION TESTS
# ============================================================================

class TestRequiredQuorum:
    """Tests for the required quorum growth curve."""

    def test_growth_steps(self):
        """Test the requirement grows once per full growth period."""
        config = QuorumConfig()
        assert required_quorum_percentage(config, 0) == 10
        assert required_quorum_percentage(config, DAY - 1) == 10
        assert required_quorum_percentage(config, DAY) == 15
        assert required_quorum_percentage(config, 2.5 * DAY) == 20

    def test_capped_at_max(self):
        """Test the requirement never exceeds the maximum."""
        config = QuorumConfig()
        assert required_quorum_percentage(config, 100 * DAY) == 40

    def test_monotonic_and_bounded(self):
        """Test required quorum never decreases and stays within max."""
        clock = FakeClock()
        tracker = create_tracker(clock=clock)
        tracker.initialize_quorum("d1")

        previous = tracker.calculate_required_quorum("d1")
        for _ in range(40):
            clock.advance(DAY / 3)
            required = tracker.calculate_required_quorum("d1")
            assert required >= previous
            assert required <= 1000 * 40 // 100
            previous = required
        assert previous == 400

    def test_percent_of_rounds_down(self):
        """Test integer shares are floored."""
        assert percent_of(999, 10) == 99
        assert percent_of(1000, 12.5) == 125
        assert percent_of(0, 40) == 0

    def test_initial_required_quorum(self):
        """Test the starting requirement uses the min percentage."""
        clock = FakeClock()
        tracker = create_tracker(clock=clock)
        tracker.initialize_quorum("d1")
        assert tracker.calculate_required_quorum("d1") == 100
        clock.advance(DAY)
        assert tracker.calculate_required_quorum("d1") == 150


# ============================================================================
# LIFECYCLE TESTS
# ============================================================================

class TestQuorumLifecycle:
    """Tests for QuorumTracker lifecycle."""

    def test_initialize_invalid_id(self):
        """Test empty decision ids are rejected."""
        tracker = create_tracker()
        with pytest.raises(ValidationError):
            tracker.initialize_quorum("")
        with pytest.raises(ValidationError):
            tracker.initialize_quorum("   ")

    def test_initialize_twice(self):
        """Test a decision cannot be initialized twice."""
        tracker = create_tracker()
        tracker.initialize_quorum("d1")
        with pytest.raises(ValidationError):
            tracker.initialize_quorum("d1")

    def test_status_unknown_decision(self):
        """Test querying an unknown decision fails."""
        tracker = create_tracker()
        with pytest.raises(NotFoundError):
            tracker.check_quorum_status("missing")

    def test_total_power_snapshot(self):
        """Test total voting power is captured at initialization."""
        identity = StaticRoleProvider(balances={"alice": 600, "bob": 400})
        tracker = QuorumTracker(identity, clock=FakeClock())
        tracker.initialize_quorum("d1")
        identity.set_balance("carol", 1000)

        status = tracker.check_quorum_status("d1")
        assert status.total_voting_power == 1000

    def test_voting_period_clamped(self):
        """Test requested windows are clamped into the configured bounds."""
        clock = FakeClock()
        tracker = create_tracker(clock=clock)
        tracker.initialize_quorum("short", voting_period=60)
        tracker.initialize_quorum("long", voting_period=365 * DAY)

        assert tracker.check_quorum_status("short").time_remaining == 3 * DAY
        assert tracker.check_quorum_status("long").time_remaining == 30 * DAY

    def test_time_remaining_never_negative(self):
        """Test remaining time bottoms out at zero."""
        clock = FakeClock()
        tracker = create_tracker(clock=clock)
        tracker.initialize_quorum("d1", voting_period=3 * DAY)
        clock.advance(DAY)
        assert tracker.check_quorum_status("d1").time_remaining == 2 * DAY
        clock.advance(10 * DAY)
        assert tracker.check_quorum_status("d1").time_remaining == 0

    def test_record_vote_and_reach(self):
        """Test quorum is reached once cast power meets the requirement."""
        tracker = create_tracker()
        tracker.initialize_quorum("d1")
        tracker.record_vote("d1", "carol", 99)
        assert tracker.validate_proposal_quorum("d1") is False

        tracker.record_vote("d1", "dave", 1)
        status = tracker.check_quorum_status("d1")
        assert status.current_quorum == 100
        assert status.required_quorum == 100
        assert status.is_quorum_reached is True
        assert tracker.calculate_quorum_percentage("d1") == 10.0

    def test_duplicate_voter(self):
        """Test a voter is recorded once per decision."""
        tracker = create_tracker()
        tracker.initialize_quorum("d1")
        tracker.record_vote("d1", "alice", 100)
        with pytest.raises(StateError):
            tracker.record_vote("d1", "alice", 100)

    def test_negative_power(self):
        """Test negative cast power is rejected."""
        tracker = create_tracker()
        tracker.initialize_quorum("d1")
        with pytest.raises(ValidationError):
            tracker.record_vote("d1", "alice", -1)

    def test_zero_total_never_reached(self):
        """Test a decision with no voting power never reaches quorum."""
        tracker = create_tracker(balances={})
        tracker.initialize_quorum("d1")
        tracker.record_vote("d1", "alice", 0)
        status = tracker.check_quorum_status("d1")
        assert status.is_quorum_reached is False
        assert status.quorum_percentage == 0.0

    def test_decisions_are_independent(self):
        """Test votes on one decision do not affect another."""
        tracker = create_tracker()
        tracker.initialize_quorum("d1")
        tracker.initialize_quorum("d2")
        tracker.record_vote("d1", "alice", 600)

        assert tracker.validate_proposal_quorum("d1") is True
        assert tracker.validate_proposal_quorum("d2") is False
        assert tracker.get_stats()["open_decisions"] == 2

    def test_restore_quorum(self):
        """Test a decision is rebuilt from its persisted votes and start time."""
        clock = FakeClock()
        tracker = create_tracker(clock=clock)
        tracker.restore_quorum(
            "d1",
            start_time=clock.now - DAY,
            voting_period=3 * DAY,
            votes={"bob": 300, "carol": 100},
        )

        status = tracker.check_quorum_status("d1")
        assert status.total_voting_power == 1000
        assert status.current_quorum == 400
        assert status.time_remaining == 2 * DAY
        with pytest.raises(StateError):
            tracker.record_vote("d1", "bob", 300)
        tracker.record_vote("d1", "alice", 600)
        assert tracker.calculate_current_quorum("d1") == 1000

    def test_restore_keeps_snapshot_and_reach(self):
        """Test a restored decision keeps its total and does not re-announce reach."""
        hub = NotificationHub()
        tracker = create_tracker(notifier=hub)
        tracker.restore_quorum(
            "d1",
            start_time=FakeClock().now,
            voting_period=3 * DAY,
            votes={"bob": 300},
            total_voting_power=2000,
            current_voting_power=300,
            quorum_reached=True,
        )

        tracker.update_quorum("d1")
        assert tracker.check_quorum_status("d1").total_voting_power == 2000
        assert hub.get_history() == []

    def test_restore_invalid(self):
        """Test restore refuses tracked ids and negative powers."""
        tracker = create_tracker()
        tracker.initialize_quorum("d1")
        with pytest.raises(ValidationError):
            tracker.restore_quorum("d1", start_time=0, voting_period=DAY, votes={})
        with pytest.raises(ValidationError):
            tracker.restore_quorum("d2", start_time=0, voting_period=DAY, votes={"a": -1})
        with pytest.raises(ValidationError):
            tracker.restore_quorum("", start_time=0, voting_period=DAY, votes={})
        assert tracker.has_decision("d2") is False

    def test_withdraw_vote(self):
        """Test a withdrawn vote no longer counts and can be cast again."""
        tracker = create_tracker()
        tracker.initialize_quorum("d1")
        tracker.record_vote("d1", "bob", 300)
        tracker.withdraw_vote("d1", "bob")

        assert tracker.calculate_current_quorum("d1") == 0
        tracker.record_vote("d1", "bob", 300)
        assert tracker.calculate_current_quorum("d1") == 300


# ============================================================================
# EVENT TESTS
# ============================================================================

class TestQuorumEvents:
    """Tests for quorum notifications."""

    def test_update_publishes_changes(self):
        """Test update_quorum publishes power changes and reach once."""
        hub = NotificationHub()
        tracker = create_tracker(notifier=hub)
        tracker.initialize_quorum("d1")

        tracker.update_quorum("d1")
        assert hub.get_history() == []

        tracker.record_vote("d1", "bob", 300)
        tracker.update_quorum("d1")
        tracker.update_quorum("d1")

        updated = hub.get_history(EventType.QUORUM_UPDATED)
        reached = hub.get_history(EventType.QUORUM_REACHED)
        assert len(updated) == 1
        assert updated[0].data == {"old_quorum": 0, "new_quorum": 300}
        assert len(reached) == 1
        assert reached[0].subject_id == "d1"

    def test_release_returns_final_status(self):
        """Test release reports the final snapshot and drops the state."""
        tracker = create_tracker()
        tracker.initialize_quorum("d1")
        tracker.record_vote("d1", "alice", 600)

        status = tracker.release_quorum("d1")
        assert isinstance(status, QuorumStatus)
        assert status.is_quorum_reached is True
        assert tracker.has_decision("d1") is False
        with pytest.raises(NotFoundError):
            tracker.check_quorum_status("d1")

    def test_release_without_quorum_publishes_failure(self):
        """Test closing a decision short of quorum is published."""
        hub = NotificationHub()
        tracker = create_tracker(notifier=hub)
        tracker.initialize_quorum("d1")
        tracker.record_vote("d1", "carol", 50)

        tracker.release_quorum("d1")

        failed = hub.get_history(EventType.QUORUM_FAILED)
        assert len(failed) == 1
        assert failed[0].data == {"quorum": 50, "required": 100}

    def test_status_round_trip(self):
        """Test QuorumStatus serialization."""
        status = QuorumStatus(10, 100, 1000, 10, 1.0, False, 60.0)
        assert QuorumStatus.from_dict(status.to_dict()) == status
