"""
govcore/protocol/quorum.py

Time-growing quorum tracking per decision.

The required quorum starts at min_quorum_percentage of the total voting
power captured when the decision opens, and grows by quorum_growth_rate
percentage points every quorum_growth_period, up to max_quorum_percentage.
Early, clearly popular outcomes can pass on low turnout, while late
low-turnout outcomes face a higher bar.

Quorum state lives only as long as its decision and is never persisted.
"""

import math
import time
import logging
from dataclasses import dataclass, field, asdict
from typing import Callable, Dict, Optional

from ..config import QuorumConfig
from ..errors import ConfigError, NotFoundError, StateError, ValidationError
from ..identity.roles import RoleProvider
from .notifications import EventType, NotificationHub

logger = logging.getLogger("govcore.protocol.quorum")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class QuorumState:
    """Per-decision quorum state."""
    decision_id: str
    total_voting_power: int
    start_time: float
    voting_period: float
    current_voting_power: int = 0      # as of the last update_quorum()
    votes: Dict[str, int] = field(default_factory=dict)  # voter -> cast power
    quorum_reached: bool = False       # QUORUM_REACHED already published


@dataclass
class QuorumStatus:
    """Snapshot of a decision's quorum."""
    current_quorum: int
    required_quorum: int
    total_voting_power: int
    current_voting_power: int
    quorum_percentage: float
    is_quorum_reached: bool
    time_remaining: float

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "QuorumStatus":
        return cls(**data)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def validate_quorum_config(config: QuorumConfig) -> bool:
    """Check a quorum policy for internal consistency."""
    if not 0 <= config.min_quorum_percentage <= 100:
        return False
    if not 0 <= config.max_quorum_percentage <= 100:
        return False
    if config.min_quorum_percentage > config.max_quorum_percentage:
        return False
    if config.quorum_growth_rate < 0 or config.quorum_growth_period <= 0:
        return False
    if config.min_voting_period < 0:
        return False
    if config.min_voting_period > config.max_voting_period:
        return False
    return True


def required_quorum_percentage(config: QuorumConfig, elapsed: float) -> float:
    """
    Required quorum, in percent of total voting power, after `elapsed` seconds.

    min + rate * floor(elapsed / growth_period), clamped to [min, max].
    """
    periods = math.floor(max(elapsed, 0) / config.quorum_growth_period)
    percentage = config.min_quorum_percentage + config.quorum_growth_rate * periods
    return min(max(percentage, config.min_quorum_percentage), config.max_quorum_percentage)


def percent_of(total: int, percentage: float) -> int:
    """Integer share of total, rounded down."""
    if float(percentage).is_integer():
        return total * int(percentage) // 100
    return int(total * percentage / 100)


# ============================================================================
# QUORUM TRACKER
# ============================================================================

class QuorumTracker:
    """
    Tracks quorum for independent decisions.

    Flow:
    1. initialize_quorum() snapshots total voting power when a decision opens
    2. record_vote() stores each voter's cast power
    3. update_quorum() refreshes current power and publishes changes
    4. check_quorum_status() reports against the time-grown requirement
    5. release_quorum() returns the final snapshot and drops the state
    """

    def __init__(
        self,
        identity: RoleProvider,
        config: Optional[QuorumConfig] = None,
        notifier: Optional[NotificationHub] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.identity = identity
        self.config = config or QuorumConfig()
        if not validate_quorum_config(self.config):
            raise ConfigError(f"Invalid quorum configuration: {self.config}")
        self.notifier = notifier
        self._clock = clock
        self._states: Dict[str, QuorumState] = {}

    # Exposed on the tracker as well as at module level
    validate_quorum_config = staticmethod(validate_quorum_config)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def initialize_quorum(self, decision_id: str, voting_period: Optional[float] = None) -> None:
        """
        Open quorum tracking for a decision.

        Args:
            decision_id: Decision identifier
            voting_period: Window length in seconds, clamped into the
                configured [min_voting_period, max_voting_period]

        Raises:
            ValidationError: empty/invalid or already-initialized id
        """
        if not isinstance(decision_id, str) or not decision_id.strip():
            raise ValidationError("Decision id must be a non-empty string")
        if decision_id in self._states:
            raise ValidationError(f"Quorum already initialized for {decision_id}")

        period = self._clamp_period(
            self.config.max_voting_period if voting_period is None else voting_period
        )

        self._states[decision_id] = QuorumState(
            decision_id=decision_id,
            total_voting_power=self.identity.get_total_voting_power(),
            start_time=self._clock(),
            voting_period=period,
        )
        logger.info(
            f"Quorum initialized for {decision_id}: "
            f"total={self._states[decision_id].total_voting_power} period={period}s"
        )

    def restore_quorum(
        self,
        decision_id: str,
        start_time: float,
        voting_period: float,
        votes: Dict[str, int],
        total_voting_power: Optional[int] = None,
        current_voting_power: int = 0,
        quorum_reached: bool = False,
    ) -> None:
        """
        Rebuild quorum state for a decision opened by an earlier process.

        Args:
            decision_id: Decision identifier
            start_time: When the decision originally opened
            voting_period: Window length in seconds (clamped as on initialize)
            votes: Voter -> cast power, as persisted with the decision
            total_voting_power: Snapshot taken when the decision opened;
                recomputed from the identity provider when unknown
            current_voting_power: Power as of the last published update
            quorum_reached: Whether QUORUM_REACHED was already published

        Raises:
            ValidationError: invalid id, already tracked, or negative power
        """
        if not isinstance(decision_id, str) or not decision_id.strip():
            raise ValidationError("Decision id must be a non-empty string")
        if decision_id in self._states:
            raise ValidationError(f"Quorum already initialized for {decision_id}")
        if any(power < 0 for power in votes.values()):
            raise ValidationError("Cast voting power must not be negative")

        if total_voting_power is None:
            total_voting_power = self.identity.get_total_voting_power()
        self._states[decision_id] = QuorumState(
            decision_id=decision_id,
            total_voting_power=total_voting_power,
            start_time=start_time,
            voting_period=self._clamp_period(voting_period),
            current_voting_power=current_voting_power,
            votes=dict(votes),
            quorum_reached=quorum_reached,
        )
        logger.info(
            f"Quorum restored for {decision_id}: "
            f"total={total_voting_power} votes={len(votes)}"
        )

    def record_vote(self, decision_id: str, voter: str, power: int) -> None:
        """Record the power a voter cast on a decision."""
        state = self._require_state(decision_id)
        if power < 0:
            raise ValidationError("Cast voting power must not be negative")
        if voter in state.votes:
            raise StateError(f"{voter} already recorded for {decision_id}")
        state.votes[voter] = power

    def withdraw_vote(self, decision_id: str, voter: str) -> None:
        """Drop a recorded vote whose cast could not be completed."""
        self._require_state(decision_id).votes.pop(voter, None)

    def update_quorum(self, decision_id: str) -> QuorumStatus:
        """Refresh current voting power from recorded votes and publish changes."""
        state = self._require_state(decision_id)
        old_power = state.current_voting_power
        status = self.check_quorum_status(decision_id)
        state.current_voting_power = status.current_voting_power

        if status.current_voting_power != old_power:
            logger.debug(f"Quorum for {decision_id}: {old_power} -> {status.current_voting_power}")
            self._notify(EventType.QUORUM_UPDATED, decision_id, {
                "old_quorum": old_power,
                "new_quorum": status.current_voting_power,
            })
        if status.is_quorum_reached and not state.quorum_reached:
            state.quorum_reached = True
            logger.info(f"Quorum reached for {decision_id}")
            self._notify(EventType.QUORUM_REACHED, decision_id, {
                "quorum": status.current_quorum,
                "required": status.required_quorum,
            })
        return status

    def release_quorum(self, decision_id: str) -> QuorumStatus:
        """Close a decision: return its final snapshot and drop its state."""
        status = self.check_quorum_status(decision_id)
        del self._states[decision_id]
        if not status.is_quorum_reached:
            self._notify(EventType.QUORUM_FAILED, decision_id, {
                "quorum": status.current_quorum,
                "required": status.required_quorum,
            })
        return status

    def has_decision(self, decision_id: str) -> bool:
        return decision_id in self._states

    # ========================================================================
    # CALCULATIONS
    # ========================================================================

    def calculate_required_quorum(self, decision_id: str) -> int:
        state = self._require_state(decision_id)
        elapsed = self._clock() - state.start_time
        return percent_of(state.total_voting_power, required_quorum_percentage(self.config, elapsed))

    def calculate_current_quorum(self, decision_id: str) -> int:
        return sum(self._require_state(decision_id).votes.values())

    def calculate_quorum_percentage(self, decision_id: str) -> float:
        state = self._require_state(decision_id)
        if state.total_voting_power <= 0:
            return 0.0
        return self.calculate_current_quorum(decision_id) / state.total_voting_power * 100

    def check_quorum_status(self, decision_id: str) -> QuorumStatus:
        """
        Report a decision's quorum.

        Raises:
            NotFoundError: initialize_quorum() was never called
        """
        state = self._require_state(decision_id)
        current = self.calculate_current_quorum(decision_id)
        required = self.calculate_required_quorum(decision_id)
        remaining = state.start_time + state.voting_period - self._clock()
        return QuorumStatus(
            current_quorum=current,
            required_quorum=required,
            total_voting_power=state.total_voting_power,
            current_voting_power=current,
            quorum_percentage=self.calculate_quorum_percentage(decision_id),
            is_quorum_reached=state.total_voting_power > 0 and current >= required,
            time_remaining=max(0.0, remaining),
        )

    def validate_proposal_quorum(self, decision_id: str) -> bool:
        return self.check_quorum_status(decision_id).is_quorum_reached

    # ========================================================================
    # INTERNAL METHODS
    # ========================================================================

    def _clamp_period(self, period: float) -> float:
        return min(max(period, self.config.min_voting_period), self.config.max_voting_period)

    def _require_state(self, decision_id: str) -> QuorumState:
        state = self._states.get(decision_id)
        if state is None:
            raise NotFoundError(f"Quorum not initialized for decision: {decision_id}")
        return state

    def _notify(self, event_type: EventType, subject_id: str, data: dict) -> None:
        if self.notifier:
            self.notifier.publish(event_type, subject_id, data)

    def get_stats(self) -> dict:
        return {
            "open_decisions": len(self._states),
            "config": self.config.to_dict(),
        }
