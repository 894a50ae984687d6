"""
govcore/protocol/consensus.py

Weighted consensus validation for submitted items.

A submitted item (proposal or data point) is voted on with capped,
delegation-aware voting power and adjudicated once its validation period
elapses.

Key Features:
- Effective voting power from the delegation ledger
- Role-based power caps (admin / delegate) from a lookup table
- Time-growing quorum from the quorum tracker
- Minority protection: a two-thirds supermajority is required when the
  losing side is too small to count as a meaningful minority
- Veto: a large enough minority blocks an otherwise passing outcome
- One background checker per pending item, stopped at finalization

Lifecycle:
    PENDING --(periodic checks)--> validation period expires --> VALIDATED | REJECTED
"""

import json
import time
import hashlib
import logging
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import trio

from ..config import SUPERMAJORITY_PERCENTAGE, ValidatorConfig
from ..errors import NotFoundError, StateError, ValidationError
from ..identity.roles import Role, RoleProvider, resolve_role
from .delegation import DelegationLedger
from .notifications import EventType, NotificationHub
from .quorum import QuorumStatus, QuorumTracker
from .storage import RecordStore

logger = logging.getLogger("govcore.protocol.consensus")


# ============================================================================
# CONSTANTS
# ============================================================================

VALIDATION_NAMESPACE = "validation_items"
DECISION_ID_PREFIX = "decision:"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class ValidationStatus(Enum):
    """Status of a validation item. Transitions only leave PENDING."""
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


@dataclass
class VoteTally:
    """Weighted votes cast on an item."""
    votes_for: int = 0
    votes_against: int = 0
    voters: List[str] = field(default_factory=list)
    voter_roles: Dict[str, Role] = field(default_factory=dict)
    voter_powers: Dict[str, int] = field(default_factory=dict)  # capped power cast

    @property
    def total(self) -> int:
        return self.votes_for + self.votes_against

    def has_voted(self, voter: str) -> bool:
        return voter in self.voter_roles

    def add(self, voter: str, role: Role, power: int, support: bool) -> None:
        if support:
            self.votes_for += power
        else:
            self.votes_against += power
        self.voters.append(voter)
        self.voter_roles[voter] = role
        self.voter_powers[voter] = power

    def to_dict(self) -> dict:
        return {
            "votes_for": self.votes_for,
            "votes_against": self.votes_against,
            "voters": list(self.voters),
            "voter_roles": {k: v.value for k, v in self.voter_roles.items()},
            "voter_powers": dict(self.voter_powers),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VoteTally":
        return cls(
            votes_for=int(data.get("votes_for", 0)),
            votes_against=int(data.get("votes_against", 0)),
            voters=list(data.get("voters", [])),
            voter_roles={k: Role(v) for k, v in data.get("voter_roles", {}).items()},
            voter_powers={k: int(v) for k, v in data.get("voter_powers", {}).items()},
        )


@dataclass
class ValidationItem:
    """A submitted item awaiting (or past) adjudication."""
    item_id: str
    submitted_at: float
    payload: Any
    source: str
    decision_id: str
    status: ValidationStatus = ValidationStatus.PENDING
    votes: VoteTally = field(default_factory=VoteTally)
    finalized_at: Optional[float] = None
    last_quorum: Optional[QuorumStatus] = None

    def is_pending(self) -> bool:
        return self.status == ValidationStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "submitted_at": self.submitted_at,
            "payload": self.payload,
            "source": self.source,
            "decision_id": self.decision_id,
            "status": self.status.value,
            "votes": self.votes.to_dict(),
            "finalized_at": self.finalized_at,
            "last_quorum": self.last_quorum.to_dict() if self.last_quorum else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ValidationItem":
        last_quorum = data.get("last_quorum")
        return cls(
            item_id=data["item_id"],
            submitted_at=data["submitted_at"],
            payload=data.get("payload"),
            source=data["source"],
            decision_id=data["decision_id"],
            status=ValidationStatus(data["status"]),
            votes=VoteTally.from_dict(data.get("votes", {})),
            finalized_at=data.get("finalized_at"),
            last_quorum=QuorumStatus.from_dict(last_quorum) if last_quorum else None,
        )

    @staticmethod
    def generate_id(source: str, submitted_at: float, payload_json: str, nonce: int) -> str:
        """Generate unique item ID."""
        content = f"{source}:{submitted_at}:{payload_json}:{nonce}"
        return hashlib.sha256(content.encode()).hexdigest()[:16]


def _deserialize_item(data: bytes) -> ValidationItem:
    return ValidationItem.from_dict(json.loads(data.decode()))


# ============================================================================
# DECISION RULES
# ============================================================================

def build_role_caps(config: ValidatorConfig) -> Dict[Role, Optional[int]]:
    """Voting power cap per role (None = uncapped)."""
    return {
        Role.ADMIN: config.max_admin_voting_power,
        Role.DELEGATE: config.max_delegate_voting_power,
        Role.USER: None,
    }


def apply_role_cap(power: int, role: Role, caps: Dict[Role, Optional[int]]) -> int:
    cap = caps.get(role)
    return power if cap is None else min(power, cap)


def decide_outcome(
    votes_for: int,
    votes_against: int,
    quorum_reached: bool,
    minority_protection_threshold: int,
    veto_power_threshold: int,
) -> ValidationStatus:
    """
    Adjudicate a closed vote.

    Checks run in a fixed order: quorum, then minority protection, then
    veto, then plain majority. Percentages use integer division.
    """
    total = votes_for + votes_against
    minority = min(votes_for, votes_against)
    minority_pct = minority * 100 // total if total else 0

    if not quorum_reached:
        return ValidationStatus.REJECTED

    if minority_pct < minority_protection_threshold:
        majority_pct = votes_for * 100 // total if total else 0
        if majority_pct >= SUPERMAJORITY_PERCENTAGE:
            return ValidationStatus.VALIDATED
        return ValidationStatus.REJECTED

    veto_threshold = total * veto_power_threshold // 100
    if minority > veto_threshold:
        return ValidationStatus.REJECTED

    if votes_for > votes_against:
        return ValidationStatus.VALIDATED
    return ValidationStatus.REJECTED


# ============================================================================
# CONSENSUS VALIDATOR
# ============================================================================

class ConsensusValidator:
    """
    Drives validation items from submission to a final verdict.

    Flow:
    1. submit() opens quorum tracking and schedules the item's checker
    2. vote() adds capped effective power to the for/against tally
    3. Every check_interval the checker refreshes quorum
    4. Once validation_period has elapsed the checker finalizes the item
       and stops itself

    Quorum state is held by the tracker in memory. After a restart it is
    rebuilt from the stored tally on the first vote or check of an item.

    Usage:
        async with trio.open_nursery() as nursery:
            await validator.start(nursery)
            item_id = await validator.submit({"price": 42}, source="feed-1")
            await validator.vote(item_id, "alice", support=True)
    """

    def __init__(
        self,
        ledger: DelegationLedger,
        tracker: QuorumTracker,
        identity: RoleProvider,
        config: Optional[ValidatorConfig] = None,
        store: Optional[RecordStore[ValidationItem]] = None,
        notifier: Optional[NotificationHub] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize ConsensusValidator.

        Args:
            ledger: Source of effective voting power
            tracker: Quorum tracker for linked decisions
            identity: Role provider for admin/delegate lookups
            config: Validator policy
            store: Record store for items (in-memory by default)
            notifier: Hub receiving item events
            clock: Time source in seconds
        """
        self.ledger = ledger
        self.tracker = tracker
        self.identity = identity
        self.config = config or ValidatorConfig()
        self.config.validate()
        self.notifier = notifier
        self._clock = clock
        self._store = store or RecordStore(
            VALIDATION_NAMESPACE, deserializer=_deserialize_item
        )
        self._role_caps = build_role_caps(self.config)

        self._locks: Dict[str, trio.Lock] = {}
        self._checkers: Dict[str, trio.CancelScope] = {}
        self._nursery: Optional[trio.Nursery] = None
        self._nonce = itertools.count()
        self._faults = 0

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self, nursery: trio.Nursery) -> None:
        """Attach a nursery and schedule checkers for pending items."""
        if self._nursery is not None:
            return
        self._nursery = nursery
        for item in await self.get_pending_items():
            self._schedule_checker(item.item_id)
        logger.info("Consensus validator started")

    async def stop(self) -> None:
        """Cancel all periodic checkers."""
        for scope in self._checkers.values():
            scope.cancel()
        self._checkers.clear()
        self._nursery = None
        logger.info("Consensus validator stopped")

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def submit(self, payload: Any, source: str) -> str:
        """
        Submit an item for validation.

        Returns:
            The new item id
        """
        if not isinstance(source, str) or not source:
            raise ValidationError("Source is required")
        try:
            payload_json = json.dumps(payload, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Payload must be JSON-serializable: {e}")

        now = self._clock()
        item_id = ValidationItem.generate_id(source, now, payload_json, next(self._nonce))
        item = ValidationItem(
            item_id=item_id,
            submitted_at=now,
            payload=payload,
            source=source,
            decision_id=f"{DECISION_ID_PREFIX}{item_id}",
        )

        await self._store.put(item_id, item)
        self.tracker.initialize_quorum(item.decision_id, self.config.validation_period)
        self._schedule_checker(item_id)

        logger.info(f"Item submitted: {item_id} from {source}")
        self._notify(EventType.ITEM_SUBMITTED, item_id, {
            "source": source,
            "decision_id": item.decision_id,
        })
        return item_id

    async def vote(self, item_id: str, voter: str, support: bool) -> int:
        """
        Cast a weighted vote on a pending item.

        Returns:
            The capped voting power applied

        Raises:
            NotFoundError: unknown item
            StateError: item not pending, window closed, or already voted
            ValidationError: no voting power after capping
        """
        if not voter:
            raise ValidationError("Voter is required")

        async with await self._lock_for(item_id):
            item = await self._require_item(item_id)
            if not item.is_pending():
                self._release_item(item_id)
                logger.warning(f"Vote by {voter} on finalized item {item_id} refused")
                raise StateError(f"Item {item_id} is already {item.status.value}")
            if self._clock() - item.submitted_at >= self.config.validation_period:
                logger.warning(f"Vote by {voter} on {item_id} after its window refused")
                raise StateError(f"Voting window for {item_id} has closed")
            if item.votes.has_voted(voter):
                raise StateError(f"{voter} already voted on {item_id}")

            role = resolve_role(self.identity, voter)
            power = await self.ledger.get_effective_voting_power(voter)
            capped = apply_role_cap(power, role, self._role_caps)
            if capped <= 0:
                raise ValidationError(f"{voter} has no voting power")

            self._ensure_quorum(item)
            self.tracker.record_vote(item.decision_id, voter, capped)
            item.votes.add(voter, role, capped, support)
            try:
                await self._store.put(item_id, item)
            except Exception:
                self.tracker.withdraw_vote(item.decision_id, voter)
                raise

        logger.debug(
            f"Vote on {item_id}: {voter} ({role.value}) "
            f"{'for' if support else 'against'} with {capped}"
        )
        self._notify(EventType.VOTE_CAST, item_id, {
            "voter": voter,
            "role": role.value,
            "support": support,
            "power": capped,
        })
        return capped

    async def check_item(self, item_id: str) -> bool:
        """
        Run one periodic check for an item.

        Returns:
            True once the item is in a terminal state
        """
        async with await self._lock_for(item_id):
            item = await self._require_item(item_id)
            if not item.is_pending():
                self._release_item(item_id)
                return True

            self._ensure_quorum(item)
            item.last_quorum = self.tracker.update_quorum(item.decision_id)
            if self._clock() - item.submitted_at >= self.config.validation_period:
                await self._finalize(item)
                return True

            await self._store.put(item_id, item)
            return False

    async def run_checks(self) -> int:
        """
        Check every pending item once, for an external scheduler.

        A fault in one item is logged and does not stop the others.

        Returns:
            Number of items finalized by this pass
        """
        finalized = 0
        for item in await self.get_pending_items():
            try:
                if await self.check_item(item.item_id):
                    finalized += 1
            except Exception as e:
                self._record_fault(item.item_id, e)
        return finalized

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_item(self, item_id: str) -> Optional[ValidationItem]:
        return await self._store.get(item_id)

    async def get_items(self, source: Optional[str] = None) -> List[ValidationItem]:
        items = await self._store.values()
        if source is None:
            return items
        return [i for i in items if i.source == source]

    async def get_validated_items(self, source: str) -> List[ValidationItem]:
        return [
            i for i in await self.get_items(source)
            if i.status == ValidationStatus.VALIDATED
        ]

    async def get_pending_items(self) -> List[ValidationItem]:
        return [i for i in await self._store.values() if i.is_pending()]

    def get_stats(self) -> dict:
        return {
            "started": self._nursery is not None,
            "active_checkers": len(self._checkers),
            "check_faults": self._faults,
            "store": self._store.get_stats(),
        }

    # ========================================================================
    # INTERNAL METHODS
    # ========================================================================

    async def _finalize(self, item: ValidationItem) -> None:
        """Apply the decision rules. Caller holds the item's lock."""
        final_quorum = self.tracker.release_quorum(item.decision_id)
        item.last_quorum = final_quorum

        item.status = decide_outcome(
            item.votes.votes_for,
            item.votes.votes_against,
            self._quorum_met(item, final_quorum),
            self.config.minority_protection_threshold,
            self.config.veto_power_threshold,
        )
        item.finalized_at = self._clock()
        await self._store.put(item.item_id, item)
        self._release_item(item.item_id)

        logger.info(
            f"Item {item.item_id} {item.status.value}: "
            f"for={item.votes.votes_for} against={item.votes.votes_against} "
            f"quorum={final_quorum.is_quorum_reached}"
        )
        event_type = (
            EventType.ITEM_VALIDATED
            if item.status == ValidationStatus.VALIDATED
            else EventType.ITEM_REJECTED
        )
        self._notify(event_type, item.item_id, {
            "source": item.source,
            "votes_for": item.votes.votes_for,
            "votes_against": item.votes.votes_against,
            "quorum_reached": final_quorum.is_quorum_reached,
        })

    def _quorum_met(self, item: ValidationItem, status: QuorumStatus) -> bool:
        """Tracker quorum plus the validator's participation floors."""
        return (
            status.is_quorum_reached
            and len(item.votes.voters) >= self.config.min_votes_required
            and status.current_voting_power >= self.config.required_voting_power
        )

    def _ensure_quorum(self, item: ValidationItem) -> None:
        """Rebuild tracker state for a pending item opened before a restart."""
        if self.tracker.has_decision(item.decision_id):
            return
        last = item.last_quorum
        self.tracker.restore_quorum(
            item.decision_id,
            start_time=item.submitted_at,
            voting_period=self.config.validation_period,
            votes=item.votes.voter_powers,
            total_voting_power=last.total_voting_power if last else None,
            current_voting_power=last.current_voting_power if last else 0,
            quorum_reached=last.is_quorum_reached if last else False,
        )

    async def _lock_for(self, item_id: str) -> trio.Lock:
        """Per-item lock; only items known to the store get one."""
        lock = self._locks.get(item_id)
        if lock is None:
            await self._require_item(item_id)
            lock = self._locks.setdefault(item_id, trio.Lock())
        return lock

    def _release_item(self, item_id: str) -> None:
        """Drop per-item runtime state once the item is terminal."""
        self._stop_checker(item_id)
        self._locks.pop(item_id, None)

    def _schedule_checker(self, item_id: str) -> None:
        if self._nursery is None:
            logger.debug(f"No nursery attached; {item_id} waits for run_checks()")
            return
        if item_id in self._checkers:
            return
        scope = trio.CancelScope()
        self._checkers[item_id] = scope
        self._nursery.start_soon(self._check_loop, item_id, scope)

    def _stop_checker(self, item_id: str) -> None:
        scope = self._checkers.pop(item_id, None)
        if scope is not None:
            scope.cancel()

    async def _check_loop(self, item_id: str, scope: trio.CancelScope) -> None:
        """Background task checking one item until it is finalized."""
        with scope:
            while True:
                await trio.sleep(self.config.check_interval)
                try:
                    if await self.check_item(item_id):
                        break
                except Exception as e:
                    self._record_fault(item_id, e)
        logger.debug(f"Checker for {item_id} stopped")

    def _record_fault(self, item_id: str, error: Exception) -> None:
        self._faults += 1
        logger.error(f"Check failed for {item_id}: {error}")
        self._notify(EventType.CHECK_FAILED, item_id, {"error": str(error)})

    async def _require_item(self, item_id: str) -> ValidationItem:
        item = await self._store.get(item_id)
        if item is None:
            raise NotFoundError(f"Validation item not found: {item_id}")
        return item

    def _notify(self, event_type: EventType, subject_id: str, data: dict) -> None:
        if self.notifier:
            self.notifier.publish(event_type, subject_id, data)
