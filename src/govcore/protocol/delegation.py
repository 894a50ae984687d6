"""
govcore/protocol/delegation.py

Delegation and voting-power ledger.

Accounts assign some or all of their voting power to other accounts:
- FULL: all base power, plus anything the delegator itself receives
- PARTIAL: a fixed amount of base power
- PERCENTAGE: a percentage of base power

A delegation only moves power once its lock period has elapsed, so power
cannot be flash-delegated immediately before a vote. Revocation sets
end_time once and for all; revoked records are kept for audit.

Usage:
    ledger = DelegationLedger(identity, DelegationConfig(lock_period=3600))

    delegation_id = await ledger.create_delegation(
        "alice", "bob", DelegationKind.PERCENTAGE, amount=10, percentage=25
    )
    power = await ledger.get_effective_voting_power("bob")
    await ledger.revoke_delegation(delegation_id, delegator="alice")
"""

import json
import time
import hashlib
import logging
import itertools
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

import trio

from ..config import DelegationConfig
from ..errors import NotFoundError, StateError, ValidationError
from ..identity.roles import RoleProvider
from .notifications import EventType, NotificationHub
from .storage import RecordStore

logger = logging.getLogger("govcore.protocol.delegation")


# ============================================================================
# CONSTANTS
# ============================================================================

DELEGATION_NAMESPACE = "delegations"

TAG_UPDATED = "updated"
TAG_REVOKED = "revoked"


# ============================================================================
# DATA CLASSES
# ============================================================================

class DelegationKind(Enum):
    """How much power a delegation assigns."""
    FULL = "full"
    PARTIAL = "partial"
    PERCENTAGE = "percentage"


@dataclass
class DelegationRecord:
    """A delegator's assignment of voting power to a delegate."""
    delegation_id: str
    delegator: str
    delegate: str
    kind: DelegationKind
    amount: int = 0                 # base units (PARTIAL)
    percentage: int = 0             # 0-100 (PERCENTAGE)
    start_time: float = 0.0
    end_time: Optional[float] = None  # set once, on revocation
    reason: str = ""
    tags: List[str] = field(default_factory=list)

    def is_revoked(self) -> bool:
        return self.end_time is not None

    def is_active(self, now: float, lock_period: float) -> bool:
        """Whether this delegation currently transfers power."""
        return not self.is_revoked() and self.start_time + lock_period <= now

    def commitment(self, base_power: int) -> int:
        """Base power this delegation takes from its delegator."""
        if self.kind == DelegationKind.FULL:
            return base_power
        if self.kind == DelegationKind.PARTIAL:
            return self.amount
        return int(base_power * self.percentage // 100)

    def to_dict(self) -> dict:
        return {
            "delegation_id": self.delegation_id,
            "delegator": self.delegator,
            "delegate": self.delegate,
            "kind": self.kind.value,
            "amount": self.amount,
            "percentage": self.percentage,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "reason": self.reason,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DelegationRecord":
        return cls(
            delegation_id=data["delegation_id"],
            delegator=data["delegator"],
            delegate=data["delegate"],
            kind=DelegationKind(data["kind"]),
            amount=int(data.get("amount", 0)),
            percentage=data.get("percentage", 0),
            start_time=float(data.get("start_time", 0.0)),
            end_time=data.get("end_time"),
            reason=data.get("reason", ""),
            tags=list(data.get("tags", [])),
        )

    @staticmethod
    def generate_id(delegator: str, delegate: str, timestamp: float, nonce: int) -> str:
        """Generate unique delegation ID."""
        content = f"{delegator}:{delegate}:{timestamp}:{nonce}"
        return hashlib.sha256(content.encode()).hexdigest()[:16]


def _deserialize_record(data: bytes) -> DelegationRecord:
    return DelegationRecord.from_dict(json.loads(data.decode()))


# ============================================================================
# DELEGATION LEDGER
# ============================================================================

class DelegationLedger:
    """
    Maintains delegation records and computes voting power per account.

    Power views:
    - delegated: base power committed away by active outgoing delegations
    - available: base - delegated
    - received: power flowing in through active incoming delegations
    - effective: available + received, minus anything forwarded onward
      through the account's own active FULL delegation

    Mutations for one delegator are serialized by a per-delegator lock;
    there is no global lock.
    """

    def __init__(
        self,
        identity: RoleProvider,
        config: Optional[DelegationConfig] = None,
        store: Optional[RecordStore[DelegationRecord]] = None,
        notifier: Optional[NotificationHub] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize DelegationLedger.

        Args:
            identity: Provider of base voting power
            config: Delegation policy bounds
            store: Record store for delegations (in-memory by default)
            notifier: Hub receiving delegation events
            clock: Time source in seconds
        """
        self.identity = identity
        self.config = config or DelegationConfig()
        self.config.validate()
        self.notifier = notifier
        self._clock = clock
        self._store = store or RecordStore(
            DELEGATION_NAMESPACE, deserializer=_deserialize_record
        )
        self._locks: Dict[str, trio.Lock] = defaultdict(trio.Lock)
        self._nonce = itertools.count()

    @property
    def max_chain_hops(self) -> int:
        """Hop limit when resolving FULL delegation chains."""
        return self.config.max_delegations_per_address

    # ========================================================================
    # MUTATIONS
    # ========================================================================

    async def create_delegation(
        self,
        delegator: str,
        delegate: str,
        kind: Union[DelegationKind, str],
        amount: int = 0,
        percentage: int = 0,
        reason: str = "",
    ) -> str:
        """
        Delegate voting power from delegator to delegate.

        Returns:
            The new delegation id

        Raises:
            ValidationError: on any policy-bound violation
        """
        kind = self._parse_kind(kind)
        if not delegator or not delegate:
            raise ValidationError("Delegator and delegate are required")
        if delegator == delegate:
            raise ValidationError("An account cannot delegate to itself")
        self._validate_bounds(kind, amount, percentage)

        async with self._locks[delegator]:
            records = await self._store.values()
            outstanding = self._outstanding(records, delegator)
            if len(outstanding) >= self.config.max_delegations_per_address:
                raise ValidationError(
                    f"{delegator} already holds {len(outstanding)} delegations "
                    f"(max {self.config.max_delegations_per_address})"
                )
            self._validate_commitment(delegator, kind, amount, percentage, outstanding)
            self._check_cycle(records, delegator, delegate)

            now = self._clock()
            record = DelegationRecord(
                delegation_id=DelegationRecord.generate_id(delegator, delegate, now, next(self._nonce)),
                delegator=delegator,
                delegate=delegate,
                kind=kind,
                amount=amount,
                percentage=percentage,
                start_time=now,
                reason=reason,
            )
            await self._store.put(record.delegation_id, record)

        logger.info(f"Delegation created: {delegator} -> {delegate} ({kind.value})")
        self._notify(EventType.DELEGATION_CREATED, record.delegation_id, record.to_dict())
        return record.delegation_id

    async def update_delegation(
        self,
        delegation_id: str,
        kind: Union[DelegationKind, str],
        amount: int = 0,
        percentage: int = 0,
        reason: str = "",
        delegator: Optional[str] = None,
    ) -> None:
        """
        Change the terms of an outstanding delegation.

        The lock period restarts, so the new terms only take effect once it
        has elapsed again.

        Raises:
            NotFoundError: unknown or revoked delegation
            ValidationError: policy-bound violation, or delegator mismatch
        """
        kind = self._parse_kind(kind)
        self._validate_bounds(kind, amount, percentage)
        owner = (await self._require_outstanding(delegation_id)).delegator
        if delegator is not None and delegator != owner:
            raise ValidationError("Only the delegator can update a delegation")

        async with self._locks[owner]:
            record = await self._require_outstanding(delegation_id)
            records = await self._store.values()
            outstanding = [
                d for d in self._outstanding(records, owner)
                if d.delegation_id != delegation_id
            ]
            self._validate_commitment(owner, kind, amount, percentage, outstanding)

            old = record.to_dict()
            record.kind = kind
            record.amount = amount
            record.percentage = percentage
            record.start_time = self._clock()
            if reason:
                record.reason = reason
            record.tags.append(TAG_UPDATED)
            await self._store.put(delegation_id, record)

        logger.info(f"Delegation updated: {delegation_id} ({old['kind']} -> {kind.value})")
        self._notify(EventType.DELEGATION_UPDATED, delegation_id, {
            "delegator": owner,
            "delegate": record.delegate,
            "old_kind": old["kind"],
            "new_kind": kind.value,
            "old_amount": old["amount"],
            "new_amount": amount,
            "old_percentage": old["percentage"],
            "new_percentage": percentage,
        })

    async def revoke_delegation(
        self,
        delegation_id: str,
        delegator: Optional[str] = None,
    ) -> None:
        """
        Revoke a delegation. Irreversible.

        Raises:
            NotFoundError: unknown or already revoked delegation
            StateError: still inside the cooldown period
            ValidationError: delegator mismatch
        """
        owner = (await self._require_outstanding(delegation_id)).delegator
        if delegator is not None and delegator != owner:
            raise ValidationError("Only the delegator can revoke a delegation")

        async with self._locks[owner]:
            record = await self._require_outstanding(delegation_id)
            now = self._clock()
            if now - record.start_time < self.config.cooldown_period:
                logger.warning(f"Revocation of {delegation_id} refused during cooldown")
                raise StateError(
                    f"Delegation {delegation_id} cannot be revoked within its cooldown period"
                )
            record.end_time = now
            record.tags.append(TAG_REVOKED)
            await self._store.put(delegation_id, record)

        logger.info(f"Delegation revoked: {record.delegator} -> {record.delegate}")
        self._notify(EventType.DELEGATION_REVOKED, delegation_id, record.to_dict())

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_delegation(self, delegation_id: str) -> Optional[DelegationRecord]:
        return await self._store.get(delegation_id)

    async def get_delegations_by_delegator(self, account: str) -> List[DelegationRecord]:
        return [d for d in await self._store.values() if d.delegator == account]

    async def get_delegations_by_delegate(self, account: str) -> List[DelegationRecord]:
        return [d for d in await self._store.values() if d.delegate == account]

    async def get_active_delegations(self, account: str) -> List[DelegationRecord]:
        """Delegations into or out of an account that currently move power."""
        now = self._clock()
        return [
            d for d in await self._store.values()
            if account in (d.delegator, d.delegate)
            and d.is_active(now, self.config.lock_period)
        ]

    async def is_delegate(self, account: str) -> bool:
        """Whether any active delegation points at this account."""
        now = self._clock()
        return any(
            d.delegate == account and d.is_active(now, self.config.lock_period)
            for d in await self._store.values()
        )

    # ========================================================================
    # VOTING POWER
    # ========================================================================

    async def get_delegated_voting_power(self, account: str) -> int:
        view = await self._power_view()
        return view.delegated(account)

    async def get_available_voting_power(self, account: str) -> int:
        view = await self._power_view()
        return view.base(account) - view.delegated(account)

    async def get_received_voting_power(self, account: str) -> int:
        view = await self._power_view()
        return view.received(account, self.max_chain_hops)

    async def get_effective_voting_power(self, account: str) -> int:
        """
        Voting power an account can cast right now.

        base - delegated away + received, where received power is passed on
        (and so excluded here) when the account has an active FULL delegation.
        """
        view = await self._power_view()
        return view.effective(account, self.max_chain_hops)

    async def _power_view(self) -> "_PowerView":
        now = self._clock()
        active = [
            d for d in await self._store.values()
            if d.is_active(now, self.config.lock_period)
        ]
        return _PowerView(active, self.identity.get_base_voting_power)

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def _parse_kind(self, kind: Union[DelegationKind, str]) -> DelegationKind:
        if isinstance(kind, DelegationKind):
            return kind
        try:
            return DelegationKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown delegation kind: {kind!r}")

    def _validate_bounds(self, kind: DelegationKind, amount: int, percentage: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError("Amount must be a non-negative integer")
        if isinstance(percentage, bool) or not isinstance(percentage, (int, float)):
            raise ValidationError("Percentage must be a number")
        if kind in (DelegationKind.PARTIAL, DelegationKind.PERCENTAGE):
            if amount < self.config.min_delegation_amount:
                raise ValidationError(
                    f"Amount {amount} is below the minimum of {self.config.min_delegation_amount}"
                )
        if percentage < 0 or percentage > 100:
            raise ValidationError("Percentage must be within 0-100")
        if percentage > self.config.max_delegation_percentage:
            raise ValidationError(
                f"Percentage {percentage} exceeds the maximum of {self.config.max_delegation_percentage}"
            )

    def _validate_commitment(
        self,
        delegator: str,
        kind: DelegationKind,
        amount: int,
        percentage: int,
        outstanding: List[DelegationRecord],
    ) -> None:
        """Outbound delegations must not over-commit the delegator."""
        if kind == DelegationKind.FULL and outstanding:
            raise ValidationError(
                "A full delegation requires no other outstanding delegations"
            )
        if any(d.kind == DelegationKind.FULL for d in outstanding):
            raise ValidationError(f"{delegator} has already delegated in full")

        if kind == DelegationKind.PERCENTAGE:
            committed_pct = sum(
                d.percentage for d in outstanding if d.kind == DelegationKind.PERCENTAGE
            )
            if committed_pct + percentage > 100:
                raise ValidationError(
                    f"Percentage delegations would commit {committed_pct + percentage}% of base power"
                )

        base = self.identity.get_base_voting_power(delegator)
        candidate = DelegationRecord("", delegator, "", kind, amount, percentage)
        committed = sum(d.commitment(base) for d in outstanding) + candidate.commitment(base)
        if committed > max(base, 0):
            raise ValidationError(
                f"Delegations would commit {committed} of a {base} balance"
            )

    def _check_cycle(self, records: List[DelegationRecord], delegator: str, delegate: str) -> None:
        """Reject an edge that would let power flow back to the delegator."""
        edges: Dict[str, List[str]] = defaultdict(list)
        for d in records:
            if not d.is_revoked():
                edges[d.delegator].append(d.delegate)

        seen = set()
        frontier = [delegate]
        while frontier:
            account = frontier.pop()
            if account == delegator:
                raise ValidationError(f"Delegating {delegator} -> {delegate} would create a cycle")
            if account in seen:
                continue
            seen.add(account)
            frontier.extend(edges.get(account, []))

    def _outstanding(self, records: List[DelegationRecord], delegator: str) -> List[DelegationRecord]:
        return [d for d in records if d.delegator == delegator and not d.is_revoked()]

    async def _require_outstanding(self, delegation_id: str) -> DelegationRecord:
        record = await self._store.get(delegation_id)
        if record is None:
            raise NotFoundError(f"Delegation not found: {delegation_id}")
        if record.is_revoked():
            raise NotFoundError(f"Delegation already revoked: {delegation_id}")
        return record

    def _notify(self, event_type: EventType, subject_id: str, data: dict) -> None:
        if self.notifier:
            self.notifier.publish(event_type, subject_id, data)

    def get_stats(self) -> dict:
        return {
            "store": self._store.get_stats(),
            "lock_period": self.config.lock_period,
            "max_chain_hops": self.max_chain_hops,
        }


# ============================================================================
# POWER VIEW
# ============================================================================

class _PowerView:
    """Voting power over one snapshot of active delegations."""

    def __init__(
        self,
        active: List[DelegationRecord],
        base_lookup: Callable[[str], int],
    ):
        self._base_lookup = base_lookup
        self._bases: Dict[str, int] = {}
        self._outgoing: Dict[str, List[DelegationRecord]] = defaultdict(list)
        self._incoming: Dict[str, List[DelegationRecord]] = defaultdict(list)
        for d in sorted(active, key=lambda r: (r.start_time, r.delegation_id)):
            self._outgoing[d.delegator].append(d)
            self._incoming[d.delegate].append(d)
        self._allocations: Dict[str, Dict[str, int]] = {}
        self._received: Dict[Tuple[str, int], int] = {}

    def base(self, account: str) -> int:
        if account not in self._bases:
            self._bases[account] = max(0, self._base_lookup(account))
        return self._bases[account]

    def allocations(self, delegator: str) -> Dict[str, int]:
        """Base power given to each outgoing delegation, oldest first, capped at base."""
        if delegator not in self._allocations:
            base = self.base(delegator)
            remaining = base
            allocated = {}
            for d in self._outgoing[delegator]:
                given = min(d.commitment(base), remaining)
                allocated[d.delegation_id] = given
                remaining -= given
            self._allocations[delegator] = allocated
        return self._allocations[delegator]

    def delegated(self, account: str) -> int:
        return sum(self.allocations(account).values())

    def received(self, account: str, hops: int) -> int:
        key = (account, hops)
        if key not in self._received:
            total = 0
            for d in self._incoming[account]:
                total += self.allocations(d.delegator)[d.delegation_id]
                if d.kind == DelegationKind.FULL and hops > 1:
                    total += self.received(d.delegator, hops - 1)
            self._received[key] = total
        return self._received[key]

    def forwards_received(self, account: str) -> bool:
        return any(d.kind == DelegationKind.FULL for d in self._outgoing[account])

    def effective(self, account: str, hops: int) -> int:
        available = self.base(account) - self.delegated(account)
        if self.forwards_received(account):
            return available
        return available + self.received(account, hops)
