"""
govcore - Decision-making core for decentralized governance

Built on trio with:
- Delegation ledger for FULL / PARTIAL / PERCENTAGE voting power delegation
- Time-growing quorum tracking per decision
- Weighted consensus validation with minority protection and veto
- Outbound notification hub for state changes
- Prometheus metrics for monitoring

Usage:
    import trio
    from govcore import (
        StaticRoleProvider, NotificationHub,
        DelegationLedger, QuorumTracker, ConsensusValidator,
        DelegationKind, GovernanceConfig,
    )

    config = GovernanceConfig.from_env()
    identity = StaticRoleProvider(balances={"alice": 1000, "bob": 500})
    hub = NotificationHub()

    ledger = DelegationLedger(identity, config.delegation, notifier=hub)
    tracker = QuorumTracker(identity, config.quorum, notifier=hub)
    validator = ConsensusValidator(ledger, tracker, identity, config.validator, notifier=hub)

    async def main():
        async with trio.open_nursery() as nursery:
            await validator.start(nursery)
            item_id = await validator.submit({"price": 42}, source="feed-1")
            await validator.vote(item_id, "alice", support=True)

Metrics Usage:
    from govcore.metrics import GovernanceMetrics

    metrics = GovernanceMetrics()
    metrics.attach(hub)
    prometheus_output = metrics.collect()
"""

from .errors import (
    GovernanceError,
    ValidationError,
    NotFoundError,
    StateError,
    ConfigError,
)
from .config import (
    DelegationConfig,
    QuorumConfig,
    ValidatorConfig,
    GovernanceConfig,
)
from .identity import Role, RoleProvider, StaticRoleProvider, resolve_role
from .protocol.storage import StorageBackend, MemoryBackend, FileBackend, RecordStore
from .protocol.notifications import EventType, GovernanceEvent, NotificationHub
from .protocol.delegation import DelegationLedger, DelegationRecord, DelegationKind
from .protocol.quorum import QuorumTracker, QuorumStatus
from .protocol.consensus import (
    ConsensusValidator,
    ValidationItem,
    ValidationStatus,
    decide_outcome,
)
from .metrics import GovernanceMetrics

__version__ = "0.1.0"

__all__ = [
    # Errors
    "GovernanceError",
    "ValidationError",
    "NotFoundError",
    "StateError",
    "ConfigError",
    # Configuration
    "DelegationConfig",
    "QuorumConfig",
    "ValidatorConfig",
    "GovernanceConfig",
    # Identity
    "Role",
    "RoleProvider",
    "StaticRoleProvider",
    "resolve_role",
    # Storage
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "RecordStore",
    # Notifications
    "EventType",
    "GovernanceEvent",
    "NotificationHub",
    # Governance components
    "DelegationLedger",
    "DelegationRecord",
    "DelegationKind",
    "QuorumTracker",
    "QuorumStatus",
    "ConsensusValidator",
    "ValidationItem",
    "ValidationStatus",
    "decide_outcome",
    # Metrics
    "GovernanceMetrics",
]
