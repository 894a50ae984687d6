"""
govcore/protocol/

Decision-making components of the governance core.
"""

from .storage import StorageBackend, MemoryBackend, FileBackend, RecordStore
from .notifications import EventType, GovernanceEvent, NotificationHub
from .delegation import DelegationLedger, DelegationRecord, DelegationKind
from .quorum import (
    QuorumTracker,
    QuorumState,
    QuorumStatus,
    validate_quorum_config,
    required_quorum_percentage,
)
from .consensus import (
    ConsensusValidator,
    ValidationItem,
    ValidationStatus,
    VoteTally,
    build_role_caps,
    decide_outcome,
)

__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "RecordStore",
    "EventType",
    "GovernanceEvent",
    "NotificationHub",
    "DelegationLedger",
    "DelegationRecord",
    "DelegationKind",
    "QuorumTracker",
    "QuorumState",
    "QuorumStatus",
    "validate_quorum_config",
    "required_quorum_percentage",
    "ConsensusValidator",
    "ValidationItem",
    "ValidationStatus",
    "VoteTally",
    "build_role_caps",
    "decide_outcome",
]
