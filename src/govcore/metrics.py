"""
govcore/metrics.py

Prometheus metrics collection for govcore.

Counts governance events published on a NotificationHub and exposes them
in Prometheus text format.
"""

import time
import logging
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

from .protocol.notifications import EventType, GovernanceEvent, NotificationHub

logger = logging.getLogger("govcore.metrics")


class GovernanceMetrics:
    """
    Prometheus metrics collector for govcore.

    Usage:
        hub = NotificationHub()
        metrics = GovernanceMetrics()
        metrics.attach(hub)

        # Get metrics in Prometheus format
        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "govcore_delegations_created_total": {
            "type": "counter",
            "help": "Total number of delegations created",
        },
        "govcore_delegations_updated_total": {
            "type": "counter",
            "help": "Total number of delegations updated",
        },
        "govcore_delegations_revoked_total": {
            "type": "counter",
            "help": "Total number of delegations revoked",
        },
        "govcore_items_submitted_total": {
            "type": "counter",
            "help": "Total number of items submitted for validation",
        },
        "govcore_votes_cast_total": {
            "type": "counter",
            "help": "Total number of votes cast",
        },
        "govcore_vote_power_total": {
            "type": "counter",
            "help": "Total capped voting power cast",
        },
        "govcore_items_finalized_total": {
            "type": "counter",
            "help": "Total number of finalized items by outcome",
        },
        "govcore_quorum_reached_total": {
            "type": "counter",
            "help": "Total number of decisions that reached quorum",
        },
        "govcore_quorum_failed_total": {
            "type": "counter",
            "help": "Total number of decisions closed without quorum",
        },
        "govcore_check_failures_total": {
            "type": "counter",
            "help": "Total number of periodic checks that raised",
        },
        "govcore_pending_items": {
            "type": "gauge",
            "help": "Items submitted but not yet finalized",
        },
        "govcore_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    # Counted event type -> metric name
    EVENT_COUNTERS = {
        EventType.DELEGATION_CREATED: "govcore_delegations_created_total",
        EventType.DELEGATION_UPDATED: "govcore_delegations_updated_total",
        EventType.DELEGATION_REVOKED: "govcore_delegations_revoked_total",
        EventType.ITEM_SUBMITTED: "govcore_items_submitted_total",
        EventType.VOTE_CAST: "govcore_votes_cast_total",
        EventType.QUORUM_REACHED: "govcore_quorum_reached_total",
        EventType.QUORUM_FAILED: "govcore_quorum_failed_total",
        EventType.CHECK_FAILED: "govcore_check_failures_total",
    }

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._start_time = clock()
        self._hub: Optional[NotificationHub] = None

        # Counters (persist across collections)
        self._counts: Counter = Counter()
        self._outcomes: Counter = Counter()
        self._vote_power = 0

    def attach(self, hub: NotificationHub) -> None:
        """Start counting events published on a hub."""
        if self._hub is not None:
            self._hub.unsubscribe(self.record_event)
        self._hub = hub
        hub.subscribe(self.record_event)

    def detach(self) -> None:
        if self._hub is not None:
            self._hub.unsubscribe(self.record_event)
            self._hub = None

    def record_event(self, event: GovernanceEvent) -> None:
        """Record a published governance event."""
        name = self.EVENT_COUNTERS.get(event.event_type)
        if name:
            self._counts[name] += 1
        if event.event_type == EventType.VOTE_CAST:
            self._vote_power += int(event.data.get("power", 0))
        elif event.event_type == EventType.ITEM_VALIDATED:
            self._outcomes["validated"] += 1
        elif event.event_type == EventType.ITEM_REJECTED:
            self._outcomes["rejected"] += 1

    @property
    def pending_items(self) -> int:
        finalized = sum(self._outcomes.values())
        return max(0, self._counts["govcore_items_submitted_total"] - finalized)

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines: List[str] = []

        def add_header(name: str) -> None:
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def add_metric(name: str, value: float, labels: Dict[str, str] = None) -> None:
            add_header(name)
            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        for name in self.EVENT_COUNTERS.values():
            add_metric(name, self._counts[name])

        add_metric("govcore_vote_power_total", self._vote_power)

        add_header("govcore_items_finalized_total")
        for outcome in ("validated", "rejected"):
            lines.append(
                f'govcore_items_finalized_total{{outcome="{outcome}"}} {self._outcomes[outcome]}'
            )

        add_metric("govcore_pending_items", self.pending_items)
        add_metric("govcore_uptime_seconds", self._clock() - self._start_time)

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON consumers).

        Returns:
            Dictionary of metric values
        """
        return {
            "delegations_created": self._counts["govcore_delegations_created_total"],
            "delegations_updated": self._counts["govcore_delegations_updated_total"],
            "delegations_revoked": self._counts["govcore_delegations_revoked_total"],
            "items_submitted": self._counts["govcore_items_submitted_total"],
            "votes_cast": self._counts["govcore_votes_cast_total"],
            "vote_power": self._vote_power,
            "items_validated": self._outcomes["validated"],
            "items_rejected": self._outcomes["rejected"],
            "quorum_reached": self._counts["govcore_quorum_reached_total"],
            "quorum_failed": self._counts["govcore_quorum_failed_total"],
            "check_failures": self._counts["govcore_check_failures_total"],
            "pending_items": self.pending_items,
            "uptime_seconds": self._clock() - self._start_time,
        }

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._counts.clear()
        self._outcomes.clear()
        self._vote_power = 0
