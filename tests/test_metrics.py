"""
govcore/tests/test_metrics.py

Unit tests for Prometheus metrics.
"""

import pytest

from govcore.metrics import GovernanceMetrics
from govcore.protocol.notifications import EventType, NotificationHub


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def metrics(hub):
    collector = GovernanceMetrics(clock=lambda: 100.0)
    collector.attach(hub)
    return collector


class TestGovernanceMetrics:
    """Tests for GovernanceMetrics."""

    def test_counts_events(self, hub, metrics):
        """Test published events are counted."""
        hub.publish(EventType.DELEGATION_CREATED, "d1")
        hub.publish(EventType.ITEM_SUBMITTED, "i1")
        hub.publish(EventType.ITEM_SUBMITTED, "i2")
        hub.publish(EventType.VOTE_CAST, "i1", {"power": 40})
        hub.publish(EventType.VOTE_CAST, "i1", {"power": 60})
        hub.publish(EventType.ITEM_VALIDATED, "i1")

        stats = metrics.get_stats()
        assert stats["delegations_created"] == 1
        assert stats["items_submitted"] == 2
        assert stats["votes_cast"] == 2
        assert stats["vote_power"] == 100
        assert stats["items_validated"] == 1
        assert stats["items_rejected"] == 0
        assert stats["pending_items"] == 1

    def test_collect_prometheus_format(self, hub, metrics):
        """Test Prometheus text exposition."""
        hub.publish(EventType.ITEM_SUBMITTED, "i1")
        hub.publish(EventType.ITEM_REJECTED, "i1")
        hub.publish(EventType.CHECK_FAILED, "i2")

        output = metrics.collect()

        assert "# TYPE govcore_items_submitted_total counter" in output
        assert "govcore_items_submitted_total 1" in output
        assert 'govcore_items_finalized_total{outcome="rejected"} 1' in output
        assert 'govcore_items_finalized_total{outcome="validated"} 0' in output
        assert "govcore_check_failures_total 1" in output
        assert "govcore_pending_items 0" in output
        assert output.endswith("\n")

    def test_every_metric_has_help(self, metrics):
        """Test each rendered metric carries HELP and TYPE lines."""
        output = metrics.collect()
        for name in GovernanceMetrics.METRICS:
            assert f"# HELP {name} " in output
            assert f"# TYPE {name} " in output

    def test_reset_counters(self, hub, metrics):
        """Test counters can be reset."""
        hub.publish(EventType.VOTE_CAST, "i1", {"power": 5})
        metrics.reset_counters()
        stats = metrics.get_stats()
        assert stats["votes_cast"] == 0
        assert stats["vote_power"] == 0

    def test_detach(self, hub, metrics):
        """Test a detached collector stops counting."""
        metrics.detach()
        hub.publish(EventType.ITEM_SUBMITTED, "i1")
        assert metrics.get_stats()["items_submitted"] == 0

    def test_attach_moves_subscription(self, hub, metrics):
        """Test re-attaching subscribes to the new hub only."""
        other = NotificationHub()
        metrics.attach(other)
        hub.publish(EventType.ITEM_SUBMITTED, "i1")
        other.publish(EventType.ITEM_SUBMITTED, "i2")
        assert metrics.get_stats()["items_submitted"] == 1
