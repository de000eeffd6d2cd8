"""
Tests for resolver metrics counters and the maintenance job.
"""
from datetime import timedelta

import pytest

from db_models import utcnow
from services import maintenance
from services.resolver_metrics import ResolverMetrics, get_resolver_metrics
from tests.factories import fetch_order, make_order


class TestResolverMetrics:

    @pytest.mark.unit
    def test_bare_returns_are_counted_separately(self):
        metrics = ResolverMetrics()
        metrics.record_outcome("user_cancelled", "bare_return")
        metrics.record_outcome("user_cancelled", "explicit_cancel")
        metrics.record_outcome("cc_rejected_other_reason", "gateway_error_code")

        data = metrics.to_dict()
        assert data["outcomes"] == {"user_cancelled": 2, "cc_rejected_other_reason": 1}
        assert data["bare_return_cancellations"] == 1

    @pytest.mark.unit
    def test_notification_counters(self):
        metrics = ResolverMetrics()
        metrics.record_notification_sent()
        metrics.record_notification_suppressed()
        metrics.record_notification_suppressed()
        metrics.record_notification_failed()

        data = metrics.to_dict()
        assert (data["notifications_sent"], data["notifications_suppressed"], data["notifications_failed"]) == (1, 2, 1)
        assert data["uptime_seconds"] >= 0

    @pytest.mark.unit
    def test_process_wide_instance(self):
        assert get_resolver_metrics() is get_resolver_metrics()


class TestMaintenance:

    @pytest.mark.unit
    async def test_run_once_marks_abandoned_orders(self, session_factory, db_session):
        await make_order(db_session, order_number="ORD-OLD-AAAAAAAAA", created_at=utcnow() - timedelta(hours=30))

        marked = await maintenance.run_once(session_factory, hours=24)

        assert marked == 1
        status = maintenance.get_status()
        assert status["lastAbandonedCount"] == 1
        assert status["lastRunAt"] is not None
        assert (await fetch_order(db_session, "ORD-OLD-AAAAAAAAA")).abandoned_at is not None

    @pytest.mark.unit
    async def test_start_stop(self):
        await maintenance.start()
        assert maintenance.get_status()["running"] is True

        await maintenance.stop()
        assert maintenance.get_status()["running"] is False
