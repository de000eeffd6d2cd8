"""
Resolver metrics for payment reconciliation monitoring.

Simple in-memory counters per process; can be replaced with Prometheus later.
bare_return_cancellations counts redirects that carried no correlating data at
all. They are reported as ordinary cancellations, so a spike here is the only
visible sign of a misconfigured gateway integration.
"""
import logging
import time
from collections import Counter
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class ResolverMetrics:
    """In-memory counters for the payment reconciler and notification gate."""

    outcomes: Counter = field(default_factory=Counter)
    bare_return_cancellations: int = 0
    ambiguous_classifications: int = 0
    orders_not_found: int = 0
    unrecognized_events: int = 0
    status_changes: int = 0
    ignored_transitions: int = 0
    notifications_sent: int = 0
    notifications_suppressed: int = 0
    notifications_failed: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def record_outcome(self, outcome: str, rule: str) -> None:
        self.outcomes[outcome] += 1
        if rule == "bare_return":
            self.bare_return_cancellations += 1

    def record_ambiguous(self) -> None:
        self.ambiguous_classifications += 1

    def record_order_not_found(self) -> None:
        self.orders_not_found += 1

    def record_unrecognized_event(self) -> None:
        self.unrecognized_events += 1

    def record_status_change(self) -> None:
        self.status_changes += 1

    def record_ignored_transition(self) -> None:
        self.ignored_transitions += 1

    def record_notification_sent(self) -> None:
        self.notifications_sent += 1

    def record_notification_suppressed(self) -> None:
        self.notifications_suppressed += 1

    def record_notification_failed(self) -> None:
        self.notifications_failed += 1

    def to_dict(self) -> dict:
        return {
            "outcomes": dict(self.outcomes),
            "bare_return_cancellations": self.bare_return_cancellations,
            "ambiguous_classifications": self.ambiguous_classifications,
            "orders_not_found": self.orders_not_found,
            "unrecognized_events": self.unrecognized_events,
            "status_changes": self.status_changes,
            "ignored_transitions": self.ignored_transitions,
            "notifications_sent": self.notifications_sent,
            "notifications_suppressed": self.notifications_suppressed,
            "notifications_failed": self.notifications_failed,
            "uptime_seconds": round(time.monotonic() - self.started_at, 1),
        }


# Process-wide metrics instance
_metrics: ResolverMetrics | None = None


def get_resolver_metrics() -> ResolverMetrics:
    global _metrics
    if _metrics is None:
        _metrics = ResolverMetrics()
    return _metrics
