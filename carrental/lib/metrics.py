"""
Prometheus-compatible metrics for observability.

Tracks the booking and agency workflow:
- Bookings created (by payment method and initial status)
- Status transitions (by entity, from, to, path)
- Compare-and-swap conflicts (by entity and outcome)
- Notification deliveries (by kind and outcome)

Usage:
    from carrental.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_transitions(entity="booking", from_status="pending", to_status="confirmed")

    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style metrics collector for the rental workflow.

    Counters:
    - bookings_created_total: labels payment_method, status
    - status_transitions_total: labels entity, from_status, to_status, path
    - transition_conflicts_total: labels entity, outcome (retried, surfaced)
    - notifications_total: labels kind, outcome (sent, failed)

    Thread-safe for concurrent increments.
    """

    def __init__(self):
        self._lock = Lock()

        # Counters: key = (metric_name, labels_tuple), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        sorted_labels = tuple(sorted(labels.items()))
        return (metric_name, sorted_labels)

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        """Thread-safe increment of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def _get_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Get current value of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    # ===== Workflow Metrics =====

    def increment_bookings_created(self, payment_method: str, status: str, amount: int = 1):
        """Increment bookings created counter."""
        labels = {
            "payment_method": payment_method.lower(),
            "status": status.lower(),
        }
        self._increment("bookings_created_total", labels, amount)

    def increment_transitions(
        self,
        entity: str,
        from_status: str,
        to_status: str,
        path: str = "table",
        amount: int = 1
    ):
        """
        Increment applied status transitions.

        Args:
            entity: booking or agency
            from_status: Status before the transition
            to_status: Status after the transition
            path: table (legal transition table) or override (admin override)
            amount: Increment amount (default 1)
        """
        labels = {
            "entity": entity.lower(),
            "from_status": from_status.lower(),
            "to_status": to_status.lower(),
            "path": path.lower(),
        }
        self._increment("status_transitions_total", labels, amount)

    def increment_conflicts(self, entity: str, outcome: str, amount: int = 1):
        """Increment compare-and-swap conflicts (outcome: retried or surfaced)."""
        labels = {
            "entity": entity.lower(),
            "outcome": outcome.lower(),
        }
        self._increment("transition_conflicts_total", labels, amount)

    def increment_notifications(self, kind: str, outcome: str, amount: int = 1):
        """Increment notification deliveries (outcome: sent or failed)."""
        labels = {
            "kind": kind.lower(),
            "outcome": outcome.lower(),
        }
        self._increment("notifications_total", labels, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            Prometheus-compatible text output
        """
        output_lines = []

        # Group counters by metric name
        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            help_text = self._get_help_text(metric_name)
            output_lines.append(f"# HELP {metric_name} {help_text}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                output_lines.append(f"{metric_name}{{{labels_str}}} {value}")

            output_lines.append("")  # Blank line between metrics

        return "\n".join(output_lines)

    def _get_help_text(self, metric_name: str) -> str:
        """Get help text for metric."""
        help_texts = {
            "bookings_created_total": "Total number of bookings created",
            "status_transitions_total": "Total number of applied status transitions",
            "transition_conflicts_total": "Total number of compare-and-swap conflicts",
            "notifications_total": "Total number of notification delivery attempts",
        }
        return help_texts.get(metric_name, "Counter metric")

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """
        Get current value of a specific counter.

        Args:
            metric_name: Name of the metric
            labels: Label filters

        Returns:
            Current counter value
        """
        return self._get_value(metric_name, labels)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
