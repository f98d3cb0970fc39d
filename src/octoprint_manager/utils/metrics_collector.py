"""Prometheus metrics collection for OctoPrint Manager."""

from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, generate_latest


class MetricsCollector:
    """Collects and exposes Prometheus metrics for container lifecycle operations."""

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        """
        Initialize metrics collector.

        Args:
            registry: Registry the metrics are registered in
        """
        self.registry = registry

        self.lifecycle_operations_total = Counter(
            "octoprint_manager_lifecycle_operations_total",
            "Total number of container lifecycle operations",
            ["operation", "outcome"],
            registry=registry,
        )

        self.reconciled_containers_total = Counter(
            "octoprint_manager_reconciled_containers_total",
            "Containers handled by reconciliation, by action taken",
            ["action"],
            registry=registry,
        )

        self.managed_containers = Gauge(
            "octoprint_manager_managed_containers",
            "Number of container records in the store",
            registry=registry,
        )

    def record_operation(self, operation: str, success: bool) -> None:
        """
        Record a lifecycle operation.

        Args:
            operation: create, delete, restart or rename
            success: Whether the operation completed
        """
        outcome = "success" if success else "failure"
        self.lifecycle_operations_total.labels(operation=operation, outcome=outcome).inc()

    def record_reconcile_action(self, action: str) -> None:
        """
        Record what reconciliation did for one container.

        Args:
            action: untouched, started, recreated or failed
        """
        self.reconciled_containers_total.labels(action=action).inc()

    def set_managed_containers(self, count: int) -> None:
        self.managed_containers.set(count)

    def get_metrics(self) -> bytes:
        """Get current metrics in Prometheus text format."""
        return generate_latest(self.registry)


_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """
    Get the global metrics collector instance.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
    return _metrics_collector
