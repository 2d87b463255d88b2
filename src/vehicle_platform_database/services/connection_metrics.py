"""
# Tenant Connection Metrics

Prometheus metrics for the tenant connection cache, scraped from `/metrics`.

- **Gauges**: cached tenants, in-flight requests holding a tenant connection, cache hit rate.
- **Counters**: connections created, evictions (labelled by reason), acquire failures.

```python
connection_metrics.record_eviction("capacity")
connection_metrics.update_from_stats(connection_manager.stats())
```
"""

from prometheus_client import Counter, Gauge

from vehicle_platform_database.managers.logging_manager import get_logger
from vehicle_platform_database.models.connection_models import ConnectionStats

logger = get_logger(prefix="[ConnectionMetrics]")


class ConnectionMetrics:
    """Prometheus metrics for tenant connection lifecycle monitoring."""

    def __init__(self):
        """Initialize metrics."""
        # Gauges
        self.cached_tenants = Gauge(
            "tenant_connections_cached",
            "Number of cached tenant database connections",
        )
        self.active_requests = Gauge(
            "tenant_connections_active_requests",
            "Requests currently holding a tenant database connection",
        )
        self.hit_rate = Gauge(
            "tenant_connection_cache_hit_rate",
            "Ratio of tenant connection acquisitions served from the cache",
        )

        # Counters
        self.connections_created = Counter(
            "tenant_connections_created_total",
            "Total number of tenant database connections opened",
        )
        self.evictions_total = Counter(
            "tenant_connection_evictions_total",
            "Total number of tenant connections evicted from the cache",
            ["reason"],
        )
        self.acquire_failures = Counter(
            "tenant_connection_acquire_failures_total",
            "Total number of failed tenant connection acquisitions",
        )

    def record_connection_created(self):
        self.connections_created.inc()

    def record_eviction(self, reason: str):
        self.evictions_total.labels(reason=reason).inc()

    def record_acquire_failure(self):
        self.acquire_failures.inc()

    def update_from_stats(self, stats: ConnectionStats):
        """Refresh gauges from a cache snapshot."""
        self.cached_tenants.set(stats.cached_tenant_count)
        self.active_requests.set(stats.total_active_requests)
        self.hit_rate.set(stats.hit_rate)


# Global instance
connection_metrics = ConnectionMetrics()
