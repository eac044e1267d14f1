"""Health aggregation."""

from lookout.server.health.monitor import HealthMonitor, format_uptime, percentile, process_memory_mb

__all__ = ["HealthMonitor", "format_uptime", "percentile", "process_memory_mb"]
