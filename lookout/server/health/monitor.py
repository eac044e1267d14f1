"""Aggregate health metrics and threshold alerts.

All counters live in memory and are bounded: request and event samples in
rings of ``metrics_retention`` entries, recent errors and alerts in rings of
100.  Windowed figures (per-minute rates, average latency, percentiles) are
computed from the rings on read.
"""

from __future__ import annotations

import math
import resource
import sys
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger

from lookout.server.models.enums import AlertSeverity, AlertType, HealthState
from lookout.server.models.health import (
    Alert,
    DetailedHealthReport,
    EventReport,
    HealthReport,
    MemoryReport,
    OperationStats,
    RequestReport,
    SessionGauges,
)

AlertListener = Callable[[Alert], None]
MemoryProbe = Callable[[], float]

RECENT_ERRORS_LIMIT = 100
ALERT_HISTORY_LIMIT = 100

MINUTE = 60.0
LATENCY_WINDOW = 300.0
ALERT_WINDOW = 600.0
ERROR_RATE_MIN_REQUESTS = 10

PERCENTILES = (50, 90, 95, 99)

_SEVERITY = {
    AlertType.SLOW_REQUEST: AlertSeverity.WARNING,
    AlertType.HIGH_ERROR_RATE: AlertSeverity.CRITICAL,
    AlertType.MEMORY_HIGH: AlertSeverity.WARNING,
    AlertType.MEMORY_CRITICAL: AlertSeverity.CRITICAL,
}


def process_memory_mb() -> float:
    """Current resident set size of this process, in MB.

    Read from ``/proc/self/statm``.  Where procfs is unavailable (macOS) the
    high-water mark from ``getrusage`` is the closest stdlib figure.
    """
    try:
        resident_pages = int(Path("/proc/self/statm").read_text().split()[1])
    except OSError:
        return _peak_rss_mb()
    return resident_pages * resource.getpagesize() / (1024 * 1024)


def _peak_rss_mb() -> float:
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere.
    if sys.platform == "darwin":
        return rss / (1024 * 1024)
    return rss / 1024


def percentile(sorted_values: list[float], pct: float) -> float:
    """Nearest-rank percentile of an ascending list; 0 when empty."""
    if not sorted_values:
        return 0.0
    index = max(0, math.ceil(len(sorted_values) * pct / 100) - 1)
    return sorted_values[min(index, len(sorted_values) - 1)]


def format_uptime(uptime_ms: float) -> str:
    seconds = int(uptime_ms // 1000)
    minutes, hours, days = seconds // 60, seconds // 3600, seconds // 86400
    if days:
        return f"{days}d {hours % 24}h {minutes % 60}m"
    if hours:
        return f"{hours}h {minutes % 60}m"
    if minutes:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


@dataclass(frozen=True, slots=True)
class _RequestSample:
    at: float
    operation: str
    ms: float
    success: bool


@dataclass(frozen=True, slots=True)
class _EventSample:
    at: float
    event_type: str
    ms: float


class HealthMonitor:
    """Rolling health figures for the service.

    ``clock`` is wall time in seconds (sample timestamps, uptime);
    ``record_request`` takes ``time.perf_counter()`` readings.
    """

    def __init__(
        self,
        *,
        max_memory_mb: float = 512,
        max_response_time_ms: float = 1000,
        max_error_rate: float = 0.05,
        metrics_retention: int = 300,
        memory_probe: MemoryProbe = process_memory_mb,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_memory_mb = max_memory_mb
        self.max_response_time_ms = max_response_time_ms
        self.max_error_rate = max_error_rate
        self._retention = metrics_retention
        self._memory_probe = memory_probe
        self._clock = clock
        self._listeners: list[AlertListener] = []
        self.reset()

    def reset(self) -> None:
        """Zero every counter and ring and restart the uptime clock."""
        self._started = self._clock()
        self._requests_total = 0
        self._requests_errors = 0
        self._by_operation: dict[str, OperationStats] = {}
        self._request_samples: deque[_RequestSample] = deque(maxlen=self._retention)
        self._events_total = 0
        self._by_event_type: dict[str, int] = {}
        self._event_samples: deque[_EventSample] = deque(maxlen=self._retention)
        self._errors: deque[dict[str, Any]] = deque(maxlen=RECENT_ERRORS_LIMIT)
        self._alerts: deque[Alert] = deque(maxlen=ALERT_HISTORY_LIMIT)
        self._sessions = SessionGauges()
        self._peak_memory_mb = 0.0

    # -- Recording -------------------------------------------------------------

    def record_request(self, operation: str, start: float, success: bool = True, end: float | None = None) -> float:
        """Record one completed operation and return its latency in ms."""
        if end is None:
            end = time.perf_counter()
        ms = max(0.0, (end - start) * 1000)

        self._requests_total += 1
        if not success:
            self._requests_errors += 1

        stats = self._by_operation.setdefault(operation, OperationStats())
        stats.count += 1
        if not success:
            stats.errors += 1
        stats.avg_time_ms += (ms - stats.avg_time_ms) / stats.count

        self._request_samples.append(_RequestSample(self._clock(), operation, ms, success))

        if ms > self.max_response_time_ms:
            self._emit(
                AlertType.SLOW_REQUEST,
                {"operation": operation, "response_time_ms": round(ms, 2), "threshold_ms": self.max_response_time_ms},
            )
        return ms

    def record_event(self, event_type: str, processing_ms: float = 0) -> None:
        self._events_total += 1
        self._by_event_type[event_type] = self._by_event_type.get(event_type, 0) + 1
        if processing_ms > 0:
            self._event_samples.append(_EventSample(self._clock(), event_type, processing_ms))

    def record_error(self, exc: BaseException, context: str = "unknown") -> None:
        """Keep *exc* in the recent-error ring and check the error rate."""
        self._errors.appendleft({
            "timestamp": datetime.fromtimestamp(self._clock(), UTC).isoformat(),
            "context": context,
            "type": type(exc).__name__,
            "message": str(exc),
        })

        recent = self._recent_requests(MINUTE)
        if len(recent) > ERROR_RATE_MIN_REQUESTS:
            rate = self._error_rate()
            if rate > self.max_error_rate:
                self._emit(
                    AlertType.HIGH_ERROR_RATE,
                    {"current_rate": rate, "threshold": self.max_error_rate, "recent_requests": len(recent)},
                )

    def record_sessions(self, total: int, active: int) -> None:
        self._sessions.total = total
        self._sessions.active = active
        self._sessions.peak_concurrent = max(self._sessions.peak_concurrent, active)

    # -- Alerts ----------------------------------------------------------------

    def on_alert(self, listener: AlertListener) -> None:
        self._listeners.append(listener)

    def check(self) -> HealthReport:
        """Periodic check: sample memory, raise memory alerts, return the report."""
        report = self.get_health_status()
        current = report.memory.current_mb
        if current > self.max_memory_mb:
            self._emit(AlertType.MEMORY_CRITICAL, {"current_mb": current, "threshold_mb": self.max_memory_mb})
        elif current > self.max_memory_mb * 0.8:
            self._emit(AlertType.MEMORY_HIGH, {"current_mb": current, "threshold_mb": self.max_memory_mb * 0.8})
        return report

    def recent_alerts(self, window: float = ALERT_WINDOW) -> list[Alert]:
        cutoff = datetime.fromtimestamp(self._clock() - window, UTC)
        return [a for a in self._alerts if a.timestamp > cutoff]

    def _emit(self, alert_type: AlertType, data: dict[str, Any]) -> None:
        alert = Alert(
            type=alert_type,
            severity=_SEVERITY.get(alert_type, AlertSeverity.INFO),
            timestamp=datetime.fromtimestamp(self._clock(), UTC),
            data=data,
        )
        self._alerts.append(alert)

        level = "ERROR" if alert.severity is AlertSeverity.CRITICAL else "WARNING"
        logger.log(level, "[ALERT] {}: {}", alert_type, data)

        for listener in list(self._listeners):
            try:
                listener(alert)
            except Exception:
                logger.opt(exception=True).warning("Alert listener {!r} failed", listener)

    # -- Reports ---------------------------------------------------------------

    def get_health_status(self) -> HealthReport:
        return HealthReport(**self._base_report())

    def get_detailed_metrics(self) -> DetailedHealthReport:
        latencies = sorted(s.ms for s in self._recent_requests(LATENCY_WINDOW))
        return DetailedHealthReport(
            **self._base_report(),
            method_breakdown={op: stats.model_copy() for op, stats in self._by_operation.items()},
            event_type_breakdown=dict(self._by_event_type),
            recent_errors=list(self._errors)[:10],
            response_time_percentiles={f"p{p}": percentile(latencies, p) for p in PERCENTILES},
            alerts=self.recent_alerts(),
        )

    def _base_report(self) -> dict[str, Any]:
        now = self._clock()
        current_mb = round(self._memory_probe(), 2)
        self._peak_memory_mb = max(self._peak_memory_mb, current_mb)

        error_rate = self._error_rate()
        avg_ms = self._average_latency()
        uptime_ms = int((now - self._started) * 1000)

        return {
            "status": self._overall_status(current_mb, error_rate, avg_ms),
            "uptime_ms": uptime_ms,
            "uptime_human": format_uptime(uptime_ms),
            "memory": MemoryReport(current_mb=current_mb, peak_mb=self._peak_memory_mb),
            "requests": RequestReport(
                total=self._requests_total,
                errors=self._requests_errors,
                error_rate=error_rate,
                requests_per_minute=len(self._recent_requests(MINUTE)),
                avg_response_time_ms=avg_ms,
            ),
            "events": EventReport(
                total=self._events_total,
                events_per_minute=sum(1 for s in self._event_samples if s.at > now - MINUTE),
            ),
            "sessions": self._sessions.model_copy(),
        }

    def _overall_status(self, memory_mb: float, error_rate: float, avg_ms: float) -> HealthState:
        if (
            memory_mb > self.max_memory_mb
            or error_rate > self.max_error_rate
            or avg_ms > self.max_response_time_ms
        ):
            return HealthState.CRITICAL
        if (
            memory_mb > self.max_memory_mb * 0.8
            or error_rate > self.max_error_rate * 0.5
            or avg_ms > self.max_response_time_ms * 0.8
        ):
            return HealthState.WARNING
        return HealthState.HEALTHY

    def _error_rate(self) -> float:
        if not self._requests_total:
            return 0.0
        return self._requests_errors / self._requests_total

    def _recent_requests(self, window: float) -> list[_RequestSample]:
        cutoff = self._clock() - window
        return [s for s in self._request_samples if s.at > cutoff]

    def _average_latency(self) -> float:
        recent = self._recent_requests(LATENCY_WINDOW)
        if not recent:
            return 0.0
        return round(sum(s.ms for s in recent) / len(recent), 2)
