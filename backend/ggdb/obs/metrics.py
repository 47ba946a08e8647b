"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


REQUEST_COUNTER = Counter(
	"ggdb_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"ggdb_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

ACTIVITY_EVENTS = Counter(
	"ggdb_activity_events_total",
	"Engagement records written or removed",
	["activity_type", "action"],
)

STATS_UPDATE_FAILURES = Counter(
	"ggdb_activity_stats_update_failures_total",
	"Game aggregate updates that failed after the record mutation succeeded",
	["field"],
)

STATS_RECONCILED = Counter(
	"ggdb_activity_stats_reconciled_total",
	"Games whose aggregate was recomputed by the reconciliation sweep",
	["changed"],
)

BACKGROUND_RUNS = Counter(
	"ggdb_background_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"ggdb_background_duration_seconds",
	"Background job duration in seconds",
	["name"],
	buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0),
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_activity_event(activity_type: str, action: str) -> None:
	ACTIVITY_EVENTS.labels(activity_type=activity_type, action=action).inc()


def inc_stats_update_failure(field: str) -> None:
	STATS_UPDATE_FAILURES.labels(field=field).inc()


def inc_stats_reconciled(changed: bool) -> None:
	STATS_RECONCILED.labels(changed="yes" if changed else "no").inc()


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)
