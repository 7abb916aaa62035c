"""Prometheus metrics for kubepulse."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Aggregation metrics
aggregation_requests_total = Counter(
    "kubepulse_aggregation_requests_total",
    "Total aggregation requests by operation and outcome",
    ["operation", "outcome"],
)

aggregation_duration_seconds = Histogram(
    "kubepulse_aggregation_duration_seconds",
    "Aggregation duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

event_lookup_failures_total = Counter(
    "kubepulse_event_lookup_failures_total",
    "Scoped event lookups that degraded to an empty result",
    ["kind"],
)

optional_source_failures_total = Counter(
    "kubepulse_optional_source_failures_total",
    "Listings of optional resource kinds that were substituted with an empty set",
    ["kind"],
)

changes_detected_total = Counter(
    "kubepulse_changes_detected_total",
    "Recent changes emitted by detector",
    ["change_type"],
)

# Pod index metrics
pod_index_emissions_total = Counter(
    "kubepulse_pod_index_emissions_total",
    "Pod list emissions pushed to subscribers",
    ["trigger"],
)

pod_index_pods = Gauge(
    "kubepulse_pod_index_pods",
    "Number of pods held by the live pod index",
)

pod_index_resyncs_total = Counter(
    "kubepulse_pod_index_resyncs_total",
    "Full pod index rebuilds triggered by a stream INIT",
)

# Watcher metrics
watcher_events_total = Counter(
    "kubepulse_watcher_events_total",
    "Total watch events received by type",
    ["watcher", "event_type"],
)

watcher_reconnects_total = Counter(
    "kubepulse_watcher_reconnects_total",
    "Total watcher reconnection attempts",
    ["watcher", "reason"],
)

watcher_relistings_total = Counter(
    "kubepulse_watcher_relistings_total",
    "Total watcher relist operations",
    ["watcher"],
)

watcher_errors_total = Counter(
    "kubepulse_watcher_errors_total",
    "Total watcher errors",
    ["watcher", "status_code"],
)

watcher_backoff_seconds = Histogram(
    "kubepulse_watcher_backoff_seconds",
    "Watcher backoff duration in seconds",
    ["watcher"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)
