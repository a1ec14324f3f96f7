"""
Prometheus metrics configuration
"""
import os

from prometheus_client import (CONTENT_TYPE_LATEST, CollectorRegistry, Counter,
                               Histogram, generate_latest)
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import REGISTRY

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status_code"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code", "error_type"]
)

# ============================================================================
# Workflow Metrics
# ============================================================================

workflow_runs_total = Counter(
    "workflow_runs_total",
    "Total number of workflow instances reaching a status",
    ["status"]  # completed, failed, paused, cancelled
)

workflow_steps_total = Counter(
    "workflow_steps_total",
    "Total number of executed workflow steps",
    ["step_type", "status"]
)

workflow_step_duration_seconds = Histogram(
    "workflow_step_duration_seconds",
    "Workflow step execution duration in seconds",
    ["step_type"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
)

# ============================================================================
# Event Bus / Queue Metrics
# ============================================================================

events_published_total = Counter(
    "events_published_total",
    "Total number of events published to the event bus",
    ["event_type"]
)

events_dispatched_total = Counter(
    "events_dispatched_total",
    "Total number of event dispatches by outcome",
    ["status"]  # completed, failed, skipped
)

queue_items_processed_total = Counter(
    "workflow_queue_items_processed_total",
    "Total number of processed workflow queue items",
    ["kind", "status"]
)

# ============================================================================
# Database Metrics
# ============================================================================

db_queries_total = Counter(
    "db_queries_total",
    "Total number of database queries",
    ["operation"]
)

db_query_duration_seconds = Histogram(
    "db_query_duration_seconds",
    "Database query duration in seconds",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
)


def get_metrics() -> bytes:
    """Render all metrics in Prometheus text format"""
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        MultiProcessCollector(registry)
        return generate_latest(registry)
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Content type for the metrics endpoint"""
    return CONTENT_TYPE_LATEST
