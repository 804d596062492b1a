"""Prometheus metrics for the media pipeline and delivery layer."""

import os

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "adaptive_media_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)


# ============================================
# Transcoding Metrics
# ============================================
TRANSCODE_JOBS_TOTAL = Counter(
    "transcode_jobs_total",
    "Transcode jobs by terminal status",
    ["status"],
    registry=REGISTRY,
)

TRANSCODE_RENDITIONS_TOTAL = Counter(
    "transcode_renditions_total",
    "Renditions processed by label and outcome",
    ["label", "outcome"],
    registry=REGISTRY,
)

TRANSCODE_JOB_DURATION_SECONDS = Histogram(
    "transcode_job_duration_seconds",
    "Wall time of a complete transcode job",
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1200],
    registry=REGISTRY,
)

TRANSCODE_JOBS_IN_PROGRESS = Gauge(
    "transcode_jobs_in_progress",
    "Transcode jobs currently running in this process",
    registry=REGISTRY,
)


# ============================================
# Delivery Metrics
# ============================================
URL_RESOLUTIONS_TOTAL = Counter(
    "url_resolutions_total",
    "Signed URL resolutions by media kind and transform mode",
    ["kind", "mode"],
    registry=REGISTRY,
)

URL_CACHE_REQUESTS_TOTAL = Counter(
    "url_cache_requests_total",
    "URL cache lookups by result",
    ["result"],
    registry=REGISTRY,
)

URL_CACHE_EVICTIONS_TOTAL = Counter(
    "url_cache_evictions_total",
    "URL cache evictions by reason",
    ["reason"],
    registry=REGISTRY,
)

URL_CACHE_ENTRIES = Gauge(
    "url_cache_entries",
    "Entries currently held in the URL cache",
    registry=REGISTRY,
)

ACCESS_DECISIONS_TOTAL = Counter(
    "media_access_decisions_total",
    "Media access decisions",
    ["decision", "reason"],
    registry=REGISTRY,
)


# ============================================
# Playback Metrics
# ============================================
QUALITY_SWITCHES_TOTAL = Counter(
    "quality_switches_total",
    "Rendition switches by reason and outcome",
    ["reason", "outcome"],
    registry=REGISTRY,
)


def set_app_info(version: str, environment: str) -> None:
    """Set application info labels."""
    APP_INFO.info({"version": version, "environment": environment})


def get_metrics() -> bytes:
    """Render all metrics in Prometheus exposition format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
