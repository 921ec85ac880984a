"""
Prometheus Metrics for Observability

Tracks polling, job outcomes, stage latency and compositing.
"""

import time
from typing import Optional
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Status reads issued by the poller
poll_attempts_total = Counter(
    "lookgen_poll_attempts_total",
    "Total number of job status reads",
    labelnames=["job_type"]
)

# Job outcomes as observed locally
jobs_total = Counter(
    "lookgen_jobs_total",
    "Total number of tracked jobs by outcome",
    labelnames=["job_type", "status"]
)

# Stage latency
stage_latency_seconds = Histogram(
    "lookgen_stage_latency_seconds",
    "Time spent in each pipeline stage",
    labelnames=["stage", "status"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0]
)

# Composite builds
composites_total = Counter(
    "lookgen_composites_total",
    "Total number of grid composites built",
    labelnames=["source", "status"]
)

# Submit-path lookups against the speculative composite
precomposite_lookups_total = Counter(
    "lookgen_precomposite_lookups_total",
    "Outcome of pre-composited grid lookups at submit time",
    labelnames=["outcome"]
)


# =============================================================================
# Helper Functions
# =============================================================================

@contextmanager
def track_stage_latency(stage: str):
    """
    Context manager to track stage latency.

    Usage:
        with track_stage_latency("render"):
            await run_render()
    """
    start_time = time.time()
    status = "success"

    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start_time
        stage_latency_seconds.labels(stage=stage, status=status).observe(duration)


def record_poll_attempt(job_type: Optional[str]):
    """Record one status read."""
    poll_attempts_total.labels(job_type=job_type or "unknown").inc()


def record_job_outcome(job_type: Optional[str], status: str):
    """Record a locally observed job outcome."""
    jobs_total.labels(job_type=job_type or "unknown", status=status).inc()


def record_composite(source: str, status: str):
    """Record a composite build (speculative or on_demand)."""
    composites_total.labels(source=source, status=status).inc()


def record_precomposite_lookup(outcome: str):
    """Record a submit-time lookup (cached, awaited, miss, stale)."""
    precomposite_lookups_total.labels(outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
