"""
Prometheus business metrics for the Quiz Lead Pipeline.

Job queue, provider, cache and lead-score instruments shared by the
pipeline components. The HTTP middleware lives in api/middleware/metrics.py.
"""

from prometheus_client import Counter, Gauge, Histogram

# Job queue
JOBS_ENQUEUED = Counter(
    "quizlead_jobs_enqueued_total",
    "Jobs accepted by a queue",
    ["queue"],
)
JOBS_COMPLETED = Counter(
    "quizlead_jobs_completed_total",
    "Jobs finished successfully",
    ["queue"],
)
JOBS_RETRIED = Counter(
    "quizlead_jobs_retried_total",
    "Failed job attempts scheduled for retry",
    ["queue"],
)
JOBS_FAILED = Counter(
    "quizlead_jobs_failed_total",
    "Jobs that exhausted their attempts",
    ["queue"],
)
JOB_DURATION = Histogram(
    "quizlead_job_duration_seconds",
    "Job handler run time",
    ["queue"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)
ACTIVE_JOBS = Gauge(
    "quizlead_active_jobs",
    "Jobs currently leased by a worker",
    ["queue"],
)

# Providers
PROVIDER_CALLS = Counter(
    "quizlead_provider_calls_total",
    "Provider calls by outcome",
    ["provider", "outcome"],
)
PROVIDER_LATENCY = Histogram(
    "quizlead_provider_duration_seconds",
    "Provider generation latency",
    ["provider"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)
CIRCUIT_OPENED = Counter(
    "quizlead_circuit_opened_total",
    "Times a provider circuit opened",
    ["provider"],
)

# Cache
CACHE_HITS = Counter("quizlead_cache_hits_total", "Response cache hits")
CACHE_MISSES = Counter("quizlead_cache_misses_total", "Response cache misses")

# Leads
LEAD_SCORE_HIST = Histogram(
    "quizlead_lead_score",
    "Lead score distribution",
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
)
LEAD_TRANSITIONS = Counter(
    "quizlead_lead_transitions_total",
    "Lead state transitions",
    ["status"],
)


def record_provider_call(provider: str, outcome: str, seconds: float):
    """Record one provider call and its latency."""
    PROVIDER_CALLS.labels(provider=provider, outcome=outcome).inc()
    PROVIDER_LATENCY.labels(provider=provider).observe(seconds)


def record_cache_lookup(hit: bool):
    if hit:
        CACHE_HITS.inc()
    else:
        CACHE_MISSES.inc()


def record_lead_score(score: float):
    LEAD_SCORE_HIST.observe(score)


def record_lead_transition(status: str):
    LEAD_TRANSITIONS.labels(status=status).inc()
