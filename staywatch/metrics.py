"""Prometheus metrics for staywatch."""

from prometheus_client import Counter, Gauge, Histogram, Info

app_info = Info("staywatch", "Staywatch application info")
app_info.info({"version": "0.1.0", "name": "staywatch"})

# Provider fetch metrics
provider_fetches_total = Counter(
    "provider_fetches_total",
    "Total number of provider page fetches",
    ["provider", "mode", "status"],
)

provider_fetch_duration_seconds = Histogram(
    "provider_fetch_duration_seconds",
    "Time spent fetching provider pages",
    ["provider", "mode"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

robots_disallowed_total = Counter(
    "robots_disallowed_total",
    "Fetches to paths disallowed by robots.txt",
    ["provider", "enforced"],
)

# Pipeline metrics
fetch_runs_total = Counter(
    "fetch_runs_total",
    "Total number of fetch runs recorded",
    ["run_type", "status", "provider_status"],
)

candidates_classified_total = Counter(
    "candidates_classified_total",
    "Raw candidates classified by the result matcher",
    ["provider", "verdict"],
)

observations_stored_total = Counter(
    "observations_stored_total",
    "Observations persisted by the monitor worker",
    ["provider"],
)

insights_created_total = Counter(
    "insights_created_total",
    "Insights inserted (duplicates excluded)",
    ["insight_type"],
)

alerts_total = Counter(
    "alerts_total",
    "Alert processing results",
    ["status"],
)

deals_seen_total = Counter(
    "deals_seen_total",
    "Provider offers seen by the deal scanner",
    ["provider"],
)

# Queue metrics
queue_jobs_total = Counter(
    "queue_jobs_total",
    "Jobs processed per queue",
    ["queue", "outcome"],
)

queue_jobs_in_flight = Gauge(
    "queue_jobs_in_flight",
    "Jobs currently being processed",
    ["queue"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler cycles",
    ["status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of the last scheduler cycle",
)

fingerprints_due = Gauge(
    "fingerprints_due",
    "Fingerprints selected as due in the last cycle",
)
