"""Prometheus metrics definitions."""

from prometheus_client import Counter, Gauge, Histogram

# Ingestion metrics
MATCHES_RECEIVED = Counter(
    "geotrigger_matches_received_total",
    "Total number of geo-matcher events received",
)

ATTEMPTS_RECORDED = Counter(
    "geotrigger_attempts_recorded_total",
    "Execution attempts recorded, by initial pending reason",
    ["reason"],
)

# Store metrics
STORE_TRANSITIONS = Counter(
    "geotrigger_store_transitions_total",
    "Conditional attempt transitions, by outcome",
    ["outcome"],
)

# Lifecycle metrics
CONFIRMATIONS = Counter(
    "geotrigger_confirmations_total",
    "Confirmation requests, by result",
    ["result"],
)

ADMISSION_DENIALS = Counter(
    "geotrigger_admission_denials_total",
    "Pending attempts held back during admission",
    ["reason"],
)

SUBMISSION_LATENCY = Histogram(
    "geotrigger_submission_latency_seconds",
    "Blockchain submission latency in seconds",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 45.0, 90.0),
)

# Reconciliation metrics
SWEEP_ACTIONS = Counter(
    "geotrigger_sweep_actions_total",
    "Rows changed by the reconciliation sweep, by phase",
    ["phase"],
)

SWEEP_ERRORS = Counter(
    "geotrigger_sweep_errors_total",
    "Rows that failed during a reconciliation sweep, by phase",
    ["phase"],
)

SWEEP_DURATION = Histogram(
    "geotrigger_sweep_duration_seconds",
    "Reconciliation pass duration in seconds",
    buckets=(0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
)

# Queue metrics
EXECUTION_QUEUE_LENGTH = Gauge(
    "geotrigger_execution_queue_length",
    "Number of auto-executable attempts waiting for the worker",
)
