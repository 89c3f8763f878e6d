# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Prometheus metrics: single source of truth for all metric objects.
Imported by services, jobs and middleware. Never instantiated in controllers.
"""

from prometheus_client import Counter, Histogram

# ── HTTP Metrics (used by middleware) ──
REQUEST_COUNT = Counter(
    "standup_requests_total",
    "Total HTTP requests to the standup service",
    ["method", "endpoint", "status"],
)
REQUEST_LATENCY = Histogram(
    "standup_request_duration_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
)
HTTP_ERRORS = Counter(
    "standup_http_errors_total",
    "Total HTTP error responses",
    ["method", "endpoint", "status"],
)

# ── Standup lifecycle ──
INSTANCES_CREATED = Counter(
    "standup_instances_created_total",
    "Standup instances materialised by the scheduler",
)
INSTANCE_TRANSITIONS = Counter(
    "standup_instance_transitions_total",
    "Instance state transitions applied",
    ["to_state", "trigger"],
)
REMINDERS_SENT = Counter(
    "standup_reminders_sent_total",
    "Reminder DMs delivered to non-responders",
)
DIGESTS_POSTED = Counter(
    "standup_digests_posted_total",
    "Digests published",
    ["outcome"],
)
ANSWERS_SUBMITTED = Counter(
    "standup_answers_submitted_total",
    "Individual answers stored",
)

# ── Magic tokens ──
TOKENS_ISSUED = Counter(
    "standup_magic_tokens_issued_total",
    "Magic submission tokens minted",
)
TOKEN_VALIDATIONS = Counter(
    "standup_magic_token_validations_total",
    "Magic token validation outcomes",
    ["result"],
)

# ── Webhook ingestion ──
WEBHOOK_EVENTS = Counter(
    "standup_webhook_events_total",
    "Inbound webhook deliveries by kind and outcome",
    ["kind", "outcome"],
)
DUPLICATE_EVENTS = Counter(
    "standup_webhook_duplicates_total",
    "Webhook deliveries dropped as duplicates",
    ["kind"],
)
SIGNATURE_FAILURES = Counter(
    "standup_webhook_signature_failures_total",
    "Webhook deliveries rejected by signature verification",
)
SLACK_RETRIES = Counter(
    "standup_webhook_retries_total",
    "Webhook deliveries Slack marked as retries",
    ["reason"],
)

# ── Messaging & jobs ──
MESSAGING_FAILURES = Counter(
    "standup_messaging_failures_total",
    "Failed calls to the chat platform",
    ["operation"],
)
JOB_RUNS = Counter(
    "standup_job_runs_total",
    "Background job executions",
    ["job", "status"],
)
JOB_DURATION = Histogram(
    "standup_job_duration_seconds",
    "Background job tick duration in seconds",
    ["job"],
)
