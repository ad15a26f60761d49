"""Prometheus metrics for monitoring billing runs, collections and webhook performance"""

from prometheus_client import Counter, Histogram

# Invoice metrics
invoices_generated_counter = Counter(
    "billing_invoices_generated_total",
    "Invoices generated",
)

generation_failure_counter = Counter(
    "billing_generation_failures_total",
    "Units that could not be billed",
    ["reason"],  # ConfigurationError | ValidationError | ...
)

# Collections metrics
late_fee_applied_counter = Counter(
    "billing_late_fee_applied_total",
    "Invoices whose accrued late fee increased",
)

payment_counter = Counter(
    "billing_payments_total",
    "Payments recorded",
    ["outcome"],  # partial | settled | rejected
)

reminder_counter = Counter(
    "billing_reminders_total",
    "Reminders recorded",
    ["method"],
)

# Batch metrics
batch_unit_counter = Counter(
    "billing_batch_units_total",
    "Batch job unit outcomes",
    ["job", "outcome"],  # succeeded | skipped | failed
)

batch_retry_counter = Counter(
    "billing_batch_retries_total",
    "Retried batch unit attempts after transient failures",
    ["job"],
)

# Webhook metrics
webhook_latency_histogram = Histogram(
    "reminder_webhook_latency_seconds",
    "Reminder webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

webhook_failure_counter = Counter(
    "reminder_webhook_failures_total",
    "Failed reminder webhook deliveries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_payment(settled: bool) -> None:
    """Record payment outcome"""
    payment_counter.labels(outcome="settled" if settled else "partial").inc()
