from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Quota rejects per feature (chat, essay, recommender)
quota_reject_total = Counter(
    "quota_reject_total", "Number of quota rejected requests", ["feature"]
)

# Usage checks answered with "allow" because storage was unreachable
usage_fail_open_total = Counter(
    "usage_fail_open_total", "Usage checks allowed due to storage errors", ["feature"]
)

# LLM latency; generation of long essay feedback can take a while
_llm_latency_buckets = (
    0.5,
    1.0,
    2.0,
    4.0,
    8.0,
    16.0,
    32.0,
)

llm_latency_seconds = Histogram(
    "llm_latency_seconds", "Generative API latency", buckets=_llm_latency_buckets
)

llm_timeout_total = Counter(
    "llm_timeout_total", "Number of generative API timeouts"
)

llm_error_total = Counter(
    "llm_error_total", "Number of failed generative API calls"
)

# Essay responses that did not follow the delimiter format
essay_parse_fallback_total = Counter(
    "essay_parse_fallback_total", "Essay analyses rendered with fallback parsing"
)

checkout_fail_total = Counter(
    "checkout_fail_total", "Total failed checkout or portal session requests"
)

__all__ = [
    "quota_reject_total",
    "usage_fail_open_total",
    "llm_latency_seconds",
    "llm_timeout_total",
    "llm_error_total",
    "essay_parse_fallback_total",
    "checkout_fail_total",
]
