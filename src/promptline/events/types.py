"""Event type constants for promptline."""

# Request preparation
BUDGET_ALLOCATED = "budget_allocated"
GUARDRAIL_REDACTED = "guardrail_redacted"
REQUEST_BUILT = "request_built"

# Streaming
STREAM_TIMEOUT = "stream_timeout"
STREAM_COMPLETED = "stream_completed"

# Structured output
STRUCTURED_REASK = "structured_reask"

# Errors
ERROR_REPORTED = "error_reported"
