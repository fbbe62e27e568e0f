"""Canonical logging field names for cross-component consistency.

These constants define a stable key set for structured logs and context
propagation. Keeping names centralized prevents accidental drift between
services.
"""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EVENT = "event"

# Envelope/correlation fields.
TRACE_ID = "trace_id"
ENVELOPE_ID = "envelope_id"
PARENT_ID = "parent_id"
SOURCE = "source"
PRINCIPAL = "principal"

# Public API invocation fields.
COMPONENT_ID = "component_id"
API_NAME = "api_name"
PUBLIC_API_INVOCATION_EVENT = "public_api_invocation"
PUBLIC_API_COMPLETION_EVENT = "public_api_completion"
PUBLIC_API_INSTRUMENTATION_FAILURE_EVENT = "public_api_instrumentation_failure"
SUCCESS = "success"
DURATION_MS = "duration_ms"
ERRORS = "errors"
STAGE = "stage"
CONCERN = "concern"

# Audit lifecycle fields.
EVENT_ID = "event_id"
SUBJECT = "subject"
POLICY_NAME = "policy_name"
DATA_CLASSIFICATION = "data_classification"
REQUEST_ID = "request_id"
PSEUDONYM_ID = "pseudonym_id"
OPERATION = "operation"

# Common service-level fields.
SERVICE = "service"
ENVIRONMENT = "environment"
