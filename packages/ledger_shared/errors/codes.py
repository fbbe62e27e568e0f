"""Shared error code constants.

Generic codes are domain-agnostic; the audit lifecycle codes at the bottom are
shared because several services raise and report them.
"""

# Validation
VALIDATION_ERROR = "VALIDATION_ERROR"
INVALID_ARGUMENT = "INVALID_ARGUMENT"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"

# Not found
NOT_FOUND = "NOT_FOUND"
RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

# Conflict
CONFLICT = "CONFLICT"
ALREADY_EXISTS = "ALREADY_EXISTS"

# Policy / authorization
POLICY_VIOLATION = "POLICY_VIOLATION"
PERMISSION_DENIED = "PERMISSION_DENIED"

# Dependency / external system
DEPENDENCY_FAILURE = "DEPENDENCY_FAILURE"
DEPENDENCY_TIMEOUT = "DEPENDENCY_TIMEOUT"
DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"

# Internal
INTERNAL_ERROR = "INTERNAL_ERROR"
UNEXPECTED_EXCEPTION = "UNEXPECTED_EXCEPTION"

# Audit lifecycle
INTEGRITY_VERIFICATION_FAILED = "INTEGRITY_VERIFICATION_FAILED"
KEY_MANAGEMENT_FAILURE = "KEY_MANAGEMENT_FAILURE"
RETENTION_POLICY_FAILED = "RETENTION_POLICY_FAILED"
PSEUDONYMIZATION_FAILED = "PSEUDONYMIZATION_FAILED"
UNSUPPORTED_EXPORT_FORMAT = "UNSUPPORTED_EXPORT_FORMAT"
SYSTEM_CLASSIFICATION_PROTECTED = "SYSTEM_CLASSIFICATION_PROTECTED"
