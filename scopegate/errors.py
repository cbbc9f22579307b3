"""
Shared error types for the resource access engine.

Scoping and integrity errors are never downgraded to empty results; the
request boundary maps them to status codes via ``status_code``.
"""

from __future__ import annotations

import re


_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.\-]*://)[^\s/@]+@")
_PASSWORD_PAIR = re.compile(r"(?i)(password|passwd|pwd)\s*=\s*[^\s;&,]+")


def redact_secrets(message: str) -> str:
    """Strip credentials from connection strings embedded in a message."""
    redacted = _URL_CREDENTIALS.sub(r"\g<scheme>***@", message)
    return _PASSWORD_PAIR.sub(r"\1=***", redacted)


class ScopeGateError(Exception):
    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str, *, error_type: str | None = None, data: dict | None = None):
        super().__init__(message)
        self.message = message
        if error_type is not None:
            self.error_type = error_type
        self.data = data


class ResourceNotFound(ScopeGateError):
    status_code = 404
    error_type = "resource_not_found"

    def __init__(self, key: str, message: str | None = None):
        super().__init__(message or f"Unknown resource: {key!r}")
        self.key = key


class RecordNotFound(ScopeGateError):
    status_code = 404
    error_type = "record_not_found"

    def __init__(self, resource: str, record_id, message: str | None = None):
        super().__init__(message or f"Record not found: {resource}/{record_id}")
        self.resource = resource
        self.record_id = record_id


class ScopeConfigurationError(ScopeGateError):
    """A declared scope cannot be evaluated for this caller. Fail closed."""

    status_code = 500
    error_type = "scope_configuration_error"


class ScopeViolation(ScopeGateError):
    status_code = 403
    error_type = "forbidden"


class UsageError(ScopeGateError):
    status_code = 400
    error_type = "usage_error"


class ValidationIssue(UsageError):
    error_type = "validation_error"

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        data: dict | None = None,
    ):
        super().__init__(message, data=data)
        self.field = field
        self.issue_type = error_type


class MissingAnchor(ScopeGateError):
    status_code = 409
    error_type = "missing_anchor"


class StorageError(ScopeGateError):
    error_type = "storage_error"

    def __init__(self, message: str, *, data: dict | None = None):
        super().__init__(redact_secrets(message), data=data)


class RequestCancelled(ScopeGateError):
    status_code = 408
    error_type = "request_cancelled"


class IdentityUnavailable(ScopeGateError):
    """The caller identity could not be resolved for this request."""

    status_code = 401
    error_type = "identity_unavailable"
