"""Error taxonomy for iamcompose. All failures are local validation failures."""
from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    MALFORMED_DOCUMENT = "MalformedDocument"
    INVALID_STATEMENT = "InvalidStatement"
    EMPTY_DOCUMENT = "EmptyDocument"
    DOCUMENT_TOO_LARGE = "DocumentTooLarge"
    INVALID_NAME = "InvalidName"
    VERSION_NOT_FOUND = "VersionNotFound"
    NO_EVICTABLE_VERSION = "NoEvictableVersion"
    CANNOT_DELETE_DEFAULT_VERSION = "CannotDeleteDefaultVersion"
    INVALID_SESSION_DURATION = "InvalidSessionDuration"
    INSTANCE_PROFILE_ALREADY_ATTACHED = "InstanceProfileAlreadyAttached"


class PolicyError(Exception):
    """Raised when a document, name or state transition violates a constraint."""

    def __init__(
        self,
        kind: ErrorKind,
        field: str,
        value: Any,
        constraint: str,
    ) -> None:
        self.kind = kind
        self.field = field
        self.value = value
        self.constraint = constraint
        super().__init__(f"{kind.value}: {field}={_preview(value)} {constraint}")


class ProvisioningError(Exception):
    """Raised for AWS-side failures while loading or applying state."""

    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.error_code = error_code


def _preview(value: Any, limit: int = 80) -> str:
    text = repr(value)
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text
