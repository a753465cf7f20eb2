"""Merge normalized statement groups into a single validated PolicyDocument."""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Optional, Sequence

from .errors import ErrorKind, PolicyError
from .models import DEFAULT_LIMITS, Limits, PolicyDocument, SourcedStatement, Statement
from .normalizer import normalize_sources

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[\w+=,.@-]+$", re.ASCII)
# "/" or "/segment/.../" with printable ASCII between the slashes
_PATH_RE = re.compile(r"^(/|/[\x21-\x7e]+/)$")

MAX_POLICY_NAME = 128
MAX_ROLE_NAME = 64
MAX_PATH = 512
MAX_DESCRIPTION = 1000


def compose(
    groups: Iterable[Iterable[Statement | SourcedStatement]],
    max_bytes: int = DEFAULT_LIMITS.max_policy_bytes,
) -> PolicyDocument:
    """
    Concatenate statement *groups* in order into a PolicyDocument.

    Statements are kept verbatim; semantically equal statements from
    different groups are not merged.

    Raises:
        PolicyError: EmptyDocument or DocumentTooLarge.
    """
    statements: list[Statement] = []
    for group in groups:
        for item in group:
            statements.append(item.statement if isinstance(item, SourcedStatement) else item)

    if not statements:
        raise PolicyError(
            ErrorKind.EMPTY_DOCUMENT, "Statement", [], "must contain at least one statement"
        )

    document = PolicyDocument(statements=tuple(statements))
    size = document.size_bytes
    if size > max_bytes:
        raise PolicyError(
            ErrorKind.DOCUMENT_TOO_LARGE,
            "sizeBytes",
            size,
            f"exceeds the {max_bytes}-byte ceiling",
        )
    logger.debug("Composed %d statement(s), %d bytes", len(statements), size)
    return document


def compose_policy(
    name: str,
    path: str,
    description: str,
    sources: Sequence[Any],
    limits: Limits = DEFAULT_LIMITS,
    labels: Optional[Sequence[str]] = None,
) -> PolicyDocument:
    """
    Validate the policy identity, then normalize and compose *sources*.

    Identity validation runs first so a bad name is reported even when the
    document itself would compose.
    """
    validate_policy_name(name)
    validate_path(path)
    validate_description(description)

    normalized = normalize_sources(sources, labels)
    return compose([normalized], max_bytes=limits.max_policy_bytes)


def validate_policy_name(name: str, max_length: int = MAX_POLICY_NAME) -> None:
    """Raises PolicyError(InvalidName) for empty, overlong or ill-charactered names."""
    _validate_name(name, "name", max_length)


def validate_role_name(name: str) -> None:
    _validate_name(name, "name", MAX_ROLE_NAME)


def validate_path(path: str) -> None:
    if not isinstance(path, str) or len(path) > MAX_PATH or not _PATH_RE.match(path):
        raise PolicyError(
            ErrorKind.INVALID_NAME,
            "path",
            path,
            f"must be '/' or start and end with '/', at most {MAX_PATH} characters",
        )


def validate_description(description: str) -> None:
    if description and len(description) > MAX_DESCRIPTION:
        raise PolicyError(
            ErrorKind.INVALID_NAME,
            "description",
            description,
            f"must be at most {MAX_DESCRIPTION} characters",
        )


def _validate_name(name: str, field: str, max_length: int) -> None:
    if not isinstance(name, str) or not name:
        raise PolicyError(ErrorKind.INVALID_NAME, field, name, "is required")
    if len(name) > max_length:
        raise PolicyError(
            ErrorKind.INVALID_NAME,
            field,
            name,
            f"must be at most {max_length} characters (got {len(name)})",
        )
    if not _NAME_RE.match(name):
        raise PolicyError(
            ErrorKind.INVALID_NAME,
            field,
            name,
            "may only contain alphanumerics and +=,.@_-",
        )
