"""Parse heterogeneous statement sources into canonical Statements.

Two input shapes are understood:

- IAM JSON casing, as found in literal policy documents
  (``Effect``, ``Action``, ``Resource``, ``Principal``, ``Condition``).
- Declarative block form, as emitted by policy-document generators
  (``effect``, ``actions``, ``resources``,
  ``principals: [{type, identifiers}]``,
  ``condition: [{test, variable, values}]``).
"""
from __future__ import annotations

import copy
import json
import logging
from typing import Any, Iterable, Optional, Sequence

from .errors import ErrorKind, PolicyError
from .models import (
    LEGACY_POLICY_VERSION,
    POLICY_VERSION,
    Effect,
    Principal,
    SourcedStatement,
    Statement,
)

logger = logging.getLogger(__name__)

_IAM_KEYS = frozenset(
    {"Sid", "Effect", "Action", "NotAction", "Resource", "NotResource",
     "Principal", "NotPrincipal", "Condition"}
)
_BLOCK_KEYS = frozenset(
    {"sid", "effect", "actions", "not_actions", "resources", "not_resources",
     "principals", "not_principals", "condition"}
)
_SUPPORTED_VERSIONS = (POLICY_VERSION, LEGACY_POLICY_VERSION)


def normalize_sources(
    sources: Iterable[Any],
    labels: Optional[Sequence[str]] = None,
) -> tuple[SourcedStatement, ...]:
    """
    Normalize every source in order and return the statements with their
    provenance.

    *labels* names each source for diagnostics; defaults to ``source[N]``.

    Raises:
        PolicyError: MalformedDocument or InvalidStatement.
    """
    result: list[SourcedStatement] = []
    for i, raw in enumerate(sources):
        label = labels[i] if labels is not None and i < len(labels) else f"source[{i}]"
        result.extend(normalize_source(raw, label))
    return tuple(result)


def normalize_source(raw: Any, label: str = "source") -> tuple[SourcedStatement, ...]:
    """Normalize a single literal document, statement, or statement list."""
    statements = _extract_statements(raw, label)
    normalized = tuple(
        SourcedStatement(
            statement=normalize_statement(item, where=f"{label}.Statement[{i}]"),
            source=label,
            index=i,
        )
        for i, item in enumerate(statements)
    )
    logger.debug("Normalized %d statement(s) from %s", len(normalized), label)
    return normalized


def normalize_statement(raw: Any, where: str = "Statement") -> Statement:
    """
    Convert one statement descriptor into a Statement.

    Raises:
        PolicyError: InvalidStatement when a required element is missing or
            has the wrong type; MalformedDocument when *raw* is not a mapping.
    """
    if not isinstance(raw, dict):
        raise PolicyError(
            ErrorKind.MALFORMED_DOCUMENT, where, raw, "must be a JSON object"
        )
    if raw.keys() & _IAM_KEYS or not raw.keys() & _BLOCK_KEYS:
        statement = _from_iam(raw, where)
    else:
        statement = _from_block(raw, where)
    _check_required(statement, where)
    return statement


# ---------------------------------------------------------------------------
# Source unpacking
# ---------------------------------------------------------------------------


def _extract_statements(raw: Any, label: str) -> list:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PolicyError(
                ErrorKind.MALFORMED_DOCUMENT, label, raw, "is not valid UTF-8"
            ) from exc
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PolicyError(
                ErrorKind.MALFORMED_DOCUMENT, label, raw, f"is not valid JSON ({exc.msg})"
            ) from exc

    if isinstance(raw, dict):
        if "Statement" in raw or "Version" in raw:
            return _document_statements(raw, label)
        return [raw]
    if isinstance(raw, (list, tuple)):
        return list(raw)
    raise PolicyError(
        ErrorKind.MALFORMED_DOCUMENT,
        label,
        raw,
        "must be a policy document, a statement, or a list of statements",
    )


def _document_statements(doc: dict, label: str) -> list:
    version = doc.get("Version", POLICY_VERSION)
    if version not in _SUPPORTED_VERSIONS:
        raise PolicyError(
            ErrorKind.MALFORMED_DOCUMENT,
            f"{label}.Version",
            version,
            f"must be one of {', '.join(_SUPPORTED_VERSIONS)}",
        )
    statements = doc.get("Statement", [])
    if isinstance(statements, dict):
        return [statements]
    if not isinstance(statements, list):
        raise PolicyError(
            ErrorKind.MALFORMED_DOCUMENT,
            f"{label}.Statement",
            statements,
            "must be an object or a list of objects",
        )
    return statements


# ---------------------------------------------------------------------------
# Statement shapes
# ---------------------------------------------------------------------------


def _from_iam(raw: dict, where: str) -> Statement:
    unknown = set(raw) - _IAM_KEYS
    if unknown:
        raise PolicyError(
            ErrorKind.INVALID_STATEMENT,
            where,
            sorted(unknown),
            "contains unsupported policy elements",
        )
    return Statement(
        sid=raw.get("Sid") or None,
        effect=_effect(raw.get("Effect"), f"{where}.Effect"),
        actions=_string_tuple(raw.get("Action"), f"{where}.Action"),
        not_actions=_string_tuple(raw.get("NotAction"), f"{where}.NotAction"),
        resources=_string_tuple(raw.get("Resource"), f"{where}.Resource"),
        not_resources=_string_tuple(raw.get("NotResource"), f"{where}.NotResource"),
        principal=_iam_principal(raw.get("Principal"), f"{where}.Principal"),
        not_principal=_iam_principal(raw.get("NotPrincipal"), f"{where}.NotPrincipal"),
        condition=_iam_condition(raw.get("Condition"), f"{where}.Condition"),
    )


def _from_block(raw: dict, where: str) -> Statement:
    unknown = set(raw) - _BLOCK_KEYS
    if unknown:
        raise PolicyError(
            ErrorKind.INVALID_STATEMENT,
            where,
            sorted(unknown),
            "contains unsupported statement attributes",
        )
    return Statement(
        sid=raw.get("sid") or None,
        effect=_effect(raw.get("effect"), f"{where}.effect"),
        actions=_string_tuple(raw.get("actions"), f"{where}.actions"),
        not_actions=_string_tuple(raw.get("not_actions"), f"{where}.not_actions"),
        resources=_string_tuple(raw.get("resources"), f"{where}.resources"),
        not_resources=_string_tuple(raw.get("not_resources"), f"{where}.not_resources"),
        principal=_block_principals(raw.get("principals"), f"{where}.principals"),
        not_principal=_block_principals(raw.get("not_principals"), f"{where}.not_principals"),
        condition=_block_conditions(raw.get("condition"), f"{where}.condition"),
    )


def _check_required(statement: Statement, where: str) -> None:
    if not statement.actions and not statement.not_actions:
        raise PolicyError(
            ErrorKind.INVALID_STATEMENT,
            f"{where}.Action",
            None,
            "requires at least one Action or NotAction",
        )
    if not (
        statement.resources
        or statement.not_resources
        or statement.principal is not None
        or statement.not_principal is not None
    ):
        raise PolicyError(
            ErrorKind.INVALID_STATEMENT,
            f"{where}.Resource",
            None,
            "requires a Resource, NotResource or Principal",
        )


# ---------------------------------------------------------------------------
# Element helpers
# ---------------------------------------------------------------------------


def _effect(value: Any, where: str) -> Effect:
    if value is None:
        raise PolicyError(ErrorKind.INVALID_STATEMENT, where, value, "is required")
    try:
        return Effect(value)
    except ValueError:
        raise PolicyError(
            ErrorKind.INVALID_STATEMENT, where, value, "must be Allow or Deny"
        ) from None


def _string_tuple(value: Any, where: str) -> tuple[str, ...]:
    """Coerce a string or list of strings to an order-preserving unique tuple."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise PolicyError(
            ErrorKind.INVALID_STATEMENT, where, value, "must be a string or a list of strings"
        )
    return tuple(dict.fromkeys(value))


def _iam_principal(value: Any, where: str) -> Optional[Principal]:
    if value is None:
        return None
    if value == "*":
        return "*"
    if not isinstance(value, dict) or not value:
        raise PolicyError(
            ErrorKind.INVALID_STATEMENT, where, value, 'must be "*" or a non-empty object'
        )
    return {kind: _string_tuple(ids, f"{where}.{kind}") for kind, ids in value.items()}


def _block_principals(blocks: Any, where: str) -> Optional[Principal]:
    if not blocks:
        return None
    if isinstance(blocks, dict):
        blocks = [blocks]
    merged: dict[str, tuple[str, ...]] = {}
    for i, block in enumerate(blocks):
        here = f"{where}[{i}]"
        if not isinstance(block, dict) or "type" not in block:
            raise PolicyError(
                ErrorKind.INVALID_STATEMENT, here, block, "requires type and identifiers"
            )
        _require_str(block, "type", here)
        ids = _string_tuple(block.get("identifiers"), f"{here}.identifiers")
        if not ids:
            raise PolicyError(
                ErrorKind.INVALID_STATEMENT,
                f"{here}.identifiers",
                block.get("identifiers"),
                "must not be empty",
            )
        if block["type"] == "*":
            return "*"
        existing = merged.get(block["type"], ())
        merged[block["type"]] = tuple(dict.fromkeys(existing + ids))
    return merged


def _iam_condition(value: Any, where: str) -> Optional[dict]:
    if value is None:
        return None
    if not isinstance(value, dict) or not all(isinstance(v, dict) for v in value.values()):
        raise PolicyError(
            ErrorKind.INVALID_STATEMENT,
            where,
            value,
            "must map condition operators to key/value objects",
        )
    return copy.deepcopy(value)


def _block_conditions(blocks: Any, where: str) -> Optional[dict]:
    if not blocks:
        return None
    if isinstance(blocks, dict):
        blocks = [blocks]
    merged: dict[str, dict[str, list[str]]] = {}
    for i, block in enumerate(blocks):
        here = f"{where}[{i}]"
        if not isinstance(block, dict) or not {"test", "variable", "values"} <= block.keys():
            raise PolicyError(
                ErrorKind.INVALID_STATEMENT, here, block, "requires test, variable and values"
            )
        _require_str(block, "test", here)
        _require_str(block, "variable", here)
        values = _string_tuple(block["values"], f"{here}.values")
        bucket = merged.setdefault(block["test"], {}).setdefault(block["variable"], [])
        bucket.extend(v for v in values if v not in bucket)
    return {
        test: {var: vals[0] if len(vals) == 1 else vals for var, vals in keys.items()}
        for test, keys in merged.items()
    }


def _require_str(block: dict, key: str, where: str) -> None:
    if not isinstance(block[key], str) or not block[key]:
        raise PolicyError(
            ErrorKind.INVALID_STATEMENT, f"{where}.{key}", block[key], "must be a non-empty string"
        )
