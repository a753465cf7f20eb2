"""Pure data models for iamcompose. No I/O, no AWS calls."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

POLICY_VERSION = "2012-10-17"
LEGACY_POLICY_VERSION = "2008-10-17"

# "*" or {"Service": ("ec2.amazonaws.com",), "AWS": (...)}
Principal = Union[str, dict[str, tuple[str, ...]]]


class Effect(Enum):
    ALLOW = "Allow"
    DENY = "Deny"


class PrincipalKind(Enum):
    ROLE = "role"
    USER = "user"
    GROUP = "group"


class PolicyState(Enum):
    FRESH = "fresh"
    ACTIVE = "active"
    AT_CAPACITY = "at_capacity"


@dataclass(frozen=True)
class Limits:
    """Provider-imposed ceilings. Defaults match the IAM service quotas."""

    max_policy_bytes: int = 6144
    max_versions: int = 5
    max_trust_policy_bytes: int = 2048
    max_inline_policy_bytes: int = 10240

    def __post_init__(self) -> None:
        if self.max_versions < 2:
            raise ValueError(
                f"max_versions must be at least 2, got {self.max_versions}"
            )
        for name in ("max_policy_bytes", "max_trust_policy_bytes", "max_inline_policy_bytes"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


DEFAULT_LIMITS = Limits()


@dataclass(frozen=True)
class Statement:
    """One normalized authorization rule."""

    # principal and condition are dicts
    __hash__ = None

    effect: Effect
    actions: tuple[str, ...] = ()
    not_actions: tuple[str, ...] = ()
    resources: tuple[str, ...] = ()
    not_resources: tuple[str, ...] = ()
    principal: Optional[Principal] = None
    not_principal: Optional[Principal] = None
    condition: Optional[dict[str, dict[str, Any]]] = None
    sid: Optional[str] = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        if self.sid:
            out["Sid"] = self.sid
        out["Effect"] = self.effect.value
        if self.principal is not None:
            out["Principal"] = _principal_to_json(self.principal)
        if self.not_principal is not None:
            out["NotPrincipal"] = _principal_to_json(self.not_principal)
        if self.actions:
            out["Action"] = list(self.actions)
        if self.not_actions:
            out["NotAction"] = list(self.not_actions)
        if self.resources:
            out["Resource"] = list(self.resources)
        if self.not_resources:
            out["NotResource"] = list(self.not_resources)
        if self.condition:
            out["Condition"] = self.condition
        return out


@dataclass(frozen=True)
class SourcedStatement:
    """A normalized statement with the source it was read from."""

    statement: Statement
    source: str
    index: int


@dataclass(frozen=True)
class PolicyDocument:
    __hash__ = None

    statements: tuple[Statement, ...]
    version: str = POLICY_VERSION

    def to_dict(self) -> dict:
        return {
            "Version": self.version,
            "Statement": [s.to_dict() for s in self.statements],
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        if indent is None:
            return json.dumps(self.to_dict(), separators=(",", ":"))
        return json.dumps(self.to_dict(), indent=indent)

    @property
    def size_bytes(self) -> int:
        return len(self.to_json().encode("utf-8"))


@dataclass(frozen=True)
class PolicyVersion:
    version_id: str
    document: PolicyDocument
    is_default: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ManagedPolicy:
    """A named, independently versioned policy.

    ``versions`` is ordered oldest first. Only the manager module should
    mutate it; default flags are recomputed from ``default_version_id``.
    """

    name: str
    path: str = "/"
    description: str = ""
    versions: list[PolicyVersion] = field(default_factory=list)
    next_version_number: int = 1
    default_version_id: Optional[str] = None
    policy_id: Optional[str] = None

    @property
    def default_version(self) -> Optional[PolicyVersion]:
        for version in self.versions:
            if version.is_default:
                return version
        return None

    def arn(self, account_id: str, partition: str = "aws") -> str:
        return f"arn:{partition}:iam::{account_id}:policy{self.path}{self.name}"


@dataclass(frozen=True)
class Attachment:
    policy_name: str
    principal_kind: PrincipalKind
    principal_name: str


@dataclass(frozen=True)
class InstanceProfile:
    name: str
    path: str = "/"


@dataclass
class Role:
    name: str
    assume_role_policy: PolicyDocument
    max_session_duration: int = 3600
    path: str = "/"
    description: str = ""
    managed_policy_arns: list[str] = field(default_factory=list)
    inline_policies: dict[str, PolicyDocument] = field(default_factory=dict)
    instance_profile: Optional[InstanceProfile] = None

    def arn(self, account_id: str, partition: str = "aws") -> str:
        return f"arn:{partition}:iam::{account_id}:role{self.path}{self.name}"


def _principal_to_json(principal: Principal) -> Any:
    if isinstance(principal, str):
        return principal
    return {
        kind: ids[0] if len(ids) == 1 else list(ids)
        for kind, ids in principal.items()
    }
