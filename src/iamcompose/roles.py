"""Assemble IAM roles: trust documents, managed/inline policies, instance profile."""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Optional, Sequence

from .composer import (
    compose,
    validate_description,
    validate_path,
    validate_policy_name,
    validate_role_name,
)
from .errors import ErrorKind, PolicyError
from .models import DEFAULT_LIMITS, InstanceProfile, Limits, PolicyDocument, Role
from .normalizer import normalize_source, normalize_sources

logger = logging.getLogger(__name__)

MIN_SESSION_DURATION = 3600
MAX_SESSION_DURATION = 43200

_ACCOUNT_ID_RE = re.compile(r"^\d{12}$")
_POLICY_ARN_RE = re.compile(r"^arn:aws(?:-cn|-us-gov)?:iam::(?:aws|\d{12}):policy/.+$")


# ---------------------------------------------------------------------------
# Trust sources
# ---------------------------------------------------------------------------


def service_trust(*services: str, action: str = "sts:AssumeRole") -> dict:
    """Trust statement for AWS service principals such as ``ec2.amazonaws.com``."""
    return {
        "Effect": "Allow",
        "Principal": {"Service": list(services)},
        "Action": action,
    }


def account_trust(
    *accounts: str,
    external_id: Optional[str] = None,
    require_mfa: bool = False,
) -> dict:
    """
    Trust statement for AWS account principals.

    Bare 12-digit account ids are expanded to the account root ARN; anything
    else is taken as a principal ARN.
    """
    statement: dict[str, Any] = {
        "Effect": "Allow",
        "Principal": {"AWS": [_account_principal(a) for a in accounts]},
        "Action": "sts:AssumeRole",
    }
    condition: dict[str, dict[str, Any]] = {}
    if external_id is not None:
        condition["StringEquals"] = {"sts:ExternalId": external_id}
    if require_mfa:
        condition["Bool"] = {"aws:MultiFactorAuthPresent": "true"}
    if condition:
        statement["Condition"] = condition
    return statement


def federated_trust(
    provider: str,
    conditions: Optional[Mapping[str, Mapping[str, Any]]] = None,
    action: str = "sts:AssumeRoleWithWebIdentity",
) -> dict:
    """Trust statement for an OIDC or SAML identity provider."""
    statement: dict[str, Any] = {
        "Effect": "Allow",
        "Principal": {"Federated": provider},
        "Action": action,
    }
    if conditions:
        statement["Condition"] = {op: dict(keys) for op, keys in conditions.items()}
    return statement


def _account_principal(account: str) -> str:
    if _ACCOUNT_ID_RE.match(account):
        return f"arn:aws:iam::{account}:root"
    return account


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def assemble_trust_policy(
    sources: Sequence[Any],
    limits: Limits = DEFAULT_LIMITS,
) -> PolicyDocument:
    """
    Build an assume-role policy from one or more trust sources.

    Every statement must name a principal and none may name a resource.

    Raises:
        PolicyError: MalformedDocument, InvalidStatement, EmptyDocument or
            DocumentTooLarge.
    """
    normalized = normalize_sources(sources)
    for item in normalized:
        where = f"{item.source}.Statement[{item.index}]"
        if item.statement.principal is None and item.statement.not_principal is None:
            raise PolicyError(
                ErrorKind.INVALID_STATEMENT,
                f"{where}.Principal",
                None,
                "is required in a trust policy",
            )
        if item.statement.resources or item.statement.not_resources:
            raise PolicyError(
                ErrorKind.INVALID_STATEMENT,
                f"{where}.Resource",
                list(item.statement.resources or item.statement.not_resources),
                "is not allowed in a trust policy",
            )
    return compose([normalized], max_bytes=limits.max_trust_policy_bytes)


def build_role(
    name: str,
    trust_sources: Sequence[Any],
    *,
    path: str = "/",
    description: str = "",
    max_session_duration: int = MIN_SESSION_DURATION,
    managed_policy_arns: Iterable[str] = (),
    inline_policies: Optional[Mapping[str, Any]] = None,
    limits: Limits = DEFAULT_LIMITS,
) -> Role:
    """
    Validate and assemble a Role.  Nothing is returned unless every part
    validates.
    """
    validate_role_name(name)
    validate_path(path)
    validate_description(description)
    validate_session_duration(max_session_duration)

    role = Role(
        name=name,
        assume_role_policy=assemble_trust_policy(trust_sources, limits),
        max_session_duration=max_session_duration,
        path=path,
        description=description,
    )
    for arn in managed_policy_arns:
        attach_managed_policy(role, arn)
    for policy_name, source in (inline_policies or {}).items():
        put_inline_policy(role, policy_name, source, limits)
    return role


def validate_session_duration(seconds: int) -> None:
    if (
        not isinstance(seconds, int)
        or isinstance(seconds, bool)
        or not MIN_SESSION_DURATION <= seconds <= MAX_SESSION_DURATION
    ):
        raise PolicyError(
            ErrorKind.INVALID_SESSION_DURATION,
            "maxSessionDuration",
            seconds,
            f"must be between {MIN_SESSION_DURATION} and {MAX_SESSION_DURATION} seconds",
        )


# ---------------------------------------------------------------------------
# Managed and inline policies
# ---------------------------------------------------------------------------


def attach_managed_policy(role: Role, policy_arn: str) -> bool:
    """Idempotent. Returns False if *policy_arn* was already attached."""
    if not _POLICY_ARN_RE.match(policy_arn):
        raise PolicyError(
            ErrorKind.INVALID_NAME, "policyArn", policy_arn, "is not a managed policy ARN"
        )
    if policy_arn in role.managed_policy_arns:
        return False
    role.managed_policy_arns.append(policy_arn)
    logger.info("Attached %s to role %s", policy_arn, role.name)
    return True


def detach_managed_policy(role: Role, policy_arn: str) -> bool:
    if policy_arn not in role.managed_policy_arns:
        return False
    role.managed_policy_arns.remove(policy_arn)
    logger.info("Detached %s from role %s", policy_arn, role.name)
    return True


def put_inline_policy(
    role: Role,
    policy_name: str,
    source: Any,
    limits: Limits = DEFAULT_LIMITS,
) -> PolicyDocument:
    """
    Add or replace an inline policy.

    Inline names live in their own namespace and may repeat a managed
    policy's name.  The aggregate size of all inline documents on the role is
    capped by ``limits.max_inline_policy_bytes``.
    """
    validate_policy_name(policy_name)
    document = compose(
        [normalize_source(source, f"inline:{policy_name}")],
        max_bytes=limits.max_inline_policy_bytes,
    )
    others = sum(
        doc.size_bytes for name, doc in role.inline_policies.items() if name != policy_name
    )
    total = others + document.size_bytes
    if total > limits.max_inline_policy_bytes:
        raise PolicyError(
            ErrorKind.DOCUMENT_TOO_LARGE,
            "inlinePolicies",
            total,
            f"aggregate inline policy size exceeds {limits.max_inline_policy_bytes} bytes",
        )
    role.inline_policies[policy_name] = document
    return document


def delete_inline_policy(role: Role, policy_name: str) -> bool:
    return role.inline_policies.pop(policy_name, None) is not None


# ---------------------------------------------------------------------------
# Instance profile
# ---------------------------------------------------------------------------


def associate_instance_profile(
    role: Role,
    profile_name: Optional[str] = None,
    path: Optional[str] = None,
) -> InstanceProfile:
    """
    Associate an instance profile (named after the role by default).

    Raises:
        PolicyError: InstanceProfileAlreadyAttached if the role already has one.
    """
    if role.instance_profile is not None:
        raise PolicyError(
            ErrorKind.INSTANCE_PROFILE_ALREADY_ATTACHED,
            "instanceProfile",
            role.instance_profile.name,
            f"is already associated with role {role.name}",
        )
    name = profile_name or role.name
    validate_policy_name(name)
    profile_path = path or role.path
    validate_path(profile_path)
    role.instance_profile = InstanceProfile(name=name, path=profile_path)
    return role.instance_profile
