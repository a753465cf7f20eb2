"""Load and apply managed policy state through the IAM API.

This is the only module that talks to AWS.  The remote state read here is
treated as authoritative; the version and attachment decisions themselves are
made by :mod:`iamcompose.manager`.
"""
from __future__ import annotations

import json
import logging
from typing import Iterable, NoReturn, Optional
from urllib.parse import unquote

from botocore.exceptions import ClientError

from .composer import compose
from .errors import ProvisioningError
from .manager import (
    AttachmentRegistry,
    apply_document,
    create_version,
    restore_versions,
    version_number,
)
from .models import (
    DEFAULT_LIMITS,
    Attachment,
    Limits,
    ManagedPolicy,
    PolicyDocument,
    PolicyVersion,
    PrincipalKind,
)
from .normalizer import normalize_source

logger = logging.getLogger(__name__)

_ATTACH_CALLS = {
    PrincipalKind.ROLE: ("attach_role_policy", "detach_role_policy", "RoleName"),
    PrincipalKind.USER: ("attach_user_policy", "detach_user_policy", "UserName"),
    PrincipalKind.GROUP: ("attach_group_policy", "detach_group_policy", "GroupName"),
}
_ENTITY_KEYS = {
    PrincipalKind.ROLE: ("PolicyRoles", "RoleName"),
    PrincipalKind.USER: ("PolicyUsers", "UserName"),
    PrincipalKind.GROUP: ("PolicyGroups", "GroupName"),
}


def find_policy_arn(name: str, path: str, iam_client) -> Optional[str]:
    """Return the ARN of the customer-managed policy *name* under *path*, or None."""
    try:
        paginator = iam_client.get_paginator("list_policies")
        for page in paginator.paginate(Scope="Local", PathPrefix=path):
            for p in page["Policies"]:
                if p["PolicyName"] == name and p["Path"] == path:
                    return p["Arn"]
    except ClientError as exc:
        _handle_client_error(exc)
    return None


def load_policy(policy_arn: str, iam_client, limits: Limits = DEFAULT_LIMITS) -> ManagedPolicy:
    """
    Read a managed policy and its retained version history.

    Raises:
        ProvisioningError: the policy does not exist or the call was denied.
    """
    try:
        meta = iam_client.get_policy(PolicyArn=policy_arn)["Policy"]
        summaries: list[dict] = []
        paginator = iam_client.get_paginator("list_policy_versions")
        for page in paginator.paginate(PolicyArn=policy_arn):
            summaries.extend(page["Versions"])

        versions: list[PolicyVersion] = []
        for summary in sorted(summaries, key=lambda s: version_number(s["VersionId"])):
            raw = iam_client.get_policy_version(
                PolicyArn=policy_arn, VersionId=summary["VersionId"]
            )["PolicyVersion"]
            versions.append(
                PolicyVersion(
                    version_id=summary["VersionId"],
                    document=document_from_remote(raw["Document"], limits),
                    is_default=bool(summary.get("IsDefaultVersion")),
                    created_at=summary["CreateDate"],
                )
            )
    except ClientError as exc:
        _handle_client_error(exc)

    policy = ManagedPolicy(
        name=meta["PolicyName"],
        path=meta.get("Path", "/"),
        description=meta.get("Description", ""),
        policy_id=meta.get("PolicyId"),
    )
    restore_versions(policy, versions, meta.get("DefaultVersionId"))
    logger.debug("Loaded %s with %d version(s)", policy_arn, len(versions))
    return policy


def document_from_remote(document, limits: Limits = DEFAULT_LIMITS) -> PolicyDocument:
    """Convert a Document field (dict, JSON, or URL-encoded JSON) to a PolicyDocument."""
    if isinstance(document, str):
        document = unquote(document)
    composed = compose([normalize_source(document, "remote")], max_bytes=limits.max_policy_bytes)
    if isinstance(document, str):
        document = json.loads(document)
    version = document.get("Version") if isinstance(document, dict) else None
    return PolicyDocument(statements=composed.statements, version=version or composed.version)


def apply_policy(
    name: str,
    document: PolicyDocument,
    iam_client,
    *,
    path: str = "/",
    description: str = "",
    limits: Limits = DEFAULT_LIMITS,
) -> tuple[ManagedPolicy, str]:
    """
    Create the policy, or push *document* as its new default version.

    When the history is full the version evicted locally is deleted remotely
    before the new version is created.  Returns the resulting policy state and
    its ARN.
    """
    arn = find_policy_arn(name, path, iam_client)
    try:
        if arn is None:
            resp = iam_client.create_policy(
                PolicyName=name,
                Path=path,
                PolicyDocument=document.to_json(),
                Description=description,
            )["Policy"]
            arn = resp["Arn"]
            policy = ManagedPolicy(
                name=name, path=path, description=description, policy_id=resp.get("PolicyId")
            )
            create_version(policy, document, limits)
            logger.info("Created policy %s", arn)
            return policy, arn

        policy = load_policy(arn, iam_client, limits)
        before = {v.version_id for v in policy.versions}
        version_id = apply_document(policy, document, limits)
        if version_id in before:
            logger.info("Policy %s is up to date at %s", arn, version_id)
            return policy, arn

        for evicted in sorted(before - {v.version_id for v in policy.versions}):
            iam_client.delete_policy_version(PolicyArn=arn, VersionId=evicted)
            logger.info("Deleted %s of %s", evicted, arn)

        remote = iam_client.create_policy_version(
            PolicyArn=arn,
            PolicyDocument=document.to_json(),
            SetAsDefault=True,
        )["PolicyVersion"]
    except ClientError as exc:
        _handle_client_error(exc)

    if remote["VersionId"] != version_id:
        logger.warning(
            "Remote assigned %s to %s, expected %s; reloading",
            remote["VersionId"], arn, version_id,
        )
        policy = load_policy(arn, iam_client, limits)
    return policy, arn


def load_attachments(
    policy_name: str,
    policy_arn: str,
    iam_client,
    registry: AttachmentRegistry,
) -> tuple[Attachment, ...]:
    """Record every principal the policy is attached to in *registry*."""
    try:
        paginator = iam_client.get_paginator("list_entities_for_policy")
        for page in paginator.paginate(PolicyArn=policy_arn):
            for kind, (list_key, name_key) in _ENTITY_KEYS.items():
                for entity in page.get(list_key, []):
                    registry.attach(policy_name, kind, entity[name_key])
    except ClientError as exc:
        _handle_client_error(exc)
    return registry.attachments(policy_name)


def sync_attachments(
    policy: ManagedPolicy,
    policy_arn: str,
    desired: Iterable[tuple[PrincipalKind, str]],
    registry: AttachmentRegistry,
    iam_client,
    exclusive: bool = True,
) -> tuple[list[Attachment], list[Attachment]]:
    """
    Attach every desired principal and, if *exclusive*, detach the rest.

    *registry* must already hold the current remote attachments (see
    :func:`load_attachments`).  Returns ``(attached, detached)``.
    """
    wanted = {(PrincipalKind(kind), name) for kind, name in desired}
    current = {(a.principal_kind, a.principal_name) for a in registry.attachments(policy)}
    attached: list[Attachment] = []
    detached: list[Attachment] = []
    try:
        for kind, name in sorted(wanted - current, key=_principal_sort_key):
            call, _, key = _ATTACH_CALLS[kind]
            getattr(iam_client, call)(**{key: name, "PolicyArn": policy_arn})
            registry.attach(policy, kind, name)
            attached.append(Attachment(policy.name, kind, name))
        if exclusive:
            for kind, name in sorted(current - wanted, key=_principal_sort_key):
                _, call, key = _ATTACH_CALLS[kind]
                getattr(iam_client, call)(**{key: name, "PolicyArn": policy_arn})
                registry.detach(policy, kind, name)
                detached.append(Attachment(policy.name, kind, name))
    except ClientError as exc:
        _handle_client_error(exc)
    return attached, detached


def delete_policy(
    policy: ManagedPolicy,
    policy_arn: str,
    registry: AttachmentRegistry,
    iam_client,
) -> None:
    """Detach the policy everywhere, drop non-default versions, then delete it."""
    sync_attachments(policy, policy_arn, (), registry, iam_client, exclusive=True)
    try:
        for version in policy.versions:
            if not version.is_default:
                iam_client.delete_policy_version(
                    PolicyArn=policy_arn, VersionId=version.version_id
                )
        iam_client.delete_policy(PolicyArn=policy_arn)
    except ClientError as exc:
        _handle_client_error(exc)
    registry.remove_policy(policy)
    policy.versions = []
    policy.default_version_id = None
    logger.info("Deleted policy %s", policy_arn)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _principal_sort_key(item: tuple[PrincipalKind, str]) -> tuple[str, str]:
    return item[0].value, item[1]


def _handle_client_error(exc: ClientError) -> NoReturn:
    code = exc.response["Error"]["Code"]
    msg = exc.response["Error"]["Message"]
    raise ProvisioningError(message=msg, error_code=code) from exc
