"""Bounded version history and attachment bookkeeping for managed policies.

A policy moves through three implicit states derived from its version count:
``FRESH`` (no versions), ``ACTIVE`` (below the retention ceiling) and
``AT_CAPACITY``.  Creating a version while at capacity evicts the oldest
non-default version first.  Version ids are ``v1``, ``v2``, ... scoped to the
policy and never reused, even after eviction.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from typing import Optional

from .errors import ErrorKind, PolicyError
from .models import (
    DEFAULT_LIMITS,
    Attachment,
    Limits,
    ManagedPolicy,
    PolicyDocument,
    PolicyState,
    PolicyVersion,
    PrincipalKind,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


def create_version(
    policy: ManagedPolicy,
    document: PolicyDocument,
    limits: Limits = DEFAULT_LIMITS,
) -> str:
    """
    Append *document* as a new version and make it the default.

    Raises:
        PolicyError: NoEvictableVersion if the history is full and every
            retained version is default (an internal-consistency fault).
    """
    if len(policy.versions) >= limits.max_versions:
        evicted = _evict_oldest_non_default(policy)
        logger.info("Evicted %s from policy %s", evicted.version_id, policy.name)

    version_id = f"v{policy.next_version_number}"
    policy.next_version_number += 1
    policy.versions.append(PolicyVersion(version_id=version_id, document=document))
    _select_default(policy, version_id)
    logger.info("Created %s of policy %s", version_id, policy.name)
    return version_id


def apply_document(
    policy: ManagedPolicy,
    document: PolicyDocument,
    limits: Limits = DEFAULT_LIMITS,
) -> str:
    """Create a version only when *document* differs from the current default."""
    current = policy.default_version
    if current is not None and current.document == document:
        logger.debug("Policy %s unchanged; keeping %s", policy.name, current.version_id)
        return current.version_id
    return create_version(policy, document, limits)


def set_default_version(policy: ManagedPolicy, version_id: str) -> None:
    """Raises PolicyError(VersionNotFound) if *version_id* is not retained."""
    _find_version(policy, version_id)
    _select_default(policy, version_id)
    logger.info("Set %s as default of policy %s", version_id, policy.name)


def delete_version(policy: ManagedPolicy, version_id: str) -> None:
    version = _find_version(policy, version_id)
    if version.is_default:
        raise PolicyError(
            ErrorKind.CANNOT_DELETE_DEFAULT_VERSION,
            "versionId",
            version_id,
            "is the default version; set another default first",
        )
    policy.versions.remove(version)
    _select_default(policy, policy.default_version_id)


def version_count(policy: ManagedPolicy) -> int:
    return len(policy.versions)


def policy_state(policy: ManagedPolicy, limits: Limits = DEFAULT_LIMITS) -> PolicyState:
    count = version_count(policy)
    if count == 0:
        return PolicyState.FRESH
    if count >= limits.max_versions:
        return PolicyState.AT_CAPACITY
    return PolicyState.ACTIVE


def restore_versions(
    policy: ManagedPolicy,
    versions: list[PolicyVersion],
    default_version_id: Optional[str],
) -> None:
    """Load persisted history (oldest first) as the authoritative state."""
    policy.versions = list(versions)
    numbers = [version_number(v.version_id) for v in versions]
    policy.next_version_number = max([policy.next_version_number - 1, *numbers]) + 1
    if default_version_id is None and versions:
        default_version_id = versions[-1].version_id
    _select_default(policy, default_version_id)


def _find_version(policy: ManagedPolicy, version_id: str) -> PolicyVersion:
    for version in policy.versions:
        if version.version_id == version_id:
            return version
    retained = ", ".join(v.version_id for v in policy.versions) or "none"
    raise PolicyError(
        ErrorKind.VERSION_NOT_FOUND,
        "versionId",
        version_id,
        f"is not a retained version of {policy.name} (retained: {retained})",
    )


def _evict_oldest_non_default(policy: ManagedPolicy) -> PolicyVersion:
    for version in policy.versions:
        if not version.is_default:
            policy.versions.remove(version)
            return version
    raise PolicyError(
        ErrorKind.NO_EVICTABLE_VERSION,
        "versions",
        [v.version_id for v in policy.versions],
        "has no non-default version to evict",
    )


def _select_default(policy: ManagedPolicy, pinned: Optional[str]) -> None:
    """Recompute every default flag from the pinned id.

    Falls back to the most recently created version when the pin is not
    retained, so exactly one version is default whenever any exist.
    """
    retained = {v.version_id for v in policy.versions}
    if pinned not in retained:
        pinned = policy.versions[-1].version_id if policy.versions else None
    policy.default_version_id = pinned
    policy.versions = [
        v if v.is_default == (v.version_id == pinned)
        else dataclasses.replace(v, is_default=v.version_id == pinned)
        for v in policy.versions
    ]


def version_number(version_id: str) -> int:
    """Numeric suffix of a ``vN`` id; 0 when it has none."""
    try:
        return int(version_id.lstrip("v"))
    except ValueError:
        return 0


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


class AttachmentRegistry:
    """Many-to-many join between managed policies and principals.

    The policy-side and principal-side indexes are updated together inside
    one critical section.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_policy: dict[str, dict[tuple[PrincipalKind, str], None]] = {}
        self._by_principal: dict[tuple[PrincipalKind, str], dict[str, None]] = {}

    def attach(self, policy: ManagedPolicy | str, kind: PrincipalKind, name: str) -> bool:
        """Attach *name* to *policy*. Returns False if it was already attached."""
        policy_name = _policy_name(policy)
        key = (PrincipalKind(kind), name)
        with self._lock:
            principals = self._by_policy.setdefault(policy_name, {})
            if key in principals:
                return False
            principals[key] = None
            self._by_principal.setdefault(key, {})[policy_name] = None
        logger.info("Attached %s to %s %s", policy_name, key[0].value, name)
        return True

    def detach(self, policy: ManagedPolicy | str, kind: PrincipalKind, name: str) -> bool:
        """Detach *name* from *policy*. Returns False if it was not attached."""
        policy_name = _policy_name(policy)
        key = (PrincipalKind(kind), name)
        with self._lock:
            principals = self._by_policy.get(policy_name, {})
            if key not in principals:
                return False
            del principals[key]
            if not principals:
                self._by_policy.pop(policy_name, None)
            policies = self._by_principal[key]
            del policies[policy_name]
            if not policies:
                del self._by_principal[key]
        logger.info("Detached %s from %s %s", policy_name, key[0].value, name)
        return True

    def attachments(self, policy: ManagedPolicy | str) -> tuple[Attachment, ...]:
        policy_name = _policy_name(policy)
        with self._lock:
            keys = list(self._by_policy.get(policy_name, {}))
        return tuple(Attachment(policy_name, kind, name) for kind, name in keys)

    def attachment_count(self, policy: ManagedPolicy | str) -> int:
        with self._lock:
            return len(self._by_policy.get(_policy_name(policy), {}))

    def principals(self, policy: ManagedPolicy | str, kind: PrincipalKind) -> list[str]:
        kind = PrincipalKind(kind)
        return [a.principal_name for a in self.attachments(policy) if a.principal_kind == kind]

    def attached_policies(self, kind: PrincipalKind, name: str) -> list[str]:
        with self._lock:
            return list(self._by_principal.get((PrincipalKind(kind), name), {}))

    def remove_policy(self, policy: ManagedPolicy | str) -> int:
        """Detach *policy* from every principal; returns the number detached."""
        removed = self.attachments(policy)
        for attachment in removed:
            self.detach(policy, attachment.principal_kind, attachment.principal_name)
        return len(removed)

    def remove_principal(self, kind: PrincipalKind, name: str) -> int:
        """Detach every policy from the principal; returns the number detached."""
        removed = self.attached_policies(kind, name)
        for policy_name in removed:
            self.detach(policy_name, kind, name)
        return len(removed)


def _policy_name(policy: ManagedPolicy | str) -> str:
    return policy if isinstance(policy, str) else policy.name
