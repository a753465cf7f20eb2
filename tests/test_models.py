"""Tests for iamcompose.models — pure data, no AWS calls."""
import dataclasses
import json

import pytest

from iamcompose.models import (
    Effect,
    Limits,
    ManagedPolicy,
    PolicyDocument,
    PolicyVersion,
    PrincipalKind,
    Role,
    Statement,
)


def _statement(**kwargs) -> Statement:
    defaults = dict(effect=Effect.ALLOW, actions=("s3:GetObject",), resources=("*",))
    defaults.update(kwargs)
    return Statement(**defaults)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

def test_effect_values():
    assert Effect.ALLOW.value == "Allow"
    assert Effect.DENY.value == "Deny"


def test_principal_kind_values():
    assert PrincipalKind.ROLE.value == "role"
    assert PrincipalKind.USER.value == "user"
    assert PrincipalKind.GROUP.value == "group"


# ---------------------------------------------------------------------------
# Statement serialization
# ---------------------------------------------------------------------------

def test_statement_frozen():
    s = _statement()
    with pytest.raises((dataclasses.FrozenInstanceError, AttributeError)):
        s.effect = Effect.DENY  # type: ignore[misc]


def test_statement_and_document_are_not_hashable():
    trust = _statement(principal={"Service": ("ec2.amazonaws.com",)}, resources=())
    with pytest.raises(TypeError):
        hash(trust)
    with pytest.raises(TypeError):
        hash(PolicyDocument(statements=(trust,)))
    assert trust == _statement(principal={"Service": ("ec2.amazonaws.com",)}, resources=())


def test_statement_to_dict_uses_lists_for_actions_and_resources():
    s = _statement(sid="Read")
    assert s.to_dict() == {
        "Sid": "Read",
        "Effect": "Allow",
        "Action": ["s3:GetObject"],
        "Resource": ["*"],
    }


def test_statement_to_dict_omits_empty_sid():
    assert "Sid" not in _statement().to_dict()


def test_single_principal_identifier_serializes_as_string():
    s = Statement(
        effect=Effect.ALLOW,
        actions=("sts:AssumeRole",),
        principal={"Service": ("ec2.amazonaws.com",)},
    )
    assert s.to_dict()["Principal"] == {"Service": "ec2.amazonaws.com"}


def test_multiple_principal_identifiers_serialize_as_list():
    s = Statement(
        effect=Effect.ALLOW,
        actions=("sts:AssumeRole",),
        principal={"Service": ("ec2.amazonaws.com", "lambda.amazonaws.com")},
    )
    assert s.to_dict()["Principal"] == {
        "Service": ["ec2.amazonaws.com", "lambda.amazonaws.com"]
    }


def test_wildcard_principal_serializes_as_star():
    s = Statement(effect=Effect.ALLOW, actions=("sts:AssumeRole",), principal="*")
    assert s.to_dict()["Principal"] == "*"


def test_negated_elements_serialize():
    s = Statement(effect=Effect.DENY, not_actions=("iam:*",), not_resources=("arn:aws:s3:::x",))
    d = s.to_dict()
    assert d["NotAction"] == ["iam:*"]
    assert d["NotResource"] == ["arn:aws:s3:::x"]
    assert "Action" not in d
    assert "Resource" not in d


# ---------------------------------------------------------------------------
# PolicyDocument
# ---------------------------------------------------------------------------

def test_document_to_json_is_compact():
    doc = PolicyDocument(statements=(_statement(),))
    text = doc.to_json()
    assert " " not in text
    assert json.loads(text)["Version"] == "2012-10-17"


def test_document_size_bytes_matches_compact_json():
    doc = PolicyDocument(statements=(_statement(), _statement(sid="Second")))
    assert doc.size_bytes == len(doc.to_json().encode("utf-8"))


def test_document_indented_json_is_equivalent():
    doc = PolicyDocument(statements=(_statement(),))
    assert json.loads(doc.to_json(indent=2)) == doc.to_dict()


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------

def test_limits_defaults_match_iam_quotas():
    limits = Limits()
    assert limits.max_policy_bytes == 6144
    assert limits.max_versions == 5
    assert limits.max_trust_policy_bytes == 2048
    assert limits.max_inline_policy_bytes == 10240


def test_limits_reject_single_version_history():
    with pytest.raises(ValueError, match="max_versions"):
        Limits(max_versions=1)


def test_limits_reject_non_positive_size():
    with pytest.raises(ValueError, match="max_policy_bytes"):
        Limits(max_policy_bytes=0)


# ---------------------------------------------------------------------------
# ManagedPolicy / Role
# ---------------------------------------------------------------------------

def test_managed_policy_defaults():
    p = ManagedPolicy(name="basic-s3-read-policy")
    assert p.path == "/"
    assert p.versions == []
    assert p.default_version is None
    assert p.next_version_number == 1


def test_managed_policy_arn_includes_path():
    p = ManagedPolicy(name="comprehensive-policy-example", path="/application/")
    assert (
        p.arn("123456789012")
        == "arn:aws:iam::123456789012:policy/application/comprehensive-policy-example"
    )


def test_managed_policy_default_version_lookup():
    doc = PolicyDocument(statements=(_statement(),))
    p = ManagedPolicy(
        name="p",
        versions=[
            PolicyVersion(version_id="v1", document=doc, is_default=False),
            PolicyVersion(version_id="v2", document=doc, is_default=True),
        ],
    )
    assert p.default_version.version_id == "v2"


def test_role_arn():
    trust = PolicyDocument(
        statements=(
            Statement(
                effect=Effect.ALLOW,
                actions=("sts:AssumeRole",),
                principal={"Service": ("ec2.amazonaws.com",)},
            ),
        )
    )
    role = Role(name="basic-example-role", assume_role_policy=trust)
    assert role.arn("123456789012") == "arn:aws:iam::123456789012:role/basic-example-role"
    assert role.max_session_duration == 3600
    assert role.instance_profile is None
