"""Tests for iamcompose.composer."""
import json

import pytest

from iamcompose.composer import (
    compose,
    compose_policy,
    validate_path,
    validate_policy_name,
)
from iamcompose.errors import ErrorKind, PolicyError
from iamcompose.models import Effect, Limits, Statement
from iamcompose.normalizer import normalize_source


def _big_source(n: int) -> list[dict]:
    return [
        {
            "Sid": f"Statement{i}",
            "Effect": "Allow",
            "Action": [f"s3:GetObject{j}" for j in range(10)],
            "Resource": f"arn:aws:s3:::bucket-number-{i}/*",
        }
        for i in range(n)
    ]


# ---------------------------------------------------------------------------
# compose
# ---------------------------------------------------------------------------

def test_compose_two_sources_in_order(s3_read_source, data_source):
    doc = compose([normalize_source(s3_read_source), normalize_source(data_source)])
    assert len(doc.statements) == 5
    assert [s.sid for s in doc.statements] == [
        "ListBucket", "ReadObjects", "DynamoDBAccess", "SecretsAccess", "KmsDecrypt",
    ]
    text = doc.to_json()
    for prefix in ("s3:", "dynamodb:", "secretsmanager:", "kms:"):
        assert prefix in text


def test_compose_accepts_plain_statements():
    s = Statement(effect=Effect.ALLOW, actions=("sns:Publish",), resources=("*",))
    doc = compose([[s]])
    assert doc.statements == (s,)


def test_compose_keeps_duplicate_statements():
    stmt = {"Effect": "Allow", "Action": "s3:GetObject", "Resource": "*"}
    doc = compose([normalize_source([stmt]), normalize_source([stmt])])
    assert len(doc.statements) == 2
    assert doc.statements[0] == doc.statements[1]


def test_compose_empty_raises():
    with pytest.raises(PolicyError) as exc_info:
        compose([[], []])
    assert exc_info.value.kind == ErrorKind.EMPTY_DOCUMENT


def test_compose_too_large_raises():
    with pytest.raises(PolicyError) as exc_info:
        compose([normalize_source(_big_source(40))])
    assert exc_info.value.kind == ErrorKind.DOCUMENT_TOO_LARGE
    assert exc_info.value.value > 6144


def test_compose_respects_custom_ceiling():
    source = normalize_source(_big_source(1))
    doc = compose([source])
    with pytest.raises(PolicyError):
        compose([source], max_bytes=doc.size_bytes - 1)
    assert compose([source], max_bytes=doc.size_bytes).size_bytes == doc.size_bytes


def test_composed_documents_stay_under_ceiling():
    for n in range(1, 40, 3):
        try:
            doc = compose([normalize_source(_big_source(n))])
        except PolicyError as exc:
            assert exc.kind == ErrorKind.DOCUMENT_TOO_LARGE
        else:
            assert doc.size_bytes <= 6144


# ---------------------------------------------------------------------------
# compose_policy
# ---------------------------------------------------------------------------

def test_compose_policy_basic(s3_read_source):
    doc = compose_policy("basic-s3-read-policy", "/", "Basic IAM policy", [s3_read_source])
    statements = json.loads(doc.to_json())["Statement"]
    assert statements[1]["Effect"] == "Allow"
    assert "s3:GetObject" in statements[1]["Action"]


def test_compose_policy_name_checked_before_document():
    long_name = "test-policy-with-very-long-name-" + "x" * 120
    with pytest.raises(PolicyError) as exc_info:
        compose_policy(long_name, "/", "", ["invalid-json"])
    assert exc_info.value.kind == ErrorKind.INVALID_NAME
    assert exc_info.value.field == "name"


def test_compose_policy_invalid_json():
    with pytest.raises(PolicyError) as exc_info:
        compose_policy("basic-s3-read-policy", "/", "", ["invalid-json"])
    assert exc_info.value.kind == ErrorKind.MALFORMED_DOCUMENT


def test_compose_policy_uses_limits(s3_read_source):
    with pytest.raises(PolicyError) as exc_info:
        compose_policy("p", "/", "", [s3_read_source], limits=Limits(max_policy_bytes=50))
    assert exc_info.value.kind == ErrorKind.DOCUMENT_TOO_LARGE


def test_compose_policy_description_too_long(s3_read_source):
    with pytest.raises(PolicyError) as exc_info:
        compose_policy("p", "/", "d" * 1001, [s3_read_source])
    assert exc_info.value.field == "description"


def test_compose_policy_labels_reach_errors():
    with pytest.raises(PolicyError) as exc_info:
        compose_policy("p", "/", "", [[{"Effect": "Allow"}]], labels=["extra.json"])
    assert exc_info.value.field.startswith("extra.json")


# ---------------------------------------------------------------------------
# Name and path validation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("name", ["a", "cloudwatch-logs-policy", "x" * 128, "with+=,.@_-chars"])
def test_valid_policy_names(name):
    validate_policy_name(name)


@pytest.mark.parametrize("name", ["", "x" * 129, "has space", "slash/name", "ünïcode"])
def test_invalid_policy_names(name):
    with pytest.raises(PolicyError) as exc_info:
        validate_policy_name(name)
    assert exc_info.value.kind == ErrorKind.INVALID_NAME


@pytest.mark.parametrize("path", ["/", "/application/", "/a/b/c/"])
def test_valid_paths(path):
    validate_path(path)


@pytest.mark.parametrize("path", ["", "application", "/application", "//x", "/" + "a" * 512 + "/"])
def test_invalid_paths(path):
    with pytest.raises(PolicyError) as exc_info:
        validate_path(path)
    assert exc_info.value.field == "path"
