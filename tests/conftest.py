"""Shared pytest fixtures for iamcompose tests."""
import pytest
import boto3

# moto is imported lazily inside fixtures so the import error surface is clear.

S3_READ_SOURCE = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Sid": "ListBucket",
            "Effect": "Allow",
            "Action": "s3:ListBucket",
            "Resource": "arn:aws:s3:::example-bucket",
        },
        {
            "Sid": "ReadObjects",
            "Effect": "Allow",
            "Action": ["s3:GetObject", "s3:GetObjectVersion"],
            "Resource": "arn:aws:s3:::example-bucket/*",
        },
    ],
}

DATA_SOURCE = [
    {
        "sid": "DynamoDBAccess",
        "effect": "Allow",
        "actions": ["dynamodb:GetItem", "dynamodb:Query"],
        "resources": ["arn:aws:dynamodb:us-east-1:123456789012:table/example"],
    },
    {
        "sid": "SecretsAccess",
        "effect": "Allow",
        "actions": ["secretsmanager:GetSecretValue"],
        "resources": ["arn:aws:secretsmanager:us-east-1:123456789012:secret:app/*"],
    },
    {
        "sid": "KmsDecrypt",
        "effect": "Allow",
        "actions": ["kms:Decrypt"],
        "resources": ["*"],
        "condition": [
            {
                "test": "StringEquals",
                "variable": "kms:ViaService",
                "values": ["secretsmanager.us-east-1.amazonaws.com"],
            }
        ],
    },
]


@pytest.fixture
def s3_read_source():
    return S3_READ_SOURCE


@pytest.fixture
def data_source():
    return DATA_SOURCE


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Prevent accidental real AWS calls by setting fake credentials."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def moto_iam():
    """Yield a real boto3 IAM client inside a moto mock_aws context."""
    from moto import mock_aws

    with mock_aws():
        yield boto3.client("iam", region_name="us-east-1")


@pytest.fixture
def sample_principals(moto_iam):
    """Create one role, one user and one group to attach policies to."""
    trust = (
        '{"Version":"2012-10-17","Statement":[{"Effect":"Allow",'
        '"Principal":{"Service":"ec2.amazonaws.com"},"Action":"sts:AssumeRole"}]}'
    )
    moto_iam.create_role(RoleName="example-policy-role", AssumeRolePolicyDocument=trust)
    moto_iam.create_user(UserName="example-policy-user")
    moto_iam.create_group(GroupName="example-policy-group")
    return moto_iam
