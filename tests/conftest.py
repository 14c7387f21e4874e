# tests/conftest.py
"""
Shared fixtures: the canonical harbor identity, its role trust policy and a
compliant resource inventory.
"""

import pytest

from irsaguard.models import (
    KeyManagement,
    Principal,
    ResourceDescriptor,
    ResourceKind,
    TrustPolicy,
    TrustStatement,
)

ACCOUNT_ID = "123456789012"
ROLE_ARN = f"arn:aws:iam::{ACCOUNT_ID}:role/HarborS3Role"
ISSUER = "oidc.eks.us-east-1.amazonaws.com/id/EXAMPLED539D4633E53DE1B71EXAMPLE"
PROVIDER_ARN = f"arn:aws:iam::{ACCOUNT_ID}:oidc-provider/{ISSUER}"
SUBJECT = "system:serviceaccount:harbor:harbor-registry"
AUDIENCE = "sts.amazonaws.com"
TAGS = {"Project": "harbor-irsa-workshop", "Environment": "dev", "ManagedBy": "terraform"}


def make_trust_document(subject=SUBJECT, audience=AUDIENCE):
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Federated": PROVIDER_ARN},
                "Action": "sts:AssumeRoleWithWebIdentity",
                "Condition": {
                    "StringEquals": {
                        f"{ISSUER}:sub": subject,
                        f"{ISSUER}:aud": audience,
                    }
                },
            }
        ],
    }


@pytest.fixture
def trust_document():
    return make_trust_document


@pytest.fixture
def canonical():
    return Principal(
        namespace="harbor",
        service_account="harbor-registry",
        audience=AUDIENCE,
        has_annotation=True,
        annotated_role_ref=ROLE_ARN,
    )


@pytest.fixture
def policy():
    return TrustPolicy(
        role_arn=ROLE_ARN,
        statements=(TrustStatement(PROVIDER_ARN, SUBJECT, AUDIENCE),),
    )


@pytest.fixture
def broken_policy():
    # misspelled namespace in the subject claim
    return TrustPolicy(
        role_arn=ROLE_ARN,
        statements=(TrustStatement(PROVIDER_ARN, "system:serviceaccount:harbour:harbor-registry", AUDIENCE),),
    )


@pytest.fixture
def compliant_resources():
    return [
        ResourceDescriptor(
            kind=ResourceKind.OBJECT_STORE,
            name="s3://harbor-registry-storage",
            tags=TAGS,
            encryption_enabled=True,
            encryption_key_managed=KeyManagement.CUSTOMER_MANAGED,
            public_access_blocked=True,
            versioning_enabled=True,
        ),
        ResourceDescriptor(
            kind=ResourceKind.ENCRYPTION_KEY,
            name="kms:harbor-s3",
            tags=TAGS,
            encryption_enabled=True,
            encryption_key_managed=KeyManagement.CUSTOMER_MANAGED,
            key_rotation_enabled=True,
        ),
        ResourceDescriptor(
            kind=ResourceKind.IDENTITY_ROLE,
            name=ROLE_ARN,
            tags=TAGS,
            attached_policy_count=1,
        ),
        ResourceDescriptor(
            kind=ResourceKind.CLUSTER,
            name="eks:harbor-irsa-workshop",
            tags=TAGS,
            encryption_enabled=True,
        ),
    ]


@pytest.fixture
def input_document(trust_document):
    """Offline input file contents for --mode dummy."""
    return {
        "service_accounts": [
            {
                "metadata": {
                    "namespace": "harbor",
                    "name": "harbor-registry",
                    "annotations": {"eks.amazonaws.com/role-arn": ROLE_ARN},
                }
            },
            {"metadata": {"namespace": "default", "name": "default"}},
        ],
        "role": {"arn": ROLE_ARN, "trust_policy": trust_document()},
        "resources": [
            {
                "kind": "ObjectStore",
                "name": "s3://harbor-registry-storage",
                "tags": TAGS,
                "encryption_enabled": True,
                "encryption_key_managed": "CustomerManaged",
                "public_access_blocked": True,
                "versioning_enabled": True,
            },
            {
                "kind": "EncryptionKey",
                "name": "kms:harbor-s3",
                "tags": TAGS,
                "encryption_enabled": True,
                "encryption_key_managed": "CustomerManaged",
                "key_rotation_enabled": True,
            },
        ],
    }


@pytest.fixture
def aws_credentials(monkeypatch):
    """Mocked AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
