# tests/test_aws_inventory.py
"""
Unit and integration tests for the AWS inventory.

- Uses moto to mock S3, KMS, IAM and STS for live-mode tests.
- Uses botocore's Stubber for EKS and for API error paths.
- Verifies that live snapshots feed the compliance scanner and the harness.
"""

import json
import socket
import threading
import time

import boto3
import pytest
from botocore.config import Config
from botocore.stub import Stubber
from moto import mock_aws

from irsaguard.exceptions import MalformedInputError, PreconditionError, QueryTimeoutError
from irsaguard.harness import run
from irsaguard.models import KeyManagement, ResourceKind, ResultKind, Rule
from irsaguard.scanner.aws_inventory import (
    check_credentials,
    client_config,
    describe_bucket_live,
    describe_cluster_live,
    describe_key_live,
    describe_role_live,
    fetch_trust_policy_live,
    is_broad_managed_policy,
    key_management_from_encryption,
    live_queries,
    resource_from_dict,
    resources_from_json,
    role_name_from_arn,
)
from irsaguard.scanner.compliance import scan
from irsaguard.scanner.trust import evaluate

from conftest import ROLE_ARN, TAGS, make_trust_document


def tag_set(key_name="Key", value_name="Value"):
    return [{key_name: k, value_name: v} for k, v in TAGS.items()]


class StubbedSession:
    """Minimal stand-in for boto3.Session that always hands out one client."""

    def __init__(self, client):
        self._client = client

    def client(self, service_name, config=None):
        return self._client


class EndpointSession:
    """boto3.Session whose clients all talk to one local endpoint."""

    def __init__(self, endpoint_url):
        self._session = boto3.Session(region_name="us-east-1", aws_access_key_id="testing",
                                      aws_secret_access_key="testing")
        self._endpoint_url = endpoint_url

    def client(self, service_name, config=None):
        config = (config or Config()).merge(Config(s3={"addressing_style": "path"}))
        return self._session.client(service_name, endpoint_url=self._endpoint_url, config=config)


@pytest.fixture
def silent_endpoint(monkeypatch):
    """A TCP endpoint that accepts connections and never answers."""
    for var in ("HTTP_PROXY", "HTTPS_PROXY", "http_proxy", "https_proxy"):
        monkeypatch.delenv(var, raising=False)
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(8)
    yield f"http://127.0.0.1:{server.getsockname()[1]}"
    server.close()

# --- Pure helpers ------------------------------------------------------------

def test_key_management_from_encryption():
    def config(**default):
        return {"ServerSideEncryptionConfiguration": {"Rules": [{"ApplyServerSideEncryptionByDefault": default}]}}

    assert key_management_from_encryption(None) == (False, KeyManagement.NONE)
    assert key_management_from_encryption(config(SSEAlgorithm="AES256")) == (True, KeyManagement.PROVIDER_MANAGED)
    assert key_management_from_encryption(config(SSEAlgorithm="aws:kms")) == (True, KeyManagement.PROVIDER_MANAGED)
    assert key_management_from_encryption(
        config(SSEAlgorithm="aws:kms", KMSMasterKeyID="alias/aws/s3")) == (True, KeyManagement.PROVIDER_MANAGED)
    assert key_management_from_encryption(
        config(SSEAlgorithm="aws:kms", KMSMasterKeyID="arn:aws:kms:us-east-1:123456789012:key/abcd")
    ) == (True, KeyManagement.CUSTOMER_MANAGED)


def test_broad_managed_policies():
    assert is_broad_managed_policy("arn:aws:iam::aws:policy/AmazonS3FullAccess")
    assert not is_broad_managed_policy("arn:aws:iam::aws:policy/AmazonS3ReadOnlyAccess")
    assert not is_broad_managed_policy("arn:aws:iam::123456789012:policy/harbor-s3")


def test_role_name_from_arn():
    assert role_name_from_arn(ROLE_ARN) == "HarborS3Role"
    assert role_name_from_arn("HarborS3Role") == "HarborS3Role"


def test_resources_from_json(input_document):
    resources = resources_from_json(input_document)
    assert [r.kind for r in resources] == [ResourceKind.OBJECT_STORE, ResourceKind.ENCRYPTION_KEY]
    assert all(scan(r) == [] for r in resources)


@pytest.mark.parametrize("entry", [{}, {"kind": "Queue"}, {"kind": "ObjectStore", "encryption_key_managed": "Vault"}])
def test_invalid_resource_entry(entry):
    with pytest.raises(MalformedInputError):
        resource_from_dict(entry)

# --- Live (moto) --------------------------------------------------------------

@mock_aws
def test_compliant_bucket_snapshot(aws_credentials):
    session = boto3.Session(region_name="us-east-1")
    key_arn = session.client("kms").create_key()["KeyMetadata"]["Arn"]
    s3 = session.client("s3")
    s3.create_bucket(Bucket="harbor-registry-storage")
    s3.put_bucket_tagging(Bucket="harbor-registry-storage", Tagging={"TagSet": tag_set()})
    s3.put_bucket_encryption(
        Bucket="harbor-registry-storage",
        ServerSideEncryptionConfiguration={"Rules": [{"ApplyServerSideEncryptionByDefault": {
            "SSEAlgorithm": "aws:kms", "KMSMasterKeyID": key_arn}}]},
    )
    s3.put_bucket_versioning(Bucket="harbor-registry-storage", VersioningConfiguration={"Status": "Enabled"})
    s3.put_public_access_block(Bucket="harbor-registry-storage", PublicAccessBlockConfiguration={
        "BlockPublicAcls": True, "IgnorePublicAcls": True,
        "BlockPublicPolicy": True, "RestrictPublicBuckets": True,
    })

    bucket = describe_bucket_live(session, "harbor-registry-storage")
    assert bucket.name == "s3://harbor-registry-storage"
    assert bucket.encryption_key_managed is KeyManagement.CUSTOMER_MANAGED
    assert scan(bucket) == []


@mock_aws
def test_unconfigured_bucket_snapshot(aws_credentials):
    session = boto3.Session(region_name="us-east-1")
    session.client("s3").create_bucket(Bucket="bare-bucket")

    bucket = describe_bucket_live(session, "bare-bucket")
    assert bucket.tags == {}
    assert not bucket.versioning_enabled
    assert not bucket.public_access_blocked
    rules = [v.rule for v in scan(bucket)]
    assert Rule.VERSIONING_DISABLED in rules
    assert Rule.PUBLIC_ACCESS_NOT_BLOCKED in rules
    assert rules.count(Rule.MISSING_TAG) == 3


@mock_aws
def test_missing_bucket_is_a_precondition_error(aws_credentials):
    with pytest.raises(PreconditionError):
        describe_bucket_live(boto3.Session(region_name="us-east-1"), "does-not-exist")


@mock_aws
def test_key_snapshot(aws_credentials):
    session = boto3.Session(region_name="us-east-1")
    kms = session.client("kms")
    key_id = kms.create_key(Tags=tag_set("TagKey", "TagValue"))["KeyMetadata"]["KeyId"]

    key = describe_key_live(session, key_id)
    assert key.kind is ResourceKind.ENCRYPTION_KEY
    assert key.encryption_key_managed is KeyManagement.CUSTOMER_MANAGED
    assert [v.rule for v in scan(key)] == [Rule.ROTATION_DISABLED]

    kms.enable_key_rotation(KeyId=key_id)
    assert scan(describe_key_live(session, key_id)) == []


@mock_aws
def test_role_snapshot_and_trust_policy(aws_credentials, canonical):
    session = boto3.Session(region_name="us-east-1")
    iam = session.client("iam")
    iam.create_role(RoleName="HarborS3Role",
                    AssumeRolePolicyDocument=json.dumps(make_trust_document()),
                    Tags=tag_set())
    document = json.dumps({"Version": "2012-10-17", "Statement": [
        {"Effect": "Allow", "Action": "s3:ListBucket", "Resource": "*"}]})
    for i in range(4):
        arn = iam.create_policy(PolicyName=f"harbor-s3-{i}", PolicyDocument=document)["Policy"]["Arn"]
        iam.attach_role_policy(RoleName="HarborS3Role", PolicyArn=arn)

    role = describe_role_live(session, "HarborS3Role")
    assert role.name == ROLE_ARN
    assert role.attached_policy_count == 4
    assert not role.uses_managed_broad_policy
    assert [v.rule for v in scan(role)] == [Rule.EXCESSIVE_POLICY_COUNT]

    policy = fetch_trust_policy_live(session, "HarborS3Role")
    assert policy.role_arn == ROLE_ARN
    assert evaluate(canonical, policy).allowed


@mock_aws
def test_live_queries_through_harness(aws_credentials, canonical, policy):
    session = boto3.Session(region_name="us-east-1")
    assert check_credentials(session)["Account"]
    session.client("s3").create_bucket(Bucket="bare-bucket")

    queries = live_queries(session, bucket="bare-bucket")
    assert [q.name for q in queries] == ["s3://bare-bucket"]
    report = run(10, canonical, policy, queries, seed=0)
    assert report.failed > 0
    assert all(r.scenario_id.startswith("resource:s3://bare-bucket") for r in report.failures)

# --- Stubbed -------------------------------------------------------------------

def test_cluster_snapshot():
    eks = boto3.client("eks", region_name="us-east-1",
                       aws_access_key_id="testing", aws_secret_access_key="testing")
    with Stubber(eks) as stubber:
        stubber.add_response("describe_cluster", {"cluster": {
            "name": "harbor-irsa-workshop",
            "arn": "arn:aws:eks:us-east-1:123456789012:cluster/harbor-irsa-workshop",
            "tags": TAGS,
            "encryptionConfig": [{"resources": ["secrets"], "provider": {"keyArn": "arn:aws:kms:k"}}],
        }}, {"name": "harbor-irsa-workshop"})
        cluster = describe_cluster_live(StubbedSession(eks), "harbor-irsa-workshop")
    assert cluster.kind is ResourceKind.CLUSTER
    assert cluster.encryption_enabled
    assert scan(cluster) == []


def test_access_denied_is_a_precondition_error():
    iam = boto3.client("iam", region_name="us-east-1",
                       aws_access_key_id="testing", aws_secret_access_key="testing")
    with Stubber(iam) as stubber:
        stubber.add_client_error("get_role", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(PreconditionError):
            fetch_trust_policy_live(StubbedSession(iam), "HarborS3Role")

# --- Timeouts -------------------------------------------------------------------

def test_client_config_bounds_every_call():
    config = client_config(2.5)
    assert config.connect_timeout == 2.5
    assert config.read_timeout == 2.5
    assert config.retries == {"max_attempts": 2, "mode": "standard"}


def test_hung_endpoint_times_out(silent_endpoint):
    session = EndpointSession(silent_endpoint)
    with pytest.raises(QueryTimeoutError):
        describe_bucket_live(session, "harbor-registry-storage", client_config(0.2, max_attempts=1))


def test_hung_endpoint_leaves_no_worker_behind(silent_endpoint, canonical, policy):
    queries = live_queries(EndpointSession(silent_endpoint), bucket="harbor-registry-storage",
                           config=client_config(0.2, max_attempts=1))
    started = time.monotonic()
    report = run(10, canonical, policy, queries, seed=0, query_timeout=5)
    assert time.monotonic() - started < 5
    assert [(r.kind, r.detail) for r in report.failures] == [(ResultKind.TIMEOUT, "timeout")]
    assert not [t for t in threading.enumerate() if t.name.startswith("irsaguard-query")]
