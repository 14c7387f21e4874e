# irsaguard/scanner/aws_inventory.py
"""
AWS resource inventory.

- Live helpers read one attribute each through a boto3 Session; "not
  configured" responses map to empty values, any other API error surfaces as
  PreconditionError (the inventory is unreachable or we lack permissions).
- Clients are built with client_config(): connect and read timeouts plus a
  retry cap, so a hung endpoint raises QueryTimeoutError instead of blocking.
- describe_*_live() assemble ResourceDescriptor snapshots:
  * S3 bucket: tags, default encryption, key management, public access block, versioning
  * KMS key: tags, key state, key manager, rotation status
  * IAM role: tags, attached policy count, broad AWS-managed policies
  * EKS cluster: tags, secrets encryption
- resources_from_json() is the offline counterpart fed from a JSON file.
"""

import functools
import logging
from typing import Any, Dict, List, Optional, Tuple

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, ConnectTimeoutError, ReadTimeoutError

from irsaguard.config import (
    AWS_MANAGED_POLICY_PREFIX,
    AWS_MANAGED_S3_KEY_ALIAS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_QUERY_TIMEOUT,
)
from irsaguard.exceptions import MalformedInputError, PreconditionError, QueryTimeoutError
from irsaguard.models import KeyManagement, ResourceDescriptor, ResourceKind, ResourceQuery, TrustPolicy
from irsaguard.scanner.trust import parse_trust_policy

logger = logging.getLogger("irsaguard.inventory")

PUBLIC_ACCESS_BLOCK_SETTINGS = (
    "BlockPublicAcls",
    "IgnorePublicAcls",
    "BlockPublicPolicy",
    "RestrictPublicBuckets",
)

AWS_TIMEOUTS = (ConnectTimeoutError, ReadTimeoutError)

# --- Pure helpers ------------------------------------------------------------

def error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


def role_name_from_arn(role_arn: str) -> str:
    """Extract role name from ARN or return the input if it's already a role name."""
    if role_arn.startswith("arn:aws:iam::"):
        return role_arn.split("/")[-1]
    return role_arn


def key_management_from_encryption(encryption: Optional[Dict[str, Any]]) -> Tuple[bool, KeyManagement]:
    """
    Read a GetBucketEncryption response.

    aws:kms with an explicit key that is not the aws/s3 alias counts as
    customer-managed; any other algorithm is provider-managed.
    """
    if not encryption:
        return False, KeyManagement.NONE
    rules = encryption.get("ServerSideEncryptionConfiguration", {}).get("Rules", [])
    if not rules:
        return False, KeyManagement.NONE
    default = rules[0].get("ApplyServerSideEncryptionByDefault", {}) or {}
    algorithm = default.get("SSEAlgorithm")
    if not algorithm:
        return False, KeyManagement.NONE
    if algorithm.startswith("aws:kms"):
        key_id = default.get("KMSMasterKeyID") or ""
        if key_id and not key_id.endswith(AWS_MANAGED_S3_KEY_ALIAS):
            return True, KeyManagement.CUSTOMER_MANAGED
    return True, KeyManagement.PROVIDER_MANAGED


def public_access_fully_blocked(config: Optional[Dict[str, Any]]) -> bool:
    if not config:
        return False
    return all(config.get(k) is True for k in PUBLIC_ACCESS_BLOCK_SETTINGS)


def is_broad_managed_policy(policy_arn: str) -> bool:
    """AWS-managed policies are broad unless they are read-only."""
    return policy_arn.startswith(AWS_MANAGED_POLICY_PREFIX) and "ReadOnly" not in policy_arn


def _read_timeout(config: Optional[Config]) -> float:
    if config is None or config.read_timeout is None:
        return DEFAULT_QUERY_TIMEOUT
    return config.read_timeout

# --- Live AWS helpers -----------------------------------------------------

def client_config(timeout: float = DEFAULT_QUERY_TIMEOUT,
                  max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> Config:
    """Bound every AWS call so a hung endpoint cannot outlive the query deadline."""
    return Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"max_attempts": max_attempts, "mode": "standard"},
    )


def check_credentials(session, config: Optional[Config] = None) -> Dict[str, Any]:
    """Return the STS caller identity; missing or invalid credentials are a precondition failure."""
    sts = session.client("sts", config=config)
    try:
        return sts.get_caller_identity()
    except AWS_TIMEOUTS as e:
        raise QueryTimeoutError("sts:GetCallerIdentity", _read_timeout(config)) from e
    except (ClientError, BotoCoreError) as e:
        raise PreconditionError(f"AWS credentials unavailable: {e}") from e


def get_bucket_tags_live(session, bucket_name: str, config: Optional[Config] = None) -> Dict[str, str]:
    s3 = session.client("s3", config=config)
    try:
        resp = s3.get_bucket_tagging(Bucket=bucket_name)
    except ClientError as e:
        if error_code(e) == "NoSuchTagSet":
            return {}
        raise
    return {t["Key"]: t["Value"] for t in resp.get("TagSet", [])}


def get_bucket_encryption_live(session, bucket_name: str,
                               config: Optional[Config] = None) -> Optional[Dict[str, Any]]:
    """Return bucket encryption configuration or None if not set."""
    s3 = session.client("s3", config=config)
    try:
        return s3.get_bucket_encryption(Bucket=bucket_name)
    except ClientError as e:
        if error_code(e) == "ServerSideEncryptionConfigurationNotFoundError":
            return None
        raise


def get_public_access_block_live(session, bucket_name: str,
                                 config: Optional[Config] = None) -> Optional[Dict[str, Any]]:
    """Return PublicAccessBlock configuration or None if not set."""
    s3 = session.client("s3", config=config)
    try:
        resp = s3.get_public_access_block(Bucket=bucket_name)
    except ClientError as e:
        if error_code(e) == "NoSuchPublicAccessBlockConfiguration":
            return None
        raise
    return resp.get("PublicAccessBlockConfiguration", {})


def get_bucket_versioning_live(session, bucket_name: str, config: Optional[Config] = None) -> bool:
    s3 = session.client("s3", config=config)
    resp = s3.get_bucket_versioning(Bucket=bucket_name)
    return resp.get("Status") == "Enabled"


def describe_bucket_live(session, bucket_name: str, config: Optional[Config] = None) -> ResourceDescriptor:
    try:
        tags = get_bucket_tags_live(session, bucket_name, config)
        enabled, managed = key_management_from_encryption(
            get_bucket_encryption_live(session, bucket_name, config))
        blocked = public_access_fully_blocked(get_public_access_block_live(session, bucket_name, config))
        versioning = get_bucket_versioning_live(session, bucket_name, config)
    except AWS_TIMEOUTS as e:
        raise QueryTimeoutError(f"s3://{bucket_name}", _read_timeout(config)) from e
    except (ClientError, BotoCoreError) as e:
        raise PreconditionError(f"Cannot read S3 bucket {bucket_name}: {e}") from e
    return ResourceDescriptor(
        kind=ResourceKind.OBJECT_STORE,
        name=f"s3://{bucket_name}",
        tags=tags,
        encryption_enabled=enabled,
        encryption_key_managed=managed,
        public_access_blocked=blocked,
        versioning_enabled=versioning,
    )


def describe_key_live(session, key_id: str, config: Optional[Config] = None) -> ResourceDescriptor:
    kms = session.client("kms", config=config)
    try:
        metadata = kms.describe_key(KeyId=key_id)["KeyMetadata"]
        rotation = kms.get_key_rotation_status(KeyId=key_id).get("KeyRotationEnabled", False)
        tags = {t["TagKey"]: t["TagValue"]
                for t in kms.list_resource_tags(KeyId=key_id).get("Tags", [])}
    except AWS_TIMEOUTS as e:
        raise QueryTimeoutError(f"kms:{key_id}", _read_timeout(config)) from e
    except (ClientError, BotoCoreError) as e:
        raise PreconditionError(f"Cannot read KMS key {key_id}: {e}") from e
    managed = (KeyManagement.CUSTOMER_MANAGED if metadata.get("KeyManager") == "CUSTOMER"
               else KeyManagement.PROVIDER_MANAGED)
    return ResourceDescriptor(
        kind=ResourceKind.ENCRYPTION_KEY,
        name=metadata.get("Arn") or f"kms:{key_id}",
        tags=tags,
        encryption_enabled=metadata.get("KeyState") == "Enabled",
        encryption_key_managed=managed,
        key_rotation_enabled=bool(rotation),
    )


def list_attached_policy_arns_live(session, role_name: str, config: Optional[Config] = None) -> List[str]:
    iam = session.client("iam", config=config)
    arns: List[str] = []
    paginator = iam.get_paginator("list_attached_role_policies")
    for page in paginator.paginate(RoleName=role_name):
        arns.extend(p["PolicyArn"] for p in page.get("AttachedPolicies", []))
    return arns


def describe_role_live(session, role_name: str, config: Optional[Config] = None) -> ResourceDescriptor:
    iam = session.client("iam", config=config)
    try:
        role = iam.get_role(RoleName=role_name)["Role"]
        policy_arns = list_attached_policy_arns_live(session, role_name, config)
    except AWS_TIMEOUTS as e:
        raise QueryTimeoutError(f"iam:{role_name}", _read_timeout(config)) from e
    except (ClientError, BotoCoreError) as e:
        raise PreconditionError(f"Cannot read IAM role {role_name}: {e}") from e
    return ResourceDescriptor(
        kind=ResourceKind.IDENTITY_ROLE,
        name=role.get("Arn", role_name),
        tags={t["Key"]: t["Value"] for t in role.get("Tags", [])},
        attached_policy_count=len(policy_arns),
        uses_managed_broad_policy=any(is_broad_managed_policy(a) for a in policy_arns),
    )


def describe_cluster_live(session, cluster_name: str, config: Optional[Config] = None) -> ResourceDescriptor:
    eks = session.client("eks", config=config)
    try:
        cluster = eks.describe_cluster(name=cluster_name)["cluster"]
    except AWS_TIMEOUTS as e:
        raise QueryTimeoutError(f"eks:{cluster_name}", _read_timeout(config)) from e
    except (ClientError, BotoCoreError) as e:
        raise PreconditionError(f"Cannot read EKS cluster {cluster_name}: {e}") from e
    return ResourceDescriptor(
        kind=ResourceKind.CLUSTER,
        name=cluster.get("arn", cluster_name),
        tags=cluster.get("tags", {}) or {},
        encryption_enabled=bool(cluster.get("encryptionConfig")),
    )


def fetch_trust_policy_live(session, role_name: str, config: Optional[Config] = None) -> TrustPolicy:
    """Read the role's AssumeRolePolicyDocument and parse it into a TrustPolicy."""
    iam = session.client("iam", config=config)
    try:
        role = iam.get_role(RoleName=role_name)["Role"]
    except AWS_TIMEOUTS as e:
        raise QueryTimeoutError(f"trust policy of {role_name}", _read_timeout(config)) from e
    except (ClientError, BotoCoreError) as e:
        raise PreconditionError(f"Cannot read trust policy of {role_name}: {e}") from e
    return parse_trust_policy(role["Arn"], role.get("AssumeRolePolicyDocument", {}))


def live_queries(session, bucket: Optional[str] = None, key_id: Optional[str] = None,
                 role_name: Optional[str] = None, cluster_name: Optional[str] = None,
                 config: Optional[Config] = None) -> List[ResourceQuery]:
    """Build one deferred query per named resource; the harness runs them with a timeout."""
    queries: List[ResourceQuery] = []
    if bucket:
        queries.append(ResourceQuery(f"s3://{bucket}",
                                     functools.partial(describe_bucket_live, session, bucket, config)))
    if key_id:
        queries.append(ResourceQuery(f"kms:{key_id}",
                                     functools.partial(describe_key_live, session, key_id, config)))
    if role_name:
        queries.append(ResourceQuery(f"iam:{role_name}",
                                     functools.partial(describe_role_live, session, role_name, config)))
    if cluster_name:
        queries.append(ResourceQuery(f"eks:{cluster_name}",
                                     functools.partial(describe_cluster_live, session, cluster_name, config)))
    return queries

# --- Offline inventory -------------------------------------------------------

def resource_from_dict(data: Dict[str, Any]) -> ResourceDescriptor:
    """
    Build a descriptor from a JSON object using the descriptor's field names.
    Unknown kinds or key-management values are malformed input.
    """
    try:
        kind = ResourceKind(data["kind"])
        managed = KeyManagement(data.get("encryption_key_managed", KeyManagement.NONE.value))
    except (KeyError, ValueError) as e:
        raise MalformedInputError(f"Invalid resource entry {data!r}: {e}") from e
    return ResourceDescriptor(
        kind=kind,
        name=str(data.get("name") or kind.value),
        tags={str(k): str(v) for k, v in (data.get("tags") or {}).items()},
        encryption_enabled=bool(data.get("encryption_enabled", False)),
        encryption_key_managed=managed,
        key_rotation_enabled=bool(data.get("key_rotation_enabled", False)),
        public_access_blocked=bool(data.get("public_access_blocked", False)),
        versioning_enabled=bool(data.get("versioning_enabled", False)),
        attached_policy_count=int(data.get("attached_policy_count", 0)),
        uses_managed_broad_policy=bool(data.get("uses_managed_broad_policy", False)),
    )


def resources_from_json(data: Dict[str, Any]) -> List[ResourceDescriptor]:
    """
    Dummy-mode inventory: accepts a JSON-like dict describing resources.
    Expected shape:
    {
      "resources": [
        { "kind": "ObjectStore", "name": "s3://bucket", "tags": {...}, "versioning_enabled": true },
        ...
      ]
    }
    """
    resources = [resource_from_dict(r) for r in data.get("resources", [])]
    logger.debug("Loaded %d resource(s) from offline inventory", len(resources))
    return resources
