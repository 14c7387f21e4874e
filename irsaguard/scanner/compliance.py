# irsaguard/scanner/compliance.py
"""
Resource compliance rules.

- Pure-rule functions that accept a ResourceDescriptor snapshot.
- scan() applies every rule; each rule returns zero or more Violations and a
  resource may accumulate several.
- Rules per kind:
  * all kinds: required tags
  * ObjectStore: encryption, customer-managed key, public access block, versioning
  * EncryptionKey: rotation
  * IdentityRole: attached policy count, broad AWS-managed policies
  * Cluster: tags only
- Kinds without rules produce no violations. This is a known gap, not a pass.
"""

from typing import Callable, List

from irsaguard.config import (
    DEFAULT_SEVERITY_CRITICAL,
    DEFAULT_SEVERITY_INFO,
    DEFAULT_SEVERITY_WARNING,
    MAX_ATTACHED_POLICIES,
    REQUIRED_TAGS,
)
from irsaguard.models import KeyManagement, ResourceDescriptor, ResourceKind, Rule, Violation


def _violation(resource: ResourceDescriptor, rule: Rule, severity: int, details: str,
               rule_id: str, **extra: str) -> Violation:
    metadata = {"rule_id": rule_id, "kind": resource.kind.value}
    metadata.update(extra)
    return Violation(resource=resource.name, rule=rule, severity=severity,
                     details=details, metadata=metadata)

# --- Rules -------------------------------------------------------------------

def check_required_tags(resource: ResourceDescriptor) -> List[Violation]:
    return [
        _violation(resource, Rule.MISSING_TAG, DEFAULT_SEVERITY_INFO,
                   f"Required tag {key!r} is missing", "TAG-001", tag=key)
        for key in REQUIRED_TAGS
        if key not in resource.tags
    ]


def check_encryption(resource: ResourceDescriptor) -> List[Violation]:
    if resource.kind is not ResourceKind.OBJECT_STORE or resource.encryption_enabled:
        return []
    return [_violation(resource, Rule.ENCRYPTION_DISABLED, DEFAULT_SEVERITY_CRITICAL,
                       "No default encryption configured", "S3-ENC-001")]


def check_customer_managed_key(resource: ResourceDescriptor) -> List[Violation]:
    if resource.kind is not ResourceKind.OBJECT_STORE:
        return []
    if resource.encryption_key_managed is KeyManagement.CUSTOMER_MANAGED:
        return []
    return [_violation(resource, Rule.NOT_CUSTOMER_MANAGED_KEY, DEFAULT_SEVERITY_WARNING,
                       f"Encryption key management is {resource.encryption_key_managed.value}",
                       "S3-ENC-002")]


def check_key_rotation(resource: ResourceDescriptor) -> List[Violation]:
    if resource.kind is not ResourceKind.ENCRYPTION_KEY or resource.key_rotation_enabled:
        return []
    return [_violation(resource, Rule.ROTATION_DISABLED, DEFAULT_SEVERITY_WARNING,
                       "Automatic key rotation is disabled", "KMS-ROT-001")]


def check_public_access_block(resource: ResourceDescriptor) -> List[Violation]:
    if resource.kind is not ResourceKind.OBJECT_STORE or resource.public_access_blocked:
        return []
    return [_violation(resource, Rule.PUBLIC_ACCESS_NOT_BLOCKED, DEFAULT_SEVERITY_CRITICAL,
                       "Public access block is missing or permissive", "S3-PAB-001")]


def check_versioning(resource: ResourceDescriptor) -> List[Violation]:
    if resource.kind is not ResourceKind.OBJECT_STORE or resource.versioning_enabled:
        return []
    return [_violation(resource, Rule.VERSIONING_DISABLED, DEFAULT_SEVERITY_WARNING,
                       "Versioning is not enabled", "S3-VERS-001")]


def check_policy_count(resource: ResourceDescriptor) -> List[Violation]:
    if resource.kind is not ResourceKind.IDENTITY_ROLE:
        return []
    if resource.attached_policy_count <= MAX_ATTACHED_POLICIES:
        return []
    return [_violation(resource, Rule.EXCESSIVE_POLICY_COUNT, DEFAULT_SEVERITY_WARNING,
                       f"{resource.attached_policy_count} attached policies "
                       f"(max {MAX_ATTACHED_POLICIES})", "IAM-POL-001")]


def check_broad_managed_policy(resource: ResourceDescriptor) -> List[Violation]:
    if resource.kind is not ResourceKind.IDENTITY_ROLE or not resource.uses_managed_broad_policy:
        return []
    return [_violation(resource, Rule.BROAD_MANAGED_POLICY_USED, DEFAULT_SEVERITY_CRITICAL,
                       "A broad AWS-managed policy is attached", "IAM-POL-002")]


RULES: List[Callable[[ResourceDescriptor], List[Violation]]] = [
    check_required_tags,
    check_encryption,
    check_customer_managed_key,
    check_key_rotation,
    check_public_access_block,
    check_versioning,
    check_policy_count,
    check_broad_managed_policy,
]

# --- High-level scanning ---------------------------------------------------

def scan(resource: ResourceDescriptor) -> List[Violation]:
    """Apply every rule to one resource snapshot and return all violations."""
    violations: List[Violation] = []
    for rule in RULES:
        violations.extend(rule(resource))
    return violations


def is_compliant(resource: ResourceDescriptor) -> bool:
    return not scan(resource)
