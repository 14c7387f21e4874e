# irsaguard/models.py
"""
Data models used by the engine.

- Keep simple, immutable dataclasses: every value is owned by one harness run.
- Enums carry the string values that appear in reports.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Optional, Tuple

from irsaguard.config import SUBJECT_PREFIX
from irsaguard.exceptions import MalformedInputError


class Effect(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"


class Reason(str, Enum):
    MATCHED = "Matched"
    NO_ANNOTATION = "NoAnnotation"
    ROLE_MISMATCH = "RoleMismatch"
    CLAIM_MISMATCH = "ClaimMismatch"


class ResourceKind(str, Enum):
    OBJECT_STORE = "ObjectStore"
    ENCRYPTION_KEY = "EncryptionKey"
    IDENTITY_ROLE = "IdentityRole"
    CLUSTER = "Cluster"


class KeyManagement(str, Enum):
    NONE = "None"
    PROVIDER_MANAGED = "ProviderManaged"
    CUSTOMER_MANAGED = "CustomerManaged"


class Rule(str, Enum):
    MISSING_TAG = "MissingTag"
    ENCRYPTION_DISABLED = "EncryptionDisabled"
    NOT_CUSTOMER_MANAGED_KEY = "NotCustomerManagedKey"
    ROTATION_DISABLED = "RotationDisabled"
    PUBLIC_ACCESS_NOT_BLOCKED = "PublicAccessNotBlocked"
    VERSIONING_DISABLED = "VersioningDisabled"
    EXCESSIVE_POLICY_COUNT = "ExcessivePolicyCount"
    BROAD_MANAGED_POLICY_USED = "BroadManagedPolicyUsed"


class Outcome(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"
    COMPLIANT = "Compliant"
    NON_COMPLIANT = "NonCompliant"
    ERROR = "Error"


class ScenarioKind(str, Enum):
    CANONICAL = "canonical"
    WRONG_NAMESPACE = "wrong-namespace"
    WRONG_SERVICE_ACCOUNT = "wrong-service-account"
    RANDOM_UNRELATED = "random-unrelated"
    MISSING_ANNOTATION = "missing-annotation"
    WRONG_AUDIENCE = "wrong-audience"
    WRONG_ROLE = "wrong-role"


class ResultKind(str, Enum):
    SCENARIO = "scenario"
    COMPLIANCE = "compliance"
    TIMEOUT = "timeout"
    PRECONDITION = "precondition"
    COVERAGE = "coverage"
    CANCELLED = "cancelled"


class RunOutcome(str, Enum):
    SUCCESS = "Success"
    FAILURE = "Failure"


@dataclass(frozen=True)
class Principal:
    """
    The identity attempting to obtain delegated credentials.

    Fields:
    - namespace / service_account: Kubernetes identity of the workload
    - audience: the `aud` claim of the projected token it presents
    - has_annotation: whether the service account carries the role annotation
    - annotated_role_ref: the role ARN in that annotation, if any
    """
    namespace: str
    service_account: str
    audience: str
    has_annotation: bool = False
    annotated_role_ref: Optional[str] = None

    @property
    def subject(self) -> str:
        return f"{SUBJECT_PREFIX}{self.namespace}:{self.service_account}"

    def validate(self) -> None:
        if not self.namespace or not self.service_account:
            raise MalformedInputError(
                f"principal needs a namespace and a service account, got "
                f"namespace={self.namespace!r} service_account={self.service_account!r}"
            )
        if self.annotated_role_ref is not None and not self.has_annotation:
            raise MalformedInputError(
                f"principal {self.subject} has a role ref but no annotation"
            )


@dataclass(frozen=True)
class TrustStatement:
    federated_provider_id: str
    required_subject_claim: str
    required_audience: str


@dataclass(frozen=True)
class TrustPolicy:
    """Ordered trust statements of the role identified by role_arn."""
    role_arn: str
    statements: Tuple[TrustStatement, ...] = ()


@dataclass(frozen=True)
class Decision:
    effect: Effect
    reason: Reason
    detail: str = ""

    @property
    def allowed(self) -> bool:
        return self.effect is Effect.ALLOW


@dataclass(frozen=True)
class ResourceDescriptor:
    """
    Snapshot of a provisioned resource's security-relevant attributes.

    The scanner only reads these; it never touches the live resource.
    """
    kind: ResourceKind
    name: str
    tags: Mapping[str, str] = field(default_factory=dict)
    encryption_enabled: bool = False
    encryption_key_managed: KeyManagement = KeyManagement.NONE
    key_rotation_enabled: bool = False
    public_access_blocked: bool = False
    versioning_enabled: bool = False
    attached_policy_count: int = 0
    uses_managed_broad_policy: bool = False

    def __post_init__(self):
        # snapshot: detach from the caller's dict and expose it read-only
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))


@dataclass(frozen=True)
class Violation:
    """
    A single compliance finding.

    Fields:
    - resource: the descriptor name (e.g. "s3://harbor-registry-storage")
    - rule: which rule failed
    - severity: numeric severity (0-10)
    - details: free-text details useful for triage
    - metadata: rule id and rule-specific context (e.g. the missing tag key)
    """
    resource: str
    rule: Rule
    severity: int
    details: str = ""
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True)
class ResourceQuery:
    """A named, read-only fetch of one ResourceDescriptor from a live inventory."""
    name: str
    fetch: Callable[[], ResourceDescriptor]

    def __call__(self) -> ResourceDescriptor:
        return self.fetch()


@dataclass(frozen=True)
class Scenario:
    scenario_id: str
    kind: ScenarioKind
    principal: Principal
    policy: TrustPolicy
    expected: Outcome
    expected_reason: Optional[Reason] = None
    resource: Optional[ResourceDescriptor] = None


@dataclass(frozen=True)
class TestResult:
    __test__ = False  # not a pytest class

    scenario_id: str
    actual: Optional[Outcome]
    expected: Optional[Outcome]
    passed: bool
    detail: str = ""
    kind: ResultKind = ResultKind.SCENARIO


@dataclass(frozen=True)
class Report:
    """Outcome of one harness run. Counts are derived from results, never stored."""
    seed: int
    iterations: int
    min_iterations: int
    results: Tuple[TestResult, ...] = ()
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def pass_rate(self) -> float:
        if not self.results:
            return 0.0
        return round(100.0 * self.passed / self.total, 1)

    @property
    def failures(self) -> Tuple[TestResult, ...]:
        return tuple(r for r in self.results if not r.passed)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def state(self) -> RunOutcome:
        return RunOutcome.SUCCESS if self.ok else RunOutcome.FAILURE

    @property
    def scenario_count(self) -> int:
        return sum(1 for r in self.results if r.kind in (ResultKind.SCENARIO, ResultKind.PRECONDITION))
