# irsaguard/config.py
"""
Central configuration and tunable constants.

- Canonical identity, region and iteration floor can be overridden by CLI args
  or environment variables (CLI -> env -> default here).
- Severity thresholds and compliance limits are centralized for easy tuning.
"""

# Severity scale: 0 (info) to 10 (critical)
DEFAULT_SEVERITY_CRITICAL = 9
DEFAULT_SEVERITY_WARNING = 5
DEFAULT_SEVERITY_INFO = 3

# Canonical workload identity (the only principal allowed to assume the role)
DEFAULT_CANONICAL_NAMESPACE = "harbor"
DEFAULT_CANONICAL_SERVICE_ACCOUNT = "harbor-registry"
DEFAULT_AUDIENCE = "sts.amazonaws.com"

# Annotation the EKS pod identity webhook reads to inject web-identity credentials
ROLE_ANNOTATION = "eks.amazonaws.com/role-arn"
WEB_IDENTITY_ACTION = "sts:AssumeRoleWithWebIdentity"
SUBJECT_PREFIX = "system:serviceaccount:"

# Property harness
DEFAULT_ITERATIONS = 10
DEFAULT_MIN_ITERATIONS = 10
DEFAULT_SEED = 0
DEFAULT_QUERY_TIMEOUT = 30.0   # seconds, per external query
DEFAULT_MAX_WORKERS = 4
DEFAULT_MAX_ATTEMPTS = 2     # AWS call attempts, retries included

# Compliance rule set
REQUIRED_TAGS = ("Project", "Environment", "ManagedBy")
MAX_ATTACHED_POLICIES = 3
AWS_MANAGED_POLICY_PREFIX = "arn:aws:iam::aws:policy/"
AWS_MANAGED_S3_KEY_ALIAS = "alias/aws/s3"

# Names used when generating unauthorized identities
UNAUTHORIZED_NAMESPACES = ("default", "kube-system", "test-namespace", "unauthorized-ns")
UNAUTHORIZED_SERVICE_ACCOUNTS = ("default", "test-sa", "unauthorized-sa", "fake-harbor")
UNAUTHORIZED_AUDIENCES = ("sts.amazonaws.com.evil", "https://kubernetes.default.svc", "vault")

# No default role: the canonical role ARN comes from the service account
# annotation or from --role-arn.
DEFAULT_AWS_REGION = "us-east-1"
