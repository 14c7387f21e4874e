# irsaguard/scanner/trust.py
"""
Trust policy evaluation.

- evaluate() is the pure decision function: principal + policy -> Decision.
- parse_trust_policy() turns an IAM AssumeRolePolicyDocument into a TrustPolicy.
- Claims are compared as exact, case-sensitive strings. A one-character
  namespace typo must Deny.
"""

import itertools
import json
import logging
from typing import Any, Dict, Iterable, List, Union

from irsaguard.config import WEB_IDENTITY_ACTION
from irsaguard.exceptions import PreconditionError
from irsaguard.models import (
    Decision,
    Effect,
    Principal,
    Reason,
    TrustPolicy,
    TrustStatement,
)

logger = logging.getLogger("irsaguard.trust")

# --- Pure decision ---------------------------------------------------------

def statement_matches(principal: Principal, statement: TrustStatement) -> bool:
    return (principal.subject == statement.required_subject_claim
            and principal.audience == statement.required_audience)


def evaluate(principal: Principal, policy: TrustPolicy) -> Decision:
    """
    Decide whether principal may assume the role that owns policy.

    Raises MalformedInputError for a malformed principal; every well-formed
    input yields a Decision.
    """
    principal.validate()

    if not principal.has_annotation:
        return Decision(Effect.DENY, Reason.NO_ANNOTATION,
                        f"{principal.subject} has no role annotation")

    if principal.annotated_role_ref != policy.role_arn:
        return Decision(Effect.DENY, Reason.ROLE_MISMATCH,
                        f"annotation references {principal.annotated_role_ref}, "
                        f"policy belongs to {policy.role_arn}")

    for statement in policy.statements:
        if statement_matches(principal, statement):
            return Decision(Effect.ALLOW, Reason.MATCHED,
                            f"{principal.subject} matched {statement.federated_provider_id}")

    return Decision(Effect.DENY, Reason.CLAIM_MISMATCH,
                    f"no statement matches sub={principal.subject} aud={principal.audience}")

# --- Trust document parsing ------------------------------------------------

def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _claims(condition: Dict[str, Any], suffix: str) -> List[str]:
    values: List[str] = []
    for key, value in condition.items():
        if key.endswith(suffix):
            values.extend(str(v) for v in _as_list(value))
    return values


def _has_claim(condition: Dict[str, Any], suffix: str) -> bool:
    return any(key.endswith(suffix) for key in condition)


def _statements_from(stmt: Dict[str, Any], index: int) -> Iterable[TrustStatement]:
    if stmt.get("Effect") != "Allow":
        return []
    if WEB_IDENTITY_ACTION not in _as_list(stmt.get("Action")):
        return []
    principal = stmt.get("Principal")
    if not isinstance(principal, dict) or not principal.get("Federated"):
        return []

    conditions = stmt.get("Condition", {}) or {}
    string_equals = conditions.get("StringEquals", {}) or {}
    string_like = conditions.get("StringLike", {}) or {}

    subjects = _claims(string_equals, ":sub")
    audiences = _claims(string_equals, ":aud")
    if _has_claim(string_like, ":sub") or _has_claim(string_like, ":aud"):
        logger.warning("Trust statement %d uses StringLike on sub/aud; wildcard claims are ignored", index)
    if not subjects or not audiences:
        logger.warning("Trust statement %d lacks exact sub and aud claims; skipped", index)
        return []

    return [
        TrustStatement(federated_provider_id=str(provider),
                       required_subject_claim=subject,
                       required_audience=audience)
        for provider, subject, audience in itertools.product(
            _as_list(principal["Federated"]), subjects, audiences)
    ]


def parse_trust_policy(role_arn: str, document: Union[str, Dict[str, Any]]) -> TrustPolicy:
    """
    Build a TrustPolicy from an IAM role trust document.

    Only Allow statements granting sts:AssumeRoleWithWebIdentity to a Federated
    principal with StringEquals sub and aud conditions are kept. List values
    expand into one TrustStatement per (provider, sub, aud) combination.

    Raises PreconditionError when the document is not JSON or yields no statements.
    """
    if isinstance(document, str):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise PreconditionError(f"malformed trust policy for {role_arn}: {e.msg}") from e
    if not isinstance(document, dict):
        raise PreconditionError(f"malformed trust policy for {role_arn}: expected an object")

    statements: List[TrustStatement] = []
    for index, stmt in enumerate(_as_list(document.get("Statement"))):
        if isinstance(stmt, dict):
            statements.extend(_statements_from(stmt, index))

    if not statements:
        raise PreconditionError(
            f"malformed trust policy for {role_arn}: no exact web-identity statements")
    logger.debug("Parsed %d trust statement(s) for %s", len(statements), role_arn)
    return TrustPolicy(role_arn=role_arn, statements=tuple(statements))
