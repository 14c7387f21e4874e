# irsaguard/scenarios.py
"""
Scenario generation for the access-control property.

Property: credentials are granted if and only if the principal is the
canonical one. Every batch pairs the canonical principal with near misses
(wrong namespace, wrong service account, wrong audience, wrong role, missing
annotation) and one unrelated identity.

Batches are derived from (seed, iteration) only, so a sequence can be
restarted and replayed to reproduce a failure.
"""

import dataclasses
import random
import string
from typing import Iterator, List, Optional, Sequence, Tuple

from irsaguard.config import (
    UNAUTHORIZED_AUDIENCES,
    UNAUTHORIZED_NAMESPACES,
    UNAUTHORIZED_SERVICE_ACCOUNTS,
)
from irsaguard.models import Outcome, Principal, Reason, Scenario, ScenarioKind, TrustPolicy

SCENARIO_KINDS = tuple(ScenarioKind)

_TYPO_ALPHABET = string.ascii_lowercase + string.digits + "-"


def typo(rng: random.Random, value: str) -> str:
    """Replace exactly one character of value."""
    if not value:
        return rng.choice(string.ascii_lowercase)
    pos = rng.randrange(len(value))
    choices = [ch for ch in _TYPO_ALPHABET if ch != value[pos]]
    return value[:pos] + rng.choice(choices) + value[pos + 1:]


def other_name(rng: random.Random, pool: Sequence[str], avoid: str, iteration: int) -> str:
    """Pick an unauthorized name from pool, suffixed per iteration, never equal to avoid."""
    name = f"{rng.choice(pool)}-{iteration}"
    while name == avoid:
        name += "-x"
    return name


def near_miss(rng: random.Random, pool: Sequence[str], value: str, iteration: int) -> str:
    # half the time a one-character typo, otherwise an unrelated name
    if rng.random() < 0.5:
        return typo(rng, value)
    return other_name(rng, pool, value, iteration)


class ScenarioGenerator:
    """Builds the per-iteration scenario batch for one canonical principal."""

    def __init__(self, canonical: Principal, seed: int = 0, policy: Optional[TrustPolicy] = None):
        self.canonical = canonical
        self.seed = seed
        # near misses carry the role under test so only their claims can deny them
        self.role_ref = (policy.role_arn if policy else "") or canonical.annotated_role_ref or ""
        self.policy = policy or TrustPolicy(role_arn=self.role_ref)

    def _rng(self, iteration: int) -> random.Random:
        return random.Random(f"{self.seed}:{iteration}")

    def _annotated(self, **changes) -> Principal:
        return dataclasses.replace(self.canonical, has_annotation=True,
                                   annotated_role_ref=self.role_ref, **changes)

    def _scenario(self, iteration: int, kind: ScenarioKind, principal: Principal,
                  expected: Outcome, reason: Reason) -> Scenario:
        return Scenario(
            scenario_id=f"iter-{iteration}/{kind.value}",
            kind=kind,
            principal=principal,
            policy=self.policy,
            expected=expected,
            expected_reason=reason,
        )

    def batch(self, iteration: int) -> List[Scenario]:
        rng = self._rng(iteration)
        c = self.canonical

        wrong_ns = near_miss(rng, UNAUTHORIZED_NAMESPACES, c.namespace, iteration)
        wrong_sa = near_miss(rng, UNAUTHORIZED_SERVICE_ACCOUNTS, c.service_account, iteration)
        random_ns = other_name(rng, UNAUTHORIZED_NAMESPACES, c.namespace, iteration)
        random_sa = other_name(rng, UNAUTHORIZED_SERVICE_ACCOUNTS, c.service_account, iteration)
        wrong_aud = near_miss(rng, UNAUTHORIZED_AUDIENCES, c.audience, iteration)
        wrong_role = f"{self.role_ref or 'arn:aws:iam::000000000000:role/none'}-unauthorized-{iteration}"

        return [
            self._scenario(iteration, ScenarioKind.CANONICAL, c,
                           Outcome.ALLOW, Reason.MATCHED),
            self._scenario(iteration, ScenarioKind.WRONG_NAMESPACE,
                           self._annotated(namespace=wrong_ns),
                           Outcome.DENY, Reason.CLAIM_MISMATCH),
            self._scenario(iteration, ScenarioKind.WRONG_SERVICE_ACCOUNT,
                           self._annotated(service_account=wrong_sa),
                           Outcome.DENY, Reason.CLAIM_MISMATCH),
            self._scenario(iteration, ScenarioKind.RANDOM_UNRELATED,
                           Principal(namespace=random_ns, service_account=random_sa,
                                     audience=c.audience),
                           Outcome.DENY, Reason.NO_ANNOTATION),
            self._scenario(iteration, ScenarioKind.MISSING_ANNOTATION,
                           dataclasses.replace(c, has_annotation=False, annotated_role_ref=None),
                           Outcome.DENY, Reason.NO_ANNOTATION),
            self._scenario(iteration, ScenarioKind.WRONG_AUDIENCE,
                           self._annotated(audience=wrong_aud),
                           Outcome.DENY, Reason.CLAIM_MISMATCH),
            self._scenario(iteration, ScenarioKind.WRONG_ROLE,
                           dataclasses.replace(c, has_annotation=True, annotated_role_ref=wrong_role),
                           Outcome.DENY, Reason.ROLE_MISMATCH),
        ]


class ScenarioSequence:
    """Lazy, finite and restartable: every iteration re-derives the same batches."""

    def __init__(self, generator: ScenarioGenerator, iterations: int):
        self.generator = generator
        self.iterations = iterations

    def batches(self) -> Iterator[Tuple[int, List[Scenario]]]:
        for iteration in range(1, self.iterations + 1):
            yield iteration, self.generator.batch(iteration)

    def __iter__(self) -> Iterator[Scenario]:
        for _, batch in self.batches():
            yield from batch

    def __len__(self) -> int:
        return max(self.iterations, 0) * len(SCENARIO_KINDS)


def generate(canonical: Principal, seed: int = 0, iterations: int = 1,
             policy: Optional[TrustPolicy] = None) -> ScenarioSequence:
    return ScenarioSequence(ScenarioGenerator(canonical, seed, policy), iterations)
