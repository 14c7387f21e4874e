# irsaguard/harness.py
"""
Property test harness.

Runs the scenario matrix through the trust evaluator and every resource
through the compliance scanner, then checks that access was granted if and
only if the principal was canonical.

Run states: IDLE -> GENERATING -> EVALUATING -> AGGREGATING -> REPORTED,
ending in SUCCESS or FAILURE. Failed scenarios are recorded, never retried.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from typing import Iterable, List, Optional, Union

from irsaguard.config import DEFAULT_MAX_WORKERS, DEFAULT_MIN_ITERATIONS, DEFAULT_QUERY_TIMEOUT
from irsaguard.exceptions import PreconditionError, QueryTimeoutError
from irsaguard.models import (
    Outcome,
    Principal,
    Report,
    ResourceDescriptor,
    ResourceQuery,
    ResultKind,
    RunOutcome,
    Scenario,
    TestResult,
    TrustPolicy,
)
from irsaguard.scanner.compliance import scan
from irsaguard.scanner.trust import evaluate
from irsaguard.scenarios import generate

logger = logging.getLogger("irsaguard.harness")

ResourceInput = Union[ResourceDescriptor, ResourceQuery]


class RunState(str, Enum):
    IDLE = "Idle"
    GENERATING = "Generating"
    EVALUATING = "Evaluating"
    AGGREGATING = "Aggregating"
    REPORTED = "Reported"


def evaluate_scenario(scenario: Scenario) -> TestResult:
    """Evaluate one scenario; malformed input becomes a failing PRECONDITION result."""
    try:
        decision = evaluate(scenario.principal, scenario.policy)
    except PreconditionError as e:
        return TestResult(scenario.scenario_id, Outcome.ERROR, scenario.expected, False,
                          f"PreconditionError: {e}", ResultKind.PRECONDITION)

    actual = Outcome.ALLOW if decision.allowed else Outcome.DENY
    if actual is not scenario.expected:
        return TestResult(scenario.scenario_id, actual, scenario.expected, False,
                          f"EvaluationMismatch: expected {scenario.expected.value}, got {actual.value} "
                          f"({decision.reason.value}: {decision.detail})")
    # a deny for the wrong reason means the intended check never ran
    if scenario.expected_reason is not None and decision.reason is not scenario.expected_reason:
        return TestResult(scenario.scenario_id, actual, scenario.expected, False,
                          f"ReasonMismatch: expected {scenario.expected_reason.value}, "
                          f"got {decision.reason.value} ({decision.detail})")
    return TestResult(scenario.scenario_id, actual, scenario.expected, True,
                      f"{decision.reason.value}: {decision.detail}")


def compliance_results(resource: ResourceDescriptor) -> List[TestResult]:
    """One failing result per violation, or a single passing result."""
    violations = scan(resource)
    if not violations:
        return [TestResult(f"resource:{resource.name}", Outcome.COMPLIANT, Outcome.COMPLIANT, True,
                           "compliant", ResultKind.COMPLIANCE)]
    results = []
    for v in violations:
        suffix = f"/{v.metadata['tag']}" if "tag" in v.metadata else ""
        results.append(TestResult(
            f"resource:{resource.name}/{v.rule.value}{suffix}",
            Outcome.NON_COMPLIANT, Outcome.COMPLIANT, False,
            f"{v.rule.value}: {v.details} [{v.metadata.get('rule_id', '')}, severity {v.severity}]",
            ResultKind.COMPLIANCE,
        ))
    return results


class PropertyTestHarness:
    """
    One harness instance owns the result list of the run in progress.

    - min_iterations: fewer requested iterations is an InsufficientCoverage failure
    - query_timeout: seconds to wait for each ResourceQuery
    - max_workers: size of the pool that runs ResourceQuery objects
    - cancel_event: once set, no new iterations, queries or scans are scheduled
    """

    def __init__(self, min_iterations: int = DEFAULT_MIN_ITERATIONS,
                 query_timeout: float = DEFAULT_QUERY_TIMEOUT,
                 max_workers: int = DEFAULT_MAX_WORKERS,
                 cancel_event: Optional[threading.Event] = None):
        self.min_iterations = min_iterations
        self.query_timeout = query_timeout
        self.max_workers = max(1, max_workers)
        self.cancel_event = cancel_event or threading.Event()
        self.state = RunState.IDLE
        self.outcome: Optional[RunOutcome] = None
        self._results: List[TestResult] = []
        self._lock = threading.Lock()

    # --- bookkeeping ---------------------------------------------------------

    def _set_state(self, state: RunState) -> None:
        if state is not self.state:
            logger.debug("Harness %s -> %s", self.state.value, state.value)
            self.state = state

    def _record(self, result: TestResult) -> None:
        with self._lock:
            self._results.append(result)
        if not result.passed:
            logger.info("FAIL %s: %s", result.scenario_id, result.detail)

    def _cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @staticmethod
    def _check_inputs(canonical: Principal, policy: TrustPolicy) -> None:
        canonical.validate()
        if not policy.role_arn or not policy.statements:
            raise PreconditionError(f"malformed policy for {policy.role_arn or '<no role>'}: no statements")

    # --- fact gathering ----------------------------------------------------

    def _guarded(self, query: ResourceQuery) -> Optional[ResourceDescriptor]:
        if self._cancelled():
            return None
        return query()

    def _timeout_result(self, query: ResourceQuery) -> TestResult:
        return TestResult(f"resource:{query.name}", Outcome.ERROR, Outcome.COMPLIANT, False,
                          "timeout", ResultKind.TIMEOUT)

    def _resolve(self, resources: Iterable[ResourceInput]) -> List[ResourceDescriptor]:
        resolved: List[ResourceDescriptor] = []
        queries: List[ResourceQuery] = []
        for item in resources:
            if isinstance(item, ResourceDescriptor):
                resolved.append(item)
            else:
                queries.append(item)
        if not queries:
            return resolved

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="irsaguard-query")
        timed_out = False
        try:
            futures = [(q, executor.submit(self._guarded, q)) for q in queries]
            for query, future in futures:
                try:
                    descriptor = future.result(timeout=self.query_timeout)
                except FutureTimeoutError:
                    logger.warning("Query %s timed out after %gs", query.name, self.query_timeout)
                    self._record(self._timeout_result(query))
                    timed_out = True
                    continue
                except QueryTimeoutError as e:
                    logger.warning("Query %s timed out: %s", query.name, e)
                    self._record(self._timeout_result(query))
                    continue
                if descriptor is not None:
                    resolved.append(descriptor)
        finally:
            # a query still running past its deadline keeps its worker; do not wait for it
            executor.shutdown(wait=not timed_out, cancel_futures=True)
        return resolved

    # --- run ---------------------------------------------------------------

    def run(self, iterations: int, canonical: Principal, policy: TrustPolicy,
            resources: Iterable[ResourceInput] = (), seed: int = 0) -> Report:
        """
        Execute one run and return its Report.

        Raises PreconditionError for a malformed canonical principal or policy,
        or when a resource query reports an unreachable inventory.
        """
        self._results = []
        self.outcome = None
        self._set_state(RunState.IDLE)
        self._check_inputs(canonical, policy)
        logger.info("Running %d iteration(s) for %s (seed=%s)", iterations, canonical.subject, seed)

        descriptors = self._resolve(resources)

        completed = 0
        self._set_state(RunState.GENERATING)
        for iteration, batch in generate(canonical, seed, iterations, policy).batches():
            if self._cancelled():
                break
            self._set_state(RunState.EVALUATING)
            for scenario in batch:
                self._record(evaluate_scenario(scenario))
            completed = iteration
            self._set_state(RunState.GENERATING)

        self._set_state(RunState.EVALUATING)
        for resource in descriptors:
            if self._cancelled():
                break
            for result in compliance_results(resource):
                self._record(result)

        self._set_state(RunState.AGGREGATING)
        if iterations < self.min_iterations:
            self._record(TestResult("run/coverage", None, None, False,
                                    f"InsufficientCoverage: {iterations} iteration(s) < minimum "
                                    f"{self.min_iterations}", ResultKind.COVERAGE))
        cancelled = self._cancelled()
        if cancelled:
            self._record(TestResult("run/cancelled", None, None, False,
                                    f"cancelled after {completed} of {iterations} iteration(s)",
                                    ResultKind.CANCELLED))

        with self._lock:
            results = tuple(self._results)
        report = Report(seed=seed, iterations=iterations, min_iterations=self.min_iterations,
                        results=results, cancelled=cancelled)
        self._set_state(RunState.REPORTED)
        self.outcome = report.state
        logger.info("Run finished: %s (%d passed, %d failed)", self.outcome.value, report.passed, report.failed)
        return report


def run(iterations: int, canonical: Principal, policy: TrustPolicy,
        resources: Iterable[ResourceInput] = (), seed: int = 0, **kwargs) -> Report:
    return PropertyTestHarness(**kwargs).run(iterations, canonical, policy, resources, seed)
