# irsaguard/main.py
"""
CLI entrypoint for the IRSA verification engine.

- Supports two modes:
  * dummy: read service accounts, the role trust policy and resources from a JSON file
  * aws: query the cluster with kubectl and a live AWS account with boto3.Session
- Runs the access-control property and the compliance rules, prints a summary
  (text or JSON) and optionally saves JSON, CSV, and HTML reports.
- Exit codes: 0 all pass, 1 failures, 2 setup/precondition error.
"""

import argparse
import logging
import os
import signal
import sys
import threading
from typing import Any, Dict, List, Optional, Tuple

import boto3

from irsaguard.config import (
    DEFAULT_AUDIENCE,
    DEFAULT_AWS_REGION,
    DEFAULT_CANONICAL_NAMESPACE,
    DEFAULT_CANONICAL_SERVICE_ACCOUNT,
    DEFAULT_ITERATIONS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_MIN_ITERATIONS,
    DEFAULT_QUERY_TIMEOUT,
    DEFAULT_SEED,
)
from irsaguard.exceptions import PreconditionError
from irsaguard.harness import PropertyTestHarness, ResourceInput
from irsaguard.models import Principal, TrustPolicy
from irsaguard.scanner.aws_inventory import (
    check_credentials,
    client_config,
    fetch_trust_policy_live,
    live_queries,
    resources_from_json,
    role_name_from_arn,
)
from irsaguard.scanner.identity import fetch_service_account_live, principal_from_service_account
from irsaguard.scanner.trust import parse_trust_policy
from irsaguard.utils import (
    EXIT_PRECONDITION,
    exit_code_for,
    load_json_file,
    print_summary,
    report_to_json,
    save_report,
)

logger = logging.getLogger("irsaguard")

Inputs = Tuple[Principal, TrustPolicy, List[ResourceInput]]


def find_service_account(data: Dict[str, Any], namespace: str, name: str) -> Dict[str, Any]:
    """Offline counterpart of `kubectl get serviceaccount <name> -n <namespace>`."""
    for obj in data.get("service_accounts", []):
        metadata = obj.get("metadata") or {}
        if metadata.get("namespace") == namespace and metadata.get("name") == name:
            return obj
    raise PreconditionError(f"serviceaccount {namespace}/{name} not found in input file")


def load_dummy_inputs(file_path: str, args: argparse.Namespace) -> Inputs:
    """
    Build the run inputs from a local JSON file.
    No cluster or AWS access is required in this mode.
    """
    logger.info("Running in dummy mode using file: %s", file_path)
    data = load_json_file(file_path)
    sa = find_service_account(data, args.canonical_namespace, args.canonical_service_account)
    canonical = principal_from_service_account(sa, args.audience)

    role = data.get("role") or {}
    role_arn = args.role_arn or role.get("arn") or canonical.annotated_role_ref
    if not role_arn:
        raise PreconditionError("No role ARN: pass --role-arn or set role.arn in the input file")
    policy = parse_trust_policy(role_arn, role.get("trust_policy") or {})
    return canonical, policy, list(resources_from_json(data))


def load_live_inputs(args: argparse.Namespace, region: Optional[str]) -> Inputs:
    """
    Build the run inputs from the live cluster and AWS account.

    Credential model: credentials come from the environment (profile, vault or
    instance role); only the region is resolved here (CLI -> env -> default).
    Every AWS call is bounded by --timeout through the client config.
    """
    region = region or os.environ.get("AWS_REGION") or DEFAULT_AWS_REGION
    logger.info("Running in live AWS mode (region=%s)", region)
    session = boto3.Session(region_name=region)
    config = client_config(args.timeout)
    identity = check_credentials(session, config)
    logger.info("Using AWS identity %s", identity.get("Arn"))

    sa = fetch_service_account_live(args.canonical_namespace, args.canonical_service_account,
                                    timeout=args.timeout)
    canonical = principal_from_service_account(sa, args.audience)

    role_arn = args.role_arn or canonical.annotated_role_ref
    if not role_arn:
        raise PreconditionError(
            f"{canonical.subject} has no role annotation; pass --role-arn to test it anyway")
    role_name = args.role_name or role_name_from_arn(role_arn)
    policy = fetch_trust_policy_live(session, role_name, config)

    bucket = args.bucket or os.environ.get("HARBOR_S3_BUCKET")
    queries = live_queries(session, bucket=bucket, key_id=args.kms_key_id,
                           role_name=role_name, cluster_name=args.cluster_name,
                           config=config)
    return canonical, policy, list(queries)


def resolve_min_iterations(value: Optional[int]) -> int:
    """Coverage floor: CLI -> $IRSAGUARD_MIN_ITERATIONS -> default."""
    if value is not None:
        return value
    raw = os.environ.get("IRSAGUARD_MIN_ITERATIONS")
    if not raw:
        return DEFAULT_MIN_ITERATIONS
    try:
        return int(raw)
    except ValueError as e:
        raise PreconditionError(f"IRSAGUARD_MIN_ITERATIONS must be an integer, got {raw!r}") from e


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Property test for IRSA access control and resource compliance."
    )
    p.add_argument(
        "--mode",
        choices=["dummy", "aws"],
        default="aws",
        help="Run mode: dummy (JSON) or aws (live cluster and account)",
    )
    p.add_argument(
        "--file",
        help="Path to dummy JSON file (required for dummy mode)",
    )
    p.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS,
                   help=f"Scenario batches to evaluate (default: {DEFAULT_ITERATIONS})")
    p.add_argument("--seed", type=int, default=DEFAULT_SEED,
                   help="Seed for scenario generation; the same seed replays the same scenarios")
    p.add_argument("--canonical-namespace", default=DEFAULT_CANONICAL_NAMESPACE,
                   help=f"Namespace of the authorized service account (default: {DEFAULT_CANONICAL_NAMESPACE})")
    p.add_argument("--canonical-service-account", default=DEFAULT_CANONICAL_SERVICE_ACCOUNT,
                   help=f"Authorized service account (default: {DEFAULT_CANONICAL_SERVICE_ACCOUNT})")
    p.add_argument("--audience", default=DEFAULT_AUDIENCE,
                   help=f"Token audience presented by the workload (default: {DEFAULT_AUDIENCE})")
    p.add_argument("--role-arn", help="Role ARN to test (default: the service account annotation)")
    p.add_argument("--role-name", help="IAM role name (default: derived from the role ARN)")
    p.add_argument("--bucket", help="S3 bucket to scan (default: $HARBOR_S3_BUCKET)")
    p.add_argument("--kms-key-id", help="KMS key to scan")
    p.add_argument("--cluster-name", help="EKS cluster to scan")
    p.add_argument(
        "--region",
        help="AWS region (optional)",
    )
    p.add_argument("--min-iterations", type=int,
                   help=f"Fewer iterations than this fail the run "
                        f"(default: $IRSAGUARD_MIN_ITERATIONS or {DEFAULT_MIN_ITERATIONS})")
    p.add_argument("--timeout", type=float, default=DEFAULT_QUERY_TIMEOUT,
                   help=f"Seconds allowed per external query (default: {DEFAULT_QUERY_TIMEOUT:g})")
    p.add_argument("--workers", type=int, default=DEFAULT_MAX_WORKERS,
                   help=f"Concurrent resource queries (default: {DEFAULT_MAX_WORKERS})")
    p.add_argument("--format", choices=["text", "json"], default="text",
                   help="Report format on stdout (default: text)")
    p.add_argument(
        "--report-dir",
        help="Directory to save JSON, CSV and HTML reports (not saved by default)",
    )
    p.add_argument(
        "--print-table",
        action="store_true",
        help="Print passing results as well as failures",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def run(args: argparse.Namespace, cancel_event: Optional[threading.Event] = None) -> int:
    try:
        if args.mode == "dummy":
            if not args.file:
                raise PreconditionError("dummy mode requires --file path to JSON")
            canonical, policy, resources = load_dummy_inputs(args.file, args)
        else:
            canonical, policy, resources = load_live_inputs(args, args.region)

        harness = PropertyTestHarness(
            min_iterations=resolve_min_iterations(args.min_iterations),
            query_timeout=args.timeout,
            max_workers=args.workers,
            cancel_event=cancel_event,
        )
        report = harness.run(args.iterations, canonical, policy, resources, seed=args.seed)
    except PreconditionError as e:
        logger.error("Precondition failed: %s", e)
        return EXIT_PRECONDITION

    report_paths = None
    if args.report_dir:
        report_paths = save_report(report, mode=args.mode,
                                   extra={"canonical": canonical.subject, "role": policy.role_arn},
                                   out_dir=args.report_dir)
    if args.format == "json":
        print(report_to_json(report))
    else:
        print_summary(report, report_paths, print_full_table=args.print_table)
    return exit_code_for(report)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s: %(message)s")

    # Ctrl-C stops scheduling new work; finished scenarios are still reported
    cancel_event = threading.Event()
    previous = None
    if threading.current_thread() is threading.main_thread():
        previous = signal.signal(signal.SIGINT, lambda signum, frame: cancel_event.set())
    try:
        return run(args, cancel_event)
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


if __name__ == "__main__":
    sys.exit(main())
