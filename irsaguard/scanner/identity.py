# irsaguard/scanner/identity.py
"""
Identity source: Kubernetes service accounts.

Reads structured ServiceAccount objects (kubectl -o json) and turns them into
Principals. Nothing here greps human-readable tool output.
"""

import json
import logging
import subprocess
from typing import Any, Dict

from irsaguard.config import DEFAULT_QUERY_TIMEOUT, ROLE_ANNOTATION
from irsaguard.exceptions import MalformedInputError, PreconditionError, QueryTimeoutError
from irsaguard.models import Principal

logger = logging.getLogger("irsaguard.identity")


def principal_from_service_account(obj: Dict[str, Any], audience: str) -> Principal:
    """
    Build a Principal from a ServiceAccount object.

    An empty annotation value counts as no annotation.
    """
    metadata = obj.get("metadata") or {}
    annotations = metadata.get("annotations") or {}
    role_ref = annotations.get(ROLE_ANNOTATION) or None
    principal = Principal(
        namespace=metadata.get("namespace") or "",
        service_account=metadata.get("name") or "",
        audience=audience,
        has_annotation=role_ref is not None,
        annotated_role_ref=role_ref,
    )
    principal.validate()
    return principal


def fetch_service_account_live(namespace: str, name: str,
                               timeout: float = DEFAULT_QUERY_TIMEOUT,
                               kubectl: str = "kubectl") -> Dict[str, Any]:
    """
    Fetch one ServiceAccount object from the cluster.

    Raises PreconditionError (QueryTimeoutError on timeout) when the cluster
    cannot be queried or returns something other than a JSON object.
    """
    cmd = [kubectl, "get", "serviceaccount", name, "-n", namespace, "-o", "json"]
    logger.debug("Running %s", " ".join(cmd))
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise PreconditionError(f"{kubectl} not found in PATH") from e
    except OSError as e:
        raise PreconditionError(f"Cannot run {kubectl}: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise QueryTimeoutError(f"serviceaccount {namespace}/{name}", timeout) from e

    if proc.returncode != 0:
        raise PreconditionError(
            f"Cannot read serviceaccount {namespace}/{name}: {proc.stderr.strip() or proc.returncode}")
    try:
        obj = json.loads(proc.stdout)
    except json.JSONDecodeError as e:
        raise PreconditionError(f"Invalid JSON from {kubectl}: {e.msg}") from e
    if not isinstance(obj, dict):
        raise MalformedInputError(f"Expected a ServiceAccount object from {kubectl}")
    return obj
