# irsaguard/__init__.py
"""IRSA verification engine: trust policy decisions, compliance rules and a property harness."""

from irsaguard.harness import PropertyTestHarness, run
from irsaguard.models import (
    Decision,
    Principal,
    Report,
    ResourceDescriptor,
    TestResult,
    TrustPolicy,
    TrustStatement,
)
from irsaguard.scanner import evaluate, scan
from irsaguard.scenarios import generate

__version__ = "0.1.0"

__all__ = [
    "Decision",
    "Principal",
    "PropertyTestHarness",
    "Report",
    "ResourceDescriptor",
    "TestResult",
    "TrustPolicy",
    "TrustStatement",
    "evaluate",
    "generate",
    "run",
    "scan",
]
