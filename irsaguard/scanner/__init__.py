# irsaguard/scanner/__init__.py
"""Pure decision functions and the fact-gathering helpers that feed them."""

from irsaguard.scanner.compliance import is_compliant, scan
from irsaguard.scanner.trust import evaluate, parse_trust_policy

__all__ = ["evaluate", "parse_trust_policy", "scan", "is_compliant"]
