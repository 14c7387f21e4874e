# irsaguard/exceptions.py
"""
Error taxonomy.

Only setup problems are raised. Access mismatches and compliance violations
are normal results and are recorded in the report instead.
"""


class GuardError(Exception):
    """Base class for all irsaguard errors."""


class PreconditionError(GuardError):
    """
    Identity source or inventory unreachable, or a malformed policy.

    Fatal for the run: the CLI maps it to exit code 2.
    """


class MalformedInputError(PreconditionError):
    """A principal or descriptor that violates its well-formedness rules."""


class QueryTimeoutError(PreconditionError):
    """An external query exceeded its deadline."""

    def __init__(self, query: str, timeout: float):
        super().__init__(f"{query} timed out after {timeout:g}s")
        self.query = query
        self.timeout = timeout
