"""Errors raised by pgbox.

Every error carries the name of the failing operation. The underlying
Docker exception, when there is one, is chained as ``__cause__``.
"""

from typing import Optional

from pgbox.models import ProbeLogEntry


class PgboxError(Exception):
    """Base class for all pgbox errors."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation}: {detail}")


class CreationError(PgboxError):
    """The runtime rejected exec session creation."""


class AttachError(PgboxError):
    """The runtime rejected attaching to an exec session."""


class DemuxError(PgboxError):
    """Malformed stream, or the command wrote to stderr."""


class NonZeroExitError(PgboxError):
    def __init__(self, operation: str, exit_code: int, detail: Optional[str] = None):
        self.exit_code = exit_code
        super().__init__(operation, detail or f"exit code: {exit_code}")


class InspectionError(PgboxError):
    """Inspecting an exec session or container failed."""


class CancellationError(PgboxError):
    """The caller's cancel signal fired before a result was available."""


class ProbeExecutionError(PgboxError):
    """The health probe itself could not run."""

    def __init__(self, operation: str, exit_code: int, output: str):
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            operation, f"health check failed. Code: {exit_code}, Output: {output}"
        )


class UnhealthyError(PgboxError):
    """Docker marked the container unhealthy after exhausting retries."""

    def __init__(
        self,
        operation: str,
        retries: Optional[int],
        last_probe: Optional[ProbeLogEntry] = None,
    ):
        self.retries = retries
        self.last_probe = last_probe
        detail = (
            "container health check failed. "
            f"The maximum number of attempts has reached: {retries}"
        )
        if last_probe is not None:
            detail += f". Last probe code: {last_probe.exit_code}, Output: {last_probe.output}"
        super().__init__(operation, detail)


class LogFetchError(PgboxError):
    """Container logs could not be retrieved."""
