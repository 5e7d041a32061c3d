# pgbox - exec and readiness supervision for database containers
"""
pgbox - Run commands in ephemeral database containers and wait for them to be ready.

Talks to the Docker Engine API; container creation and removal stay with the caller.
"""

from pgbox.cancel import CancelSignal
from pgbox.errors import (
    AttachError,
    CancellationError,
    CreationError,
    DemuxError,
    InspectionError,
    LogFetchError,
    NonZeroExitError,
    PgboxError,
    ProbeExecutionError,
    UnhealthyError,
)
from pgbox.models import (
    ContainerRef,
    ExecOutcome,
    ExecSpec,
    HealthState,
    HealthStatus,
    MountSpec,
    ProbeResult,
    ReadinessState,
)
from pgbox.supervisor import Supervisor

__all__ = [
    "Supervisor",
    "CancelSignal",
    "ContainerRef",
    "ExecSpec",
    "ExecOutcome",
    "HealthState",
    "HealthStatus",
    "MountSpec",
    "ProbeResult",
    "ReadinessState",
    "PgboxError",
    "CreationError",
    "AttachError",
    "DemuxError",
    "NonZeroExitError",
    "InspectionError",
    "CancellationError",
    "ProbeExecutionError",
    "UnhealthyError",
    "LogFetchError",
]

__version__ = "0.1.0"
