"""Request-scoped models for container exec, health and mounts."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

from docker.types import Mount


@dataclass(frozen=True)
class ContainerRef:
    """Runtime-assigned container identifier plus optional name."""
    id: str
    name: Optional[str] = None

    def __str__(self) -> str:
        return self.name or self.id


@dataclass
class ExecSpec:
    """A one-shot command to run inside a container.

    Stdout and stderr are always attached.
    """
    command: list[str]
    user: Optional[str] = None
    tty: bool = False
    env: Optional[dict[str, str]] = None
    workdir: Optional[str] = None

    def __post_init__(self):
        if not self.command:
            raise ValueError("ExecSpec.command must not be empty")
        self.command = list(self.command)

    def environment(self) -> Optional[list[str]]:
        if self.env is None:
            return None
        return [f"{name}={value}" for name, value in self.env.items()]


@dataclass(frozen=True)
class ExecHandle:
    exec_id: str
    container: ContainerRef


class StreamKind(IntEnum):
    """Stream type byte of a multiplexed frame header."""
    STDIN = 0
    STDOUT = 1
    STDERR = 2
    SYSTEM_ERROR = 3


@dataclass(frozen=True)
class StreamFrame:
    kind: StreamKind
    payload: bytes


@dataclass
class ExecOutcome:
    """Result of a finished exec session."""
    stdout: bytes
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


class HealthStatus(str, Enum):
    """Docker health status values."""
    NONE = "none"
    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class ProbeResult(Enum):
    """Outcome of a single health probe run."""
    PROBE_OK = "probe_ok"
    PROBE_UNHEALTHY_RETRYABLE = "probe_unhealthy_retryable"
    PROBE_EXECUTION_ERROR = "probe_execution_error"

    @classmethod
    def from_exit_code(cls, exit_code: int) -> "ProbeResult":
        # Docker reserves exit code 1 for "unhealthy"; anything above means
        # the probe command itself could not run.
        if exit_code == 0:
            return cls.PROBE_OK
        if exit_code == 1:
            return cls.PROBE_UNHEALTHY_RETRYABLE
        return cls.PROBE_EXECUTION_ERROR


@dataclass(frozen=True)
class ProbeLogEntry:
    exit_code: int
    output: str = ""

    @property
    def result(self) -> ProbeResult:
        return ProbeResult.from_exit_code(self.exit_code)


@dataclass
class HealthState:
    """Point-in-time health of a container.

    ``status`` is None while no health check has bootstrapped yet.
    """
    status: Optional[HealthStatus] = None
    last_probe: Optional[ProbeLogEntry] = None
    retries: Optional[int] = None

    @classmethod
    def from_inspection(cls, attrs: dict) -> "HealthState":
        """Build from the dict returned by ``APIClient.inspect_container``."""
        state = attrs.get("State") or {}
        health = state.get("Health")
        healthcheck = (attrs.get("Config") or {}).get("Healthcheck") or {}
        retries = healthcheck.get("Retries")

        if not health or not health.get("Status"):
            return cls(retries=retries)

        last_probe = None
        log = health.get("Log") or []
        if log:
            entry = log[-1]
            last_probe = ProbeLogEntry(
                exit_code=int(entry.get("ExitCode", 0)),
                output=entry.get("Output") or "",
            )

        return cls(
            status=HealthStatus(health["Status"]),
            last_probe=last_probe,
            retries=retries,
        )


class ReadinessState(str, Enum):
    """States of the readiness poller. All but POLLING are terminal."""
    POLLING = "polling"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    CANCELLED = "cancelled"
    PROBE_EXECUTION_ERROR = "probe_execution_error"

    @property
    def terminal(self) -> bool:
        return self is not ReadinessState.POLLING


@dataclass(frozen=True)
class MountSpec:
    """A mount to hand to the container-creation collaborator."""
    source: str
    target: str
    type: str = "bind"
    read_only: bool = False
    propagation: Optional[str] = field(default=None)

    def to_docker(self) -> Mount:
        # docker.types.Mount rejects propagation on non-bind mounts.
        propagation = self.propagation if self.type == "bind" and self.propagation else None
        return Mount(
            target=self.target,
            source=self.source,
            type=self.type,
            read_only=self.read_only,
            propagation=propagation,
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "source": self.source,
            "target": self.target,
            "read_only": self.read_only,
            "propagation": self.propagation,
        }
