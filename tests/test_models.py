"""Tests for pgbox models and errors."""

import pytest

from pgbox.errors import NonZeroExitError, PgboxError, ProbeExecutionError
from pgbox.models import (
    ContainerRef,
    ExecOutcome,
    ExecSpec,
    HealthState,
    HealthStatus,
    ProbeLogEntry,
    ProbeResult,
    ReadinessState,
)


class TestExecSpec:
    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            ExecSpec([])

    def test_environment(self):
        spec = ExecSpec(["env"], env={"PGUSER": "postgres", "PGPORT": "6000"})
        assert spec.environment() == ["PGUSER=postgres", "PGPORT=6000"]

    def test_no_environment(self):
        assert ExecSpec(("true",)).environment() is None


class TestProbeResult:
    """Test the three-way probe outcome encoding."""

    @pytest.mark.parametrize(
        "exit_code,expected",
        [
            (0, ProbeResult.PROBE_OK),
            (1, ProbeResult.PROBE_UNHEALTHY_RETRYABLE),
            (2, ProbeResult.PROBE_EXECUTION_ERROR),
            (127, ProbeResult.PROBE_EXECUTION_ERROR),
            (-1, ProbeResult.PROBE_EXECUTION_ERROR),
        ],
    )
    def test_from_exit_code(self, exit_code, expected):
        assert ProbeResult.from_exit_code(exit_code) is expected
        assert ProbeLogEntry(exit_code).result is expected


class TestHealthState:
    def test_without_health(self):
        """Containers without a health check have no status."""
        health = HealthState.from_inspection({"State": {"Running": True}, "Config": {}})
        assert health.status is None
        assert health.last_probe is None

    def test_last_probe(self):
        health = HealthState.from_inspection(
            {
                "State": {
                    "Health": {
                        "Status": "starting",
                        "Log": [
                            {"ExitCode": 1, "Output": "first"},
                            {"ExitCode": 0, "Output": "second"},
                        ],
                    }
                },
                "Config": {"Healthcheck": {"Retries": 10}},
            }
        )
        assert health.status is HealthStatus.STARTING
        assert health.last_probe == ProbeLogEntry(0, "second")
        assert health.retries == 10

    def test_terminal_states(self):
        assert not ReadinessState.POLLING.terminal
        assert all(s.terminal for s in ReadinessState if s is not ReadinessState.POLLING)


class TestOutcomeAndErrors:
    def test_outcome_text(self):
        outcome = ExecOutcome(stdout=b"caf\xc3\xa9", exit_code=0)
        assert outcome.ok
        assert outcome.text == "café"
        assert not ExecOutcome(stdout=b"", exit_code=1).ok

    def test_error_messages_name_operation(self):
        err = NonZeroExitError("exec", 4)
        assert isinstance(err, PgboxError)
        assert str(err) == "exec: exit code: 4"
        assert err.operation == "exec"

    def test_probe_error_message(self):
        err = ProbeExecutionError("readiness", 2, "not found")
        assert str(err) == "readiness: health check failed. Code: 2, Output: not found"

    def test_container_ref_str(self):
        assert str(ContainerRef("abc", "clone")) == "clone"
        assert str(ContainerRef("abc")) == "abc"
