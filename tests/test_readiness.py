"""Tests for the readiness poller."""

import asyncio
import time

import pytest
from docker.errors import NotFound

from pgbox import readiness
from pgbox.cancel import CancelSignal
from pgbox.errors import (
    CancellationError,
    InspectionError,
    ProbeExecutionError,
    UnhealthyError,
)
from pgbox.models import HealthStatus, ReadinessState
from pgbox.readiness import step, wait_for_readiness


def inspection(status=None, log=(), retries=50):
    attrs = {"Config": {"Healthcheck": {"Retries": retries}}, "State": {"Running": True}}
    if status is not None:
        attrs["State"]["Health"] = {
            "Status": status,
            "Log": [{"ExitCode": code, "Output": output} for code, output in log],
        }
    return attrs


@pytest.fixture(autouse=True)
def fast_ticks(monkeypatch):
    monkeypatch.setattr(readiness, "POLL_INTERVAL", 0.01)


class TestStep:
    """Test classification of a single inspection."""

    def test_no_health_yet(self):
        state, health = step(inspection())
        assert state is ReadinessState.POLLING
        assert health.status is None

    def test_healthy(self):
        state, _ = step(inspection("healthy", [(0, "accepting connections")]))
        assert state is ReadinessState.HEALTHY

    def test_unhealthy(self):
        state, health = step(inspection("unhealthy", [(1, "no response")]))
        assert state is ReadinessState.UNHEALTHY
        assert health.retries == 50

    def test_failing_probe_keeps_polling(self):
        """Exit code 1 is a retryable failure."""
        state, _ = step(inspection("starting", [(0, ""), (1, "rejecting connections")]))
        assert state is ReadinessState.POLLING

    def test_probe_that_cannot_run(self):
        """Only the most recent probe entry counts."""
        state, health = step(inspection("starting", [(1, ""), (126, "pg_isready: permission denied")]))
        assert state is ReadinessState.PROBE_EXECUTION_ERROR
        assert health.last_probe.exit_code == 126

    def test_starting_without_log(self):
        state, health = step(inspection("starting"))
        assert state is ReadinessState.POLLING
        assert health.status is HealthStatus.STARTING


class TestWaitForReadiness:
    @pytest.mark.asyncio
    async def test_becomes_healthy(self, docker_client, container):
        """Polling stops at the first healthy inspection."""
        docker_client.api.inspect_container.side_effect = [
            inspection(),
            inspection("starting", [(1, "")]),
            inspection("healthy", [(0, "")]),
            inspection("unhealthy"),
        ]

        health = await wait_for_readiness(docker_client, container)

        assert health.status is HealthStatus.HEALTHY
        assert docker_client.api.inspect_container.call_count == 3
        docker_client.api.inspect_container.assert_called_with("c0ffee")

    @pytest.mark.asyncio
    async def test_independent_invocations(self, docker_client, container):
        """A second call starts from scratch."""
        docker_client.api.inspect_container.side_effect = [
            inspection("healthy"),
            inspection("starting"),
            inspection("healthy"),
        ]

        await wait_for_readiness(docker_client, container)
        await wait_for_readiness(docker_client, container)

        assert docker_client.api.inspect_container.call_count == 3

    @pytest.mark.asyncio
    async def test_unhealthy(self, docker_client, container):
        docker_client.api.inspect_container.return_value = inspection(
            "unhealthy", [(1, "no response")], retries=5
        )

        with pytest.raises(UnhealthyError) as exc_info:
            await wait_for_readiness(docker_client, container)

        assert exc_info.value.retries == 5
        assert "maximum number of attempts has reached: 5" in str(exc_info.value)
        assert "no response" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_probe_error_on_first_tick(self, docker_client, container):
        """Exit code 2 stops polling immediately."""
        docker_client.api.inspect_container.return_value = inspection(
            "starting", [(2, "sh: pg_isready: not found")]
        )

        with pytest.raises(ProbeExecutionError) as exc_info:
            await wait_for_readiness(docker_client, container)

        assert exc_info.value.exit_code == 2
        assert exc_info.value.output == "sh: pg_isready: not found"
        assert docker_client.api.inspect_container.call_count == 1

    @pytest.mark.asyncio
    async def test_inspection_error(self, docker_client, container):
        docker_client.api.inspect_container.side_effect = NotFound("no such container")

        with pytest.raises(InspectionError, match="dblab_clone_6000"):
            await wait_for_readiness(docker_client, container)

    @pytest.mark.asyncio
    async def test_cancelled_before_first_tick(self, docker_client, container):
        cancel = CancelSignal()
        cancel.set("clone deleted")

        with pytest.raises(CancellationError, match="clone deleted"):
            await wait_for_readiness(docker_client, container, cancel)
        docker_client.api.inspect_container.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_between_ticks(self, monkeypatch, docker_client, container):
        """Cancellation interrupts the interval sleep instead of waiting it out."""
        monkeypatch.setattr(readiness, "POLL_INTERVAL", 5.0)
        docker_client.api.inspect_container.return_value = inspection("starting", [(1, "")])
        cancel = asyncio.Event()
        asyncio.get_event_loop().call_later(0.05, cancel.set)

        started = time.monotonic()
        with pytest.raises(CancellationError, match="cancelled"):
            await wait_for_readiness(docker_client, container, cancel)

        assert time.monotonic() - started < 2.0
        assert docker_client.api.inspect_container.call_count == 1
