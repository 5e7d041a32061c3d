"""Polling of container health checks until the container is ready."""

import asyncio
import logging

import docker
from docker.errors import DockerException

from pgbox.cancel import cancel_reason
from pgbox.errors import (
    CancellationError,
    InspectionError,
    ProbeExecutionError,
    UnhealthyError,
)
from pgbox.models import (
    ContainerRef,
    HealthState,
    HealthStatus,
    ProbeResult,
    ReadinessState,
)

logger = logging.getLogger(__name__)

POLL_INTERVAL = 1.0


def step(attrs: dict) -> tuple[ReadinessState, HealthState]:
    """Classify one container inspection."""
    health = HealthState.from_inspection(attrs)

    if health.status is None:
        return ReadinessState.POLLING, health
    if health.status is HealthStatus.HEALTHY:
        return ReadinessState.HEALTHY, health
    if health.status is HealthStatus.UNHEALTHY:
        return ReadinessState.UNHEALTHY, health

    probe = health.last_probe
    if probe is not None and probe.result is ProbeResult.PROBE_EXECUTION_ERROR:
        return ReadinessState.PROBE_EXECUTION_ERROR, health
    return ReadinessState.POLLING, health


async def _sleep(cancel) -> None:
    if cancel is None:
        await asyncio.sleep(POLL_INTERVAL)
        return
    try:
        await asyncio.wait_for(cancel.wait(), POLL_INTERVAL)
    except asyncio.TimeoutError:
        pass


async def wait_for_readiness(
    client: docker.DockerClient, container: ContainerRef, cancel=None
) -> HealthState:
    """Poll the container's health check until it settles.

    Returns the healthy state. Raises UnhealthyError when Docker gives up on
    the container, ProbeExecutionError as soon as a probe fails to run at all,
    and CancellationError once ``cancel`` is set. There is no internal
    deadline; bound the wait with ``cancel``.
    """
    logger.info(f"Check container readiness: {container}")
    loop = asyncio.get_event_loop()

    while True:
        if cancel is not None and cancel.is_set():
            raise CancellationError(
                "readiness", f"stopped waiting for {container}: {cancel_reason(cancel)}"
            )

        try:
            attrs = await loop.run_in_executor(None, client.api.inspect_container, container.id)
        except DockerException as e:
            raise InspectionError(
                "container inspect", f"failed to inspect container {container}: {e}"
            ) from e

        state, health = step(attrs)

        if state is ReadinessState.HEALTHY:
            logger.info(f"Container {container} is healthy")
            return health
        if state is ReadinessState.UNHEALTHY:
            raise UnhealthyError("readiness", health.retries, health.last_probe)
        if state is ReadinessState.PROBE_EXECUTION_ERROR:
            probe = health.last_probe
            raise ProbeExecutionError("readiness", probe.exit_code, probe.output)

        status = health.status.value if health.status else "no health status"
        logger.debug(f"Container {container} is not ready yet. The current state is {status}")
        await _sleep(cancel)
