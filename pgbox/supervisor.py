import logging
from typing import Optional

import docker

from pgbox.config import Settings
from pgbox.errors import LogFetchError
from pgbox.executor import ExecGateway, ResultInspector
from pgbox.models import ContainerRef, ExecOutcome, ExecSpec, HealthState, MountSpec
from pgbox.mounts import compute_mounts
from pgbox.readiness import wait_for_readiness

logger = logging.getLogger(__name__)

# Shown to users when a container fails to come up.
VIEW_LOGS_CMD = "docker logs --since 1m -f"


class Supervisor:
    """Command execution and readiness checks for database containers.

    - exec sessions run through ExecGateway, one attach stream per call
    - readiness follows the container's Docker health check
    - mounts for new containers account for running inside a container

    Holds no per-call state; one instance can serve concurrent callers.
    """

    def __init__(
        self,
        docker_client: docker.DockerClient,
        settings: Optional[Settings] = None,
    ):
        self.docker_client = docker_client
        self.settings = settings or Settings()
        self.inspector = ResultInspector(docker_client)
        self.gateway = ExecGateway(
            docker_client,
            inspector=self.inspector,
            cleanup_timeout=self.settings.demux_cleanup_timeout,
        )

    @classmethod
    def from_env(cls, settings: Optional[Settings] = None) -> "Supervisor":
        return cls(docker.from_env(), settings or Settings.from_env())

    async def execute(
        self, container: ContainerRef, spec: ExecSpec, cancel=None
    ) -> ExecOutcome:
        return await self.gateway.execute(container, spec, cancel)

    async def run(self, container: ContainerRef, spec: ExecSpec, cancel=None) -> int:
        return await self.gateway.run(container, spec, cancel)

    async def run_foreground(
        self, container: ContainerRef, spec: ExecSpec, cancel=None
    ) -> ExecOutcome:
        return await self.gateway.run_foreground(container, spec, cancel)

    async def wait_for_readiness(self, container: ContainerRef, cancel=None) -> HealthState:
        return await wait_for_readiness(self.docker_client, container, cancel)

    async def compute_mounts(
        self,
        data_dir: str,
        host_is_guest: Optional[bool] = None,
        self_mounts: Optional[list[dict]] = None,
    ) -> list[MountSpec]:
        return await compute_mounts(
            self.docker_client,
            data_dir,
            host_is_guest=host_is_guest,
            self_mounts=self_mounts,
            proc_root=self.settings.host_proc,
        )

    async def print_container_logs(self, container: ContainerRef) -> None:
        """Log the container's recent output. Never raises on fetch errors."""
        try:
            logs = await self.inspector.recent_logs(container)
        except LogFetchError as e:
            logger.error(f"{e}")
            return
        logger.info(f"Container logs:\n{logs}")
