"""Command execution in running containers via the Docker exec API."""

import asyncio
import io
import logging
import socket
import time
from typing import Optional

import docker
from docker.errors import DockerException

from pgbox.cancel import cancel_reason
from pgbox.demux import copy_frames, copy_raw
from pgbox.errors import (
    AttachError,
    CancellationError,
    CreationError,
    DemuxError,
    InspectionError,
    LogFetchError,
    NonZeroExitError,
)
from pgbox.models import ContainerRef, ExecHandle, ExecOutcome, ExecSpec

logger = logging.getLogger(__name__)

# Window of container logs attached to foreground failures.
RECENT_LOGS_WINDOW = 10

# Docker may record an exec's exit code shortly after its stream ends.
EXIT_SETTLE_ATTEMPTS = 20
EXIT_SETTLE_INTERVAL = 0.05


async def _run_blocking(func, *args):
    return await asyncio.get_event_loop().run_in_executor(None, func, *args)


def _check_cancel(cancel, operation: str) -> None:
    if cancel is not None and cancel.is_set():
        raise CancellationError(operation, cancel_reason(cancel))


def _release(sock) -> None:
    """Tear down an attach connection, unblocking any reader."""
    raw = getattr(sock, "_sock", sock)
    try:
        raw.shutdown(socket.SHUT_RDWR)
    except (OSError, AttributeError) as e:
        logger.debug(f"Attach socket shutdown: {e}")
    try:
        sock.close()
    except OSError as e:
        logger.debug(f"Attach socket close: {e}")


class ResultInspector:
    """Decides whether a finished exec session succeeded."""

    def __init__(self, client: docker.DockerClient):
        self.api = client.api

    async def _inspect(self, exec_id: str) -> dict:
        try:
            return await _run_blocking(self.api.exec_inspect, exec_id)
        except DockerException as e:
            raise InspectionError(
                "exec inspect", f"failed to inspect an exec process: {e}"
            ) from e

    async def exit_code(self, exec_id: str) -> int:
        """Exit code of an exec; one that is still running counts as 0."""
        info = await self._inspect(exec_id)
        if info.get("Running"):
            logger.debug(f"Exec {exec_id[:12]} is still running")
        exit_code = info.get("ExitCode")
        return exit_code if exit_code is not None else 0

    async def terminal_exit_code(self, exec_id: str, cancel=None) -> int:
        """Exit code of an exec whose output has ended.

        Re-inspects briefly while Docker still reports the exec as running.
        """
        for _ in range(EXIT_SETTLE_ATTEMPTS):
            info = await self._inspect(exec_id)
            if not info.get("Running"):
                exit_code = info.get("ExitCode")
                return exit_code if exit_code is not None else 0
            _check_cancel(cancel, "exec inspect")
            await asyncio.sleep(EXIT_SETTLE_INTERVAL)

        raise InspectionError(
            "exec inspect", f"exec {exec_id[:12]} still running after its output ended"
        )

    async def check(self, exec_id: str, operation: str = "exec", cancel=None) -> int:
        exit_code = await self.terminal_exit_code(exec_id, cancel)
        if exit_code != 0:
            raise NonZeroExitError(operation, exit_code)
        return exit_code

    async def recent_logs(
        self, container: ContainerRef, window: int = RECENT_LOGS_WINDOW
    ) -> str:
        since = int(time.time()) - window
        try:
            data = await _run_blocking(
                lambda: self.api.logs(container.id, stdout=True, stderr=True, since=since)
            )
        except DockerException as e:
            raise LogFetchError(
                "container logs", f"failed to get logs from container {container}: {e}"
            ) from e
        return data.decode("utf-8", errors="replace")

    async def check_with_logs(
        self, container: ContainerRef, exec_id: str, operation: str = "exec"
    ) -> int:
        """Like check(), but a failure carries the recent container logs."""
        exit_code = await self.exit_code(exec_id)
        if exit_code == 0:
            return exit_code

        try:
            logs = await self.recent_logs(container)
        except LogFetchError as e:
            logger.warning(f"Reporting exit code without logs: {e}")
            raise NonZeroExitError(operation, exit_code) from e

        raise NonZeroExitError(
            operation,
            exit_code,
            f"exit code: {exit_code}.\nContainer logs:\n{logs}",
        )


class ExecGateway:
    """Runs commands in containers and turns the exec lifecycle into one result."""

    def __init__(
        self,
        client: docker.DockerClient,
        inspector: Optional[ResultInspector] = None,
        cleanup_timeout: float = 5.0,
    ):
        self.api = client.api
        self.inspector = inspector or ResultInspector(client)
        self.cleanup_timeout = cleanup_timeout
        # Keeps watchers of abandoned readers referenced until they finish.
        self._watchers: set[asyncio.Task] = set()

    async def execute(
        self, container: ContainerRef, spec: ExecSpec, cancel=None
    ) -> ExecOutcome:
        """Run a command and return its trimmed stdout.

        Any stderr output is a failure, whatever the exit code.
        """
        handle, stdout, stderr = await self._collect(container, spec, cancel, "exec")

        if stderr:
            raise DemuxError("exec", stderr.decode("utf-8", errors="replace").strip())

        exit_code = await self.inspector.check(handle.exec_id, cancel=cancel)
        return ExecOutcome(stdout=stdout.strip(), exit_code=exit_code)

    async def run(self, container: ContainerRef, spec: ExecSpec, cancel=None) -> int:
        """Run a command for its exit code only; output is discarded."""
        _check_cancel(cancel, "exec run")
        handle = await self._create(container, spec)

        try:
            output = await _run_blocking(
                lambda: self.api.exec_start(handle.exec_id, tty=spec.tty)
            )
        except DockerException as e:
            raise AttachError("exec start", f"failed to start a command: {e}") from e
        logger.debug(f"Exec {handle.exec_id[:12]} produced {len(output or b'')} bytes")

        return await self.inspector.check(handle.exec_id, "exec run")

    async def run_foreground(
        self, container: ContainerRef, spec: ExecSpec, cancel=None
    ) -> ExecOutcome:
        """Start a long-running command, such as the database server.

        The command is not waited for and its output is never read, so
        stderr does not fail it. ``cancel`` is only checked before the exec
        is created. If the command has already exited with a non-zero code,
        the error carries the recent container logs.
        """
        _check_cancel(cancel, "exec foreground")
        handle = await self._create(container, spec)
        sock = await self._attach(handle, spec)
        try:
            exit_code = await self.inspector.check_with_logs(
                container, handle.exec_id, "exec foreground"
            )
        finally:
            _release(sock)
        return ExecOutcome(stdout=b"", exit_code=exit_code)

    async def _create(self, container: ContainerRef, spec: ExecSpec) -> ExecHandle:
        try:
            resp = await _run_blocking(
                lambda: self.api.exec_create(
                    container.id,
                    spec.command,
                    stdout=True,
                    stderr=True,
                    tty=spec.tty,
                    user=spec.user or "",
                    environment=spec.environment(),
                    workdir=spec.workdir,
                )
            )
        except DockerException as e:
            raise CreationError(
                "exec create", f"failed to create an exec command in {container}: {e}"
            ) from e

        handle = ExecHandle(exec_id=resp["Id"], container=container)
        logger.debug(f"Created exec {handle.exec_id[:12]} in {container}: {spec.command}")
        return handle

    async def _attach(self, handle: ExecHandle, spec: ExecSpec):
        try:
            return await _run_blocking(
                lambda: self.api.exec_start(handle.exec_id, tty=spec.tty, socket=True)
            )
        except DockerException as e:
            raise AttachError(
                "exec attach", f"failed to attach to exec command: {e}"
            ) from e

    async def _collect(
        self, container: ContainerRef, spec: ExecSpec, cancel, operation: str
    ) -> tuple[ExecHandle, bytes, bytes]:
        _check_cancel(cancel, operation)
        handle = await self._create(container, spec)
        sock = await self._attach(handle, spec)

        try:
            stdout, stderr = io.BytesIO(), io.BytesIO()
            reader = asyncio.get_event_loop().run_in_executor(
                None, self._pump, sock, spec.tty, stdout, stderr
            )
            await self._wait(reader, cancel, operation)
            return handle, stdout.getvalue(), stderr.getvalue()
        finally:
            _release(sock)

    @staticmethod
    def _pump(sock, tty: bool, stdout, stderr) -> None:
        try:
            if tty:
                copy_raw(sock, stdout)
            else:
                copy_frames(sock, stdout, stderr)
        except OSError as e:
            raise DemuxError("demux", f"failed to copy output: {e}") from e

    async def _wait(self, reader: asyncio.Future, cancel, operation: str) -> None:
        if cancel is None:
            await reader
            return

        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {reader, cancelled}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancelled.cancel()
            if not reader.done():
                self._abandon(reader)

        if reader in done:
            reader.result()
            return
        raise CancellationError(operation, cancel_reason(cancel))

    def _abandon(self, reader: asyncio.Future) -> None:
        """Let an unfinished reader wind down without blocking the caller."""

        async def watch():
            try:
                await asyncio.wait_for(reader, self.cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Abandoned exec reader still running after {self.cleanup_timeout}s"
                )
            except Exception as e:
                logger.debug(f"Abandoned exec reader stopped: {e}")

        task = asyncio.ensure_future(watch())
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
