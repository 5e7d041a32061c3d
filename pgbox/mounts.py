"""Bind mounts for a data directory.

When this process runs inside a container itself, the data directory path
only exists in its own mount namespace. Containers created through the
shared Docker daemon need the host-side path instead, which is recovered
from this container's own mounts.
"""

import asyncio
import logging
import os
import posixpath
import socket
from typing import Optional

import docker
from docker.errors import DockerException

from pgbox.errors import InspectionError
from pgbox.models import MountSpec

logger = logging.getLogger(__name__)

CGROUP_MARKERS = ("docker", "lxc", "kubepods", "containerd", "libpod")
CONTAINER_ENV_FILES = (".dockerenv", "run/.containerenv")


def _read_text(path: str) -> str:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError:
        return ""


def is_guest(proc_root: str = "/proc", root: str = "/") -> bool:
    """Report whether this process runs inside a container."""
    for name in CONTAINER_ENV_FILES:
        if os.path.exists(os.path.join(root, name)):
            return True

    environ = _read_text(os.path.join(proc_root, "1", "environ"))
    if any(item.startswith("container=") for item in environ.split("\0")):
        return True

    for name in ("self/cgroup", "1/cgroup"):
        cgroup = _read_text(os.path.join(proc_root, name))
        if any(marker in cgroup for marker in CGROUP_MARKERS):
            return True

    return False


def _suffix_under(path: str, prefix: str) -> Optional[str]:
    """Return path relative to prefix, or None if prefix is not a parent."""
    path = posixpath.normpath(path)
    prefix = posixpath.normpath(prefix)
    if prefix == "/":
        return path.lstrip("/")
    if path == prefix:
        return ""
    if path.startswith(prefix + "/"):
        return path[len(prefix) + 1:]
    return None


def mounts_from_mount_points(data_dir: str, mount_points: list[dict]) -> list[MountSpec]:
    """Rewrite this container's mounts for a child container.

    ``mount_points`` is the ``Mounts`` list of a container inspection. The
    most specific mount containing ``data_dir`` is re-pointed at it; other
    mounts containing it are dropped and the rest pass through unchanged.
    """
    data_dir = posixpath.normpath(data_dir)
    best, best_len = None, -1
    for point in mount_points:
        destination = posixpath.normpath(point.get("Destination", ""))
        if _suffix_under(data_dir, destination) is not None and len(destination) > best_len:
            best, best_len = point, len(destination)

    mounts: list[MountSpec] = []
    targets: set[str] = set()

    for point in mount_points:
        source = point.get("Source", "")
        target = point.get("Destination", "")
        suffix = _suffix_under(data_dir, target)

        if suffix is not None:
            if point is not best:
                logger.debug(f"Skipping mount {target}: a more specific mount covers {data_dir}")
                continue
            source = posixpath.join(source, suffix) if suffix else source
            target = data_dir

        if target in targets:
            continue
        targets.add(target)

        mounts.append(
            MountSpec(
                source=source,
                target=target,
                type=point.get("Type") or "bind",
                read_only=not point.get("RW", True),
                propagation=point.get("Propagation") or None,
            )
        )

    return mounts


async def compute_mounts(
    client: docker.DockerClient,
    data_dir: str,
    host_is_guest: Optional[bool] = None,
    self_mounts: Optional[list[dict]] = None,
    hostname: Optional[str] = None,
    proc_root: str = "/proc",
) -> list[MountSpec]:
    """Mounts exposing ``data_dir`` at the same path in a new container."""
    data_dir = posixpath.normpath(data_dir)
    if host_is_guest is None:
        host_is_guest = is_guest(proc_root)

    if not host_is_guest:
        return [MountSpec(source=data_dir, target=data_dir)]

    if self_mounts is None:
        hostname = hostname or socket.gethostname()
        try:
            attrs = await asyncio.get_event_loop().run_in_executor(
                None, client.api.inspect_container, hostname
            )
        except DockerException as e:
            raise InspectionError(
                "container inspect", f"failed to inspect own container {hostname}: {e}"
            ) from e
        self_mounts = attrs.get("Mounts") or []

    mounts = mounts_from_mount_points(data_dir, self_mounts)
    if not any(m.target == data_dir for m in mounts):
        logger.warning(f"No mount of this container covers {data_dir}")
    logger.debug(f"Mounts for {data_dir}: {mounts}")
    return mounts
