import io
from unittest.mock import MagicMock

import pytest

from pgbox.demux import encode_frame
from pgbox.models import ContainerRef, StreamKind


def frames(*parts: tuple[StreamKind, bytes]) -> io.BytesIO:
    """Build a multiplexed attach stream."""
    return io.BytesIO(b"".join(encode_frame(kind, payload) for kind, payload in parts))


@pytest.fixture
def docker_client():
    """A docker.DockerClient stand-in; tests configure ``client.api``."""
    client = MagicMock()
    client.api.exec_create.return_value = {"Id": "0123456789abcdef"}
    client.api.exec_inspect.return_value = {"Running": False, "ExitCode": 0}
    return client


@pytest.fixture
def container():
    return ContainerRef(id="c0ffee", name="dblab_clone_6000")
