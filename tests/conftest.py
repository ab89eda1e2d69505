"""Shared pytest fixtures for cloud connector tests."""

import errno
import io
import socket
import stat
import threading
from unittest.mock import Mock

import paramiko
import pytest

from cloud_connector.config import TransferConfig
from cloud_connector.sftp.transfer import SecureFileTransfer
from cloud_connector.tunnels.models import TunnelKey


@pytest.fixture
def mock_process():
    """Create a mock process object for testing.

    Returns:
        Mock: Mock process with common attributes
    """
    process = Mock()
    process.pid = 12345
    process.returncode = None
    process.poll.return_value = None  # Process is running
    process.terminate.return_value = None
    process.kill.return_value = None
    process.wait.return_value = 0
    process.stdout = io.StringIO("")
    return process


@pytest.fixture
def key():
    return TunnelKey(target="vm-a", remote_port=3389)


@pytest.fixture
def listening_port():
    """A local TCP listener standing in for a tunnel's forwarded port."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind(("127.0.0.1", 0))
    server.listen(16)
    stop = threading.Event()

    def accept_loop():
        server.settimeout(0.1)
        while not stop.is_set():
            try:
                conn, _ = server.accept()
                conn.close()
            except OSError:
                continue

    thread = threading.Thread(target=accept_loop, daemon=True)
    thread.start()
    yield server.getsockname()[1]
    stop.set()
    thread.join(timeout=1)
    server.close()


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class FakeRemoteFile(io.BytesIO):
    """In-memory remote file; written content is committed on close."""

    def __init__(self, sftp: "FakeSFTPClient", path: str, mode: str):
        initial = sftp.files[path] if "r" in mode else b""
        super().__init__(initial)
        self._sftp = sftp
        self._path = path
        self._mode = mode
        if "w" in mode:
            sftp.files[path] = b""

    def close(self) -> None:
        if not self.closed and "w" in self._mode:
            self._sftp.files[self._path] = self.getvalue()
        super().close()


class FakeSFTPClient:
    """Minimal in-memory stand-in for paramiko.SFTPClient."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.directories: set[str] = {"/home/alice"}
        self.calls: list[tuple[str, str]] = []

    def _parent_exists(self, path: str) -> None:
        parent = path.rsplit("/", 1)[0] or "/"
        if parent not in self.directories:
            raise FileNotFoundError(errno.ENOENT, "No such file", parent)

    def open(self, path: str, mode: str = "r") -> FakeRemoteFile:
        self.calls.append(("open", path))
        if "r" in mode and path not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file", path)
        if "w" in mode:
            self._parent_exists(path)
        return FakeRemoteFile(self, path, mode)

    def listdir_attr(self, path: str) -> list[paramiko.SFTPAttributes]:
        self.calls.append(("listdir_attr", path))
        if path not in self.directories:
            raise FileNotFoundError(errno.ENOENT, "No such file", path)
        result = []
        for directory in self.directories:
            if directory != path and directory.rsplit("/", 1)[0] == path:
                attr = paramiko.SFTPAttributes()
                attr.filename = directory.rsplit("/", 1)[1]
                attr.st_mode = stat.S_IFDIR | 0o755
                attr.st_size = 4096
                attr.st_mtime = 1700000000
                result.append(attr)
        for file_path, content in self.files.items():
            if file_path.rsplit("/", 1)[0] == path:
                attr = paramiko.SFTPAttributes()
                attr.filename = file_path.rsplit("/", 1)[1]
                attr.st_mode = stat.S_IFREG | 0o644
                attr.st_size = len(content)
                attr.st_mtime = 1700000001
                result.append(attr)
        return result

    def mkdir(self, path: str, mode: int = 0o777) -> None:
        self.calls.append(("mkdir", path))
        if path in self.directories or path in self.files:
            raise OSError(errno.EEXIST, "File exists", path)
        self._parent_exists(path)
        self.directories.add(path)

    def rmdir(self, path: str) -> None:
        self.calls.append(("rmdir", path))
        if path not in self.directories:
            raise FileNotFoundError(errno.ENOENT, "No such file", path)
        self.directories.remove(path)

    def remove(self, path: str) -> None:
        self.calls.append(("remove", path))
        if path not in self.files:
            raise FileNotFoundError(errno.ENOENT, "No such file", path)
        del self.files[path]

    def close(self) -> None:
        pass


class FakeSession:
    def __init__(self, client: FakeSFTPClient):
        self.client = client

    def __enter__(self) -> "FakeSession":
        return self

    def __exit__(self, *exc_info) -> bool:
        return False


@pytest.fixture
def fake_sftp():
    return FakeSFTPClient()


@pytest.fixture
def session_factory(fake_sftp):
    """Session factory handing out sessions backed by ``fake_sftp``."""
    return Mock(side_effect=lambda *args, **kwargs: FakeSession(fake_sftp))


@pytest.fixture
def transfer_config(tmp_path):
    return TransferConfig(local_root=tmp_path, max_transfer_bytes=1024, chunk_size=100)


@pytest.fixture
def file_transfer(transfer_config, session_factory):
    return SecureFileTransfer(
        2222, "alice", config=transfer_config, session_factory=session_factory
    )
