"""Secure file operations over an established tunnel."""

import posixpath
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any

import paramiko

from ..common.exceptions import (
    InvalidIdentifierError,
    PathTraversalRejected,
    RemoteIoError,
    TransferError,
    TransferSizeExceeded,
)
from ..common.logging import get_logger
from ..common.utils import validate_port
from ..config import TransferConfig
from .models import RemoteFileEntry, TransferResult
from .paths import (
    home_directory,
    sanitize_filename,
    validate_local_path,
    validate_name,
    validate_remote_path,
)
from .session import SftpSession, open_sftp_session

logger = get_logger(__name__)

SessionFactory = Callable[..., SftpSession]

# Errors paramiko and the OS raise for remote operations
REMOTE_ERRORS = (OSError, paramiko.SSHException)


def copy_with_limit(
    reader: IO[bytes], writer: IO[bytes], max_size: int, chunk_size: int = 32 * 1024
) -> int:
    """Copy in chunks, aborting once the running total exceeds ``max_size``.

    The limit is checked before each chunk is written, so at most
    ``max_size`` bytes ever reach the writer.

    Returns:
        Number of bytes copied

    Raises:
        TransferSizeExceeded: If the source holds more than ``max_size`` bytes
    """
    total = 0
    while True:
        chunk = reader.read(chunk_size)
        if not chunk:
            break
        total += len(chunk)
        if total > max_size:
            raise TransferSizeExceeded(max_size)
        writer.write(chunk)
    return total


class SecureFileTransfer:
    """List, upload, download, create and delete files through a tunnel.

    Every path is validated before a session is opened; each operation uses
    its own short-lived SSH session on the tunnel's local port.
    """

    def __init__(
        self,
        local_port: int,
        username: str,
        config: TransferConfig | None = None,
        host: str = "127.0.0.1",
        session_factory: SessionFactory | None = None,
    ):
        try:
            validate_port(local_port, "Local port")
        except ValueError as e:
            raise InvalidIdentifierError(str(e)) from e
        self.home = home_directory(username)
        self.local_port = local_port
        self.username = username
        self.host = host
        self.config = config or TransferConfig()
        self._session_factory = session_factory or open_sftp_session

    @contextmanager
    def _sftp(self) -> Iterator[Any]:
        with self._session_factory(
            self.host,
            self.local_port,
            self.username,
            key_path=self.config.key_path,
            timeout=self.config.connect_timeout,
        ) as session:
            yield session.client

    def list_directory(self, remote_path: str | None = None) -> list[RemoteFileEntry]:
        """List a remote directory, directories first then by name.

        Args:
            remote_path: Directory to list; the home directory if None
        """
        validated = validate_remote_path(remote_path or self.home, self.username)
        logger.info("Listing SFTP directory", remote_path=validated)

        with self._sftp() as sftp:
            try:
                attributes = sftp.listdir_attr(validated)
            except REMOTE_ERRORS as e:
                raise RemoteIoError(f"Failed to read directory '{validated}'", e) from e

        entries = [
            RemoteFileEntry.from_attributes(validated, attr)
            for attr in attributes
            if attr.filename not in (".", "..")
        ]
        entries.sort(key=lambda entry: (not entry.is_directory, entry.name.lower()))

        logger.info("Directory listing completed", count=len(entries))
        return entries

    def upload_file(
        self,
        local_path: str | Path,
        remote_dir: str | None = None,
        remote_name: str | None = None,
    ) -> TransferResult:
        """Upload a local file into a remote directory.

        The remote file name is the sanitized local name (or ``remote_name``).

        Raises:
            PathTraversalRejected: If either path escapes its root
            InvalidName: If no safe remote name can be derived
            TransferSizeExceeded: If the file is larger than the ceiling; the
                partial remote file is removed
            RemoteIoError: If a remote operation fails
        """
        source_path = validate_local_path(local_path, self.config.resolved_local_root)
        name = validate_name(sanitize_filename(remote_name or source_path.name))
        target = validate_remote_path(
            posixpath.join(remote_dir or self.home, name), self.username
        )
        if not source_path.is_file():
            raise TransferError(f"Local file not found: {source_path}")

        logger.info(
            "Uploading file via SFTP", local_path=str(source_path), remote_path=target
        )

        with open(source_path, "rb") as source, self._sftp() as sftp:
            try:
                with sftp.open(target, "wb") as destination:
                    copied = copy_with_limit(
                        source,
                        destination,
                        self.config.max_transfer_bytes,
                        self.config.chunk_size,
                    )
            except TransferSizeExceeded:
                self._remove_partial_upload(sftp, target)
                raise
            except REMOTE_ERRORS as e:
                raise RemoteIoError(f"Failed to upload to '{target}'", e) from e

        logger.info("File uploaded successfully", bytes=copied)
        return TransferResult(
            local_path=str(source_path), remote_path=target, bytes_transferred=copied
        )

    def _remove_partial_upload(self, sftp: Any, remote_path: str) -> None:
        try:
            sftp.remove(remote_path)
        except REMOTE_ERRORS as e:
            logger.error(
                "Failed to remove partial upload", remote_path=remote_path, error=str(e)
            )

    def download_file(self, remote_path: str, local_path: str | Path) -> TransferResult:
        """Download a remote file to a local path.

        Raises:
            PathTraversalRejected: If either path escapes its root
            TransferSizeExceeded: If the remote file is larger than the
                ceiling; the partial local file is removed
            RemoteIoError: If a remote or local write operation fails
        """
        source = validate_remote_path(remote_path, self.username)
        target_path = validate_local_path(local_path, self.config.resolved_local_root)

        logger.info(
            "Downloading file via SFTP", remote_path=source, local_path=str(target_path)
        )

        with self._sftp() as sftp:
            try:
                remote_file = sftp.open(source, "rb")
            except REMOTE_ERRORS as e:
                raise RemoteIoError(f"Failed to open remote file '{source}'", e) from e

            with remote_file:
                try:
                    local_file = open(target_path, "wb")
                except OSError as e:
                    raise TransferError(
                        f"Failed to create local file '{target_path}': {e}"
                    ) from e

                # From here on the local file is ours to clean up
                try:
                    with local_file:
                        copied = copy_with_limit(
                            remote_file,
                            local_file,
                            self.config.max_transfer_bytes,
                            self.config.chunk_size,
                        )
                except TransferSizeExceeded:
                    target_path.unlink(missing_ok=True)
                    raise
                except REMOTE_ERRORS as e:
                    target_path.unlink(missing_ok=True)
                    raise RemoteIoError(f"Failed to download '{source}'", e) from e

        logger.info("File downloaded successfully", bytes=copied)
        return TransferResult(
            local_path=str(target_path), remote_path=source, bytes_transferred=copied
        )

    def create_directory(self, parent: str, name: str) -> str:
        """Create ``name`` inside ``parent``.

        Returns:
            Normalized path of the new directory
        """
        folder = validate_name(name)
        target = validate_remote_path(posixpath.join(parent, folder), self.username)
        logger.info("Creating remote directory", remote_path=target)

        with self._sftp() as sftp:
            try:
                sftp.mkdir(target, mode=0o755)
            except REMOTE_ERRORS as e:
                raise RemoteIoError(f"Failed to create directory '{target}'", e) from e

        logger.info("Directory created successfully", remote_path=target)
        return target

    def delete(self, remote_path: str, is_directory: bool = False) -> None:
        """Delete a remote file, or an empty directory when ``is_directory``."""
        target = validate_remote_path(remote_path, self.username)
        if target == self.home:
            raise PathTraversalRejected(remote_path, "cannot delete the home directory")

        logger.info("Deleting remote path", remote_path=target, is_directory=is_directory)

        with self._sftp() as sftp:
            try:
                if is_directory:
                    sftp.rmdir(target)
                else:
                    sftp.remove(target)
            except REMOTE_ERRORS as e:
                kind = "directory" if is_directory else "file"
                raise RemoteIoError(f"Failed to delete {kind} '{target}'", e) from e

        logger.info("Path deleted successfully", remote_path=target)
