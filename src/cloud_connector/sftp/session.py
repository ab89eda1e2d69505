"""Authenticated SSH/SFTP sessions over a local tunnel port."""

import os
import socket
from pathlib import Path
from types import TracebackType
from typing import Literal

import paramiko

from ..common.exceptions import AuthenticationFailed, ConfigurationError, RemoteIoError
from ..common.logging import get_logger
from ..common.utils import mask_sensitive_data

logger = get_logger(__name__)

KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)


def current_username() -> str:
    """Get the current username from the environment."""
    username = os.environ.get("USER") or os.environ.get("USERNAME")
    if not username:
        raise ConfigurationError("Could not determine current username")
    return username


def load_private_key(path: Path) -> paramiko.PKey:
    """Load a private key file, trying each supported key type."""
    errors = []
    for key_class in KEY_CLASSES:
        try:
            return key_class.from_private_key_file(str(path))
        except paramiko.PasswordRequiredException:
            raise
        except (paramiko.SSHException, ValueError) as e:
            errors.append(f"{key_class.__name__}: {e}")
    raise paramiko.SSHException(f"Unsupported private key ({'; '.join(errors)})")


def _try_agent(transport: paramiko.Transport, username: str, failures: list[str]) -> bool:
    agent = paramiko.Agent()
    try:
        keys = agent.get_keys()
        if not keys:
            failures.append("SSH agent: no keys available (is ssh-agent running?)")
            return False
        for key in keys:
            fingerprint = mask_sensitive_data(key.get_fingerprint().hex(), show_chars=8)
            try:
                transport.auth_publickey(username, key)
            except paramiko.SSHException as e:
                failures.append(f"SSH agent key {key.get_name()} ({fingerprint}): {e}")
                continue
            if transport.is_authenticated():
                logger.info("Authenticated with SSH agent key", fingerprint=fingerprint)
                return True
        return False
    finally:
        agent.close()


def _try_key_file(
    transport: paramiko.Transport, username: str, key_path: Path, failures: list[str]
) -> bool:
    if not key_path.exists():
        failures.append(
            f"SSH key file not found at: {key_path}. Set up SSH keys or start ssh-agent."
        )
        return False
    try:
        pkey = load_private_key(key_path)
        transport.auth_publickey(username, pkey)
    except (paramiko.SSHException, OSError) as e:
        failures.append(f"SSH key file ({key_path}): {e}")
        return False
    if not transport.is_authenticated():
        failures.append(f"SSH key file ({key_path}): key not accepted")
        return False
    logger.info("Authenticated with SSH key file", key_path=str(key_path))
    return True


def authenticate(transport: paramiko.Transport, username: str, key_path: Path) -> str:
    """Authenticate with the SSH agent, falling back to a private key file.

    Returns:
        Name of the method that succeeded ("agent" or "key_file")

    Raises:
        AuthenticationFailed: Listing the failure of every attempted method
    """
    failures: list[str] = []
    if _try_agent(transport, username, failures):
        return "agent"
    if _try_key_file(transport, username, key_path, failures):
        return "key_file"

    logger.warning("All SSH authentication methods failed", attempts=len(failures))
    raise AuthenticationFailed(failures)


class SftpSession:
    """An authenticated transport and its SFTP channel, closed together."""

    def __init__(self, transport: paramiko.Transport, client: paramiko.SFTPClient):
        self.transport = transport
        self.client = client

    def close(self) -> None:
        try:
            self.client.close()
        finally:
            self.transport.close()

    def __enter__(self) -> "SftpSession":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False


def open_sftp_session(
    host: str,
    port: int,
    username: str,
    key_path: Path,
    timeout: float = 10.0,
) -> SftpSession:
    """Connect to ``host:port`` (the tunnel's local end) and open SFTP.

    Raises:
        RemoteIoError: If the connection, handshake or SFTP channel fails
        AuthenticationFailed: If no authentication method succeeded
    """
    logger.info("Creating SSH session for SFTP", host=host, port=port, username=username)
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        raise RemoteIoError(f"Failed to connect to SSH server at {host}:{port}", e) from e

    try:
        transport = paramiko.Transport(sock)
    except (paramiko.SSHException, OSError) as e:
        sock.close()
        raise RemoteIoError("Failed to create SSH transport", e) from e

    try:
        try:
            transport.start_client(timeout=timeout)
        except (paramiko.SSHException, OSError) as e:
            raise RemoteIoError("SSH handshake failed", e) from e

        authenticate(transport, username, key_path)

        try:
            client = paramiko.SFTPClient.from_transport(transport)
        except (paramiko.SSHException, OSError) as e:
            raise RemoteIoError("Failed to create SFTP session", e) from e
        if client is None:
            raise RemoteIoError("Failed to create SFTP session")
    except Exception:
        transport.close()
        raise

    logger.info("SSH session authenticated", host=host, port=port)
    return SftpSession(transport, client)
