"""Secure remote file operations over an established tunnel."""

from .models import RemoteFileEntry, TransferResult
from .paths import (
    sanitize_filename,
    validate_local_path,
    validate_name,
    validate_remote_path,
)
from .session import SftpSession, authenticate, current_username, open_sftp_session
from .transfer import SecureFileTransfer, copy_with_limit

__all__ = [
    "SecureFileTransfer",
    "RemoteFileEntry",
    "TransferResult",
    "SftpSession",
    "open_sftp_session",
    "authenticate",
    "current_username",
    "copy_with_limit",
    "validate_remote_path",
    "validate_local_path",
    "validate_name",
    "sanitize_filename",
]
