"""Path and name validation for remote and local file operations.

Remote paths are normalized by folding components as plain strings, without
touching any filesystem, so symlinks on either side cannot change the result.
"""

import re
from pathlib import Path

from ..common.exceptions import InvalidName, PathTraversalRejected
from ..common.logging import get_logger
from ..tunnels.validation import validate_username

logger = get_logger(__name__)

MAX_NAME_LENGTH = 255
PLACEHOLDER = "_"
SHELL_METACHARACTERS = ';&|`$()<>"'

_SEPARATORS = re.compile(r"[/\\\x00]")
_METACHARACTERS = re.compile(f"[{re.escape(SHELL_METACHARACTERS)}]")
_REPEATED_PLACEHOLDER = re.compile(f"{re.escape(PLACEHOLDER)}{{2,}}")


def home_directory(username: str) -> str:
    """Return ``/home/{username}`` after validating the username."""
    validate_username(username)
    return f"/home/{username}"


def normalize_posix_path(path: str) -> str:
    """Fold an absolute POSIX path: drop ``.`` and empty parts, pop on ``..``."""
    segments: list[str] = []
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            if segments:
                segments.pop()
            continue
        segments.append(part)
    return "/" + "/".join(segments)


def validate_remote_path(remote_path: str, username: str) -> str:
    """Validate and normalize a remote path inside the user's home directory.

    Args:
        remote_path: Absolute path, or path relative to ``/home/{username}``
        username: Remote POSIX username

    Returns:
        Normalized absolute path

    Raises:
        InvalidIdentifierError: If the username is malformed
        PathTraversalRejected: If the path has a ``..`` component or resolves
            outside the home directory
    """
    home = home_directory(username)

    if "\x00" in remote_path:
        raise PathTraversalRejected(remote_path, "null bytes are not allowed")

    if ".." in remote_path.split("/"):
        logger.warning(
            "Path traversal attempt detected", remote_path=remote_path, username=username
        )
        raise PathTraversalRejected(
            remote_path, "parent directory components (..) are not allowed"
        )

    full_path = remote_path if remote_path.startswith("/") else f"{home}/{remote_path}"
    normalized = normalize_posix_path(full_path)

    if normalized != home and not normalized.startswith(home + "/"):
        logger.warning(
            "Access denied: path outside user directory",
            remote_path=remote_path,
            normalized_path=normalized,
            username=username,
        )
        raise PathTraversalRejected(remote_path, f"path must be within {home}")

    return normalized


def validate_local_path(local_path: str | Path, root: Path | None = None) -> Path:
    """Validate a local file path for uploads and downloads.

    The path may not contain ``..`` and, once symlinks in its existing part
    are resolved, must stay inside ``root`` (the user's home by default).

    Raises:
        PathTraversalRejected: If the path escapes ``root``
    """
    allowed_root = (root or Path.home()).expanduser().resolve()
    path = Path(local_path).expanduser()

    if ".." in path.parts:
        logger.warning("Local path traversal attempt detected", local_path=str(local_path))
        raise PathTraversalRejected(
            str(local_path), "parent directory components (..) are not allowed"
        )

    full_path = path if path.is_absolute() else allowed_root / path
    resolved = full_path.resolve()

    if resolved != allowed_root and allowed_root not in resolved.parents:
        logger.warning(
            "Access denied: local path outside allowed root",
            local_path=str(local_path),
            resolved_path=str(resolved),
        )
        raise PathTraversalRejected(str(local_path), f"path must be within {allowed_root}")

    return resolved


def validate_name(name: str) -> str:
    """Validate a bare file or directory name such as a new folder name.

    Returns:
        The name with surrounding whitespace removed

    Raises:
        InvalidName: If empty, only dots, too long, or containing a separator
            or ``..``
    """
    trimmed = name.strip()
    if not trimmed:
        raise InvalidName(name, "name cannot be empty")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise InvalidName(name, f"name longer than {MAX_NAME_LENGTH} characters")
    if "/" in trimmed or "\\" in trimmed:
        raise InvalidName(name, "name cannot contain path separators")
    if ".." in trimmed:
        raise InvalidName(name, "name cannot contain '..'")
    if not trimmed.strip("."):
        raise InvalidName(name, "name cannot consist only of dots")
    if "\x00" in trimmed:
        raise InvalidName(name, "name cannot contain null bytes")
    return trimmed


def sanitize_filename(filename: str) -> str:
    """Make a local file name safe to use as a remote file name.

    Separators, null bytes and shell metacharacters become ``_``, runs of
    ``_`` collapse to one, and leading/trailing ``_`` are trimmed.

    >>> sanitize_filename("report$(whoami).pdf")
    'report_whoami_.pdf'

    Raises:
        InvalidName: If nothing usable remains
    """
    sanitized = _SEPARATORS.sub(PLACEHOLDER, filename)
    sanitized = _METACHARACTERS.sub(PLACEHOLDER, sanitized)
    sanitized = _REPEATED_PLACEHOLDER.sub(PLACEHOLDER, sanitized)
    sanitized = sanitized.strip(PLACEHOLDER)

    if not sanitized.strip() or set(sanitized) <= {"."}:
        raise InvalidName(filename, "no usable characters left after sanitizing")
    return sanitized
