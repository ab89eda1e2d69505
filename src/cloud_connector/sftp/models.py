"""Models exposed by the file transfer layer."""

import posixpath
import stat
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RemoteFileEntry(BaseModel):
    """One entry of a remote directory listing. Never persisted."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    size: int = Field(default=0, ge=0)
    is_directory: bool = False
    modified_time: int | None = Field(default=None, description="Unix timestamp")
    permissions: int | None = None

    @classmethod
    def from_attributes(cls, directory: str, attributes: Any) -> "RemoteFileEntry":
        """Build an entry from ``paramiko.SFTPAttributes`` of a listing."""
        mode = attributes.st_mode
        mtime = attributes.st_mtime
        return cls(
            name=attributes.filename,
            path=posixpath.join(directory, attributes.filename),
            size=attributes.st_size or 0,
            is_directory=mode is not None and stat.S_ISDIR(mode),
            modified_time=int(mtime) if mtime is not None else None,
            permissions=stat.S_IMODE(mode) if mode is not None else None,
        )


class TransferResult(BaseModel):
    """Outcome of a completed upload or download."""

    model_config = ConfigDict(frozen=True)

    local_path: str
    remote_path: str
    bytes_transferred: int = Field(ge=0)
