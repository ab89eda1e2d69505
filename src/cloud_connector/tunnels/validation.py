"""Allow-list validation for identifiers that reach the tunnel helper's argv.

Every pattern is matched with ``re.fullmatch`` so a trailing newline or any
shell metacharacter makes the value invalid.
"""

import re

from ..common.exceptions import InvalidIdentifierError
from ..common.utils import validate_port

# 6-30 chars, lowercase letters, digits, hyphens; starts with a letter,
# ends with a letter or digit
PROJECT_ID_PATTERN = re.compile(r"[a-z]([a-z0-9-]{4,28}[a-z0-9])?")

# region-location#-letter, e.g. us-central1-a
ZONE_PATTERN = re.compile(r"[a-z]+-[a-z]+[0-9]+-[a-z]")

# 1-63 chars, lowercase letters, digits, hyphens; starts with a letter
INSTANCE_NAME_PATTERN = re.compile(r"[a-z]([a-z0-9-]{0,61}[a-z0-9])?")

# POSIX username, 1-32 chars
USERNAME_PATTERN = re.compile(r"[a-z_][a-z0-9_-]{0,31}")

MAX_INSTANCE_NAME_LENGTH = 63
MAX_USERNAME_LENGTH = 32


def validate_project_id(project_id: str) -> str:
    """Validate a cloud project id.

    Raises:
        InvalidIdentifierError: If the id is empty or malformed
    """
    if not project_id:
        raise InvalidIdentifierError("Project ID cannot be empty")
    if not PROJECT_ID_PATTERN.fullmatch(project_id):
        raise InvalidIdentifierError(
            f"Invalid project ID '{project_id}'. Must be 6-30 chars, lowercase "
            "letters/digits/hyphens, start with letter, end with letter or digit"
        )
    return project_id


def validate_zone(zone: str) -> str:
    """Validate a zone name such as ``us-central1-a``."""
    if not zone:
        raise InvalidIdentifierError("Zone cannot be empty")
    if not ZONE_PATTERN.fullmatch(zone):
        raise InvalidIdentifierError(
            f"Invalid zone '{zone}'. Expected format: region-location#-letter "
            "(e.g., us-central1-a)"
        )
    return zone


def validate_instance_name(instance_name: str) -> str:
    """Validate an instance name (the tunnel target)."""
    if not instance_name:
        raise InvalidIdentifierError("Instance name cannot be empty")
    if len(instance_name) > MAX_INSTANCE_NAME_LENGTH:
        raise InvalidIdentifierError(
            f"Instance name '{instance_name}' too long ({len(instance_name)} chars). "
            f"Maximum is {MAX_INSTANCE_NAME_LENGTH} characters"
        )
    if not INSTANCE_NAME_PATTERN.fullmatch(instance_name):
        raise InvalidIdentifierError(
            f"Invalid instance name '{instance_name}'. Must start with lowercase "
            "letter, contain only lowercase letters/digits/hyphens, and end with "
            "letter or digit"
        )
    return instance_name


def validate_username(username: str) -> str:
    """Validate a POSIX username used to build ``/home/{username}``."""
    if not username:
        raise InvalidIdentifierError("Username cannot be empty")
    if len(username) > MAX_USERNAME_LENGTH:
        raise InvalidIdentifierError(
            f"Username '{username}' too long ({len(username)} chars). "
            f"Maximum is {MAX_USERNAME_LENGTH} characters"
        )
    if not USERNAME_PATTERN.fullmatch(username):
        raise InvalidIdentifierError(
            f"Invalid username '{username}'. Must start with lowercase letter or "
            "underscore, contain only lowercase letters/digits/underscores/hyphens"
        )
    return username


def validate_remote_port(port: int) -> int:
    try:
        validate_port(port, "Remote port")
    except ValueError as e:
        raise InvalidIdentifierError(str(e)) from e
    return port


def sanitize_zone_from_url(zone_url: str) -> str:
    """Extract and validate the zone name from a compute API zone URL.

    ``https://www.googleapis.com/compute/v1/projects/p/zones/us-central1-a``
    becomes ``us-central1-a``; a bare zone name is validated as-is.
    """
    return validate_zone(zone_url.rsplit("/", 1)[-1])


def validate_tunnel_request(
    project: str, zone: str, target: str, remote_port: int
) -> None:
    """Validate every value that will appear in a tunnel helper invocation."""
    validate_project_id(project)
    validate_zone(zone)
    validate_instance_name(target)
    validate_remote_port(remote_port)
