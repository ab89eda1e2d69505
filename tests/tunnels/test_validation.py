"""Tests for identifier allow-list validation."""

import pytest

from cloud_connector.common.exceptions import InputValidationError, InvalidIdentifierError
from cloud_connector.tunnels.validation import (
    sanitize_zone_from_url,
    validate_instance_name,
    validate_project_id,
    validate_remote_port,
    validate_tunnel_request,
    validate_username,
    validate_zone,
)

INJECTION_ATTEMPTS = [
    "vm; rm -rf /",
    "vm && whoami",
    "vm | cat /etc/passwd",
    "vm`id`",
    "vm$(id)",
    "vm\nid",
    "vm ",
    "../vm",
    "vm\x00",
]


class TestProjectId:
    @pytest.mark.parametrize(
        "project", ["my-project", "project-123456", "a12345", "p" + "a" * 28 + "9"]
    )
    def test_valid(self, project):
        assert validate_project_id(project) == project

    @pytest.mark.parametrize(
        "project",
        ["", "My-Project", "1project", "project-", "proj", "p" + "a" * 30, "my_project"],
    )
    def test_invalid(self, project):
        with pytest.raises(InvalidIdentifierError):
            validate_project_id(project)

    @pytest.mark.parametrize("value", INJECTION_ATTEMPTS)
    def test_injection(self, value):
        with pytest.raises(InvalidIdentifierError):
            validate_project_id(value)


class TestZone:
    @pytest.mark.parametrize(
        "zone", ["us-central1-a", "europe-west1-b", "asia-east1-c", "us-east4-c"]
    )
    def test_valid(self, zone):
        assert validate_zone(zone) == zone

    @pytest.mark.parametrize(
        "zone", ["", "us-central1", "US-CENTRAL1-A", "uscentral1-a", "us-central1-a\n"]
    )
    def test_invalid(self, zone):
        with pytest.raises(InvalidIdentifierError):
            validate_zone(zone)

    def test_zone_from_url(self):
        url = "https://www.googleapis.com/compute/v1/projects/my-project/zones/us-central1-a"
        assert sanitize_zone_from_url(url) == "us-central1-a"

    def test_bare_zone_passes_through(self):
        assert sanitize_zone_from_url("europe-west1-b") == "europe-west1-b"

    def test_malformed_zone_url(self):
        with pytest.raises(InvalidIdentifierError):
            sanitize_zone_from_url("https://example.com/zones/us-central1-a;id")


class TestInstanceName:
    @pytest.mark.parametrize("name", ["vm", "vm-a", "web-server-01", "a" * 63])
    def test_valid(self, name):
        assert validate_instance_name(name) == name

    @pytest.mark.parametrize("name", ["", "1vm", "vm-", "VM-A", "vm_a", "a" * 64])
    def test_invalid(self, name):
        with pytest.raises(InvalidIdentifierError):
            validate_instance_name(name)

    def test_too_long_message(self):
        with pytest.raises(InvalidIdentifierError, match="too long"):
            validate_instance_name("a" * 64)

    @pytest.mark.parametrize("value", INJECTION_ATTEMPTS)
    def test_injection(self, value):
        with pytest.raises(InvalidIdentifierError):
            validate_instance_name(value)


class TestUsername:
    @pytest.mark.parametrize("username", ["alice", "_svc", "bob-2", "a" * 32])
    def test_valid(self, username):
        assert validate_username(username) == username

    @pytest.mark.parametrize("username", ["", "Alice", "1bob", "bob.smith", "a" * 33, "../root"])
    def test_invalid(self, username):
        with pytest.raises(InvalidIdentifierError):
            validate_username(username)


class TestRemotePort:
    @pytest.mark.parametrize("port", [1, 22, 3389, 65535])
    def test_valid(self, port):
        assert validate_remote_port(port) == port

    @pytest.mark.parametrize("port", [0, -1, 65536, True])
    def test_invalid(self, port):
        with pytest.raises(InvalidIdentifierError, match="Remote port"):
            validate_remote_port(port)


class TestTunnelRequest:
    def test_valid_request(self):
        validate_tunnel_request("my-project", "us-central1-a", "vm-a", 3389)

    @pytest.mark.parametrize(
        "project,zone,target,port",
        [
            ("my project", "us-central1-a", "vm-a", 22),
            ("my-project", "us-central1", "vm-a", 22),
            ("my-project", "us-central1-a", "vm;a", 22),
            ("my-project", "us-central1-a", "vm-a", 0),
        ],
    )
    def test_any_bad_field_rejects(self, project, zone, target, port):
        with pytest.raises(InputValidationError):
            validate_tunnel_request(project, zone, target, port)
