"""Tests for the tunnel helper process supervisor."""

import os
import sys
from unittest.mock import Mock

import pytest

from cloud_connector.common.exceptions import (
    BinaryNotFoundError,
    InvalidIdentifierError,
    TunnelError,
    TunnelStartupTimeout,
)
from cloud_connector.config import SupervisorConfig
from cloud_connector.tunnels import supervisor as supervisor_module
from cloud_connector.tunnels.models import TunnelKey
from cloud_connector.tunnels.supervisor import LOCAL_PORT_PATTERN, TunnelProcessSupervisor


class FakeHelper:
    """Stands in for HelperProcess; replays canned output on start."""

    output: list[str] = ["Listening on port [50123]."]
    exits_with: int | None = None

    def __init__(self, argv, on_output=None, stop_timeout=5.0):
        self.argv = list(argv)
        self._on_output = on_output
        self.started = False
        self.stopped = False
        self.returncode = None
        self.pid = 4242

    def start(self):
        self.started = True
        for line in self.output:
            self._on_output(line)
        self.returncode = self.exits_with

    def is_running(self):
        return self.started and not self.stopped and self.returncode is None

    def stop(self):
        self.stopped = True
        return True

    def output_tail(self, lines=10):
        return "\n".join(self.output[-lines:])


@pytest.fixture
def helpers(monkeypatch):
    """Patch process creation; returns the list of created fake helpers."""
    created = []

    def factory(argv, on_output=None, stop_timeout=5.0):
        helper = FakeHelper(argv, on_output, stop_timeout)
        created.append(helper)
        return helper

    monkeypatch.setattr(supervisor_module, "HelperProcess", factory)
    monkeypatch.setattr(supervisor_module, "resolve_binary", lambda binary: "/usr/bin/gcloud")
    return created


@pytest.fixture
def supervisor():
    return TunnelProcessSupervisor(
        SupervisorConfig(startup_timeout=0.5), port_check=Mock(return_value=True)
    )


class TestBuildCommand:
    def test_argument_vector(self):
        supervisor = TunnelProcessSupervisor()
        key = TunnelKey(target="vm-a", remote_port=3389)

        argv = supervisor.build_command(
            "/usr/bin/gcloud", key, "my-project", "us-central1-a", 0
        )

        assert argv == [
            "/usr/bin/gcloud",
            "compute",
            "start-iap-tunnel",
            "vm-a",
            "3389",
            "--local-host-port=localhost:0",
            "--zone",
            "us-central1-a",
            "--project",
            "my-project",
        ]

    @pytest.mark.parametrize(
        "line,port",
        [
            ("Picking local unused port [50123].", 50123),
            ("Listening on port [3390].", 3390),
        ],
    )
    def test_port_pattern(self, line, port):
        assert int(LOCAL_PORT_PATTERN.search(line).group(1)) == port


class TestSpawn:
    def test_spawn_returns_reported_port(self, supervisor, helpers, key):
        port = supervisor.spawn(key, "my-project", "us-central1-a")

        assert port == 50123
        assert supervisor.is_alive(key)
        assert supervisor.pid(key) == 4242
        assert supervisor.owned_keys() == [key]
        supervisor._port_check.assert_called_with(50123, timeout=0.5)

    def test_spawn_with_fixed_local_port(self, helpers, key, monkeypatch):
        monkeypatch.setattr(FakeHelper, "output", [])
        supervisor = TunnelProcessSupervisor(
            SupervisorConfig(startup_timeout=0.5, local_port=3390),
            port_check=Mock(return_value=True),
        )

        assert supervisor.spawn(key, "my-project", "us-central1-a") == 3390
        assert "--local-host-port=localhost:3390" in helpers[0].argv

    def test_invalid_identifiers_never_spawn(self, supervisor, helpers, key):
        with pytest.raises(InvalidIdentifierError):
            supervisor.spawn(key, "my project; rm -rf /", "us-central1-a")
        assert helpers == []

    def test_missing_binary(self, supervisor, key, monkeypatch):
        def missing(binary):
            raise BinaryNotFoundError(f"Binary '{binary}' not found in system PATH")

        monkeypatch.setattr(supervisor_module, "resolve_binary", missing)

        with pytest.raises(TunnelError, match="not found in system PATH"):
            supervisor.spawn(key, "my-project", "us-central1-a")
        assert supervisor.owned_keys() == []

    def test_early_exit_reports_code_and_output(self, supervisor, helpers, key, monkeypatch):
        monkeypatch.setattr(
            FakeHelper, "output", ["ERROR: (gcloud.compute.start-iap-tunnel) not found"]
        )
        monkeypatch.setattr(FakeHelper, "exits_with", 1)

        with pytest.raises(TunnelError, match="exited with code 1.*not found"):
            supervisor.spawn(key, "my-project", "us-central1-a")

        assert supervisor.owned_keys() == []
        assert helpers[0].stopped

    def test_startup_timeout_when_port_never_opens(self, helpers, key):
        supervisor = TunnelProcessSupervisor(
            SupervisorConfig(startup_timeout=0.3), port_check=Mock(return_value=False)
        )

        with pytest.raises(TunnelStartupTimeout, match="local port 50123"):
            supervisor.spawn(key, "my-project", "us-central1-a")

        assert supervisor.owned_keys() == []
        assert helpers[0].stopped

    def test_startup_timeout_when_port_never_reported(self, supervisor, helpers, key, monkeypatch):
        monkeypatch.setattr(FakeHelper, "output", ["Testing if tunnel connection works."])

        with pytest.raises(TunnelStartupTimeout, match="report its port"):
            supervisor.spawn(key, "my-project", "us-central1-a")

    def test_respawn_replaces_leftover_process(self, supervisor, helpers, key):
        supervisor.spawn(key, "my-project", "us-central1-a")
        supervisor.spawn(key, "my-project", "us-central1-a")

        assert len(helpers) == 2
        assert helpers[0].stopped
        assert not helpers[1].stopped
        assert supervisor.owned_keys() == [key]

    def test_live_helper_of_other_attempt_is_kept(self, supervisor, helpers, key):
        supervisor.spawn(key, "my-project", "us-central1-a", owner="first")

        with pytest.raises(TunnelError, match="held by another connect attempt"):
            supervisor.spawn(key, "my-project", "us-central1-a", owner="second")

        assert not helpers[0].stopped
        assert helpers[1].stopped
        assert supervisor.kill(key, owner="first") is True

    def test_dead_helper_of_other_attempt_is_replaced(self, supervisor, helpers, key):
        supervisor.spawn(key, "my-project", "us-central1-a", owner="first")
        helpers[0].returncode = 1

        supervisor.spawn(key, "my-project", "us-central1-a", owner="second")

        assert helpers[0].stopped
        assert supervisor.kill(key, owner="first") is False
        assert supervisor.kill(key, owner="second") is True


class TestKill:
    def test_kill_owned_process(self, supervisor, helpers, key):
        supervisor.spawn(key, "my-project", "us-central1-a")

        assert supervisor.kill(key) is True
        assert helpers[0].stopped
        assert not supervisor.is_alive(key)
        assert supervisor.pid(key) is None

    def test_kill_unknown_key(self, supervisor, key):
        assert supervisor.kill(key) is False

    def test_kill_with_other_owner_is_ignored(self, supervisor, helpers, key):
        supervisor.spawn(key, "my-project", "us-central1-a", owner="current")

        assert supervisor.kill(key, owner="stale") is False
        assert not helpers[0].stopped
        assert supervisor.is_alive(key)

        assert supervisor.kill(key, owner="current") is True
        assert helpers[0].stopped

    def test_unscoped_kill_stops_any_owner(self, supervisor, helpers, key):
        supervisor.spawn(key, "my-project", "us-central1-a", owner="current")

        assert supervisor.kill(key) is True
        assert supervisor.owned_keys() == []

    def test_is_alive_reflects_exit(self, supervisor, helpers, key):
        supervisor.spawn(key, "my-project", "us-central1-a")
        helpers[0].returncode = 0
        assert not supervisor.is_alive(key)

    def test_shutdown_stops_everything(self, supervisor, helpers):
        rdp = TunnelKey(target="vm-a", remote_port=3389)
        ssh = TunnelKey(target="vm-a", remote_port=22)
        supervisor.spawn(rdp, "my-project", "us-central1-a")
        supervisor.spawn(ssh, "my-project", "us-central1-a")

        supervisor.shutdown()

        assert supervisor.owned_keys() == []
        assert all(helper.stopped for helper in helpers)


FAKE_HELPER_SCRIPT = """\
import socket
import sys

server = socket.socket()
server.bind(("127.0.0.1", 0))
server.listen(8)
print("Listening on port [%d]." % server.getsockname()[1], file=sys.stderr, flush=True)
while True:
    conn, _ = server.accept()
    conn.close()
"""


@pytest.mark.integration
class TestSupervisorIntegration:
    """Spawns a real helper that behaves like the tunnel binary."""

    @pytest.fixture
    def helper_binary(self, tmp_path):
        script = tmp_path / "fake-gcloud"
        script.write_text(f"#!{sys.executable}\n{FAKE_HELPER_SCRIPT}")
        os.chmod(script, 0o755)
        return str(script)

    def test_spawn_and_kill_real_helper(self, helper_binary, key):
        supervisor = TunnelProcessSupervisor(
            SupervisorConfig(helper_binary=helper_binary, startup_timeout=10.0)
        )
        try:
            port = supervisor.spawn(key, "my-project", "us-central1-a")
            assert port > 0
            assert supervisor.is_alive(key)
        finally:
            supervisor.shutdown()

        assert not supervisor.is_alive(key)
