"""Unit tests for the local and SSH command runners."""

import socket
import subprocess
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from clustertask.api.local import LocalCommandRunner
from clustertask.api.ssh import SSHCommandRunner
from clustertask.errors import BackendCommandError, BackendTimeout


@patch("subprocess.run")
def test_local_run_success(mock_run):
    """Test successful command execution."""
    mock_run.return_value = MagicMock(stdout="123\n", stderr="", returncode=0)

    result = LocalCommandRunner().run(["wrapper.sh", "start"], env={"NAME": "job"})

    assert result.stdout == "123\n"
    assert result.returncode == 0
    assert result.first_line == "123"
    args, kwargs = mock_run.call_args
    assert args[0] == ["wrapper.sh", "start"]
    assert kwargs["env"]["NAME"] == "job"
    assert kwargs["timeout"] == 60.0


@patch("subprocess.run")
def test_local_run_non_zero_exit_is_returned(mock_run):
    mock_run.return_value = MagicMock(stdout="", stderr="boom", returncode=3)

    result = LocalCommandRunner().run(["wrapper.sh", "status", "1"])

    assert result.returncode == 3
    assert result.stderr == "boom"


@patch("subprocess.run")
def test_local_run_removes_variables_set_to_none(mock_run, monkeypatch):
    monkeypatch.setenv("DISPLAY", ":0")
    mock_run.return_value = MagicMock(stdout="", stderr="", returncode=0)

    LocalCommandRunner(env={"EXTRA": "1"}).run(["true"], env={"DISPLAY": None})

    env = mock_run.call_args.kwargs["env"]
    assert "DISPLAY" not in env
    assert env["EXTRA"] == "1"


@patch("subprocess.run")
def test_local_run_timeout(mock_run):
    mock_run.side_effect = subprocess.TimeoutExpired("wrapper.sh", 5)

    with pytest.raises(BackendTimeout, match="timed out after 5 seconds"):
        LocalCommandRunner().run(["wrapper.sh"], timeout=5)


@patch("subprocess.run")
def test_local_run_cannot_start(mock_run):
    mock_run.side_effect = FileNotFoundError("No such file or directory")

    with pytest.raises(BackendCommandError, match="Failed to execute command"):
        LocalCommandRunner().run(["missing.sh"])


def test_local_check_executable(write_script, tmp_path):
    runner = LocalCommandRunner()
    executable = write_script("ok.sh", "exit 0\n")
    plain = write_script("plain.sh", "exit 0\n", executable=False)

    assert runner.check_executable(str(executable))
    assert not runner.check_executable(str(plain))
    assert not runner.check_executable(str(tmp_path / "missing.sh"))
    assert runner.file_exists(str(plain))
    assert not runner.file_exists(str(tmp_path))


def test_local_run_real_process():
    result = LocalCommandRunner().run(["sh", "-c", "echo $GREETING"], env={"GREETING": "hello"})
    assert result.first_line == "hello"


def _mock_channel(stdout=b"", stderr=b"", exit_status=0):
    out = MagicMock()
    out.read.return_value = stdout
    out.channel.recv_exit_status.return_value = exit_status
    err = MagicMock()
    err.read.return_value = stderr
    return MagicMock(), out, err


@pytest.fixture
def ssh_client():
    with patch("clustertask.api.ssh.paramiko.SSHClient") as client_cls:
        client = client_cls.return_value
        client.get_transport.return_value.is_active.return_value = True
        client.exec_command.return_value = _mock_channel(b"4242\n")
        yield client


class TestSSHCommandRunner:
    def test_build_command_exports_and_removes_variables(self):
        runner = SSHCommandRunner("submit.example.com")

        cmd = runner.build_command(
            ["/opt/wrapper.sh", "start"],
            env={"DISPLAY": None, "NAME": "my job", "MEMORY": "2"},
        )

        assert cmd == "env -u DISPLAY NAME='my job' MEMORY=2 /opt/wrapper.sh start"

    def test_build_command_without_environment(self):
        runner = SSHCommandRunner("submit.example.com")
        assert runner.build_command(["wrapper.sh", "status", "1"]) == "wrapper.sh status 1"

    def test_run_connects_lazily_once(self, ssh_client):
        runner = SSHCommandRunner("submit.example.com", username="alice")

        first = runner.run(["wrapper.sh", "start"], env={"NAME": "a"})
        runner.run(["wrapper.sh", "status", "4242"])

        assert first.first_line == "4242"
        assert first.returncode == 0
        assert ssh_client.connect.call_count == 1
        kwargs = ssh_client.connect.call_args.kwargs
        assert kwargs["username"] == "alice"
        assert ssh_client.exec_command.call_args_list[0].args[0] == "env NAME=a wrapper.sh start"

    def test_run_timeout(self, ssh_client):
        ssh_client.exec_command.side_effect = socket.timeout()
        runner = SSHCommandRunner("submit.example.com")

        with pytest.raises(BackendTimeout):
            runner.run(["wrapper.sh", "status", "1"], timeout=3)

    def test_run_channel_failure(self, ssh_client):
        ssh_client.exec_command.side_effect = paramiko.SSHException("channel closed")
        runner = SSHCommandRunner("submit.example.com")

        with pytest.raises(BackendCommandError, match="channel closed"):
            runner.run(["wrapper.sh", "status", "1"])

    def test_connection_failure(self, ssh_client):
        ssh_client.connect.side_effect = OSError("unreachable")
        runner = SSHCommandRunner("submit.example.com", connection_attempts=2, retry_delay=0)

        with pytest.raises(BackendCommandError, match="after 2 attempts"):
            runner.run(["wrapper.sh", "status", "1"])
        assert ssh_client.connect.call_count == 2

    def test_check_executable_uses_test(self, ssh_client):
        ssh_client.exec_command.return_value = _mock_channel(exit_status=1)
        runner = SSHCommandRunner("submit.example.com")

        assert runner.check_executable("/opt/my wrapper.sh") is False
        cmd = ssh_client.exec_command.call_args.args[0]
        assert "test -x '/opt/my wrapper.sh'" in cmd

    def test_from_settings_requires_hostname(self):
        with pytest.raises(BackendCommandError, match="hostname"):
            SSHCommandRunner.from_settings({"username": "alice"})

    def test_from_settings(self):
        runner = SSHCommandRunner.from_settings(
            {"hostname": "submit.example.com", "port": 2222, "key_filename": None}
        )
        assert runner.hostname == "submit.example.com"
        assert runner.port == 2222
        assert runner.key_filename is None

    def test_close(self, ssh_client):
        runner = SSHCommandRunner("submit.example.com")
        runner.run(["true"])
        runner.close()

        ssh_client.close.assert_called_once()
        assert runner.client is None
