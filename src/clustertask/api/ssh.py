"""
SSH command runner.

Runs wrapper scripts on a remote submit host over SSH. The submit host must
share the task directories with the workflow host: only commands travel over
the connection, task artifacts are read from the shared filesystem.
"""

import logging
import os
import shlex
import socket
import threading
import time
from typing import Any, Dict, List, Optional, Sequence

import paramiko

from .base import CommandResult, CommandRunner
from ..errors import BackendCommandError, BackendTimeout

logger = logging.getLogger(__name__)


class SSHCommandRunner(CommandRunner):
    """
    Command runner that executes commands on a remote host with paramiko.

    The connection is opened lazily on the first command and shared by all
    task threads; every command uses its own SSH channel.
    """

    def __init__(
        self,
        hostname: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        key_filename: Optional[str] = None,
        port: int = 22,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = 60.0,
        connect_timeout: int = 10,
        connection_attempts: int = 3,
        retry_delay: int = 2,
        allow_agent: bool = True,
        look_for_keys: bool = True,
        banner_timeout: int = 15,
        auth_timeout: int = 30,
        disabled_algorithms: Optional[Dict[str, List[str]]] = None,
    ):
        """
        Initialize the SSH command runner.

        Args:
            hostname: The hostname of the submit host (``~/.ssh/config`` aliases work).
            username: The username to use for SSH authentication.
            password: The password to use for SSH authentication.
            key_filename: The path to the private key file to use for SSH authentication.
            port: The SSH port to connect to.
            env: Environment variables added to every command.
            timeout: Default command timeout in seconds.
            connect_timeout: Socket timeout for the connection in seconds.
            connection_attempts: Number of connection attempts before giving up.
            retry_delay: Delay between connection attempts in seconds.
            allow_agent: Whether to allow the use of the SSH agent.
            look_for_keys: Whether to search for discoverable private key files in ~/.ssh/.
            banner_timeout: Timeout for the SSH banner in seconds.
            auth_timeout: Timeout for SSH authentication in seconds.
            disabled_algorithms: Dictionary of disabled algorithms by type.
        """
        self.hostname = hostname
        self.username = username
        self.password = password
        self.key_filename = key_filename
        self.port = port
        self.env = env or {}
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.connection_attempts = connection_attempts
        self.retry_delay = retry_delay
        self.allow_agent = allow_agent
        self.look_for_keys = look_for_keys
        self.banner_timeout = banner_timeout
        self.auth_timeout = auth_timeout
        self.disabled_algorithms = disabled_algorithms

        self.client: Optional[paramiko.SSHClient] = None
        self._connect_lock = threading.Lock()

    @classmethod
    def from_settings(cls, ssh: Dict[str, Any]) -> "SSHCommandRunner":
        """Build a runner from the ``[cluster.ssh]`` table of a Clusterfile."""
        options = {k: v for k, v in ssh.items() if v is not None}
        if not options.get("hostname"):
            raise BackendCommandError("[cluster.ssh] requires a 'hostname'.")
        return cls(**options)

    def _connect(self) -> paramiko.SSHClient:
        """
        Connect to the remote host if not already connected.

        Raises:
            BackendCommandError: If the connection fails.
        """
        with self._connect_lock:
            if self.client is not None:
                transport = self.client.get_transport()
                if transport is not None and transport.is_active():
                    return self.client
                self.client.close()
                self.client = None

            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

            ssh_config = paramiko.SSHConfig()
            user_config_file = os.path.expanduser("~/.ssh/config")
            if os.path.exists(user_config_file):
                with open(user_config_file) as f:
                    ssh_config.parse(f)

            host_config = ssh_config.lookup(self.hostname)

            connect_kwargs = {
                "hostname": host_config.get("hostname", self.hostname),
                "port": int(host_config.get("port", self.port)),
                "username": self.username or host_config.get("user"),
                "password": self.password,
                "timeout": self.connect_timeout,
                "allow_agent": self.allow_agent,
                "look_for_keys": self.look_for_keys,
                "banner_timeout": self.banner_timeout,
                "auth_timeout": self.auth_timeout,
                "disabled_algorithms": self.disabled_algorithms,
            }

            if self.key_filename:
                connect_kwargs["key_filename"] = os.path.expanduser(self.key_filename)
            elif "identityfile" in host_config:
                connect_kwargs["key_filename"] = host_config["identityfile"][0]

            last_error = None
            for attempt in range(self.connection_attempts):
                try:
                    logger.debug(
                        "Connecting to %s (attempt %d/%d)...",
                        self.hostname,
                        attempt + 1,
                        self.connection_attempts,
                    )
                    client.connect(**connect_kwargs)
                    logger.info("Connected to %s", self.hostname)
                    self.client = client
                    return client
                except Exception as e:
                    last_error = e
                    logger.error("Connection attempt %d failed: %s", attempt + 1, e)
                    if attempt < self.connection_attempts - 1:
                        logger.debug("Retrying in %d seconds...", self.retry_delay)
                        time.sleep(self.retry_delay)

            raise BackendCommandError(
                f"Failed to connect to {self.hostname} after {self.connection_attempts} attempts.\n"
                f"Last error: {last_error}\n"
                f"Common fixes:\n"
                f"  - Verify SSH access: ssh {self.username or ''}{'@' if self.username else ''}{self.hostname}\n"
                f"  - Check SSH config at ~/.ssh/config\n"
                f"  - Ensure SSH keys or password are configured correctly"
            )

    def build_command(
        self,
        argv: Sequence[str],
        env: Optional[Dict[str, Optional[str]]] = None,
    ) -> str:
        """Render ``argv`` and its environment as one remote shell command."""
        merged: Dict[str, Optional[str]] = dict(self.env)
        merged.update(env or {})

        parts: List[str] = []
        if merged:
            parts.append("env")
            for key, value in merged.items():
                if value is None:
                    parts.extend(["-u", key])
            for key, value in merged.items():
                if value is not None:
                    parts.append(f"{key}={shlex.quote(value)}")
        parts.append(shlex.join(argv))
        return " ".join(parts)

    def _exec(self, cmd: str, timeout: Optional[float]) -> CommandResult:
        client = self._connect()
        try:
            _, stdout, stderr = client.exec_command(cmd, timeout=timeout)
            stdout_str = stdout.read().decode("utf-8", errors="replace")
            stderr_str = stderr.read().decode("utf-8", errors="replace")
            exit_status = stdout.channel.recv_exit_status()
        except socket.timeout as e:
            raise BackendTimeout(
                f"Command timed out after {timeout} seconds: {cmd}"
            ) from e
        except paramiko.SSHException as e:
            raise BackendCommandError(f"Failed to execute command: {e}") from e
        return CommandResult(stdout_str, stderr_str, exit_status)

    def run(
        self,
        argv: Sequence[str],
        env: Optional[Dict[str, Optional[str]]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        if timeout is None:
            timeout = self.timeout

        cmd = self.build_command(argv, env)
        logger.debug("Running command on %s: %s", self.hostname, cmd)
        result = self._exec(cmd, timeout)

        logger.debug("Command exit code: %d", result.returncode)
        if result.stdout:
            logger.debug("Command stdout: %s", result.stdout[:500])
        if result.stderr:
            logger.debug("Command stderr: %s", result.stderr[:500])
        return result

    def file_exists(self, path: str) -> bool:
        return self._exec(f"test -f {shlex.quote(path)}", self.timeout).returncode == 0

    def check_executable(self, path: str) -> bool:
        quoted = shlex.quote(path)
        result = self._exec(f"test -f {quoted} && test -x {quoted}", self.timeout)
        return result.returncode == 0

    def close(self) -> None:
        with self._connect_lock:
            if self.client is not None:
                self.client.close()
                self.client = None
