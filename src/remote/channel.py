"""SSH remote execution channel.

Every operation opens its own paramiko connection and closes it before
returning, on success and on failure. Nothing is retried here; callers that
need to wait for a host to come up poll verify_connectivity().
"""

import logging
import secrets
import socket
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

import paramiko

from common import CommandResult

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_COMMAND_TIMEOUT = 300.0


class RemoteError(Exception):
    """Base exception for remote channel errors."""

    def __init__(self, code: str, message: str, host: str = ''):
        self.code = code
        self.message = message
        self.host = host
        prefix = f"[{host}] " if host else ''
        super().__init__(f"{code}: {prefix}{message}")


class AuthenticationError(RemoteError):
    """Credential rejected, or private key missing or unreadable."""

    def __init__(self, message: str, host: str = ''):
        super().__init__("E101", message, host)


class RemoteConnectionError(RemoteError, ConnectionError):
    """Host unreachable, DNS failure, refused, or SSH negotiation failed."""

    def __init__(self, message: str, host: str = ''):
        super().__init__("E102", message, host)


class CommandExecutionError(RemoteError):
    """Transport failed after the connection was established."""

    def __init__(self, message: str, host: str = '', code: str = "E103"):
        super().__init__(code, message, host)


class CommandTimeoutError(CommandExecutionError):
    """Command did not finish within its timeout."""

    def __init__(self, timeout: float, host: str = ''):
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout}s", host, code="E104")


class TransferError(RemoteError):
    """File upload or download failed."""

    def __init__(self, message: str, host: str = ''):
        super().__init__("E105", message, host)


@dataclass(frozen=True)
class SSHTarget:
    """Where and how to connect."""
    host: str
    port: int = 22
    username: str = 'root'
    key_path: str = ''

    @property
    def key_file(self) -> Path:
        return Path(self.key_path).expanduser()

    def __str__(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"


def _make_heredoc_delimiter(script: str) -> str:
    """Pick a heredoc delimiter that does not occur in the script body."""
    while True:
        delimiter = f"FLEET_SCRIPT_EOF_{secrets.token_hex(8)}"
        if delimiter not in script:
            return delimiter


def wrap_script(script: str) -> str:
    """Wrap a script body as a quoted bash heredoc.

    The quoted delimiter disables expansion, so the body reaches bash verbatim.
    """
    delimiter = _make_heredoc_delimiter(script)
    body = script if script.endswith('\n') else script + '\n'
    return f"bash <<'{delimiter}'\n{body}{delimiter}\n"


class RemoteChannel:
    """Run commands and transfer files on a remote host over SSH."""

    def __init__(self, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    @contextmanager
    def _session(self, target: SSHTarget) -> Iterator[paramiko.SSHClient]:
        """Open a connection for the duration of one operation."""
        key_file = target.key_file
        if not key_file.is_file():
            raise AuthenticationError(f"Private key not found: {key_file}", target.host)

        client = paramiko.SSHClient()
        # Freshly provisioned hosts have no known_hosts entry yet
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            logger.debug(f"Connecting to {target}")
            try:
                client.connect(
                    hostname=target.host,
                    port=target.port,
                    username=target.username,
                    key_filename=str(key_file),
                    timeout=self.connect_timeout,
                    banner_timeout=self.connect_timeout,
                    auth_timeout=self.connect_timeout,
                    allow_agent=False,
                    look_for_keys=False,
                )
            except paramiko.AuthenticationException as e:
                raise AuthenticationError(
                    f"Authentication failed for {target.username}: {e}", target.host) from e
            except (paramiko.SSHException, OSError) as e:
                raise RemoteConnectionError(
                    f"Cannot connect to {target.host}:{target.port}: {e}", target.host) from e
            yield client
        finally:
            try:
                client.close()
            except Exception as e:  # pylint: disable=broad-except
                logger.debug(f"Ignoring error while closing connection to {target.host}: {e}")

    def verify_connectivity(self, target: SSHTarget) -> None:
        """Confirm the host accepts our credentials.

        Raises:
            AuthenticationError: Credential rejected or key missing
            RemoteConnectionError: Host unreachable or SSH negotiation failed
        """
        with self._session(target):
            logger.debug(f"SSH connectivity to {target} verified")

    def execute_command(self, target: SSHTarget, command: str,
                        timeout: Optional[float] = None) -> CommandResult:
        """Run a command and capture its output.

        A non-zero exit code is returned in the result, not raised.
        """
        timeout = timeout or self.command_timeout
        with self._session(target) as client:
            return self._run(client, target, command, timeout)

    def execute_script(self, target: SSHTarget, script: str,
                       timeout: Optional[float] = None) -> CommandResult:
        """Run a multi-line script through bash on the remote host."""
        return self.execute_command(target, wrap_script(script), timeout=timeout)

    def _run(self, client: paramiko.SSHClient, target: SSHTarget,
             command: str, timeout: float) -> CommandResult:
        try:
            _stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
            out = stdout.read().decode('utf-8', errors='replace')
            err = stderr.read().decode('utf-8', errors='replace')
            exit_code = stdout.channel.recv_exit_status()
        except socket.timeout as e:
            raise CommandTimeoutError(timeout, target.host) from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise CommandExecutionError(f"Command transport failed: {e}", target.host) from e

        logger.debug(f"[{target.host}] exit={exit_code}")
        return CommandResult(stdout=out, stderr=err, exit_code=exit_code)

    def upload_file(self, target: SSHTarget, local_path, remote_path: str) -> None:
        """Copy a local file to the remote host over SFTP."""
        local = Path(local_path)
        if not local.is_file():
            raise TransferError(f"Local file not found: {local}", target.host)

        with self._session(target) as client:
            try:
                with client.open_sftp() as sftp:
                    sftp.put(str(local), remote_path)
            except (paramiko.SSHException, OSError) as e:
                raise TransferError(f"Upload {local} -> {remote_path} failed: {e}", target.host) from e
        logger.debug(f"[{target.host}] Uploaded {local} -> {remote_path}")

    def download_file(self, target: SSHTarget, local_path, remote_path: str) -> None:
        """Copy a remote file to the local machine over SFTP.

        Arguments follow upload_file: local path first, then remote path.
        """
        local = Path(local_path)
        with self._session(target) as client:
            try:
                local.parent.mkdir(parents=True, exist_ok=True)
                with client.open_sftp() as sftp:
                    sftp.get(remote_path, str(local))
            except (paramiko.SSHException, OSError) as e:
                raise TransferError(f"Download {remote_path} -> {local} failed: {e}", target.host) from e
        logger.debug(f"[{target.host}] Downloaded {remote_path} -> {local}")
