"""Remote command channel over OpenSSH.

Every call for one (user, host, port) goes through the same control master
socket, so the connection is opened once and reused serially for executable
lookups, existence checks and spawned searches.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from ..config import SshConfig
from ..exceptions import RemoteExecutionError
from .paths import RemotePath

logger = logging.getLogger(__name__)

# ssh reserves exit status 255 for its own (connection level) errors
SSH_TRANSPORT_FAILURE = 255


@dataclass
class CommandResult:
    """Result of a command run over the remote channel."""

    returncode: int
    stdout: str
    stderr: str = ""


class SshRemoteExecutor:
    """Runs shell command lines on one remote host through ssh."""

    def __init__(
        self,
        host: str,
        user: Optional[str] = None,
        port: Optional[int] = None,
        config: Optional[SshConfig] = None,
    ):
        self.host = host
        self.user = user
        self.port = port
        self.config = config or SshConfig()

    @classmethod
    def for_path(
        cls, remote_path: RemotePath, config: Optional[SshConfig] = None
    ) -> "SshRemoteExecutor":
        return cls(
            remote_path.host,
            user=remote_path.user,
            port=remote_path.port,
            config=config,
        )

    @property
    def control_path(self) -> str:
        # %C is ssh's hash of local host, remote host, port and user
        return str(self.config.control_dir.expanduser() / "locate-search-%C")

    def command_argv(self, command_line: str) -> List[str]:
        """ssh argument vector that runs ``command_line`` on the remote shell."""
        argv = [
            self.config.executable,
            "-o",
            "ControlMaster=auto",
            "-o",
            f"ControlPath={self.control_path}",
            "-o",
            f"ControlPersist={self.config.control_persist}",
            "-o",
            f"ConnectTimeout={self.config.connect_timeout}",
            "-o",
            "BatchMode=yes",
        ]
        if self.port is not None:
            argv.extend(["-p", str(self.port)])
        if self.user:
            argv.extend(["-l", self.user])
        argv.extend([self.host, command_line])
        return argv

    def run_command(
        self, command_line: str, timeout: Optional[float] = None
    ) -> CommandResult:
        """Run ``command_line`` remotely and wait for it.

        Raises:
            RemoteExecutionError: If ssh itself cannot run or connect
        """
        argv = self.command_argv(command_line)
        logger.debug(f"Remote command on {self.host}: {command_line}")
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout or self.config.connect_timeout * 2,
                stdin=subprocess.DEVNULL,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise RemoteExecutionError(f"ssh to {self.host} failed", str(e))

        if result.returncode == SSH_TRANSPORT_FAILURE:
            raise RemoteExecutionError(
                f"ssh to {self.host} failed", result.stderr.strip() or None
            )
        return CommandResult(result.returncode, result.stdout, result.stderr)
