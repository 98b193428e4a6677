import shlex
from pathlib import Path, PurePosixPath
from typing import List, Optional, Union

import structlog

from node_manager.core.config import Settings, settings as default_settings
from node_manager.core.errors import RemoteCommandFailed
from node_manager.services.shell import ExecuteResult, run_command

logger = structlog.get_logger(__name__)

RemotePath = Union[str, PurePosixPath]


class SshClient:
    """
    Thin wrapper over the ssh/scp binaries.
    BatchMode keeps an unreachable or password-protected host from blocking;
    every call is bounded by ConnectTimeout plus a subprocess timeout.
    """

    def __init__(
        self,
        user: str = "root",
        port: int = 22,
        connect_timeout: int = 10,
        command_timeout: float = 120.0,
    ):
        self.user = user
        self.port = port
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SshClient":
        settings = settings or default_settings
        return cls(
            user=settings.SSH_USER,
            port=settings.SSH_PORT,
            connect_timeout=settings.SSH_CONNECT_TIMEOUT,
            command_timeout=settings.SSH_COMMAND_TIMEOUT,
        )

    def _options(self) -> List[str]:
        return [
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "StrictHostKeyChecking=no",
            "-o", "BatchMode=yes",
        ]

    def _target(self, ip: str) -> str:
        return f"{self.user}@{ip}"

    def exec(self, ip: str, command: str) -> ExecuteResult:
        args = ["ssh", *self._options(), "-p", str(self.port), self._target(ip), command]
        return run_command(args, timeout=self.command_timeout)

    def connect(self, ip: str) -> bool:
        result = self.exec(ip, "echo ok")
        if result.failed:
            logger.warning("ssh connect failed", ip=ip, output=result.execute_out)
        return result.success

    def exec_or_raise(self, ip: str, command: str) -> str:
        result = self.exec(ip, command)
        if result.failed:
            raise RemoteCommandFailed(
                f"Command failed on {ip}: {command}",
                output=result.execute_out,
            )
        return result.execute_out

    def mkdir(self, ip: str, remote_dir: RemotePath) -> None:
        self.exec_or_raise(ip, f"mkdir -p {shlex.quote(str(remote_dir))}")

    def scp(self, ip: str, local_path: Path, remote_path: RemotePath) -> None:
        """Copy a local file or directory to ``remote_path``, creating its parent."""
        remote_path = PurePosixPath(remote_path)
        self.mkdir(ip, remote_path.parent)

        args = [
            "scp", *self._options(), "-P", str(self.port), "-r", "-q",
            str(local_path), f"{self._target(ip)}:{remote_path}",
        ]
        result = run_command(args, timeout=self.command_timeout)
        if result.failed:
            raise RemoteCommandFailed(
                f"Copy {local_path} to {ip}:{remote_path} failed",
                output=result.execute_out,
            )

    def mv_dir(self, ip: str, src: RemotePath, dst: RemotePath) -> None:
        dst = PurePosixPath(dst)
        self.mkdir(ip, dst.parent)
        self.exec_or_raise(ip, f"mv {shlex.quote(str(src))} {shlex.quote(str(dst))}")
