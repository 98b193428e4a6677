import subprocess
from dataclasses import dataclass
from typing import List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class ExecuteResult:
    exit_code: int
    execute_out: str

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def failed(self) -> bool:
        return not self.success


def run_command(args: List[str], timeout: Optional[float] = None) -> ExecuteResult:
    """
    Run a command and capture stdout+stderr.
    Never raises for a non-zero exit or a timeout; both come back as a failed result.
    """
    logger.debug("exec command", args=args)
    try:
        result = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        out = e.output if isinstance(e.output, str) else ""
        return ExecuteResult(exit_code=124, execute_out=f"{out}\ntimeout after {timeout}s".strip())
    except OSError as e:
        return ExecuteResult(exit_code=127, execute_out=str(e))

    return ExecuteResult(exit_code=result.returncode, execute_out=result.stdout or "")
