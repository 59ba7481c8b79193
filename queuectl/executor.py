import logging
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Shell convention for "command not found / could not start".
EXIT_NOT_STARTED = 127


@dataclass(frozen=True)
class ExecutionResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def error_message(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip()
        if detail:
            return f"exit code {self.returncode}: {detail[-400:]}"
        return f"exit code {self.returncode}"


def run_command(cmd: str) -> ExecutionResult:
    """
    Run `cmd` through the shell and wait for it to finish.

    There is no timeout: a command runs until it exits on its own. Any
    non-zero exit is a failure; stderr output alone is not.
    """
    try:
        result = subprocess.run(
            cmd,
            shell=True,
            capture_output=True,
            text=True,
            errors="replace",
        )
    except (OSError, ValueError) as e:
        logger.error("Could not start command %r: %s", cmd, e)
        return ExecutionResult(EXIT_NOT_STARTED, stderr=str(e))

    if result.stdout:
        logger.info("stdout: %s", result.stdout.strip())
    if result.stderr:
        logger.warning("stderr: %s", result.stderr.strip())
    return ExecutionResult(result.returncode, result.stdout, result.stderr)
