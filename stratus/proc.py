from __future__ import annotations

from dataclasses import dataclass
import logging
import subprocess
from typing import Callable

logger = logging.getLogger(__name__)

CommandRunner = Callable[[list[str]], subprocess.CompletedProcess[str]]

# Extra time granted to helm/kubectl beyond their own --timeout before the process is killed.
PROCESS_GRACE_SEC = 30
_MAX_DETAIL_LEN = 400


@dataclass(frozen=True)
class CommandResult:
    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def output(self) -> str:
        return f"{self.stderr}\n{self.stdout}"

    def mentions_not_found(self) -> bool:
        return "not found" in self.output.lower()


class AdapterCommandError(RuntimeError):
    def __init__(self, *, message: str, result: CommandResult) -> None:
        self.result = result
        super().__init__(self._build_message(message))

    def _build_message(self, message: str) -> str:
        detail = (self.result.stderr or self.result.stdout).strip()
        if len(detail) > _MAX_DETAIL_LEN:
            detail = f"{detail[:_MAX_DETAIL_LEN - 3]}..."
        cmd = " ".join(self.result.command)
        return f"{message} (returncode={self.result.returncode}, command={cmd!r}, detail={detail!r})"


def subprocess_runner(*, timeout: int | None = None) -> CommandRunner:
    """Runner executing commands with an overall wall-clock ceiling."""

    def _run(command: list[str]) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(command, capture_output=True, text=True, check=False, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            stderr = exc.stderr if isinstance(exc.stderr, str) else ""
            return subprocess.CompletedProcess(
                args=command,
                returncode=-1,
                stdout=exc.stdout if isinstance(exc.stdout, str) else "",
                stderr=f"{stderr}\ncommand timed out after {timeout}s".strip(),
            )
        except FileNotFoundError as exc:
            return subprocess.CompletedProcess(args=command, returncode=127, stdout="", stderr=str(exc))

    return _run


default_runner = subprocess_runner()


def run_command(
    command: list[str],
    *,
    runner: CommandRunner | None = None,
    error_message: str,
) -> CommandResult:
    active_runner = runner or default_runner
    logger.debug("Running command: %s", " ".join(command))
    completed = active_runner(command)
    result = CommandResult(
        command=command,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
    if result.returncode != 0:
        raise AdapterCommandError(message=error_message, result=result)
    return result
