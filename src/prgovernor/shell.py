from __future__ import annotations

from dataclasses import dataclass
import logging
import subprocess


LOGGER = logging.getLogger("prgovernor.shell")


class CommandError(RuntimeError):
    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


def run_capture(
    argv: list[str],
    *,
    input_text: str | None = None,
    timeout_seconds: float | None = None,
) -> CommandResult:
    try:
        proc = subprocess.run(
            argv,
            input=input_text,
            text=True,
            capture_output=True,
            check=False,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired as exc:
        LOGGER.error(
            "event=command_timed_out command=%s timeout_seconds=%s",
            " ".join(argv),
            timeout_seconds,
        )
        raise CommandError(
            f"Command timed out after {timeout_seconds}s\ncmd: {' '.join(argv)}",
            code="ETIMEDOUT",
        ) from exc
    return CommandResult(
        argv=tuple(argv),
        returncode=proc.returncode,
        stdout=proc.stdout,
        stderr=proc.stderr,
    )

