"""Errors raised by the ffmpeg/ffprobe wrappers."""

from __future__ import annotations

from pathlib import PurePath
from typing import Sequence


class MediaBackendError(RuntimeError):
    """Base exception raised by audio probing and tagging helpers."""


class CommandExecutionError(MediaBackendError):
    """An external audio tool exited non-zero, timed out or never started."""

    def __init__(
        self,
        command: Sequence[str] | str,
        *,
        returncode: int | None = None,
        stdout: str | bytes | None = None,
        stderr: str | bytes | None = None,
        cause: BaseException | None = None,
        timeout: bool = False,
    ) -> None:
        if isinstance(command, (str, bytes)):
            command = [command]
        self.command = tuple(str(part) for part in command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.cause = cause
        self.timeout = timeout
        super().__init__(f"{self.program} {self._reason()}")

    @property
    def program(self) -> str:
        """Base name of the executable, e.g. ``ffmpeg``."""

        if not self.command:
            return "<empty command>"
        return PurePath(self.command[0]).name

    def stderr_tail(self, lines: int = 5) -> str:
        """Return the last ``lines`` lines of captured stderr for log records."""

        raw = self.stderr
        if raw is None:
            return ""
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        return "\n".join(raw.strip().splitlines()[-lines:])

    def _reason(self) -> str:
        if self.timeout:
            return "timed out"
        if self.returncode is not None:
            return f"exited with status {self.returncode}"
        if self.cause is not None:
            return f"could not be started ({self.cause.__class__.__name__})"
        return "failed"


class ProbeError(MediaBackendError):
    """Raised when probe output cannot be interpreted."""


__all__ = ["CommandExecutionError", "MediaBackendError", "ProbeError"]
