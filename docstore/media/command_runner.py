"""Helper utilities for running external commands consistently."""

from __future__ import annotations

import os
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, MutableMapping, Sequence

from .. import logging_manager as log_mgr
from ..storage.errors import OperationCancelled
from .exceptions import CommandExecutionError

logger = log_mgr.get_logger().getChild("media.command")

_POLL_INTERVAL = 0.1


@dataclass(slots=True)
class CommandResult:
    """Container describing a completed command execution."""

    command: tuple[str, ...]
    returncode: int
    stdout: str | None
    stderr: str | None
    duration: float


def _prepare_environment(env: Mapping[str, str] | None) -> Mapping[str, str]:
    if not env:
        return os.environ.copy()
    merged: MutableMapping[str, str] = os.environ.copy()
    merged.update({str(key): str(value) for key, value in env.items()})
    return merged


RetryPredicate = Callable[[CommandResult | None, BaseException | None], bool]


def _communicate(
    process: subprocess.Popen,
    *,
    timeout: float | None,
    cancel_event: threading.Event | None,
) -> tuple[str | None, str | None]:
    deadline = time.monotonic() + timeout if timeout is not None else None
    while True:
        if cancel_event is not None and cancel_event.is_set():
            process.kill()
            process.communicate()
            raise OperationCancelled("Command cancelled")
        wait = _POLL_INTERVAL
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                process.kill()
                stdout, stderr = process.communicate()
                raise subprocess.TimeoutExpired(process.args, timeout, output=stdout, stderr=stderr)
            wait = min(wait, remaining)
        try:
            return process.communicate(timeout=wait)
        except subprocess.TimeoutExpired:
            continue


def run_command(
    command: Sequence[str],
    *,
    timeout: float | None = None,
    env: Mapping[str, str] | None = None,
    retries: int = 0,
    retry_check: RetryPredicate | None = None,
    cwd: str | None = None,
    check: bool = True,
    cancel_event: threading.Event | None = None,
    logger_obj=logger,
) -> CommandResult:
    """Execute ``command`` and return a :class:`CommandResult`.

    Output is captured as text. ``retry_check`` controls whether a failed
    attempt is retried; by default non-zero exit codes and timeouts are retried
    until ``retries`` is exhausted. When ``cancel_event`` is set the running
    process is killed and :class:`OperationCancelled` is raised.
    """

    attempts = max(0, int(retries)) + 1
    env_vars = _prepare_environment(env)
    coerced = tuple(str(part) for part in command)
    last_exception: BaseException | None = None

    for attempt in range(1, attempts + 1):
        start = time.monotonic()
        if logger_obj:
            logger_obj.debug(
                "Executing command (attempt %s/%s)",
                attempt,
                attempts,
                extra={"event": "media.command.execute", "command": coerced},
            )
        try:
            process = subprocess.Popen(
                list(coerced),
                cwd=cwd,
                env=env_vars,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as exc:
            if logger_obj:
                logger_obj.error(
                    "Command executable not found",
                    extra={"event": "media.command.not_found", "command": coerced},
                )
            raise CommandExecutionError(coerced, cause=exc) from exc
        except OSError as exc:
            raise CommandExecutionError(coerced, cause=exc) from exc

        try:
            stdout, stderr = _communicate(process, timeout=timeout, cancel_event=cancel_event)
        except subprocess.TimeoutExpired as exc:
            duration = time.monotonic() - start
            result = CommandResult(coerced, -1, exc.output, exc.stderr, duration)
            error = CommandExecutionError(
                coerced, stdout=exc.output, stderr=exc.stderr, cause=exc, timeout=True
            )
            last_exception = error
            if logger_obj:
                logger_obj.warning(
                    "Command timed out after %.3fs",
                    duration,
                    extra={"event": "media.command.timeout", "command": coerced},
                )
            if attempt < attempts and (retry_check(result, error) if retry_check else True):
                continue
            raise error from exc

        duration = time.monotonic() - start
        result = CommandResult(coerced, process.returncode, stdout, stderr, duration)
        if check and process.returncode != 0:
            error = CommandExecutionError(
                coerced, returncode=process.returncode, stdout=stdout, stderr=stderr
            )
            last_exception = error
            if logger_obj:
                logger_obj.warning(
                    "Command returned non-zero status %s",
                    process.returncode,
                    extra={
                        "event": "media.command.failed",
                        "command": coerced,
                        "attempt": attempt,
                        "returncode": process.returncode,
                    },
                )
            if attempt < attempts and (retry_check(result, error) if retry_check else True):
                continue
            raise error

        if logger_obj:
            logger_obj.debug(
                "Command completed successfully in %.3fs",
                duration,
                extra={"event": "media.command.success", "command": coerced},
            )
        return result

    assert last_exception is not None  # pragma: no cover - logically unreachable
    raise last_exception


__all__ = ["CommandResult", "run_command"]
