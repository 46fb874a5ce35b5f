from __future__ import annotations

import sys
import threading

import pytest

from docstore.media import CommandExecutionError, run_command
from docstore.storage import OperationCancelled

pytestmark = pytest.mark.media


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def test_run_command_captures_output():
    result = run_command(_python("print('ok')"))

    assert result.returncode == 0
    assert result.stdout.strip() == "ok"
    assert result.command[0] == sys.executable


def test_non_zero_exit_raises_with_details():
    with pytest.raises(CommandExecutionError) as excinfo:
        run_command(_python("import sys; sys.stderr.write('boom'); sys.exit(3)"))

    assert excinfo.value.returncode == 3
    assert excinfo.value.stderr == "boom"


def test_check_false_returns_failed_result():
    result = run_command(_python("import sys; sys.exit(2)"), check=False)

    assert result.returncode == 2


def test_retry_check_controls_retries(tmp_path):
    counter = tmp_path / "count.txt"
    script = (
        "import pathlib, sys\n"
        f"p = pathlib.Path({str(counter)!r})\n"
        "n = int(p.read_text()) if p.exists() else 0\n"
        "p.write_text(str(n + 1))\n"
        "sys.exit(0 if n >= 1 else 1)\n"
    )

    result = run_command(_python(script), retries=2)

    assert result.returncode == 0
    assert counter.read_text() == "2"

    counter.unlink()
    with pytest.raises(CommandExecutionError):
        run_command(_python(script), retries=2, retry_check=lambda _result, _error: False)
    assert counter.read_text() == "1"


def test_timeout_raises_command_error():
    with pytest.raises(CommandExecutionError) as excinfo:
        run_command(_python("import time; time.sleep(5)"), timeout=0.3)

    assert excinfo.value.timeout is True


def test_cancel_event_kills_the_process():
    cancel = threading.Event()
    timer = threading.Timer(0.2, cancel.set)
    timer.start()
    try:
        with pytest.raises(OperationCancelled):
            run_command(_python("import time; time.sleep(5)"), cancel_event=cancel)
    finally:
        timer.cancel()


def test_missing_executable_raises():
    with pytest.raises(CommandExecutionError) as excinfo:
        run_command(["definitely-not-a-real-binary-docstore"])

    assert isinstance(excinfo.value.cause, FileNotFoundError)
