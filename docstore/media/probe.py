"""ffprobe based inspection of chapter audio files."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from .. import logging_manager as log_mgr
from .command_runner import run_command
from .exceptions import ProbeError

logger = log_mgr.get_logger().getChild("media.probe")


@dataclass(frozen=True, slots=True)
class AudioProbe:
    """Facts read from an audio container."""

    duration_sec: Optional[float] = None
    title_tag: Optional[str] = None


@runtime_checkable
class ChapterProber(Protocol):
    """Read the duration and title tag of an audio file."""

    def probe(self, path: Path, *, cancel: Optional[threading.Event] = None) -> AudioProbe:
        ...


def _title_from_tags(tags: Any) -> Optional[str]:
    if not isinstance(tags, Mapping):
        return None
    for key, value in tags.items():
        if str(key).lower() == "title" and isinstance(value, str):
            return value
    return None


def parse_ffprobe_output(payload: str) -> AudioProbe:
    """Interpret ``ffprobe -print_format json -show_format`` output."""

    try:
        document = json.loads(payload or "{}")
    except json.JSONDecodeError as exc:
        raise ProbeError(f"Unreadable ffprobe output: {exc}") from exc
    fmt = document.get("format") if isinstance(document, Mapping) else None
    if not isinstance(fmt, Mapping):
        return AudioProbe()

    duration: Optional[float] = None
    raw_duration = fmt.get("duration")
    if raw_duration is not None:
        try:
            duration = float(raw_duration)
        except (TypeError, ValueError):
            duration = None
    return AudioProbe(duration_sec=duration, title_tag=_title_from_tags(fmt.get("tags")))


class FfprobeChapterProber:
    """Probe files by shelling out to ``ffprobe``."""

    def __init__(self, binary: str = "ffprobe", *, timeout: float = 30.0) -> None:
        self._binary = binary
        self._timeout = timeout

    def probe(self, path: Path, *, cancel: Optional[threading.Event] = None) -> AudioProbe:
        result = run_command(
            [
                self._binary,
                "-v",
                "quiet",
                "-print_format",
                "json",
                "-show_format",
                str(path),
            ],
            timeout=self._timeout,
            cancel_event=cancel,
            logger_obj=logger,
        )
        return parse_ffprobe_output(result.stdout or "")


__all__ = ["AudioProbe", "ChapterProber", "FfprobeChapterProber", "parse_ffprobe_output"]
