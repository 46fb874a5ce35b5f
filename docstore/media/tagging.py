"""Rewrite the title tag of chapter audio files with ffmpeg."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import List, Optional, Protocol, runtime_checkable

from .. import logging_manager as log_mgr
from ..storage.errors import OperationCancelled
from .command_runner import run_command
from .exceptions import CommandExecutionError, MediaBackendError

logger = log_mgr.get_logger().getChild("media.tagging")


@runtime_checkable
class ChapterTagger(Protocol):
    """Write ``title_tag`` into a copy of ``source`` at ``destination``."""

    def copy_with_title(
        self,
        source: Path,
        destination: Path,
        fmt: str,
        title_tag: str,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        ...

    def transcode_with_title(
        self,
        source: Path,
        destination: Path,
        fmt: str,
        title_tag: str,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        ...


class FfmpegChapterTagger:
    """Tag chapters by remuxing (or, as a fallback, re-encoding) with ``ffmpeg``."""

    def __init__(self, binary: str = "ffmpeg", *, timeout: float = 600.0) -> None:
        self._binary = binary
        self._timeout = timeout

    def _base_args(self, source: Path, title_tag: str) -> List[str]:
        return [self._binary, "-y", "-i", str(source), "-metadata", f"title={title_tag}"]

    def copy_with_title(self, source, destination, fmt, title_tag, *, cancel=None) -> None:
        args = self._base_args(source, title_tag)
        if fmt == "mp3":
            args += ["-c", "copy", "-write_id3v2", "1", "-id3v2_version", "3", str(destination)]
        else:
            args += ["-c", "copy", "-f", "mp4", str(destination)]
        run_command(args, timeout=self._timeout, cancel_event=cancel, logger_obj=logger)

    def transcode_with_title(self, source, destination, fmt, title_tag, *, cancel=None) -> None:
        args = [self._binary, "-y", "-i", str(source)]
        if fmt == "mp3":
            args += ["-c:a", "libmp3lame", "-b:a", "64k", "-metadata", f"title={title_tag}"]
        else:
            args += ["-c:a", "aac", "-b:a", "64k", "-metadata", f"title={title_tag}", "-f", "mp4"]
        args.append(str(destination))
        run_command(args, timeout=self._timeout, cancel_event=cancel, logger_obj=logger)


def apply_title_tag(
    tagger: ChapterTagger,
    source: Path,
    destination: Path,
    fmt: str,
    title_tag: str,
    *,
    cancel: Optional[threading.Event] = None,
) -> bool:
    """Write a tagged copy of ``source`` to ``destination``.

    Tries a stream copy first and falls back to a transcode. Returns ``False``
    when both attempts fail; ``destination`` is removed in that case.
    """

    for attempt in (tagger.copy_with_title, tagger.transcode_with_title):
        try:
            attempt(source, destination, fmt, title_tag, cancel=cancel)
            return True
        except OperationCancelled:
            destination.unlink(missing_ok=True)
            raise
        except (MediaBackendError, OSError) as exc:
            detail = exc.stderr_tail() if isinstance(exc, CommandExecutionError) else ""
            logger.warning(
                "Title tag rewrite failed for %s: %s",
                source.name,
                exc,
                extra={
                    "event": "media.tagging.failed",
                    "key": source.as_posix(),
                    "stderr": detail or None,
                },
            )
            destination.unlink(missing_ok=True)
    return False


__all__ = ["ChapterTagger", "FfmpegChapterTagger", "apply_title_tag"]
