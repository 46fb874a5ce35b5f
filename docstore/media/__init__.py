"""Audio tooling used to inspect and tag chapter files."""

from .command_runner import CommandResult, run_command
from .exceptions import CommandExecutionError, MediaBackendError, ProbeError
from .probe import AudioProbe, ChapterProber, FfprobeChapterProber, parse_ffprobe_output
from .tagging import ChapterTagger, FfmpegChapterTagger, apply_title_tag

__all__ = [
    "AudioProbe",
    "ChapterProber",
    "ChapterTagger",
    "CommandExecutionError",
    "CommandResult",
    "FfmpegChapterTagger",
    "FfprobeChapterProber",
    "MediaBackendError",
    "ProbeError",
    "apply_title_tag",
    "parse_ffprobe_output",
    "run_command",
]
