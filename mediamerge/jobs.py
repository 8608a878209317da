"""Job descriptions for the five supported operations.

Builders validate their inputs and return an immutable :class:`JobSpec`. They never touch
the filesystem or the engine; translating a spec into ffmpeg invocations is the runner's job.
"""

import math
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from . import config
from .errors import ValidationError
from .probe import ProbeResult


class JobKind(str, Enum):
    CONCAT_AUDIO = "concat_audio"
    MERGE_VIDEO_AUDIO_MIX = "merge_video_audio_mix"
    CONCAT_VIDEOS = "concat_videos"
    TRIM = "trim"
    MERGE_VIDEO_BACKGROUND_AUDIO = "merge_video_background_audio"


class JobSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: JobKind
    inputs: Tuple[str, ...]
    parameters: Dict[str, Any] = Field(default_factory=dict)
    output_path: str
    # Paths produced by one stage and consumed by a later one.
    intermediates: Tuple[str, ...] = ()


# ----------------------------
# Form value parsing
# ----------------------------
def require_count(items: Optional[Sequence[Any]], minimum: int, message: str) -> None:
    if not items or len(items) < minimum:
        raise ValidationError(message, stage="validate")


def parse_audio_level(raw: Optional[str]) -> int:
    """Background volume percentage: 50 when absent or non-numeric, clamped to 0..100.

    Fractional values are truncated (``"30.5"`` -> 30).
    """
    if raw is None:
        return config.DEFAULT_AUDIO_LEVEL
    try:
        value = float(str(raw).strip())
    except ValueError:
        return config.DEFAULT_AUDIO_LEVEL
    if not math.isfinite(value):
        return config.DEFAULT_AUDIO_LEVEL
    return max(0, min(int(value), 100))


def parse_delay_ms(raw: Optional[str]) -> int:
    if raw is None or str(raw).strip() == "":
        return 0
    try:
        seconds = float(str(raw).strip())
    except ValueError:
        raise ValidationError("audioDelay must be a number of seconds", stage="validate")
    if seconds < 0 or not math.isfinite(seconds):
        raise ValidationError("audioDelay must be a non-negative number of seconds", stage="validate")
    return int(round(seconds * 1000))


# ----------------------------
# Builders
# ----------------------------
def concat_audio(inputs: Sequence[str], output_path: str) -> JobSpec:
    require_count(inputs, 1, "No files uploaded")
    return JobSpec(kind=JobKind.CONCAT_AUDIO, inputs=tuple(inputs), output_path=output_path)


def merge_video_audio_mix(video: str, audio: str, output_path: str, delay_ms: int = 0) -> JobSpec:
    if not video or not audio:
        raise ValidationError("Both video and audio files are required.", stage="validate")
    return JobSpec(
        kind=JobKind.MERGE_VIDEO_AUDIO_MIX,
        inputs=(video, audio),
        parameters={"delay_ms": delay_ms},
        output_path=output_path,
    )


def concat_videos(inputs: Sequence[str], output_path: str) -> JobSpec:
    require_count(inputs, 2, "At least two video files required")
    return JobSpec(kind=JobKind.CONCAT_VIDEOS, inputs=tuple(inputs), output_path=output_path)


def trim(video: str, output_path: str, start_time: str, end_time: str) -> JobSpec:
    """Cut ``end_time`` seconds of ``video`` starting at ``start_time``.

    ``end_time`` is a duration, not an absolute timestamp: it is passed to ffmpeg's ``-t``.
    """
    if not str(start_time or "").strip() or not str(end_time or "").strip():
        raise ValidationError("startTime and endTime are required", stage="validate")
    return JobSpec(
        kind=JobKind.TRIM,
        inputs=(video,),
        parameters={"start_time": str(start_time).strip(), "duration": str(end_time).strip()},
        output_path=output_path,
    )


def loop_count(video_duration: float, audio_duration: float) -> int:
    return max(1, math.ceil(video_duration / audio_duration))


def merge_video_background_audio(
    video: str,
    audio: str,
    video_probe: ProbeResult,
    audio_probe: ProbeResult,
    looped_path: str,
    output_path: str,
    audio_level: int = config.DEFAULT_AUDIO_LEVEL,
) -> JobSpec:
    return JobSpec(
        kind=JobKind.MERGE_VIDEO_BACKGROUND_AUDIO,
        inputs=(video, audio),
        parameters={
            "video_duration": video_probe.duration_seconds,
            "audio_duration": audio_probe.duration_seconds,
            "loop_count": loop_count(video_probe.duration_seconds, audio_probe.duration_seconds),
            "volume": audio_level / 100,
            "video_has_audio": video_probe.has_audio,
        },
        output_path=output_path,
        intermediates=(looped_path,),
    )
