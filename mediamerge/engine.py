"""Runs job specs against ffmpeg."""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Set, Tuple

from . import config
from .jobs import JobKind, JobSpec

logger = logging.getLogger(__name__)

Stage = Tuple[str, List[str]]


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    ENGINE_ERROR = "engine_error"
    IO_ERROR = "io_error"


@dataclass(frozen=True)
class JobOutcome:
    status: OutcomeStatus
    output_path: Optional[str] = None
    error_detail: str = ""
    stage: str = ""

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


# ----------------------------
# Command construction
# ----------------------------
def _inputs(paths) -> List[str]:
    args: List[str] = []
    for p in paths:
        args += ["-i", p]
    return args


def _concat_filter(n: int, video: bool) -> str:
    if video:
        pads = "".join(f"[{i}:v:0][{i}:a:0]" for i in range(n))
        return f"{pads}concat=n={n}:v=1:a=1[vout][aout]"
    pads = "".join(f"[{i}:a:0]" for i in range(n))
    return f"{pads}concat=n={n}:v=0:a=1[aout]"


def commands_for(spec: JobSpec) -> List[Stage]:
    """Translate ``spec`` into ordered (stage name, argv) pairs."""
    ff = [config.FFMPEG_BIN, "-hide_banner", "-y"]
    p = spec.parameters

    if spec.kind is JobKind.CONCAT_AUDIO:
        return [("concat", ff + _inputs(spec.inputs) + [
            "-filter_complex", _concat_filter(len(spec.inputs), video=False),
            "-map", "[aout]",
            "-vn",
            spec.output_path,
        ])]

    if spec.kind is JobKind.MERGE_VIDEO_AUDIO_MIX:
        d = int(p.get("delay_ms", 0))
        return [("mix", ff + _inputs(spec.inputs) + [
            "-filter_complex", f"[1:a]adelay={d}|{d}[a1];[0:a][a1]amix=inputs=2[aout]",
            "-map", "0:v:0",
            "-map", "[aout]",
            "-c:v", "copy",
            "-c:a", "aac",
            spec.output_path,
        ])]

    if spec.kind is JobKind.CONCAT_VIDEOS:
        return [("concat", ff + _inputs(spec.inputs) + [
            "-filter_complex", _concat_filter(len(spec.inputs), video=True),
            "-map", "[vout]",
            "-map", "[aout]",
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-pix_fmt", config.TARGET_PIXFMT,
            "-c:a", "aac",
            "-b:a", config.TARGET_AB,
            "-movflags", "+faststart",
            spec.output_path,
        ])]

    if spec.kind is JobKind.TRIM:
        return [("trim", ff + _inputs(spec.inputs) + [
            "-ss", p["start_time"],
            "-t", p["duration"],
            spec.output_path,
        ])]

    if spec.kind is JobKind.MERGE_VIDEO_BACKGROUND_AUDIO:
        video, audio = spec.inputs
        looped = spec.intermediates[0]
        duration = f"{float(p['video_duration']):.3f}"
        loop = ("loop", ff + [
            "-stream_loop", str(int(p["loop_count"]) - 1),
            "-t", duration,
            "-i", audio,
            "-vn",
            looped,
        ])
        if p.get("video_has_audio", True):
            graph = f"[1:a]volume={p['volume']}[bg];[0:a][bg]amix=inputs=2:duration=first[aout]"
        else:
            graph = f"[1:a]volume={p['volume']}[aout]"
        mix = ("mix", ff + _inputs((video, looped)) + [
            "-filter_complex", graph,
            "-map", "0:v:0",
            "-map", "[aout]",
            "-c:v", "copy",
            "-c:a", "aac",
            "-b:a", config.TARGET_AUDIO_AB,
            "-t", duration,
            spec.output_path,
        ])
        return [loop, mix]

    raise ValueError(f"unsupported job kind: {spec.kind}")


# ----------------------------
# Runner
# ----------------------------
class Engine:
    """Executes job stages as ffmpeg subprocesses without blocking the event loop."""

    def __init__(self, timeout: Optional[float] = None, kill_grace: Optional[float] = None):
        self.timeout = config.FFMPEG_TIMEOUT if timeout is None else timeout
        self.kill_grace = config.KILL_GRACE_SECONDS if kill_grace is None else kill_grace
        self._live: Set[asyncio.subprocess.Process] = set()

    @property
    def running(self) -> int:
        return len(self._live)

    async def run(self, spec: JobSpec, job_id: str = "") -> JobOutcome:
        """Run every stage of ``spec`` in order; a failed stage stops the job."""
        for name, cmd in commands_for(spec):
            outcome = await self._run_stage(name, cmd, job_id)
            if outcome is not None:
                return outcome
        if not os.path.isfile(spec.output_path):
            return JobOutcome(
                OutcomeStatus.IO_ERROR,
                error_detail=f"engine reported success but {spec.output_path} is missing",
                stage="output",
            )
        return JobOutcome(OutcomeStatus.SUCCESS, output_path=spec.output_path)

    async def _run_stage(self, name: str, cmd: List[str], job_id: str) -> Optional[JobOutcome]:
        logger.info("[%s] stage %s started", job_id, name)
        logger.debug("[%s] %s", job_id, " ".join(cmd))
        start = time.perf_counter()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return JobOutcome(OutcomeStatus.IO_ERROR, error_detail=f"could not start engine: {e}", stage=name)

        self._live.add(proc)
        try:
            try:
                _, err = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                await self._terminate(proc)
                return JobOutcome(
                    OutcomeStatus.ENGINE_ERROR,
                    error_detail=f"ffmpeg timed out after {self.timeout}s",
                    stage=name,
                )
            except asyncio.CancelledError:
                await self._terminate(proc)
                raise
        finally:
            self._live.discard(proc)

        elapsed = time.perf_counter() - start
        if proc.returncode != 0:
            tail = err.decode(errors="ignore")[-config.STDERR_TAIL:]
            return JobOutcome(
                OutcomeStatus.ENGINE_ERROR,
                error_detail=f"ffmpeg exited {proc.returncode}: {tail}",
                stage=name,
            )
        logger.info("[%s] stage %s finished in %.2fs", job_id, name, elapsed)
        return None

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()

    async def shutdown(self) -> None:
        """Force-terminate any subprocess still running."""
        live = list(self._live)
        if live:
            logger.warning("Terminating %d running ffmpeg process(es)", len(live))
        await asyncio.gather(*(self._terminate(p) for p in live), return_exceptions=True)
