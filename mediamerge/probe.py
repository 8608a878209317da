import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from . import config
from .errors import ProbeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    duration_seconds: float
    has_audio: bool = True


async def _check_output(cmd: List[str]) -> str:
    """Run a short ffprobe query and return stdout. Raises ProbeError on any failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProbeError(detail=f"could not start ffprobe: {e}") from e
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=config.PROBE_TIMEOUT)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ProbeError(detail=f"ffprobe timed out after {config.PROBE_TIMEOUT}s")
    if proc.returncode != 0:
        tail = err.decode(errors="ignore")[-config.STDERR_TAIL:]
        raise ProbeError(detail=f"ffprobe exited {proc.returncode}: {tail}")
    return out.decode(errors="ignore").strip()


def parse_probe(path: str, raw: str) -> ProbeResult:
    try:
        data: Dict[str, Any] = json.loads(raw)
        duration = data["format"]["duration"]
    except (ValueError, KeyError, TypeError):
        raise ProbeError(detail=f"malformed ffprobe output for {path}: {raw[:200]!r}")
    if duration in (None, "", "N/A"):
        raise ProbeError(detail=f"duration unavailable for {path}")
    try:
        d = float(duration)
    except (TypeError, ValueError):
        raise ProbeError(detail=f"malformed duration for {path}: {duration!r}")
    if not d > 0:
        raise ProbeError(detail=f"invalid duration for {path}: {d}")
    streams = data.get("streams") or []
    has_audio = any(s.get("codec_type") == "audio" for s in streams if isinstance(s, dict))
    return ProbeResult(duration_seconds=d, has_audio=has_audio)


async def probe(path: str) -> ProbeResult:
    """Inspect ``path`` with a single ffprobe call. Any failure is terminal for the request."""
    raw = await _check_output([
        config.FFPROBE_BIN, "-v", "error",
        "-show_entries", "format=duration:stream=codec_type",
        "-of", "json",
        path,
    ])
    if config.DEBUG_PROBES:
        logger.debug("PROBE %s: %s", path, raw)
    return parse_probe(path, raw)
