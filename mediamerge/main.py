import functools
import logging
import mimetypes
import os
import shutil
import uuid
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import config, delivery, jobs
from .artifacts import OUTPUT, INTERMEDIATE, ArtifactSet, TempFileManager, stage_upload
from .engine import Engine
from .errors import EngineError, MediaServiceError, ProbeError, ValidationError
from .jobs import JobSpec
from .probe import probe

logger = logging.getLogger("mediamerge")


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


temp_files = TempFileManager(config.UPLOAD_DIR, config.OUTPUT_DIR)
engine = Engine()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    os.makedirs(temp_files.upload_dir, exist_ok=True)
    os.makedirs(temp_files.output_dir, exist_ok=True)
    if shutil.which(config.FFMPEG_BIN) is None:
        logger.warning("ffmpeg binary %r not found on PATH", config.FFMPEG_BIN)
    logger.info("Media service ready (uploads=%s, outputs=%s)", temp_files.upload_dir, temp_files.output_dir)

    yield

    logger.info("Media service shutting down")
    await engine.shutdown()


app = FastAPI(title="Media Merge Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)


@app.exception_handler(MediaServiceError)
async def media_error_handler(request: Request, exc: MediaServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s failed at %s: %s", request.url.path, exc.stage or "?", exc.detail or exc.message)
    else:
        logger.warning("%s rejected at %s: %s", request.url.path, exc.stage or "?", exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# ----------------------------
# Helpers
# ----------------------------
def _job_id() -> str:
    return uuid.uuid4().hex[:12]


async def _execute(spec: JobSpec, job_id: str, message: str) -> str:
    logger.info("[%s] %s job: %d input(s)", job_id, spec.kind.value, len(spec.inputs))
    outcome = await engine.run(spec, job_id=job_id)
    if not outcome.ok:
        logger.error("[%s] %s at stage %s: %s", job_id, outcome.status.value, outcome.stage, outcome.error_detail)
        raise EngineError(message, detail=outcome.error_detail, stage=outcome.stage)
    return outcome.output_path


def _hand_off(artifacts: ArtifactSet, path: str, build: Callable[[Callable[[], None]], Response]) -> Response:
    """Build the response for ``path`` and transfer its ownership to it."""
    response = build(functools.partial(temp_files.release, path))
    artifacts.detach(path)
    return response


def _present(upload: Optional[UploadFile]) -> bool:
    return upload is not None and bool(upload.filename)


def _media_type(name: str, default: str) -> str:
    return mimetypes.guess_type(name)[0] or default


# ----------------------------
# Endpoints
# ----------------------------
@app.get("/health")
def health():
    return {"status": "ok", "ffmpeg": shutil.which(config.FFMPEG_BIN) is not None}


@app.post("/upload")
async def merge_audio(files: Optional[List[UploadFile]] = File(None)):
    """Concatenate the uploaded audio files, in order, into one mp3."""
    uploads = [u for u in (files or []) if _present(u)]
    jobs.require_count(uploads, 1, "No files uploaded")

    job_id = _job_id()
    async with ArtifactSet(temp_files, job_id) as artifacts:
        staged = [await stage_upload(u, artifacts) for u in uploads]
        out = artifacts.allocate(OUTPUT, ".mp3")
        spec = jobs.concat_audio([s.staged_path for s in staged], out)
        await _execute(spec, job_id, "Error merging files")
        return _hand_off(
            artifacts, out,
            lambda release: delivery.download(out, "merged_output.mp3", "audio/mpeg", release),
        )


@app.post("/merge-video-audio")
async def merge_video_audio(
    video: Optional[UploadFile] = File(None),
    audio: Optional[UploadFile] = File(None),
    audioDelay: Optional[str] = Form(None),
):
    """Mix ``audio`` (delayed by ``audioDelay`` seconds) into the video's own audio track."""
    if not _present(video) or not _present(audio):
        raise ValidationError("Both video and audio files are required.", stage="validate")
    delay_ms = jobs.parse_delay_ms(audioDelay)

    job_id = _job_id()
    async with ArtifactSet(temp_files, job_id) as artifacts:
        v = await stage_upload(video, artifacts)
        a = await stage_upload(audio, artifacts)
        out = artifacts.allocate(OUTPUT, ".mp4")
        spec = jobs.merge_video_audio_mix(v.staged_path, a.staged_path, out, delay_ms=delay_ms)
        await _execute(spec, job_id, "An error occurred while merging files.")
        return _hand_off(artifacts, out, lambda release: delivery.inline(out, "video/mp4", release))


@app.post("/merge-multiple-videos")
async def merge_multiple_videos(videos: Optional[List[UploadFile]] = File(None)):
    """Concatenate two or more videos, in upload order."""
    uploads = [u for u in (videos or []) if _present(u)]
    jobs.require_count(uploads, 2, "At least two video files required")

    job_id = _job_id()
    async with ArtifactSet(temp_files, job_id) as artifacts:
        staged = [await stage_upload(u, artifacts) for u in uploads]
        out = artifacts.allocate(OUTPUT, ".mp4")
        spec = jobs.concat_videos([s.staged_path for s in staged], out)
        await _execute(spec, job_id, "Error merging video files")
        return _hand_off(
            artifacts, out,
            lambda release: delivery.stream(out, "merged_videos.mp4", "video/mp4", release),
        )


@app.post("/trim-video")
async def trim_video(
    video: Optional[UploadFile] = File(None),
    startTime: Optional[str] = Form(None),
    endTime: Optional[str] = Form(None),
):
    """Extract part of a video.

    ``endTime`` is the LENGTH of the extracted part, not an absolute end timestamp:
    ``startTime=5, endTime=10`` returns seconds 5 to 15 of the input.
    """
    if not _present(video):
        raise ValidationError("A video file is required.", stage="validate")
    if not (startTime or "").strip() or not (endTime or "").strip():
        raise ValidationError("startTime and endTime are required", stage="validate")

    job_id = _job_id()
    async with ArtifactSet(temp_files, job_id) as artifacts:
        v = await stage_upload(video, artifacts)
        name = f"trimmed_{v.base_name}"
        ext = os.path.splitext(v.base_name)[1].lower() or ".mp4"
        out = artifacts.allocate(OUTPUT, ext)
        spec = jobs.trim(v.staged_path, out, startTime, endTime)
        await _execute(spec, job_id, "Error trimming video.")
        return _hand_off(
            artifacts, out,
            lambda release: delivery.download(out, name, _media_type(name, "video/mp4"), release),
        )


@app.post("/merge-video-background-audio")
async def merge_video_background_audio(
    video: Optional[UploadFile] = File(None),
    audio: Optional[UploadFile] = File(None),
    audioLevel: Optional[str] = Form(None),
):
    """Loop ``audio`` to the video's length and mix it under the video at ``audioLevel`` percent."""
    if not _present(video) or not _present(audio):
        raise ValidationError("Both video and audio files are required.", stage="validate")
    level = jobs.parse_audio_level(audioLevel)

    job_id = _job_id()
    async with ArtifactSet(temp_files, job_id) as artifacts:
        v = await stage_upload(video, artifacts)
        a = await stage_upload(audio, artifacts)

        try:
            video_probe = await probe(v.staged_path)
        except ProbeError as e:
            raise ProbeError("Error processing video file", detail=e.detail, stage="probe_video") from e
        try:
            audio_probe = await probe(a.staged_path)
        except ProbeError as e:
            raise ProbeError("Error processing audio file", detail=e.detail, stage="probe_audio") from e

        looped = artifacts.allocate(INTERMEDIATE, ".mp3")
        out = artifacts.allocate(OUTPUT, ".mp4")
        spec = jobs.merge_video_background_audio(
            v.staged_path, a.staged_path, video_probe, audio_probe, looped, out, audio_level=level,
        )
        logger.info(
            "[%s] video %.2fs, audio %.2fs -> %d loop(s) at volume %s",
            job_id, video_probe.duration_seconds, audio_probe.duration_seconds,
            spec.parameters["loop_count"], spec.parameters["volume"],
        )
        await _execute(spec, job_id, "Error merging video and background audio")
        return _hand_off(
            artifacts, out,
            lambda release: delivery.download(out, "merged_output.mp4", "video/mp4", release),
        )


def serve() -> None:
    import uvicorn

    configure_logging()
    uvicorn.run(
        "mediamerge.main:app",
        host=config.HOST,
        port=config.PORT,
        log_level=config.LOG_LEVEL.lower(),
        timeout_graceful_shutdown=config.SHUTDOWN_GRACE_SECONDS,
    )


if __name__ == "__main__":
    serve()
