"""Temporary file management for uploaded, intermediate and output artifacts."""

import logging
import os
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from . import config
from .errors import TransferError, UploadTooLarge

logger = logging.getLogger(__name__)

UPLOAD = "upload"
INTERMEDIATE = "intermediate"
OUTPUT = "output"


@dataclass(frozen=True)
class UploadedFile:
    original_name: str
    staged_path: str
    size_bytes: int

    @property
    def base_name(self) -> str:
        return os.path.basename(self.original_name or "") or "media"


class TempFileManager:
    """Hands out unique paths under the staging/output directories and deletes them."""

    def __init__(self, upload_dir: str, output_dir: str):
        self.upload_dir = upload_dir
        self.output_dir = output_dir

    def allocate(self, kind: str, suffix: str = "") -> str:
        if kind == OUTPUT:
            directory = self.output_dir
        elif kind in (UPLOAD, INTERMEDIATE):
            directory = self.upload_dir
        else:
            raise ValueError(f"unknown artifact kind: {kind}")
        os.makedirs(directory, exist_ok=True)
        name = f"{kind}_{int(time.time() * 1000)}_{uuid.uuid4().hex}{suffix}"
        return os.path.join(directory, name)

    def release(self, path: Optional[str]) -> None:
        """Delete ``path``. Missing files are ignored so a second release is a no-op."""
        if not path:
            return
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove artifact %s: %s", path, e)


class ArtifactSet:
    """All artifacts owned by one request.

    Exiting the context releases every path still owned, whatever the outcome. A path
    handed to the response streamer is ``detach``-ed first and released by it instead.
    """

    def __init__(self, manager: TempFileManager, job_id: str = ""):
        self.manager = manager
        self.job_id = job_id
        self._paths: List[str] = []

    def __contains__(self, path: str) -> bool:
        return path in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def add(self, path: str) -> str:
        if path not in self._paths:
            self._paths.append(path)
        return path

    def allocate(self, kind: str, suffix: str = "") -> str:
        return self.add(self.manager.allocate(kind, suffix))

    def detach(self, path: str) -> str:
        if path in self._paths:
            self._paths.remove(path)
        return path

    def release_all(self) -> None:
        paths, self._paths = self._paths, []
        for p in paths:
            self.manager.release(p)
        if paths:
            logger.debug("[%s] released %d artifact(s)", self.job_id, len(paths))

    async def __aenter__(self) -> "ArtifactSet":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release_all()


async def stage_upload(upload: UploadFile, artifacts: ArtifactSet) -> UploadedFile:
    """Copy a decoded multipart upload into the staging directory.

    Disk writes run in the threadpool so large uploads don't stall the event loop.
    """
    _, ext = os.path.splitext(os.path.basename(upload.filename or ""))
    dest = artifacts.allocate(UPLOAD, ext.lower())
    total = 0
    await upload.seek(0)
    try:
        f = await run_in_threadpool(open, dest, "wb")
        try:
            while True:
                chunk = await upload.read(config.UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                total += len(chunk)
                if total > config.MAX_BYTES:
                    logger.warning("Upload exceeded max size: %s", upload.filename)
                    raise UploadTooLarge(stage="upload")
                await run_in_threadpool(f.write, chunk)
        finally:
            await run_in_threadpool(f.close)
    except OSError as e:
        raise TransferError("Failed to save upload", detail=str(e), stage="upload") from e
    return UploadedFile(original_name=upload.filename or "", staged_path=dest, size_bytes=total)
