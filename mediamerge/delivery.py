"""Responses that hand a finished output file to the client and then delete it.

Builders here raise :class:`TransferError` when the output cannot be opened; the caller still
owns the file at that point. Once a response object is returned, it owns the file and runs
``release`` after the transfer, whether it completed or failed.
"""

import logging
import os
from typing import BinaryIO, Callable, Iterator

from fastapi.responses import FileResponse, StreamingResponse
from starlette.types import Receive, Scope, Send

from . import config
from .errors import TransferError

logger = logging.getLogger(__name__)

Release = Callable[[], None]


class _ReleaseAfterSend:
    _release: Release
    _label: str

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except Exception:
            logger.exception("Error sending file %s", self._label)
            raise
        finally:
            self._release()


class ReleasingFileResponse(_ReleaseAfterSend, FileResponse):
    def __init__(self, path: str, release: Release, **kwargs):
        super().__init__(path, **kwargs)
        self._release = release
        self._label = path


class ReleasingStreamingResponse(_ReleaseAfterSend, StreamingResponse):
    def __init__(self, f: BinaryIO, path: str, release: Release, **kwargs):
        super().__init__(_iter_file(f), **kwargs)

        def _close_and_release() -> None:
            f.close()
            release()

        self._release = _close_and_release
        self._label = path


def _iter_file(f: BinaryIO) -> Iterator[bytes]:
    while True:
        chunk = f.read(config.UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


def _ensure_readable(path: str) -> None:
    if not os.path.isfile(path):
        raise TransferError(detail=f"output missing: {path}", stage="transfer")


def download(path: str, filename: str, media_type: str, release: Release) -> ReleasingFileResponse:
    """Full-file download with an attachment header."""
    _ensure_readable(path)
    return ReleasingFileResponse(path, release, media_type=media_type, filename=filename)


def inline(path: str, media_type: str, release: Release) -> ReleasingFileResponse:
    _ensure_readable(path)
    return ReleasingFileResponse(path, release, media_type=media_type)


def stream(path: str, filename: str, media_type: str, release: Release) -> ReleasingStreamingResponse:
    """Pipe the file in chunks with an explicit ``Content-Disposition: attachment``.

    The file is opened up front so an unreadable output becomes a 500 instead of a
    half-sent response. A read error mid-stream aborts the connection.
    """
    try:
        f = open(path, "rb")
    except OSError as e:
        raise TransferError(detail=f"cannot open {path}: {e}", stage="transfer") from e
    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "Content-Length": str(os.fstat(f.fileno()).st_size),
    }
    return ReleasingStreamingResponse(f, path, release, media_type=media_type, headers=headers)
