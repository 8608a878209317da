"""Shared fixtures: isolated staging dirs, a scripted engine and fake ffmpeg binaries."""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Callable, List, Optional

import pytest
from fastapi.testclient import TestClient

from mediamerge import config, main
from mediamerge.artifacts import TempFileManager
from mediamerge.engine import JobOutcome, OutcomeStatus
from mediamerge.jobs import JobSpec


class FakeEngine:
    """Stands in for ffmpeg: records each spec and writes (or withholds) the output."""

    def __init__(self, fail_stage: Optional[str] = None, payload: bytes = b"media", write_output: bool = True) -> None:
        self.fail_stage = fail_stage
        self.payload = payload
        self.write_output = write_output
        self.specs: List[JobSpec] = []

    async def run(self, spec: JobSpec, job_id: str = "") -> JobOutcome:
        self.specs.append(spec)
        for path in spec.intermediates:
            if self.fail_stage == "loop":
                return JobOutcome(OutcomeStatus.ENGINE_ERROR, error_detail="boom", stage="loop")
            Path(path).write_bytes(b"looped")
        if self.fail_stage is not None:
            return JobOutcome(OutcomeStatus.ENGINE_ERROR, error_detail="boom", stage=self.fail_stage)
        if self.write_output:
            Path(spec.output_path).write_bytes(self.payload)
        return JobOutcome(OutcomeStatus.SUCCESS, output_path=spec.output_path)

    async def shutdown(self) -> None:
        pass


@pytest.fixture
def store(tmp_path: Path) -> TempFileManager:
    return TempFileManager(str(tmp_path / "uploads"), str(tmp_path / "merged"))


@pytest.fixture
def leftovers(store: TempFileManager) -> Callable[[], List[str]]:
    def _list() -> List[str]:
        found: List[str] = []
        for directory in (store.upload_dir, store.output_dir):
            if os.path.isdir(directory):
                found.extend(os.listdir(directory))
        return found

    return _list


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, store: TempFileManager, fake_engine: FakeEngine) -> TestClient:
    monkeypatch.setattr(main, "temp_files", store)
    monkeypatch.setattr(main, "engine", fake_engine)
    return TestClient(main.app)


@pytest.fixture
def write_script(tmp_path: Path) -> Callable[[str, str], str]:
    """Write an executable /bin/sh script and return its path."""

    def _write(name: str, body: str) -> str:
        path = tmp_path / "bin" / name
        path.parent.mkdir(exist_ok=True)
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _write


@pytest.fixture
def fake_ffmpeg(monkeypatch: pytest.MonkeyPatch, write_script, tmp_path: Path) -> Path:
    """An ffmpeg stand-in that logs its argv and creates its last argument."""
    log = tmp_path / "ffmpeg.log"
    script = write_script(
        "ffmpeg",
        f'for last; do :; done\necho "$@" >> "{log}"\nprintf data > "$last"\nexit 0\n',
    )
    monkeypatch.setattr(config, "FFMPEG_BIN", script)
    return log
