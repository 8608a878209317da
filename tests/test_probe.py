from __future__ import annotations

import asyncio
import json

import pytest

from mediamerge import config
from mediamerge.errors import ProbeError
from mediamerge.probe import parse_probe, probe


def _ffprobe(write_script, payload: str, code: int = 0) -> str:
    return write_script("ffprobe", f"cat <<'JSON'\n{payload}\nJSON\nexit {code}\n")


def _payload(duration, *codec_types: str) -> str:
    return json.dumps({
        "streams": [{"codec_type": c} for c in codec_types],
        "format": {"duration": duration},
    })


def test_probe_reads_duration_and_audio(monkeypatch: pytest.MonkeyPatch, write_script) -> None:
    monkeypatch.setattr(config, "FFPROBE_BIN", _ffprobe(write_script, _payload("12.480000", "video", "audio")))

    result = asyncio.run(probe("clip.mp4"))

    assert result.duration_seconds == pytest.approx(12.48)
    assert result.has_audio is True


def test_probe_detects_missing_audio() -> None:
    assert parse_probe("silent.mp4", _payload("3.0", "video")).has_audio is False


@pytest.mark.parametrize("duration", ["N/A", "", "abc", "0", "-4", None])
def test_probe_rejects_bad_durations(duration) -> None:
    with pytest.raises(ProbeError):
        parse_probe("clip.mp4", _payload(duration, "audio"))


@pytest.mark.parametrize("raw", ["", "not json", "[]", '{"streams": []}'])
def test_probe_rejects_malformed_output(raw: str) -> None:
    with pytest.raises(ProbeError):
        parse_probe("clip.mp4", raw)


def test_probe_engine_failure(monkeypatch: pytest.MonkeyPatch, write_script) -> None:
    monkeypatch.setattr(config, "FFPROBE_BIN", _ffprobe(write_script, _payload("5", "audio"), code=1))

    with pytest.raises(ProbeError) as info:
        asyncio.run(probe("clip.mp4"))
    assert "exited 1" in info.value.detail


def test_probe_missing_binary(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.setattr(config, "FFPROBE_BIN", str(tmp_path / "nope"))

    with pytest.raises(ProbeError):
        asyncio.run(probe("clip.mp4"))
