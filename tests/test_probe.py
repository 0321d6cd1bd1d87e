from __future__ import annotations

import io
import json
import subprocess
from pathlib import Path

import pytest

from viral_clips.errors import ValidationError
from viral_clips.ingest import probe
from viral_clips.ingest.probe import _run_ffprobe, _to_video_source, open_video_source, probe_video


def _ffprobe_payload(*, with_audio: bool = True, duration: str = "42.5") -> dict:
    streams = [{"codec_type": "video", "width": 1920, "height": 1080}]
    if with_audio:
        streams.append({"codec_type": "audio", "sample_rate": "48000"})
    return {"streams": streams, "format": {"duration": duration}}


def test_run_ffprobe_wraps_missing_binary_error(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    def _raise_missing(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError("ffprobe")

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_missing)
        with pytest.raises(RuntimeError, match="ffprobe executable was not found"):
            _run_ffprobe(video_path)


def test_run_ffprobe_reports_shared_library_issue(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    def _raise_process_error(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.CalledProcessError(
            returncode=127,
            cmd=["ffprobe", str(video_path)],
            output="",
            stderr=(
                "ffprobe: error while loading shared libraries: "
                "libdav1d.so.6: cannot open shared object file: No such file or directory"
            ),
        )

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_process_error)
        with pytest.raises(RuntimeError, match="failed to start because required shared libraries are missing"):
            _run_ffprobe(video_path)


def test_run_ffprobe_wraps_invalid_media_error(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    def _raise_process_error(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        raise subprocess.CalledProcessError(
            returncode=1,
            cmd=["ffprobe", str(video_path)],
            output="",
            stderr="invalid data found when processing input",
        )

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(subprocess, "run", _raise_process_error)
        with pytest.raises(RuntimeError, match="ffprobe failed while probing media file"):
            _run_ffprobe(video_path)


def test_to_video_source_reads_dimensions_and_audio_presence() -> None:
    source = _to_video_source(Path("clip.mp4"), _ffprobe_payload())
    mute = _to_video_source(Path("clip.mp4"), _ffprobe_payload(with_audio=False))

    assert (source.width, source.height, source.duration) == (1920, 1080, 42.5)
    assert source.has_audio is True
    assert mute.has_audio is False


def test_to_video_source_rejects_unusable_streams() -> None:
    with pytest.raises(ValidationError, match="No video stream"):
        _to_video_source(Path("song.mp3"), {"streams": [{"codec_type": "audio"}], "format": {"duration": "10"}})
    with pytest.raises(ValidationError, match="non-positive duration"):
        _to_video_source(Path("clip.mp4"), _ffprobe_payload(duration="N/A"))


def test_probe_video_requires_existing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError, match="Video file not found"):
        probe_video(tmp_path / "missing.mp4")


def test_open_video_source_spools_streams_to_temporary_file(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[tuple[Path, bytes]] = []

    def _fake_ffprobe(path: Path) -> dict:
        seen.append((path, path.read_bytes()))
        return _ffprobe_payload()

    monkeypatch.setattr(probe, "_run_ffprobe", _fake_ffprobe)

    with open_video_source(io.BytesIO(b"stream-bytes")) as source:
        spooled_path = source.path
        assert spooled_path.exists()

    with open_video_source(b"raw-bytes", suffix=".webm") as source:
        assert source.path.suffix == ".webm"

    assert not spooled_path.exists()
    assert [content for _, content in seen] == [b"stream-bytes", b"raw-bytes"]


def test_probe_video_parses_ffprobe_output(tmp_path: Path) -> None:
    video_path = tmp_path / "sample.mp4"
    video_path.write_bytes(b"data")

    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(
            subprocess,
            "run",
            lambda command, **_kwargs: subprocess.CompletedProcess(command, 0, stdout=json.dumps(_ffprobe_payload()), stderr=""),
        )
        source = probe_video(video_path)

    assert source.path == video_path.resolve()
    assert source.duration == 42.5
