"""Tests for the ffmpeg HLS packager.

ffmpeg itself is replaced by a patched ``subprocess.Popen`` except in the
last test, which only runs when an ffmpeg binary is installed.
"""

import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from hypothesis import given, settings, strategies as st

from hlsforge.core.errors import TranscodeError
from hlsforge.modules.transcoding.ffmpeg import (
    MANIFEST_NAME,
    THUMBNAIL_NAME,
    HLSTranscoder,
)

POPEN = "hlsforge.modules.transcoding.ffmpeg.subprocess.Popen"


def fake_process(returncode: int = 0, stderr: str = "", on_run=None) -> MagicMock:
    """Popen stand-in; ``on_run`` receives the argv when communicate() runs."""
    process = MagicMock()
    process.returncode = returncode

    def communicate(timeout=None):
        if on_run is not None:
            on_run()
        return "", stderr

    process.communicate.side_effect = communicate
    return process


def writes_outputs(cmd):
    """Side effect creating whatever file ffmpeg was asked to write."""
    target = Path(cmd[-1])
    target.parent.mkdir(parents=True, exist_ok=True)
    if target.name == MANIFEST_NAME:
        (target.parent / "segment_000.ts").write_bytes(b"\x47")
        target.write_text("#EXTM3U\nsegment_000.ts\n#EXT-X-ENDLIST\n")
    else:
        target.write_bytes(b"\xff\xd8")


def popen_writing_outputs(returncode: int = 0):
    def popen(cmd, **kwargs):
        return fake_process(returncode, on_run=lambda: writes_outputs(cmd))

    return popen


@pytest.fixture
def source(tmp_path: Path) -> str:
    path = tmp_path / "upload"
    path.write_bytes(b"video bytes")
    return str(path)


class TestCommandBuilding:
    """Property tests for the ffmpeg argument list."""

    @given(segment_seconds=st.integers(min_value=1, max_value=60))
    @settings(max_examples=50)
    def test_hls_command_shape(self, segment_seconds: int) -> None:
        cmd = HLSTranscoder("ffmpeg", segment_seconds).build_hls_command("/in/video", "/out/abc")

        assert cmd[0] == "ffmpeg"
        assert cmd[cmd.index("-i") + 1] == "/in/video"
        assert cmd[cmd.index("-hls_time") + 1] == str(segment_seconds)
        assert cmd[cmd.index("-hls_list_size") + 1] == "0"
        assert cmd[cmd.index("-start_number") + 1] == "0"
        assert cmd[cmd.index("-profile:v") + 1] == "baseline"
        assert cmd[cmd.index("-level") + 1] == "3.0"
        assert cmd[cmd.index("-hls_segment_filename") + 1] == "/out/abc/segment_%03d.ts"
        assert cmd[cmd.index("-f") + 1] == "hls"
        assert cmd[-1] == f"/out/abc/{MANIFEST_NAME}"

    def test_thumbnail_command_grabs_one_frame(self) -> None:
        cmd = HLSTranscoder("/usr/bin/ffmpeg").build_thumbnail_command("/in/v", "/out/t.jpg")

        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[cmd.index("-vframes") + 1] == "1"
        assert cmd[-1] == "/out/t.jpg"


class TestTranscode:
    def test_success_produces_manifest_segments_and_thumbnail(self, source, tmp_path) -> None:
        output_dir = tmp_path / "out"

        with patch(POPEN, side_effect=popen_writing_outputs()) as popen:
            output = HLSTranscoder(segment_seconds=3).transcode(source, str(output_dir))

        assert popen.call_count == 2
        assert output.manifest_path == str(output_dir / MANIFEST_NAME)
        assert output.thumbnail_path == str(output_dir / THUMBNAIL_NAME)
        assert str(output_dir / "segment_000.ts") in output.files

    def test_missing_source_raises(self, tmp_path) -> None:
        with patch(POPEN) as popen:
            with pytest.raises(TranscodeError, match="Source file not found"):
                HLSTranscoder().transcode(str(tmp_path / "nope"), str(tmp_path / "out"))
        popen.assert_not_called()

    def test_non_zero_exit_raises_with_stderr(self, source, tmp_path) -> None:
        process = fake_process(returncode=1, stderr="Invalid data found when processing input")

        with patch(POPEN, return_value=process):
            with pytest.raises(TranscodeError) as exc_info:
                HLSTranscoder().transcode(source, str(tmp_path / "out"))

        assert "code 1" in exc_info.value.message
        assert "Invalid data found" in exc_info.value.message

    def test_missing_manifest_raises(self, source, tmp_path) -> None:
        with patch(POPEN, return_value=fake_process(returncode=0)):
            with pytest.raises(TranscodeError, match="no manifest"):
                HLSTranscoder().transcode(source, str(tmp_path / "out"))

    def test_missing_binary_raises(self, source, tmp_path) -> None:
        with patch(POPEN, side_effect=FileNotFoundError("ffmpeg")):
            with pytest.raises(TranscodeError, match="Could not start"):
                HLSTranscoder().transcode(source, str(tmp_path / "out"))

    def test_timeout_kills_process(self, source, tmp_path) -> None:
        process = MagicMock()
        process.communicate.side_effect = [
            subprocess.TimeoutExpired(cmd="ffmpeg", timeout=5),
            ("", ""),
        ]

        with patch(POPEN, return_value=process):
            with pytest.raises(TranscodeError, match="timed out"):
                HLSTranscoder(timeout_seconds=5).transcode(source, str(tmp_path / "out"))

        process.kill.assert_called_once()
        assert process.communicate.call_args_list[0].kwargs == {"timeout": 5}

    def test_thumbnail_failure_is_not_fatal(self, source, tmp_path) -> None:
        def popen(cmd, **kwargs):
            if cmd[-1].endswith(MANIFEST_NAME):
                return fake_process(on_run=lambda: writes_outputs(cmd))
            return fake_process(returncode=1, stderr="no frame")

        with patch(POPEN, side_effect=popen):
            output = HLSTranscoder().transcode(source, str(tmp_path / "out"))

        assert output.thumbnail_path is None
        assert Path(output.manifest_path).is_file()


@pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg not installed")
def test_real_ffmpeg_packages_generated_clip(tmp_path) -> None:
    source = tmp_path / "clip.mp4"
    subprocess.run(
        [
            "ffmpeg", "-y", "-loglevel", "error",
            "-f", "lavfi", "-i", "testsrc=duration=4:size=320x240:rate=25",
            "-pix_fmt", "yuv420p",
            str(source),
        ],
        check=True,
    )

    output = HLSTranscoder(segment_seconds=2).transcode(str(source), str(tmp_path / "out"))

    manifest = Path(output.manifest_path).read_text()
    assert manifest.startswith("#EXTM3U")
    assert "#EXT-X-ENDLIST" in manifest
    assert list((tmp_path / "out").glob("segment_*.ts"))
