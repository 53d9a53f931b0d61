"""FFmpeg HLS packaging.

Turns one source video into an HLS manifest (``index.m3u8``) plus MPEG-TS
segments, and grabs a poster frame.
"""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from hlsforge.core.errors import TranscodeError

logger = logging.getLogger(__name__)

SUPPORTED_PACKAGERS = frozenset({"ffmpeg"})

MANIFEST_NAME = "index.m3u8"
THUMBNAIL_NAME = "thumbnail.jpg"
STDERR_TAIL_CHARS = 2000


@dataclass
class TranscodeOutput:
    """Files produced for one upload."""
    output_dir: str
    manifest_path: str
    thumbnail_path: Optional[str] = None
    files: list[str] = field(default_factory=list)


class HLSTranscoder:
    """FFmpeg-based HLS packager.

    Single-rendition, baseline-profile H.264 so the output plays on every
    HLS client including old mobile devices.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        segment_seconds: int = 3,
        timeout_seconds: Optional[float] = None,
    ):
        """Initialize transcoder.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            segment_seconds: Target HLS segment duration
            timeout_seconds: Kill ffmpeg after this long; None waits forever
        """
        self.ffmpeg_path = ffmpeg_path
        self.segment_seconds = segment_seconds
        self.timeout_seconds = timeout_seconds

    def build_hls_command(self, input_path: str, output_dir: str) -> list[str]:
        output = Path(output_dir)
        return [
            self.ffmpeg_path,
            "-y",
            "-i", input_path,
            "-profile:v", "baseline",
            "-level", "3.0",
            "-start_number", "0",
            "-hls_time", str(self.segment_seconds),
            "-hls_list_size", "0",
            "-hls_segment_filename", str(output / "segment_%03d.ts"),
            "-f", "hls",
            str(output / MANIFEST_NAME),
        ]

    def build_thumbnail_command(self, input_path: str, output_path: str) -> list[str]:
        return [
            self.ffmpeg_path,
            "-y",
            "-i", input_path,
            "-ss", "00:00:01.000",
            "-vframes", "1",
            "-q:v", "2",
            output_path,
        ]

    def _run(self, cmd: list[str], timeout: Optional[float]) -> tuple[int, str]:
        """Run a command, returning (exit code, stderr).

        Raises:
            TranscodeError: If the binary is missing or the timeout elapses
        """
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True,
            )
        except OSError as e:
            raise TranscodeError(f"Could not start {self.ffmpeg_path}: {e}") from e

        try:
            _, stderr = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            process.kill()
            process.communicate()
            raise TranscodeError(f"ffmpeg timed out after {timeout}s") from e
        return process.returncode, stderr or ""

    def transcode(self, input_path: str, output_dir: str) -> TranscodeOutput:
        """Package ``input_path`` as HLS into ``output_dir``.

        Raises:
            TranscodeError: On non-zero exit, timeout, or missing manifest
        """
        if not Path(input_path).is_file():
            raise TranscodeError(f"Source file not found: {input_path}")

        output = Path(output_dir)
        output.mkdir(parents=True, exist_ok=True)

        cmd = self.build_hls_command(input_path, output_dir)
        logger.info("Starting ffmpeg", extra={"command": " ".join(cmd)})
        returncode, stderr = self._run(cmd, self.timeout_seconds)
        if returncode != 0:
            raise TranscodeError(
                f"ffmpeg exited with code {returncode}: {stderr[-STDERR_TAIL_CHARS:].strip()}"
            )

        manifest = output / MANIFEST_NAME
        if not manifest.is_file():
            raise TranscodeError(f"ffmpeg produced no manifest at {manifest}")

        thumbnail = self.generate_thumbnail(input_path, output_dir)
        return TranscodeOutput(
            output_dir=str(output),
            manifest_path=str(manifest),
            thumbnail_path=thumbnail,
            files=sorted(str(p) for p in output.rglob("*") if p.is_file()),
        )

    def generate_thumbnail(self, input_path: str, output_dir: str) -> Optional[str]:
        """Extract a poster frame. Failure is logged, never raised."""
        thumbnail = Path(output_dir) / THUMBNAIL_NAME
        try:
            returncode, stderr = self._run(
                self.build_thumbnail_command(input_path, str(thumbnail)),
                self.timeout_seconds,
            )
        except TranscodeError as e:
            logger.warning("Thumbnail generation failed", extra={"error": str(e)})
            return None

        if returncode != 0 or not thumbnail.is_file():
            logger.warning(
                "Thumbnail generation failed",
                extra={"returncode": returncode, "stderr": stderr[-500:]},
            )
            return None
        return str(thumbnail)
