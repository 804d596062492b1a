"""FFmpeg probing and memory-conservative rendition encoding.

Every encode runs single-threaded with the fastest x264 preset and a capped
rate-control buffer so that one encode's buffers bound peak memory.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional

from adaptive_media.modules.transcoding.exceptions import ProbeFailed
from adaptive_media.modules.transcoding.ladder import RenditionSpec

logger = logging.getLogger(__name__)

AUDIO_BITRATE = "96k"
POSTER_OFFSET_SECONDS = 1.0


@dataclass
class SourceInfo:
    """Probed properties of a source video."""
    width: int
    height: int
    duration: Optional[float] = None


@dataclass
class TranscodeOutput:
    """Result of encoding one rendition."""
    success: bool
    output_path: str
    width: int
    height: int
    file_size: int = 0
    error_message: Optional[str] = None


def parse_probe_output(output: str) -> SourceInfo:
    """Parse ``ffprobe -of csv=p=0`` output for the first video stream.

    The stream section prints ``width,height`` and the format section prints
    the duration, each on its own line.

    Raises:
        ProbeFailed: If no positive width/height pair is present
    """
    values: list[str] = []
    for line in output.splitlines():
        values.extend(part.strip() for part in line.split(",") if part.strip())

    if len(values) < 2:
        raise ProbeFailed(f"Unexpected probe output: {output!r}")

    try:
        width, height = int(values[0]), int(values[1])
    except ValueError as e:
        raise ProbeFailed(f"Unreadable dimensions in probe output: {output!r}") from e

    if width <= 0 or height <= 0:
        raise ProbeFailed(f"Invalid dimensions {width}x{height}")

    duration = None
    if len(values) > 2:
        try:
            duration = float(values[2])
        except ValueError:
            duration = None  # "N/A" for streams without a container duration

    return SourceInfo(width=width, height=height, duration=duration)


def _tail(text: str, limit: int = 2000) -> str:
    return text[-limit:] if text else ""


class FFmpegTranscoder:
    """FFmpeg-based rendition encoder."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        encode_timeout: float = 600.0,
        probe_timeout: float = 30.0,
    ):
        """Initialize transcoder.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            encode_timeout: Seconds allowed for one rendition encode
            probe_timeout: Seconds allowed for probing
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.encode_timeout = encode_timeout
        self.probe_timeout = probe_timeout

    def build_probe_command(self, input_path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height:format=duration",
            "-of", "csv=p=0",
            input_path,
        ]

    def probe(self, input_path: str) -> SourceInfo:
        """Read native width, height and duration of a video.

        Raises:
            ProbeFailed: If ffprobe fails or reports no usable video stream
        """
        cmd = self.build_probe_command(input_path)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.probe_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProbeFailed(f"ffprobe did not complete: {e}") from e

        if result.returncode != 0:
            raise ProbeFailed(f"ffprobe exited with {result.returncode}: {_tail(result.stderr)}")

        return parse_probe_output(result.stdout)

    def build_encode_command(
        self,
        spec: RenditionSpec,
        input_path: str,
        output_path: str,
    ) -> list[str]:
        """Build the FFmpeg command for one rendition.

        Args:
            spec: Rendition target
            input_path: Local source file
            output_path: Local output file

        Returns:
            FFmpeg command as list of arguments
        """
        return [
            self.ffmpeg_path,
            "-i", input_path,
            # Video settings
            "-c:v", "libx264",
            "-preset", "ultrafast",
            "-crf", str(spec.crf),
            "-maxrate", f"{spec.bitrate}k",
            "-bufsize", f"{spec.buffer_size}k",
            "-vf", f"scale={spec.width}:{spec.height}:flags=fast_bilinear",
            # Audio settings
            "-c:a", "aac",
            "-b:a", AUDIO_BITRATE,
            "-ac", "2",
            # Memory bounds
            "-threads", "1",
            "-filter_threads", "1",
            # Output format
            "-movflags", "+faststart",
            "-avoid_negative_ts", "make_zero",
            "-f", "mp4",
            "-y",
            output_path,
        ]

    def encode(
        self,
        spec: RenditionSpec,
        input_path: str,
        output_path: str,
    ) -> TranscodeOutput:
        """Encode one rendition. Failures are returned, not raised."""
        cmd = self.build_encode_command(spec, input_path, output_path)
        logger.debug("Running ffmpeg", extra={"label": spec.label, "command": cmd})

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.encode_timeout,
            )
        except subprocess.TimeoutExpired:
            return TranscodeOutput(
                success=False,
                output_path=output_path,
                width=spec.width,
                height=spec.height,
                error_message=f"Encode timed out after {self.encode_timeout:.0f}s",
            )
        except OSError as e:
            return TranscodeOutput(
                success=False,
                output_path=output_path,
                width=spec.width,
                height=spec.height,
                error_message=f"Failed to start ffmpeg: {e}",
            )

        if result.returncode != 0:
            return TranscodeOutput(
                success=False,
                output_path=output_path,
                width=spec.width,
                height=spec.height,
                error_message=f"ffmpeg exited with {result.returncode}: {_tail(result.stderr)}",
            )

        if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
            return TranscodeOutput(
                success=False,
                output_path=output_path,
                width=spec.width,
                height=spec.height,
                error_message="ffmpeg produced no output",
            )

        return TranscodeOutput(
            success=True,
            output_path=output_path,
            width=spec.width,
            height=spec.height,
            file_size=os.path.getsize(output_path),
        )

    def build_poster_command(self, input_path: str, output_path: str) -> list[str]:
        return [
            self.ffmpeg_path,
            "-ss", str(POSTER_OFFSET_SECONDS),
            "-i", input_path,
            "-frames:v", "1",
            "-q:v", "3",
            "-threads", "1",
            "-y",
            output_path,
        ]

    def extract_poster(self, input_path: str, output_path: str) -> bool:
        """Grab a single poster frame. Returns False on any failure."""
        try:
            result = subprocess.run(
                self.build_poster_command(input_path, output_path),
                capture_output=True,
                text=True,
                timeout=self.probe_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Poster extraction did not complete", extra={"error": str(e)})
            return False

        return result.returncode == 0 and os.path.exists(output_path)
