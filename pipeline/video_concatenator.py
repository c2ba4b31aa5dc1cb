"""
Story Chain - Video Concatenator

Join scene clips into the final story video with FFmpeg.

Input:
    - temp/scene_*.mp4 (one clip per scene, each with video + audio)

Output:
    - output/{character}_story_{timestamp}.mp4

Specifications:
    - Filter graph: concat of every input's video and audio, in input order
    - Video codec: h264 (libx264, preset fast, crf 23)
    - Audio codec: aac
    - +faststart for progressive playback
"""

import asyncio
import json
import re
import subprocess
import time
from fractions import Fraction
from pathlib import Path
from typing import Optional

from rich.markup import escape

from core.constants import AUDIO_CODEC, CRF, ENCODER_PRESET, VIDEO_CODEC
from core.errors import ConcatenationError, StoryChainError, ValidationError
from core.logging import get_logger
from core.models import AudioStreamInfo, VideoInfo, VideoStreamInfo

logger = get_logger(__name__)

# Encoder stderr kept in error messages
STDERR_TAIL_CHARS = 1000


# ============================================================================
# FFmpeg Utilities
# ============================================================================

def check_ffmpeg(ffmpeg_bin: str = "ffmpeg") -> bool:
    """Check if FFmpeg is available."""
    try:
        result = subprocess.run(
            [ffmpeg_bin, "-version"],
            capture_output=True,
            text=True,
        )
        return result.returncode == 0
    except FileNotFoundError:
        return False


def sanitize_character(character: str) -> str:
    """Replace every non-alphanumeric character with an underscore."""
    return re.sub(r"[^a-zA-Z0-9]", "_", character)


def build_concat_filter(count: int) -> str:
    """
    Filter graph joining `count` inputs' video and audio streams in order.

    Example (count=2): [0:v][0:a][1:v][1:a]concat=n=2:v=1:a=1[outv][outa]
    """
    inputs = "".join(f"[{i}:v][{i}:a]" for i in range(count))
    return f"{inputs}concat=n={count}:v=1:a=1[outv][outa]"


def build_concat_command(
    clips: list[Path],
    output_path: Path,
    ffmpeg_bin: str = "ffmpeg",
) -> list[str]:
    """Full FFmpeg argument list for joining `clips` into `output_path`."""
    cmd = [ffmpeg_bin, "-y"]
    for clip in clips:
        cmd.extend(["-i", str(clip)])

    cmd.extend([
        "-filter_complex", build_concat_filter(len(clips)),
        "-map", "[outv]",
        "-map", "[outa]",
        "-c:v", VIDEO_CODEC,
        "-c:a", AUDIO_CODEC,
        "-preset", ENCODER_PRESET,
        "-crf", str(CRF),
        "-movflags", "+faststart",
        str(output_path),
    ])
    return cmd


def parse_frame_rate(rate: Optional[str]) -> float:
    """Convert an ffprobe fraction such as '30000/1001' to fps."""
    if not rate:
        return 0.0
    try:
        return float(Fraction(rate))
    except (ValueError, ZeroDivisionError):
        return 0.0


def parse_probe_output(data: dict) -> VideoInfo:
    """Build VideoInfo from ffprobe -show_format -show_streams JSON."""
    fmt = data.get("format", {})
    streams = data.get("streams", [])

    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)

    video = None
    if video_stream:
        video = VideoStreamInfo(
            width=int(video_stream.get("width", 0)),
            height=int(video_stream.get("height", 0)),
            fps=parse_frame_rate(video_stream.get("r_frame_rate")),
            codec=video_stream.get("codec_name", ""),
        )

    audio = None
    if audio_stream:
        audio = AudioStreamInfo(
            codec=audio_stream.get("codec_name", ""),
            sample_rate=int(audio_stream.get("sample_rate", 0)),
            channels=int(audio_stream.get("channels", 0)),
        )

    return VideoInfo(
        duration=float(fmt.get("duration", 0) or 0),
        size=int(fmt.get("size", 0) or 0),
        bitrate=int(fmt.get("bit_rate", 0) or 0),
        video=video,
        audio=audio,
    )


# ============================================================================
# Concatenator
# ============================================================================

class VideoConcatenator:
    """Order-preserving clip joiner plus probe, validation and cleanup helpers."""

    def __init__(
        self,
        output_dir: Path,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
    ):
        self.output_dir = Path(output_dir)
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin

    def is_available(self) -> bool:
        """Check the configured FFmpeg binary runs."""
        available = check_ffmpeg(self.ffmpeg_bin)
        if not available:
            logger.error(f"FFmpeg not found: {self.ffmpeg_bin}")
        return available

    def output_path(self, character: str, run_id: Optional[str] = None) -> Path:
        timestamp = int(time.time() * 1000)
        suffix = f"{run_id}_{timestamp}" if run_id else str(timestamp)
        return self.output_dir / f"{sanitize_character(character)}_story_{suffix}.mp4"

    async def _run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: subprocess.run(cmd, capture_output=True, text=True),
        )

    async def concatenate(
        self,
        clips: list[Path],
        character: str,
        run_id: Optional[str] = None,
    ) -> Path:
        """
        Concatenate clips into one MP4, preserving input order.

        Args:
            clips: Clip paths in scene order
            character: Character name used in the output filename
            run_id: Optional run id added to the filename

        Returns:
            Path to the final video

        Raises:
            ValidationError: No clips supplied
            ConcatenationError: FFmpeg missing or exited non-zero; the
                message carries the encoder's own output
        """
        if not clips:
            raise ValidationError("At least one clip is required for concatenation")

        output_path = self.output_path(character, run_id)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = build_concat_command([Path(c) for c in clips], output_path, self.ffmpeg_bin)
        logger.info(f"Concatenating {len(clips)} videos...")
        logger.debug(escape(f"FFmpeg command: {' '.join(cmd)}"))

        try:
            result = await self._run(cmd)
        except FileNotFoundError as e:
            raise ConcatenationError(f"Video concatenation failed: {self.ffmpeg_bin} not found") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            tail = stderr[-STDERR_TAIL_CHARS:]
            logger.error(escape(f"FFmpeg concat failed: {tail}"))
            raise ConcatenationError(f"Video concatenation failed: {tail}", stderr=stderr)

        logger.info(f"Video concatenation completed: {output_path}")
        return output_path

    async def probe(self, path: Path) -> VideoInfo:
        """Read container and stream metadata. Diagnostics only."""
        cmd = [
            self.ffprobe_bin,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

        try:
            result = await self._run(cmd)
        except FileNotFoundError as e:
            raise StoryChainError(f"Failed to get video info: {self.ffprobe_bin} not found") from e

        if result.returncode != 0:
            raise StoryChainError(f"Failed to get video info: {(result.stderr or '').strip() or path}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise StoryChainError(f"Failed to get video info: {e}") from e

        return parse_probe_output(data)

    def validate_files(self, paths: list[Path]) -> bool:
        """
        Check every clip exists and is non-empty.

        Stops at the first invalid file. An empty list is valid.
        """
        logger.info("Validating video files...")

        for path in paths:
            path = Path(path)
            try:
                size = path.stat().st_size
            except OSError as e:
                logger.error(f"Invalid video file: {path} ({e})")
                return False

            if size == 0:
                logger.error(f"Invalid video file: {path} (empty)")
                return False

            logger.info(f"Valid: {path} ({size / 1024 / 1024:.2f} MB)")

        return True

    async def cleanup(self, paths: list[Path]) -> None:
        """Delete temp clips in parallel; failures are logged, never raised."""
        logger.info(f"Cleaning up {len(paths)} temporary files...")
        loop = asyncio.get_running_loop()

        async def delete(path: Path) -> None:
            try:
                await loop.run_in_executor(None, Path(path).unlink)
                logger.info(f"Deleted: {path}")
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}")

        await asyncio.gather(*(delete(p) for p in paths))
        logger.info("Cleanup completed")
