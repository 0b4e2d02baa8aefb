import json
import os
import tempfile
import subprocess
import structlog
from pathlib import Path
from typing import List

from app.core.errors import EmptyPayloadError, VideoProcessingError
from app.core.utils import cleanup_temp_dir

logger = structlog.get_logger()

FRAME_WIDTH = 512
FRAME_PERCENTAGES = [10, 30, 50, 70, 90]
DEFAULT_FFMPEG_TIMEOUT = 60.0


def frame_timestamps(duration: float) -> List[float]:
    """Sample points, in seconds, at 10%, 30%, 50%, 70% and 90% of duration."""
    return [duration * percentage / 100 for percentage in FRAME_PERCENTAGES]


def probe_duration(video_path: str, timeout: float = DEFAULT_FFMPEG_TIMEOUT) -> float:
    """Read container duration with ffprobe."""
    cmd = [
        "ffprobe",
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        video_path,
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
        info = json.loads(result.stdout)
        duration = float(info.get("format", {}).get("duration", 0))
    except subprocess.CalledProcessError as e:
        logger.error("FFprobe failed", video_path=video_path, error=e.stderr)
        raise VideoProcessingError(f"Failed to probe video: {e.stderr}")
    except subprocess.TimeoutExpired:
        raise VideoProcessingError(f"Video probe timed out after {timeout}s")
    except (OSError, ValueError, TypeError) as e:
        logger.error("Video probe failed", video_path=video_path, error=str(e))
        raise VideoProcessingError(f"Failed to probe video: {e}")

    if duration <= 0:
        raise VideoProcessingError("Invalid video duration")
    return duration


def extract_frame_at(video_path: str, timestamp: float, output_path: str,
                     timeout: float = DEFAULT_FFMPEG_TIMEOUT) -> bytes:
    """Extract one JPEG frame at timestamp, scaled to FRAME_WIDTH keeping aspect ratio."""
    cmd = [
        "ffmpeg",
        "-ss", f"{timestamp:.3f}",
        "-i", video_path,
        "-frames:v", "1",
        "-vf", f"scale={FRAME_WIDTH}:-2",
        "-q:v", "2",  # High quality JPEG
        "-an",
        "-y",
        output_path,
        "-loglevel", "error",
    ]
    logger.debug("Running ffmpeg command", cmd=" ".join(cmd))

    try:
        subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
    except subprocess.CalledProcessError as e:
        logger.error("FFmpeg frame extraction failed", timestamp=timestamp, error=e.stderr)
        raise VideoProcessingError(f"Failed to extract frame at {timestamp:.3f}s: {e.stderr}")
    except subprocess.TimeoutExpired:
        raise VideoProcessingError(f"Frame extraction at {timestamp:.3f}s timed out after {timeout}s")
    except OSError as e:
        raise VideoProcessingError(f"Failed to run ffmpeg: {e}")

    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise VideoProcessingError(f"Frame extraction at {timestamp:.3f}s produced no image")

    return Path(output_path).read_bytes()


def extract_key_frames(video: bytes, timeout: float = DEFAULT_FFMPEG_TIMEOUT) -> List[bytes]:
    """
    Extract five representative JPEG frames from an MP4 payload.

    Frames are taken at 10%, 30%, 50%, 70% and 90% of the duration. Any
    failure aborts the whole extraction; partial frame sets are never
    returned. The private working directory is removed on every exit path.
    """
    if not video:
        raise EmptyPayloadError("Video buffer is empty")

    temp_dir = tempfile.mkdtemp(prefix="video-frames-")
    try:
        video_path = os.path.join(temp_dir, "input.mp4")
        with open(video_path, "wb") as f:
            f.write(video)

        duration = probe_duration(video_path, timeout)
        logger.info("Extracting key frames", duration=duration, frame_count=len(FRAME_PERCENTAGES))

        frames = []
        for index, timestamp in enumerate(frame_timestamps(duration)):
            frame_path = os.path.join(temp_dir, f"frame_{index}.jpg")
            frames.append(extract_frame_at(video_path, timestamp, frame_path, timeout))

        logger.info("Key frames extracted", frame_count=len(frames))
        return frames
    finally:
        cleanup_temp_dir(temp_dir)


def check_ffmpeg_installation() -> bool:
    """Check if FFmpeg is installed and accessible."""
    try:
        result = subprocess.run(
            ["ffmpeg", "-version"],
            capture_output=True,
            text=True,
            check=True,
            timeout=10,
        )
        logger.info("FFmpeg is available", version_info=result.stdout.split('\n')[0])
        return True
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError):
        logger.error("FFmpeg is not installed or not accessible")
        return False
