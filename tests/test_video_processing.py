import json
import os
import subprocess

import pytest
from PIL import Image

from app.core.errors import EmptyPayloadError, VideoProcessingError
from app.services import video_processing
from app.services.video_processing import extract_key_frames, frame_timestamps


class FakeFFmpeg:
    """Stands in for subprocess.run: answers ffprobe and writes a frame for ffmpeg."""

    def __init__(self, duration="100.0", fail_on_frame=None):
        self.duration = duration
        self.fail_on_frame = fail_on_frame
        self.frame_calls = 0
        self.work_dirs = set()
        self.seek_times = []
        self.filters = []

    def __call__(self, cmd, **kwargs):
        assert "timeout" in kwargs
        if cmd[0] == "ffprobe":
            self.work_dirs.add(os.path.dirname(cmd[-1]))
            payload = json.dumps({"format": {"duration": self.duration}})
            return subprocess.CompletedProcess(cmd, 0, stdout=payload, stderr="")

        self.frame_calls += 1
        self.seek_times.append(float(cmd[cmd.index("-ss") + 1]))
        self.filters.append(cmd[cmd.index("-vf") + 1])
        if self.fail_on_frame == self.frame_calls:
            raise subprocess.CalledProcessError(1, cmd, output="", stderr="decode error")

        output_path = next(arg for arg in cmd if arg.endswith(".jpg"))
        Image.new("RGB", (512, 288), color=(10, 20, 30)).save(output_path, format="JPEG")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def test_frame_timestamps():
    assert frame_timestamps(100) == [10.0, 30.0, 50.0, 70.0, 90.0]


def test_extracts_five_frames_and_cleans_up(monkeypatch):
    fake = FakeFFmpeg()
    monkeypatch.setattr(video_processing.subprocess, "run", fake)

    frames = extract_key_frames(b"\x00\x00\x00\x18ftypmp42")

    assert len(frames) == 5
    assert fake.filters == ["scale=512:-2"] * 5
    assert fake.seek_times == [10.0, 30.0, 50.0, 70.0, 90.0]
    assert fake.work_dirs and not any(os.path.exists(path) for path in fake.work_dirs)


def test_failure_aborts_and_cleans_up(monkeypatch):
    fake = FakeFFmpeg(fail_on_frame=3)
    monkeypatch.setattr(video_processing.subprocess, "run", fake)

    with pytest.raises(VideoProcessingError):
        extract_key_frames(b"video")

    assert fake.frame_calls == 3
    assert not any(os.path.exists(path) for path in fake.work_dirs)


def test_timeout_is_a_processing_error(monkeypatch):
    def timeout(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(video_processing.subprocess, "run", timeout)

    with pytest.raises(VideoProcessingError, match="timed out"):
        extract_key_frames(b"video", timeout=1)


def test_zero_duration_is_rejected(monkeypatch):
    monkeypatch.setattr(video_processing.subprocess, "run", FakeFFmpeg(duration="0"))

    with pytest.raises(VideoProcessingError):
        extract_key_frames(b"video")


def test_empty_video_is_rejected():
    with pytest.raises(EmptyPayloadError):
        extract_key_frames(b"")
