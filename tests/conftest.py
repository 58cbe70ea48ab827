import subprocess
import time
from pathlib import Path

import pytest

import transcoder
from app import create_app
from config import Settings
from extractor import MetadataFetcher
from orchestrator import DownloadOrchestrator


VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def sample_info():
    return {
        "id": "dQw4w9WgXcQ",
        "title": "Never Gonna Give You Up",
        "duration": 212,
        "uploader": "Rick Astley",
        "thumbnails": [
            {"url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/default.jpg"},
            {"url": "https://i.ytimg.com/vi/dQw4w9WgXcQ/maxresdefault.jpg"},
        ],
        "formats": [
            {"format_id": "sb0", "format_note": "storyboard", "ext": "mhtml", "vcodec": "none", "acodec": "none"},
            {
                "format_id": "140",
                "ext": "m4a",
                "vcodec": "none",
                "acodec": "mp4a.40.2",
                "abr": 129.5,
                "filesize": 3433514,
                "url": "https://media.example/140",
            },
            {
                "format_id": "251",
                "ext": "webm",
                "vcodec": "none",
                "acodec": "opus",
                "abr": 135.1,
                "filesize_approx": 3437753,
                "url": "https://media.example/251",
            },
            {
                "format_id": "18",
                "format_note": "360p",
                "ext": "mp4",
                "vcodec": "avc1.42001E",
                "acodec": "mp4a.40.2",
                "height": 360,
                "filesize": 11000000,
                "url": "https://media.example/18",
                "http_headers": {"User-Agent": "test"},
            },
            {
                "format_id": "22",
                "format_note": "720p",
                "ext": "mp4",
                "vcodec": "avc1.64001F",
                "acodec": "mp4a.40.2",
                "height": 720,
                "url": "https://media.example/22",
            },
            {
                "format_id": "137",
                "format_note": "1080p",
                "ext": "mp4",
                "vcodec": "avc1.640028",
                "acodec": "none",
                "height": 1080,
                "url": "https://media.example/137",
            },
        ],
    }


class FakeResponse:
    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            yield chunk
        if self.error:
            raise self.error

    def close(self):
        self.closed = True


def wait_until(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def settings(tmp_path):
    return Settings(download_dir=str(tmp_path / "downloads"), serve_grace_seconds=0.05)


@pytest.fixture
def yt_calls(monkeypatch):
    calls = []

    def fake_info(self, url):
        calls.append(url)
        return sample_info()

    monkeypatch.setattr(MetadataFetcher, "_run_yt_dlp_info", fake_info)
    return calls


@pytest.fixture
def streams(monkeypatch):
    opened = []

    def fake_open(self, option):
        response = FakeResponse([b"abc", b"def"])
        opened.append((option, response))
        return response

    monkeypatch.setattr(DownloadOrchestrator, "_open_stream", fake_open)
    return opened


@pytest.fixture
def ffmpeg_calls(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        Path(cmd[-1]).write_bytes(b"converted")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr(transcoder.subprocess, "run", fake_run)
    return calls


@pytest.fixture
def app(settings):
    return create_app(settings, start_background=False)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def download_dir(settings):
    return Path(settings.download_dir)
