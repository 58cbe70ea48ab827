import subprocess

import pytest
import requests

import transcoder
from conftest import VIDEO_URL, FakeResponse, sample_info
from errors import ConversionFailed, DownloadFailed, InvalidInput
from extractor import MetadataFetcher, to_encoding_option
from orchestrator import DownloadOrchestrator, parse_quality, select_encoding
from storage import TempStorage
from transcoder import Transcoder


@pytest.fixture
def orchestrator(tmp_path):
    storage = TempStorage(str(tmp_path / "downloads"))
    storage.ensure()
    return DownloadOrchestrator(storage, MetadataFetcher(), Transcoder())


@pytest.fixture
def formats():
    return [o for o in map(to_encoding_option, sample_info()["formats"]) if o]


def _files(orchestrator):
    return sorted(p.name for p in orchestrator.storage.root.iterdir())


@pytest.mark.parametrize(
    "value,expected",
    [(None, "highest"), ("best", "highest"), ("Lowest", "lowest"), ("720p", 720), ("480", 480)],
)
def test_parse_quality(value, expected):
    assert parse_quality(value) == expected


@pytest.mark.parametrize("value", ["ultra", "-1", "0p"])
def test_parse_quality_rejects_garbage(value):
    with pytest.raises(InvalidInput):
        parse_quality(value)


@pytest.mark.parametrize(
    "quality,expected",
    [("highest", "22"), ("lowest", "18"), (720, "22"), (480, "18"), (144, "18")],
)
def test_select_progressive(formats, quality, expected):
    assert select_encoding(formats, quality, "mp4").format_id == expected


def test_select_audio_prefers_native_container(formats):
    assert select_encoding(formats, "highest", "m4a", audio_only=True).format_id == "140"
    assert select_encoding(formats, "highest", "mp3", audio_only=True).format_id == "251"


def test_select_nothing_suitable(formats):
    assert select_encoding(formats, "highest", "webm") is None


def test_download_video(orchestrator, yt_calls, streams):
    stored = orchestrator.download(VIDEO_URL, "360p", "mp4")

    assert streams[0][0].format_id == "18"
    assert streams[0][1].closed
    assert stored.title == "Never Gonna Give You Up"
    assert stored.filename.startswith("Never_Gonna_Give_You_Up_")
    assert stored.filename.endswith(".mp4")
    assert stored.path.read_bytes() == b"abcdef"
    assert stored.size == 6
    assert _files(orchestrator) == [stored.filename]


def test_audio_download_leaves_only_converted_file(orchestrator, yt_calls, streams, ffmpeg_calls):
    stored = orchestrator.download(VIDEO_URL, None, "mp3")

    assert len(ffmpeg_calls) == 1
    assert stored.filename.endswith(".mp3")
    assert stored.path.read_bytes() == b"converted"
    assert _files(orchestrator) == [stored.filename]


def test_native_audio_skips_conversion(orchestrator, yt_calls, streams, ffmpeg_calls):
    stored = orchestrator.download(VIDEO_URL, None, "m4a")

    assert ffmpeg_calls == []
    assert stored.filename.endswith(".m4a")
    assert _files(orchestrator) == [stored.filename]


def test_unsupported_format_rejected_before_fetch(orchestrator, yt_calls):
    with pytest.raises(InvalidInput):
        orchestrator.download(VIDEO_URL, None, "exe")
    assert yt_calls == []


def test_interrupted_stream_fails_and_cleans_up(orchestrator, yt_calls, monkeypatch):
    def broken_open(self, option):
        return FakeResponse([b"abc"], error=requests.ConnectionError("reset by peer"))

    monkeypatch.setattr(DownloadOrchestrator, "_open_stream", broken_open)
    with pytest.raises(DownloadFailed) as exc_info:
        orchestrator.download(VIDEO_URL)
    assert "reset by peer" in exc_info.value.details
    assert _files(orchestrator) == []


def test_conversion_failure(orchestrator, yt_calls, streams, monkeypatch):
    def failing_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 1, "", "Invalid data found when processing input")

    monkeypatch.setattr(transcoder.subprocess, "run", failing_run)
    with pytest.raises(ConversionFailed) as exc_info:
        orchestrator.download(VIDEO_URL, None, "mp3")
    assert "Invalid data" in exc_info.value.details
    assert _files(orchestrator) == []


def test_passthrough_writes_nothing(orchestrator, yt_calls, streams):
    filename, mimetype, chunks = orchestrator.open_passthrough(VIDEO_URL)

    assert filename == "Never_Gonna_Give_You_Up.mp4"
    assert mimetype == "video/mp4"
    assert b"".join(chunks) == b"abcdef"
    assert streams[0][0].format_id == "22"
    assert _files(orchestrator) == []
