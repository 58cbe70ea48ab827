import logging
from pathlib import Path
from typing import Optional, Iterator, List, Tuple, Union

import requests

from config import AUDIO_OUTPUT_FORMATS, VIDEO_OUTPUT_FORMATS
from errors import InvalidInput, DownloadFailed, ConversionFailed
from extractor import MetadataFetcher, require_video_id
from models import EncodingOption, StoredFile
from storage import TempStorage, sanitize_title, CHUNK_SIZE
from transcoder import Transcoder


log = logging.getLogger("fetch.orchestrator")

Quality = Union[str, int]


# ----------------------------
# Format selection
# ----------------------------


def parse_quality(quality: Optional[str]) -> Quality:
    """Normalize a quality request to ``"highest"``, ``"lowest"`` or a height."""
    q = str(quality or "").strip().lower()
    if q in ("", "highest", "best", "max"):
        return "highest"
    if q in ("lowest", "worst"):
        return "lowest"
    digits = q[:-1] if q.endswith("p") else q
    if digits.isdigit() and int(digits) > 0:
        return int(digits)
    raise InvalidInput("Invalid quality", f"Unsupported quality: {quality}")


def _height(f: EncodingOption) -> int:
    return f.height or 0


def select_encoding(
    formats: List[EncodingOption],
    quality: Quality = "highest",
    container: str = "mp4",
    audio_only: bool = False,
) -> Optional[EncodingOption]:
    if audio_only:
        audio = [f for f in formats if f.has_audio and not f.has_video and f.url]
        if audio:
            # native match first, then bitrate
            return max(audio, key=lambda f: (f.container == container, f.abr or 0))
        candidates = [f for f in formats if f.is_progressive and f.url]
    else:
        candidates = [f for f in formats if f.is_progressive and f.url and f.container == container]

    if not candidates:
        return None
    if quality == "highest":
        return max(candidates, key=_height)
    if quality == "lowest":
        return min(candidates, key=_height)

    at_most = [f for f in candidates if _height(f) <= quality]
    if at_most:
        return max(at_most, key=_height)
    return min(candidates, key=_height)


# ----------------------------
# Download Orchestrator
# ----------------------------


class DownloadOrchestrator:
    def __init__(
        self,
        storage: TempStorage,
        fetcher: MetadataFetcher,
        transcoder: Transcoder,
        stream_timeout: int = 30,
    ):
        self.storage = storage
        self.fetcher = fetcher
        self.transcoder = transcoder
        self.stream_timeout = stream_timeout

    def download(self, url: str, quality: Optional[str] = None, output_format: Optional[str] = None) -> StoredFile:
        require_video_id(url)
        output_format = str(output_format or "mp4").strip().lower()
        if output_format not in VIDEO_OUTPUT_FORMATS | AUDIO_OUTPUT_FORMATS:
            raise InvalidInput("Invalid format", f"Unsupported output format: {output_format}")
        wanted = parse_quality(quality)
        audio_only = output_format in AUDIO_OUTPUT_FORMATS

        media = self.fetcher.fetch(url, all_formats=True)
        option = select_encoding(media.formats, wanted, output_format, audio_only)
        if option is None:
            raise DownloadFailed("Download failed", "No suitable format available")

        log.info(f"Downloading {media.video_id} format {option.format_id} ({option.quality}, {option.container})")
        source = self.storage.new_path(media.title, option.container)
        try:
            self._write_stream(option, source)
        except DownloadFailed:
            self._discard(source)
            raise

        final = source
        if audio_only and option.container != output_format:
            try:
                final = self.transcoder.to_audio(source, output_format)
            except ConversionFailed:
                self._discard(source, source.with_suffix(f".{output_format}"))
                raise
            self.storage.delete(source)

        stored = StoredFile(path=final, title=media.title)
        log.info(f"Download complete: {stored.filename} - {stored.size / (1024**2):.1f}MB")
        return stored

    def open_passthrough(self, url: str) -> Tuple[str, str, Iterator[bytes]]:
        """Resolve ``url`` to its best progressive mp4 and return a live byte stream.

        Nothing is written to storage.
        """
        require_video_id(url)
        media = self.fetcher.fetch(url)
        option = select_encoding(media.formats, "highest", "mp4")
        if option is None:
            raise DownloadFailed("Download failed", "No suitable format available")

        response = self._open_stream(option)
        filename = f"{sanitize_title(media.title)}.mp4"
        log.info(f"Streaming {media.video_id} format {option.format_id} directly to client")
        return filename, "video/mp4", self._iter_response(response)

    def _open_stream(self, option: EncodingOption) -> requests.Response:
        if not option.url:
            raise DownloadFailed("Download failed", "Selected format has no stream URL")
        try:
            response = requests.get(
                option.url,
                headers=option.http_headers or None,
                stream=True,
                timeout=self.stream_timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            log.error(f"Stream request failed for format {option.format_id}: {e}")
            raise DownloadFailed("Download failed", str(e))
        return response

    def _iter_response(self, response: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    yield chunk
        finally:
            response.close()

    def _write_stream(self, option: EncodingOption, path: Path) -> None:
        response = self._open_stream(option)
        try:
            with open(path, "wb") as f:
                for chunk in self._iter_response(response):
                    f.write(chunk)
        except requests.RequestException as e:
            log.error(f"Download of {path.name} interrupted: {e}")
            raise DownloadFailed("Download failed", str(e))
        except OSError as e:
            if e.errno == 28:  # ENOSPC
                log.error(f"Download of {path.name} failed: Disk full")
                raise DownloadFailed("Download failed", "Storage full - contact admin")
            log.error(f"Download of {path.name} failed: {e}")
            raise DownloadFailed("Download failed", str(e))

    def _discard(self, *paths: Path) -> None:
        for path in paths:
            try:
                self.storage.delete(path)
            except OSError as e:
                log.warning(f"Failed to clean up {path.name}: {e}")
