import json
import os
import re
import logging
import subprocess
import urllib.parse
from typing import Optional, Dict, Any, List

from errors import InvalidInput, FetchFailed
from models import EncodingOption, MediaReference


log = logging.getLogger("fetch.extractor")

SUPPORTED_SITES = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "gaming.youtube.com",
    "youtu.be",
    "www.youtube-nocookie.com",
}
ID_PATH_PREFIXES = ("embed", "shorts", "v", "live", "e")
VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
MAX_URL_LENGTH = 500


# ----------------------------
# Utilities & Validation
# ----------------------------


def extract_video_id(url: str) -> Optional[str]:
    if not url or len(url) > MAX_URL_LENGTH:
        return None
    try:
        parsed = urllib.parse.urlparse(url.strip())
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https"):
        return None
    host = (parsed.hostname or "").lower()
    if host not in SUPPORTED_SITES:
        return None

    parts = [p for p in parsed.path.split("/") if p]
    if host == "youtu.be":
        candidate = parts[0] if parts else None
    else:
        candidate = urllib.parse.parse_qs(parsed.query).get("v", [None])[0]
        if candidate is None and len(parts) >= 2 and parts[0] in ID_PATH_PREFIXES:
            candidate = parts[1]

    if candidate and VIDEO_ID_RE.match(candidate):
        return candidate
    return None


def is_valid_youtube_url(url: str) -> bool:
    return extract_video_id(url) is not None


def require_video_id(url: str) -> str:
    video_id = extract_video_id(url)
    if video_id is None:
        raise InvalidInput("Invalid YouTube URL")
    return video_id


def get_ytdlp_binary() -> str:
    return "yt-dlp"


def get_ytdlp_version() -> Optional[str]:
    try:
        result = subprocess.run([get_ytdlp_binary(), "--version"], capture_output=True, text=True, timeout=5, check=True)
        return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        return None


# ----------------------------
# Metadata Fetcher
# ----------------------------


def _quality_label(f: Dict[str, Any], has_video: bool) -> str:
    if has_video:
        if f.get("format_note") and f["format_note"][0].isdigit():
            return f["format_note"]
        if f.get("height"):
            return f"{f['height']}p"
        return f.get("resolution") or "unknown"
    abr = f.get("abr")
    if abr:
        return f"{int(abr)}kbps"
    return "audio"


def to_encoding_option(f: Dict[str, Any]) -> Optional[EncodingOption]:
    if f.get("format_note") == "storyboard":
        return None
    vcodec = f.get("vcodec") or "none"
    acodec = f.get("acodec") or "none"
    if vcodec == "none" and acodec == "none":
        return None

    has_video = vcodec != "none"
    has_audio = acodec != "none"
    codecs = [c for c in (vcodec, acodec) if c != "none"]
    return EncodingOption(
        format_id=str(f.get("format_id", "")),
        quality=_quality_label(f, has_video),
        container=f.get("ext", "unknown"),
        codec=", ".join(codecs),
        size=f.get("filesize") or f.get("filesize_approx"),
        has_video=has_video,
        has_audio=has_audio,
        height=f.get("height"),
        abr=f.get("abr"),
        url=f.get("url"),
        http_headers=dict(f.get("http_headers") or {}),
    )


def pick_thumbnail(info: Dict[str, Any]) -> Optional[str]:
    if info.get("thumbnail"):
        return info["thumbnail"]
    thumbnails = info.get("thumbnails") or []
    return thumbnails[-1].get("url") if thumbnails else None


class MetadataFetcher:
    def __init__(self, timeout: int = 60):
        self.timeout = timeout

    def fetch(self, url: str, all_formats: bool = False) -> MediaReference:
        video_id = require_video_id(url)
        info = self._get_info(url)

        formats: List[EncodingOption] = []
        for f in info.get("formats") or []:
            option = to_encoding_option(f)
            if option is None:
                continue
            if not all_formats and not option.is_progressive:
                continue
            formats.append(option)

        return MediaReference(
            url=url,
            video_id=info.get("id") or video_id,
            title=info.get("title") or "Unknown Title",
            duration=int(info.get("duration") or 0),
            author=info.get("uploader") or info.get("channel"),
            thumbnail=pick_thumbnail(info),
            formats=formats,
        )

    def _get_info(self, url: str) -> Dict[str, Any]:
        try:
            return self._run_yt_dlp_info(url)
        except subprocess.TimeoutExpired:
            raise FetchFailed("Failed to fetch video", "yt-dlp took too long to respond")
        except subprocess.CalledProcessError as e:
            error_msg = e.stderr if isinstance(e.stderr, str) else (e.stderr.decode() if e.stderr else str(e))
            error_msg = error_msg.strip() or str(e)
            log.warning(f"yt-dlp failed for {url}: {error_msg}")
            if "Sign in to confirm your age" in error_msg:
                raise FetchFailed("Failed to fetch video", "Age-restricted video (not supported)")
            if "Video unavailable" in error_msg:
                raise FetchFailed("Failed to fetch video", "Video is unavailable or private")
            raise FetchFailed("Failed to fetch video", error_msg)
        except json.JSONDecodeError:
            raise FetchFailed("Failed to fetch video", "yt-dlp output format unreadable (try updating)")
        except OSError as e:
            raise FetchFailed("Failed to fetch video", f"yt-dlp not available: {e}")

    def _run_yt_dlp_info(self, url: str) -> Dict[str, Any]:
        result = subprocess.run(
            [
                get_ytdlp_binary(),
                "--dump-json",
                "--no-playlist",
                "--no-warnings",
                "--skip-download",
                url,
            ],
            capture_output=True,
            timeout=self.timeout,
            check=True,
            text=True,
            shell=False,
            env={**os.environ, "HOME": "/tmp"},
        )
        return json.loads(result.stdout)
