import logging
import subprocess
from pathlib import Path
from typing import Optional

from errors import ConversionFailed


log = logging.getLogger("fetch.transcoder")

QUALITY_SETTINGS = {
    "mp3": ["-codec:a", "libmp3lame", "-b:a", "192k"],
    "aac": ["-codec:a", "aac", "-b:a", "192k"],
    "m4a": ["-codec:a", "aac", "-b:a", "192k"],
    "ogg": ["-codec:a", "libvorbis", "-q:a", "6"],
    "opus": ["-codec:a", "libopus", "-b:a", "128k"],
    "wav": [],
    "flac": [],
}


def get_ffmpeg_version() -> Optional[str]:
    try:
        result = subprocess.run(["ffmpeg", "-version"], capture_output=True, text=True, timeout=5, check=True)
        return result.stdout.splitlines()[0] if result.stdout else ""
    except (OSError, subprocess.SubprocessError):
        return None


class Transcoder:
    def __init__(self, binary: str = "ffmpeg", timeout: int = 600):
        self.binary = binary
        self.timeout = timeout

    def to_audio(self, source: Path, output_format: str) -> Path:
        """Convert ``source`` into an audio file beside it and return the new path."""
        if output_format not in QUALITY_SETTINGS:
            raise ConversionFailed("Conversion failed", f"Unsupported audio format: {output_format}")

        output = source.with_suffix(f".{output_format}")
        cmd = [self.binary, "-hide_banner", "-loglevel", "error", "-i", str(source), "-vn"]
        cmd.extend(QUALITY_SETTINGS[output_format])
        cmd.extend(["-y", str(output)])

        log.debug(f"Running ffmpeg command: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise ConversionFailed("Conversion failed", "ffmpeg took too long to respond")
        except OSError as e:
            raise ConversionFailed("Conversion failed", f"ffmpeg not available: {e}")

        if result.returncode != 0:
            log.error(f"Audio conversion failed: {result.stderr}")
            raise ConversionFailed("Conversion failed", (result.stderr or "").strip()[-500:] or None)

        log.info(f"Converted {source.name} -> {output.name}")
        return output
