import os
import re
import time
import secrets
import logging
import threading
from pathlib import Path
from typing import Optional

from flask import Response, request, send_file

from errors import InvalidInput, NotFound


log = logging.getLogger("fetch.storage")

CHUNK_SIZE = 64 * 1024
MAX_TITLE_LENGTH = 80

MIMETYPES = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".aac": "audio/aac",
    ".ogg": "audio/ogg",
    ".opus": "audio/opus",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
}


def sanitize_title(title: Optional[str]) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9 _\-]", "", title or "")
    cleaned = re.sub(r"\s+", "_", cleaned.strip())[:MAX_TITLE_LENGTH].strip("_-")
    return cleaned or "video"


def guess_mimetype(path: Path) -> str:
    return MIMETYPES.get(path.suffix.lower(), "application/octet-stream")


# ----------------------------
# Storage Agent
# ----------------------------


class TempStorage:
    """Temporary download directory. The directory listing is the only index."""

    def __init__(self, root: str):
        self.root = Path(root)

    def ensure(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def new_path(self, title: Optional[str], ext: str) -> Path:
        """Reserve a unique file for ``title`` and return its path.

        The name is ``<title>_<ms timestamp>_<token>.<ext>``; the file is
        created exclusively so a collision can never overwrite another
        download.
        """
        base = sanitize_title(title)
        ext = ext.lstrip(".").lower() or "bin"
        while True:
            stamp = int(time.time() * 1000)
            path = self.root / f"{base}_{stamp}_{secrets.token_hex(3)}.{ext}"
            try:
                with open(path, "xb"):
                    pass
            except FileExistsError:
                continue
            return path

    def resolve(self, filename: str) -> Path:
        if (
            not filename
            or filename.startswith(".")
            or "/" in filename
            or "\\" in filename
            or "\x00" in filename
        ):
            raise InvalidInput("Invalid filename")

        root = self.root.resolve()
        path = (root / filename).resolve()
        if path.parent != root:
            raise InvalidInput("Invalid filename")
        if not path.is_file():
            raise NotFound("File not found or expired")
        return path

    def delete(self, path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        log.info(f"Deleted {path.name}")
        return True

    def schedule_delete(self, path: Path, delay: float) -> threading.Timer:
        def _delete() -> None:
            try:
                self.delete(path)
            except OSError as e:
                log.warning(f"Failed to delete {path.name}: {e}")

        timer = threading.Timer(delay, _delete)
        timer.daemon = True
        timer.start()
        return timer

    def serve_file(self, filename: str, grace: float) -> Response:
        """Send ``filename`` as an attachment, honouring conditional and Range headers.

        When the server closes the response the file is scheduled for deletion
        ``grace`` seconds later, whether or not the client received every byte.
        """
        path = self.resolve(filename)
        response = send_file(
            path,
            mimetype=guess_mimetype(path),
            as_attachment=True,
            download_name=path.name,
            conditional=True,
        )
        if request.method != "HEAD":
            # close callbacks never run on a passthrough body
            response.direct_passthrough = False
            response.call_on_close(lambda: self.schedule_delete(path, grace))
        return response


# ----------------------------
# Expiry Sweeper
# ----------------------------


class ExpirySweeper:
    def __init__(self, storage: TempStorage, retention: float, interval: float):
        self.storage = storage
        self.retention = retention
        self.interval = interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep_once(self, now: Optional[float] = None) -> int:
        """Delete every file older than the retention window.

        Any listing or stat failure abandons the rest of this cycle.
        """
        now = time.time() if now is None else now
        removed = 0
        try:
            with os.scandir(self.storage.root) as entries:
                for entry in entries:
                    try:
                        if not entry.is_file():
                            continue
                        age = now - entry.stat().st_mtime
                    except FileNotFoundError:
                        # served and deleted since listing
                        continue
                    if age > self.retention and self.storage.delete(Path(entry.path)):
                        removed += 1
        except OSError as e:
            log.warning(f"Cleanup error: {e}")
        if removed:
            log.info(f"Cleaned up {removed} expired file(s)")
        return removed

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sweep_once()
            except Exception as e:
                log.warning(f"Cleanup error: {e}")

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="expiry-sweeper", daemon=True)
        self._thread.start()
        log.info(f"Sweeper started (interval: {self.interval}s, retention: {self.retention}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
