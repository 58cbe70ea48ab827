import os
from dataclasses import dataclass
from typing import List


# ----------------------------
# Defaults
# ----------------------------

DEFAULT_PORT = 3000
DEFAULT_RETENTION_SECONDS = 3600
DEFAULT_CLEANUP_INTERVAL_SECONDS = 3600
DEFAULT_SERVE_GRACE_SECONDS = 5.0

VIDEO_OUTPUT_FORMATS = {"mp4", "webm"}
AUDIO_OUTPUT_FORMATS = {"mp3", "m4a", "aac", "ogg", "opus", "wav", "flac"}


@dataclass
class Settings:
    port: int = DEFAULT_PORT
    download_dir: str = "./downloads"
    retention_seconds: float = DEFAULT_RETENTION_SECONDS
    cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS
    serve_grace_seconds: float = DEFAULT_SERVE_GRACE_SECONDS
    ytdlp_timeout: int = 60
    ffmpeg_timeout: int = 600
    stream_timeout: int = 30
    base_url: str = ""
    allow_origins: str = "*"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            port=int(os.getenv("PORT", str(DEFAULT_PORT))),
            download_dir=os.getenv("DOWNLOAD_DIR", "./downloads"),
            retention_seconds=float(os.getenv("FILE_RETENTION_SECONDS", str(DEFAULT_RETENTION_SECONDS))),
            cleanup_interval_seconds=float(
                os.getenv("CLEANUP_INTERVAL_SECONDS", str(DEFAULT_CLEANUP_INTERVAL_SECONDS))
            ),
            serve_grace_seconds=float(os.getenv("SERVE_GRACE_SECONDS", str(DEFAULT_SERVE_GRACE_SECONDS))),
            ytdlp_timeout=int(os.getenv("YTDLP_TIMEOUT", "60")),
            ffmpeg_timeout=int(os.getenv("FFMPEG_TIMEOUT", "600")),
            stream_timeout=int(os.getenv("STREAM_TIMEOUT", "30")),
            base_url=os.getenv("BASE_URL", "").rstrip("/"),
            allow_origins=os.getenv("ALLOW_ORIGINS", "*"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def origins(self) -> List[str]:
        origins = [o.strip() for o in self.allow_origins.split(",") if o.strip()]
        return origins or ["*"]
