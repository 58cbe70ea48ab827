import os
import sys
import logging
from dataclasses import dataclass
from typing import Optional, Any

from flask import (
    Blueprint,
    Flask,
    Response,
    current_app,
    jsonify,
    request,
    stream_with_context,
)
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from config import Settings
from errors import FetchServiceError, NotFound
from extractor import MetadataFetcher, get_ytdlp_version
from orchestrator import DownloadOrchestrator
from storage import TempStorage, ExpirySweeper
from transcoder import Transcoder, get_ffmpeg_version


log = logging.getLogger("fetch")

MIN_FREE_BYTES = 1024**3


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )


# ----------------------------
# App State
# ----------------------------


@dataclass
class FetchService:
    settings: Settings
    storage: TempStorage
    fetcher: MetadataFetcher
    orchestrator: DownloadOrchestrator
    sweeper: ExpirySweeper

    @classmethod
    def from_settings(cls, settings: Settings) -> "FetchService":
        storage = TempStorage(settings.download_dir)
        fetcher = MetadataFetcher(timeout=settings.ytdlp_timeout)
        transcoder = Transcoder(timeout=settings.ffmpeg_timeout)
        return cls(
            settings=settings,
            storage=storage,
            fetcher=fetcher,
            orchestrator=DownloadOrchestrator(storage, fetcher, transcoder, stream_timeout=settings.stream_timeout),
            sweeper=ExpirySweeper(
                storage,
                retention=settings.retention_seconds,
                interval=settings.cleanup_interval_seconds,
            ),
        )


def get_service() -> FetchService:
    return current_app.extensions["fetch"]


def error_response(e: FetchServiceError) -> Any:
    return jsonify(e.to_dict()), e.status_code


def build_download_url(filename: str) -> str:
    base = get_service().settings.base_url or request.host_url.rstrip("/")
    return f"{base}/download/{filename}"


# ----------------------------
# HTTP Routes
# ----------------------------


bp = Blueprint("fetch", __name__)


@bp.route("/")
def index() -> Response:
    return Response("YouTube Downloader API Running", mimetype="text/plain")


@bp.route("/api/youtube/info", methods=["POST"])
def video_info() -> Response:
    body = request.get_json(silent=True) or {}
    url = str(body.get("url") or "").strip()
    all_formats = bool(body.get("allFormats", False))
    try:
        log.info(f"Fetching info: {url}")
        media = get_service().fetcher.fetch(url, all_formats=all_formats)
        log.info(f"Found {len(media.formats)} formats for: {media.title}")
        return jsonify(media.to_dict())
    except FetchServiceError as e:
        return error_response(e)
    except Exception as e:
        log.exception("Unexpected error during info fetch")
        return jsonify({"error": "Failed to fetch video", "details": str(e)}), 500


@bp.route("/api/youtube/download", methods=["POST"])
def start_download() -> Response:
    body = request.get_json(silent=True) or {}
    url = str(body.get("url") or "").strip()
    quality = body.get("quality")
    output_format = body.get("format")
    try:
        stored = get_service().orchestrator.download(url, quality, output_format)
        return jsonify(
            {
                "success": True,
                "downloadUrl": build_download_url(stored.filename),
                "filename": stored.filename,
                "title": stored.title,
                "size": stored.size,
            }
        )
    except FetchServiceError as e:
        return error_response(e)
    except Exception as e:
        log.exception("Unexpected error during download")
        return jsonify({"error": "Download failed", "details": str(e)}), 500


@bp.route("/download/<filename>")
def serve_file(filename: str) -> Response:
    service = get_service()
    try:
        response = service.storage.serve_file(filename, service.settings.serve_grace_seconds)
    except FetchServiceError as e:
        return error_response(e)
    except FileNotFoundError:
        # swept between lookup and open
        return error_response(NotFound("File not found or expired"))
    except HTTPException as e:
        return jsonify({"error": e.name}), e.code
    except Exception as e:
        log.exception("Failed to serve file")
        return jsonify({"error": "Failed to serve file", "details": str(e)}), 500

    log.info(f"Serving {filename} ({response.status_code})")
    return response


@bp.route("/api/quick-download")
def quick_download() -> Response:
    url = (request.args.get("url") or "").strip()
    try:
        filename, mimetype, chunks = get_service().orchestrator.open_passthrough(url)
    except FetchServiceError as e:
        return error_response(e)
    except Exception as e:
        log.exception("Unexpected error in quick download")
        return jsonify({"error": "Download failed", "details": str(e)}), 500

    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(stream_with_context(chunks), mimetype=mimetype, headers=headers)


@bp.route("/health")
def health_check() -> Response:
    storage_root = get_service().storage.root

    def check_disk_space() -> bool:
        try:
            stat = os.statvfs(str(storage_root))
            return stat.f_bavail * stat.f_frsize > MIN_FREE_BYTES
        except OSError:
            return False

    checks = {
        "ytdlp": get_ytdlp_version() is not None,
        "ffmpeg": get_ffmpeg_version() is not None,
        "disk_space": check_disk_space(),
        "downloads_dir": storage_root.is_dir(),
    }
    if all(checks.values()):
        return jsonify({**checks, "status": "healthy"}), 200
    return jsonify({**checks, "status": "degraded"}), 503


# ----------------------------
# Startup
# ----------------------------


def create_app(settings: Optional[Settings] = None, start_background: bool = True) -> Flask:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    service = FetchService.from_settings(settings)
    # fatal when the directory cannot be created
    service.storage.ensure()
    log.info(f"Downloads directory: {service.storage.root}")

    app = Flask(__name__)
    app.json.sort_keys = False
    app.extensions["fetch"] = service
    CORS(app, origins=settings.origins)
    app.register_blueprint(bp)

    if start_background:
        version = get_ytdlp_version()
        if version:
            log.info(f"yt-dlp version: {version}")
        else:
            log.error("yt-dlp not installed or not accessible")
        service.sweeper.sweep_once()
        service.sweeper.start()

    return app


if __name__ == "__main__":
    app = create_app()
    port = app.extensions["fetch"].settings.port
    log.info("Fetch started")
    app.run(host="0.0.0.0", port=port, threaded=True)
