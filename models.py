import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, Any, List


@dataclass(frozen=True)
class EncodingOption:
    format_id: str
    quality: str
    container: str
    codec: str
    size: Optional[int]
    has_video: bool
    has_audio: bool
    height: Optional[int] = None
    abr: Optional[float] = None
    # direct stream location, never sent to clients
    url: Optional[str] = field(default=None, repr=False)
    http_headers: Dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def is_progressive(self) -> bool:
        return self.has_video and self.has_audio

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formatId": self.format_id,
            "quality": self.quality,
            "container": self.container,
            "codec": self.codec,
            "size": self.size,
            "hasVideo": self.has_video,
            "hasAudio": self.has_audio,
        }


@dataclass(frozen=True)
class MediaReference:
    url: str
    video_id: str
    title: str
    duration: int
    author: Optional[str]
    thumbnail: Optional[str]
    formats: List[EncodingOption] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "thumbnail": self.thumbnail,
            "duration": self.duration,
            "author": self.author,
            "formats": [f.to_dict() for f in self.formats],
            "videoId": self.video_id,
        }


@dataclass
class StoredFile:
    path: Path
    title: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def size(self) -> int:
        return self.path.stat().st_size
