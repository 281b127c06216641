"""Pydantic v2 domain models for the media service."""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class CacheEntry(BaseModel):
    """One cached audio artifact on disk."""
    source_id: str
    file_path: Path
    container: str                    # m4a / webm
    size_bytes: int
    created_at: float                 # Unix timestamp
    last_accessed_at: float           # mtime, refreshed on every hit


class EvictionReport(BaseModel):
    """Outcome of one eviction sweep."""
    removed_by_age: int = 0
    removed_by_size: int = 0
    freed_bytes: int = 0
    remaining_files: int = 0
    remaining_bytes: int = 0
    errors: int = 0

    @property
    def removed(self) -> int:
        return self.removed_by_age + self.removed_by_size


class CacheInfo(BaseModel):
    """Cache contents and budgets for the admin endpoint."""
    directory: str
    file_count: int
    total_bytes: int
    max_bytes: int
    max_age_days: float
    in_flight: List[str] = Field(default_factory=list)
    entries: List[CacheEntry] = Field(default_factory=list)


class ClearReport(BaseModel):
    removed_files: int = 0
    freed_bytes: int = 0
    skipped: List[str] = Field(default_factory=list)


class AudioStream(BaseModel):
    """One audio variant offered by an upstream resolution service."""
    url: str
    mime_type: str = ""
    bitrate: int = 0
    quality: Optional[str] = None


class TrackInfo(BaseModel):
    """Track metadata served by /info."""
    source_id: str
    title: str = ""
    uploader: str = ""
    duration: int = 0                 # seconds
    thumbnail: Optional[str] = None


class TrackRecord(BaseModel):
    """Track in the shape the player UI consumes (search results and
    scanned local files)."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    artist: str
    album: str = "YouTube"
    duration: int = 0
    path: str
    cover_art: Optional[str] = Field(default=None, alias="coverArt")
    source: str = "youtube"
    youtube_id: Optional[str] = Field(default=None, alias="youtubeId")
