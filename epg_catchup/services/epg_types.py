"""
Shared dataclasses used across the EPG ingestion and catchup pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class Episode:
    """1-based season/episode numbering (XMLTV stores them 0-based)."""
    season: int | None = None
    episode: int | None = None
    total: int | None = None


@dataclass(slots=True)
class EpgProgram:
    """Single programme entry; start/stop are timezone-aware UTC instants."""
    id: str
    channel_id: str
    title: str
    start: datetime
    stop: datetime
    description: str | None = None
    category: str | None = None
    icon: str | None = None
    rating: str | None = None
    episode: Episode | None = None


@dataclass(slots=True)
class EpgChannel:
    """EPG channel with its programmes kept in ascending start order."""
    id: str
    display_name: str
    icon: str | None = None
    programs: list[EpgProgram] = field(default_factory=list)

    def sort_programs(self) -> None:
        self.programs.sort(key=lambda program: program.start)


@dataclass(slots=True)
class EpgData:
    """Result of one successful parse; replaced wholesale by the next one."""
    channels: dict[str, EpgChannel]
    programs: list[EpgProgram]
    generated_at: datetime


@dataclass(slots=True)
class Channel:
    """Playlist channel supplied by the playlist loader (read-only here)."""
    id: str
    name: str
    url: str
    epg_id: str | None = None
    timeshift: float | None = None  # Hours of rewind declared by the playlist
    catchup: str | None = None  # Catchup type tag (fs, shift, append, ...)
    logo: str | None = None
    group: str | None = None


@dataclass(slots=True)
class CatchupWindow:
    """Effective rewind window for a channel at a given moment."""
    available: bool
    timeshift_hours: float
    type: str
    start_time: datetime
    end_time: datetime


__all__ = [
    "Episode",
    "EpgProgram",
    "EpgChannel",
    "EpgData",
    "Channel",
    "CatchupWindow",
]
