from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from epg_catchup.services.epg_types import CatchupWindow, Channel, EpgProgram
from epg_catchup.utils.timezone import ensure_utc


# Cache serialization

class CachedEpisode(BaseModel):
    """Episode numbering as stored in the cache"""
    season: int | None = None
    episode: int | None = None
    total: int | None = None


class CachedProgram(BaseModel):
    """Programme as stored in the cache (instants as ISO8601 UTC)"""
    id: str
    channel_id: str
    title: str
    start: datetime
    stop: datetime
    description: str | None = None
    category: str | None = None
    icon: str | None = None
    rating: str | None = None
    episode: CachedEpisode | None = None

    @field_validator("start", "stop")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class CachedChannel(BaseModel):
    """Channel as stored in the cache; programmes are referenced by id"""
    id: str
    display_name: str
    icon: str | None = None
    program_ids: list[str] = Field(default_factory=list)


class CachedEpgPayload(BaseModel):
    """Serialized EpgData; channels kept as ordered (id, channel) pairs"""
    channels: list[tuple[str, CachedChannel]]
    programs: list[CachedProgram]
    generated_at: datetime

    @field_validator("generated_at")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class CacheEnvelope(BaseModel):
    """Cache entry: payload plus the instant it was written"""
    source_key: str
    timestamp: datetime
    data: CachedEpgPayload

    @field_validator("timestamp")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


# API request/response models

class LoadRequest(BaseModel):
    """EPG load request"""
    url: str | None = Field(None, description="XMLTV source URL; defaults to the configured EPG_URL")
    force: bool = Field(False, description="Drop the cached copy and fetch again")


class LoadResponse(BaseModel):
    """Summary of the currently loaded EPG data"""
    source_key: str
    channels: int
    programs: int
    generated_at: datetime
    cache_written_at: datetime | None = None
    state: str


class ProgramResponse(BaseModel):
    """Single program data"""
    id: str
    channel_id: str
    title: str
    start: datetime
    stop: datetime
    description: str | None = None
    category: str | None = None
    icon: str | None = None
    rating: str | None = None
    season: int | None = None
    episode: int | None = None

    @classmethod
    def from_program(cls, program: EpgProgram) -> "ProgramResponse":
        return cls(
            id=program.id,
            channel_id=program.channel_id,
            title=program.title,
            start=program.start,
            stop=program.stop,
            description=program.description,
            category=program.category,
            icon=program.icon,
            rating=program.rating,
            season=program.episode.season if program.episode else None,
            episode=program.episode.episode if program.episode else None,
        )


class ChannelProgramsResponse(BaseModel):
    """Programmes matched for a loose channel identifier"""
    query: str
    total_programs: int
    programs: list[ProgramResponse]


class ChannelRequest(BaseModel):
    """Playlist channel as supplied by the caller"""
    id: str
    name: str
    url: str
    epg_id: str | None = None
    timeshift: float | None = Field(None, ge=0, description="Hours of catchup declared by the playlist")
    catchup: str | None = Field(None, description="Catchup type (fs, shift, append, ...)")
    logo: str | None = None
    group: str | None = None

    def to_channel(self) -> Channel:
        return Channel(**self.model_dump())


class CatchupRequest(BaseModel):
    """Catchup URL request"""
    channel: ChannelRequest
    target_time: datetime = Field(..., description="ISO8601 instant to start playback from")

    @field_validator("target_time")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class CatchupWindowResponse(BaseModel):
    """Effective catchup window"""
    available: bool
    timeshift_hours: float
    type: str
    start_time: datetime
    end_time: datetime

    @classmethod
    def from_window(cls, window: CatchupWindow) -> "CatchupWindowResponse":
        return cls(
            available=window.available,
            timeshift_hours=window.timeshift_hours,
            type=window.type,
            start_time=window.start_time,
            end_time=window.end_time,
        )


class CatchupUrlResponse(BaseModel):
    """Resolved playback URL"""
    url: str
    is_catchup: bool = Field(..., description="False when the live URL was returned")
    window: CatchupWindowResponse


class ErrorDetail(BaseModel):
    """Standard error detail"""
    code: str = Field(..., description="Error code (e.g., 'FETCH_FAILED', 'PARSE_FAILED')")
    message: str = Field(..., description="Human-readable error message")
    context: dict | None = Field(None, description="Additional context about the error")


class StandardErrorResponse(BaseModel):
    """Standardized error response for all endpoints"""
    status: str = Field("error", description="Status indicator")
    timestamp: str = Field(..., description="ISO8601 timestamp of error")
    error: ErrorDetail = Field(..., description="Error details")
