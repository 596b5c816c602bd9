from datetime import datetime, timezone
from typing import Annotated
from fastapi import APIRouter, Query
import logging

from epg_catchup import __version__
from epg_catchup.dependencies import CatchupResolverDep, EpgServiceDep, SchedulerDep
from epg_catchup.exceptions import EpgNotLoadedError
from epg_catchup.schemas import (
    CatchupRequest,
    CatchupUrlResponse,
    CatchupWindowResponse,
    ChannelProgramsResponse,
    ChannelRequest,
    LoadRequest,
    LoadResponse,
    ProgramResponse,
)
from epg_catchup.services.cache_service import source_key
from epg_catchup.services.epg_load_service import EpgService
from epg_catchup.utils.timezone import parse_iso8601_to_utc


logger = logging.getLogger(__name__)

main_router = APIRouter()


def _require_data(service: EpgService) -> None:
    if service.data is None:
        raise EpgNotLoadedError("No EPG data loaded; call POST /epg/load first")


def _programs_response(query: str, programs: list) -> ChannelProgramsResponse:
    return ChannelProgramsResponse(
        query=query,
        total_programs=len(programs),
        programs=[ProgramResponse.from_program(program) for program in programs],
    )


@main_router.get("/")
async def root(scheduler: SchedulerDep) -> dict:
    """Root endpoint with service information"""
    next_run = scheduler.get_next_run_time() if scheduler else None

    return {
        "service": "EPG Catchup Service",
        "version": __version__,
        "next_staleness_check": next_run.isoformat() if next_run else None,
        "endpoints": {
            "load": "/epg/load - Load or refresh EPG data (POST)",
            "programs": "/epg/channels/{channel}/programs - Programmes for a channel",
            "now": "/epg/channels/{channel}/now - Programme airing now",
            "search": "/epg/search?q= - Search programmes",
            "catchup": "/catchup/url - Resolve a catchup playback URL (POST)",
            "health": "/health - Health check",
        },
    }


@main_router.get("/health")
async def health_check(service: EpgServiceDep, scheduler: SchedulerDep) -> dict:
    """Health check endpoint"""
    age = service.cache_age_hours()
    return {
        "status": "ok",
        "epg": service.state_info(),
        "data_age_hours": round(age, 2) if age is not None else None,
        "stale": service.is_stale(),
        "scheduler_running": scheduler.running if scheduler else False,
    }


@main_router.post("/epg/load", response_model=LoadResponse)
async def load_epg(request: LoadRequest, service: EpgServiceDep) -> LoadResponse:
    """
    Load EPG data from cache or source

    With force=true the cached copy is dropped and the source fetched again.
    """
    logger.info("EPG load requested via API (force=%s)", request.force)
    data = await service.load(request.url, force=request.force)

    return LoadResponse(
        source_key=source_key(service.source_url or ""),
        channels=len(data.channels),
        programs=len(data.programs),
        generated_at=data.generated_at,
        cache_written_at=service.written_at,
        state=service.state.value,
    )


@main_router.get("/epg/channels/{channel}/programs", response_model=ChannelProgramsResponse)
async def get_channel_programs(
    channel: str,
    service: EpgServiceDep,
    from_date: Annotated[str | None, Query(description="ISO8601 start of range")] = None,
    to_date: Annotated[str | None, Query(description="ISO8601 end of range")] = None,
) -> ChannelProgramsResponse:
    """Programmes for a loose channel identifier (empty when nothing matches)"""
    _require_data(service)

    if from_date and to_date:
        start_time = parse_iso8601_to_utc(from_date)
        end_time = parse_iso8601_to_utc(to_date)
        programs = service.get_programs_for_time_range(channel, start_time, end_time)
    else:
        programs = service.get_channel_programs(channel)

    return _programs_response(channel, programs)


@main_router.get("/epg/channels/{channel}/now")
async def get_now_playing(channel: str, service: EpgServiceDep) -> dict:
    """Current and next programmes for a channel"""
    _require_data(service)

    current = service.get_current_program(channel)
    upcoming = service.get_next_programs(channel)
    return {
        "query": channel,
        "current": ProgramResponse.from_program(current) if current else None,
        "next": [ProgramResponse.from_program(program) for program in upcoming],
    }


@main_router.get("/epg/search", response_model=ChannelProgramsResponse)
async def search(q: str, service: EpgServiceDep) -> ChannelProgramsResponse:
    """Search programmes by title, description or category"""
    _require_data(service)
    return _programs_response(q, service.search_programs(q))


@main_router.post("/catchup/window", response_model=CatchupWindowResponse)
async def catchup_window(channel: ChannelRequest, resolver: CatchupResolverDep) -> CatchupWindowResponse:
    """Effective catchup window for a playlist channel"""
    return CatchupWindowResponse.from_window(resolver.compute_window(channel.to_channel()))


@main_router.post("/catchup/url", response_model=CatchupUrlResponse)
async def catchup_url(request: CatchupRequest, resolver: CatchupResolverDep) -> CatchupUrlResponse:
    """
    Resolve the playback URL for a programme start time

    Returns the live URL when catchup is unavailable for the requested time.
    """
    channel = request.channel.to_channel()
    now = datetime.now(timezone.utc)
    window = resolver.compute_window(channel, now)
    url = resolver.generate_url(channel, request.target_time, now)

    return CatchupUrlResponse(
        url=url,
        is_catchup=url != channel.url,
        window=CatchupWindowResponse.from_window(window),
    )
