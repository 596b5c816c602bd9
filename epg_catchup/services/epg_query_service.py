"""
EPG Query Service

Read helpers over loaded programme lists: live/upcoming status, time-range
selection and search. All functions take programme lists already resolved
through the channel matcher and never raise on empty input.
"""
from datetime import datetime, timedelta, timezone
from typing import Literal

from epg_catchup.services.epg_types import EpgProgram

ProgramStatus = Literal["live", "upcoming", "ended"]


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def get_program_status(program: EpgProgram, now: datetime | None = None) -> ProgramStatus:
    """Status of a programme relative to now"""
    current = _now(now)
    if program.start <= current < program.stop:
        return "live"
    if program.start > current:
        return "upcoming"
    return "ended"


def get_program_duration(program: EpgProgram) -> int:
    """Programme duration in whole minutes"""
    return round((program.stop - program.start).total_seconds() / 60)


def get_program_progress(program: EpgProgram, now: datetime | None = None) -> float:
    """Playback progress of a programme, 0-100"""
    status = get_program_status(program, now)
    if status == "upcoming":
        return 0.0
    if status == "ended":
        return 100.0

    total = (program.stop - program.start).total_seconds()
    elapsed = (_now(now) - program.start).total_seconds()
    return max(0.0, min(100.0, elapsed / total * 100))


def get_current_program(programs: list[EpgProgram], now: datetime | None = None) -> EpgProgram | None:
    """The programme airing now, if any"""
    current = _now(now)
    for program in programs:
        if program.start <= current < program.stop:
            return program
    return None


def get_next_programs(
    programs: list[EpgProgram],
    count: int = 5,
    now: datetime | None = None,
) -> list[EpgProgram]:
    """Up to `count` programmes starting after now, in start order"""
    current = _now(now)
    upcoming = sorted(
        (program for program in programs if program.start > current),
        key=lambda program: program.start,
    )
    return upcoming[:count]


def get_programs_for_time_range(
    programs: list[EpgProgram],
    start_time: datetime,
    end_time: datetime,
) -> list[EpgProgram]:
    """
    Programmes overlapping [start_time, end_time)

    Args:
        programs: Programme list (any order)
        start_time: Range start (UTC)
        end_time: Range end (UTC)

    Returns:
        Overlapping programmes sorted by start
    """
    return sorted(
        (program for program in programs if program.start < end_time and program.stop > start_time),
        key=lambda program: program.start,
    )


def get_current_and_upcoming_programs(
    programs: list[EpgProgram],
    now: datetime | None = None,
    hours_ahead: float = 24,
) -> list[EpgProgram]:
    """Programmes running now or starting within the next `hours_ahead` hours"""
    current = _now(now)
    return get_programs_for_time_range(programs, current, current + timedelta(hours=hours_ahead))


def search_programs(programs: list[EpgProgram], query: str) -> list[EpgProgram]:
    """
    Search programmes by title, description or category

    Titles starting with the search term come first, then everything by start.

    Args:
        programs: Programmes to search (typically EpgData.programs)
        query: Free-text search term

    Returns:
        Matching programmes, empty for a blank query
    """
    term = query.strip().lower()
    if not term:
        return []

    matches = [
        program
        for program in programs
        if term in program.title.lower()
        or (program.description and term in program.description.lower())
        or (program.category and term in program.category.lower())
    ]
    matches.sort(key=lambda program: (not program.title.lower().startswith(term), program.start))
    return matches
