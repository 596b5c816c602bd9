"""
EPG Load Service

Coordinates fetching, decoding, parsing and caching of an EPG source and keeps
the currently active EpgData for queries.

Concurrency model:
    - one in-flight load per source key; concurrent callers share its result
    - the most recent load request makes its source key active; results of
      superseded loads are returned to their own caller but never published
    - cached data older than the refresh threshold is returned immediately
      and refreshed in the background (also single-flight per key)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Literal

import httpx

from epg_catchup.config import CustomSettings
from epg_catchup.exceptions import ConfigurationError, NetworkError, ParseError
from epg_catchup.services.cache_service import EpgCacheStore, source_key
from epg_catchup.services.channel_matcher import find_channel, get_channel_programs
from epg_catchup.services.epg_query_service import (
    get_current_program,
    get_next_programs,
    get_programs_for_time_range,
    search_programs,
)
from epg_catchup.services.epg_types import EpgChannel, EpgData, EpgProgram
from epg_catchup.services.fetch_orchestrator import FetchOrchestrator, fetch_with_retry
from epg_catchup.services.kv_store import MemoryKeyValueStore, SqliteKeyValueStore
from epg_catchup.services.payload_decoder import decode_payload
from epg_catchup.services.xmltv_parser_service import parse_xmltv
from epg_catchup.utils.timezone import OffsetPolicy, zoneinfo_offset_policy
from epg_catchup.utils.url_helpers import sanitize_url_for_logging


logger = logging.getLogger(__name__)


class EpgLoadState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PARSING = "parsing"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(slots=True)
class EpgEvent:
    """Notification delivered to subscribers"""
    kind: Literal["loaded", "refreshed", "failed", "cleared"]
    source_key: str
    data: EpgData | None = None
    error: Exception | None = None
    from_cache: bool = False


EpgSubscriber = Callable[[EpgEvent], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EpgService:
    """
    EPG ingestion service with an explicit open/close lifecycle.

    Construct once and pass it to callers; use `from_settings` for the default
    wiring (SQLite cache, configured mirrors and fallback timezone).
    """

    def __init__(
        self,
        settings: CustomSettings,
        cache: EpgCacheStore | None,
        orchestrator: FetchOrchestrator,
        *,
        offset_policy: OffsetPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.cache = cache
        self.orchestrator = orchestrator
        self.offset_policy = offset_policy or zoneinfo_offset_policy(settings.epg_default_timezone)
        self._clock = clock
        self._sleep = sleep

        self.data: EpgData | None = None
        self.written_at: datetime | None = None
        self.source_url: str | None = None
        self.state = EpgLoadState.IDLE
        self.error: str | None = None

        self._active_key: str | None = None
        self._generation = 0
        self._inflight: dict[str, asyncio.Task[EpgData]] = {}
        self._refreshing: dict[str, asyncio.Task[None]] = {}
        self._subscribers: list[EpgSubscriber] = []

    @classmethod
    def from_settings(
        cls,
        settings: CustomSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "EpgService":
        """Build the service with the default collaborators for a settings object."""
        store = (
            SqliteKeyValueStore(settings.cache_database_path)
            if settings.cache_enabled
            else MemoryKeyValueStore()
        )
        orchestrator = FetchOrchestrator(
            settings.epg_mirrors,
            use_mirrors=settings.epg_use_mirrors,
            timeout=settings.epg_fetch_timeout_sec,
            transport=transport,
        )
        return cls(settings, EpgCacheStore(store), orchestrator)

    # Lifecycle

    async def open(self) -> None:
        if self.cache is not None:
            await self.cache.open()
        logger.info("EPG service opened")

    async def close(self) -> None:
        pending = list(self._refreshing.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._refreshing.clear()

        if self.cache is not None:
            await self.cache.close()
        logger.info("EPG service closed")

    async def __aenter__(self) -> "EpgService":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # Subscribers

    def subscribe(self, callback: EpgSubscriber) -> Callable[[], None]:
        """
        Register a callback for load/refresh/failure/clear events

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: EpgEvent) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error("EPG subscriber failed on '%s' event: %s", event.kind, e, exc_info=True)

    # Loading

    def _resolve_url(self, url: str | None) -> str:
        resolved = url or self.settings.epg_url
        if not resolved:
            raise ConfigurationError("No EPG URL configured")
        return resolved

    def _is_active(self, key: str, generation: int) -> bool:
        return key == self._active_key and generation == self._generation

    def _set_state(self, key: str, generation: int, state: EpgLoadState) -> None:
        if self._is_active(key, generation):
            self.state = state

    async def load(self, url: str | None = None, *, force: bool = False) -> EpgData:
        """
        Load EPG data for a source, from cache when possible

        Args:
            url: XMLTV source URL (defaults to the configured EPG_URL)
            force: Drop the cached copy and fetch again

        Returns:
            Loaded EpgData

        Raises:
            ConfigurationError: If no URL is given or configured
            NetworkError: If every fetch candidate failed
            ParseError: If the document could not be parsed
        """
        url = self._resolve_url(url)
        key = source_key(url)

        if key != self._active_key:
            logger.info("Active EPG source is now %s", sanitize_url_for_logging(url))
        self._active_key = key
        self.source_url = url

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._load_source(url, key, self._generation, force))
            self._inflight[key] = task
            task.add_done_callback(lambda done, k=key: self._forget_inflight(k, done))
        else:
            logger.info("EPG load already in progress for %s, sharing its result", key)

        return await asyncio.shield(task)

    def _forget_inflight(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def refresh(self, url: str | None = None) -> EpgData:
        """Forced reload: clears the cache entry and fetches again."""
        return await self.load(url, force=True)

    async def reset(self, url: str | None = None) -> None:
        """Drop the cache entry and, for the active source, the loaded data."""
        url = self._resolve_url(url)
        key = source_key(url)

        # A load started before the reset must not be shared with later callers
        self._inflight.pop(key, None)

        if key == self._active_key:
            self._generation += 1
            self.data = None
            self.written_at = None
            self.error = None
            self.state = EpgLoadState.IDLE

        if self.cache is not None:
            await self.cache.clear(key)

        self._notify(EpgEvent(kind="cleared", source_key=key))

    async def _load_source(self, url: str, key: str, generation: int, force: bool) -> EpgData:
        self._set_state(key, generation, EpgLoadState.LOADING)

        if self.cache is not None:
            if force:
                await self.cache.clear(key)
            else:
                cached = await self.cache.load(key)
                if cached is not None:
                    self._publish(key, generation, cached.data, cached.written_at, "loaded", from_cache=True)
                    age_hours = cached.age_hours(self._clock())
                    if age_hours >= self.settings.epg_refresh_threshold_hours:
                        logger.info(
                            "Cached EPG data is %.1fh old (threshold %sh), refreshing in background",
                            age_hours,
                            self.settings.epg_refresh_threshold_hours,
                        )
                        self._schedule_refresh(url, key)
                    return cached.data

        return await self._fetch_and_store(url, key, generation, "loaded")

    async def _fetch_and_store(
        self,
        url: str,
        key: str,
        generation: int,
        kind: Literal["loaded", "refreshed"],
    ) -> EpgData:
        try:
            raw = await fetch_with_retry(
                self.orchestrator.fetch,
                url,
                max_attempts=self.settings.epg_fetch_max_attempts,
                initial_delay=self.settings.epg_fetch_backoff_initial_sec,
                backoff_factor=self.settings.epg_fetch_backoff_multiplier,
                max_delay=self.settings.epg_fetch_backoff_max_sec,
                sleep=self._sleep,
            )

            self._set_state(key, generation, EpgLoadState.PARSING)
            xml_text = decode_payload(raw)
            data = await parse_xmltv(
                xml_text,
                chunk_size=self.settings.epg_parse_chunk_size,
                offset_policy=self.offset_policy,
            )
        except (NetworkError, ParseError) as e:
            logger.error("EPG %s failed for %s: %s", "refresh" if kind == "refreshed" else "load", key, e)
            if self._is_active(key, generation):
                self.error = str(e)
                if kind == "loaded" or self.data is None:
                    self.state = EpgLoadState.ERROR
                else:
                    # Stale data stays usable
                    self.state = EpgLoadState.COMPLETE
                self._notify(EpgEvent(kind="failed", source_key=key, error=e))
            raise

        written_at = self._clock()
        if generation != self._generation:
            logger.info("EPG data for %s was reset while loading, not caching it", key)
        elif self.cache is not None:
            await self.cache.save(key, data, written_at)

        self._publish(key, generation, data, written_at, kind)
        return data

    def _publish(
        self,
        key: str,
        generation: int,
        data: EpgData,
        written_at: datetime,
        kind: Literal["loaded", "refreshed"],
        *,
        from_cache: bool = False,
    ) -> None:
        if not self._is_active(key, generation):
            logger.info("Discarding EPG result for superseded source %s", key)
            return

        self.data = data
        self.written_at = written_at
        self.error = None
        self.state = EpgLoadState.COMPLETE
        logger.info(
            "EPG data %s: %s channels, %s programs%s",
            kind,
            len(data.channels),
            len(data.programs),
            " (from cache)" if from_cache else "",
        )
        self._notify(EpgEvent(kind=kind, source_key=key, data=data, from_cache=from_cache))

    # Staleness

    def _schedule_refresh(self, url: str, key: str) -> bool:
        if key in self._refreshing:
            logger.debug("Background refresh already running for %s", key)
            return False

        task = asyncio.create_task(self._background_refresh(url, key, self._generation))
        self._refreshing[key] = task
        task.add_done_callback(lambda _done, k=key: self._refreshing.pop(k, None))
        return True

    async def _background_refresh(self, url: str, key: str, generation: int) -> None:
        try:
            await self._fetch_and_store(url, key, generation, "refreshed")
        except (NetworkError, ParseError):
            logger.warning("Background EPG refresh failed for %s; keeping stale data", key)
        except Exception as e:
            logger.error("Unexpected error during background EPG refresh: %s", e, exc_info=True)

    def cache_age_hours(self) -> float | None:
        if self.written_at is None:
            return None
        return (self._clock() - self.written_at).total_seconds() / 3600

    def is_stale(self) -> bool:
        age = self.cache_age_hours()
        return age is not None and age >= self.settings.epg_refresh_threshold_hours

    async def check_staleness(self) -> bool:
        """
        Periodic check: refresh the active source in the background if stale

        Returns:
            True if a refresh was started
        """
        if self.data is None or self.source_url is None or self._active_key is None:
            logger.debug("No EPG data loaded, skipping staleness check")
            return False

        if not self.is_stale():
            logger.debug("EPG data is fresh (%.1fh old)", self.cache_age_hours() or 0.0)
            return False

        logger.info("EPG data is stale (%.1fh old), scheduling refresh", self.cache_age_hours() or 0.0)
        return self._schedule_refresh(self.source_url, self._active_key)

    async def wait_for_refresh(self) -> None:
        """Wait for running background refreshes (used on shutdown and in tests)."""
        pending = list(self._refreshing.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # State

    def state_info(self) -> dict:
        """User-facing loading state summary"""
        info: dict = {"state": self.state.value}
        if self.state == EpgLoadState.LOADING:
            info.update(message="Loading EPG...", progress=25)
        elif self.state == EpgLoadState.PARSING:
            info.update(message="Parsing EPG...", progress=75)
        elif self.state == EpgLoadState.COMPLETE:
            info.update(message="EPG loaded successfully", progress=100)
        elif self.state == EpgLoadState.ERROR:
            info.update(message=self.error or "EPG loading failed", error=self.error)
        return info

    # Queries

    def find_channel(self, query: str | None) -> EpgChannel | None:
        return find_channel(self.data, query)

    def get_channel_programs(self, query: str | None) -> list[EpgProgram]:
        return get_channel_programs(self.data, query)

    def get_current_program(self, query: str | None, now: datetime | None = None) -> EpgProgram | None:
        return get_current_program(self.get_channel_programs(query), now or self._clock())

    def get_next_programs(self, query: str | None, count: int = 5, now: datetime | None = None) -> list[EpgProgram]:
        return get_next_programs(self.get_channel_programs(query), count, now or self._clock())

    def get_programs_for_time_range(
        self,
        query: str | None,
        start_time: datetime,
        end_time: datetime,
    ) -> list[EpgProgram]:
        return get_programs_for_time_range(self.get_channel_programs(query), start_time, end_time)

    def search_programs(self, query: str) -> list[EpgProgram]:
        if self.data is None:
            return []
        return search_programs(self.data.programs, query)
