"""
EPG Cache Service

Persists parsed EpgData per source and reconstructs it on load. Every failure
here is non-fatal: a failed read behaves like a cache miss and a failed write
is only logged.
"""
import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import ValidationError

from epg_catchup.schemas import (
    CachedChannel,
    CachedEpgPayload,
    CachedEpisode,
    CachedProgram,
    CacheEnvelope,
)
from epg_catchup.services.epg_types import EpgChannel, EpgData, EpgProgram, Episode
from epg_catchup.services.kv_store import KeyValueStore


logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "iptv-epg-cache-"


def source_key(url: str) -> str:
    """Stable cache key for a source URL."""
    return CACHE_KEY_PREFIX + base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii")


@dataclass(slots=True)
class CachedEpg:
    data: EpgData
    written_at: datetime

    def age_hours(self, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.written_at).total_seconds() / 3600


def serialize_epg_data(data: EpgData) -> CachedEpgPayload:
    """Convert EpgData into its cache representation"""
    return CachedEpgPayload(
        channels=[
            (
                channel_id,
                CachedChannel(
                    id=channel.id,
                    display_name=channel.display_name,
                    icon=channel.icon,
                    program_ids=[program.id for program in channel.programs],
                ),
            )
            for channel_id, channel in data.channels.items()
        ],
        programs=[
            CachedProgram(
                id=program.id,
                channel_id=program.channel_id,
                title=program.title,
                start=program.start,
                stop=program.stop,
                description=program.description,
                category=program.category,
                icon=program.icon,
                rating=program.rating,
                episode=(
                    CachedEpisode(
                        season=program.episode.season,
                        episode=program.episode.episode,
                        total=program.episode.total,
                    )
                    if program.episode
                    else None
                ),
            )
            for program in data.programs
        ],
        generated_at=data.generated_at,
    )


def deserialize_epg_data(payload: CachedEpgPayload) -> EpgData:
    """
    Rebuild EpgData from its cache representation

    Raises:
        KeyError: If a channel references a programme id missing from the payload
    """
    programs = [
        EpgProgram(
            id=item.id,
            channel_id=item.channel_id,
            title=item.title,
            start=item.start,
            stop=item.stop,
            description=item.description,
            category=item.category,
            icon=item.icon,
            rating=item.rating,
            episode=(
                Episode(
                    season=item.episode.season,
                    episode=item.episode.episode,
                    total=item.episode.total,
                )
                if item.episode
                else None
            ),
        )
        for item in payload.programs
    ]
    programs_by_id = {program.id: program for program in programs}

    channels: dict[str, EpgChannel] = {}
    for channel_id, item in payload.channels:
        channels[channel_id] = EpgChannel(
            id=item.id,
            display_name=item.display_name,
            icon=item.icon,
            programs=[programs_by_id[program_id] for program_id in item.program_ids],
        )

    return EpgData(channels=channels, programs=programs, generated_at=payload.generated_at)


class EpgCacheStore:
    """
    EPG cache on top of an injected key-value store.

    Staleness is not enforced here; callers compare CachedEpg.written_at
    against their own threshold.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def open(self) -> None:
        await self.store.open()

    async def close(self) -> None:
        await self.store.close()

    async def save(self, key: str, data: EpgData, written_at: datetime | None = None) -> bool:
        """
        Persist EpgData under a source key

        Returns:
            True if written, False if the write failed (logged, never raised)
        """
        try:
            envelope = CacheEnvelope(
                source_key=key,
                timestamp=written_at or datetime.now(timezone.utc),
                data=serialize_epg_data(data),
            )
            await self.store.set(key, envelope.model_dump_json())
        except Exception as e:
            logger.error("Failed to write EPG cache entry %s: %s", key, e, exc_info=True)
            return False

        logger.info(
            "Cached EPG data under %s (%s channels, %s programs)",
            key,
            len(data.channels),
            len(data.programs),
        )
        return True

    async def load(self, key: str) -> CachedEpg | None:
        """
        Load cached EpgData for a source key

        Returns:
            CachedEpg, or None if absent or unreadable
        """
        try:
            raw = await self.store.get(key)
        except Exception as e:
            logger.warning("Failed to read EPG cache entry %s, treating as absent: %s", key, e)
            return None

        if raw is None:
            logger.debug("No cache entry for %s", key)
            return None

        try:
            envelope = CacheEnvelope.model_validate_json(raw)
            data = deserialize_epg_data(envelope.data)
        except (ValidationError, ValueError, KeyError) as e:
            logger.warning("Discarding unreadable EPG cache entry %s: %s", key, e)
            await self.clear(key)
            return None

        logger.info(
            "Loaded cached EPG data for %s (%s channels, %s programs, written %s)",
            key,
            len(data.channels),
            len(data.programs),
            envelope.timestamp.isoformat(),
        )
        return CachedEpg(data=data, written_at=envelope.timestamp)

    async def clear(self, key: str) -> None:
        """Remove a cache entry; failures are logged only."""
        try:
            await self.store.remove(key)
            logger.info("Cleared EPG cache entry %s", key)
        except Exception as e:
            logger.warning("Failed to clear EPG cache entry %s: %s", key, e)
