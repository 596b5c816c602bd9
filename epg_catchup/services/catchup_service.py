"""
Catchup Resolver

Computes a channel's rewind window and builds the provider-specific URL used to
play from an earlier instant. Provider URL conventions are not published, so the
format selection is heuristic; whenever catchup is not possible the live URL is
returned instead of raising.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Sequence
from urllib.parse import parse_qsl, urlencode, urlunsplit

from epg_catchup.config import CustomSettings, ProviderOverride
from epg_catchup.services.epg_types import CatchupWindow, Channel
from epg_catchup.utils.timezone import ensure_utc
from epg_catchup.utils.url_helpers import sanitize_url_for_logging, split_absolute_url


logger = logging.getLogger(__name__)

SHIFT_TYPES = {"shift"}
APPEND_TYPES = {"append", "default"}


def unix_seconds(value: datetime) -> int:
    """Whole seconds since the epoch (floored)."""
    return math.floor(ensure_utc(value).timestamp())


def set_query_param(base_url: str, name: str, value: str) -> str:
    """Set or overwrite a query parameter, keeping all other parameters."""
    parts = split_absolute_url(base_url)
    params = [
        (key, item) for key, item in parse_qsl(parts.query, keep_blank_values=True)
        if key != name
    ]
    params.append((name, value))
    return urlunsplit(parts._replace(query=urlencode(params)))


def append_utc_param(base_url: str, unix_time: int) -> str:
    """Append utc=<unix> as plain text so exotic query encodings survive untouched."""
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}utc={unix_time}"


def prefix_path(base_url: str, prefix: str, unix_time: int) -> str | None:
    """
    Insert /<prefix>/<unix>/ before the existing path

    /325/mono.m3u8 -> /timeshift/1700000000/325/mono.m3u8

    Returns:
        Rewritten URL, or None if the URL has no path segments
    """
    parts = split_absolute_url(base_url)
    segments = [segment for segment in parts.path.split("/") if segment]
    if not segments:
        return None
    new_path = f"/{prefix}/{unix_time}/" + "/".join(segments)
    return urlunsplit(parts._replace(path=new_path))


def catchup_url_candidates(
    base_url: str,
    unix_time: int,
    now: datetime | None = None,
) -> list[tuple[str, str]]:
    """
    Enumerate every known catchup URL encoding for a stream

    Order: timeshift_path, archive_path, utc_param, offset_param, archive_param.
    Path formats are omitted for URLs without path segments.

    Args:
        base_url: Live stream URL
        unix_time: Target instant in whole seconds
        now: Reference instant for the offset format

    Returns:
        List of (format name, URL) pairs

    Raises:
        ValueError: If the base URL is not an absolute URL
    """
    now = now or datetime.now(timezone.utc)
    candidates: list[tuple[str, str]] = []

    for name, prefix in (("timeshift_path", "timeshift"), ("archive_path", "archive")):
        url = prefix_path(base_url, prefix, unix_time)
        if url is not None:
            candidates.append((name, url))

    offset_seconds = math.floor(ensure_utc(now).timestamp() - unix_time)
    candidates.append(("utc_param", set_query_param(base_url, "utc", str(unix_time))))
    candidates.append(("offset_param", set_query_param(base_url, "offset", str(offset_seconds))))
    candidates.append(("archive_param", set_query_param(base_url, "archive", str(unix_time))))

    return candidates


class CatchupResolver:
    """Stateless catchup window and URL computation for playlist channels."""

    def __init__(
        self,
        overrides: Sequence[ProviderOverride] = (),
        *,
        forward_buffer_hours: float = 24,
        fs_format: str = "timeshift_path",
    ) -> None:
        self.overrides = list(overrides)
        self.forward_buffer = timedelta(hours=forward_buffer_hours)
        self.fs_format = fs_format

    @classmethod
    def from_settings(cls, settings: CustomSettings) -> "CatchupResolver":
        return cls(
            settings.catchup_provider_overrides,
            forward_buffer_hours=settings.catchup_forward_buffer_hours,
            fs_format=settings.catchup_fs_format,
        )

    def match_provider(self, stream_url: str | None) -> ProviderOverride | None:
        """First provider override whose domain occurs in the stream URL."""
        if not stream_url:
            return None
        url_lower = stream_url.lower()
        for override in self.overrides:
            if any(domain in url_lower for domain in override.domains):
                return override
        return None

    def compute_window(self, channel: Channel, now: datetime | None = None) -> CatchupWindow:
        """
        Compute the effective catchup window for a channel

        Args:
            channel: Playlist channel
            now: Reference instant (defaults to current UTC time)

        Returns:
            CatchupWindow spanning [now - timeshift, now + forward buffer]
        """
        now = ensure_utc(now) if now else datetime.now(timezone.utc)

        timeshift_hours = channel.timeshift or 0
        catchup_type = channel.catchup or ""
        available = bool(channel.catchup and timeshift_hours > 0)

        override = self.match_provider(channel.url)
        if override is not None:
            if override.override_declared:
                timeshift_hours = override.timeshift_hours
            else:
                timeshift_hours = channel.timeshift or override.timeshift_hours
            catchup_type = channel.catchup or override.default_type
            available = True
            logger.debug(
                "Provider override '%s' applied to %s: %sh, type=%s",
                override.name,
                channel.name,
                timeshift_hours,
                catchup_type,
            )

        return CatchupWindow(
            available=available,
            timeshift_hours=timeshift_hours,
            type=catchup_type,
            start_time=now - timedelta(hours=timeshift_hours),
            end_time=now + self.forward_buffer,
        )

    def generate_url(
        self,
        channel: Channel,
        target_time: datetime,
        now: datetime | None = None,
    ) -> str:
        """
        Build the playback URL for a target instant

        Falls back to the channel's live URL when catchup is unavailable, the
        target lies outside the window, or the URL cannot be rewritten.

        Args:
            channel: Playlist channel
            target_time: Instant to start playback from
            now: Reference instant (defaults to current UTC time)

        Returns:
            Catchup URL or the unchanged live URL
        """
        window = self.compute_window(channel, now)
        target_time = ensure_utc(target_time)

        if not window.available:
            logger.debug("Catchup not available for %s, returning live URL", channel.name)
            return channel.url

        if target_time < window.start_time or target_time > window.end_time:
            logger.debug("Time out of catchup range for %s, returning live URL", channel.name)
            return channel.url

        unix_time = unix_seconds(target_time)
        catchup_type = window.type.lower()

        try:
            if catchup_type in SHIFT_TYPES:
                url = set_query_param(channel.url, "utc", str(unix_time))
            elif catchup_type in APPEND_TYPES:
                url = append_utc_param(channel.url, unix_time)
            else:
                url = self._build_fs_url(channel.url, unix_time, now)
        except ValueError as e:
            logger.warning(
                "Could not build catchup URL from %s: %s",
                sanitize_url_for_logging(channel.url),
                e,
            )
            return channel.url

        logger.debug("Generated %s catchup URL: %s", catchup_type or "fs", sanitize_url_for_logging(url))
        return url

    def _build_fs_url(self, base_url: str, unix_time: int, now: datetime | None) -> str:
        """fs and unknown types: configured format, utc parameter when the path can't be rewritten."""
        candidates = dict(catchup_url_candidates(base_url, unix_time, now))
        return candidates.get(self.fs_format) or candidates["utc_param"]

    def is_time_within_catchup(
        self,
        channel: Channel,
        time: datetime,
        now: datetime | None = None,
    ) -> bool:
        """True if catchup is available and the instant lies inside the window"""
        window = self.compute_window(channel, now)
        time = ensure_utc(time)
        return window.available and window.start_time <= time <= window.end_time

    def get_catchup_time_range(
        self,
        channel: Channel,
        now: datetime | None = None,
    ) -> tuple[datetime, datetime] | None:
        """(start, end) of the window, or None without catchup"""
        window = self.compute_window(channel, now)
        if not window.available:
            return None
        return window.start_time, window.end_time

    def relative_time_position(
        self,
        channel: Channel,
        time: datetime,
        now: datetime | None = None,
    ) -> float:
        """Position of an instant within the window, 0..1 (1 = live without catchup)"""
        time_range = self.get_catchup_time_range(channel, now)
        if time_range is None:
            return 1.0

        start, end = time_range
        total = (end - start).total_seconds()
        if total <= 0:
            return 1.0
        elapsed = (ensure_utc(time) - start).total_seconds()
        return max(0.0, min(1.0, elapsed / total))

    def time_from_relative_position(
        self,
        channel: Channel,
        position: float,
        now: datetime | None = None,
    ) -> datetime:
        """Instant at a 0..1 position within the window (now without catchup)"""
        now = ensure_utc(now) if now else datetime.now(timezone.utc)
        time_range = self.get_catchup_time_range(channel, now)
        if time_range is None:
            return now

        start, end = time_range
        position = max(0.0, min(1.0, position))
        return start + (end - start) * position
