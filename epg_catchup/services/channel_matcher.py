"""
Channel Matcher

Resolves a playlist channel's loose identifier to an EPG channel. Playlist ids
rarely match the feed exactly, so the lookup falls through progressively looser
tiers. A miss returns nothing; it is never an error.
"""
import logging

from epg_catchup.services.epg_types import Channel, EpgChannel, EpgData, EpgProgram


logger = logging.getLogger(__name__)


def find_channel(epg_data: EpgData | None, query: str | None) -> EpgChannel | None:
    """
    Find the EPG channel for a loose identifier

    Resolution order (first hit wins):
        1. exact id
        2. case-insensitive id
        3. case-insensitive substring, in either direction
        4. case-insensitive display name

    Args:
        epg_data: Loaded EPG data (None if nothing is loaded)
        query: Identifier from the playlist (tvg-id, name, ...)

    Returns:
        Matching channel or None
    """
    if not epg_data or not query:
        return None

    channels = epg_data.channels

    channel = channels.get(query)
    if channel is not None:
        return channel

    query_lower = query.lower()
    for channel_id, channel in channels.items():
        if channel_id.lower() == query_lower:
            logger.debug('Found case-insensitive match for "%s" -> "%s"', query, channel_id)
            return channel

    for channel_id, channel in channels.items():
        id_lower = channel_id.lower()
        if query_lower in id_lower or id_lower in query_lower:
            logger.debug('Found partial match for "%s" -> "%s"', query, channel_id)
            return channel

    for channel in channels.values():
        if channel.display_name.lower() == query_lower:
            logger.debug('Found display name match for "%s" -> "%s"', query, channel.id)
            return channel

    return None


def get_channel_programs(epg_data: EpgData | None, query: str | None) -> list[EpgProgram]:
    """Programmes of the matched channel, or an empty list on a miss."""
    channel = find_channel(epg_data, query)
    if channel is None:
        return []
    return channel.programs


def resolve_channel_query(channel: Channel) -> str:
    """Identifier to match a playlist channel by: EPG id, then name, then id."""
    return channel.epg_id or channel.name or channel.id
