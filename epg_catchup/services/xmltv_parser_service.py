import asyncio
import logging
import re
from datetime import datetime, timezone

from lxml import etree # type: ignore

from epg_catchup.exceptions import ParseError
from epg_catchup.services.epg_types import EpgChannel, EpgData, EpgProgram, Episode
from epg_catchup.utils.timezone import (
    DateFormatError,
    OffsetPolicy,
    parse_xmltv_time,
    utc_offset_policy,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500
UNKNOWN_TITLE = "Unknown Program"

_XML_DECLARATION_RE = re.compile(r"^\s*<\?xml[^>]*\?>")


async def parse_xmltv(
    xml_text: str,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    offset_policy: OffsetPolicy | None = None,
) -> EpgData:
    """
    Parse XMLTV text into EpgData

    Programmes are processed in chunks, yielding to the event loop between
    chunks so large feeds do not monopolize it.

    Args:
        xml_text: Decoded XMLTV document
        chunk_size: Number of programme elements per chunk
        offset_policy: Offset assumed for timestamps without an explicit one

    Returns:
        EpgData with sorted channel and flat programme lists

    Raises:
        ParseError: If the document itself cannot be parsed
    """
    policy = offset_policy or utc_offset_policy
    chunk_size = max(1, chunk_size)

    root = _load_document(xml_text)
    logger.debug(f"  XML document loaded (root tag: {root.tag})")

    channels = _parse_channels(root)
    logger.debug(f"    Found {len(channels)} valid channels")

    programme_elements = root.findall('programme')
    total = len(programme_elements)
    logger.debug(f"  Extracting {total} programmes in chunks of {chunk_size}...")

    programs: list[EpgProgram] = []
    skipped = 0
    orphans = 0

    for chunk_start in range(0, total, chunk_size):
        for element in programme_elements[chunk_start:chunk_start + chunk_size]:
            program = _parse_single_program(element, len(programs), policy)
            if program is None:
                skipped += 1
                continue

            programs.append(program)

            channel = channels.get(program.channel_id)
            if channel is None:
                # Kept in the flat list only
                orphans += 1
                continue
            channel.programs.append(program)

        await asyncio.sleep(0)

    for channel in channels.values():
        channel.sort_programs()
    programs.sort(key=lambda program: program.start)

    if skipped:
        logger.debug(f"    Skipped {skipped} programmes with missing or invalid attributes")
    if orphans:
        logger.debug(f"    Kept {orphans} programmes whose channel has no <channel> element")

    logger.info(f"XMLTV parsing complete: {len(channels)} channels, {len(programs)} programs")

    return EpgData(
        channels=channels,
        programs=programs,
        generated_at=datetime.now(timezone.utc),
    )


def _load_document(xml_text: str) -> etree._Element:
    """Parse the document root; the only fatal parse-time condition"""
    # lxml refuses unicode input that carries an encoding declaration
    body = _XML_DECLARATION_RE.sub("", xml_text, count=1)
    if not body.strip():
        raise ParseError("Failed to parse EPG XML data: document is empty")

    parser = etree.XMLParser(huge_tree=True, resolve_entities=False, no_network=True)
    try:
        return etree.fromstring(body, parser)
    except etree.XMLSyntaxError as e:
        logger.error(f"  XML parsing error: {e}")
        raise ParseError(f"Failed to parse EPG XML data: {e}") from e


def _parse_channels(root: etree._Element) -> dict[str, EpgChannel]:
    """Extract channels from XMLTV root element"""
    channels: dict[str, EpgChannel] = {}

    for channel in root.findall('channel'):
        xmltv_id = channel.get('id')
        if not xmltv_id:
            logger.debug("Skipping channel with missing ID attribute")
            continue

        # Get display name (first one or fallback to ID)
        display_name = _get_text(channel, 'display-name', default=xmltv_id)

        icon_elem = channel.find('icon')
        icon_url = icon_elem.get('src') if icon_elem is not None else None

        channels[xmltv_id] = EpgChannel(
            id=xmltv_id,
            display_name=display_name or xmltv_id,
            icon=icon_url or None,
        )

    return channels


def _parse_single_program(
    programme: etree._Element,
    ordinal: int,
    offset_policy: OffsetPolicy,
) -> EpgProgram | None:
    """Parse single programme element"""
    # Required fields
    channel_id = programme.get('channel')
    start_str = programme.get('start')
    stop_str = programme.get('stop')

    if not channel_id or not start_str or not stop_str:
        return None

    # Parse times (skip invalid formats)
    try:
        start_time = parse_xmltv_time(start_str, offset_policy)
        stop_time = parse_xmltv_time(stop_str, offset_policy)
    except DateFormatError:
        return None

    if stop_time <= start_time:
        return None

    icon_elem = programme.find('icon')
    episode_elem = programme.find('episode-num[@system="xmltv_ns"]')

    return EpgProgram(
        id=f"{channel_id}-{start_str}-{ordinal}",
        channel_id=channel_id,
        title=_get_text(programme, 'title', default=UNKNOWN_TITLE) or UNKNOWN_TITLE,
        start=start_time,
        stop=stop_time,
        description=_get_text(programme, 'desc'),
        category=_get_text(programme, 'category'),
        icon=(icon_elem.get('src') or None) if icon_elem is not None else None,
        rating=_get_text(programme, 'rating/value'),
        episode=parse_episode_number(episode_elem.text) if episode_elem is not None and episode_elem.text else None,
    )


def parse_episode_number(value: str) -> Episode | None:
    """
    Parse an xmltv_ns episode number

    Format is 'season.episode[.part]' where each component is 0-based and may
    carry a total ('2/5'). Empty components are allowed ('.3.').

    Args:
        value: Text of an episode-num element with system="xmltv_ns"

    Returns:
        Episode with 1-based numbers, or None if neither season nor episode is present
    """
    parts = value.split('.')
    if len(parts) < 2:
        return None

    season, _ = _parse_ns_component(parts[0])
    episode, total = _parse_ns_component(parts[1])

    if season is None and episode is None:
        return None

    return Episode(season=season, episode=episode, total=total)


def _parse_ns_component(component: str) -> tuple[int | None, int | None]:
    number, _, total = component.strip().partition('/')
    return _to_int(number, offset=1), _to_int(total)


def _to_int(value: str, offset: int = 0) -> int | None:
    value = value.strip()
    if not value:
        return None
    try:
        return int(value) + offset
    except ValueError:
        return None


def _get_text(element: etree._Element, tag: str, default: str | None = None) -> str | None:
    """Safely extract text from XML element"""
    child = element.find(tag)
    if child is None or not child.text or not child.text.strip():
        return default
    return child.text.strip()
