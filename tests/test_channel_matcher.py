"""
Tests for channel correlation between playlists and the guide.
"""
from datetime import datetime, timedelta, timezone

import pytest

from epg_catchup.services.channel_matcher import (
    find_channel,
    get_channel_programs,
    resolve_channel_query,
)
from epg_catchup.services.epg_types import Channel, EpgChannel, EpgData, EpgProgram


BASE = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def program(channel_id, title, start_hours, duration_hours=1.0, **fields):
    start = BASE + timedelta(hours=start_hours)
    return EpgProgram(
        id=f"{channel_id}-{title}",
        channel_id=channel_id,
        title=title,
        start=start,
        stop=start + timedelta(hours=duration_hours),
        **fields,
    )


@pytest.fixture
def epg_data():
    bbc = EpgChannel(id="BBC1.uk", display_name="BBC One", programs=[
        program("BBC1.uk", "Breakfast", -2, 2),
        program("BBC1.uk", "News at Noon", 0, 1, category="News"),
        program("BBC1.uk", "Doctors", 1, 0.5, description="Medical drama"),
        program("BBC1.uk", "Afternoon News", 1.5, 0.5),
    ])
    news = EpgChannel(id="bbc1news", display_name="BBC News Channel", programs=[
        program("bbc1news", "Newsday", 0, 1),
    ])
    cnn = EpgChannel(id="cnn.us", display_name="CNN International")

    channels = {channel.id: channel for channel in (bbc, news, cnn)}
    programs = sorted(
        (p for channel in channels.values() for p in channel.programs),
        key=lambda p: p.start,
    )
    return EpgData(channels=channels, programs=programs, generated_at=BASE)


class TestFindChannel:
    """Test the loose identifier resolution tiers."""

    def test_exact_id(self, epg_data):
        assert find_channel(epg_data, "BBC1.uk").id == "BBC1.uk"

    def test_case_insensitive_id(self, epg_data):
        assert find_channel(epg_data, "bbc1.uk").id == "BBC1.uk"
        assert find_channel(epg_data, "CNN.US").id == "cnn.us"

    def test_exact_beats_substring(self, epg_data):
        assert find_channel(epg_data, "bbc1news").id == "bbc1news"

    def test_query_contained_in_id(self, epg_data):
        # First channel in feed order containing the query wins
        assert find_channel(epg_data, "bbc1").id == "BBC1.uk"

    def test_id_contained_in_query(self, epg_data):
        assert find_channel(epg_data, "bbc1news hd").id == "bbc1news"

    def test_display_name(self, epg_data):
        assert find_channel(epg_data, "bbc one").id == "BBC1.uk"
        assert find_channel(epg_data, "CNN International").id == "cnn.us"

    def test_miss(self, epg_data):
        assert find_channel(epg_data, "Eurosport") is None
        assert get_channel_programs(epg_data, "Eurosport") == []

    def test_empty_query_or_data(self, epg_data):
        assert find_channel(epg_data, "") is None
        assert find_channel(epg_data, None) is None
        assert find_channel(None, "BBC1.uk") is None
        assert get_channel_programs(None, "BBC1.uk") == []

    def test_channel_programmes(self, epg_data):
        titles = [p.title for p in get_channel_programs(epg_data, "bbc1.uk")]
        assert titles == ["Breakfast", "News at Noon", "Doctors", "Afternoon News"]

    def test_resolve_channel_query(self):
        assert resolve_channel_query(Channel(id="1", name="BBC One", url="http://x/1", epg_id="BBC1.uk")) == "BBC1.uk"
        assert resolve_channel_query(Channel(id="1", name="BBC One", url="http://x/1")) == "BBC One"
        assert resolve_channel_query(Channel(id="1", name="", url="http://x/1")) == "1"
