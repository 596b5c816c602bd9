"""
Tests for catchup window computation and URL generation.
"""
from datetime import datetime, timedelta, timezone

import pytest

from epg_catchup.config import DEFAULT_PROVIDER_OVERRIDES, ProviderOverride
from epg_catchup.services.catchup_service import (
    CatchupResolver,
    catchup_url_candidates,
    unix_seconds,
)
from epg_catchup.services.epg_types import Channel


TARGET = datetime.fromtimestamp(1700000000, tz=timezone.utc)
NOW = TARGET + timedelta(hours=2)


def channel(url="http://tv.example.com/live/ch1.m3u8?token=abc", timeshift=10, catchup="shift", **fields):
    return Channel(id="ch1", name="Channel One", url=url, timeshift=timeshift, catchup=catchup, **fields)


@pytest.fixture
def resolver():
    return CatchupResolver(DEFAULT_PROVIDER_OVERRIDES)


class TestCatchupWindow:
    """Test the effective rewind window."""

    def test_window_bounds(self, resolver):
        window = resolver.compute_window(channel(), NOW)

        assert window.available is True
        assert window.timeshift_hours == 10
        assert window.type == "shift"
        assert window.start_time == NOW - timedelta(hours=10)
        assert window.end_time == NOW + timedelta(hours=24)

    def test_configurable_forward_buffer(self):
        window = CatchupResolver(forward_buffer_hours=2).compute_window(channel(), NOW)
        assert window.end_time == NOW + timedelta(hours=2)

    @pytest.mark.parametrize("timeshift,catchup", [(0, "shift"), (None, "shift"), (10, None), (10, "")])
    def test_unavailable_without_type_or_duration(self, resolver, timeshift, catchup):
        window = resolver.compute_window(channel(timeshift=timeshift, catchup=catchup), NOW)
        assert window.available is False

    def test_provider_override_replaces_declared_value(self, resolver):
        window = resolver.compute_window(
            channel(url="http://stream.plusx.tv/ch/1/index.m3u8", timeshift=24, catchup=None),
            NOW,
        )
        assert window.available is True
        assert window.timeshift_hours == 120
        assert window.type == "fs"

    def test_provider_default_when_nothing_declared(self, resolver):
        window = resolver.compute_window(
            channel(url="http://cdn.itvn.io/325/mono.m3u8", timeshift=None, catchup=None),
            NOW,
        )
        assert window.available is True
        assert window.timeshift_hours == 10

    def test_provider_keeps_declared_value(self, resolver):
        window = resolver.compute_window(
            channel(url="http://cdn.itvn.io/325/mono.m3u8", timeshift=3, catchup="append"),
            NOW,
        )
        assert window.timeshift_hours == 3
        assert window.type == "append"

    def test_custom_override(self):
        overrides = [ProviderOverride(name="acme", domains=["ACME.example"], timeshift_hours=48)]
        window = CatchupResolver(overrides).compute_window(
            channel(url="http://live.acme.example/1.m3u8", timeshift=None, catchup=None),
            NOW,
        )
        assert window.timeshift_hours == 48

    def test_time_range_helpers(self, resolver):
        ch = channel()
        start, end = resolver.get_catchup_time_range(ch, NOW)

        assert resolver.is_time_within_catchup(ch, TARGET, NOW) is True
        assert resolver.is_time_within_catchup(ch, NOW - timedelta(hours=11), NOW) is False
        assert resolver.relative_time_position(ch, start + (end - start) / 2, NOW) == 0.5
        assert resolver.time_from_relative_position(ch, 0.5, NOW) == start + (end - start) / 2
        assert resolver.time_from_relative_position(ch, 2.0, NOW) == end

    def test_time_range_helpers_without_catchup(self, resolver):
        ch = channel(catchup=None)
        assert resolver.get_catchup_time_range(ch, NOW) is None
        assert resolver.relative_time_position(ch, TARGET, NOW) == 1.0
        assert resolver.time_from_relative_position(ch, 0.2, NOW) == NOW


class TestGenerateUrl:
    """Test catchup URL generation per catchup type."""

    def test_shift_sets_utc_parameter(self, resolver):
        url = resolver.generate_url(channel(), TARGET, NOW)
        assert url == "http://tv.example.com/live/ch1.m3u8?token=abc&utc=1700000000"

    def test_shift_replaces_existing_utc(self, resolver):
        url = resolver.generate_url(
            channel(url="http://tv.example.com/live/ch1.m3u8?utc=1&token=abc"),
            TARGET,
            NOW,
        )
        assert url == "http://tv.example.com/live/ch1.m3u8?token=abc&utc=1700000000"

    @pytest.mark.parametrize("catchup", ["append", "default", "APPEND"])
    def test_append_types(self, resolver, catchup):
        url = resolver.generate_url(channel(catchup=catchup), TARGET, NOW)
        assert url == "http://tv.example.com/live/ch1.m3u8?token=abc&utc=1700000000"

    def test_append_without_query(self, resolver):
        url = resolver.generate_url(
            channel(url="http://tv.example.com/live/ch1.m3u8", catchup="append"),
            TARGET,
            NOW,
        )
        assert url == "http://tv.example.com/live/ch1.m3u8?utc=1700000000"

    def test_fs_rewrites_path(self, resolver):
        url = resolver.generate_url(
            channel(url="http://tv.example.com/325/mono.m3u8", catchup="fs"),
            TARGET,
            NOW,
        )
        assert url == "http://tv.example.com/timeshift/1700000000/325/mono.m3u8"

    def test_unknown_type_behaves_like_fs(self, resolver):
        url = resolver.generate_url(
            channel(url="http://tv.example.com/325/mono.m3u8", catchup="flussonic"),
            TARGET,
            NOW,
        )
        assert url == "http://tv.example.com/timeshift/1700000000/325/mono.m3u8"

    def test_fs_without_path_uses_utc_parameter(self, resolver):
        url = resolver.generate_url(channel(url="http://tv.example.com", catchup="fs"), TARGET, NOW)
        assert url == "http://tv.example.com?utc=1700000000"

    def test_configured_fs_format(self):
        resolver = CatchupResolver(fs_format="archive_param")
        url = resolver.generate_url(
            channel(url="http://tv.example.com/325/mono.m3u8", catchup="fs"),
            TARGET,
            NOW,
        )
        assert url == "http://tv.example.com/325/mono.m3u8?archive=1700000000"

    def test_provider_override_uses_fs(self, resolver):
        url = resolver.generate_url(
            channel(url="http://cdn.itvn.io/325/mono.m3u8", timeshift=None, catchup=None),
            TARGET,
            NOW,
        )
        assert url == "http://cdn.itvn.io/timeshift/1700000000/325/mono.m3u8"

    def test_outside_window_returns_live_url(self, resolver):
        ch = channel()
        assert resolver.generate_url(ch, NOW - timedelta(hours=11), NOW) == ch.url
        assert resolver.generate_url(ch, NOW + timedelta(hours=25), NOW) == ch.url

    def test_window_edges_are_inclusive(self, resolver):
        ch = channel()
        assert resolver.generate_url(ch, NOW - timedelta(hours=10), NOW) != ch.url

    def test_unavailable_returns_live_url(self, resolver):
        ch = channel(catchup=None)
        assert resolver.generate_url(ch, TARGET, NOW) == ch.url

    def test_malformed_url_returns_unchanged(self, resolver):
        ch = channel(url="not a url")
        assert resolver.generate_url(ch, TARGET, NOW) == "not a url"

    def test_naive_target_is_utc(self, resolver):
        url = resolver.generate_url(channel(), TARGET.replace(tzinfo=None), NOW)
        assert url.endswith("utc=1700000000")

    def test_unix_seconds_floors(self):
        assert unix_seconds(TARGET + timedelta(milliseconds=900)) == 1700000000


class TestCandidates:
    """Test enumeration of every known catchup URL format."""

    def test_all_formats_in_order(self):
        candidates = catchup_url_candidates(
            "http://tv.example.com/325/mono.m3u8?token=abc",
            1700000000,
            TARGET + timedelta(hours=1),
        )

        assert candidates == [
            ("timeshift_path", "http://tv.example.com/timeshift/1700000000/325/mono.m3u8?token=abc"),
            ("archive_path", "http://tv.example.com/archive/1700000000/325/mono.m3u8?token=abc"),
            ("utc_param", "http://tv.example.com/325/mono.m3u8?token=abc&utc=1700000000"),
            ("offset_param", "http://tv.example.com/325/mono.m3u8?token=abc&offset=3600"),
            ("archive_param", "http://tv.example.com/325/mono.m3u8?token=abc&archive=1700000000"),
        ]

    def test_path_formats_need_segments(self):
        names = [name for name, _ in catchup_url_candidates("http://tv.example.com/", 1700000000, TARGET)]
        assert names == ["utc_param", "offset_param", "archive_param"]

    def test_relative_url_is_rejected(self):
        with pytest.raises(ValueError):
            catchup_url_candidates("/325/mono.m3u8", 1700000000, TARGET)
