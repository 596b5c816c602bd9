"""
Shared fixtures for the EPG catchup test suite.
"""
import os
import sys
from datetime import datetime, timezone

import httpx
import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from epg_catchup.config import CustomSettings


SOURCE_URL = "http://epg.example.com/guide.xml"

SAMPLE_XMLTV = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE tv SYSTEM "xmltv.dtd">
<tv generator-info-name="test-generator">
  <channel id="BBC1.uk">
    <display-name>BBC One</display-name>
    <icon src="http://logo.example.com/bbc1.png"/>
  </channel>
  <channel id="cnn.us">
    <display-name>CNN International</display-name>
  </channel>
  <programme start="20240101120000 +0100" stop="20240101130000 +0100" channel="BBC1.uk">
    <title>News at Noon</title>
    <desc>Midday headlines</desc>
    <category>News</category>
    <icon src="http://img.example.com/news.png"/>
    <episode-num system="xmltv_ns">1.4/10.</episode-num>
    <rating system="VCHIP"><value>TV-G</value></rating>
  </programme>
  <programme start="20240101100000 +0100" stop="20240101120000 +0100" channel="BBC1.uk">
    <title>Morning Show</title>
  </programme>
  <programme start="20240101130000 +0000" stop="20240101140000 +0000" channel="cnn.us">
    <title>World Report</title>
    <desc>Global news roundup</desc>
  </programme>
  <programme start="20240101140000" stop="20240101150000" channel="cnn.us">
    <title>No Offset</title>
  </programme>
  <programme start="garbage" stop="20240101150000 +0000" channel="cnn.us">
    <title>Bad Time</title>
  </programme>
  <programme stop="20240101150000 +0000" channel="cnn.us">
    <title>Missing Start</title>
  </programme>
  <programme start="20240101160000 +0000" stop="20240101150000 +0000" channel="cnn.us">
    <title>Backwards</title>
  </programme>
  <programme start="20240101083000 +0000" stop="20240101090000 +0000" channel="orphan.tv">
    <title>Orphan Programme</title>
  </programme>
</tv>
"""

OTHER_XMLTV = """<?xml version="1.0" encoding="UTF-8"?>
<tv>
  <channel id="other.tv"><display-name>Other TV</display-name></channel>
  <programme start="20240101120000 +0000" stop="20240101130000 +0000" channel="other.tv">
    <title>Other Show</title>
  </programme>
</tv>
"""


class FakeClock:
    """Mutable clock injected into services under test."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class RecordingSleep:
    """Async sleep replacement that records delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingHandler:
    """
    httpx.MockTransport handler serving canned responses per host.

    `responses` maps a host to a list of (status, body) tuples consumed in
    order; the last one repeats. `gates` maps a host to an asyncio.Event the
    handler waits on before answering.
    """

    def __init__(self, responses: dict, gates: dict | None = None):
        self.responses = {host: list(items) for host, items in responses.items()}
        self.gates = gates or {}
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host

        gate = self.gates.get(host)
        if gate is not None:
            await gate.wait()

        items = self.responses.get(host)
        if not items:
            return httpx.Response(404, content=b"not found")

        status, body = items.pop(0) if len(items) > 1 else items[0]
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, content=body)

    def calls_to(self, host: str) -> int:
        return sum(1 for request in self.requests if request.url.host == host)


@pytest.fixture
def settings(tmp_path):
    return CustomSettings(
        epg_url=SOURCE_URL,
        epg_use_mirrors=False,
        epg_fetch_max_attempts=3,
        epg_fetch_backoff_initial_sec=1.0,
        epg_fetch_backoff_multiplier=2.0,
        epg_fetch_backoff_max_sec=10.0,
        epg_default_timezone="UTC",
        epg_refresh_threshold_hours=6,
        cache_database_path=str(tmp_path / "epg_cache.db"),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()
