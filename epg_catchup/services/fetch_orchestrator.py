"""
EPG Fetch Orchestrator

Downloads a raw XMLTV payload by trying the direct source URL first and then
each configured mirror, strictly in order. The first successful response wins.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence
from urllib.parse import quote

import httpx

from epg_catchup.exceptions import NetworkError
from epg_catchup.utils.url_helpers import get_hostname, is_local_url, sanitize_url_for_logging


logger = logging.getLogger(__name__)

DIRECT_ACCEPT = "application/xml, text/xml, application/gzip, application/octet-stream, */*"
MIRROR_ACCEPT = "application/gzip, application/octet-stream, */*"

INSECURE_SOURCE_HINT = (
    "insecure-origin (http://) URLs behind secure deployments often need a mirror; "
    "consider an https:// EPG source"
)
GENERIC_HINT = "check that the EPG URL is reachable and serves an XMLTV document"


@dataclass(slots=True, frozen=True)
class FetchCandidate:
    url: str
    via_mirror: bool = False


def _is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


class FetchOrchestrator:
    """
    Tries an ordered list of candidate URLs until one returns a payload.

    Mirror templates contain either `{url}` (the source URL percent-encoded) or
    `{raw_url}` (the source URL appended as-is).
    """

    def __init__(
        self,
        mirrors: Sequence[str] = (),
        *,
        use_mirrors: bool = True,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.mirrors = list(mirrors) if use_mirrors else []
        self.timeout = timeout
        self._transport = transport
        self._mirror_hosts = {
            host for host in (get_hostname(template.split("{", 1)[0]) for template in self.mirrors)
            if host
        }

    def is_mirror_url(self, url: str) -> bool:
        """True if the URL already points at a mirror/proxy relay."""
        hostname = get_hostname(url)
        if hostname and hostname in self._mirror_hosts:
            return True
        return "proxy" in url.lower()

    def build_candidates(self, url: str) -> list[FetchCandidate]:
        """
        Build the ordered candidate list for a source URL

        Args:
            url: Primary EPG source URL

        Returns:
            Direct candidate first, then one candidate per mirror unless the URL
            is local or already a mirror address
        """
        candidates = [FetchCandidate(url=url)]

        if is_local_url(url) or self.is_mirror_url(url):
            logger.debug("Source is local or already mirrored, skipping mirrors: %s",
                         sanitize_url_for_logging(url))
            return candidates

        for template in self.mirrors:
            mirror_url = (
                template
                .replace("{url}", quote(url, safe=""))
                .replace("{raw_url}", url)
            )
            candidates.append(FetchCandidate(url=mirror_url, via_mirror=True))

        return candidates

    def _create_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def fetch(self, url: str) -> bytes:
        """
        Fetch raw bytes for a source URL

        Args:
            url: Primary EPG source URL

        Returns:
            Raw response body (possibly gzip-compressed)

        Raises:
            NetworkError: If every candidate fails
        """
        candidates = self.build_candidates(url)
        total = len(candidates)
        sanitized_source = sanitize_url_for_logging(url)
        last_error: str | None = None
        transient = False

        logger.info("Fetching EPG from %s (%s candidate(s))", sanitized_source, total)

        async with self._create_client() as client:
            for index, candidate in enumerate(candidates, start=1):
                label = "mirror" if candidate.via_mirror else "direct"
                sanitized = sanitize_url_for_logging(candidate.url)
                logger.debug("  [Candidate %s/%s] %s fetch: %s", index, total, label, sanitized)

                try:
                    response = await client.get(
                        candidate.url,
                        headers={"Accept": MIRROR_ACCEPT if candidate.via_mirror else DIRECT_ACCEPT},
                    )
                    response.raise_for_status()
                except httpx.HTTPStatusError as e:
                    status_code = e.response.status_code
                    last_error = f"HTTP {status_code} from {label} candidate {sanitized}"
                    transient = transient or _is_transient_status(status_code)
                    logger.warning("  [Candidate %s/%s] failed: HTTP %s", index, total, status_code)
                    continue
                except (httpx.TimeoutException, httpx.TransportError) as e:
                    last_error = f"{type(e).__name__} from {label} candidate {sanitized}: {e}"
                    transient = True
                    logger.warning(
                        "  [Candidate %s/%s] failed (transient error): %s",
                        index,
                        total,
                        type(e).__name__,
                    )
                    continue
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    last_error = f"{type(e).__name__} from {label} candidate {sanitized}: {e}"
                    logger.warning("  [Candidate %s/%s] failed: %s", index, total, e)
                    continue

                content = response.content
                logger.info(
                    "Fetched %.2f MB via %s candidate %s/%s",
                    len(content) / (1024 * 1024),
                    label,
                    index,
                    total,
                )
                return content

        hint = INSECURE_SOURCE_HINT if url.lower().startswith("http://") else GENERIC_HINT
        message = (
            f"All {total} fetch attempt(s) failed for {sanitized_source}. "
            f"Last error: {last_error}. Hint: {hint}"
        )
        logger.error(message)
        raise NetworkError(message, attempts=total, last_error=last_error, transient=transient)


async def fetch_with_retry(
    fetch: Callable[[str], Awaitable[bytes]],
    url: str,
    *,
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    max_delay: float = 10.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bytes:
    """
    Run a whole-orchestrator fetch with capped exponential backoff retry logic

    Retries only transient failures (timeouts, connection errors, 5xx/429).
    Does NOT retry when every candidate failed with a client error.

    Args:
        fetch: Fetch coroutine function (typically FetchOrchestrator.fetch)
        url: Source URL
        max_attempts: Maximum number of attempts
        initial_delay: Delay before the second attempt
        backoff_factor: Exponential backoff multiplier
        max_delay: Ceiling for any single delay

    Returns:
        Raw payload

    Raises:
        NetworkError: If the last attempt fails or the failure is not transient
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await fetch(url)
        except NetworkError as e:
            if not e.transient:
                logger.error("EPG fetch failed with non-transient error, not retrying")
                raise
            if attempt >= max_attempts:
                logger.error("EPG fetch failed after %s attempts (transient error)", max_attempts)
                raise

            wait_time = min(initial_delay * backoff_factor ** (attempt - 1), max_delay)
            logger.warning(
                "EPG fetch attempt %s/%s failed (transient error). Retrying in %.1fs...",
                attempt,
                max_attempts,
                wait_time,
            )
            await sleep(wait_time)

    raise RuntimeError(f"Failed to fetch {sanitize_url_for_logging(url)} after {max_attempts} attempts")
