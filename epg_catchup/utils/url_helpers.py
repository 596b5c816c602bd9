"""
URL utilities

Helpers shared by the fetch orchestrator and the catchup resolver.
"""
import ipaddress
from urllib.parse import urlsplit, SplitResult


LOCAL_HOSTNAMES = {"localhost", "localhost.localdomain", "host.docker.internal"}


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    if "://" not in url:
        return url
    try:
        protocol, rest = url.split("://", 1)
        if "@" in rest.split("/", 1)[0]:
            rest = rest.split("@", 1)[1]
            return f"{protocol}://***:***@{rest}"
        return url
    except (ValueError, IndexError):
        return url


def split_absolute_url(url: str) -> SplitResult:
    """
    Split a URL that must have a scheme and host

    Raises:
        ValueError: If the URL is relative or its netloc is malformed
    """
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Not an absolute URL: {url}")
    # Accessing port validates the netloc (raises ValueError on garbage)
    _ = parts.port
    return parts


def get_hostname(url: str) -> str | None:
    """Lower-cased hostname of a URL, or None if it has none."""
    try:
        return urlsplit(url.strip()).hostname
    except ValueError:
        return None


def is_local_url(url: str) -> bool:
    """True for loopback, private and link-local hosts."""
    hostname = get_hostname(url)
    if not hostname:
        return False
    if hostname in LOCAL_HOSTNAMES or hostname.endswith(".local"):
        return True
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_loopback or address.is_private or address.is_link_local
