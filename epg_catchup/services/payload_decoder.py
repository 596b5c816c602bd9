"""
Payload decoding

Turns a raw EPG payload into text. Feeds are frequently served gzip-compressed
without a matching Content-Encoding header, so decompression is attempted first
and plain UTF-8 is the fallback.
"""
import gzip
import logging
import zlib

from epg_catchup.exceptions import DecodeError


logger = logging.getLogger(__name__)


def decompress_payload(raw: bytes) -> bytes:
    """
    Decompress a gzip payload

    Raises:
        DecodeError: If the payload is not a complete gzip stream
    """
    try:
        return gzip.decompress(raw)
    except (OSError, EOFError, zlib.error) as e:
        raise DecodeError(f"Payload is not valid gzip data: {e}") from e


def decode_payload(raw: bytes) -> str:
    """
    Decode a raw payload into XML text

    The result is returned even if it is not valid XML; the parser reports that.

    Args:
        raw: Response body, compressed or not

    Returns:
        Decoded text (invalid UTF-8 sequences replaced)
    """
    try:
        data = decompress_payload(raw)
        logger.debug("Payload decompressed: %s -> %s bytes", len(raw), len(data))
    except DecodeError as e:
        logger.debug("Decompression failed, decoding as plain text: %s", e)
        data = raw

    text = data.decode("utf-8", errors="replace")
    return text.removeprefix("\ufeff")
