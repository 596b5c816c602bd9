"""
EPG error taxonomy

Only NetworkError and ParseError terminate a load. DecodeError never leaves the
decode layer; skipped records, channel match misses and unavailable catchup are
reported through return values rather than exceptions.
"""


class EpgError(Exception):
    """Base class for all EPG errors"""
    pass


class NetworkError(EpgError):
    """Raised when every fetch candidate for a source has failed"""

    def __init__(
        self,
        message: str,
        *,
        attempts: int = 0,
        last_error: str | None = None,
        transient: bool = False,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error
        self.transient = transient


class DecodeError(EpgError):
    """Raised when a payload is not a valid compressed stream"""
    pass


class ParseError(EpgError):
    """Raised when the XMLTV document itself cannot be parsed"""
    pass


class ConfigurationError(EpgError):
    """Raised when no EPG source is configured for a load"""
    pass


class EpgNotLoadedError(EpgError):
    """Raised by the HTTP layer when EPG data is queried before any load"""
    pass
