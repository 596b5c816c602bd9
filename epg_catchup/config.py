from pathlib import Path
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from croniter import croniter
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


logger = logging.getLogger(__name__)


CATCHUP_FORMATS = (
    "timeshift_path",
    "archive_path",
    "utc_param",
    "offset_param",
    "archive_param",
)

DEFAULT_EPG_MIRRORS = [
    "https://api.allorigins.win/raw?url={url}",
    "https://api.codetabs.com/v1/proxy?quest={url}",
    "https://corsproxy.io/?{url}",
    "https://cors-proxy.htmldriven.com/?url={url}",
    "https://thingproxy.freeboard.io/fetch/{raw_url}",
]


class ProviderOverride(BaseModel):
    """Catchup window override for streams served from a known provider domain."""
    name: str
    domains: list[str] = Field(..., min_length=1)
    timeshift_hours: int = Field(..., gt=0)
    override_declared: bool = False  # False: playlist value wins when present
    default_type: str = "fs"

    @field_validator("domains")
    @classmethod
    def normalize_domains(cls, value: list[str]) -> list[str]:
        return [domain.strip().lower() for domain in value if domain.strip()]


DEFAULT_PROVIDER_OVERRIDES = [
    ProviderOverride(
        name="plusx",
        domains=["plusx.tv"],
        timeshift_hours=120,
        override_declared=True,
    ),
    ProviderOverride(
        name="itvn",
        domains=["itvn.io"],
        timeshift_hours=10,
        override_declared=False,
    ),
]


class CustomSettings(BaseSettings):
    """Application settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    epg_url: str | None = None
    epg_mirrors: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_EPG_MIRRORS)
    )
    epg_use_mirrors: bool = True
    epg_fetch_timeout_sec: float = 60.0
    epg_fetch_max_attempts: int = 3
    epg_fetch_backoff_initial_sec: float = 1.0
    epg_fetch_backoff_multiplier: float = 2.0
    epg_fetch_backoff_max_sec: float = 10.0
    epg_parse_chunk_size: int = 500
    epg_default_timezone: str = "Europe/Warsaw"  # Used when a timestamp has no offset
    epg_refresh_threshold_hours: float = 6
    epg_stale_check_cron: str = "0 * * * *"  # Hourly

    cache_enabled: bool = True
    cache_database_path: str = "./data/epg_cache.db"

    catchup_forward_buffer_hours: float = 24
    catchup_fs_format: str = "timeshift_path"
    catchup_provider_overrides: list[ProviderOverride] = Field(
        default_factory=lambda: [item.model_copy() for item in DEFAULT_PROVIDER_OVERRIDES]
    )

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("epg_url", mode="before")
    @classmethod
    def parse_epg_url(cls, value):
        """Treat blank URLs as not configured."""
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("epg_url", mode="after")
    @classmethod
    def validate_epg_url(cls, value):
        """Validate EPG source URL is HTTP/HTTPS."""
        if value and not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"EPG source URL must be HTTP/HTTPS: {value}")
        return value

    @field_validator("epg_mirrors", mode="before")
    @classmethod
    def parse_epg_mirrors(cls, value):
        """Parse comma-separated mirror templates or list."""
        if value is None:
            return []
        if isinstance(value, str):
            if not value.strip():
                return []
            return [template.strip() for template in value.split(",") if template.strip()]
        if isinstance(value, list):
            return value
        return []

    @field_validator("epg_mirrors", mode="after")
    @classmethod
    def validate_epg_mirrors(cls, value: list[str]) -> list[str]:
        """Each mirror template needs a URL placeholder."""
        for template in value:
            if "{url}" not in template and "{raw_url}" not in template:
                raise ValueError(
                    f"Mirror template must contain {{url}} or {{raw_url}}: {template}"
                )
        return value

    @field_validator(
        "epg_fetch_max_attempts",
        "epg_parse_chunk_size",
    )
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure integer settings are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator(
        "epg_fetch_timeout_sec",
        "epg_fetch_backoff_initial_sec",
        "epg_fetch_backoff_max_sec",
        "epg_refresh_threshold_hours",
    )
    @classmethod
    def validate_positive_floats(cls, value: float, info) -> float:
        """Ensure floating-point settings are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("catchup_forward_buffer_hours")
    @classmethod
    def validate_forward_buffer(cls, value: float) -> float:
        if value < 0:
            raise ValueError("catchup_forward_buffer_hours must be >= 0")
        return value

    @field_validator("epg_fetch_backoff_multiplier")
    @classmethod
    def validate_backoff_multiplier(cls, value: float) -> float:
        """Ensure the backoff multiplier is at least 1."""
        if value < 1:
            raise ValueError("epg_fetch_backoff_multiplier must be >= 1")
        return value

    @field_validator("epg_fetch_backoff_max_sec")
    @classmethod
    def validate_backoff_range(cls, value: float, values) -> float:
        """Ensure max backoff is not lower than initial backoff."""
        initial = values.data.get("epg_fetch_backoff_initial_sec")
        if initial and value < initial:
            raise ValueError("epg_fetch_backoff_max_sec must be >= initial backoff")
        return value

    @field_validator("epg_default_timezone")
    @classmethod
    def validate_default_timezone(cls, value: str) -> str:
        """Validate fallback timezone is a known IANA zone."""
        if value == "UTC":
            return value
        try:
            ZoneInfo(value)
            return value
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Invalid timezone: {value}") from exc

    @field_validator("epg_stale_check_cron")
    @classmethod
    def validate_cron_expression(cls, value: str) -> str:
        """Validate cron expression is valid."""
        try:
            croniter(value)
            return value
        except (ValueError, KeyError) as exc:
            raise ValueError(f"Invalid cron expression '{value}': {exc}") from exc

    @field_validator("cache_database_path")
    @classmethod
    def validate_database_path(cls, value: str) -> str:
        """Validate database path is accessible."""
        if value == ":memory:":
            return value
        path = Path(value)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            return value
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access database path '{value}': {exc}") from exc

    @field_validator("catchup_fs_format")
    @classmethod
    def validate_fs_format(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in CATCHUP_FORMATS:
            raise ValueError(f"catchup_fs_format must be one of {list(CATCHUP_FORMATS)}")
        return normalized

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @model_validator(mode="after")
    def validate_epg_configuration(self):
        """Validate cross-field configuration."""
        if not self.epg_url:
            logger.warning("No EPG URL configured - loads must pass a source URL explicitly")

        if self.epg_use_mirrors and not self.epg_mirrors:
            logger.warning("Mirror fallback enabled but no mirror templates configured")

        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Configuration loaded:")
        logger.info("  EPG URL: %s", "configured" if self.epg_url else "not configured")
        logger.info(
            "  Mirrors: %s configured (%s)",
            len(self.epg_mirrors),
            "enabled" if self.epg_use_mirrors else "disabled",
        )
        logger.info(
            "  Fetch: timeout=%.1fs attempts=%s backoff initial=%.1fs multiplier=%.1f max=%.1fs",
            self.epg_fetch_timeout_sec,
            self.epg_fetch_max_attempts,
            self.epg_fetch_backoff_initial_sec,
            self.epg_fetch_backoff_multiplier,
            self.epg_fetch_backoff_max_sec,
        )
        logger.info("  Parse Chunk Size: %s", self.epg_parse_chunk_size)
        logger.info("  Fallback Timezone: %s", self.epg_default_timezone)
        logger.info("  Refresh Threshold: %sh", self.epg_refresh_threshold_hours)
        logger.info("  Staleness Check Schedule: %s", self.epg_stale_check_cron)
        logger.info(
            "  Cache: %s (%s)",
            "enabled" if self.cache_enabled else "disabled",
            self.cache_database_path,
        )
        logger.info("  Catchup Forward Buffer: %sh", self.catchup_forward_buffer_hours)
        logger.info("  Catchup fs Format: %s", self.catchup_fs_format)
        logger.info(
            "  Catchup Provider Overrides: %s",
            ", ".join(item.name for item in self.catchup_provider_overrides) or "none",
        )


settings = CustomSettings()


def setup_logging(level: str | None = None) -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
