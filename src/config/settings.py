"""Application settings with Pydantic Settings validation.

Secrets (tokens, passwords) are loaded from .env file.
Non-sensitive configuration is loaded from config/*.yaml files.
All configs are automatically merged and validated against JSON schemas.
"""

import json
from pathlib import Path
from typing import Any, Final, Literal, cast

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.config.logging_config import get_logger
from src.domain.message_queue import (
    ALERTS_QUEUE_NAME,
    DEFAULT_MAX_ATTEMPTS,
    DIGESTS_QUEUE_NAME,
)
from src.domain.models import Market
from src.services.dispatch_gate import DEFAULT_MAX_ENTRIES
from src.services.time_normalizer import DEFAULT_EXCHANGE_TZ

POSTGRES_MIN_CONNECTIONS_DEFAULT: Final[int] = 1
POSTGRES_MAX_CONNECTIONS_DEFAULT: Final[int] = 10
POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT: Final[int] = 10_000
POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT: Final[int] = 10
POSTGRES_APPLICATION_NAME_DEFAULT: Final[str] = "econ_calendar_alerts"

FOREX_FEED_URL_DEFAULT: Final[str] = (
    "https://nfs.faireconomy.media/ff_calendar_thisweek.json"
)
PROVIDER_TIMEOUT_SECONDS_DEFAULT: Final[float] = 30.0
LOOKAHEAD_DAYS_DEFAULT: Final[int] = 7
LOOKAHEAD_DAYS_MAX: Final[int] = 14

INGEST_INTERVAL_SECONDS_DEFAULT: Final[float] = 24 * 60 * 60
SCAN_INTERVAL_SECONDS_DEFAULT: Final[float] = 60.0
RETENTION_INTERVAL_SECONDS_DEFAULT: Final[float] = 6 * 60 * 60
DIGEST_INTERVAL_SECONDS_DEFAULT: Final[float] = 60.0

CONFIG_DIR: Final[Path] = Path("config")

logger = cast(Any, get_logger(__name__))


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    result = base.copy()
    for key, value in override.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_schema(schema_name: str, schema_dir: Path | None = None) -> dict[str, Any]:
    """Read ``<schema_dir>/<schema_name>.schema.json``; empty dict if absent."""
    schema_path = (schema_dir or CONFIG_DIR / "schemas") / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}
    try:
        return json.loads(schema_path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("config_schema_load_failed", schema=schema_name, error=str(e))
        return {}


def validate_config_section(
    config: dict[str, Any], schema_name: str, file_path: str = ""
) -> None:
    """Validate one YAML document against its JSON Schema, if one exists.

    Raises:
        ValueError: If the document violates the schema
    """
    schema = load_schema(schema_name)
    if not schema:
        return
    try:
        validate(instance=config, schema=schema)
    except JSONSchemaValidationError as e:
        where = f" (file: {file_path})" if file_path else ""
        raise ValueError(
            f"Config validation failed for {schema_name}{where}: {e.message}"
        ) from e


def _config_files(config_dir: Path) -> list[Path]:
    """``main.yaml`` first, then the other YAML files alphabetically."""
    if not config_dir.is_dir():
        return []
    others = sorted(p for p in config_dir.glob("*.yaml") if p.name != "main.yaml")
    main = config_dir / "main.yaml"
    return ([main] if main.exists() else []) + others


def load_all_configs(config_dir: Path | None = None) -> dict[str, Any]:
    """Merge every YAML file in the config directory (later files win).

    Unreadable files are logged and skipped. Schema violations are raised.
    """
    merged: dict[str, Any] = {}
    files = _config_files(config_dir or CONFIG_DIR)
    for path in files:
        try:
            with open(path, encoding="utf-8") as f:
                document = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning("config_file_load_failed", path=str(path), error=str(e))
            continue
        validate_config_section(document, path.stem, str(path))
        merged = deep_merge(merged, document)
        logger.debug("config_file_loaded", path=str(path))

    logger.info("config_load_complete", file_count=len(files))
    return merged


class Settings(BaseSettings):
    """Application settings.

    Secrets are loaded from .env file.
    Non-sensitive config is loaded from config/*.yaml with fallback to defaults.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === SECRETS (from .env) ===

    # Slack bot token, only needed by the alert consumer
    slack_bot_token: SecretStr | None = Field(
        default=None, description="Slack Bot User OAuth Token (from .env, optional)"
    )

    # PostgreSQL password (optional, only needed if using PostgreSQL)
    postgres_password: SecretStr | None = Field(
        default=None, description="PostgreSQL password (from .env, optional)"
    )

    # === NON-SENSITIVE CONFIG (from config/*.yaml or defaults) ===

    def __init__(self, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs()

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        database_config = config.get("database") or {}
        _assign("database_type", database_config.get("type"))
        _assign("db_path", database_config.get("path"))

        postgres_config = database_config.get("postgres") or {}
        _assign("postgres_host", postgres_config.get("host"))
        _assign("postgres_port", postgres_config.get("port"))
        _assign("postgres_database", postgres_config.get("database"))
        _assign("postgres_user", postgres_config.get("user"))

        provider_config = config.get("provider") or {}
        _assign("exchange_timezone", provider_config.get("exchange_timezone"))
        _assign("provider_source_name", provider_config.get("source_name"))
        _assign("provider_timeout_seconds", provider_config.get("timeout_seconds"))
        _assign("ingest_lookahead_days", provider_config.get("lookahead_days"))
        markets = provider_config.get("markets")
        if markets is not None:
            _assign("ingest_markets", [Market(str(m).upper()) for m in markets])
        feed_urls = provider_config.get("feed_urls")
        if isinstance(feed_urls, dict):
            _assign(
                "provider_feed_urls",
                {Market(str(k).upper()): list(v) for k, v in feed_urls.items()},
            )

        schedule_config = config.get("schedule") or {}
        _assign("ingest_interval_seconds", schedule_config.get("ingest_interval_seconds"))
        _assign("scan_interval_seconds", schedule_config.get("scan_interval_seconds"))
        _assign(
            "retention_interval_seconds",
            schedule_config.get("retention_interval_seconds"),
        )
        _assign("digest_interval_seconds", schedule_config.get("digest_interval_seconds"))

        alerts_config = config.get("alerts") or {}
        _assign("dispatch_gate_max_entries", alerts_config.get("dispatch_gate_max_entries"))
        _assign("alerts_queue_name", alerts_config.get("queue_name"))
        _assign("digests_queue_name", alerts_config.get("digest_queue_name"))
        _assign("queue_max_attempts", alerts_config.get("max_attempts"))
        _assign(
            "queue_visibility_timeout_seconds",
            alerts_config.get("visibility_timeout_seconds"),
        )

        retention_config = config.get("retention") or {}
        _assign("retention_processed_days", retention_config.get("processed_days"))
        _assign("retention_unprocessed_days", retention_config.get("unprocessed_days"))

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))

    # Database configuration
    database_type: Literal["sqlite", "postgres"] = Field(
        default="sqlite", description="Database type: sqlite or postgres"
    )
    db_path: str = Field(
        default="data/calendar_alerts.db", description="SQLite database path"
    )
    postgres_host: str = Field(default="localhost", description="PostgreSQL host")
    postgres_port: int = Field(default=5432, description="PostgreSQL port")
    postgres_database: str = Field(
        default="calendar_alerts", description="PostgreSQL database name"
    )
    postgres_user: str = Field(default="postgres", description="PostgreSQL user")
    postgres_min_connections: int = Field(
        default=POSTGRES_MIN_CONNECTIONS_DEFAULT,
        description="Minimum number of connections in PostgreSQL pool",
    )
    postgres_max_connections: int = Field(
        default=POSTGRES_MAX_CONNECTIONS_DEFAULT,
        description="Maximum number of connections in PostgreSQL pool",
    )
    postgres_statement_timeout_ms: int = Field(
        default=POSTGRES_STATEMENT_TIMEOUT_MS_DEFAULT,
        description="PostgreSQL statement timeout in milliseconds",
    )
    postgres_connect_timeout_seconds: int = Field(
        default=POSTGRES_CONNECT_TIMEOUT_SECONDS_DEFAULT,
        description="PostgreSQL connection timeout in seconds",
    )
    postgres_application_name: str = Field(
        default=POSTGRES_APPLICATION_NAME_DEFAULT,
        description="Application name for PostgreSQL connections",
    )
    postgres_ssl_mode: str | None = Field(
        default=None,
        description="Optional SSL mode for PostgreSQL connections (e.g., require)",
    )

    # Provider / ingestion configuration
    exchange_timezone: str = Field(
        default=DEFAULT_EXCHANGE_TZ,
        description="Timezone whose wall clock is stored for every event",
    )
    provider_source_name: str = Field(
        default="ForexFactory", description="Source label stored on events"
    )
    provider_timeout_seconds: float = Field(
        default=PROVIDER_TIMEOUT_SECONDS_DEFAULT,
        gt=0,
        description="HTTP timeout for provider requests",
    )
    provider_feed_urls: dict[Market, list[str]] = Field(
        default_factory=lambda: {Market.FOREX: [FOREX_FEED_URL_DEFAULT]},
        description="Calendar feed URLs per market",
    )
    ingest_markets: list[Market] = Field(
        default_factory=lambda: [Market.FOREX],
        description="Markets fetched by the ingestion job",
    )
    ingest_lookahead_days: int = Field(
        default=LOOKAHEAD_DAYS_DEFAULT,
        ge=1,
        le=LOOKAHEAD_DAYS_MAX,
        description="Days ahead of today kept from each fetch",
    )

    # Job cadence
    ingest_interval_seconds: float = Field(
        default=INGEST_INTERVAL_SECONDS_DEFAULT, gt=0
    )
    scan_interval_seconds: float = Field(default=SCAN_INTERVAL_SECONDS_DEFAULT, gt=0)
    retention_interval_seconds: float = Field(
        default=RETENTION_INTERVAL_SECONDS_DEFAULT, gt=0
    )
    digest_interval_seconds: float = Field(
        default=DIGEST_INTERVAL_SECONDS_DEFAULT, gt=0
    )

    # Alert dispatch / queue
    dispatch_gate_max_entries: int = Field(
        default=DEFAULT_MAX_ENTRIES,
        ge=1,
        description="Tracked (event, alert class) keys before the gate clears",
    )
    alerts_queue_name: str = Field(default=ALERTS_QUEUE_NAME)
    digests_queue_name: str = Field(default=DIGESTS_QUEUE_NAME)
    queue_max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    queue_visibility_timeout_seconds: int = Field(
        default=300,
        ge=1,
        description="Seconds before an unacknowledged message is redelivered",
    )

    # Retention
    retention_processed_days: int = Field(
        default=7, ge=1, description="Age after which processed events are deleted"
    )
    retention_unprocessed_days: int = Field(
        default=30, ge=1, description="Age after which any event is deleted"
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("retention_unprocessed_days")
    @classmethod
    def _validate_retention_order(cls, value: int, info: ValidationInfo) -> int:
        processed_days = info.data.get("retention_processed_days")
        if processed_days is not None and value < processed_days:
            raise ValueError(
                "retention_unprocessed_days must be >= retention_processed_days"
            )
        return value

    def feed_urls_for(self, market: Market) -> list[str]:
        """Get configured feed URLs for a market.

        Args:
            market: Provider market

        Returns:
            Feed URLs (empty if the market is not configured)
        """
        return list(self.provider_feed_urls.get(market, []))


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
