"""Configuration management for the Special Dates application."""

from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models.special_date import Category
from .utils.exceptions import ConfigurationError

load_dotenv()


class M365Config(BaseSettings):
    """Microsoft 365 configuration for calendar import."""

    tenant_id: Optional[str] = Field(None, validation_alias="M365_TENANT_ID")
    client_id: Optional[str] = Field(None, validation_alias="M365_CLIENT_ID")
    client_secret: Optional[str] = Field(None, validation_alias="M365_CLIENT_SECRET")
    authority: Optional[str] = Field(None, validation_alias="M365_AUTHORITY")
    primary_email: Optional[str] = Field(None, validation_alias="M365_PRIMARY_EMAIL")
    # Import only reads calendars
    scopes: list[str] = Field(default=["Calendars.Read"])

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_parse_none_str="",  # Treat empty string as None
    )


class AppConfig(BaseSettings):
    """Application configuration."""

    m365: M365Config = Field(default_factory=M365Config)

    # Owner and storage
    owner_id: str = Field(default="local", validation_alias="OWNER_ID")
    data_file: Path = Field(
        default=Path("special_dates.json"), validation_alias="DATA_FILE"
    )
    import_config_file: Path = Field(
        default=Path("special_dates.yaml"), validation_alias="IMPORT_CONFIG_FILE"
    )

    # Defines which calendar day is "today"
    timezone: str = Field(default="UTC", validation_alias="TIMEZONE")

    # Token cache
    token_cache_path: Path = Field(
        default=Path(".token_cache"), validation_alias="TOKEN_CACHE_PATH"
    )
    token_cache_encrypted: bool = Field(
        default=True, validation_alias="TOKEN_CACHE_ENCRYPTED"
    )

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, validation_alias="LOG_FILE")

    # Sync settings
    sync_lookback_days: int = Field(default=365, validation_alias="SYNC_LOOKBACK_DAYS")
    sync_lookahead_days: int = Field(default=365, validation_alias="SYNC_LOOKAHEAD_DAYS")
    sync_fetch_timeout: float = Field(default=30.0, validation_alias="SYNC_FETCH_TIMEOUT")

    # Views
    upcoming_days: int = Field(default=30, validation_alias="UPCOMING_DAYS")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


DEFAULT_KEYWORDS: dict[Category, list[str]] = {
    Category.BIRTHDAY: ["birthday", "doğum"],
    Category.ANNIVERSARY: ["anniversary", "yıldönümü", "yıl dönümü"],
    Category.WEDDING: ["wedding", "düğün"],
    Category.GRADUATION: ["graduation", "mezuniyet"],
}


class ImportConfig:
    """Calendar import rules loaded from YAML.

    Example::

        import:
          strategy: birthdays   # or "all"
          keywords:
            birthday: [birthday, doğum]
            anniversary: [anniversary]
          skip_titles: ["Test event"]
    """

    def __init__(self, config_path: Optional[Path] = None):
        self.strategy: str = "birthdays"
        self.keywords: dict[Category, list[str]] = {
            category: list(words) for category, words in DEFAULT_KEYWORDS.items()
        }
        self.skip_titles: list[str] = []
        self.config_path = config_path

        if config_path is not None and config_path.exists():
            self._load(config_path)

    def _load(self, config_path: Path) -> None:
        try:
            with open(config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to read {config_path}: {e}") from e

        import_data: dict[str, Any] = data.get("import", {}) or {}
        self.strategy = str(import_data.get("strategy", self.strategy)).lower()
        if self.strategy not in ("birthdays", "all"):
            raise ConfigurationError(
                f"Unknown import strategy '{self.strategy}' (expected 'birthdays' or 'all')"
            )

        for name, words in (import_data.get("keywords", {}) or {}).items():
            try:
                category = Category(name)
            except ValueError as e:
                raise ConfigurationError(f"Unknown category in keywords: {name}") from e
            if category == Category.CUSTOM:
                raise ConfigurationError("Custom occasions have no keywords")
            self.keywords[category] = [str(w).lower().strip() for w in words or []]

        self.skip_titles = [
            str(s).lower().strip() for s in import_data.get("skip_titles", []) or []
        ]


# Global config instance
config = AppConfig()
