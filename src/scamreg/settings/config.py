"""Configuration loader for scamreg services using Pydantic settings."""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

ENV_VAR_NAME = "SCAMREG_ENV"
DEFAULT_ENV = "local"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_CONFIG_FILE = CONFIG_DIR / "settings.default.toml"
LOCAL_CONFIG_FILE = CONFIG_DIR / "settings.local.toml"
SETTINGS_FILE_ENV_VAR = "SCAMREG_SETTINGS_FILE"
# Capacity of the reports.amount_lost column, Numeric(14, 2).
MAX_STORED_AMOUNT = 1e12


def _resolve_env(explicit_env: str | None = None) -> str:
    """Return the active environment name.

    Args:
        explicit_env: Environment value supplied directly by the caller.

    Returns:
        A stripped environment name, falling back to ``DEFAULT_ENV``.
    """

    env = explicit_env or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV
    return env.strip()


def _env_file_candidates(env: str) -> list[Path]:
    """List candidate ``.env`` files used during settings resolution."""

    return [
        PROJECT_ROOT / ".env",
        PROJECT_ROOT / f".env.{env}",
        PROJECT_ROOT / ".env.local",
    ]


def _resolve_config_path(raw_path: str | None) -> Path | None:
    """Return an absolute config path from user input."""

    if not raw_path:
        return None
    candidate = Path(raw_path).expanduser()
    if not candidate.is_absolute():
        candidate = (PROJECT_ROOT / candidate).resolve()
    return candidate


def _config_file_priority(include_missing: bool = False) -> tuple[Path, ...]:
    """Return config files in descending precedence order."""

    ordered: list[Path] = []
    env_override = _resolve_config_path(os.getenv(SETTINGS_FILE_ENV_VAR))
    if env_override:
        ordered.append(env_override)
    ordered.append(LOCAL_CONFIG_FILE)
    ordered.append(DEFAULT_CONFIG_FILE)
    if include_missing:
        return tuple(ordered)
    return tuple(path for path in ordered if path.exists())


class TomlConfigSettingsSource(PydanticBaseSettingsSource):
    """Pydantic settings source that loads values from a TOML file."""

    def __init__(self, settings_cls: type[BaseSettings], path: Path) -> None:
        super().__init__(settings_cls)
        self.path = path
        self._data: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._data is not None:
            return self._data
        if not self.path.exists():
            self._data = {}
            return self._data
        try:
            with self.path.open("rb") as handle:
                self._data = tomllib.load(handle)
        except tomllib.TOMLDecodeError as exc:  # pragma: no cover - invalid files surface immediately
            raise ValueError(f"Invalid TOML syntax in {self.path}") from exc
        return self._data

    def __call__(self) -> dict[str, Any]:  # pragma: no cover - trivial wrapper
        return self._load()

    def get_field_value(self, field_name: str, field):  # pragma: no cover - passthrough helper
        data = self._load()
        return data.get(field_name), field_name in data


class RuntimeSettings(BaseSettings):
    """Process-level runtime controls."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOG_LEVEL", "RUNTIME__LOG_LEVEL"),
    )


class StorageSettings(BaseSettings):
    """Relational storage configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_backend: Literal["sqlite", "postgres"] = Field(
        default="sqlite",
        validation_alias=AliasChoices("STRUCTURED_BACKEND", "STORAGE__STRUCTURED_BACKEND"),
    )
    sqlite_path: Path = Field(
        default=PROJECT_ROOT / "data" / "scamreg.db",
        validation_alias=AliasChoices("SQLITE_PATH", "STORAGE__SQLITE_PATH"),
    )
    database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "STORAGE__DATABASE_URL"),
    )
    sqlite_busy_timeout_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("SQLITE_BUSY_TIMEOUT", "STORAGE__SQLITE_BUSY_TIMEOUT_SECONDS"),
    )


class ObservabilitySettings(BaseSettings):
    """Logging and metrics configuration."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    structured_logging: bool = Field(
        default=True,
        validation_alias=AliasChoices("OBS_STRUCTURED_LOGGING", "OBSERVABILITY__STRUCTURED_LOGGING"),
    )
    statsd_host: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OBS_STATSD_HOST", "OBSERVABILITY__STATSD_HOST"),
    )
    statsd_port: int = Field(
        default=8125,
        validation_alias=AliasChoices("OBS_STATSD_PORT", "OBSERVABILITY__STATSD_PORT"),
    )
    statsd_prefix: str = Field(
        default="scamreg",
        validation_alias=AliasChoices("OBS_STATSD_PREFIX", "OBSERVABILITY__STATSD_PREFIX"),
    )
    service_name: str = Field(
        default="scamreg-api",
        validation_alias=AliasChoices("OBS_SERVICE_NAME", "OBSERVABILITY__SERVICE_NAME"),
    )


class IntakeSettings(BaseSettings):
    """Report submission policy."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    narrative_min_length: int = Field(
        default=50,
        validation_alias=AliasChoices("NARRATIVE_MIN_LENGTH", "INTAKE__NARRATIVE_MIN_LENGTH"),
    )
    narrative_max_length: int = Field(
        default=5000,
        validation_alias=AliasChoices("NARRATIVE_MAX_LENGTH", "INTAKE__NARRATIVE_MAX_LENGTH"),
    )
    default_country: str | None = Field(
        default="NP",
        validation_alias=AliasChoices("DEFAULT_COUNTRY", "INTAKE__DEFAULT_COUNTRY"),
    )
    default_currency: str = Field(
        default="NPR",
        validation_alias=AliasChoices("DEFAULT_CURRENCY", "INTAKE__DEFAULT_CURRENCY"),
    )
    max_amount_lost: float = Field(
        default=1_000_000_000.0,
        validation_alias=AliasChoices("MAX_AMOUNT_LOST", "INTAKE__MAX_AMOUNT_LOST"),
    )


class RiskSettings(BaseSettings):
    """Entity risk blending weights."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    entity_max_weight: float = Field(
        default=0.6,
        validation_alias=AliasChoices("RISK_ENTITY_MAX_WEIGHT", "RISK__ENTITY_MAX_WEIGHT"),
    )
    entity_average_weight: float = Field(
        default=0.4,
        validation_alias=AliasChoices("RISK_ENTITY_AVERAGE_WEIGHT", "RISK__ENTITY_AVERAGE_WEIGHT"),
    )
    high_risk_threshold: int = Field(
        default=80,
        validation_alias=AliasChoices("RISK_HIGH_THRESHOLD", "RISK__HIGH_RISK_THRESHOLD"),
    )


class ModerationSettings(BaseSettings):
    """Queue scheduling, SLA, and aggregate retry policy."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    sla_hours: float = Field(
        default=24.0,
        validation_alias=AliasChoices("MODERATION_SLA_HOURS", "MODERATION__SLA_HOURS"),
    )
    age_cap_hours: float = Field(
        default=48.0,
        validation_alias=AliasChoices("MODERATION_AGE_CAP_HOURS", "MODERATION__AGE_CAP_HOURS"),
    )
    age_weight: float = Field(
        default=0.5,
        validation_alias=AliasChoices("MODERATION_AGE_WEIGHT", "MODERATION__AGE_WEIGHT"),
    )
    queue_page_size: int = Field(
        default=50,
        validation_alias=AliasChoices("MODERATION_QUEUE_PAGE_SIZE", "MODERATION__QUEUE_PAGE_SIZE"),
    )
    aggregate_max_retries: int = Field(
        default=5,
        validation_alias=AliasChoices("MODERATION_AGGREGATE_MAX_RETRIES", "MODERATION__AGGREGATE_MAX_RETRIES"),
    )
    aggregate_retry_backoff_ms: float = Field(
        default=20.0,
        validation_alias=AliasChoices(
            "MODERATION_AGGREGATE_RETRY_BACKOFF_MS",
            "MODERATION__AGGREGATE_RETRY_BACKOFF_MS",
        ),
    )


class SearchSettings(BaseSettings):
    """Ranking weights and search limits."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    relevance_weight: float = Field(
        default=0.5,
        validation_alias=AliasChoices("SEARCH_RELEVANCE_WEIGHT", "SEARCH__RELEVANCE_WEIGHT"),
    )
    risk_weight: float = Field(
        default=0.3,
        validation_alias=AliasChoices("SEARCH_RISK_WEIGHT", "SEARCH__RISK_WEIGHT"),
    )
    recency_weight: float = Field(
        default=0.2,
        validation_alias=AliasChoices("SEARCH_RECENCY_WEIGHT", "SEARCH__RECENCY_WEIGHT"),
    )
    recency_half_life_days: float = Field(
        default=30.0,
        validation_alias=AliasChoices("SEARCH_RECENCY_HALF_LIFE_DAYS", "SEARCH__RECENCY_HALF_LIFE_DAYS"),
    )
    bm25_k1: float = Field(
        default=1.2,
        validation_alias=AliasChoices("SEARCH_BM25_K1", "SEARCH__BM25_K1"),
    )
    bm25_b: float = Field(
        default=0.75,
        validation_alias=AliasChoices("SEARCH_BM25_B", "SEARCH__BM25_B"),
    )
    default_limit: int = Field(
        default=20,
        validation_alias=AliasChoices("SEARCH_DEFAULT_LIMIT", "SEARCH__DEFAULT_LIMIT"),
    )
    max_limit: int = Field(
        default=100,
        validation_alias=AliasChoices("SEARCH_MAX_LIMIT", "SEARCH__MAX_LIMIT"),
    )
    autocomplete_min_length: int = Field(
        default=2,
        validation_alias=AliasChoices("SEARCH_AUTOCOMPLETE_MIN_LENGTH", "SEARCH__AUTOCOMPLETE_MIN_LENGTH"),
    )
    autocomplete_max_limit: int = Field(
        default=50,
        validation_alias=AliasChoices("SEARCH_AUTOCOMPLETE_MAX_LIMIT", "SEARCH__AUTOCOMPLETE_MAX_LIMIT"),
    )
    suggestion_count: int = Field(
        default=5,
        validation_alias=AliasChoices("SEARCH_SUGGESTION_COUNT", "SEARCH__SUGGESTION_COUNT"),
    )
    trending_window_days: int = Field(
        default=7,
        validation_alias=AliasChoices("SEARCH_TRENDING_WINDOW_DAYS", "SEARCH__TRENDING_WINDOW_DAYS"),
    )
    async_refresh: bool = Field(
        default=True,
        validation_alias=AliasChoices("SEARCH_ASYNC_REFRESH", "SEARCH__ASYNC_REFRESH"),
    )
    sync_interval_seconds: float = Field(
        default=5.0,
        validation_alias=AliasChoices("SEARCH_SYNC_INTERVAL_SECONDS", "SEARCH__SYNC_INTERVAL_SECONDS"),
    )
    sync_overlap_seconds: float = Field(
        default=30.0,
        validation_alias=AliasChoices("SEARCH_SYNC_OVERLAP_SECONDS", "SEARCH__SYNC_OVERLAP_SECONDS"),
    )


class Settings(BaseSettings):
    """Top-level configuration model with nested sections for each subsystem."""

    env: str = Field(
        default_factory=lambda: _resolve_env(),
        validation_alias=AliasChoices("ENV", "ENVIRONMENT", "RUNTIME__ENV"),
    )
    project_root: Path = Field(default=PROJECT_ROOT)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    intake: IntakeSettings = Field(default_factory=IntakeSettings)
    risk: RiskSettings = Field(default_factory=RiskSettings)
    moderation: ModerationSettings = Field(default_factory=ModerationSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    env_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)
    config_files: tuple[Path, ...] = Field(default_factory=tuple, exclude=True)

    model_config = SettingsConfigDict(
        env_prefix="SCAMREG_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Extend settings sources with TOML-based config files."""

        config_sources = [TomlConfigSettingsSource(settings_cls, path) for path in _config_file_priority()]
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            *config_sources,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths once the model is initialised."""

        if not self.storage.sqlite_path.is_absolute():
            storage_update = {"sqlite_path": (self.project_root / self.storage.sqlite_path).resolve()}
            object.__setattr__(self, "storage", self.storage.model_copy(update=storage_update))

        return self

    @model_validator(mode="after")
    def _apply_environment_overrides(self) -> "Settings":
        """Force environment-specific defaults after basic resolution."""

        env_name = self.env.lower()

        if env_name in {"local", "test"}:
            # Local runs log readable lines instead of JSON payloads.
            observability_update = {"structured_logging": False}
            object.__setattr__(
                self, "observability", self.observability.model_copy(update=observability_update)
            )

        if env_name == "test":
            # Tests pull index changes explicitly.
            object.__setattr__(self, "search", self.search.model_copy(update={"sync_interval_seconds": 0.0}))

        if self.storage.database_url and self.storage.database_url.startswith("postgresql"):
            object.__setattr__(
                self, "storage", self.storage.model_copy(update={"structured_backend": "postgres"})
            )

        country = self.intake.default_country
        if country is not None:
            normalized_country = country.strip().upper() or None
            if normalized_country != country:
                object.__setattr__(
                    self, "intake", self.intake.model_copy(update={"default_country": normalized_country})
                )

        return self

    @model_validator(mode="after")
    def _validate_policy(self) -> "Settings":
        """Reject policy combinations that would break scoring invariants."""

        if self.intake.narrative_min_length > self.intake.narrative_max_length:
            raise ValueError("intake.narrative_min_length must not exceed intake.narrative_max_length")
        if not 0 < self.intake.max_amount_lost < MAX_STORED_AMOUNT:
            raise ValueError(f"intake.max_amount_lost must be positive and below {MAX_STORED_AMOUNT:.0f}")
        blend = (self.risk.entity_max_weight, self.risk.entity_average_weight)
        if any(weight < 0 for weight in blend) or sum(blend) > 1.0 + 1e-9:
            raise ValueError("risk weights must be non-negative and sum to at most 1.0")
        ranking = (self.search.relevance_weight, self.search.risk_weight, self.search.recency_weight)
        if any(weight < 0 for weight in ranking):
            raise ValueError("search weights must be non-negative")
        if self.search.recency_half_life_days <= 0:
            raise ValueError("search.recency_half_life_days must be positive")
        return self

    @property
    def log_level(self) -> str:
        """str: Effective logging level for the running process."""

        return self.runtime.log_level


def _load_settings(env: str | None = None) -> Settings:
    """Load settings with optional environment override.

    Args:
        env: Environment name supplied programmatically.

    Returns:
        Fully parsed :class:`Settings` instance with env files applied.
    """

    resolved_env = _resolve_env(env)
    candidate_files = [path for path in _env_file_candidates(resolved_env) if path.exists()]
    config_files = _config_file_priority()
    return Settings(
        _env_file=[str(path) for path in candidate_files],
        _env_file_encoding="utf-8",
        env=resolved_env,
        env_files=tuple(candidate_files),
        config_files=config_files,
    )


@lru_cache(maxsize=1)
def get_settings(env: str | None = None) -> Settings:
    """Return cached settings for the requested environment."""

    return _load_settings(env)


def reload_settings(env: str | None = None) -> Settings:
    """Clear the cached settings and reload from disk."""

    get_settings.cache_clear()
    return get_settings(env)


__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "PROJECT_ROOT",
    "ENV_VAR_NAME",
]
