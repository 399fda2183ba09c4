"""Unit tests covering environment variable overrides for settings."""

from __future__ import annotations

import textwrap

import pytest

from scamreg.settings.config import PROJECT_ROOT, Settings, reload_settings


def _clear_env(monkeypatch: object, *names: str) -> None:
    """Remove env vars for every alias and prefixed variant."""

    for name in names:
        monkeypatch.delenv(name, raising=False)
        if name.startswith("SCAMREG_"):
            monkeypatch.delenv(name.removeprefix("SCAMREG_"), raising=False)
        else:
            monkeypatch.delenv(f"SCAMREG_{name}", raising=False)


def test_search_weights_env_override(monkeypatch: object) -> None:
    """Search ranking weights follow SCAMREG_SEARCH__* variables."""

    _clear_env(monkeypatch, "SCAMREG_SEARCH__RISK_WEIGHT", "SEARCH_RISK_WEIGHT", "SEARCH__RISK_WEIGHT")

    default_settings = reload_settings(env="test")
    assert default_settings.search.relevance_weight == pytest.approx(0.5)
    assert default_settings.search.risk_weight == pytest.approx(0.3)
    assert default_settings.search.recency_weight == pytest.approx(0.2)

    monkeypatch.setenv("SCAMREG_SEARCH__RISK_WEIGHT", "0.45")
    overridden = reload_settings(env="test")
    assert overridden.search.risk_weight == pytest.approx(0.45)


def test_narrative_bounds_env_override(monkeypatch: object) -> None:
    _clear_env(
        monkeypatch,
        "SCAMREG_INTAKE__NARRATIVE_MIN_LENGTH",
        "NARRATIVE_MIN_LENGTH",
        "INTAKE__NARRATIVE_MIN_LENGTH",
    )
    assert reload_settings(env="test").intake.narrative_min_length == 50

    monkeypatch.setenv("SCAMREG_INTAKE__NARRATIVE_MIN_LENGTH", "500")
    assert reload_settings(env="test").intake.narrative_min_length == 500


def test_default_country_is_uppercased(monkeypatch: object) -> None:
    _clear_env(monkeypatch, "SCAMREG_INTAKE__DEFAULT_COUNTRY", "DEFAULT_COUNTRY", "INTAKE__DEFAULT_COUNTRY")
    monkeypatch.setenv("SCAMREG_INTAKE__DEFAULT_COUNTRY", " in ")

    settings = reload_settings(env="test")
    assert settings.intake.default_country == "IN"


def test_invalid_blend_weights_are_rejected(monkeypatch: object) -> None:
    _clear_env(monkeypatch, "SCAMREG_RISK__ENTITY_MAX_WEIGHT", "RISK_ENTITY_MAX_WEIGHT", "RISK__ENTITY_MAX_WEIGHT")
    monkeypatch.setenv("SCAMREG_RISK__ENTITY_MAX_WEIGHT", "0.9")

    with pytest.raises(ValueError):
        reload_settings(env="test")

    monkeypatch.delenv("SCAMREG_RISK__ENTITY_MAX_WEIGHT")


def test_local_env_disables_structured_logging(monkeypatch: object) -> None:
    _clear_env(
        monkeypatch,
        "SCAMREG_OBSERVABILITY__STRUCTURED_LOGGING",
        "OBS_STRUCTURED_LOGGING",
        "OBSERVABILITY__STRUCTURED_LOGGING",
    )
    assert reload_settings(env="local").observability.structured_logging is False


def test_postgres_url_switches_backend(monkeypatch: object) -> None:
    _clear_env(monkeypatch, "SCAMREG_STORAGE__DATABASE_URL", "DATABASE_URL", "STORAGE__DATABASE_URL")
    monkeypatch.setenv("SCAMREG_STORAGE__DATABASE_URL", "postgresql+psycopg://scamreg@localhost/scamreg")

    settings = reload_settings(env="test")
    assert settings.storage.structured_backend == "postgres"


def test_settings_file_override(monkeypatch: object, tmp_path) -> None:
    """A TOML file named by SCAMREG_SETTINGS_FILE takes precedence over the defaults."""

    _clear_env(monkeypatch, "SCAMREG_MODERATION__SLA_HOURS", "MODERATION_SLA_HOURS", "MODERATION__SLA_HOURS")
    config_path = tmp_path / "settings.toml"
    config_path.write_text(
        textwrap.dedent(
            """
            [moderation]
            sla_hours = 12

            [search]
            recency_half_life_days = 7
            """
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("SCAMREG_SETTINGS_FILE", str(config_path))

    settings = reload_settings(env="test")
    assert settings.moderation.sla_hours == 12
    assert settings.search.recency_half_life_days == 7
    assert config_path in settings.config_files
    assert settings.project_root == PROJECT_ROOT
    monkeypatch.delenv("SCAMREG_SETTINGS_FILE")


def test_settings_carry_no_unused_sections(monkeypatch: object, tmp_path) -> None:
    """Stale ``[api]`` tables and ``data_dir`` keys in old config files are ignored."""

    config_path = tmp_path / "settings.toml"
    config_path.write_text('data_dir = "/var/lib/scamreg"\n\n[api]\nbase_url = "http://localhost:9000"\n', encoding="utf-8")
    monkeypatch.setenv("SCAMREG_SETTINGS_FILE", str(config_path))

    settings = reload_settings(env="test")
    assert "api" not in Settings.model_fields
    assert "data_dir" not in Settings.model_fields
    assert not hasattr(settings, "api_base_url")
    assert not hasattr(settings, "is_local")
    monkeypatch.delenv("SCAMREG_SETTINGS_FILE")


def test_index_sync_env_override(monkeypatch: object) -> None:
    _clear_env(
        monkeypatch,
        "SCAMREG_SEARCH__SYNC_INTERVAL_SECONDS",
        "SEARCH_SYNC_INTERVAL_SECONDS",
        "SEARCH__SYNC_INTERVAL_SECONDS",
    )
    assert reload_settings(env="dev").search.sync_interval_seconds == pytest.approx(5.0)
    assert reload_settings(env="test").search.sync_interval_seconds == 0

    monkeypatch.setenv("SCAMREG_SEARCH__SYNC_INTERVAL_SECONDS", "2.5")
    assert reload_settings(env="dev").search.sync_interval_seconds == pytest.approx(2.5)
    monkeypatch.delenv("SCAMREG_SEARCH__SYNC_INTERVAL_SECONDS")
    reload_settings(env="test")
