"""Unit tests for registry events and counters."""

from __future__ import annotations

import json
import logging

import pytest

from scamreg.models import Actor, ReportStatus, Role
from scamreg.observability import (
    Observability,
    counter_value,
    get_observability,
    reset_observability_cache,
    statsd_line,
)
from scamreg.services.factories import build_registry
from scamreg.services.intake import ReportSubmission
from scamreg.settings import reload_settings
from scamreg.store.sql import build_engine


@pytest.fixture(autouse=True)
def fresh_counters():
    reset_observability_cache()
    yield
    reset_observability_cache()


def test_structured_event_is_one_json_line(caplog):
    settings = reload_settings(env="test")
    settings = settings.model_copy(
        update={"observability": settings.observability.model_copy(update={"structured_logging": True})}
    )
    observability = Observability(settings=settings, component="lifecycle")

    with caplog.at_level(logging.INFO, logger="scamreg.events"):
        observability.emit_event("report.status_changed", report_id="rpt-1", new_status=ReportStatus.VERIFIED, note=None)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "report.status_changed"
    assert payload["component"] == "lifecycle"
    assert payload["service"] == "scamreg"
    assert payload["new_status"] == "verified"
    assert "note" not in payload


def test_plain_event_lists_fields(caplog):
    observability = get_observability(component="moderation", settings=reload_settings(env="test"))

    with caplog.at_level(logging.INFO, logger="scamreg.events"):
        observability.emit_event("moderation.claimed", task_id="tsk-1", moderator_id="moderator_1")

    assert caplog.records[-1].getMessage() == "moderation.claimed [moderation] moderator_id=moderator_1 task_id=tsk-1"


def test_counters_are_shared_and_tagged_by_component():
    settings = reload_settings(env="test")
    get_observability(component="intake", settings=settings).increment("report.rejected_submission", tags={"kind": "validation"})
    get_observability(component="intake", settings=settings).increment("report.rejected_submission", tags={"kind": "duplicate"})
    get_observability(component="search", settings=settings).increment("search.queries", value=3)

    assert counter_value("report.rejected_submission") == 2
    assert counter_value("report.rejected_submission", kind="duplicate") == 1
    assert counter_value("search.queries", component="search") == 3
    assert counter_value("search.queries", component="intake") == 0


def test_statsd_line_format():
    tags = frozenset({("component", "aggregator"), ("kind", "phone")})

    assert statsd_line("entity.linked", 1.0, "c", tags, prefix="scamreg") == (
        "scamreg.entity.linked:1|c|#component:aggregator,kind:phone"
    )
    assert statsd_line("search.query", 12.5, "ms") == "search.query:12.5|ms"


def test_submission_updates_registry_counters(tmp_path):
    settings = reload_settings(env="test")
    engine = build_engine(url=f"sqlite:///{tmp_path / 'registry.db'}", settings=settings)
    registry = build_registry(settings, engine=engine, async_index_refresh=False)
    submission = ReportSubmission(
        identifier_type="phone",
        identifier_value="+977-9800000071",
        category="investment",
        narrative="Promised forex trading profits of ten percent a week through a private signal group.",
        amount_lost=0,
    )

    registry.intake.submit(submission, Actor(user_id="member_1", role=Role.MEMBER))

    assert counter_value("moderation.enqueued", component="moderation") == 1
    registry.close()
