"""Unit tests for the report status state machine."""

from __future__ import annotations

import pytest

from scamreg.errors import IllegalTransitionError, NotFoundError, PermissionDeniedError, ValidationError
from scamreg.models import Actor, EntityStatus, ReportStatus, Role
from scamreg.services.factories import build_registry
from scamreg.services.intake import ReportSubmission
from scamreg.services.lifecycle import ALLOWED_TRANSITIONS, is_allowed
from scamreg.settings import reload_settings
from scamreg.store.sql import build_engine

NARRATIVE = "Received an SMS claiming my bank account was locked and a link asking for my PIN and OTP code."
MEMBER = Actor(user_id="member_1", role=Role.MEMBER)
MODERATOR = Actor(user_id="moderator_1", role=Role.MODERATOR)


def _registry(tmp_path):
    settings = reload_settings(env="test")
    engine = build_engine(url=f"sqlite:///{tmp_path / 'registry.db'}", settings=settings)
    return build_registry(settings, engine=engine, async_index_refresh=False)


def _submit(registry, value: str = "+977-9800000001"):
    submission = ReportSubmission(
        identifier_type="phone",
        identifier_value=value,
        category="phishing",
        narrative=NARRATIVE,
        amount_lost=0,
    )
    return registry.intake.submit(submission, MEMBER)["report"]


def test_terminal_states_have_no_outgoing_edges():
    assert ALLOWED_TRANSITIONS[ReportStatus.VERIFIED] == frozenset()
    assert ALLOWED_TRANSITIONS[ReportStatus.REJECTED] == frozenset()
    assert is_allowed(ReportStatus.REQUIRES_INFO, ReportStatus.PENDING)
    assert not is_allowed(ReportStatus.PENDING, ReportStatus.ESCALATED)
    assert not is_allowed(ReportStatus.ESCALATED, ReportStatus.PENDING)


def test_verify_from_pending_records_history_and_confirms_entity(tmp_path):
    registry = _registry(tmp_path)
    report = _submit(registry)

    result = registry.state_machine.change_status(report.report_id, "verified", MODERATOR, reason="confirmed by bank")

    assert result.old_status is ReportStatus.PENDING
    assert result.new_status is ReportStatus.VERIFIED
    assert result.entity.status is EntityStatus.CONFIRMED
    history = registry.intake.history(report.report_id)
    assert [(entry.old_status, entry.new_status) for entry in history] == [("", "pending"), ("pending", "verified")]
    assert history[-1].actor_id == "moderator_1"
    assert history[-1].reason == "confirmed by bank"
    registry.close()


def test_illegal_transition_writes_nothing(tmp_path):
    registry = _registry(tmp_path)
    report = _submit(registry)
    registry.state_machine.change_status(report.report_id, ReportStatus.REJECTED, MODERATOR)
    with registry.unit_of_work.read() as session:
        entity_before = registry.entity_store.get(session, report.entity_id)

    with pytest.raises(IllegalTransitionError) as excinfo:
        registry.state_machine.change_status(report.report_id, ReportStatus.VERIFIED, MODERATOR)

    assert excinfo.value.to_dict()["fromStatus"] == "rejected"
    assert registry.intake.get_report(report.report_id).status is ReportStatus.REJECTED
    assert len(registry.intake.history(report.report_id)) == 2
    with registry.unit_of_work.read() as session:
        entity_after = registry.entity_store.get(session, report.entity_id)
    assert entity_after.version == entity_before.version
    assert entity_after.status is EntityStatus.CLEARED
    registry.close()


def test_members_cannot_change_status(tmp_path):
    registry = _registry(tmp_path)
    report = _submit(registry)

    with pytest.raises(PermissionDeniedError):
        registry.state_machine.change_status(report.report_id, ReportStatus.VERIFIED, MEMBER)

    assert registry.intake.get_report(report.report_id).status is ReportStatus.PENDING
    registry.close()


def test_unknown_report_and_status(tmp_path):
    registry = _registry(tmp_path)
    report = _submit(registry)

    with pytest.raises(NotFoundError):
        registry.state_machine.change_status("rpt-missing", ReportStatus.VERIFIED, MODERATOR)
    with pytest.raises(ValidationError) as excinfo:
        registry.state_machine.change_status(report.report_id, "archived", MODERATOR)
    assert "status" in excinfo.value.field_errors
    registry.close()


def test_requires_info_round_trip_requeues_the_report(tmp_path):
    registry = _registry(tmp_path)
    report = _submit(registry)

    registry.state_machine.change_status(report.report_id, ReportStatus.REQUIRES_INFO, MODERATOR)
    assert registry.scheduler.list_queue()["total"] == 0

    registry.state_machine.change_status(report.report_id, ReportStatus.PENDING, MODERATOR, reason="reporter replied")
    queue = registry.scheduler.list_queue()
    assert queue["total"] == 1
    assert queue["tasks"][0].report_id == report.report_id
    registry.close()


def test_terminal_flag_matches_states_without_edges(tmp_path):
    closed = {status for status, edges in ALLOWED_TRANSITIONS.items() if not edges}
    assert {status for status in ReportStatus if status.is_terminal} == closed

    registry = _registry(tmp_path)
    report = _submit(registry)
    registry.state_machine.change_status(report.report_id, "rejected", MODERATOR)

    with pytest.raises(IllegalTransitionError) as excinfo:
        registry.state_machine.change_status(report.report_id, "verified", MODERATOR)
    assert excinfo.value.details["fromStatus"] == "rejected"
    assert "already rejected" in str(excinfo.value)
    registry.close()
