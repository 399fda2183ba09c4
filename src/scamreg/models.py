"""Domain vocabulary and record types for the scam registry."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class IdentifierType(str, Enum):
    """Contact surfaces a scam can be reported against."""

    PHONE = "phone"
    EMAIL = "email"
    HANDLE = "handle"
    URL = "url"
    OTHER = "other"


class Category(str, Enum):
    """Fixed scam category enumeration."""

    PHISHING = "phishing"
    ROMANCE = "romance"
    INVESTMENT = "investment"
    TECH_SUPPORT = "tech_support"
    LOTTERY = "lottery"
    JOB_SCAM = "job_scam"
    RENTAL = "rental"
    CRYPTO = "crypto"
    FAKE_GOODS = "fake_goods"
    EMPLOYMENT = "employment"
    OTHER = "other"


class Channel(str, Enum):
    """How the reporter was first contacted."""

    CALL = "call"
    SMS = "sms"
    EMAIL = "email"
    SOCIAL_DM = "social_dm"
    SOCIAL_MEDIA = "social_media"
    WEBSITE = "website"
    APP = "app"
    OTHER = "other"


class ReportStatus(str, Enum):
    """Lifecycle states of a report."""

    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    VERIFIED = "verified"
    REJECTED = "rejected"
    REQUIRES_INFO = "requires_info"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in (ReportStatus.VERIFIED, ReportStatus.REJECTED)


class EntityStatus(str, Enum):
    """Aggregate verdict for an entity."""

    ALLEGED = "alleged"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"
    CLEARED = "cleared"


class TaskStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    COMPLETED = "completed"


class TaskKind(str, Enum):
    REVIEW = "review"
    ESCALATION = "escalation"


class Decision(str, Enum):
    """Moderator decisions and the report status each one drives."""

    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"
    REQUIRE_INFO = "require_info"

    @property
    def target_status(self) -> ReportStatus:
        return DECISION_TARGETS[self]


DECISION_TARGETS: Dict[Decision, ReportStatus] = {
    Decision.APPROVE: ReportStatus.VERIFIED,
    Decision.REJECT: ReportStatus.REJECTED,
    Decision.ESCALATE: ReportStatus.ESCALATED,
    Decision.REQUIRE_INFO: ReportStatus.REQUIRES_INFO,
}


class Role(str, Enum):
    MEMBER = "member"
    MODERATOR = "moderator"
    ADMIN = "admin"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive timestamps read back from SQLite."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True)
class Actor:
    """Authenticated caller as resolved by the API layer."""

    user_id: str
    role: Role = Role.MEMBER

    @property
    def can_moderate(self) -> bool:
        return self.role in (Role.MODERATOR, Role.ADMIN)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(slots=True)
class Identifier:
    """Typed identifier with its canonical form."""

    type: IdentifierType
    raw_value: str
    normalized_value: str
    country_code: Optional[str] = None


@dataclass(slots=True)
class Report:
    """Persisted scam report."""

    report_id: str
    identifier: Identifier
    category: Category
    narrative: str
    amount_lost: float
    currency: str
    channel: Optional[Channel]
    incident_date: Optional[datetime]
    risk_score: int
    status: ReportStatus
    reporter_id: str
    entity_id: Optional[str]
    evidence_refs: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.report_id,
            "identifier_type": self.identifier.type.value,
            "identifier_value": self.identifier.raw_value,
            "normalized_identifier": self.identifier.normalized_value,
            "country_code": self.identifier.country_code,
            "category": self.category.value,
            "narrative": self.narrative,
            "amount_lost": self.amount_lost,
            "currency": self.currency,
            "incident_channel": self.channel.value if self.channel else None,
            "incident_date": self.incident_date,
            "risk_score": self.risk_score,
            "status": self.status.value,
            "reporter_id": self.reporter_id,
            "entity_id": self.entity_id,
            "evidence_refs": list(self.evidence_refs),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(slots=True)
class Entity:
    """Aggregate profile of every report sharing one normalized identifier."""

    entity_id: str
    primary_identifier: str
    identifier_type: IdentifierType
    display_name: str
    risk_score: int
    status: EntityStatus
    report_count: int
    total_amount_lost: float
    tags: List[str]
    version: int
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["id"] = payload.pop("entity_id")
        payload["identifier_type"] = self.identifier_type.value
        payload["status"] = self.status.value
        return payload


@dataclass(slots=True)
class ModerationTask:
    """Queued unit of moderation work; ``priority_score`` is filled on read."""

    task_id: str
    report_id: str
    kind: TaskKind
    status: TaskStatus
    risk_score: int
    enqueued_at: datetime
    sla_deadline: datetime
    assigned_to: Optional[str] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    priority_override: Optional[float] = None
    priority_score: float = 0.0
    priority: str = "low"
    is_overdue: bool = False
    report: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["id"] = payload.pop("task_id")
        payload["kind"] = self.kind.value
        payload["status"] = self.status.value
        return payload


@dataclass(slots=True)
class StatusHistoryEntry:
    entry_id: str
    report_id: str
    old_status: str
    new_status: str
    actor_id: str
    reason: Optional[str]
    notes: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["id"] = payload.pop("entry_id")
        payload["timestamp"] = payload.pop("created_at")
        return payload


@dataclass(slots=True)
class DecisionRecord:
    decision_id: str
    task_id: str
    report_id: str
    decision: Decision
    moderator_id: str
    reason: Optional[str]
    notes: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.decision_id,
            "task_id": self.task_id,
            "report_id": self.report_id,
            "decision": self.decision.value,
            "moderator_id": self.moderator_id,
            "reason": self.reason,
            "notes": self.notes,
            "timestamp": self.created_at,
        }


__all__ = [
    "Actor",
    "Category",
    "Channel",
    "DECISION_TARGETS",
    "Decision",
    "DecisionRecord",
    "Entity",
    "EntityStatus",
    "Identifier",
    "IdentifierType",
    "ModerationTask",
    "Report",
    "ReportStatus",
    "Role",
    "StatusHistoryEntry",
    "TaskKind",
    "TaskStatus",
    "ensure_utc",
    "utcnow",
]
