"""Error taxonomy shared by the registry services and the HTTP layer.

Every error carries a stable ``kind`` string and a human-readable ``reason``.
The API layer renders them as ``{"error": {"kind": ..., "reason": ..., **details}}``
using :attr:`RegistryError.http_status`.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping


class RegistryError(Exception):
    """Base class for failures surfaced by the registry core."""

    kind = "registry_error"
    http_status = 500

    def __init__(self, reason: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable payload describing the error."""

        return {"kind": self.kind, "reason": self.reason, **self.details}


class ValidationError(RegistryError):
    """Bad or missing input; ``field_errors`` maps field name to message."""

    kind = "validation"
    http_status = 422

    def __init__(
        self,
        reason: str,
        *,
        field_errors: Mapping[str, str] | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        self.field_errors: Dict[str, str] = dict(field_errors or {})
        if self.field_errors:
            merged["fields"] = dict(self.field_errors)
        super().__init__(reason, details=merged)


class InvalidIdentifierError(ValidationError):
    """An identifier value could not be parsed for its declared type."""

    kind = "invalid_identifier"

    def __init__(self, identifier_type: str, raw_value: str, reason: str) -> None:
        super().__init__(
            reason,
            field_errors={"identifierValue": reason},
            details={"identifierType": identifier_type},
        )
        self.identifier_type = identifier_type
        self.raw_value = raw_value


class IllegalTransitionError(RegistryError):
    """The state machine refused a status edge."""

    kind = "illegal_transition"
    http_status = 409

    def __init__(self, old_status: str, new_status: str, reason: str | None = None) -> None:
        message = reason or f"Transition {old_status or '<none>'} -> {new_status} is not allowed"
        super().__init__(message, details={"fromStatus": old_status, "toStatus": new_status})
        self.old_status = old_status
        self.new_status = new_status


class ConflictError(RegistryError):
    """A claim race or an aggregate write collision."""

    kind = "conflict"
    http_status = 409

    def __init__(self, reason: str, *, current_assignee: str | None = None) -> None:
        details = {"currentAssignee": current_assignee} if current_assignee is not None else None
        super().__init__(reason, details=details)
        self.current_assignee = current_assignee


class NotFoundError(RegistryError):
    """A report, entity, or task does not exist."""

    kind = "not_found"
    http_status = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} {resource_id} not found", details={"resource": resource, "id": resource_id})
        self.resource = resource
        self.resource_id = resource_id


class PermissionDeniedError(RegistryError):
    """The actor's role does not allow the requested operation."""

    kind = "permission_denied"
    http_status = 403


class ConsistencyViolationError(RegistryError):
    """An entity expected to exist is missing while linked reports remain."""

    kind = "consistency_violation"
    http_status = 500


__all__ = [
    "RegistryError",
    "ValidationError",
    "InvalidIdentifierError",
    "IllegalTransitionError",
    "ConflictError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConsistencyViolationError",
]
