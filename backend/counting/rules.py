"""
Counting Rules — derived line state, role capabilities, field validation.

Every write path that touches actual_qty or expected_qty calls
derive_diff_status(); status is never patched on its own.

Capabilities are a static role -> allowed set table, checked once per
operation. Adding a role or a field is an edit to these tables only.
"""

from enum import Enum
from typing import NamedTuple

from core.config import get_settings
from counting.errors import Forbidden, ValidationFailed


class LineStatus(str, Enum):
    PENDING = "PENDING"
    MATCHED = "MATCHED"
    MISSING = "MISSING"
    OVER = "OVER"


class ReportStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DiscrepancyReason(str, Enum):
    DAMAGED = "DAMAGED"
    EXPIRED = "EXPIRED"
    LOST = "LOST"
    MISCOUNT = "MISCOUNT"
    IN_TRANSIT = "IN_TRANSIT"
    OTHER = "OTHER"


SHIFTS = (1, 2, 3)

# ── Capability tables ─────────────────────────────────────────────────────

COUNTER_FIELDS = frozenset({"actual_qty", "note", "discrepancy_reason"})
PRIVILEGED_FIELDS = COUNTER_FIELDS | {"expected_qty", "status"}

FIELD_CAPABILITIES: dict[str, frozenset[str]] = {
    "EMPLOYEE": COUNTER_FIELDS,
    "MANAGER": COUNTER_FIELDS,
    "ADMIN": PRIVILEGED_FIELDS,
}

COUNTER_ACTIONS = frozenset({"count", "sync_stock", "submit", "comment"})

ACTION_CAPABILITIES: dict[str, frozenset[str]] = {
    "EMPLOYEE": COUNTER_ACTIONS,
    "MANAGER": COUNTER_ACTIONS | {"review", "distribute", "view_reports"},
    "ADMIN": COUNTER_ACTIONS
    | {"review", "distribute", "view_reports", "reset_distribution", "delete_report", "commit_stock"},
}

REVIEWER_ROLES = frozenset(role for role, actions in ACTION_CAPABILITIES.items() if "review" in actions)


class DiffStatus(NamedTuple):
    diff: int | None
    status: LineStatus


def derive_diff_status(actual_qty: int | None, expected_qty: int | None) -> DiffStatus:
    """Derive (diff, status) from the counted and expected quantities."""
    if actual_qty is None:
        return DiffStatus(None, LineStatus.PENDING)
    diff = actual_qty - (expected_qty or 0)
    if diff == 0:
        return DiffStatus(0, LineStatus.MATCHED)
    if diff < 0:
        return DiffStatus(diff, LineStatus.MISSING)
    return DiffStatus(diff, LineStatus.OVER)


def require_field_capability(field: str, role: str | None) -> None:
    allowed = FIELD_CAPABILITIES.get((role or "").upper(), frozenset())
    if field not in allowed:
        raise Forbidden(f"Role '{role or 'unknown'}' may not write '{field}'", field=field, role=role)


def require_action(action: str, role: str | None) -> None:
    allowed = ACTION_CAPABILITIES.get((role or "").upper(), frozenset())
    if action not in allowed:
        raise Forbidden(f"Role '{role or 'unknown'}' may not {action.replace('_', ' ')}", action=action, role=role)


def require_reviewer(role: str | None) -> None:
    if (role or "").upper() not in REVIEWER_ROLES:
        raise Forbidden("Only ADMIN/MANAGER may review inventory reports", role=role)


def validate_shift(shift: int) -> int:
    if shift not in SHIFTS:
        raise ValidationFailed(f"Invalid shift {shift!r} (expected 1-3)", shift=shift)
    return shift


def validate_quantity(field: str, value) -> int | None:
    """Coerce a quantity write. None or empty string clears the value."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationFailed(f"Invalid {field}: {value!r}", field=field)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationFailed(f"{field} must be a whole number", field=field)
        value = int(value)
    elif isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ValidationFailed(f"Invalid {field}: {value!r}", field=field) from None
    elif not isinstance(value, int):
        raise ValidationFailed(f"Invalid {field}: {value!r}", field=field)

    max_qty = get_settings().max_actual_qty
    if value < 0 or value > max_qty:
        raise ValidationFailed(f"{field} must be between 0 and {max_qty}", field=field, value=value)
    return value


def validate_note(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailed("note must be text", field="note")
    max_len = get_settings().max_note_length
    if len(value) > max_len:
        raise ValidationFailed(f"note exceeds {max_len} characters", field="note", length=len(value))
    return value


def validate_reason(value) -> str | None:
    if value is None or value == "":
        return None
    try:
        return DiscrepancyReason(value).value
    except ValueError:
        raise ValidationFailed(f"Invalid discrepancy_reason: {value!r}", field="discrepancy_reason") from None
