"""Pure validation of budgets, deadlines and task/bid payload fields."""

from __future__ import annotations

import math
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from task_auction_service.core.exceptions import auction_error
from task_auction_service.services.clock import parse_iso, to_iso
from task_auction_service.services.lifecycle import TASK_CATEGORIES, TASK_PRIORITIES

if TYPE_CHECKING:
    from datetime import datetime

MAX_TAGS = 10
MAX_TAG_LENGTH = 30
MAX_ATTACHMENTS = 10
MAX_DELIVERABLES = 10
MAX_DELIVERABLE_LENGTH = 100
MAX_PORTFOLIO_ITEMS = 5


def is_number(value: object) -> bool:
    """Check if value is a finite int or float (not bool) that fits in a float."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def validate_budget(minimum: object, maximum: object, bounds: tuple[float, float]) -> None:
    """
    Check a proposed budget range against the policy bounds.

    Raises:
        ServiceError: INVALID_BUDGET
    """
    if not is_number(minimum) or not is_number(maximum):
        raise auction_error(
            "INVALID_BUDGET", {"reason": "budget_min and budget_max must be numbers"}
        )

    low, high = bounds
    min_value = float(minimum)  # type: ignore[arg-type]
    max_value = float(maximum)  # type: ignore[arg-type]
    if min_value > max_value:
        raise auction_error(
            "INVALID_BUDGET",
            {"reason": "Minimum budget cannot be greater than maximum budget"},
        )
    if not (low <= min_value <= high) or not (low <= max_value <= high):
        raise auction_error(
            "INVALID_BUDGET",
            {"reason": f"Budget must be between {low:g} and {high:g}"},
        )


def validate_deadline(deadline: object, now: datetime, horizon: timedelta) -> str:
    """
    Check a proposed deadline and return it normalized to UTC ISO 8601.

    Raises:
        ServiceError: INVALID_DEADLINE
    """
    if not isinstance(deadline, str):
        raise auction_error("INVALID_DEADLINE", {"reason": "Deadline must be an ISO 8601 string"})
    try:
        parsed = parse_iso(deadline)
    except ValueError as exc:
        raise auction_error(
            "INVALID_DEADLINE", {"reason": "Deadline must be a valid date"}
        ) from exc

    if parsed <= now:
        raise auction_error("INVALID_DEADLINE", {"reason": "Deadline must be in the future"})
    if parsed > now + horizon:
        raise auction_error(
            "INVALID_DEADLINE",
            {"reason": f"Deadline cannot be more than {horizon.days} days in the future"},
        )
    return to_iso(parsed)


def _invalid(field: str, reason: str) -> Exception:
    return auction_error("INVALID_PAYLOAD", {"field": field, "reason": reason})


def text_field(
    payload: dict[str, Any],
    field: str,
    *,
    min_length: int,
    max_length: int,
    required: bool,
) -> str | None:
    """Read a trimmed string field with length bounds."""
    value = payload.get(field)
    if value is None:
        if required:
            raise _invalid(field, f"Missing required field: {field}")
        return None
    if not isinstance(value, str):
        raise _invalid(field, f"{field} must be a string")
    value = value.strip()
    if not (min_length <= len(value) <= max_length):
        raise _invalid(field, f"{field} must be between {min_length} and {max_length} characters")
    return value


def choice_field(
    payload: dict[str, Any],
    field: str,
    choices: tuple[str, ...],
    *,
    required: bool,
) -> str | None:
    """Read a string field restricted to a fixed set of values."""
    value = payload.get(field)
    if value is None:
        if required:
            raise _invalid(field, f"Missing required field: {field}")
        return None
    if value not in choices:
        raise _invalid(field, f"{field} must be one of: {', '.join(choices)}")
    return str(value)


def string_list_field(
    payload: dict[str, Any],
    field: str,
    *,
    max_items: int,
    max_length: int,
) -> list[str] | None:
    """Read a list of strings; a comma separated string is split like the web form sends it."""
    value = payload.get(field)
    if value is None:
        return None
    if isinstance(value, str):
        value = [item.strip() for item in value.split(",") if item.strip()]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise _invalid(field, f"{field} must be a list of strings")
    if len(value) > max_items:
        raise _invalid(field, f"Cannot have more than {max_items} {field}")
    items = [item.strip() for item in value]
    if any(len(item) > max_length for item in items):
        raise _invalid(field, f"Each item in {field} cannot exceed {max_length} characters")
    return items


def portfolio_field(payload: dict[str, Any]) -> list[dict[str, str]] | None:
    """Read the bid portfolio: up to five {title, url, description} items."""
    value = payload.get("portfolio")
    if value is None:
        return None
    if not isinstance(value, list):
        raise _invalid("portfolio", "portfolio must be a list")
    if len(value) > MAX_PORTFOLIO_ITEMS:
        raise _invalid("portfolio", f"Portfolio cannot have more than {MAX_PORTFOLIO_ITEMS} items")

    items: list[dict[str, str]] = []
    for entry in value:
        if not isinstance(entry, dict):
            raise _invalid("portfolio", "Each portfolio item must be an object")
        item: dict[str, str] = {}
        for key, limit in (("title", 100), ("url", 2048), ("description", 200)):
            raw = entry.get(key)
            if raw is None:
                continue
            if not isinstance(raw, str) or len(raw.strip()) > limit:
                raise _invalid("portfolio", f"Portfolio {key} must be a string of at most {limit}")
            item[key] = raw.strip()
        items.append(item)
    return items


def rating_field(payload: dict[str, Any]) -> int | None:
    """Read an optional 1-5 rating."""
    value = payload.get("rating")
    if value is None:
        return None
    if not is_number(value) or not (1 <= value <= 5):
        raise _invalid("rating", "Rating must be between 1 and 5")
    return int(value)


def validate_task_fields(payload: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    """
    Validate the descriptive task fields.

    With partial=True only the fields present are checked and returned,
    which is how task edits are validated.
    """
    required = not partial
    fields: dict[str, Any] = {
        "title": text_field(payload, "title", min_length=5, max_length=100, required=required),
        "description": text_field(
            payload, "description", min_length=20, max_length=2000, required=required
        ),
        "category": choice_field(payload, "category", TASK_CATEGORIES, required=required),
        "location": text_field(payload, "location", min_length=0, max_length=100, required=False),
        "priority": choice_field(payload, "priority", TASK_PRIORITIES, required=False),
        "tags": string_list_field(payload, "tags", max_items=MAX_TAGS, max_length=MAX_TAG_LENGTH),
        "attachments": string_list_field(
            payload, "attachments", max_items=MAX_ATTACHMENTS, max_length=256
        ),
    }
    return {key: value for key, value in fields.items() if value is not None}


def validate_bid_fields(payload: dict[str, Any], *, partial: bool) -> dict[str, Any]:
    """Validate the descriptive bid payload (everything but the amount)."""
    fields: dict[str, Any] = {
        "proposed_timeline": text_field(
            payload, "proposed_timeline", min_length=5, max_length=200, required=not partial
        ),
        "message": text_field(payload, "message", min_length=0, max_length=1000, required=False),
        "experience": text_field(
            payload, "experience", min_length=0, max_length=500, required=False
        ),
        "deliverables": string_list_field(
            payload,
            "deliverables",
            max_items=MAX_DELIVERABLES,
            max_length=MAX_DELIVERABLE_LENGTH,
        ),
        "portfolio": portfolio_field(payload),
    }
    return {key: value for key, value in fields.items() if value is not None}


def validate_amount(amount: object, budget_min: float, budget_max: float) -> float:
    """
    Check a bid amount against the task budget.

    Raises:
        ServiceError: INVALID_PAYLOAD when not a number, AMOUNT_OUT_OF_RANGE otherwise
    """
    if amount is None:
        raise _invalid("amount", "Missing required field: amount")
    if not is_number(amount):
        raise _invalid("amount", "Bid amount must be a number")
    value = float(amount)  # type: ignore[arg-type]
    if value < budget_min or value > budget_max:
        raise auction_error(
            "AMOUNT_OUT_OF_RANGE",
            {"budget_min": budget_min, "budget_max": budget_max, "amount": value},
        )
    return value
