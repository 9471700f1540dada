"""Task and bid lifecycle management and the auction state machine."""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from starlette.concurrency import run_in_threadpool

from task_auction_service.core.exceptions import auction_error
from task_auction_service.logging import get_logger
from task_auction_service.services.bid_store import (
    BID_SORTS,
    BidNotDeletableError,
    DuplicateBidError,
)
from task_auction_service.services.clock import parse_iso, to_iso
from task_auction_service.services.database import RepositoryUnavailableError, StaleStateError
from task_auction_service.services.event_publisher import (
    BID_DELETED,
    BID_UPDATED,
    TASK_DELETED,
    TASK_UPDATED,
)
from task_auction_service.services.lifecycle import (
    BID_ACCEPTED,
    BID_PENDING,
    BID_REJECTED,
    BID_STATUSES,
    BID_WITHDRAWN,
    CLOSABLE_TASK_STATUSES,
    DELETABLE_BID_STATUSES,
    TASK_ASSIGNED,
    TASK_CATEGORIES,
    TASK_CLOSED,
    TASK_COMPLETED,
    TASK_IN_PROGRESS,
    TASK_OPEN,
    TASK_STATUSES,
)
from task_auction_service.services.task_store import (
    DEADLINE_WINDOWS,
    TASK_SORTS,
    TaskFilters,
    TaskLockedError,
)
from task_auction_service.services.validators import (
    is_number,
    rating_field,
    text_field,
    validate_amount,
    validate_bid_fields,
    validate_budget,
    validate_deadline,
    validate_task_fields,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from task_auction_service.config import AuctionConfig
    from task_auction_service.services.bid_store import BidStore
    from task_auction_service.services.clock import Clock
    from task_auction_service.services.database import Database
    from task_auction_service.services.event_publisher import EventPublisher
    from task_auction_service.services.rate_limiter import RateLimiter
    from task_auction_service.services.stats_aggregator import StatsAggregator
    from task_auction_service.services.task_store import TaskStore

P = ParamSpec("P")
R = TypeVar("R")

Event = tuple[str, dict[str, Any]]

_TASK_EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "location",
        "priority",
        "tags",
        "attachments",
        "budget_min",
        "budget_max",
        "deadline",
    }
)
_BID_EDITABLE_FIELDS = frozenset(
    {"amount", "proposed_timeline", "message", "deliverables", "experience", "portfolio"}
)
_USER_BID_KINDS = ("mine", "received")
_URGENT_WINDOW = timedelta(hours=24)
_ANALYTICS_DEFAULT_DAYS = 30
_ANALYTICS_MAX_DAYS = 365


def _unknown_fields(payload: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(payload) - allowed)
    if unknown:
        raise auction_error(
            "INVALID_PAYLOAD",
            {"field": unknown[0], "reason": f"Unknown field(s): {', '.join(unknown)}"},
        )


class AuctionEngine:
    """
    Runs the task/bid state machine on top of the two stores.

    Every operation reads and checks preconditions, then applies its
    mutations inside one ``Database.transaction()``. Status changes are
    compare-and-swap, so a concurrent transition that slipped in between the
    checks and the write rolls the whole unit back. Events are published
    only after the transaction has committed.
    """

    def __init__(
        self,
        db: Database,
        task_store: TaskStore,
        bid_store: BidStore,
        rate_limiter: RateLimiter,
        stats: StatsAggregator,
        publisher: EventPublisher,
        clock: Clock,
        policy: AuctionConfig,
    ) -> None:
        self._db = db
        self._task_store = task_store
        self._bid_store = bid_store
        self._rate_limiter = rate_limiter
        self._stats = stats
        self._publisher = publisher
        self._clock = clock
        self._policy = policy
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    async def _run(self, func: Callable[P, R], *args: P.args, **kwargs: P.kwargs) -> R:
        """Run a synchronous unit of work on the threadpool."""
        try:
            return await run_in_threadpool(func, *args, **kwargs)
        except RepositoryUnavailableError as exc:
            self._logger.warning("Repository unavailable", extra={"error": str(exc)})
            raise auction_error("REPOSITORY_UNAVAILABLE") from exc

    async def _emit(self, events: list[Event]) -> None:
        """Publish committed changes; delivery failures are logged, never raised."""
        for event_name, payload in events:
            try:
                await self._publisher.publish(event_name, payload)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "Event publication failed",
                    extra={
                        "event": event_name,
                        "task_id": payload.get("task_id"),
                        "bid_id": payload.get("bid_id"),
                        "error": str(exc),
                    },
                )

    def _task_to_response(self, task: dict[str, Any], now: datetime) -> dict[str, Any]:
        """Stored task plus fields derived from the clock."""
        deadline = parse_iso(task["deadline"])
        remaining = deadline - now
        is_open = task["status"] == TASK_OPEN
        return {
            **task,
            "budget_range": f"{task['budget_min']:g} - {task['budget_max']:g}",
            "is_expired": is_open and remaining <= timedelta(0),
            "is_urgent": timedelta(0) < remaining <= _URGENT_WINDOW,
            "can_receive_bids": is_open and remaining > timedelta(0),
            "can_be_edited": is_open and task["bid_count"] == 0,
        }

    def _task_to_summary(self, task: dict[str, Any], now: datetime) -> dict[str, Any]:
        """Compact task view for list pages."""
        full = self._task_to_response(task, now)
        keys = (
            "task_id",
            "poster_id",
            "title",
            "category",
            "budget_min",
            "budget_max",
            "budget_range",
            "deadline",
            "priority",
            "status",
            "bid_count",
            "assigned_to",
            "created_at",
            "is_expired",
            "is_urgent",
        )
        return {key: full[key] for key in keys}

    @staticmethod
    def _bid_to_response(bid: dict[str, Any], now: datetime) -> dict[str, Any]:
        return {
            **bid,
            "can_be_edited": bid["status"] == BID_PENDING
            and now < parse_iso(bid["auto_withdraw_at"]),
        }

    def _require_task(self, task_id: str) -> dict[str, Any]:
        task = self._task_store.get_task(task_id)
        if task is None:
            raise auction_error("TASK_NOT_FOUND")
        return task

    def _require_bid(self, bid_id: str) -> dict[str, Any]:
        bid = self._bid_store.get_bid(bid_id)
        if bid is None:
            raise auction_error("BID_NOT_FOUND")
        return bid

    def _reload_task(self, task_id: str) -> dict[str, Any]:
        task = self._task_store.get_task(task_id)
        if task is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return task

    def _reload_bid(self, bid_id: str) -> dict[str, Any]:
        bid = self._bid_store.get_bid(bid_id)
        if bid is None:
            msg = f"Bid {bid_id} not found after update"
            raise RuntimeError(msg)
        return bid

    def _page(self, page: int, limit: int | None) -> tuple[int, int]:
        """Validate paging arguments and return (limit, offset)."""
        if limit is None:
            limit = self._policy.default_page_size
        if page < 1:
            raise auction_error("INVALID_PAYLOAD", {"field": "page", "reason": "page must be >= 1"})
        if not (1 <= limit <= self._policy.max_page_size):
            raise auction_error(
                "INVALID_PAYLOAD",
                {
                    "field": "limit",
                    "reason": f"limit must be between 1 and {self._policy.max_page_size}",
                },
            )
        return limit, (page - 1) * limit

    @staticmethod
    def _pagination(page: int, limit: int, total: int) -> dict[str, Any]:
        total_pages = (total + limit - 1) // limit
        return {
            "current_page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        }

    @staticmethod
    def _check_choice(field: str, value: str | None, choices: tuple[str, ...]) -> None:
        if value is not None and value not in choices:
            raise auction_error(
                "INVALID_PAYLOAD",
                {"field": field, "reason": f"{field} must be one of: {', '.join(choices)}"},
            )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(self, poster_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Create a new open task.

        Error precedence:
        1. RATE_LIMITED: too many tasks in the window
        2. INVALID_PAYLOAD: missing or malformed descriptive fields
        3. INVALID_BUDGET: budget range outside policy
        4. INVALID_DEADLINE: deadline not in the future or beyond the horizon
        """
        task, now = await self._run(self._create_task, poster_id, payload)
        response = self._task_to_response(task, now)
        await self._emit([(TASK_UPDATED, response)])
        return response

    def _create_task(
        self, poster_id: str, payload: dict[str, Any]
    ) -> tuple[dict[str, Any], datetime]:
        now = self._clock.now()
        with self._db.transaction():
            self._rate_limiter.check_task_creation(poster_id, now)
            fields = validate_task_fields(payload, partial=False)
            validate_budget(
                payload.get("budget_min"),
                payload.get("budget_max"),
                (self._policy.budget_min, self._policy.budget_max),
            )
            deadline = validate_deadline(
                payload.get("deadline"), now, timedelta(days=self._policy.max_deadline_days)
            )

            created_at = to_iso(now)
            task: dict[str, Any] = {
                "task_id": f"t-{uuid.uuid4()}",
                "poster_id": poster_id,
                "title": fields["title"],
                "description": fields["description"],
                "category": fields["category"],
                "budget_min": float(payload["budget_min"]),
                "budget_max": float(payload["budget_max"]),
                "deadline": deadline,
                "location": fields.get("location"),
                "tags": fields.get("tags", []),
                "attachments": fields.get("attachments", []),
                "priority": fields.get("priority", "Medium"),
                "status": TASK_OPEN,
                "bid_count": 0,
                "assigned_to": None,
                "accepted_bid_id": None,
                "created_at": created_at,
                "updated_at": created_at,
                "assigned_at": None,
                "started_at": None,
                "completed_at": None,
                "closed_at": None,
                "task_rating": None,
                "bidder_rating": None,
                "review": None,
            }
            self._task_store.insert_task(task)

        self._logger.info(
            "Task created",
            extra={"task_id": task["task_id"], "poster_id": poster_id},
        )
        return task, now

    async def get_task(self, task_id: str) -> dict[str, Any]:
        """Get a task with its derived fields and a summary of pending bids."""
        task, summary = await self._run(self._get_task, task_id)
        response = self._task_to_response(task, self._clock.now())
        response["bid_summary"] = summary
        return response

    def _get_task(self, task_id: str) -> tuple[dict[str, Any], dict[str, Any]]:
        task = self._require_task(task_id)
        return task, self._stats.pending_summary(task_id)

    async def list_tasks(
        self,
        *,
        status: str | None = None,
        category: str | None = None,
        search: str | None = None,
        location: str | None = None,
        min_budget: float | None = None,
        max_budget: float | None = None,
        deadline: str | None = None,
        exclude_expired: bool = False,
        poster_id: str | None = None,
        assigned_to: str | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """List tasks with filters, a sort key and page-based pagination."""
        self._check_choice("status", status, TASK_STATUSES)
        self._check_choice("category", category, TASK_CATEGORIES)
        self._check_choice("deadline", deadline, DEADLINE_WINDOWS)
        self._check_choice("sort", sort, tuple(TASK_SORTS))
        for field, value in (("min_budget", min_budget), ("max_budget", max_budget)):
            if value is not None and (not is_number(value) or value < 0):
                raise auction_error(
                    "INVALID_PAYLOAD",
                    {"field": field, "reason": f"{field} must be a non-negative number"},
                )
        page_size, offset = self._page(page, limit)

        filters = TaskFilters(
            status=status,
            poster_id=poster_id,
            assigned_to=assigned_to,
            category=category,
            search=search.strip() if search else None,
            location=location.strip() if location else None,
            min_budget=min_budget,
            max_budget=max_budget,
            deadline_window=deadline,
            exclude_expired=exclude_expired,
        )
        now = self._clock.now()
        tasks, total = await self._run(
            self._list_tasks, filters, now, sort or "newest", page_size, offset
        )
        return {
            "tasks": [self._task_to_summary(task, now) for task in tasks],
            "pagination": self._pagination(page, page_size, total),
        }

    def _list_tasks(
        self,
        filters: TaskFilters,
        now: datetime,
        sort: str,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        tasks = self._task_store.list_tasks(filters, now, sort, limit, offset)
        return tasks, self._task_store.count_matching(filters, now)

    async def update_task(
        self, poster_id: str, task_id: str, patch: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Edit an open task that has not received any bid.

        Error precedence:
        1. TASK_NOT_FOUND
        2. NOT_OWNER: caller is not the poster
        3. TASK_NOT_EDITABLE: not open, or bids already placed
        4. INVALID_PAYLOAD / INVALID_BUDGET / INVALID_DEADLINE
        """
        task, now = await self._run(self._update_task, poster_id, task_id, patch)
        response = self._task_to_response(task, now)
        await self._emit([(TASK_UPDATED, response)])
        return response

    def _update_task(
        self, poster_id: str, task_id: str, patch: dict[str, Any]
    ) -> tuple[dict[str, Any], datetime]:
        task = self._require_task(task_id)
        if task["poster_id"] != poster_id:
            raise auction_error("NOT_OWNER")
        if task["status"] != TASK_OPEN or task["bid_count"] > 0:
            raise auction_error("TASK_NOT_EDITABLE")

        _unknown_fields(patch, _TASK_EDITABLE_FIELDS)
        updates = validate_task_fields(patch, partial=True)

        now = self._clock.now()
        if "budget_min" in patch or "budget_max" in patch:
            budget_min = patch.get("budget_min", task["budget_min"])
            budget_max = patch.get("budget_max", task["budget_max"])
            validate_budget(
                budget_min, budget_max, (self._policy.budget_min, self._policy.budget_max)
            )
            updates["budget_min"] = float(budget_min)
            updates["budget_max"] = float(budget_max)
        if "deadline" in patch:
            updates["deadline"] = validate_deadline(
                patch["deadline"], now, timedelta(days=self._policy.max_deadline_days)
            )

        if len(updates) == 0:
            raise auction_error("INVALID_PAYLOAD", {"reason": "No updatable fields provided"})
        updates["updated_at"] = to_iso(now)

        try:
            updated_rows = self._task_store.update_task(
                task_id, updates, expected_status=TASK_OPEN
            )
        except TaskLockedError as exc:
            raise auction_error("TASK_NOT_EDITABLE", {"reason": "stale_state"}) from exc
        if updated_rows == 0:
            raise auction_error("TASK_NOT_EDITABLE", {"reason": "stale_state"})

        self._logger.info(
            "Task updated",
            extra={"task_id": task_id, "fields": sorted(updates)},
        )
        return self._reload_task(task_id), now

    async def delete_task(self, poster_id: str, task_id: str) -> dict[str, Any]:
        """
        Delete an open task that never received a bid.

        Error precedence:
        1. TASK_NOT_FOUND
        2. NOT_OWNER
        3. TASK_NOT_DELETABLE: not open, or bids exist
        """
        await self._run(self._delete_task, poster_id, task_id)
        result = {"task_id": task_id, "deleted": True}
        await self._emit([(TASK_DELETED, result)])
        return result

    def _delete_task(self, poster_id: str, task_id: str) -> None:
        task = self._require_task(task_id)
        if task["poster_id"] != poster_id:
            raise auction_error("NOT_OWNER")
        if task["status"] != TASK_OPEN or task["bid_count"] > 0:
            raise auction_error("TASK_NOT_DELETABLE")
        if self._task_store.delete_task(task_id) == 0:
            raise auction_error("TASK_NOT_DELETABLE", {"reason": "stale_state"})
        self._logger.info("Task deleted", extra={"task_id": task_id})

    async def start_task(self, assignee_id: str, task_id: str) -> dict[str, Any]:
        """
        Move an assigned task into progress.

        Error precedence:
        1. TASK_NOT_FOUND
        2. NOT_ASSIGNEE: caller is not the assigned bidder
        3. TASK_NOT_ASSIGNED: task is not in assigned status
        """
        task, now = await self._run(self._start_task, assignee_id, task_id)
        response = self._task_to_response(task, now)
        await self._emit([(TASK_UPDATED, response)])
        return response

    def _start_task(self, assignee_id: str, task_id: str) -> tuple[dict[str, Any], datetime]:
        task = self._require_task(task_id)
        if task["assigned_to"] != assignee_id:
            raise auction_error("NOT_ASSIGNEE")
        if task["status"] != TASK_ASSIGNED:
            raise auction_error("TASK_NOT_ASSIGNED")

        now = self._clock.now()
        stamp = to_iso(now)
        try:
            self._task_store.set_status(
                task_id,
                TASK_ASSIGNED,
                TASK_IN_PROGRESS,
                {"started_at": stamp, "updated_at": stamp},
            )
        except StaleStateError as exc:
            raise auction_error("TASK_NOT_ASSIGNED", {"reason": "stale_state"}) from exc

        self._logger.info("Task started", extra={"task_id": task_id, "assignee_id": assignee_id})
        return self._reload_task(task_id), now

    async def complete_task(
        self, caller_id: str, task_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Mark an in-progress task as completed, optionally with a rating and review.

        The poster's rating is stored as ``bidder_rating`` and the assignee's
        as ``task_rating``.

        Error precedence:
        1. TASK_NOT_FOUND
        2. NOT_AUTHORIZED: caller is neither poster nor assignee
        3. TASK_NOT_IN_PROGRESS
        4. INVALID_PAYLOAD: rating outside 1-5 or review too long
        """
        task, now = await self._run(self._complete_task, caller_id, task_id, payload)
        response = self._task_to_response(task, now)
        await self._emit([(TASK_UPDATED, response)])
        return response

    def _complete_task(
        self, caller_id: str, task_id: str, payload: dict[str, Any]
    ) -> tuple[dict[str, Any], datetime]:
        task = self._require_task(task_id)
        is_poster = caller_id == task["poster_id"]
        if not is_poster and caller_id != task["assigned_to"]:
            raise auction_error("NOT_AUTHORIZED")
        if task["status"] != TASK_IN_PROGRESS:
            raise auction_error("TASK_NOT_IN_PROGRESS")

        rating = rating_field(payload)
        review = text_field(payload, "review", min_length=0, max_length=500, required=False)

        now = self._clock.now()
        stamp = to_iso(now)
        extra: dict[str, Any] = {"completed_at": stamp, "updated_at": stamp}
        if rating is not None:
            extra["bidder_rating" if is_poster else "task_rating"] = rating
        if review is not None:
            extra["review"] = review

        try:
            self._task_store.set_status(task_id, TASK_IN_PROGRESS, TASK_COMPLETED, extra)
        except StaleStateError as exc:
            raise auction_error("TASK_NOT_IN_PROGRESS", {"reason": "stale_state"}) from exc

        self._logger.info(
            "Task completed",
            extra={"task_id": task_id, "completed_by": caller_id},
        )
        return self._reload_task(task_id), now

    async def close_task(self, poster_id: str, task_id: str) -> dict[str, Any]:
        """
        Close an open or completed task.

        Closing an open task rejects every pending bid in the same transaction.

        Error precedence:
        1. TASK_NOT_FOUND
        2. NOT_OWNER
        3. TASK_NOT_CLOSABLE: not open or completed
        """
        task, rejected, now = await self._run(self._close_task, poster_id, task_id)
        response = self._task_to_response(task, now)
        events: list[Event] = [(TASK_UPDATED, response)]
        events.extend((BID_UPDATED, bid) for bid in rejected)
        await self._emit(events)
        return response

    def _close_task(
        self, poster_id: str, task_id: str
    ) -> tuple[dict[str, Any], list[dict[str, Any]], datetime]:
        task = self._require_task(task_id)
        if task["poster_id"] != poster_id:
            raise auction_error("NOT_OWNER")
        current = task["status"]
        if current not in CLOSABLE_TASK_STATUSES:
            raise auction_error("TASK_NOT_CLOSABLE")

        now = self._clock.now()
        stamp = to_iso(now)
        with self._db.transaction():
            try:
                self._task_store.set_status(
                    task_id,
                    current,
                    TASK_CLOSED,
                    {"closed_at": stamp, "updated_at": stamp},
                )
            except StaleStateError as exc:
                raise auction_error("TASK_NOT_CLOSABLE", {"reason": "stale_state"}) from exc
            rejected_ids: list[str] = []
            if current == TASK_OPEN:
                rejected_ids = self._bid_store.bulk_reject_except(task_id, None, stamp)

        self._logger.info(
            "Task closed",
            extra={"task_id": task_id, "from_status": current, "rejected_bids": len(rejected_ids)},
        )
        rejected = [self._reload_bid(bid_id) for bid_id in rejected_ids]
        return self._reload_task(task_id), rejected, now

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    async def submit_bid(
        self, bidder_id: str, task_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Place a pending bid on an open task.

        Error precedence:
        1. TASK_NOT_FOUND
        2. TASK_NOT_OPEN: status is not open
        3. TASK_EXPIRED: deadline has passed
        4. SELF_BID: bidder is the poster
        5. DUPLICATE_BID: bidder already holds a live bid
        6. INVALID_PAYLOAD: malformed bid fields
        7. AMOUNT_OUT_OF_RANGE: amount outside the task budget
        8. RATE_LIMITED: pending-bid cap or window cap reached
        """
        bid, task, now = await self._run(self._submit_bid, bidder_id, task_id, payload)
        response = self._bid_to_response(bid, now)
        await self._emit(
            [(BID_UPDATED, response), (TASK_UPDATED, self._task_to_response(task, now))]
        )
        return response

    def _submit_bid(
        self, bidder_id: str, task_id: str, payload: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any], datetime]:
        task = self._require_task(task_id)
        now = self._clock.now()
        if task["status"] != TASK_OPEN:
            raise auction_error("TASK_NOT_OPEN")
        if parse_iso(task["deadline"]) <= now:
            raise auction_error("TASK_EXPIRED")
        if task["poster_id"] == bidder_id:
            raise auction_error("SELF_BID")
        if self._bid_store.find_live_bid(task_id, bidder_id) is not None:
            raise auction_error("DUPLICATE_BID")

        fields = validate_bid_fields(payload, partial=False)
        amount = validate_amount(payload.get("amount"), task["budget_min"], task["budget_max"])

        stamp = to_iso(now)
        bid: dict[str, Any] = {
            "bid_id": f"bid-{uuid.uuid4()}",
            "task_id": task_id,
            "bidder_id": bidder_id,
            "amount": amount,
            "proposed_timeline": fields["proposed_timeline"],
            "message": fields.get("message"),
            "deliverables": fields.get("deliverables", []),
            "experience": fields.get("experience"),
            "portfolio": fields.get("portfolio", []),
            "status": BID_PENDING,
            "is_highlighted": False,
            "submitted_at": stamp,
            "updated_at": stamp,
            "accepted_at": None,
            "rejected_at": None,
            "withdrawn_at": None,
            "auto_withdraw_at": to_iso(now + timedelta(days=self._policy.bid_edit_window_days)),
        }

        with self._db.transaction():
            self._rate_limiter.check_bid_submission(bidder_id, now)
            current = self._task_store.get_task(task_id)
            if current is None or current["status"] != TASK_OPEN:
                raise auction_error("TASK_NOT_OPEN", {"reason": "stale_state"})
            try:
                self._bid_store.insert_bid(bid)
            except DuplicateBidError as exc:
                raise auction_error("DUPLICATE_BID") from exc

        self._logger.info(
            "Bid submitted",
            extra={"task_id": task_id, "bid_id": bid["bid_id"], "bidder_id": bidder_id},
        )
        return self._reload_bid(bid["bid_id"]), self._reload_task(task_id), now

    async def get_bid(self, caller_id: str, bid_id: str) -> dict[str, Any]:
        """
        Get a bid visible to its bidder or the task poster.

        Error precedence:
        1. BID_NOT_FOUND
        2. NOT_AUTHORIZED
        """
        bid = await self._run(self._get_bid, caller_id, bid_id)
        return self._bid_to_response(bid, self._clock.now())

    def _get_bid(self, caller_id: str, bid_id: str) -> dict[str, Any]:
        bid = self._require_bid(bid_id)
        if bid["bidder_id"] != caller_id:
            task = self._task_store.get_task(bid["task_id"])
            if task is None or task["poster_id"] != caller_id:
                raise auction_error("NOT_AUTHORIZED")
        return bid

    async def list_bids_for_task(
        self,
        caller_id: str,
        task_id: str,
        *,
        status: str | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """
        List bids on a task for its poster. Withdrawn bids are hidden by default.

        Error precedence:
        1. INVALID_PAYLOAD: bad status, sort or paging
        2. TASK_NOT_FOUND
        3. NOT_OWNER
        """
        self._check_choice("status", status, BID_STATUSES)
        self._check_choice("sort", sort, tuple(BID_SORTS))
        page_size, offset = self._page(page, limit)
        bids, total = await self._run(
            self._list_bids_for_task,
            caller_id,
            task_id,
            status,
            sort or "newest",
            page_size,
            offset,
        )
        now = self._clock.now()
        return {
            "task_id": task_id,
            "bids": [self._bid_to_response(bid, now) for bid in bids],
            "pagination": self._pagination(page, page_size, total),
        }

    def _list_bids_for_task(
        self,
        caller_id: str,
        task_id: str,
        status: str | None,
        sort: str,
        limit: int,
        offset: int,
    ) -> tuple[list[dict[str, Any]], int]:
        task = self._require_task(task_id)
        if task["poster_id"] != caller_id:
            raise auction_error("NOT_OWNER")
        return self._bid_store.list_bids_for_task(task_id, status, sort, limit, offset)

    async def list_bids_for_user(
        self,
        caller_id: str,
        kind: str,
        *,
        status: str | None = None,
        sort: str | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """List the caller's own bids (``mine``) or bids on the caller's tasks (``received``)."""
        self._check_choice("type", kind, _USER_BID_KINDS)
        self._check_choice("status", status, BID_STATUSES)
        self._check_choice("sort", sort, tuple(BID_SORTS))
        page_size, offset = self._page(page, limit)

        if kind == "mine":
            lister = self._bid_store.list_bids_for_user
        else:
            lister = self._bid_store.list_bids_received
        bids, total = await self._run(
            lister, caller_id, status, sort or "newest", page_size, offset
        )
        now = self._clock.now()
        return {
            "type": kind,
            "bids": [self._bid_to_response(bid, now) for bid in bids],
            "pagination": self._pagination(page, page_size, total),
        }

    async def edit_bid(self, bidder_id: str, bid_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """
        Edit a pending bid before its edit window closes.

        Error precedence:
        1. BID_NOT_FOUND
        2. NOT_OWNER: caller is not the bidder
        3. BID_NOT_EDITABLE: not pending, edit window over, or task no longer open
        4. INVALID_PAYLOAD
        5. AMOUNT_OUT_OF_RANGE
        """
        bid, now = await self._run(self._edit_bid, bidder_id, bid_id, patch)
        response = self._bid_to_response(bid, now)
        await self._emit([(BID_UPDATED, response)])
        return response

    def _edit_bid(
        self, bidder_id: str, bid_id: str, patch: dict[str, Any]
    ) -> tuple[dict[str, Any], datetime]:
        bid = self._require_bid(bid_id)
        if bid["bidder_id"] != bidder_id:
            raise auction_error("NOT_OWNER")
        now = self._clock.now()
        if bid["status"] != BID_PENDING or now >= parse_iso(bid["auto_withdraw_at"]):
            raise auction_error("BID_NOT_EDITABLE")
        task = self._require_task(bid["task_id"])
        if task["status"] != TASK_OPEN:
            raise auction_error("BID_NOT_EDITABLE", {"reason": "task is no longer open"})

        _unknown_fields(patch, _BID_EDITABLE_FIELDS)
        updates = validate_bid_fields(patch, partial=True)
        if "amount" in patch:
            updates["amount"] = validate_amount(
                patch["amount"], task["budget_min"], task["budget_max"]
            )
        if len(updates) == 0:
            raise auction_error("INVALID_PAYLOAD", {"reason": "No updatable fields provided"})
        updates["updated_at"] = to_iso(now)

        try:
            self._bid_store.update_bid(bid_id, updates)
        except StaleStateError as exc:
            raise auction_error("BID_NOT_EDITABLE", {"reason": "stale_state"}) from exc

        self._logger.info("Bid edited", extra={"bid_id": bid_id, "fields": sorted(updates)})
        return self._reload_bid(bid_id), now

    async def withdraw_bid(self, bidder_id: str, bid_id: str) -> dict[str, Any]:
        """
        Withdraw a pending bid.

        Error precedence:
        1. BID_NOT_FOUND
        2. NOT_OWNER
        3. BID_NOT_PENDING
        """
        bid, now = await self._run(self._withdraw_bid, bidder_id, bid_id)
        response = self._bid_to_response(bid, now)
        await self._emit([(BID_UPDATED, response)])
        return response

    def _withdraw_bid(self, bidder_id: str, bid_id: str) -> tuple[dict[str, Any], datetime]:
        bid = self._require_bid(bid_id)
        if bid["bidder_id"] != bidder_id:
            raise auction_error("NOT_OWNER")
        if bid["status"] != BID_PENDING:
            raise auction_error("BID_NOT_PENDING")

        now = self._clock.now()
        stamp = to_iso(now)
        try:
            self._bid_store.set_status(
                bid_id,
                BID_PENDING,
                BID_WITHDRAWN,
                {"withdrawn_at": stamp, "updated_at": stamp},
            )
        except StaleStateError as exc:
            raise auction_error("BID_NOT_PENDING", {"reason": "stale_state"}) from exc

        self._logger.info("Bid withdrawn", extra={"bid_id": bid_id, "task_id": bid["task_id"]})
        return self._reload_bid(bid_id), now

    async def delete_bid(self, bidder_id: str, bid_id: str) -> dict[str, Any]:
        """
        Delete a rejected or withdrawn bid; the task's bid_count drops by one.

        Error precedence:
        1. BID_NOT_FOUND
        2. NOT_OWNER
        3. BID_NOT_DELETABLE
        """
        deleted, task, now = await self._run(self._delete_bid, bidder_id, bid_id)
        result = {"bid_id": bid_id, "task_id": deleted["task_id"], "deleted": True}
        events: list[Event] = [(BID_DELETED, result)]
        if task is not None:
            events.append((TASK_UPDATED, self._task_to_response(task, now)))
        await self._emit(events)
        return result

    def _delete_bid(
        self, bidder_id: str, bid_id: str
    ) -> tuple[dict[str, Any], dict[str, Any] | None, datetime]:
        bid = self._require_bid(bid_id)
        if bid["bidder_id"] != bidder_id:
            raise auction_error("NOT_OWNER")
        if bid["status"] not in DELETABLE_BID_STATUSES:
            raise auction_error("BID_NOT_DELETABLE")

        try:
            deleted = self._bid_store.delete_bid(bid_id)
        except BidNotDeletableError as exc:
            raise auction_error("BID_NOT_DELETABLE", {"reason": "stale_state"}) from exc

        self._logger.info("Bid deleted", extra={"bid_id": bid_id, "task_id": bid["task_id"]})
        return deleted, self._task_store.get_task(bid["task_id"]), self._clock.now()

    async def reject_bid(self, poster_id: str, bid_id: str) -> dict[str, Any]:
        """
        Reject a pending bid on one of the caller's tasks.

        Error precedence:
        1. BID_NOT_FOUND
        2. NOT_OWNER: caller is not the task poster
        3. BID_NOT_PENDING
        """
        bid, now = await self._run(self._reject_bid, poster_id, bid_id)
        response = self._bid_to_response(bid, now)
        await self._emit([(BID_UPDATED, response)])
        return response

    def _reject_bid(self, poster_id: str, bid_id: str) -> tuple[dict[str, Any], datetime]:
        bid = self._require_bid(bid_id)
        task = self._require_task(bid["task_id"])
        if task["poster_id"] != poster_id:
            raise auction_error("NOT_OWNER")
        if bid["status"] != BID_PENDING:
            raise auction_error("BID_NOT_PENDING")

        now = self._clock.now()
        stamp = to_iso(now)
        try:
            self._bid_store.set_status(
                bid_id,
                BID_PENDING,
                BID_REJECTED,
                {"rejected_at": stamp, "updated_at": stamp},
            )
        except StaleStateError as exc:
            raise auction_error("BID_NOT_PENDING", {"reason": "stale_state"}) from exc

        self._logger.info("Bid rejected", extra={"bid_id": bid_id, "task_id": bid["task_id"]})
        return self._reload_bid(bid_id), now

    async def highlight_bid(self, bidder_id: str, bid_id: str) -> dict[str, Any]:
        """
        Toggle the highlight flag on a pending bid.

        Error precedence:
        1. BID_NOT_FOUND
        2. NOT_OWNER
        3. BID_NOT_PENDING
        """
        bid, now = await self._run(self._highlight_bid, bidder_id, bid_id)
        response = self._bid_to_response(bid, now)
        await self._emit([(BID_UPDATED, response)])
        return response

    def _highlight_bid(self, bidder_id: str, bid_id: str) -> tuple[dict[str, Any], datetime]:
        bid = self._require_bid(bid_id)
        if bid["bidder_id"] != bidder_id:
            raise auction_error("NOT_OWNER")
        if bid["status"] != BID_PENDING:
            raise auction_error("BID_NOT_PENDING")

        now = self._clock.now()
        try:
            self._bid_store.update_bid(
                bid_id,
                {"is_highlighted": not bid["is_highlighted"], "updated_at": to_iso(now)},
            )
        except StaleStateError as exc:
            raise auction_error("BID_NOT_PENDING", {"reason": "stale_state"}) from exc
        return self._reload_bid(bid_id), now

    async def accept_bid(self, poster_id: str, task_id: str, bid_id: str) -> dict[str, Any]:
        """
        Accept one pending bid: assign the task and reject every other pending bid.

        The task CAS (open -> assigned), the bid CAS (pending -> accepted) and
        the bulk rejection commit together or not at all. A concurrent accept
        that committed first surfaces here as TASK_NOT_OPEN with
        ``details.reason == "stale_state"``.

        Error precedence:
        1. TASK_NOT_FOUND
        2. BID_NOT_FOUND
        3. INVALID_PAYLOAD: bid belongs to another task
        4. NOT_OWNER
        5. TASK_NOT_OPEN
        6. TASK_EXPIRED
        7. BID_NOT_PENDING
        """
        task, accepted, rejected, now = await self._run(
            self._accept_bid, poster_id, task_id, bid_id
        )
        response = self._task_to_response(task, now)
        events: list[Event] = [
            (TASK_UPDATED, response),
            (BID_UPDATED, self._bid_to_response(accepted, now)),
        ]
        events.extend((BID_UPDATED, self._bid_to_response(bid, now)) for bid in rejected)
        await self._emit(events)
        return {
            **response,
            "accepted_bid": self._bid_to_response(accepted, now),
            "rejected_bid_ids": [bid["bid_id"] for bid in rejected],
        }

    def _accept_bid(
        self, poster_id: str, task_id: str, bid_id: str
    ) -> tuple[dict[str, Any], dict[str, Any], list[dict[str, Any]], datetime]:
        # Bid before task: a loser of a concurrent accept then always sees TASK_NOT_OPEN.
        bid = self._bid_store.get_bid(bid_id)
        task = self._require_task(task_id)
        if bid is None:
            raise auction_error("BID_NOT_FOUND")
        if bid["task_id"] != task_id:
            raise auction_error(
                "INVALID_PAYLOAD",
                {"field": "bid_id", "reason": "Bid does not belong to this task"},
            )
        if task["poster_id"] != poster_id:
            raise auction_error("NOT_OWNER")
        if task["status"] != TASK_OPEN:
            raise auction_error("TASK_NOT_OPEN")
        now = self._clock.now()
        if parse_iso(task["deadline"]) <= now:
            raise auction_error("TASK_EXPIRED")
        if bid["status"] != BID_PENDING:
            raise auction_error("BID_NOT_PENDING")

        stamp = to_iso(now)
        with self._db.transaction():
            try:
                self._task_store.set_status(
                    task_id,
                    TASK_OPEN,
                    TASK_ASSIGNED,
                    {
                        "assigned_to": bid["bidder_id"],
                        "accepted_bid_id": bid_id,
                        "assigned_at": stamp,
                        "updated_at": stamp,
                    },
                )
            except StaleStateError as exc:
                raise auction_error("TASK_NOT_OPEN", {"reason": "stale_state"}) from exc
            try:
                self._bid_store.set_status(
                    bid_id,
                    BID_PENDING,
                    BID_ACCEPTED,
                    {"accepted_at": stamp, "updated_at": stamp},
                )
            except StaleStateError as exc:
                raise auction_error("BID_NOT_PENDING", {"reason": "stale_state"}) from exc
            rejected_ids = self._bid_store.bulk_reject_except(task_id, bid_id, stamp)

        self._logger.info(
            "Bid accepted",
            extra={
                "task_id": task_id,
                "bid_id": bid_id,
                "assigned_to": bid["bidder_id"],
                "rejected_bids": len(rejected_ids),
            },
        )
        rejected = [self._reload_bid(rejected_id) for rejected_id in rejected_ids]
        return self._reload_task(task_id), self._reload_bid(bid_id), rejected, now

    async def get_bid_stats(self, poster_id: str, task_id: str) -> dict[str, Any]:
        """
        Bid statistics for the poster of a task.

        Error precedence:
        1. TASK_NOT_FOUND
        2. NOT_OWNER
        """
        return await self._run(self._get_bid_stats, poster_id, task_id)

    def _get_bid_stats(self, poster_id: str, task_id: str) -> dict[str, Any]:
        task = self._require_task(task_id)
        if task["poster_id"] != poster_id:
            raise auction_error("NOT_OWNER")
        return self._stats.get_stats(task_id)

    async def get_bid_analytics(self, caller_id: str, days: int | None = None) -> dict[str, Any]:
        """
        The caller's bidding track record.

        ``days`` (default 30) bounds the per-day performance breakdown.
        """
        if days is None:
            days = _ANALYTICS_DEFAULT_DAYS
        if not (1 <= days <= _ANALYTICS_MAX_DAYS):
            raise auction_error(
                "INVALID_PAYLOAD",
                {"field": "days", "reason": f"days must be between 1 and {_ANALYTICS_MAX_DAYS}"},
            )
        since = to_iso(self._clock.now() - timedelta(days=days))
        return await self._run(self._stats.bidder_analytics, caller_id, since, days)

    # ------------------------------------------------------------------
    # Health helpers
    # ------------------------------------------------------------------

    def count_tasks(self) -> int:
        """Count total tasks."""
        return self._task_store.count_tasks()

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        return self._task_store.count_tasks_by_status()


