"""Concurrent bids and accepts on one task keep the auction state consistent."""

from __future__ import annotations

import asyncio
import threading

import pytest

from task_auction_service.core.exceptions import ServiceError
from tests.helpers import BIDDER_ID, FIXED_NOW, POSTER_ID, bid_payload, task_payload

RACERS = ("u-bob", "u-carol", "u-dave", "u-erin")
CROWD = tuple(f"u-bidder-{index}" for index in range(12))


async def _task_with_bids(engine) -> tuple[str, list[str]]:
    task = await engine.create_task(POSTER_ID, task_payload(FIXED_NOW))
    bid_ids = []
    for bidder_id in RACERS:
        bid = await engine.submit_bid(bidder_id, task["task_id"], bid_payload())
        bid_ids.append(bid["bid_id"])
    return task["task_id"], bid_ids


def _assert_single_winner(task_store, bid_store, task_id, winners):
    assert len(winners) == 1
    task = task_store.get_task(task_id)
    assert task["status"] == "assigned"
    assert task["accepted_bid_id"] == winners[0]

    bids, _ = bid_store.list_bids_for_task(task_id, None, "oldest", 50, 0)
    statuses = {bid["bid_id"]: bid["status"] for bid in bids}
    assert list(statuses.values()).count("accepted") == 1
    assert statuses[winners[0]] == "accepted"
    assert all(
        status == "rejected" for bid_id, status in statuses.items() if bid_id != winners[0]
    )
    assert task["bid_count"] == bid_store.count_for_task(task_id)


@pytest.mark.unit
async def test_threaded_accepts_have_one_winner(engine, task_store, bid_store):
    task_id, bid_ids = await _task_with_bids(engine)
    barrier = threading.Barrier(len(bid_ids))
    winners: list[str] = []
    losers: list[ServiceError] = []
    guard = threading.Lock()

    def race(bid_id: str) -> None:
        barrier.wait()
        try:
            engine._accept_bid(POSTER_ID, task_id, bid_id)
        except ServiceError as exc:
            with guard:
                losers.append(exc)
        else:
            with guard:
                winners.append(bid_id)

    threads = [threading.Thread(target=race, args=(bid_id,)) for bid_id in bid_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    _assert_single_winner(task_store, bid_store, task_id, winners)
    assert len(losers) == len(bid_ids) - 1
    assert {exc.error for exc in losers} == {"TASK_NOT_OPEN"}
    assert all(exc.status_code == 409 for exc in losers)


@pytest.mark.unit
async def test_gathered_accepts_have_one_winner(engine, task_store, bid_store):
    task_id, bid_ids = await _task_with_bids(engine)

    results = await asyncio.gather(
        *(engine.accept_bid(POSTER_ID, task_id, bid_id) for bid_id in bid_ids),
        return_exceptions=True,
    )

    winners = [result["accepted_bid_id"] for result in results if isinstance(result, dict)]
    errors = [result for result in results if isinstance(result, ServiceError)]
    _assert_single_winner(task_store, bid_store, task_id, winners)
    assert len(errors) == len(bid_ids) - 1
    assert {exc.error for exc in errors} == {"TASK_NOT_OPEN"}


@pytest.mark.unit
async def test_withdraw_racing_accept_leaves_consistent_state(engine, task_store, bid_store):
    task = await engine.create_task(POSTER_ID, task_payload(FIXED_NOW))
    bid = await engine.submit_bid(BIDDER_ID, task["task_id"], bid_payload())

    results = await asyncio.gather(
        engine.accept_bid(POSTER_ID, task["task_id"], bid["bid_id"]),
        engine.withdraw_bid(BIDDER_ID, bid["bid_id"]),
        return_exceptions=True,
    )

    stored_task = task_store.get_task(task["task_id"])
    stored_bid = bid_store.get_bid(bid["bid_id"])
    assert sum(1 for result in results if isinstance(result, dict)) == 1
    if stored_bid["status"] == "accepted":
        assert stored_task["status"] == "assigned"
        assert stored_task["assigned_to"] == BIDDER_ID
    else:
        assert stored_bid["status"] == "withdrawn"
        assert stored_task["status"] == "open"
        assert stored_task["assigned_to"] is None


@pytest.mark.unit
async def test_gathered_submits_count_every_bid(engine, task_store, bid_store):
    task = await engine.create_task(POSTER_ID, task_payload(FIXED_NOW))

    results = await asyncio.gather(
        *(engine.submit_bid(bidder_id, task["task_id"], bid_payload()) for bidder_id in CROWD),
        return_exceptions=True,
    )

    assert all(isinstance(result, dict) for result in results)
    assert len({result["bid_id"] for result in results}) == len(CROWD)
    stored = task_store.get_task(task["task_id"])
    assert stored["bid_count"] == len(CROWD)
    assert bid_store.count_for_task(task["task_id"]) == len(CROWD)


@pytest.mark.unit
async def test_threaded_submits_and_duplicates_count_once(engine, task_store, bid_store):
    task = await engine.create_task(POSTER_ID, task_payload(FIXED_NOW))
    task_id = task["task_id"]
    # Every bidder races twice; only one of each pair may land.
    bidders = [*CROWD, *CROWD]
    barrier = threading.Barrier(len(bidders))
    errors: list[ServiceError] = []
    guard = threading.Lock()

    def race(bidder_id: str) -> None:
        barrier.wait()
        try:
            engine._submit_bid(bidder_id, task_id, bid_payload())
        except ServiceError as exc:
            with guard:
                errors.append(exc)

    threads = [threading.Thread(target=race, args=(bidder_id,)) for bidder_id in bidders]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(errors) == len(CROWD)
    assert {exc.error for exc in errors} == {"DUPLICATE_BID"}
    assert task_store.get_task(task_id)["bid_count"] == len(CROWD)
    assert bid_store.count_for_task(task_id) == len(CROWD)
