"""Tests for the reconciler module."""

import pytest

from conftest import FakeStore
from geofence_notifier.dispatcher import UNREGISTERED
from geofence_notifier.models import DeliveryOutcome, DispatchResult, TokenOwnership
from geofence_notifier.reconciler import TokenReconciler
from geofence_notifier.tokens import TokenSet


def _token_set(*pairs) -> TokenSet:
    return TokenSet(pairs=[TokenOwnership(user_id=u, token=t) for u, t in pairs])


@pytest.mark.asyncio
async def test_invalid_token_removed(family_store) -> None:
    """tA succeeds, tB is unregistered → p1 keeps only tA."""
    result = DispatchResult(outcomes=[
        DeliveryOutcome("tA", True),
        DeliveryOutcome("tB", False, UNREGISTERED, invalid=True),
    ])
    report = await TokenReconciler(family_store).reconcile(result, _token_set(("p1", "tA"), ("p1", "tB")))
    assert family_store.tokens_of("p1") == ["tA"]
    assert report.removed == {"p1": ["tB"]}
    assert report.batches == 1


@pytest.mark.asyncio
async def test_transient_failure_untouched(family_store) -> None:
    result = DispatchResult(outcomes=[
        DeliveryOutcome("tA", False, "unavailable"),
        DeliveryOutcome("tB", True),
    ])
    report = await TokenReconciler(family_store).reconcile(result, _token_set(("p1", "tA"), ("p1", "tB")))
    assert family_store.tokens_of("p1") == ["tA", "tB"]
    assert report.removed == {}
    assert family_store.batch_calls == []


@pytest.mark.asyncio
async def test_shared_token_removed_from_every_owner() -> None:
    store = FakeStore(users={"p1": {"fcmTokens": ["tS"]}, "p2": {"fcmTokens": ["tS", "tX"]}})
    result = DispatchResult(outcomes=[
        DeliveryOutcome("tS", False, UNREGISTERED, invalid=True),
        DeliveryOutcome("tX", True),
    ])
    await TokenReconciler(store).reconcile(result, _token_set(("p1", "tS"), ("p2", "tS"), ("p2", "tX")))
    assert store.tokens_of("p1") == []
    assert store.tokens_of("p2") == ["tX"]


@pytest.mark.asyncio
async def test_batches_split_at_limit() -> None:
    """600 affected users with a 500-write limit → two sequential batches."""
    users = {f"u{i}": {"fcmTokens": [f"dead{i}", f"live{i}"]} for i in range(600)}
    store = FakeStore(users=users)
    pairs = [(f"u{i}", f"dead{i}") for i in range(600)]
    result = DispatchResult(outcomes=[
        DeliveryOutcome(f"dead{i}", False, UNREGISTERED, invalid=True) for i in range(600)
    ])

    report = await TokenReconciler(store, batch_limit=500).reconcile(result, _token_set(*pairs))

    assert [len(batch) for batch in store.batch_calls] == [500, 100]
    assert report.batches == 2
    assert len(report.removed) == 600
    assert all(store.tokens_of(f"u{i}") == [f"live{i}"] for i in range(600))


@pytest.mark.asyncio
async def test_failed_batch_retried_per_user() -> None:
    """One vanished user fails the batch; the others are still cleaned."""
    store = FakeStore(users={"p1": {"fcmTokens": ["t1"]}, "p3": {"fcmTokens": ["t3"]}})
    result = DispatchResult(outcomes=[
        DeliveryOutcome(t, False, UNREGISTERED, invalid=True) for t in ("t1", "t2", "t3")
    ])
    report = await TokenReconciler(store).reconcile(
        result, _token_set(("p1", "t1"), ("p2", "t2"), ("p3", "t3"))
    )
    assert store.single_calls == ["p1", "p2", "p3"]
    assert report.failed_users == ["p2"]
    assert set(report.removed) == {"p1", "p3"}
    assert store.tokens_of("p1") == []
    assert store.tokens_of("p3") == []


@pytest.mark.asyncio
async def test_transport_failure_falls_back_without_raising(family_store) -> None:
    family_store.fail_batches = True
    result = DispatchResult(outcomes=[DeliveryOutcome("tB", False, UNREGISTERED, invalid=True)])
    report = await TokenReconciler(family_store).reconcile(result, _token_set(("p1", "tB")))
    assert report.removed == {"p1": ["tB"]}
    assert family_store.tokens_of("p1") == ["tA"]


@pytest.mark.asyncio
async def test_reconcile_twice_is_idempotent(family_store) -> None:
    result = DispatchResult(outcomes=[DeliveryOutcome("tB", False, UNREGISTERED, invalid=True)])
    reconciler = TokenReconciler(family_store)
    token_set = _token_set(("p1", "tB"))
    await reconciler.reconcile(result, token_set)
    await reconciler.reconcile(result, token_set)
    assert family_store.tokens_of("p1") == ["tA"]


def test_batch_limit_bounds(family_store) -> None:
    with pytest.raises(ValueError):
        TokenReconciler(family_store, batch_limit=0)
    with pytest.raises(ValueError):
        TokenReconciler(family_store, batch_limit=501)
