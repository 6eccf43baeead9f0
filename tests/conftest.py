"""Shared fixtures: in-memory store and scripted push provider."""

from __future__ import annotations

from typing import Optional

import pytest

from geofence_notifier.dispatcher import INVALID_TOKEN_CODES
from geofence_notifier.errors import NotFoundError, TransportError
from geofence_notifier.models import DeliveryOutcome, family_from_document, user_from_document


class FakeStore:
    """Dict-backed stand-in for :class:`FirestoreStore`."""

    def __init__(
        self,
        families: Optional[dict] = None,
        users: Optional[dict] = None,
    ) -> None:
        self.families = families or {}
        self.users = users or {}
        self.batch_calls: list[dict[str, list[str]]] = []
        self.single_calls: list[str] = []
        self.fail_batches = False

    async def get_family(self, family_id):
        doc = self.families.get(family_id)
        return None if doc is None else family_from_document(family_id, doc)

    async def get_users(self, user_ids):
        return {
            uid: user_from_document(uid, self.users[uid])
            for uid in user_ids
            if uid in self.users
        }

    async def remove_tokens(self, user_id, tokens):
        self.single_calls.append(user_id)
        if user_id not in self.users:
            raise NotFoundError("user", user_id)
        self._remove(user_id, tokens)

    async def remove_tokens_batch(self, removals):
        self.batch_calls.append(dict(removals))
        if self.fail_batches:
            raise TransportError("batch commit failed", "remove_tokens_batch")
        missing = [uid for uid in removals if uid not in self.users]
        if missing:
            raise NotFoundError("user", ",".join(missing))
        for user_id, tokens in removals.items():
            self._remove(user_id, tokens)

    def tokens_of(self, user_id):
        return self.users[user_id].get("fcmTokens", [])

    def _remove(self, user_id, tokens):
        doc = self.users[user_id]
        doc["fcmTokens"] = [t for t in doc.get("fcmTokens", []) if t not in tokens]


class FakeProvider:
    """Push provider returning scripted per-token outcomes.

    ``failures`` maps token → error code; ``transport_failures`` is the
    number of leading calls that raise :class:`TransportError`.
    """

    def __init__(self, failures: Optional[dict] = None, transport_failures: int = 0) -> None:
        self.failures = failures or {}
        self.transport_failures = transport_failures
        self.calls: list[tuple] = []

    async def send(self, notification, tokens):
        self.calls.append((notification, list(tokens)))
        if self.transport_failures:
            self.transport_failures -= 1
            raise TransportError("FCM unreachable", "send")
        outcomes = []
        for token in tokens:
            code = self.failures.get(token)
            if code is None:
                outcomes.append(DeliveryOutcome(token=token, success=True))
            else:
                outcomes.append(DeliveryOutcome(
                    token=token,
                    success=False,
                    error_code=code,
                    invalid=code in INVALID_TOKEN_CODES,
                ))
        return outcomes


SCHOOL_EVENT = {
    "subjectId": "c1",
    "subjectName": "Maya",
    "familyId": "f1",
    "regionId": "r-school",
    "regionName": "School",
    "transitionType": "ENTER",
    "occurredAt": "2025-03-04T08:15:00Z",
    "location": {"latitude": 40.7128, "longitude": -74.006, "address": "1 Main St"},
}


@pytest.fixture
def school_event() -> dict:
    return dict(SCHOOL_EVENT)


@pytest.fixture
def family_store() -> FakeStore:
    """Family f1: guardians p1/p2, subject c1; p1 has two tokens, p2 none."""
    return FakeStore(
        families={
            "f1": {
                "members": {
                    "p1": {"role": "parent", "name": "Alex"},
                    "c1": {"role": "child", "name": "Maya"},
                    "p2": {"role": "parent", "name": "Sam"},
                },
            },
        },
        users={
            "p1": {"fcmTokens": ["tA", "tB"]},
            "p2": {"fcmTokens": []},
            "c1": {"fcmTokens": ["tChild"]},
        },
    )


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep
