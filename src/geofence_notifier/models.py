"""Dataclass models for geofence transition notifications.

Event-facing models are designed to be serializable via
``dataclasses.asdict()`` followed by ``orjson.dumps()``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


class TransitionType(enum.Enum):
    """Direction of a boundary crossing."""

    ENTER = "enter"
    EXIT = "exit"


class MemberRole(enum.Enum):
    """Role of a family member.  Only guardians are notified."""

    GUARDIAN = "guardian"
    SUBJECT = "subject"


# Stored role strings → role.  The mobile clients write parent/child.
_ROLE_ALIASES = {
    "parent": MemberRole.GUARDIAN,
    "guardian": MemberRole.GUARDIAN,
    "child": MemberRole.SUBJECT,
    "subject": MemberRole.SUBJECT,
}


@dataclass
class Location:
    """Where the transition was observed."""

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None


@dataclass
class TransitionEvent:
    """One observed boundary crossing, immutable once recorded."""

    event_id: str
    subject_id: str
    family_id: str
    transition_type: TransitionType
    subject_name: Optional[str] = None
    region_id: Optional[str] = None
    region_name: Optional[str] = None
    occurred_at: Optional[datetime] = None
    location: Optional[Location] = None


@dataclass
class FamilyMember:
    """Membership entry of a family document."""

    user_id: str
    role: Optional[MemberRole] = None
    display_name: Optional[str] = None


@dataclass
class Family:
    """A group of user accounts keyed by user id (insertion ordered)."""

    family_id: str
    members: dict[str, FamilyMember] = field(default_factory=dict)

    def guardian_ids(self) -> list[str]:
        """Return ids of members holding the guardian role, in member order."""
        return [
            uid for uid, member in self.members.items()
            if member.role is MemberRole.GUARDIAN
        ]

    def display_name_of(self, user_id: str) -> Optional[str]:
        member = self.members.get(user_id)
        return member.display_name if member else None


@dataclass
class UserAccount:
    """A registered user and the push tokens of their devices."""

    user_id: str
    push_tokens: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TokenOwnership:
    """A push token paired with the user it is registered to."""

    user_id: str
    token: str


@dataclass
class Notification:
    """A composed push notification.

    ``data`` holds flat string values only, as required by FCM data
    messages.  Nested structures are serialized to JSON strings.
    """

    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


@dataclass
class DeliveryOutcome:
    """Delivery result for one token."""

    token: str
    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    invalid: bool = False


@dataclass
class DispatchResult:
    """Per-token outcomes, positionally aligned with the submitted tokens."""

    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    def invalid_tokens(self) -> set[str]:
        """Tokens the provider reported as permanently undeliverable."""
        return {o.token for o in self.outcomes if not o.success and o.invalid}


@dataclass
class ReconcileReport:
    """What the token reconciler removed, and for whom it failed."""

    removed: dict[str, list[str]] = field(default_factory=dict)
    failed_users: list[str] = field(default_factory=list)
    batches: int = 0


class PipelineStatus(enum.Enum):
    """Terminal status of one pipeline run."""

    DISPATCHED = "dispatched"
    NO_AUDIENCE = "no_audience"
    FAMILY_NOT_FOUND = "family_not_found"
    INVALID_EVENT = "invalid_event"


@dataclass
class PipelineResult:
    """Summary of one pipeline run, suitable for logging as JSON."""

    event_id: str
    status: PipelineStatus
    recipients: int = 0
    tokens: int = 0
    success_count: int = 0
    failure_count: int = 0
    removed_tokens: int = 0
    detail: Optional[str] = None


# ── document decoding ───────────────────────────────────────────────


def family_from_document(family_id: str, doc: Optional[dict]) -> Family:
    """Decode a stored family document into a :class:`Family`.

    Members whose entry is not a mapping are skipped; unknown roles decode
    to ``None`` and are therefore never notified.
    """
    members_raw = (doc or {}).get("members") or {}
    members: dict[str, FamilyMember] = {}
    if isinstance(members_raw, dict):
        for uid, entry in members_raw.items():
            if not isinstance(entry, dict):
                continue
            role = entry.get("role")
            members[uid] = FamilyMember(
                user_id=uid,
                role=_ROLE_ALIASES.get(role.lower()) if isinstance(role, str) else None,
                display_name=entry.get("displayName") or entry.get("name"),
            )
    return Family(family_id=family_id, members=members)


def user_from_document(
    user_id: str,
    doc: Optional[dict],
    token_field: str = "fcmTokens",
) -> UserAccount:
    """Decode a stored user document, deduplicating its push tokens."""
    raw_tokens = (doc or {}).get(token_field) or []
    tokens: list[str] = []
    if isinstance(raw_tokens, (list, tuple)):
        for token in raw_tokens:
            if isinstance(token, str) and token and token not in tokens:
                tokens.append(token)
    return UserAccount(user_id=user_id, push_tokens=tokens)
