"""Compose push notifications from transition events.

The composer is pure: the same event always yields byte-identical output.
FCM data messages only carry flat string values, so ``location`` is
serialized to a JSON object string (sorted keys) that clients parse back.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import timezone

import orjson

from geofence_notifier.models import Notification, TransitionEvent, TransitionType

DATA_TYPE = "geofence_event"


class NotificationComposer:
    """Stateless transform: :class:`TransitionEvent` → :class:`Notification`."""

    def __init__(
        self,
        default_subject_name: str = "Your family member",
        default_region_name: str = "a safe zone",
        unknown_location: str = "Unknown location",
    ) -> None:
        self._default_subject_name = default_subject_name
        self._default_region_name = default_region_name
        self._unknown_location = unknown_location

    def compose(self, event: TransitionEvent) -> Notification:
        """Build the title, body and data payload for *event*."""
        verb = "entered" if event.transition_type is TransitionType.ENTER else "left"
        subject = event.subject_name or self._default_subject_name
        region = event.region_name or self._default_region_name
        address = event.location.address if event.location else None

        return Notification(
            title=f"{subject} {verb} {region}",
            body=f"Location: {address or self._unknown_location}",
            data=self.build_data(event),
        )

    def build_data(self, event: TransitionEvent) -> dict[str, str]:
        """Flat string payload carrying every event field for deep-linking."""
        return {
            "type": DATA_TYPE,
            "eventId": event.event_id,
            "subjectId": event.subject_id,
            "subjectName": event.subject_name or "",
            "familyId": event.family_id,
            "regionId": event.region_id or "",
            "regionName": event.region_name or "",
            "transitionType": event.transition_type.value,
            "occurredAt": _isoformat(event),
            "location": _location_json(event),
        }


def _isoformat(event: TransitionEvent) -> str:
    if event.occurred_at is None:
        return ""
    return event.occurred_at.astimezone(timezone.utc).isoformat()


def _location_json(event: TransitionEvent) -> str:
    if event.location is None:
        return "{}"
    return orjson.dumps(asdict(event.location), option=orjson.OPT_SORT_KEYS).decode()
