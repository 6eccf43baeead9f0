"""Resolve which family members are notified about a transition.

Only members holding the guardian role are eligible.  The subject of the
event is excluded even when they also hold the guardian role, so nobody is
told about their own movements.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from geofence_notifier.errors import NotFoundError
from geofence_notifier.models import Family

logger = logging.getLogger(__name__)


class RecipientResolver:
    """Stateless lookup of guardian ids for a family."""

    def __init__(self, store) -> None:
        self._store = store

    async def load(self, family_id: str) -> Family:
        """Fetch the family document.

        Raises
        ------
        NotFoundError
            If no family document exists for *family_id*.
        """
        family = await self._store.get_family(family_id)
        if family is None:
            raise NotFoundError("family", family_id)
        return family

    @staticmethod
    def guardians(family: Family, exclude: Optional[Iterable[str]] = None) -> list[str]:
        """Guardian ids of *family* minus *exclude*, in member order."""
        excluded = set(exclude or ())
        guardians = [uid for uid in family.guardian_ids() if uid not in excluded]

        logger.debug(
            "Family %s: %d member(s), %d guardian recipient(s)",
            family.family_id,
            len(family.members),
            len(guardians),
        )
        return guardians

    async def resolve(
        self,
        family_id: str,
        exclude: Optional[Iterable[str]] = None,
    ) -> list[str]:
        """Return guardian user ids for *family_id*, in member order.

        An empty list is a valid answer (no guardians).  Raises
        :class:`NotFoundError` if the family does not exist.
        """
        return self.guardians(await self.load(family_id), exclude)
