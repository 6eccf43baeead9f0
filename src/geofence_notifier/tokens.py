"""Fetch the push tokens registered to a set of users."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from geofence_notifier.models import TokenOwnership

logger = logging.getLogger(__name__)


@dataclass
class TokenSet:
    """Flat ``(user_id, token)`` pairs for one dispatch.

    ``tokens`` is the de-duplicated list submitted to the dispatcher; a
    token registered to more than one account is sent once but keeps every
    owner so the reconciler can clean all of them.
    """

    pairs: list[TokenOwnership] = field(default_factory=list)

    @property
    def tokens(self) -> list[str]:
        seen: dict[str, None] = {}
        for pair in self.pairs:
            seen.setdefault(pair.token, None)
        return list(seen)

    def __len__(self) -> int:
        return len(self.pairs)

    def __bool__(self) -> bool:
        return bool(self.pairs)


class TokenStoreAccessor:
    """Reads ``pushTokens`` for the resolved recipients."""

    def __init__(self, store) -> None:
        self._store = store

    async def collect(self, user_ids: list[str]) -> TokenSet:
        """Return the tokens of *user_ids*, in recipient order.

        Accounts that no longer exist contribute zero tokens.
        """
        if not user_ids:
            return TokenSet()

        accounts = await self._store.get_users(user_ids)

        pairs: list[TokenOwnership] = []
        for uid in user_ids:
            account = accounts.get(uid)
            if account is None:
                logger.debug("User %s has no account document — skipping", uid)
                continue
            pairs.extend(TokenOwnership(user_id=uid, token=t) for t in account.push_tokens)

        logger.debug("Collected %d token(s) for %d user(s)", len(pairs), len(user_ids))
        return TokenSet(pairs=pairs)
