"""Remove push tokens the provider reported as permanently invalid.

Removals are grouped per user and committed in sequential write batches of
at most ``batch_limit`` users.  A failed batch is retried user by user so
that one vanished account does not block cleanup for the others.  Every
write is an array-remove, so re-running after a crash or duplicate event
converges to the same state.
"""

from __future__ import annotations

import logging

from geofence_notifier.config import MAX_BATCH_WRITES
from geofence_notifier.errors import NotFoundError, NotifierError
from geofence_notifier.models import DispatchResult, ReconcileReport
from geofence_notifier.tokens import TokenSet

logger = logging.getLogger(__name__)


class TokenReconciler:
    """Apply invalid-token cleanup after a dispatch."""

    def __init__(self, store, batch_limit: int = MAX_BATCH_WRITES) -> None:
        if not 1 <= batch_limit <= MAX_BATCH_WRITES:
            raise ValueError(f"batch_limit must be between 1 and {MAX_BATCH_WRITES}")
        self._store = store
        self._batch_limit = batch_limit

    @staticmethod
    def plan(result: DispatchResult, token_set: TokenSet) -> dict[str, list[str]]:
        """Return ``user_id → invalid tokens`` for every affected owner.

        Transient failures are never included.
        """
        invalid = result.invalid_tokens()
        removals: dict[str, list[str]] = {}
        for pair in token_set.pairs:
            if pair.token in invalid:
                tokens = removals.setdefault(pair.user_id, [])
                if pair.token not in tokens:
                    tokens.append(pair.token)
        return removals

    async def reconcile(self, result: DispatchResult, token_set: TokenSet) -> ReconcileReport:
        """Remove invalid tokens reported in *result* from their owners."""
        removals = self.plan(result, token_set)
        report = ReconcileReport()
        if not removals:
            return report

        user_ids = list(removals)
        for start in range(0, len(user_ids), self._batch_limit):
            chunk = {uid: removals[uid] for uid in user_ids[start:start + self._batch_limit]}
            report.batches += 1
            try:
                await self._store.remove_tokens_batch(chunk)
            except NotifierError as exc:
                logger.warning(
                    "Token cleanup batch of %d user(s) failed (%s) — retrying per user",
                    len(chunk),
                    exc,
                )
                await self._apply_individually(chunk, report)
            else:
                report.removed.update(chunk)

        logger.info(
            "Removed %d invalid token(s) from %d user(s) in %d batch(es); %d user(s) failed",
            sum(len(t) for t in report.removed.values()),
            len(report.removed),
            report.batches,
            len(report.failed_users),
        )
        return report

    async def _apply_individually(self, chunk: dict[str, list[str]], report: ReconcileReport) -> None:
        for user_id, tokens in chunk.items():
            try:
                await self._store.remove_tokens(user_id, tokens)
            except NotFoundError:
                logger.warning("User %s vanished before token cleanup", user_id)
                report.failed_users.append(user_id)
            except NotifierError as exc:
                logger.error("Token cleanup for user %s failed: %s", user_id, exc)
                report.failed_users.append(user_id)
            else:
                report.removed[user_id] = tokens
