"""Firestore adapter for family, user and event-log documents.

All SDK access goes through :class:`FirestoreStore`, which receives an
async Firestore client by constructor injection.  ``google.api_core``
errors are translated here so the rest of the pipeline only sees
:mod:`geofence_notifier.errors`.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import firebase_admin
from firebase_admin import credentials, firestore_async
from google.api_core import exceptions as gexc
from google.cloud import firestore

from geofence_notifier.config import CollectionsConfig, FirebaseConfig
from geofence_notifier.errors import NotFoundError, TransportError
from geofence_notifier.models import Family, UserAccount, family_from_document, user_from_document

logger = logging.getLogger(__name__)


def init_firebase(config: FirebaseConfig) -> firebase_admin.App:
    """Initialize the Firebase admin app once per process.

    Subsequent calls return the already-initialized default app.
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass  # not initialized yet

    if config.credentials_path:
        cred = credentials.Certificate(config.credentials_path)
    else:
        cred = credentials.ApplicationDefault()

    options = {"projectId": config.project_id} if config.project_id else None
    app = firebase_admin.initialize_app(cred, options)
    logger.info("Firebase app initialized (project=%s)", config.project_id or "<default>")
    return app


class FirestoreStore:
    """Reads families and users; removes push tokens; appends events.

    Parameters
    ----------
    db:
        ``google.cloud.firestore.AsyncClient`` (see :meth:`from_app`).
    collections:
        Collection and field names.
    """

    def __init__(self, db, collections: Optional[CollectionsConfig] = None) -> None:
        self._db = db
        self._collections = collections or CollectionsConfig()

    @classmethod
    def from_app(cls, app: firebase_admin.App, collections: CollectionsConfig) -> "FirestoreStore":
        return cls(firestore_async.client(app), collections)

    # ── reads ───────────────────────────────────────────────────────

    async def get_family(self, family_id: str) -> Optional[Family]:
        """Return the family, or ``None`` when no document exists."""
        ref = self._db.collection(self._collections.families).document(family_id)
        try:
            snapshot = await ref.get()
        except gexc.GoogleAPICallError as exc:
            raise TransportError(f"Reading family {family_id} failed: {exc}", "get_family") from exc
        except gexc.RetryError as exc:
            raise TransportError(f"Reading family {family_id} timed out: {exc}", "get_family") from exc

        if not snapshot.exists:
            return None
        return family_from_document(family_id, snapshot.to_dict())

    async def get_users(self, user_ids: list[str]) -> dict[str, UserAccount]:
        """Multi-get user documents; missing users are absent from the result."""
        users = self._db.collection(self._collections.users)
        refs = [users.document(uid) for uid in user_ids]
        accounts: dict[str, UserAccount] = {}
        try:
            async for snapshot in self._db.get_all(refs):
                if snapshot.exists:
                    accounts[snapshot.id] = user_from_document(
                        snapshot.id,
                        snapshot.to_dict(),
                        self._collections.token_field,
                    )
        except gexc.GoogleAPICallError as exc:
            raise TransportError(f"Reading users failed: {exc}", "get_users") from exc
        except gexc.RetryError as exc:
            raise TransportError(f"Reading users timed out: {exc}", "get_users") from exc
        return accounts

    # ── writes ──────────────────────────────────────────────────────

    async def remove_tokens(self, user_id: str, tokens: list[str]) -> None:
        """Remove *tokens* from one user's token array (idempotent)."""
        ref = self._db.collection(self._collections.users).document(user_id)
        try:
            await ref.update({self._collections.token_field: firestore.ArrayRemove(tokens)})
        except gexc.NotFound as exc:
            raise NotFoundError("user", user_id) from exc
        except gexc.GoogleAPICallError as exc:
            raise TransportError(f"Updating user {user_id} failed: {exc}", "remove_tokens") from exc
        except gexc.RetryError as exc:
            raise TransportError(f"Updating user {user_id} timed out: {exc}", "remove_tokens") from exc

    async def remove_tokens_batch(self, removals: dict[str, list[str]]) -> None:
        """Commit one write batch removing tokens from several users.

        The batch is atomic: any missing user fails the whole commit.
        """
        users = self._db.collection(self._collections.users)
        batch = self._db.batch()
        for user_id, tokens in removals.items():
            batch.update(
                users.document(user_id),
                {self._collections.token_field: firestore.ArrayRemove(tokens)},
            )
        try:
            await batch.commit()
        except gexc.NotFound as exc:
            raise NotFoundError("user", ",".join(removals)) from exc
        except gexc.GoogleAPICallError as exc:
            raise TransportError(f"Batch token removal failed: {exc}", "remove_tokens_batch") from exc
        except gexc.RetryError as exc:
            raise TransportError(f"Batch token removal timed out: {exc}", "remove_tokens_batch") from exc

    async def append_event(self, record: dict[str, Any]) -> str:
        """Add *record* to the event log and return its document id."""
        try:
            _, ref = await self._db.collection(self._collections.events).add(record)
        except gexc.GoogleAPICallError as exc:
            raise TransportError(f"Appending event failed: {exc}", "append_event") from exc
        except gexc.RetryError as exc:
            raise TransportError(f"Appending event timed out: {exc}", "append_event") from exc
        return ref.id
