"""Transition → notification pipeline.

One stateless run per event record::

    ingest → resolve guardians → collect tokens → compose → dispatch → reconcile

Validation failures and vanished families end the run cleanly with a
status.  Transport failures and cancellation propagate so the hosting
trigger can retry; every write is idempotent, so a retried run is safe.
Re-running an already processed event delivers the notification again.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, replace
from typing import Any, Mapping, Optional, Union

from geofence_notifier.compose import NotificationComposer
from geofence_notifier.config import AppConfig
from geofence_notifier.dispatcher import FcmMulticastProvider, MulticastDispatcher
from geofence_notifier.errors import NotFoundError, ValidationError
from geofence_notifier.ingest import parse_transition
from geofence_notifier.models import PipelineResult, PipelineStatus
from geofence_notifier.reconciler import TokenReconciler
from geofence_notifier.recipients import RecipientResolver
from geofence_notifier.store import FirestoreStore, init_firebase
from geofence_notifier.tokens import TokenStoreAccessor

logger = logging.getLogger(__name__)


class TransitionPipeline:
    """Runs one transition record through every stage."""

    def __init__(
        self,
        resolver: RecipientResolver,
        accessor: TokenStoreAccessor,
        composer: NotificationComposer,
        dispatcher: MulticastDispatcher,
        reconciler: TokenReconciler,
    ) -> None:
        self._resolver = resolver
        self._accessor = accessor
        self._composer = composer
        self._dispatcher = dispatcher
        self._reconciler = reconciler

    async def process(
        self,
        event_id: str,
        record: Union[Mapping[str, Any], str, bytes],
    ) -> PipelineResult:
        """Process one created transition record.

        Raises
        ------
        TransportError
            If the store or push provider is unreachable.
        """
        # 1. ingest
        try:
            event = parse_transition(event_id, record)
        except ValidationError as exc:
            logger.error(
                "Invalid transition event %s [%s]: %s (payload=%s)",
                event_id,
                exc.code,
                exc.message,
                exc.raw_payload,
            )
            return PipelineResult(event_id, PipelineStatus.INVALID_EVENT, detail=exc.code)

        logger.info(
            "Processing %s event %s (subject=%s, family=%s, region=%s)",
            event.transition_type.value,
            event_id,
            event.subject_id,
            event.family_id,
            event.region_id,
        )

        # 2. resolve recipients
        try:
            family = await self._resolver.load(event.family_id)
        except NotFoundError as exc:
            logger.warning("Skipping event %s: %s", event_id, exc)
            return PipelineResult(event_id, PipelineStatus.FAMILY_NOT_FOUND, detail=str(exc))
        recipients = self._resolver.guardians(family, exclude=[event.subject_id])

        if not recipients:
            logger.info("No guardians to notify in family %s (event %s)", event.family_id, event_id)
            return PipelineResult(event_id, PipelineStatus.NO_AUDIENCE, detail="no guardians")

        # 3. collect tokens
        token_set = await self._accessor.collect(recipients)
        if not token_set:
            logger.info(
                "No push tokens for %d guardian(s) of subject %s (event %s)",
                len(recipients),
                event.subject_id,
                event_id,
            )
            return PipelineResult(
                event_id,
                PipelineStatus.NO_AUDIENCE,
                recipients=len(recipients),
                detail="no tokens",
            )

        # 4. compose + dispatch
        # Fall back to the family's stored name for clients that omit subjectName
        if not event.subject_name:
            event = replace(event, subject_name=family.display_name_of(event.subject_id))
        notification = self._composer.compose(event)
        tokens = token_set.tokens
        result = await self._dispatcher.dispatch(notification, tokens)

        for outcome in result.outcomes:
            if not outcome.success:
                logger.warning(
                    "Delivery to token %s failed: %s (%s)",
                    outcome.token,
                    outcome.error_code,
                    "invalid" if outcome.invalid else "transient",
                )

        # 5. reconcile
        report = await self._reconciler.reconcile(result, token_set)

        return PipelineResult(
            event_id,
            PipelineStatus.DISPATCHED,
            recipients=len(recipients),
            tokens=len(tokens),
            success_count=result.success_count,
            failure_count=result.failure_count,
            removed_tokens=sum(len(t) for t in report.removed.values()),
        )


def build_pipeline(
    cfg: AppConfig,
    store: Optional[Any] = None,
    provider: Optional[Any] = None,
) -> TransitionPipeline:
    """Construct the production object graph.

    The Firebase app is only initialized when *store* or *provider* is not
    supplied.
    """
    if store is None or provider is None:
        app = init_firebase(cfg.firebase)
        if store is None:
            store = FirestoreStore.from_app(app, cfg.collections)
        if provider is None:
            provider = FcmMulticastProvider(app, dry_run=cfg.dispatch.dry_run)

    return TransitionPipeline(
        resolver=RecipientResolver(store),
        accessor=TokenStoreAccessor(store),
        composer=NotificationComposer(**asdict(cfg.notification)),
        dispatcher=MulticastDispatcher(provider, cfg.dispatch.retry),
        reconciler=TokenReconciler(store, cfg.reconcile.batch_limit),
    )
