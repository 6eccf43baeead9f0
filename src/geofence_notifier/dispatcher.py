"""Multicast push delivery through Firebase Cloud Messaging.

:class:`FcmMulticastProvider` turns one composed notification plus a token
list into per-token :class:`DeliveryOutcome` records.  Each failed token is
classified as *invalid* (permanent, the reconciler drops it) or transient.

:class:`MulticastDispatcher` splits the token list into multicast-sized
chunks and retries each chunk with bounded exponential backoff when the
whole call fails in transport, so chunks already delivered are not sent
again::

    SEND chunk → (ok) → next chunk
               → (TransportError) → WAIT_BACKOFF → SEND chunk   (up to max_attempts)
               → (attempts exhausted) → raise TransportError
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

import google.auth.exceptions
from firebase_admin import exceptions, messaging

from geofence_notifier.config import RetryConfig
from geofence_notifier.errors import TransportError
from geofence_notifier.models import DeliveryOutcome, DispatchResult, Notification

logger = logging.getLogger(__name__)

# FCM accepts at most 500 tokens per multicast message.
MAX_MULTICAST_TOKENS = 500

UNREGISTERED = "registration-token-not-registered"
INVALID_TOKEN = "invalid-registration-token"
MISMATCHED_CREDENTIAL = "mismatched-credential"

# Error codes meaning the token will never work again.
INVALID_TOKEN_CODES = frozenset({UNREGISTERED, INVALID_TOKEN, MISMATCHED_CREDENTIAL})

_TRANSPORT_ERRORS = (
    exceptions.UnavailableError,
    exceptions.DeadlineExceededError,
    exceptions.InternalError,
    exceptions.UnknownError,
    google.auth.exceptions.TransportError,
)


def classify_send_error(exc: Optional[BaseException]) -> str:
    """Map a per-token FCM exception to an error code."""
    if isinstance(exc, messaging.UnregisteredError):
        return UNREGISTERED
    if isinstance(exc, messaging.SenderIdMismatchError):
        return MISMATCHED_CREDENTIAL
    if isinstance(exc, exceptions.InvalidArgumentError) and "registration token" in str(exc).lower():
        return INVALID_TOKEN
    if isinstance(exc, exceptions.FirebaseError):
        return str(exc.code).lower().replace("_", "-")
    return "unknown"


class FcmMulticastProvider:
    """Send one notification to many tokens with ``send_each_for_multicast``.

    Parameters
    ----------
    app:
        Initialized ``firebase_admin.App``; ``None`` uses the default app.
    dry_run:
        Validate messages with FCM without delivering them
        (``dispatch.dry_run`` / ``test-event --dry-run``).
    """

    def __init__(self, app=None, dry_run: bool = False) -> None:
        self._app = app
        self._dry_run = dry_run

    async def send(self, notification: Notification, tokens: list[str]) -> list[DeliveryOutcome]:
        """Deliver *notification* in one multicast; outcomes align with *tokens*.

        Raises
        ------
        ValueError
            If *tokens* exceeds :data:`MAX_MULTICAST_TOKENS`.
        TransportError
            If FCM could not be reached for any token.
        """
        if len(tokens) > MAX_MULTICAST_TOKENS:
            raise ValueError(
                f"At most {MAX_MULTICAST_TOKENS} tokens per multicast, got {len(tokens)}"
            )
        message = messaging.MulticastMessage(
            tokens=tokens,
            notification=messaging.Notification(title=notification.title, body=notification.body),
            data=notification.data,
        )
        try:
            response = await asyncio.to_thread(
                messaging.send_each_for_multicast,
                message,
                dry_run=self._dry_run,
                app=self._app,
            )
        except _TRANSPORT_ERRORS as exc:
            raise TransportError(f"FCM multicast failed: {exc}", operation="send") from exc

        outcomes = [
            _outcome(token, resp.success, resp.exception)
            for token, resp in zip(tokens, response.responses)
        ]

        # Every token failing for transport reasons means FCM was unreachable.
        failures = [resp.exception for resp in response.responses if not resp.success]
        if failures and len(failures) == len(tokens) and all(
            isinstance(exc, _TRANSPORT_ERRORS) for exc in failures
        ):
            raise TransportError(
                f"FCM unreachable for all {len(tokens)} token(s): {failures[0]}",
                operation="send",
            )
        return outcomes


def _outcome(token: str, success: bool, exc: Optional[BaseException]) -> DeliveryOutcome:
    if success:
        return DeliveryOutcome(token=token, success=True)
    code = classify_send_error(exc)
    return DeliveryOutcome(
        token=token,
        success=False,
        error_code=code,
        error_message=str(exc) if exc is not None else None,
        invalid=code in INVALID_TOKEN_CODES,
    )


class MulticastDispatcher:
    """Send a notification with bounded retries on transport failure.

    Parameters
    ----------
    provider:
        Object exposing ``async send(notification, tokens)``.
    retry:
        Backoff parameters.
    sleep:
        Coroutine used to wait between attempts.
    """

    def __init__(
        self,
        provider,
        retry: Optional[RetryConfig] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._provider = provider
        self._retry = retry or RetryConfig()
        self._sleep = sleep or asyncio.sleep

    async def dispatch(self, notification: Notification, tokens: list[str]) -> DispatchResult:
        """Send *notification* to *tokens* in as few batched calls as possible.

        Individual token failures never raise; they are reported in the
        result.  A :class:`TransportError` is raised once all attempts for a
        chunk are exhausted.
        """
        if not tokens:
            return DispatchResult()

        outcomes: list[DeliveryOutcome] = []
        for start in range(0, len(tokens), MAX_MULTICAST_TOKENS):
            chunk = tokens[start:start + MAX_MULTICAST_TOKENS]
            outcomes.extend(await self._send_chunk(notification, chunk))

        result = DispatchResult(outcomes=outcomes)
        logger.info(
            "Dispatched to %d token(s): %d succeeded, %d failed",
            len(tokens),
            result.success_count,
            result.failure_count,
        )
        return result

    async def _send_chunk(self, notification: Notification, tokens: list[str]) -> list[DeliveryOutcome]:
        attempt = 0
        while True:
            attempt += 1
            try:
                outcomes = await self._provider.send(notification, tokens)
            except TransportError as exc:
                if attempt >= self._retry.max_attempts:
                    logger.error(
                        "Dispatch failed after %d attempt(s): %s", attempt, exc
                    )
                    raise
                await self._backoff(attempt, exc)
                continue

            if len(outcomes) != len(tokens):
                raise TransportError(
                    f"Provider returned {len(outcomes)} outcome(s) for {len(tokens)} token(s)",
                    operation="send",
                )
            return outcomes

    # ── backoff ─────────────────────────────────────────────────────

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after failed *attempt* (1-based), with jitter."""
        base = self._retry.initial_delay_ms / 1000.0
        multiplier = self._retry.backoff_multiplier
        max_delay = self._retry.max_delay_ms / 1000.0
        jitter_pct = self._retry.jitter_pct / 100.0

        delay = min(base * (multiplier ** (attempt - 1)), max_delay)
        jitter = delay * jitter_pct * (2 * random.random() - 1)
        return max(0.0, delay + jitter)

    async def _backoff(self, attempt: int, exc: Exception) -> None:
        delay = self.backoff_delay(attempt)
        logger.warning(
            "Dispatch attempt %d failed (%s) — retrying in %.1fs",
            attempt,
            exc,
            delay,
        )
        await self._sleep(delay)
