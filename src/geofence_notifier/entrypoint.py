"""Binding for the hosting "document created" trigger.

The hosting glue calls :func:`handle_transition_created` with the new
record's id and data, possibly from several worker threads at once.  The
pipeline is built once per warm process and all runs are submitted to one
event loop living on a background thread; the async Firestore channel is
bound to that loop, and concurrent invocations interleave on it instead of
re-entering a running loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Mapping, Optional

from geofence_notifier.config import load_config, resolve_config_path
from geofence_notifier.logging_setup import setup_logging
from geofence_notifier.models import PipelineResult
from geofence_notifier.pipeline import TransitionPipeline, build_pipeline

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_pipeline: Optional[TransitionPipeline] = None
_loop: Optional[asyncio.AbstractEventLoop] = None
_loop_thread: Optional[threading.Thread] = None


def get_pipeline() -> TransitionPipeline:
    """Build the pipeline once per process."""
    global _pipeline
    with _lock:
        if _pipeline is None:
            cfg = load_config(resolve_config_path())
            setup_logging(cfg.logging)
            _pipeline = build_pipeline(cfg)
            logger.info("Pipeline initialized (instance=%s)", cfg.instance_id)
        return _pipeline


def _get_loop() -> asyncio.AbstractEventLoop:
    global _loop, _loop_thread
    with _lock:
        if _loop is None or _loop.is_closed():
            _loop = asyncio.new_event_loop()
            _loop_thread = threading.Thread(
                target=_loop.run_forever,
                name="geofence-notifier-loop",
                daemon=True,
            )
            _loop_thread.start()
        return _loop


def shutdown(timeout: float = 5.0) -> None:
    """Stop the background loop; the next invocation starts a fresh one."""
    global _loop, _loop_thread
    with _lock:
        loop, thread = _loop, _loop_thread
        _loop = _loop_thread = None
    if loop is None:
        return
    loop.call_soon_threadsafe(loop.stop)
    if thread is not None:
        thread.join(timeout)
    loop.close()


def handle_transition_created(event_id: str, record: Mapping[str, Any]) -> PipelineResult:
    """Process one newly created transition record to completion.

    Safe to call from several threads at once.  ``TransportError``
    propagates so the platform's retry policy applies.
    """
    pipeline = get_pipeline()
    future = asyncio.run_coroutine_threadsafe(pipeline.process(event_id, record), _get_loop())
    return future.result()
