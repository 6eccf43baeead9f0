"""Click CLI for the geofence notifier.

Entry point registered in ``pyproject.toml`` as ``geofence-notifier``.

Subcommands::

    geofence-notifier process EVENT_FILE     # run one stored record through the pipeline
    geofence-notifier test-event ...         # synthesize a transition and process it
    geofence-notifier test-event --via-log   # append it to the event log instead
    geofence-notifier test-event --dry-run   # validate with FCM without delivering
    geofence-notifier validate-config        # validate config and exit
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import Optional

import click
import orjson

from geofence_notifier import __version__
from geofence_notifier.config import AppConfig, load_config, resolve_config_path
from geofence_notifier.errors import TransportError
from geofence_notifier.logging_setup import setup_logging
from geofence_notifier.models import PipelineResult
from geofence_notifier.pipeline import build_pipeline
from geofence_notifier.store import FirestoreStore, init_firebase

logger = logging.getLogger("geofence_notifier")


@click.group()
@click.option("-c", "--config", "config_path", default=None,
              type=click.Path(exists=True, dir_okay=False),
              help="Config file path (default: $GEOFENCE_NOTIFIER_CONFIG).")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error"]),
              help="Log verbosity.")
@click.option("--project-id", default=None, help="Override FIREBASE_PROJECT_ID.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    log_level: Optional[str],
    project_id: Optional[str],
) -> None:
    """Geofence notifier — transition events to guardian push notifications."""
    overrides: dict[str, str] = {}
    if project_id:
        overrides["FIREBASE_PROJECT_ID"] = project_id

    try:
        cfg = load_config(resolve_config_path(config_path), overrides=overrides)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    if project_id and not cfg.firebase.project_id:
        cfg.firebase.project_id = project_id

    setup_logging(cfg.logging, log_level)
    ctx.obj = cfg


@main.command("validate-config")
@click.pass_obj
def validate_config(cfg: AppConfig) -> None:
    """Validate configuration and exit."""
    click.echo(f"Configuration is valid (instance={cfg.instance_id}).", err=True)


@main.command("process")
@click.argument("event_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--event-id", default=None, help="Record id (default: file stem).")
@click.pass_obj
def process(cfg: AppConfig, event_file: str, event_id: Optional[str]) -> None:
    """Feed a JSON transition record from EVENT_FILE through the pipeline."""
    path = Path(event_file)
    _run(cfg, event_id or path.stem, path.read_bytes())


@main.command("test-event")
@click.option("--family-id", required=True, help="Family to notify.")
@click.option("--subject-id", required=True, help="Tracked member id.")
@click.option("--subject-name", default="Test Child", show_default=True)
@click.option("--region-id", default="test-geofence-id", show_default=True)
@click.option("--region-name", default="Test Geofence", show_default=True)
@click.option("--transition", type=click.Choice(["enter", "exit"]), default="enter", show_default=True)
@click.option("--address", default="Test Location", show_default=True)
@click.option("--lat", type=float, default=37.7749, show_default=True)
@click.option("--lng", type=float, default=-122.4194, show_default=True)
@click.option("--via-log", is_flag=True,
              help="Append to the event log so the deployed trigger handles it.")
@click.option("--dry-run", is_flag=True,
              help="Have FCM validate the messages without delivering them.")
@click.pass_obj
def test_event(
    cfg: AppConfig,
    family_id: str,
    subject_id: str,
    subject_name: str,
    region_id: str,
    region_name: str,
    transition: str,
    address: str,
    lat: float,
    lng: float,
    via_log: bool,
    dry_run: bool,
) -> None:
    """Synthesize a transition event for integration testing."""
    record = build_test_record(
        family_id=family_id,
        subject_id=subject_id,
        subject_name=subject_name,
        region_id=region_id,
        region_name=region_name,
        transition=transition,
        address=address,
        lat=lat,
        lng=lng,
    )

    if via_log:
        store = FirestoreStore.from_app(init_firebase(cfg.firebase), cfg.collections)
        try:
            doc_id = asyncio.run(store.append_event(record))
        except TransportError as exc:
            click.echo(f"Event log unavailable: {exc}", err=True)
            raise SystemExit(1) from exc
        click.echo(orjson.dumps({"event_id": doc_id, "event": record}).decode())
        return

    if dry_run:
        cfg.dispatch.dry_run = True
    _run(cfg, f"test-{uuid.uuid4()}", record)


def build_test_record(
    family_id: str,
    subject_id: str,
    subject_name: str = "Test Child",
    region_id: str = "test-geofence-id",
    region_name: str = "Test Geofence",
    transition: str = "enter",
    address: str = "Test Location",
    lat: float = 37.7749,
    lng: float = -122.4194,
    now_ms: Optional[int] = None,
) -> dict:
    """Build a transition record shaped like the mobile clients write it."""
    return {
        "subjectId": subject_id,
        "subjectName": subject_name,
        "familyId": family_id,
        "regionId": region_id,
        "regionName": region_name,
        "transitionType": transition,
        "occurredAt": now_ms if now_ms is not None else int(time.time() * 1000),
        "location": {"latitude": lat, "longitude": lng, "address": address},
    }


def _run(cfg: AppConfig, event_id: str, record) -> None:
    pipeline = build_pipeline(cfg)
    try:
        result: PipelineResult = asyncio.run(pipeline.process(event_id, record))
    except TransportError as exc:
        logger.error("Pipeline failed for event %s: %s", event_id, exc)
        click.echo(f"Transport failure: {exc}", err=True)
        raise SystemExit(1) from exc

    sys.stdout.write(orjson.dumps(asdict(result), option=orjson.OPT_APPEND_NEWLINE).decode())
