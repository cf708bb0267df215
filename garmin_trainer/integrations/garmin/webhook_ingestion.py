"""Garmin push notification ingestion.

Payload shapes drift between summary types and API versions, so entries are
located through an alias table (SUMMARY_KEY_ALIASES) and, failing that, the
first array-valued property of the payload. User and entity ids are resolved
from ordered candidate field lists.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from garmin_trainer.db.models import GarminConnection, GarminWebhookEvent
from garmin_trainer.db.session import get_session
from garmin_trainer.integrations.garmin.connections import (
    delete_garmin_connection_by_garmin_user_id,
    fetch_garmin_connection_by_garmin_user_id,
)

SUPPORTED_SUMMARY_TYPES: tuple[str, ...] = (
    "activities",
    "activityDetails",
    "activityFiles",
    "manuallyUpdatedActivities",
    "moveIQ",
    "deregistrations",
    "userPermissionsChange",
    "bloodPressure",
    "bodyCompositions",
    "epochs",
    "hrv",
    "healthSnapshot",
    "pulseOx",
    "respiration",
    "skinTemp",
    "sleeps",
    "stressDetails",
    "userMetrics",
    "womenHealth",
    "dailies",
)

# Path spellings that map onto a supported type
SUMMARY_TYPE_PATH_ALIASES = {"sleep": "sleeps"}

SUMMARY_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "activities": ("activities", "activitySummaries"),
    "moveIQ": ("moveIQ", "moveIqEvents"),
    "sleeps": ("sleeps", "sleep", "sleepSummaries"),
    "userPermissionsChange": ("userPermissionsChange", "userPermissionChange"),
    "bloodPressure": ("bloodPressure", "bloodPressures"),
    "bodyCompositions": ("bodyCompositions", "bodyComposition"),
    "hrv": ("hrv", "hrvSummaries"),
    "healthSnapshot": ("healthSnapshot", "healthSnapshots"),
    "pulseOx": ("pulseOx", "pulseox"),
    "respiration": ("respiration", "respirationSummaries", "allDayRespiration"),
    "skinTemp": ("skinTemp", "skinTemps"),
    "womenHealth": ("womenHealth", "womenHealthData"),
    "dailies": ("dailies",),
}

USER_ID_FIELDS: tuple[str, ...] = ("userId", "userProfileId", "ownerId", "profileId")
ENTITY_ID_FIELDS: tuple[str, ...] = (
    "summaryId",
    "activityId",
    "snapshotId",
    "measurementId",
    "id",
    "fileId",
    "startTimeInSeconds",
    "changeTimeInSeconds",
    "recordId",
)


@dataclass(frozen=True)
class IngestionResult:
    received: int
    processed: int

    def to_dict(self) -> dict[str, int]:
        return {"received": self.received, "processed": self.processed}


def normalize_summary_type(raw: str) -> str | None:
    """Canonical summary type for a URL segment, None when unsupported."""
    candidate = SUMMARY_TYPE_PATH_ALIASES.get(raw, raw)
    return candidate if candidate in SUPPORTED_SUMMARY_TYPES else None


def summary_key_aliases(summary_type: str) -> tuple[str, ...]:
    return SUMMARY_KEY_ALIASES.get(summary_type, (summary_type, f"{summary_type}s"))


def _key_accessor(key: str) -> Callable[[dict], Any]:
    return lambda payload: payload.get(key)


def _first_array_property(payload: dict) -> Any:
    for value in payload.values():
        if isinstance(value, list):
            return value
    return None


def extract_entries_for_summary(payload: Any, summary_type: str) -> list[dict]:
    """Entries of a push payload for one summary type.

    A bare list payload is used as-is. For objects, accessors for each alias
    key are tried in order, then the first array-valued property.
    """
    if isinstance(payload, list):
        return [entry for entry in payload if isinstance(entry, dict)]
    if not isinstance(payload, dict):
        return []

    accessors = [_key_accessor(key) for key in summary_key_aliases(summary_type)]
    accessors.append(_first_array_property)
    for accessor in accessors:
        value = accessor(payload)
        if isinstance(value, list):
            return [entry for entry in value if isinstance(entry, dict)]
    return []


def _coerce_identifier(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return str(int(value)) if value.is_integer() else str(value)
    return None


def _resolve(entry: dict, fields: tuple[str, ...]) -> str | None:
    for field in fields:
        identifier = _coerce_identifier(entry.get(field))
        if identifier:
            return identifier
    return None


def resolve_garmin_user_id(entry: dict) -> str | None:
    return _resolve(entry, USER_ID_FIELDS)


def resolve_entity_id(entry: dict) -> str | None:
    return _resolve(entry, ENTITY_ID_FIELDS)


def ingest_garmin_push(summary_type: str, payload: Any) -> IngestionResult:
    """Store one GarminWebhookEvent per entry that belongs to a linked user.

    Entries without a user id or for unlinked users are skipped; `processed`
    below `received` is the only signal.
    """
    entries = extract_entries_for_summary(payload, summary_type)
    # Per-request cache; None marks a known miss
    connections: dict[str, GarminConnection | None] = {}
    processed = 0

    for entry in entries:
        garmin_user_id = resolve_garmin_user_id(entry)
        if not garmin_user_id:
            logger.debug(f"[GARMIN_WEBHOOK] {summary_type} entry without user id skipped")
            continue

        if garmin_user_id not in connections:
            connections[garmin_user_id] = fetch_garmin_connection_by_garmin_user_id(garmin_user_id)
        connection = connections[garmin_user_id]
        if connection is None:
            logger.debug(f"[GARMIN_WEBHOOK] No connection for garmin_user_id={garmin_user_id}, {summary_type} entry skipped")
            continue

        try:
            with get_session() as session:
                session.add(
                    GarminWebhookEvent(
                        user_id=connection.user_id,
                        garmin_user_id=garmin_user_id,
                        type=summary_type,
                        entity_id=resolve_entity_id(entry),
                        payload=entry,
                    )
                )
        except SQLAlchemyError as e:
            logger.error(f"[GARMIN_WEBHOOK] Failed to store {summary_type} entry for garmin_user_id={garmin_user_id}: {e}")
            continue
        processed += 1

        if summary_type == "deregistrations":
            delete_garmin_connection_by_garmin_user_id(garmin_user_id)
            connections[garmin_user_id] = None
            logger.info(f"[GARMIN_WEBHOOK] Garmin user {garmin_user_id} deregistered; connection removed")

    logger.info(f"[GARMIN_WEBHOOK] {summary_type}: received={len(entries)} processed={processed}")
    return IngestionResult(received=len(entries), processed=processed)
