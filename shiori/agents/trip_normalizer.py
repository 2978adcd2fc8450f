"""Ingestion step that turns a raw detail payload into a canonical ``Trip``.

Upstream producers are not consistent about key names: some decorate required
fields with a trailing ``!`` (``"name!"``), some nest everything under a
``trip`` wrapper and some do not. Aliases are resolved exactly once here so
that the itinerary builder, the budget aggregator and the document renderer
only ever read typed attributes.

Malformed entities (a member without a name, a budget category without a
title) are dropped one by one; nothing in this module raises for bad data.
"""
from __future__ import annotations

import logging
import math
import os
from typing import Any, Dict, List, Mapping

from shiori.schemas import (
    DEFAULT_ROLE_LABEL,
    ROLE_LABELS,
    BudgetCategory,
    BudgetDetail,
    Member,
    PhotoEvent,
    Trip,
)

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("SHIORI_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

REQUIRED_MARKER = "!"


def resolve_field(obj: Any, key: str) -> Any:
    """Look ``key`` up as-is, then with the marker appended, then stripped.

    A key that is present but holds ``None`` counts as missing and the next
    candidate is tried. Non-mapping objects resolve every key to ``None``.
    """
    if not isinstance(obj, Mapping):
        return None
    candidates = [key, key + REQUIRED_MARKER]
    if key.endswith(REQUIRED_MARKER):
        candidates.append(key[: -len(REQUIRED_MARKER)])
    for candidate in candidates:
        value = obj.get(candidate)
        if value is not None:
            return value
    return None


def normalize_detail(payload: Any) -> Trip:
    """Return the canonical ``Trip`` for a raw detail JSON payload."""
    raw: Dict[str, Any]
    if hasattr(payload, "model_dump"):
        raw = payload.model_dump(mode="python")  # type: ignore[assignment]
    elif isinstance(payload, Mapping):
        raw = dict(payload)
    else:
        if payload is not None:
            logger.warning("Ignoring detail payload of type %s", type(payload).__name__)
        raw = {}

    wrapped = raw.get("trip")
    trip_raw: Mapping[str, Any] = wrapped if isinstance(wrapped, Mapping) and wrapped else raw

    photos_raw = resolve_field(raw, "images")
    if photos_raw is None and trip_raw is not raw:
        photos_raw = resolve_field(trip_raw, "images")

    trip = Trip(
        start_date=resolve_field(trip_raw, "startDate"),
        end_date=resolve_field(trip_raw, "endDate"),
        hotels=_normalize_hotels(resolve_field(trip_raw, "hotels")),
        purpose=_text_or_none(resolve_field(trip_raw, "purpose")),
        members=normalize_members(resolve_field(trip_raw, "members")),
        allowance=normalize_allowance(resolve_field(trip_raw, "allowance")),
        photos=normalize_photos(photos_raw),
    )
    logger.debug(
        "Normalized trip: members:%d categories:%d photos:%d hotels:%d",
        len(trip.members),
        len(trip.allowance),
        len(trip.photos),
        len(trip.hotels),
    )
    return trip


def normalize_members(value: Any) -> List[Member]:
    """Drop unnamed members and assign display roles.

    When at least one member carries a non-blank role every member is labeled
    from their own tag (unknown tags fall back to the generic label). When no
    one supplies a role the first member becomes the leader.
    """
    if not isinstance(value, list):
        return []

    kept: List[Dict[str, Any]] = []
    for entry in value:
        name = resolve_field(entry, "name")
        if not _present(name):
            continue
        role = resolve_field(entry, "role")
        kept.append(
            {
                "name": display_value(name),
                "role": str(role).strip() if role is not None else "",
                "episode": _text_or_none(resolve_field(entry, "episode")),
            }
        )
    if len(kept) < len(value):
        logger.debug("Dropped %d member(s) without a name", len(value) - len(kept))

    any_role = any(item["role"] for item in kept)
    members: List[Member] = []
    for idx, item in enumerate(kept):
        if any_role:
            label = ROLE_LABELS.get(item["role"], DEFAULT_ROLE_LABEL) if item["role"] else DEFAULT_ROLE_LABEL
        else:
            label = ROLE_LABELS["leader"] if idx == 0 else DEFAULT_ROLE_LABEL
        members.append(
            Member(
                name=item["name"],
                role=item["role"] or None,
                role_label=label,
                episode=item["episode"],
            )
        )
    return members


def normalize_allowance(value: Any) -> List[BudgetCategory]:
    if not isinstance(value, list):
        return []

    categories: List[BudgetCategory] = []
    for entry in value:
        title = resolve_field(entry, "title")
        total = resolve_field(entry, "total")
        if not _present(title) or total is None:
            logger.debug("Dropping budget category without title/total: %r", entry)
            continue
        details: List[BudgetDetail] = []
        details_raw = resolve_field(entry, "details")
        if isinstance(details_raw, list):
            for line in details_raw:
                name = resolve_field(line, "name")
                amount = resolve_field(line, "amount")
                if not _present(name) or amount is None:
                    continue
                details.append(BudgetDetail(name=display_value(name), amount=amount))
        categories.append(BudgetCategory(title=display_value(title), total=total, details=details))
    return categories


def normalize_photos(value: Any) -> List[PhotoEvent]:
    """Keep one ``PhotoEvent`` per raw entry so list positions stay upload order."""
    if not isinstance(value, list):
        return []

    photos: List[PhotoEvent] = []
    for entry in value:
        client_id = resolve_field(entry, "clientId")
        photos.append(
            PhotoEvent(
                client_id=str(client_id) if client_id is not None else None,
                place_name=resolve_field(entry, "placeName"),
                date_time=resolve_field(entry, "dateTime"),
            )
        )
    return photos


def _normalize_hotels(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [display_value(h) for h in value if h is not None and display_value(h).strip()]


def _present(value: Any) -> bool:
    """Truthiness as the upstream JSON producers understand it."""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value != ""
    if isinstance(value, (int, float)):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    return True


def _text_or_none(value: Any) -> str | None:
    return display_value(value) if _present(value) else None


def display_value(value: Any) -> str:
    """Stringify scalars the way they are shown in the document."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
