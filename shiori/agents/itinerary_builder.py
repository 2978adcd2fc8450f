"""Rebuild a day-by-day itinerary from unordered photo events."""
from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Optional

from shiori.agents.temporal import format_event_datetime
from shiori.agents.trip_normalizer import normalize_photos
from shiori.schemas import (
    UNKNOWN_DAY,
    UNKNOWN_PLACE,
    DayGroup,
    ItineraryEvent,
    PhotoEvent,
)


def build_itinerary(photos: Iterable[PhotoEvent]) -> List[DayGroup]:
    """Group events by Tokyo calendar day in chronological order.

    Events with neither a parseable time nor a place are skipped. Day groups
    are ordered by date with the unknown-day bucket last; inside a day, events
    without a timestamp come after timed ones and ties keep upload order.
    """
    events: List[ItineraryEvent] = []
    for idx, photo in enumerate(photos):
        day, display_time, ts = format_event_datetime(photo.date_time)
        has_place = isinstance(photo.place_name, str) and photo.place_name.strip() != ""
        if ts is None and not has_place:
            continue
        events.append(
            ItineraryEvent(
                client_id=photo.client_id,
                place_name=photo.place_name if has_place else UNKNOWN_PLACE,
                day=day,
                display_time=display_time,
                sort_timestamp=ts,
                upload_index=idx,
            )
        )

    groups: Dict[str, List[ItineraryEvent]] = {}
    for ev in events:
        groups.setdefault(ev.day or UNKNOWN_DAY, []).append(ev)

    ordered: List[DayGroup] = []
    for key in sorted(groups, key=_day_sort_key):
        day_events = sorted(groups[key], key=_event_sort_key)
        if day_events:
            ordered.append(DayGroup(label=key, events=day_events))
    return ordered


def merge_inferred_events(photos: List[PhotoEvent], inferred: Optional[Iterable[Any]]) -> List[PhotoEvent]:
    """Fill gaps in the uploaded photo metadata with AI-inferred events.

    Inferred entries are matched by ``clientId`` and only fill a blank place
    name or a missing date-time; values the user supplied are never replaced.
    A photo without a ``clientId`` is known to the model as ``image-<index>``.
    Entries that match no photo are appended after the photos.
    """
    if not inferred:
        return list(photos)

    suggestions = normalize_photos(list(inferred))
    by_client: Dict[str, PhotoEvent] = {}
    extras: List[PhotoEvent] = []
    keys = [photo_key(p, idx) for idx, p in enumerate(photos)]
    known_ids = set(keys)
    for suggestion in suggestions:
        if suggestion.client_id is not None and suggestion.client_id in known_ids:
            by_client.setdefault(suggestion.client_id, suggestion)
        else:
            extras.append(suggestion)

    merged: List[PhotoEvent] = []
    for photo, key in zip(photos, keys):
        hint = by_client.get(key)
        if hint is None:
            merged.append(photo)
            continue
        update: Dict[str, Any] = {}
        if not (isinstance(photo.place_name, str) and photo.place_name.strip()):
            if isinstance(hint.place_name, str) and hint.place_name.strip():
                update["place_name"] = hint.place_name
        if not isinstance(photo.date_time, str) or not photo.date_time.strip():
            if isinstance(hint.date_time, str) and hint.date_time.strip():
                update["date_time"] = hint.date_time
        merged.append(photo.model_copy(update=update) if update else photo)
    return merged + extras


def _day_sort_key(key: str) -> tuple:
    if key == UNKNOWN_DAY:
        return (1, 0)
    digits = key.replace("/", "")
    return (0, int(digits) if digits.isdigit() else 0)


def _event_sort_key(ev: ItineraryEvent) -> tuple:
    ts = ev.sort_timestamp if ev.sort_timestamp is not None else math.inf
    return (ts, ev.upload_index)


def photo_key(photo: PhotoEvent, index: int) -> str:
    """Identifier a photo is known by when asking the model for hints."""
    return photo.client_id or f"image-{index}"
