"""HTML assembly for the booklet.

``render_document`` is a pure function of its inputs: the same trip and the
same generated artifacts always produce byte-identical markup.
"""
from __future__ import annotations

import base64
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from shiori.agents.budget_aggregator import aggregate_budget
from shiori.agents.itinerary_builder import build_itinerary, merge_inferred_events
from shiori.agents.temporal import format_date_range
from shiori.schemas import Trip

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
TEMPLATE_NAME = "shiori.html"

_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def render_document(
    trip: Trip,
    cover_image: Optional[bytes] = None,
    inferred_itinerary: Optional[Iterable[Any]] = None,
    narrative: Optional[str] = None,
) -> str:
    """Render the complete booklet HTML."""
    return _env.get_template(TEMPLATE_NAME).render(build_context(trip, cover_image, inferred_itinerary, narrative))


def build_context(
    trip: Trip,
    cover_image: Optional[bytes] = None,
    inferred_itinerary: Optional[Iterable[Any]] = None,
    narrative: Optional[str] = None,
) -> Dict[str, Any]:
    """Collect everything the template needs; empty values switch sections off."""
    budget = aggregate_budget(trip.allowance)
    photos = merge_inferred_events(trip.photos, inferred_itinerary)
    return {
        "cover_src": _cover_data_uri(cover_image),
        "schedule_text": format_date_range(trip.start_date, trip.end_date),
        "members": trip.members,
        "purpose": trip.purpose,
        "hotels": " / ".join(trip.hotels),
        "budget": budget if budget.rows else None,
        "day_groups": build_itinerary(photos),
        "narrative_paragraphs": split_paragraphs(narrative),
    }


def split_paragraphs(text: Optional[str]) -> List[List[str]]:
    """Split free text into paragraphs (blank-line separated) of non-empty lines."""
    if not text or not text.strip():
        return []
    paragraphs: List[List[str]] = []
    for block in re.split(r"\n\s*\n", text.strip()):
        lines = [line.strip() for line in block.splitlines() if line.strip()]
        if lines:
            paragraphs.append(lines)
    return paragraphs


def _cover_data_uri(cover_image: Optional[bytes]) -> Optional[str]:
    if not cover_image:
        return None
    return "data:image/png;base64," + base64.b64encode(cover_image).decode("ascii")
