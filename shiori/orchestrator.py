# shiori/orchestrator.py
from __future__ import annotations

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from shiori.agents.itinerary_builder import build_itinerary, merge_inferred_events
from shiori.agents.trip_normalizer import normalize_detail
from shiori.llm import generate_cover_image, generate_narrative, infer_itinerary  # module-level so tests can patch
from shiori.pdf import html_to_pdf
from shiori.renderer import render_document
from shiori.schemas import ImageUpload, RenderStageName, ShioriResult

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("SHIORI_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

COVER_TIMEOUT_SECONDS = float(os.getenv("SHIORI_COVER_TIMEOUT_SECONDS", "150"))
PDF_MAX_CONCURRENCY = int(os.getenv("SHIORI_PDF_MAX_CONCURRENCY", "2"))


class RenderSlots:
    """Admission queue for PDF renders.

    Callers beyond ``limit`` wait for a free slot instead of being rejected.
    ``in_flight`` and ``peak`` are exposed for logging and tests.
    """

    def __init__(self, limit: int = PDF_MAX_CONCURRENCY):
        if limit < 1:
            raise ValueError("render concurrency limit must be at least 1")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self.in_flight = 0
        self.peak = 0
        self.waiting = 0

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        self.waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self.waiting -= 1
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            yield
        finally:
            self.in_flight -= 1
            self._semaphore.release()


render_slots = RenderSlots()


async def generate_cover_with_timeout(
    image: Optional[ImageUpload],
    timeout: Optional[float] = None,
) -> Optional[bytes]:
    """Return cover PNG bytes, or ``None`` when there is no photo, it fails or it is late.

    A late generation call is cancelled rather than left running.
    """
    if image is None:
        logger.info("No photo uploaded; skipping cover generation")
        return None
    deadline = COVER_TIMEOUT_SECONDS if timeout is None else timeout
    started = time.perf_counter()
    try:
        return await asyncio.wait_for(generate_cover_image(image), timeout=deadline)
    except asyncio.TimeoutError:
        logger.warning("Cover generation exceeded %.1fs; continuing without cover", deadline)
        return None
    except Exception:
        logger.warning("Cover generation failed; continuing without cover", exc_info=True)
        return None
    finally:
        logger.info("cover: %.3fs", time.perf_counter() - started)


async def orchestrate_shiori(
    detail: Any,
    images: Sequence[ImageUpload] | None = None,
    *,
    slots: RenderSlots | None = None,
    cover_timeout: float | None = None,
) -> ShioriResult:
    """Run the whole booklet pipeline for one request and return the PDF.

    Stages run strictly in order; inference, narrative and rendering failures
    abort the request, a missing cover does not.
    """
    uploads: List[ImageUpload] = list(images or [])
    stages: List[RenderStageName] = []
    timings: List[tuple] = []

    def advance(stage: RenderStageName) -> None:
        stages.append(stage)
        logger.info("Stage → %s", stage)

    advance("received")
    trip = normalize_detail(detail)
    logger.info(
        "Orchestration start: photos=%d uploads=%d members=%d categories=%d",
        len(trip.photos),
        len(uploads),
        len(trip.members),
        len(trip.allowance),
    )

    inferred: Optional[List[Dict[str, Any]]] = None
    if trip.photos or uploads:
        started = time.perf_counter()
        inferred = await infer_itinerary(trip.photos, uploads)
        timings.append(("itinerary", time.perf_counter() - started))
    else:
        logger.info("No photos supplied; skipping itinerary inference")
    advance("itinerary-inferred")

    started = time.perf_counter()
    cover = await generate_cover_with_timeout(uploads[0] if uploads else None, timeout=cover_timeout)
    timings.append(("cover", time.perf_counter() - started))
    advance("cover-attempted")

    started = time.perf_counter()
    day_groups = build_itinerary(merge_inferred_events(trip.photos, inferred))
    narrative = await generate_narrative(trip, day_groups)
    timings.append(("narrative", time.perf_counter() - started))
    advance("narrative-generated")

    started = time.perf_counter()
    html = render_document(trip, cover_image=cover, inferred_itinerary=inferred, narrative=narrative)
    timings.append(("html", time.perf_counter() - started))
    advance("document-built")

    gate = slots or render_slots
    started = time.perf_counter()
    async with gate.slot():
        advance("render-admitted")
        logger.info("Render slot acquired (%d/%d in flight)", gate.in_flight, gate.limit)
        pdf = await html_to_pdf(html)
    timings.append(("pdf", time.perf_counter() - started))
    advance("render-complete")

    logger.info("Timings: %s", ", ".join(f"{name} {secs:.3f}s" for name, secs in timings))
    return ShioriResult(pdf=pdf, html=html, cover_used=cover is not None, stages=stages, timings=timings)
