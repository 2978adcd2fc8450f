import asyncio
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest

from shiori import orchestrator
from shiori.errors import ExtractionError
from shiori.orchestrator import RenderSlots, generate_cover_with_timeout, orchestrate_shiori
from shiori.schemas import ImageUpload

DETAIL = {
    "trip": {"startDate": "2025-05-10", "members": [{"name": "太郎"}]},
    "images": [{"clientId": "a", "dateTime": "2025-05-10T10:00:00+09:00"}],
}
PHOTO = ImageUpload(filename="a.jpg", content_type="image/jpeg", data=b"jpeg-bytes")


def _patch_collaborators(monkeypatch, **overrides) -> Dict[str, Any]:
    fakes: Dict[str, Any] = {
        "infer_itinerary": AsyncMock(return_value=[{"clientId": "a", "placeName": "金閣寺"}]),
        "generate_cover_image": AsyncMock(return_value=b"cover-png"),
        "generate_narrative": AsyncMock(return_value="よい旅でした。"),
        "html_to_pdf": AsyncMock(return_value=b"%PDF-fake"),
    }
    fakes.update(overrides)
    for name, fake in fakes.items():
        monkeypatch.setattr(orchestrator, name, fake)
    return fakes


def test_pipeline_runs_stages_in_order(monkeypatch):
    async def run() -> None:
        fakes = _patch_collaborators(monkeypatch)

        result = await orchestrate_shiori(DETAIL, [PHOTO], slots=RenderSlots(2))

        assert result.stages == [
            "received",
            "itinerary-inferred",
            "cover-attempted",
            "narrative-generated",
            "document-built",
            "render-admitted",
            "render-complete",
        ]
        assert result.pdf == b"%PDF-fake"
        assert result.cover_used is True
        assert "data:image/png;base64," in result.html
        assert "金閣寺" in result.html
        assert "よい旅でした。" in result.html
        fakes["generate_cover_image"].assert_awaited_once_with(PHOTO)
        fakes["html_to_pdf"].assert_awaited_once_with(result.html)

        narrative_groups = fakes["generate_narrative"].await_args.args[1]
        assert [e.place_name for g in narrative_groups for e in g.events] == ["金閣寺"]

    asyncio.run(run())


def test_late_cover_is_cancelled_and_document_still_renders(monkeypatch):
    async def run() -> None:
        state = {"cancelled": False}

        async def slow_cover(image):
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                state["cancelled"] = True
                raise
            return b"too-late"

        _patch_collaborators(monkeypatch, generate_cover_image=slow_cover)

        result = await orchestrate_shiori(DETAIL, [PHOTO], slots=RenderSlots(2), cover_timeout=0.05)

        assert result.cover_used is False
        assert '<div class="page">' in result.html
        assert "<img" not in result.html
        assert state["cancelled"] is True
        assert result.stages[-1] == "render-complete"

    asyncio.run(run())


def test_failed_cover_degrades_to_no_cover(monkeypatch):
    async def run() -> None:
        _patch_collaborators(monkeypatch, generate_cover_image=AsyncMock(side_effect=RuntimeError("boom")))

        result = await orchestrate_shiori(DETAIL, [PHOTO], slots=RenderSlots(2))

        assert result.cover_used is False
        assert result.pdf == b"%PDF-fake"

    asyncio.run(run())


def test_cover_is_skipped_without_uploaded_photo(monkeypatch):
    async def run() -> None:
        cover = AsyncMock(return_value=b"png")
        monkeypatch.setattr(orchestrator, "generate_cover_image", cover)

        assert await generate_cover_with_timeout(None) is None
        cover.assert_not_awaited()

    asyncio.run(run())


def test_inference_is_skipped_when_there_are_no_photos(monkeypatch):
    async def run() -> None:
        fakes = _patch_collaborators(monkeypatch)

        result = await orchestrate_shiori({"purpose": "遠足"}, [], slots=RenderSlots(2))

        fakes["infer_itinerary"].assert_not_awaited()
        fakes["generate_cover_image"].assert_not_awaited()
        assert "<h2>行程</h2>" not in result.html
        assert "itinerary-inferred" in result.stages

    asyncio.run(run())


def test_narrative_failure_fails_the_request(monkeypatch):
    async def run() -> None:
        fakes = _patch_collaborators(monkeypatch, generate_narrative=AsyncMock(side_effect=RuntimeError("llm down")))

        with pytest.raises(RuntimeError):
            await orchestrate_shiori(DETAIL, [PHOTO], slots=RenderSlots(2))
        fakes["html_to_pdf"].assert_not_awaited()

    asyncio.run(run())


def test_malformed_inference_is_unprocessable(monkeypatch):
    async def run() -> None:
        fakes = _patch_collaborators(
            monkeypatch, infer_itinerary=AsyncMock(side_effect=ExtractionError("bad json"))
        )

        with pytest.raises(ExtractionError):
            await orchestrate_shiori(DETAIL, [PHOTO], slots=RenderSlots(2))
        fakes["generate_cover_image"].assert_not_awaited()

    asyncio.run(run())


def test_third_render_waits_for_a_free_slot():
    async def run() -> None:
        slots = RenderSlots(2)
        entered: List[int] = []
        release = asyncio.Event()

        async def render(idx: int) -> None:
            async with slots.slot():
                entered.append(idx)
                await release.wait()

        tasks = [asyncio.create_task(render(i)) for i in range(3)]
        await asyncio.sleep(0.01)

        assert sorted(entered) == [0, 1]
        assert slots.in_flight == 2
        assert slots.waiting == 1

        release.set()
        await asyncio.gather(*tasks)

        assert sorted(entered) == [0, 1, 2]
        assert slots.peak == 2
        assert slots.in_flight == 0

    asyncio.run(run())


def test_concurrent_requests_never_exceed_slot_count(monkeypatch):
    async def run() -> None:
        active = {"now": 0, "max": 0}

        async def fake_pdf(html: str) -> bytes:
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
            await asyncio.sleep(0.02)
            active["now"] -= 1
            return b"%PDF"

        _patch_collaborators(monkeypatch, html_to_pdf=fake_pdf)
        slots = RenderSlots(2)

        results = await asyncio.gather(*[orchestrate_shiori(DETAIL, [PHOTO], slots=slots) for _ in range(5)])

        assert all(r.pdf == b"%PDF" for r in results)
        assert active["max"] == 2
        assert slots.peak == 2

    asyncio.run(run())


def test_slot_is_released_when_render_fails(monkeypatch):
    async def run() -> None:
        _patch_collaborators(monkeypatch, html_to_pdf=AsyncMock(side_effect=RuntimeError("chromium crashed")))
        slots = RenderSlots(1)

        with pytest.raises(RuntimeError):
            await orchestrate_shiori(DETAIL, [PHOTO], slots=slots)

        assert slots.in_flight == 0
        async with slots.slot():
            assert slots.in_flight == 1

    asyncio.run(run())
