# shiori/llm.py
import base64
import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import AsyncOpenAI

from shiori.agents.itinerary_builder import photo_key
from shiori.errors import BadRequestError, ConfigurationError, ExtractionError, UpstreamError
from shiori.schemas import DayGroup, ImageUpload, PhotoEvent, ReceiptExtraction, Trip
from shiori.tools.receipt import load_json_object, parse_items_from_json_text

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("SHIORI_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

# Load .env file if present
load_dotenv()

OPENAI_MODEL = os.getenv("SHIORI_OPENAI_MODEL", "gpt-4o")
RECEIPT_MODEL = os.getenv("SHIORI_RECEIPT_MODEL", "gemini-2.5-flash")
MAX_INFERENCE_IMAGES = 10

COVER_PROMPT = """#ミッション
画像から特徴的な部分を抽出し、以下を生成してください。
・単色の色紙に黒ボールペンで描いたような、小学生の修学旅行のしおり表紙。

#ポイント
・大きな手書き文字で「修学旅行」と書かれている。
・子どもの落書き風に、画像の特徴部分と、楽しそうな児童やかわいい動物（くま・うさぎ・とり）を描く。
・生成する画像は短辺:長辺=1:√2となる縦長の画像とすること。
・線はガタガタで素朴、小学生が描いたようなノートの落書き風。
"""

NARRATIVE_SYSTEM = """あなたは修学旅行のしおりを書く先生です。
与えられた旅行データだけを使い、児童が読んで楽しい「旅のふりかえり」を日本語で書いてください。
3〜5段落、段落の間は空行で区切り、見出し・箇条書き・Markdownは使わないこと。
データにない出来事を作らないこと。
"""

NARRATIVE_TEMPLATE = """旅の目的: {purpose}
日程: {start} 〜 {end}
宿泊先: {hotels}
班員: {members}
行程:
{itinerary}
"""

ITINERARY_SYSTEM = """You reconstruct a travel itinerary from trip photos.
For every photo, infer the place it was taken (a short Japanese place name) and,
when the photo itself shows it, the local date-time in ISO 8601 with +09:00 offset.
Respond ONLY in JSON with the schema:
  {"events": [{"clientId": "...", "placeName": "...", "dateTime": "..."}]}
Use the clientId given for each photo. Use null when unsure; do not invent times.
"""

RECEIPT_PROMPT = "\n".join(
    [
        "レシート画像から、店舗名(storeName) と 商品名・金額(items) を抽出し、JSONのみで出力してください。",
        'フォーマット例: {"storeName":"◯◯店","items":[{"name":"コーヒー","amount":300}]}',
        "条件: キーは storeName, items/name/amount。通貨はJPYとして amount は数値(円)。",
        "余計な文章・説明・コードブロックは一切出力しないこと。",
    ]
)

_openai_client: Optional[AsyncOpenAI] = None
_gemini_client: Optional[genai.Client] = None


def get_openai_client() -> AsyncOpenAI:
    """Return the shared OpenAI client, creating it on first use."""
    global _openai_client
    if _openai_client is None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("Server misconfiguration: OPENAI_API_KEY is not set")
        _openai_client = AsyncOpenAI(api_key=api_key)
    return _openai_client


def get_gemini_client() -> genai.Client:
    global _gemini_client
    if _gemini_client is None:
        api_key = os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ConfigurationError("Server misconfiguration: GEMINI_API_KEY is not set")
        _gemini_client = genai.Client(api_key=api_key)
    return _gemini_client


async def generate_cover_image(image: ImageUpload) -> bytes:
    """Draw a hand-made booklet cover from the first uploaded photo; returns PNG bytes."""
    client = get_openai_client()
    logger.info("Invoking cover generation with model %s", OPENAI_MODEL)
    response = await client.responses.create(
        model=OPENAI_MODEL,
        input=[
            {
                "role": "user",
                "content": [
                    {"type": "input_text", "text": COVER_PROMPT},
                    {"type": "input_image", "image_url": image.data_uri},
                ],
            }
        ],
        tools=[{"type": "image_generation"}],
    )
    results = [
        getattr(output, "result", None)
        for output in response.output
        if getattr(output, "type", None) == "image_generation_call"
    ]
    results = [r for r in results if r]
    if not results:
        raise UpstreamError("Image generation failed")
    logger.info("Cover generation done")
    return base64.b64decode(results[0])


async def infer_itinerary(photos: Sequence[PhotoEvent], images: Sequence[ImageUpload]) -> List[Dict[str, Any]]:
    """Ask the model for place/time hints per photo.

    Returns the raw event dicts (``clientId``/``placeName``/``dateTime``);
    raises ``ExtractionError`` when the reply is not the expected JSON shape.
    """
    client = get_openai_client()
    content: List[Dict[str, Any]] = [{"type": "text", "text": _describe_photos(photos, images)}]
    for image in list(images)[:MAX_INFERENCE_IMAGES]:
        content.append({"type": "image_url", "image_url": {"url": image.data_uri}})

    logger.info(
        "Invoking itinerary inference with model %s (%d photo events, %d images)",
        OPENAI_MODEL,
        len(photos),
        min(len(images), MAX_INFERENCE_IMAGES),
    )
    resp = await client.chat.completions.create(
        model=OPENAI_MODEL,
        messages=[
            {"role": "system", "content": ITINERARY_SYSTEM},
            {"role": "user", "content": content},
        ],
        temperature=0.2,
        response_format={"type": "json_object"},
    )
    raw = resp.choices[0].message.content or ""
    payload = load_json_object(raw)
    if payload is None or not isinstance(payload.get("events"), list):
        logger.warning("Itinerary inference returned an unexpected payload")
        raise ExtractionError("Unprocessable Entity: failed to infer itinerary from photos")
    events = [ev for ev in payload["events"] if isinstance(ev, dict)]
    logger.info("Itinerary inference produced %d event(s)", len(events))
    return events


async def generate_narrative(trip: Trip, day_groups: Sequence[DayGroup]) -> str:
    """Write the closing narrative for the booklet."""
    client = get_openai_client()
    user_prompt = NARRATIVE_TEMPLATE.format(
        purpose=trip.purpose or "未設定",
        start=trip.start_date or "未設定",
        end=trip.end_date or "未設定",
        hotels=" / ".join(trip.hotels) or "未設定",
        members=", ".join(f"{m.name}({m.role_label})" for m in trip.members) or "未設定",
        itinerary=_summarise_itinerary(day_groups),
    )
    logger.info("Invoking narrative generation with model %s", OPENAI_MODEL)
    resp = await client.chat.completions.create(
        model=OPENAI_MODEL,
        messages=[
            {"role": "system", "content": NARRATIVE_SYSTEM},
            {"role": "user", "content": user_prompt},
        ],
        temperature=0.7,
    )
    return (resp.choices[0].message.content or "").strip()


async def extract_receipt(image: ImageUpload, *, include_details: bool = True) -> ReceiptExtraction:
    """Read store name and line items from a receipt photo with Gemini."""
    client = get_gemini_client()
    try:
        result = await client.aio.models.generate_content(
            model=RECEIPT_MODEL,
            contents=[
                genai_types.Part.from_bytes(data=image.data, mime_type=image.content_type),
                RECEIPT_PROMPT,
            ],
            config=genai_types.GenerateContentConfig(
                response_mime_type="application/json",
                temperature=0,
                max_output_tokens=2048,
            ),
        )
    except genai_errors.ClientError as exc:
        if exc.code == 400:
            raise BadRequestError("Bad Request") from exc
        raise UpstreamError("Receipt extraction request failed") from exc
    except genai_errors.APIError as exc:
        raise UpstreamError("Receipt extraction request failed") from exc

    text = _response_text(result)
    parsed = parse_items_from_json_text(text)
    if parsed is None:
        details = None
        if include_details:
            candidates = getattr(result, "candidates", None) or []
            finish_reason = getattr(candidates[0], "finish_reason", None) if candidates else None
            feedback = getattr(result, "prompt_feedback", None)
            details = {
                "finishReason": str(finish_reason) if finish_reason is not None else None,
                "promptFeedback": feedback.model_dump(mode="json") if hasattr(feedback, "model_dump") else None,
            }
        raise ExtractionError("Unprocessable Entity: failed to extract items from receipt", details=details)
    logger.info("Receipt extraction found %d item(s)", len(parsed.items))
    return parsed


def _response_text(result: Any) -> str:
    try:
        text = result.text or ""
    except (AttributeError, ValueError):
        text = ""
    if text:
        return text
    candidates = getattr(result, "candidates", None) or []
    if candidates and getattr(candidates[0], "content", None):
        parts = getattr(candidates[0].content, "parts", None) or []
        return "".join(p.text for p in parts if getattr(p, "text", None)).strip()
    return ""


def _describe_photos(photos: Sequence[PhotoEvent], images: Sequence[ImageUpload]) -> str:
    lines = ["Known photo metadata (upload order):"]
    for idx, photo in enumerate(photos):
        lines.append(
            json.dumps(
                {
                    "clientId": photo_key(photo, idx),
                    "placeName": photo.place_name if isinstance(photo.place_name, str) else None,
                    "dateTime": photo.date_time if isinstance(photo.date_time, str) else None,
                },
                ensure_ascii=False,
            )
        )
    if not photos:
        lines.append("(none)")
    attached = min(len(images), MAX_INFERENCE_IMAGES)
    lines.append(f"{attached} image(s) attached in the same order; use clientId image-N for images without metadata.")
    return "\n".join(lines)


def _summarise_itinerary(day_groups: Sequence[DayGroup]) -> str:
    if not day_groups:
        return "(記録なし)"
    parts: List[str] = []
    for group in day_groups:
        stops = "、".join(f"{ev.display_time} {ev.place_name}" for ev in group.events)
        parts.append(f"- {group.label}: {stops}")
    return "\n".join(parts)
