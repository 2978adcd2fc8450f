from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import FastAPI, File, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from shiori.errors import BadRequestError, RenderTimeoutError, ShioriError
from shiori.llm import extract_receipt
from shiori.orchestrator import orchestrate_shiori
from shiori.pdf import browser_session
from shiori.schemas import ImageUpload
from shiori.tools.landmarks import LandmarkLookup

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("SHIORI_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False

MAX_IMAGES = 10
RECEIPT_MAX_BYTES = 10 * 1024 * 1024
ALLOWED_RECEIPT_TYPES = {"image/jpeg", "image/png", "image/webp"}
REQUEST_TIMEOUT_SECONDS = float(os.getenv("SHIORI_REQUEST_TIMEOUT_SECONDS", "180"))
KEEP_ALIVE_TIMEOUT_SECONDS = 60


@asynccontextmanager
async def lifespan(_: FastAPI):
    # The browser itself is launched lazily by the first render.
    yield
    await browser_session.stop()


app = FastAPI(title="Shiori Booklet API", lifespan=lifespan)

# Mobile clients and the local web preview both post here; operators can narrow
# this with SHIORI_ALLOWED_ORIGINS.
raw_origins = os.getenv("SHIORI_ALLOWED_ORIGINS") or "*"
allowed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
if not allowed_origins:
    allowed_origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _is_production() -> bool:
    return os.getenv("SHIORI_ENV", "").lower() == "production"


@app.exception_handler(ShioriError)
async def _shiori_error_handler(_: Request, exc: ShioriError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s: %s", exc.code, exc.message, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(Exception)
async def _unexpected_error_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.error("Error processing request", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": {"code": "internal_error", "message": "Internal Server Error"}},
    )


@app.get("/landmarkData")
async def landmark_data(
    lat: Optional[str] = Query(None),
    lon: Optional[str] = Query(None),
) -> Any:
    """Proxy a coordinate lookup to the place-info provider."""
    if not lat or not lon:
        raise BadRequestError("Bad Request: Missing latitude or longitude parameters")
    return await LandmarkLookup().lookup(lat, lon)


@app.post("/receipt")
async def receipt(receipt: Optional[UploadFile] = File(None)) -> Any:
    """Extract store name and line items from a receipt photo."""
    if receipt is None:
        raise BadRequestError("Bad Request: receipt image is required (field name: receipt)")
    if receipt.content_type not in ALLOWED_RECEIPT_TYPES:
        raise BadRequestError(f"Bad Request: unsupported image type ({receipt.content_type})")
    data = await receipt.read(RECEIPT_MAX_BYTES + 1)
    if len(data) > RECEIPT_MAX_BYTES:
        raise BadRequestError("Bad Request: receipt image exceeds 10MB")

    image = ImageUpload(filename=receipt.filename, content_type=receipt.content_type, data=data)
    parsed = await extract_receipt(image, include_details=not _is_production())
    return parsed.model_dump(by_alias=True, exclude_none=True)


@app.post("/")
async def generate_shiori(request: Request) -> Response:
    """Build the booklet PDF from uploaded photos and the ``detailJson`` blob."""
    form = await request.form()
    images = await _read_images(form.getlist("images"))
    detail = await _read_detail(form.get("detailJson"))

    try:
        result = await asyncio.wait_for(orchestrate_shiori(detail, images), timeout=REQUEST_TIMEOUT_SECONDS)
    except asyncio.TimeoutError as exc:
        raise RenderTimeoutError(f"Booklet generation exceeded {REQUEST_TIMEOUT_SECONDS:.0f}s") from exc

    return Response(
        content=result.pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": 'attachment; filename="shiori.pdf"'},
    )


async def _read_images(entries: List[Any]) -> List[ImageUpload]:
    files = [entry for entry in entries if hasattr(entry, "read")]
    if len(files) > MAX_IMAGES:
        raise BadRequestError(f"Bad Request: at most {MAX_IMAGES} images are accepted")
    uploads: List[ImageUpload] = []
    for file in files:
        data = await file.read()
        if not data:
            continue
        uploads.append(
            ImageUpload(
                filename=file.filename,
                content_type=file.content_type or "image/jpeg",
                data=data,
            )
        )
    return uploads


async def _read_detail(entry: Any) -> Any:
    """``detailJson`` may arrive as a file part or a plain text field."""
    if entry is None:
        return {}
    raw = await entry.read() if hasattr(entry, "read") else entry
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not str(raw).strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise BadRequestError("Bad Request: detailJson is not valid JSON") from exc


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "shiori.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT") or 8080),
        timeout_keep_alive=KEEP_ALIVE_TIMEOUT_SECONDS,
    )
