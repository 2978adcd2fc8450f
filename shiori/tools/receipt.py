import json
import math
import re
from typing import Any, Dict, List, Optional

from shiori.schemas import ReceiptExtraction, ReceiptItem

_STORE_KEYS = ("storeName", "store", "shop", "店舗名", "店名")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence (```json ... ```) if present."""
    cleaned = (text or "").strip()
    cleaned = re.sub(r"^```(?:json)?", "", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"```$", "", cleaned)
    return cleaned.strip()


def load_json_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(strip_code_fences(text))
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def parse_items_from_json_text(text: str) -> Optional[ReceiptExtraction]:
    """Parse a model response into receipt items, or ``None`` when unusable.

    Amount strings are reduced to their digits, dots and minus signs before
    conversion; items with a blank name or a non-finite amount are dropped.
    """
    data = load_json_object(text)
    if data is None or not isinstance(data.get("items"), list):
        return None

    items: List[ReceiptItem] = []
    for it in data["items"]:
        if not isinstance(it, dict) or not isinstance(it.get("name"), str):
            continue
        amount = _coerce_receipt_amount(it.get("amount"))
        name = it["name"].strip()
        if amount is None or not name:
            continue
        items.append(ReceiptItem(name=name, amount=amount))

    if not items:
        return None

    store_raw = next((data.get(k) for k in _STORE_KEYS if data.get(k)), None)
    store_name = store_raw.strip() if isinstance(store_raw, str) else None
    return ReceiptExtraction(items=items, store_name=store_name)


def _coerce_receipt_amount(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        digits = re.sub(r"[^0-9.\-]", "", value)
        if not digits:
            number = 0.0
        else:
            try:
                number = float(digits)
            except ValueError:
                return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number
