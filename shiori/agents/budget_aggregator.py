"""Budget table rows and the grand total."""
from __future__ import annotations

import math
import re
from typing import Any, Iterable, List

from shiori.agents.trip_normalizer import display_value
from shiori.schemas import BudgetCategory, BudgetRow, BudgetSummary

_NUMERIC = re.compile(r"^[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?$")
# Unsigned 0x / 0o / 0b literals, as lenient number parsing accepts them.
_RADIX_LITERAL = re.compile(r"^0([xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)$")


def aggregate_budget(categories: Iterable[BudgetCategory]) -> BudgetSummary:
    """Render each retained category and sum their totals.

    A total that is not numeric still shows up in its row as supplied but adds
    nothing to the grand total.
    """
    rows: List[BudgetRow] = []
    grand_total = 0.0
    for category in categories:
        lines = [f"{d.name}…… {display_value(d.amount)}円" for d in category.details]
        grand_total += coerce_amount(category.total)
        rows.append(
            BudgetRow(
                title=category.title,
                detail_lines=lines,
                total_display=f"{display_value(category.total)}円",
            )
        )
    return BudgetSummary(
        rows=rows,
        grand_total=grand_total,
        grand_total_display=f"{display_value(grand_total)}円",
    )


def coerce_amount(value: Any) -> float:
    """Numeric value of a loosely typed amount; anything unusable counts as 0.

    Only ASCII digits count, so full-width totals such as ``"１５００"`` add
    nothing. ``"Infinity"`` and other non-finite values also count as 0 so the
    grand total stays printable.
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _RADIX_LITERAL.match(text):
            return float(int(text, 0))
        if not _NUMERIC.match(text):
            return 0.0
        number = float(text)
    else:
        return 0.0
    return number if math.isfinite(number) else 0.0
