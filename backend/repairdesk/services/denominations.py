# Overview: Denomination valuation for physical cash counts (INR notes and coins).

from __future__ import annotations

from typing import Any, Mapping

from ..validation import ValidationError, coerce_int


# (key, face value in paise), largest first. Keys match CashDenomination
# columns with a "_count" suffix.
DENOMINATIONS: tuple[tuple[str, int], ...] = (
    ("note_2000", 200_000),
    ("note_500", 50_000),
    ("note_200", 20_000),
    ("note_100", 10_000),
    ("note_50", 5_000),
    ("note_20", 2_000),
    ("note_10", 1_000),
    ("coin_5", 500),
    ("coin_2", 200),
    ("coin_1", 100),
)

DENOMINATION_KEYS = tuple(key for key, _value in DENOMINATIONS)

# Upper bound on a single count; guards against typos like 1000000 notes
MAX_DENOMINATION_COUNT = 100_000


def calculate_denomination_total(counts: Mapping[str, int]) -> int:
    """
    Value a drawer count: sum(count * face value).

    Missing keys count as zero. No validation here; callers validate first.
    """
    return sum((counts.get(key) or 0) * value for key, value in DENOMINATIONS)


def validate_denomination_counts(payload: Any) -> dict[str, int]:
    """
    Validate client-supplied counts and return a complete key -> count map.

    Rejects unknown keys, non-integers and negative counts.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Denomination counts must be a JSON object")

    unknown = sorted(set(payload) - set(DENOMINATION_KEYS))
    if unknown:
        raise ValidationError(f"Unknown denomination(s): {', '.join(unknown)}")

    counts: dict[str, int] = {}
    for key in DENOMINATION_KEYS:
        raw = payload.get(key)
        if raw is None:
            counts[key] = 0
            continue
        count = coerce_int(key, raw)
        if count < 0:
            raise ValidationError(f"{key} cannot be negative")
        if count > MAX_DENOMINATION_COUNT:
            raise ValidationError(f"{key} exceeds maximum count of {MAX_DENOMINATION_COUNT}")
        counts[key] = count
    return counts
