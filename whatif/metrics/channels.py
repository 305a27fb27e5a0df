from __future__ import annotations
from typing import Dict, Iterable, Tuple

# Canonical channel roster modelled in retail mode, in display order.
KNOWN_CHANNELS: Tuple[str, ...] = ("offline", "online", "shopee", "lazada", "tiki", "tiktok")
MARKETPLACE_CHANNELS: Tuple[str, ...] = ("shopee", "lazada", "tiki", "tiktok")
FALLBACK_CHANNEL = "other"

# First match wins; marketplaces are checked before the generic groupings so
# "Shopee Online Store" lands on shopee.
_KEYWORDS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("shopee", ("shopee",)),
    ("lazada", ("lazada",)),
    ("tiki", ("tiki",)),
    ("tiktok", ("tiktok", "tik tok")),
    ("offline", ("offline", "store", "retail")),
    ("online", ("online", "website", "web")),
)


def normalize_channel(label: str | None) -> str:
    """Map a free-text channel label onto a canonical key.

    Total and idempotent: every known key maps to itself, and a label that
    matches no keyword maps to its own lower-cased, trimmed form (which again
    matches nothing). Empty labels map to "other".
    """
    norm = (label or "").lower().strip()
    if not norm:
        return FALLBACK_CHANNEL
    for key, words in _KEYWORDS:
        if any(w in norm for w in words):
            return key
    return norm


def is_marketplace(channel: str) -> bool:
    return channel in MARKETPLACE_CHANNELS


def merge_by_channel(values: Iterable[Tuple[str, float]]) -> Dict[str, float]:
    """Sum values whose labels normalize to the same key."""
    out: Dict[str, float] = {}
    for label, v in values:
        key = normalize_channel(label)
        out[key] = out.get(key, 0.0) + float(v or 0.0)
    return out
