"""Shared utilities (datetime, ids, dot-path lookup)."""

from sellerops.shared.utils.datetime import ensure_utc, utc_now
from sellerops.shared.utils.generators import generate_id
from sellerops.shared.utils.paths import MISSING, interpolate, resolve_path

__all__ = [
    "MISSING",
    "ensure_utc",
    "generate_id",
    "interpolate",
    "resolve_path",
    "utc_now",
]
