"""Shared URL utilities — normalize URLs and derive filesystem-safe target slugs."""

from __future__ import annotations

import hashlib
import re
from urllib.parse import urlparse

_UNSAFE_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)
MAX_SLUG_PREFIX = 80


def normalize_url(url: str) -> str:
    """Normalize a URL so cosmetic variations map to the same target."""
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/") or "/"
    query = ""
    if parsed.query:
        params = sorted(parsed.query.split("&"))
        query = "?" + "&".join(params)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{path}{query}"


def sanitize_url(url: str) -> str:
    """Replace every non-alphanumeric character with ``_`` and lower-case the rest."""
    return _UNSAFE_CHARS.sub("_", url).lower()


def slug_from_url(url: str) -> str:
    """Derive the per-target directory name.

    The readable prefix alone can collide (``a-b.com`` and ``a.b.com``), so a
    short hash of the normalized URL is appended.
    """
    prefix = sanitize_url(url.strip())[:MAX_SLUG_PREFIX].strip("_")
    digest = hashlib.md5(normalize_url(url).encode()).hexdigest()[:8]
    return f"{prefix}_{digest}" if prefix else digest


def is_supported_url(url: str) -> bool:
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
