"""Sprite naming: timestamp-derived, DNS-safe slugs."""

from __future__ import annotations

import re
from datetime import datetime, timezone

MAX_NAME_LENGTH = 50
NAME_PREFIX = "cockpit"

_INVALID = re.compile(r"[^a-z0-9-]+")


def now_stamp(moment: datetime | None = None) -> str:
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y%m%d-%H%M%S")


def sanitize_name(value: str) -> str:
    slug = _INVALID.sub("-", value.lower()).strip("-")
    # Truncation can expose a hyphen at the cut point
    return slug[:MAX_NAME_LENGTH].rstrip("-")


def sprite_name(moment: datetime | None = None) -> str:
    return sanitize_name(f"{NAME_PREFIX}-{now_stamp(moment)}")
