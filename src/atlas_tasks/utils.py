"""Provide utility helpers for timestamps and request identifiers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _request_id() -> str:
    """Short request identifier: ``req-<8hex>``."""
    return f"req-{uuid.uuid4().hex[:8]}"
