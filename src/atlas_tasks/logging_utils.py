"""Configure loguru output and summarize engine responses for log lines."""

from __future__ import annotations

import json
import sys
from typing import Any

from loguru import logger


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def summarize_response(response: Any, max_paths: int = 5) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of a response envelope.

    Args:
        response: A ``TaskResponse`` (or None).
        max_paths: Maximum number of affected paths to include verbatim.

    Returns:
        A dictionary suitable for logging or serialization.
    """
    if response is None:
        return {"response": None}

    meta = getattr(response, "metadata", None)
    affected = list(getattr(meta, "affected_paths", []) or [])
    d: dict[str, Any] = {
        "success": bool(getattr(response, "success", False)),
        "request_id": getattr(meta, "request_id", None),
        "project": getattr(meta, "project_path", None),
        "affected_n": len(affected),
    }
    if affected:
        d["affected_sample"] = affected[:max_paths]

    error = getattr(response, "error", None)
    if error:
        d["error_kind"] = error.get("kind")
        message = str(error.get("message") or "")
        d["error"] = (message[:240] + "…") if len(message) > 240 else message
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)
