"""GET /history -- recent executions from the audit table."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import Response

from querycopilot.core.config import get_settings
from querycopilot.core.logging import get_logger
from querycopilot.db.history import fetch_recent
from querycopilot.ingest.ndjson import to_ndjson

logger = get_logger(__name__)
router = APIRouter()


def _recent(limit: int) -> list[dict]:
    try:
        return fetch_recent(limit=limit)
    except Exception as exc:
        logger.exception("History lookup failed")
        raise HTTPException(status_code=503, detail=f"History store unavailable: {exc}")


@router.get("")
def history_endpoint(limit: int = Query(50, ge=1, le=500)):
    if not get_settings().history_enabled:
        return {"enabled": False, "items": []}
    return {"enabled": True, "items": _recent(limit)}


@router.get("/export")
def history_export_endpoint(limit: int = Query(500, ge=1, le=5000)):
    """The same rows as NDJSON, one execution per line."""
    items = _recent(limit) if get_settings().history_enabled else []
    return Response(content=to_ndjson(items), media_type="application/x-ndjson")
