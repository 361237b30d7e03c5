# apps/backend/tracker/routes/stats.py
import asyncio
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from tracker.core.config import Settings
from tracker.deps import get_app_settings, get_store
from tracker.request_utils import parse_hours
from tracker.schemas.events import Summary
from tracker.services.aggregator import summarize
from tracker.services.event_store import EventStore, StoreUnavailable

logger = logging.getLogger(__name__)

router = APIRouter()

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))

WINDOW_LINKS = ((1, "1h"), (24, "24h"), (168, "7d"))


async def _summary(store: EventStore, hours: int, timeout: float) -> Summary:
  try:
    return await asyncio.wait_for(asyncio.to_thread(summarize, store, hours), timeout=timeout)
  except (StoreUnavailable, asyncio.TimeoutError) as e:
    logger.error("summary failed (hours=%d): %r", hours, e)
    raise HTTPException(status_code=503, detail="summary unavailable: event store did not answer")


@router.get("/api/summary", response_model=Summary)
async def summary_json(
  # Example: /api/summary?hours=168
  hours: Optional[str] = Query(default=None),
  store: EventStore = Depends(get_store),
  settings: Settings = Depends(get_app_settings),
):
  window = parse_hours(hours, settings.default_window_hours)
  return await _summary(store, window, settings.summary_timeout_s)


@router.get("/stats", response_class=HTMLResponse)
async def stats_page(
  request: Request,
  hours: Optional[str] = Query(default=None),
  store: EventStore = Depends(get_store),
  settings: Settings = Depends(get_app_settings),
):
  window = parse_hours(hours, settings.default_window_hours)
  try:
    summary = await _summary(store, window, settings.summary_timeout_s)
  except HTTPException as e:
    return templates.TemplateResponse(
      request,
      "error.html",
      {"title": settings.app_name, "hours": window, "message": e.detail},
      status_code=e.status_code,
    )

  return templates.TemplateResponse(
    request,
    "stats.html",
    {
      "title": settings.app_name,
      "summary": summary,
      "series": [b.model_dump() for b in summary.hourly],
      "window_links": WINDOW_LINKS,
    },
  )
