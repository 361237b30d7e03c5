# apps/backend/tracker/routes/events.py
import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from tracker.core.config import Settings
from tracker.deps import get_app_settings, get_store
from tracker.request_utils import request_meta
from tracker.schemas.events import EventRecord
from tracker.services.event_store import EventStore, StoreUnavailable
from tracker.services.normalize_event import decode_payload, normalize

logger = logging.getLogger(__name__)

router = APIRouter()

# 1x1 transparent GIF
PIXEL_GIF = (
  b"GIF89a"
  b"\x01\x00\x01\x00"
  b"\x80\x00\x00"
  b"\x00\x00\x00"
  b"\xff\xff\xff"
  b"\x21\xf9\x04\x01\x00\x00\x00\x00"
  b"\x2c\x00\x00\x00\x00\x01\x00\x01\x00\x00"
  b"\x02\x02\x44\x01\x00"
  b"\x3b"
)


async def _append(store: EventStore, record: EventRecord, timeout: float) -> int:
  # Best-effort telemetry: a failed or slow write is dropped, never retried.
  try:
    event_id = await asyncio.wait_for(asyncio.to_thread(store.append, record), timeout=timeout)
  except (StoreUnavailable, asyncio.TimeoutError) as e:
    logger.warning("dropped %s event (%s): %r", record.delivery_kind, record.event_type, e)
    raise HTTPException(status_code=503, detail="event store unavailable")
  logger.debug("stored %s event id=%d type=%s", record.delivery_kind, event_id, record.event_type)
  return event_id


@router.get("/pixel.gif")
async def pixel(
  request: Request,
  store: EventStore = Depends(get_store),
  settings: Settings = Depends(get_app_settings),
):
  payload = decode_payload("pixel", request.query_params)
  record = normalize(payload, request_meta(request))
  await _append(store, record, settings.write_timeout_s)
  return Response(
    content=PIXEL_GIF,
    media_type="image/gif",
    headers={"Cache-Control": "no-store, must-revalidate"},
  )


@router.post("/event", status_code=204)
async def beacon(
  request: Request,
  store: EventStore = Depends(get_store),
  settings: Settings = Depends(get_app_settings),
):
  limit = settings.max_body_bytes

  declared = request.headers.get("content-length", "")
  if declared.isdigit() and int(declared) > limit:
    raise HTTPException(status_code=413, detail=f"body larger than {limit} bytes")

  # chunked uploads carry no Content-Length: count while reading
  body = bytearray()
  async for chunk in request.stream():
    body += chunk
    if len(body) > limit:
      raise HTTPException(status_code=413, detail=f"body larger than {limit} bytes")

  raw = {}
  if body.strip():
    try:
      raw = json.loads(body)
    except ValueError:
      raise HTTPException(status_code=400, detail="body is not valid JSON")

  record = normalize(decode_payload("beacon", raw), request_meta(request))
  await _append(store, record, settings.write_timeout_s)
  return Response(status_code=204, headers={"Cache-Control": "no-store"})
