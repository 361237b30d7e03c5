# apps/backend/tracker/schemas/events.py
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

DeliveryKind = Literal["pixel", "beacon"]

ELEMENT_TEXT_MAX = 200


# -----------------------------------------------------------------------------
# Inbound payloads (decoded once at the HTTP boundary)
# -----------------------------------------------------------------------------
class PixelParams(BaseModel):
  """Query string of GET /pixel.gif. Values are untrusted and untyped."""
  model_config = ConfigDict(extra="ignore")

  kind: Literal["pixel"] = "pixel"
  u: Any = None
  r: Any = None
  uid: Any = None
  event_type: Any = None


class BeaconBody(BaseModel):
  """JSON body of POST /event, as sent by tracker.js."""
  model_config = ConfigDict(extra="ignore")

  kind: Literal["beacon"] = "beacon"
  url: Any = None
  ref: Any = None
  uid: Any = None
  event_type: Any = None
  event_name: Any = None
  element_tag: Any = None
  element_text: Any = None
  link_url: Any = None
  button_type: Any = None
  form_id: Any = None
  duration: Any = None
  timestamp: Any = None


InboundPayload = Annotated[Union[PixelParams, BeaconBody], Field(discriminator="kind")]


class RequestMeta(BaseModel):
  model_config = ConfigDict(frozen=True)

  source_ip: str = ""
  user_agent: str = ""


# -----------------------------------------------------------------------------
# Canonical record
# -----------------------------------------------------------------------------
class EventRecord(BaseModel):
  model_config = ConfigDict(frozen=True)

  occurred_at: int  # server clock, seconds since epoch
  delivery_kind: DeliveryKind

  source_ip: str = ""
  user_agent: str = ""
  page_url: str = ""
  referrer_url: str = ""
  visitor_id: str = ""
  event_type: str = "page_view"

  event_name: Optional[str] = None
  element_tag: Optional[str] = None
  element_text: Optional[str] = Field(default=None, max_length=ELEMENT_TEXT_MAX)
  link_url: Optional[str] = None
  button_type: Optional[str] = None
  form_id: Optional[str] = None

  duration_ms: Optional[int] = Field(default=None, ge=0)
  # client clock, ms; untrusted, never used for bucketing
  client_timestamp: Optional[int] = None


class StoredEvent(EventRecord):
  id: int


# -----------------------------------------------------------------------------
# Summary
# -----------------------------------------------------------------------------
class CountEntry(BaseModel):
  key: Optional[str]
  count: int


class HourBucket(BaseModel):
  bucket: str  # "YYYY-MM-DD HH:00:00", UTC
  count: int


class Summary(BaseModel):
  window_hours: int
  since: int
  generated_at: int

  total_events: int
  unique_visitors: int

  event_types: List[CountEntry]
  top_interactions: List[CountEntry]
  top_urls: List[CountEntry]
  hourly: List[HourBucket]
