from __future__ import annotations

import json
import math
import re
import time
from typing import Any, Mapping, Optional

from pydantic import TypeAdapter

from tracker.schemas.events import (
    ELEMENT_TEXT_MAX,
    BeaconBody,
    DeliveryKind,
    EventRecord,
    InboundPayload,
    PixelParams,
    RequestMeta,
)

DEFAULT_EVENT_TYPE = "page_view"

_INT_PREFIX_RE = re.compile(r"^\s*([+-]?\d+)")
_INT64_MAX = 2**63 - 1

_payload_adapter: TypeAdapter = TypeAdapter(InboundPayload)


# -----------------------------------------------------------------------------
# Coercion helpers (total: never raise)
# -----------------------------------------------------------------------------
def _scrub(s: str) -> str:
    # lone surrogates (legal in JSON "\ud800" escapes) cannot be encoded to UTF-8
    return s.encode("utf-8", "surrogatepass").decode("utf-8", "replace")


def _to_str(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, str):
        return _scrub(v)
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    try:
        if isinstance(v, (dict, list)):
            return _scrub(json.dumps(v, ensure_ascii=False, separators=(",", ":"), default=str))
        return str(v)
    except (ValueError, TypeError):
        # e.g. ints past the interpreter's digit limit
        return ""


def _opt_str(v: Any) -> Optional[str]:
    s = _to_str(v)
    return s if s else None


def parse_int(v: Any) -> Optional[int]:
    """
    Lenient integer parse, same as the browser script's parseInt:
    "1500" -> 1500, "1500ms" -> 1500, 12.9 -> 12, "abc" -> None.
    Values outside the 64-bit range are treated as unparseable.
    """
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        n = v
    elif isinstance(v, float):
        if not math.isfinite(v):
            return None
        n = int(v)
    elif isinstance(v, str):
        m = _INT_PREFIX_RE.match(v)
        if not m or len(m.group(1).lstrip("+-")) > 19:
            return None
        n = int(m.group(1))
    else:
        return None
    if abs(n) > _INT64_MAX:
        return None
    return n


def _event_type(v: Any) -> str:
    return _to_str(v) or DEFAULT_EVENT_TYPE


def _now() -> int:
    return int(time.time())


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def decode_payload(delivery_kind: DeliveryKind, raw: Any) -> PixelParams | BeaconBody:
    """
    Turn an arbitrary mapping (query string, parsed JSON) into the typed
    inbound payload for `delivery_kind`. Anything that is not a mapping
    decodes to an empty payload; unknown keys are dropped.
    """
    fields: dict[str, Any] = {}
    if isinstance(raw, Mapping):
        fields = {str(k): v for k, v in raw.items() if k != "kind"}
    fields["kind"] = delivery_kind
    return _payload_adapter.validate_python(fields)


def normalize(payload: PixelParams | BeaconBody, meta: RequestMeta, now: Optional[int] = None) -> EventRecord:
    """
    Map a decoded payload onto the canonical EventRecord.

    - occurred_at and delivery_kind come from the server, never the caller
    - page_url / referrer_url / visitor_id default to ""
    - event_type defaults to "page_view" (absent or empty)
    - interaction fields are None when absent or empty
    - element_text keeps its first 200 characters
    - duration / timestamp that do not parse are dropped (None)
    """
    occurred_at = _now() if now is None else int(now)

    if isinstance(payload, PixelParams):
        return EventRecord(
            occurred_at=occurred_at,
            delivery_kind="pixel",
            source_ip=meta.source_ip,
            user_agent=meta.user_agent,
            page_url=_to_str(payload.u),
            referrer_url=_to_str(payload.r),
            visitor_id=_to_str(payload.uid),
            event_type=_event_type(payload.event_type),
        )

    element_text = _opt_str(payload.element_text)
    if element_text is not None:
        element_text = element_text[:ELEMENT_TEXT_MAX]

    duration_ms = parse_int(payload.duration)
    if duration_ms is not None and duration_ms < 0:
        duration_ms = None

    return EventRecord(
        occurred_at=occurred_at,
        delivery_kind="beacon",
        source_ip=meta.source_ip,
        user_agent=meta.user_agent,
        page_url=_to_str(payload.url),
        referrer_url=_to_str(payload.ref),
        visitor_id=_to_str(payload.uid),
        event_type=_event_type(payload.event_type),
        event_name=_opt_str(payload.event_name),
        element_tag=_opt_str(payload.element_tag),
        element_text=element_text,
        link_url=_opt_str(payload.link_url),
        button_type=_opt_str(payload.button_type),
        form_id=_opt_str(payload.form_id),
        duration_ms=duration_ms,
        client_timestamp=parse_int(payload.timestamp),
    )


def normalize_raw(
    delivery_kind: DeliveryKind,
    raw_fields: Any,
    meta: Optional[RequestMeta] = None,
    now: Optional[int] = None,
) -> EventRecord:
    return normalize(decode_payload(delivery_kind, raw_fields), meta or RequestMeta(), now=now)
