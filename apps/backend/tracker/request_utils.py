from __future__ import annotations

from typing import Any, Mapping, Optional

from fastapi import Request

from tracker.schemas.events import RequestMeta
from tracker.services.aggregator import clamp_window_hours
from tracker.services.normalize_event import parse_int


def client_ip(headers: Mapping[str, str], peer: Optional[str]) -> str:
    """Best effort: first X-Forwarded-For hop, else the socket peer, else ""."""
    xff = headers.get("x-forwarded-for")
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    return peer or ""


def request_meta(request: Request) -> RequestMeta:
    peer = request.client.host if request.client else None
    return RequestMeta(
        source_ip=client_ip(request.headers, peer),
        user_agent=request.headers.get("user-agent") or "",
    )


def parse_hours(v: Any, default: int) -> int:
    """?hours= as typed by a human: "48", " 6 ", "2.5" (-> 2), "abc" (-> default), "0" (-> 1)."""
    hours = parse_int(v)
    return clamp_window_hours(default if hours is None else hours)
