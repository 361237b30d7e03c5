from __future__ import annotations

import time
from typing import Optional

from tracker.schemas.events import CountEntry, HourBucket, Summary
from tracker.services.event_store import EventStore

MIN_WINDOW_HOURS = 1
MAX_WINDOW_HOURS = 24 * 30

TOP_URLS_LIMIT = 100
TOP_INTERACTIONS_LIMIT = 50


def clamp_window_hours(hours: int) -> int:
    return max(MIN_WINDOW_HOURS, min(MAX_WINDOW_HOURS, int(hours)))


def summarize(store: EventStore, window_hours: int, now: Optional[int] = None) -> Summary:
    """
    Aggregates over the trailing window, all read in one transaction.
    Out-of-range windows are clamped, not rejected. A store failure
    propagates (StoreUnavailable): there is no partial summary.
    """
    hours = clamp_window_hours(window_hours)
    now = int(time.time()) if now is None else int(now)
    since = now - hours * 3600

    with store.snapshot() as view:
        total = view.count(since)
        uniques = view.count_distinct_visitors(since)
        event_types = view.count_by("event_type", since)
        interactions = view.count_by(
            "event_name",
            since,
            limit=TOP_INTERACTIONS_LIMIT,
            exclude_null=True,
            event_type="click",
        )
        urls = view.count_by("page_url", since, limit=TOP_URLS_LIMIT)
        hourly = view.count_by_hour(since)

    return Summary(
        window_hours=hours,
        since=since,
        generated_at=now,
        total_events=total,
        unique_visitors=uniques,
        event_types=[CountEntry(key=k, count=c) for k, c in event_types],
        top_interactions=[CountEntry(key=k, count=c) for k, c in interactions],
        top_urls=[CountEntry(key=k, count=c) for k, c in urls],
        hourly=[HourBucket(bucket=b, count=c) for b, c in hourly],
    )
