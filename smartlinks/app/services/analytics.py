from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlparse

from smartlinks.app.models import (
    ClickEventRecord,
    ClicksByDay,
    ClicksByDevice,
    ClicksByReferrer,
    SmartLinkAnalyticsResponse,
)

DAY_FORMAT = "%d/%m"
TOP_REFERRERS = 10


def window_start(now: datetime, days: int) -> datetime:
    start = now - timedelta(days=days)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def referrer_label(referrer: Optional[str]) -> str:
    if not referrer:
        return "direct"
    host = urlparse(referrer).hostname
    if not host:
        return "other"
    return host[4:] if host.startswith("www.") else host


def _ranked(counts: dict[str, int]) -> list[tuple[str, int]]:
    # sorted() is stable: ties keep first-seen order.
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)


def summarize_clicks(
    events: list[ClickEventRecord],
    *,
    days: int,
    now: datetime,
    smart_link_id: Optional[str] = None,
) -> SmartLinkAnalyticsResponse:
    start = window_start(now, days)
    in_window = [event for event in events if start <= event.created_at_utc <= now]

    by_day: dict[str, int] = {}
    for offset in range(days, -1, -1):
        by_day[(now - timedelta(days=offset)).strftime(DAY_FORMAT)] = 0
    by_device: dict[str, int] = {}
    by_referrer: dict[str, int] = {}
    for event in in_window:
        day = event.created_at_utc.strftime(DAY_FORMAT)
        by_day[day] = by_day.get(day, 0) + 1
        device = event.device_type.value
        by_device[device] = by_device.get(device, 0) + 1
        label = referrer_label(event.referrer)
        by_referrer[label] = by_referrer.get(label, 0) + 1

    return SmartLinkAnalyticsResponse(
        smart_link_id=smart_link_id,
        days=days,
        total_clicks=len(in_window),
        clicks_by_day=[ClicksByDay(date=day, clicks=count) for day, count in by_day.items()],
        clicks_by_device=[
            ClicksByDevice(device=device, clicks=count) for device, count in _ranked(by_device)
        ],
        clicks_by_referrer=[
            ClicksByReferrer(referrer=label, clicks=count)
            for label, count in _ranked(by_referrer)[:TOP_REFERRERS]
        ],
    )
