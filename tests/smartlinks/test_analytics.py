from __future__ import annotations

from datetime import datetime, timedelta

from smartlinks.app.models import ClickEventRecord, DeviceType
from smartlinks.app.services.analytics import referrer_label, summarize_clicks

NOW = datetime(2026, 3, 15, 18, 30)


def _click(index: int, *, at: datetime, device: DeviceType, referrer: str = "") -> ClickEventRecord:
    return ClickEventRecord(
        id=f"clk_{index}",
        smart_link_id="lnk_1",
        redirected_to_group="120363-a@g.us",
        device_type=device,
        referrer=referrer,
        created_at_utc=at,
    )


def test_referrer_labels() -> None:
    assert referrer_label("") == "direct"
    assert referrer_label(None) == "direct"
    assert referrer_label("https://www.instagram.com/p/abc") == "instagram.com"
    assert referrer_label("https://l.facebook.com/") == "l.facebook.com"
    assert referrer_label("not a url") == "other"


def test_summary_buckets_by_day_device_and_referrer() -> None:
    events = [
        _click(1, at=NOW - timedelta(hours=1), device=DeviceType.ios,
               referrer="https://www.instagram.com/"),
        _click(2, at=NOW - timedelta(hours=2), device=DeviceType.android,
               referrer="https://instagram.com/stories"),
        _click(3, at=NOW - timedelta(days=1), device=DeviceType.android),
        _click(4, at=NOW - timedelta(days=40), device=DeviceType.desktop),
    ]

    summary = summarize_clicks(events, days=7, now=NOW, smart_link_id="lnk_1")

    assert summary.total_clicks == 3
    assert len(summary.clicks_by_day) == 8
    by_day = {item.date: item.clicks for item in summary.clicks_by_day}
    assert by_day["15/03"] == 2
    assert by_day["14/03"] == 1
    assert by_day["08/03"] == 0
    assert [(item.device, item.clicks) for item in summary.clicks_by_device] == [
        ("android", 2),
        ("ios", 1),
    ]
    assert [(item.referrer, item.clicks) for item in summary.clicks_by_referrer] == [
        ("instagram.com", 2),
        ("direct", 1),
    ]


def test_referrers_are_capped_at_ten() -> None:
    events = [
        _click(i, at=NOW, device=DeviceType.unknown, referrer=f"https://site{i}.example/")
        for i in range(15)
    ]

    summary = summarize_clicks(events, days=1, now=NOW)

    assert summary.total_clicks == 15
    assert len(summary.clicks_by_referrer) == 10


def test_analytics_endpoint_counts_resolved_clicks(client) -> None:
    campaign = client.post("/campaigns", json={"name": "Webinar"}).json()
    client.post(
        f"/campaigns/{campaign['id']}/groups",
        json={
            "group_name": "Webinar 1",
            "group_phone": "120363-w1@g.us",
            "invite_link": "https://chat.whatsapp.com/W1",
        },
    )
    link = client.post(
        "/smart-links",
        json={"campaign_id": campaign["id"], "slug": "webinar", "name": "Webinar"},
    ).json()
    client.get("/resolve?slug=webinar", headers={"User-Agent": "Mozilla/5.0 (iPhone)"})
    client.get(
        "/resolve?slug=webinar",
        headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0)", "Referer": "https://t.co/a"},
    )

    response = client.get(f"/smart-links/{link['id']}/analytics?days=7")

    assert response.status_code == 200
    data = response.json()
    assert data["total_clicks"] == 2
    assert {item["device"] for item in data["clicks_by_device"]} == {"ios", "desktop"}
    assert {item["referrer"] for item in data["clicks_by_referrer"]} == {"t.co", "direct"}

    overall = client.get("/analytics?days=7").json()
    assert overall["total_clicks"] == 2
    assert client.get("/smart-links/lnk_missing/analytics").status_code == 404
