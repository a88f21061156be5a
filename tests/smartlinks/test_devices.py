from __future__ import annotations

import pytest

from smartlinks.app.models import DeviceType
from smartlinks.app.services.devices import (
    build_redirect_url,
    detect_device_type,
    extract_invite_code,
    is_valid_invite_link,
)


@pytest.mark.parametrize(
    ("user_agent", "expected"),
    [
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) Mobile/15E148", DeviceType.ios),
        ("Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X)", DeviceType.ios),
        ("Mozilla/5.0 (Linux; Android 14; Pixel 8) Mobile Safari/537.36", DeviceType.android),
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/124.0", DeviceType.desktop),
        ("Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) Safari/605.1.15", DeviceType.desktop),
        ("Mozilla/5.0 (X11; Linux x86_64; Mobile) Firefox/125.0", DeviceType.unknown),
        ("WhatsApp/2.24.6 Darwin", DeviceType.unknown),
        ("", DeviceType.unknown),
    ],
)
def test_detect_device_type(user_agent: str, expected: DeviceType) -> None:
    assert detect_device_type(user_agent) == expected


def test_invite_link_validation() -> None:
    assert is_valid_invite_link("https://chat.whatsapp.com/Fz1K9q")
    assert not is_valid_invite_link("")
    assert not is_valid_invite_link(None)
    assert not is_valid_invite_link("https://wa.me/5511999999999")


def test_redirect_url_per_device() -> None:
    link = "https://chat.whatsapp.com/Fz1K9qLmN0p"

    assert extract_invite_code(link) == "Fz1K9qLmN0p"
    assert build_redirect_url(link, DeviceType.ios) == "whatsapp://chat?code=Fz1K9qLmN0p"
    assert build_redirect_url(link, DeviceType.android) == (
        "intent://chat.whatsapp.com/Fz1K9qLmN0p#Intent;scheme=https;package=com.whatsapp;end"
    )
    assert build_redirect_url(link, DeviceType.desktop) == link
    assert build_redirect_url(link, DeviceType.unknown) == link
