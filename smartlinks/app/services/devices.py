from __future__ import annotations

import re
from typing import Optional

from smartlinks.app.models import DeviceType

INVITE_HOST = "chat.whatsapp.com/"
INVITE_PREFIX = f"https://{INVITE_HOST}"

_IOS_TOKENS = re.compile(r"iphone|ipad|ipod")
_ANDROID_TOKENS = re.compile(r"android")
_DESKTOP_TOKENS = re.compile(r"windows|macintosh|linux")
_MOBILE_TOKENS = re.compile(r"mobile")


def detect_device_type(user_agent: str) -> DeviceType:
    ua = (user_agent or "").lower()
    if _IOS_TOKENS.search(ua):
        return DeviceType.ios
    if _ANDROID_TOKENS.search(ua):
        return DeviceType.android
    if _DESKTOP_TOKENS.search(ua) and not _MOBILE_TOKENS.search(ua):
        return DeviceType.desktop
    return DeviceType.unknown


def is_valid_invite_link(invite_link: Optional[str]) -> bool:
    return bool(invite_link) and INVITE_HOST in invite_link


def extract_invite_code(invite_link: str) -> str:
    return invite_link.replace(INVITE_PREFIX, "")


def build_redirect_url(invite_link: str, device_type: DeviceType) -> str:
    """Deep link that opens the invite in the WhatsApp app for the device.

    Desktop and unknown devices get the web invite URL unchanged.
    """
    code = extract_invite_code(invite_link)
    if device_type == DeviceType.ios:
        return f"whatsapp://chat?code={code}"
    if device_type == DeviceType.android:
        return f"intent://{INVITE_HOST}{code}#Intent;scheme=https;package=com.whatsapp;end"
    return invite_link
