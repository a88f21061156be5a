from __future__ import annotations

import json
import logging
import re
import time
from http.client import HTTPException
from urllib import parse, request
from urllib.error import HTTPError

from smartlinks.app.settings import Settings

logger = logging.getLogger("smartlinks.membership")

_CREDENTIAL_SEGMENT = re.compile(r"/instances/[^/]+/token/[^/]+")
READ_CHUNK_BYTES = 8192


class MembershipProbeError(Exception):
    pass


def mask_url(url: str) -> str:
    return _CREDENTIAL_SEGMENT.sub("/instances/***MASKED***/token/***MASKED***", url)


class ZapiMembershipProbe:
    """Reads a WhatsApp group's live participant count from Z-API.

    Any failure raises MembershipProbeError; callers decide whether to fall
    back to a cached count.
    """

    def __init__(self, settings: Settings) -> None:
        self.base_url = (
            f"{settings.zapi_base_url}/instances/{settings.zapi_instance_id}"
            f"/token/{settings.zapi_token}"
        )
        self.client_token = settings.zapi_client_token
        self.timeout_seconds = settings.membership_probe_timeout_seconds
        self.configured = settings.zapi_configured
        self.clock = time.monotonic

    def metadata_url(self, invite_link: str) -> str:
        query = parse.urlencode({"url": invite_link})
        return f"{self.base_url}/group-invitation-metadata?{query}"

    def member_count(self, invite_link: str) -> int:
        if not self.configured:
            raise MembershipProbeError("z-api credentials not configured")

        url = self.metadata_url(invite_link)
        req = request.Request(
            url,
            method="GET",
            headers={"Client-Token": self.client_token, "Accept": "application/json"},
        )
        logger.info("membership_probe url=%s", mask_url(url))
        deadline = self.clock() + self.timeout_seconds
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                body = self._read_before(response, deadline).decode("utf-8")
        except HTTPError as exc:
            raise MembershipProbeError(
                f"group metadata request failed with status {exc.code}"
            ) from exc
        except (OSError, HTTPException) as exc:
            # URLError, socket timeouts and truncated bodies (IncompleteRead).
            raise MembershipProbeError(f"group metadata request failed: {exc!r}") from exc
        except UnicodeDecodeError as exc:
            raise MembershipProbeError("group metadata response was not utf-8") from exc

        try:
            decoded = json.loads(body)
        except json.JSONDecodeError as exc:
            raise MembershipProbeError("group metadata response was not valid json") from exc
        if not isinstance(decoded, dict):
            raise MembershipProbeError("group metadata response was not an object")

        try:
            return int(decoded.get("participantsCount") or 0)
        except (TypeError, ValueError) as exc:
            raise MembershipProbeError("participantsCount was not a number") from exc

    def _read_before(self, response, deadline: float) -> bytes:
        # urlopen's timeout applies per socket operation, not to the whole body.
        chunks = []
        while True:
            if self.clock() > deadline:
                raise MembershipProbeError("group metadata response exceeded the probe timeout")
            chunk = response.read(READ_CHUNK_BYTES)
            if not chunk:
                return b"".join(chunks)
            chunks.append(chunk)
