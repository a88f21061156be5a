from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from smartlinks.app.models import (
    CampaignGroupRecord,
    DeviceType,
    RedirectOutcome,
    SmartLinkRecord,
)
from smartlinks.app.services.clicks import ClickRecorder
from smartlinks.app.services.devices import (
    build_redirect_url,
    detect_device_type,
    is_valid_invite_link,
)
from smartlinks.app.services.membership import MembershipProbeError
from smartlinks.app.store import InMemoryStore, StoreNotFoundError

logger = logging.getLogger("smartlinks.resolver")


class MembershipProbe(Protocol):
    def member_count(self, invite_link: str) -> int: ...


class ResolutionError(Exception):
    outcome = RedirectOutcome.no_groups


class LinkNotFoundError(ResolutionError):
    outcome = RedirectOutcome.not_found


class NoEligibleGroupsError(ResolutionError):
    pass


class NoConfiguredGroupsError(ResolutionError):
    pass


@dataclass(frozen=True)
class RedirectResult:
    invite_link: str
    redirect_url: str
    device_type: DeviceType
    group_id: str
    group_name: str
    delay: int
    outcome: RedirectOutcome


class RedirectResolver:
    """Picks the destination group for a smart link visit.

    Groups are tried in ascending priority; the first one whose member count
    is below its limit wins, and when every group is full the last one is
    used anyway. Capacity is advisory: the count refresh is not locked, so
    concurrent visits can push a group past its limit.
    """

    def __init__(
        self,
        *,
        store: InMemoryStore,
        probe: MembershipProbe,
        recorder: ClickRecorder,
    ) -> None:
        self.store = store
        self.probe = probe
        self.recorder = recorder

    def resolve(self, slug: str, *, user_agent: str = "", referrer: str = "") -> RedirectResult:
        link = self._load_link(slug)
        groups = self.store.list_campaign_groups(
            link.campaign_id, active_only=True, rotation_only=True
        )
        if not groups:
            logger.error("no_rotation_groups slug=%s campaign_id=%s", slug, link.campaign_id)
            raise NoEligibleGroupsError(
                "No groups configured for this campaign. Add groups in the dashboard."
            )

        configured = [group for group in groups if self._has_invite_link(group)]
        if not configured:
            logger.error(
                "no_configured_groups slug=%s campaign_id=%s groups=%s",
                slug,
                link.campaign_id,
                len(groups),
            )
            raise NoConfiguredGroupsError(
                "No group has a valid invite link. "
                f"{len(groups)} group(s) found but none has a valid invite_link configured."
            )

        selected = self._select_group(configured)
        outcome = RedirectOutcome.selected
        if selected is None:
            selected = configured[-1]
            outcome = RedirectOutcome.fallback
            logger.warning(
                "all_groups_full slug=%s groups=%s fallback_group_id=%s",
                slug,
                len(configured),
                selected.id,
            )

        device_type = detect_device_type(user_agent) if link.detect_device else DeviceType.unknown
        if link.track_clicks:
            self.recorder.record(
                link.id,
                selected.group_phone,
                device_type,
                user_agent,
                referrer,
            )

        invite_link = selected.invite_link or ""
        redirect_url = (
            build_redirect_url(invite_link, device_type) if link.detect_device else invite_link
        )
        logger.info(
            "redirect_resolved slug=%s group_id=%s device=%s outcome=%s",
            slug,
            selected.id,
            device_type.value,
            outcome.value,
        )
        return RedirectResult(
            invite_link=invite_link,
            redirect_url=redirect_url,
            device_type=device_type,
            group_id=selected.id,
            group_name=selected.group_name,
            delay=link.redirect_delay or 0,
            outcome=outcome,
        )

    def _load_link(self, slug: str) -> SmartLinkRecord:
        try:
            return self.store.get_active_smart_link_by_slug(slug)
        except StoreNotFoundError as exc:
            logger.warning("smart_link_not_found slug=%s", slug)
            raise LinkNotFoundError(
                "Link not found or inactive. Check that the slug is correct."
            ) from exc

    @staticmethod
    def _has_invite_link(group: CampaignGroupRecord) -> bool:
        if is_valid_invite_link(group.invite_link):
            return True
        logger.warning(
            "group_invite_link_invalid group_id=%s group_phone=%s",
            group.id,
            group.group_phone,
        )
        return False

    def _select_group(self, groups: list[CampaignGroupRecord]) -> Optional[CampaignGroupRecord]:
        for group in groups:
            member_count = self.refresh_member_count(group)
            if member_count < group.member_limit:
                return group
            logger.info(
                "group_full group_id=%s members=%s limit=%s",
                group.id,
                member_count,
                group.member_limit,
            )
        return None

    def refresh_member_count(self, group: CampaignGroupRecord) -> int:
        """Live member count for the group, or its cached count if the probe fails.

        A positive live count is written back to the group; the write is
        best-effort.
        """
        try:
            live_count = self.probe.member_count(group.invite_link or "")
        except MembershipProbeError as exc:
            logger.warning("membership_probe_failed group_id=%s error=%s", group.id, exc)
            return group.current_members

        if live_count <= 0:
            return group.current_members

        try:
            self.store.update_group_member_count(group.id, live_count)
        except Exception:
            logger.warning("member_count_update_failed group_id=%s", group.id, exc_info=True)
        return live_count
