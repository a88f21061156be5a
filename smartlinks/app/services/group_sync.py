from __future__ import annotations

import logging

from smartlinks.app.models import GroupMemberSyncItem, GroupMemberSyncResponse
from smartlinks.app.services.devices import is_valid_invite_link
from smartlinks.app.services.membership import MembershipProbeError
from smartlinks.app.services.resolver import MembershipProbe
from smartlinks.app.store import InMemoryStore

logger = logging.getLogger("smartlinks.group_sync")


def sync_campaign_member_counts(
    store: InMemoryStore,
    probe: MembershipProbe,
    campaign_id: str,
) -> GroupMemberSyncResponse:
    store.get_campaign(campaign_id)
    items: list[GroupMemberSyncItem] = []
    probed = 0
    for group in store.list_campaign_groups(campaign_id, active_only=True):
        current = group.current_members
        refreshed = False
        if is_valid_invite_link(group.invite_link):
            probed += 1
            try:
                live_count = probe.member_count(group.invite_link or "")
            except MembershipProbeError as exc:
                logger.warning("member_sync_probe_failed group_id=%s error=%s", group.id, exc)
                live_count = 0
            if live_count > 0:
                current = store.update_group_member_count(group.id, live_count).current_members
                refreshed = True
        items.append(
            GroupMemberSyncItem(
                group_id=group.id,
                group_name=group.group_name,
                previous_members=group.current_members,
                current_members=current,
                refreshed=refreshed,
            )
        )
    refreshed_total = sum(1 for item in items if item.refreshed)
    logger.info(
        "member_sync_complete campaign_id=%s probed=%s refreshed=%s",
        campaign_id,
        probed,
        refreshed_total,
    )
    return GroupMemberSyncResponse(
        campaign_id=campaign_id,
        probed=probed,
        refreshed=refreshed_total,
        groups=items,
    )
