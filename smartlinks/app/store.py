from __future__ import annotations

from datetime import datetime
from threading import RLock
from typing import TYPE_CHECKING, Optional
from uuid import uuid4

from smartlinks.app.models import (
    CampaignCreateRequest,
    CampaignGroupCreateRequest,
    CampaignGroupRecord,
    CampaignGroupUpdateRequest,
    CampaignRecord,
    ClickEventRecord,
    DeviceType,
    SmartLinkCreateRequest,
    SmartLinkRecord,
    SmartLinkUpdateRequest,
    utc_now,
)

if TYPE_CHECKING:
    from smartlinks.app.persistence import SqlitePersistence


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


class StoreConflictError(Exception):
    pass


class StoreNotFoundError(Exception):
    pass


class InMemoryStore:
    """
    Record store for campaigns, rotation groups, smart links and click events.

    Every method takes the lock for its own read or write only. Callers that
    read a record, decide, and write back (member count refresh, click
    counter) are not serialized against each other, and reads hand out
    copies so a caller never observes writes made after its read.
    """

    def __init__(self, persistence: Optional["SqlitePersistence"] = None) -> None:
        self._lock = RLock()
        self.persistence = persistence
        self.campaigns: dict[str, CampaignRecord] = {}
        self.campaign_groups: dict[str, CampaignGroupRecord] = {}
        self.smart_links: dict[str, SmartLinkRecord] = {}
        self.click_events: list[ClickEventRecord] = []

        if self.persistence:
            snapshot = self.persistence.load_snapshot()
            if snapshot:
                self._hydrate_from_snapshot(snapshot)
            self.click_events = self.persistence.list_click_events()

    def create_campaign(
        self, request: CampaignCreateRequest, *, owner_id: Optional[str] = None
    ) -> CampaignRecord:
        with self._lock:
            now = utc_now()
            campaign = CampaignRecord(
                id=new_id("cmp"),
                name=request.name.strip(),
                owner_id=owner_id,
                description=request.description,
                is_active=request.is_active,
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.campaigns[campaign.id] = campaign
            self._persist_state()
            return campaign.model_copy()

    def get_campaign(self, campaign_id: str) -> CampaignRecord:
        campaign = self.campaigns.get(campaign_id)
        if not campaign:
            raise StoreNotFoundError(f"campaign not found: {campaign_id}")
        return campaign.model_copy()

    def list_campaigns(self) -> list[CampaignRecord]:
        with self._lock:
            campaigns = sorted(self.campaigns.values(), key=lambda item: item.created_at_utc)
            return [campaign.model_copy() for campaign in campaigns]

    def add_campaign_group(
        self,
        campaign_id: str,
        request: CampaignGroupCreateRequest,
        *,
        default_member_limit: int = 256,
    ) -> CampaignGroupRecord:
        with self._lock:
            self.get_campaign(campaign_id)
            priority = request.priority
            if priority is None:
                existing = [
                    group.priority
                    for group in self.campaign_groups.values()
                    if group.campaign_id == campaign_id
                ]
                priority = max(existing) + 1 if existing else 0
            now = utc_now()
            group = CampaignGroupRecord(
                id=new_id("grp"),
                campaign_id=campaign_id,
                group_name=request.group_name.strip(),
                group_phone=request.group_phone.strip(),
                invite_link=(request.invite_link or "").strip() or None,
                current_members=request.current_members,
                member_limit=request.member_limit or default_member_limit,
                priority=priority,
                is_active=request.is_active,
                rotation_enabled=request.rotation_enabled,
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.campaign_groups[group.id] = group
            self._persist_state()
            return group.model_copy()

    def get_campaign_group(self, group_id: str) -> CampaignGroupRecord:
        group = self.campaign_groups.get(group_id)
        if not group:
            raise StoreNotFoundError(f"campaign group not found: {group_id}")
        return group.model_copy()

    def update_campaign_group(
        self, group_id: str, request: CampaignGroupUpdateRequest
    ) -> CampaignGroupRecord:
        with self._lock:
            group = self.get_campaign_group(group_id)
            changes = request.model_dump(exclude_unset=True)
            if "invite_link" in changes:
                changes["invite_link"] = (changes["invite_link"] or "").strip() or None
            changes["updated_at_utc"] = utc_now()
            updated = group.model_copy(update=changes)
            self.campaign_groups[group_id] = updated
            self._persist_state()
            return updated.model_copy()

    def list_campaign_groups(
        self,
        campaign_id: str,
        *,
        active_only: bool = False,
        rotation_only: bool = False,
    ) -> list[CampaignGroupRecord]:
        with self._lock:
            groups = [
                group
                for group in self.campaign_groups.values()
                if group.campaign_id == campaign_id
                and (group.is_active or not active_only)
                and (group.rotation_enabled or not rotation_only)
            ]
            # sorted() is stable, so equal priorities keep insertion order.
            groups = sorted(groups, key=lambda item: item.priority)
            return [group.model_copy() for group in groups]

    def update_group_member_count(self, group_id: str, current_members: int) -> CampaignGroupRecord:
        with self._lock:
            group = self.get_campaign_group(group_id)
            updated = group.model_copy(
                update={"current_members": current_members, "updated_at_utc": utc_now()}
            )
            self.campaign_groups[group_id] = updated
            self._persist_state()
            return updated.model_copy()

    def create_smart_link(self, request: SmartLinkCreateRequest) -> SmartLinkRecord:
        with self._lock:
            self.get_campaign(request.campaign_id)
            self._ensure_slug_available(request.slug)
            now = utc_now()
            link = SmartLinkRecord(
                id=new_id("lnk"),
                campaign_id=request.campaign_id,
                slug=request.slug,
                name=request.name.strip(),
                description=request.description,
                is_active=request.is_active,
                track_clicks=request.track_clicks,
                detect_device=request.detect_device,
                redirect_delay=request.redirect_delay,
                total_clicks=0,
                created_at_utc=now,
                updated_at_utc=now,
            )
            self.smart_links[link.id] = link
            self._persist_state()
            return link.model_copy()

    def update_smart_link(self, link_id: str, request: SmartLinkUpdateRequest) -> SmartLinkRecord:
        with self._lock:
            link = self.get_smart_link(link_id)
            changes = request.model_dump(exclude_unset=True)
            slug = changes.get("slug")
            if slug and slug != link.slug:
                self._ensure_slug_available(slug)
            changes["updated_at_utc"] = utc_now()
            updated = link.model_copy(update=changes)
            self.smart_links[link_id] = updated
            self._persist_state()
            return updated.model_copy()

    def get_smart_link(self, link_id: str) -> SmartLinkRecord:
        link = self.smart_links.get(link_id)
        if not link:
            raise StoreNotFoundError(f"smart link not found: {link_id}")
        return link.model_copy()

    def list_smart_links(self, campaign_id: Optional[str] = None) -> list[SmartLinkRecord]:
        with self._lock:
            links = [
                link
                for link in self.smart_links.values()
                if campaign_id is None or link.campaign_id == campaign_id
            ]
            links = sorted(links, key=lambda item: item.created_at_utc)
            return [link.model_copy() for link in links]

    def get_active_smart_link_by_slug(self, slug: str) -> SmartLinkRecord:
        with self._lock:
            for link in self.smart_links.values():
                if link.slug == slug and link.is_active:
                    return link.model_copy()
        raise StoreNotFoundError(f"active smart link not found: {slug}")

    def set_total_clicks(self, link_id: str, total_clicks: int) -> SmartLinkRecord:
        with self._lock:
            link = self.get_smart_link(link_id)
            updated = link.model_copy(
                update={"total_clicks": total_clicks, "updated_at_utc": utc_now()}
            )
            self.smart_links[link_id] = updated
            self._persist_state()
            return updated.model_copy()

    def append_click_event(
        self,
        *,
        smart_link_id: str,
        redirected_to_group: Optional[str],
        device_type: DeviceType,
        user_agent: Optional[str],
        referrer: Optional[str],
    ) -> ClickEventRecord:
        with self._lock:
            event = ClickEventRecord(
                id=new_id("clk"),
                smart_link_id=smart_link_id,
                redirected_to_group=redirected_to_group,
                device_type=device_type,
                user_agent=user_agent,
                referrer=referrer,
                created_at_utc=utc_now(),
            )
            if self.persistence:
                self.persistence.insert_click_event(event)
            self.click_events.append(event)
            return event

    def list_click_events(
        self,
        *,
        smart_link_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> list[ClickEventRecord]:
        with self._lock:
            events = list(self.click_events)
        return [
            event
            for event in events
            if (smart_link_id is None or event.smart_link_id == smart_link_id)
            and (since is None or event.created_at_utc >= since)
        ]

    def _ensure_slug_available(self, slug: str) -> None:
        for link in self.smart_links.values():
            if link.slug == slug:
                raise StoreConflictError(f"slug already in use: {slug}")

    def _persist_state(self) -> None:
        if not self.persistence:
            return
        self.persistence.save_snapshot(self._to_snapshot())

    def _to_snapshot(self) -> dict:
        return {
            "campaigns": [record.model_dump(mode="json") for record in self.campaigns.values()],
            "campaign_groups": [
                record.model_dump(mode="json") for record in self.campaign_groups.values()
            ],
            "smart_links": [
                record.model_dump(mode="json") for record in self.smart_links.values()
            ],
        }

    def _hydrate_from_snapshot(self, snapshot: dict) -> None:
        self.campaigns = {
            record["id"]: CampaignRecord.model_validate(record)
            for record in snapshot.get("campaigns", [])
        }
        self.campaign_groups = {
            record["id"]: CampaignGroupRecord.model_validate(record)
            for record in snapshot.get("campaign_groups", [])
        }
        self.smart_links = {
            record["id"]: SmartLinkRecord.model_validate(record)
            for record in snapshot.get("smart_links", [])
        }
