from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SLUG_DISALLOWED = re.compile(r"[^a-z0-9-]")


def utc_now() -> datetime:
    return datetime.utcnow()


def normalize_slug(value: str) -> str:
    return SLUG_DISALLOWED.sub("", value.strip().lower())


class DeviceType(str, Enum):
    ios = "ios"
    android = "android"
    desktop = "desktop"
    unknown = "unknown"


class RedirectOutcome(str, Enum):
    selected = "selected"
    fallback = "fallback"
    not_found = "not_found"
    no_groups = "no_groups"


class CampaignRecord(BaseModel):
    id: str
    name: str
    owner_id: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    created_at_utc: datetime
    updated_at_utc: datetime


class CampaignGroupRecord(BaseModel):
    id: str
    campaign_id: str
    group_name: str
    group_phone: str
    invite_link: Optional[str] = None
    current_members: int = 0
    member_limit: int = 256
    priority: int = 0
    is_active: bool = True
    rotation_enabled: bool = True
    created_at_utc: datetime
    updated_at_utc: datetime


class SmartLinkRecord(BaseModel):
    id: str
    campaign_id: str
    slug: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    track_clicks: bool = True
    detect_device: bool = True
    redirect_delay: Optional[int] = 0
    total_clicks: int = 0
    created_at_utc: datetime
    updated_at_utc: datetime


class ClickEventRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    smart_link_id: str
    redirected_to_group: Optional[str] = None
    device_type: DeviceType = DeviceType.unknown
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    created_at_utc: datetime


class CampaignCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True


class CampaignGroupCreateRequest(BaseModel):
    group_name: str = Field(min_length=1, max_length=120)
    group_phone: str = Field(min_length=3, max_length=64)
    invite_link: Optional[str] = Field(default=None, max_length=500)
    current_members: int = Field(default=0, ge=0)
    member_limit: Optional[int] = Field(default=None, ge=1, le=5000)
    priority: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True
    rotation_enabled: bool = True


class CampaignGroupUpdateRequest(BaseModel):
    group_name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    invite_link: Optional[str] = Field(default=None, max_length=500)
    current_members: Optional[int] = Field(default=None, ge=0)
    member_limit: Optional[int] = Field(default=None, ge=1, le=5000)
    priority: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    rotation_enabled: Optional[bool] = None

    @field_validator(
        "group_name", "current_members", "member_limit", "priority", "is_active", "rotation_enabled"
    )
    @classmethod
    def reject_null(cls, value):
        # Validators only run for fields present in the payload.
        if value is None:
            raise ValueError("field cannot be null")
        return value


class SmartLinkCreateRequest(BaseModel):
    campaign_id: str
    slug: str = Field(min_length=1, max_length=80)
    name: str = Field(min_length=2, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    track_clicks: bool = True
    detect_device: bool = True
    redirect_delay: int = Field(default=0, ge=0, le=60000)

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, value: str) -> str:
        slug = normalize_slug(value)
        if not slug:
            raise ValueError("slug must contain at least one of a-z, 0-9 or '-'")
        return slug


class SmartLinkUpdateRequest(BaseModel):
    slug: Optional[str] = Field(default=None, min_length=1, max_length=80)
    name: Optional[str] = Field(default=None, min_length=2, max_length=120)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None
    track_clicks: Optional[bool] = None
    detect_device: Optional[bool] = None
    redirect_delay: Optional[int] = Field(default=None, ge=0, le=60000)

    @field_validator("slug")
    @classmethod
    def validate_slug(cls, value: Optional[str]) -> str:
        if value is None:
            raise ValueError("slug cannot be null")
        slug = normalize_slug(value)
        if not slug:
            raise ValueError("slug must contain at least one of a-z, 0-9 or '-'")
        return slug

    @field_validator("name", "is_active", "track_clicks", "detect_device")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("field cannot be null")
        return value


class ResolveResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    invite_link: str = Field(alias="inviteLink")
    redirect_url: str = Field(alias="redirectUrl")
    device_type: DeviceType = Field(alias="deviceType")
    group_name: str = Field(alias="groupName")
    delay: int = 0


class GroupMemberSyncItem(BaseModel):
    group_id: str
    group_name: str
    previous_members: int
    current_members: int
    refreshed: bool


class GroupMemberSyncResponse(BaseModel):
    campaign_id: str
    probed: int
    refreshed: int
    groups: list[GroupMemberSyncItem]


class ClicksByDay(BaseModel):
    date: str
    clicks: int


class ClicksByDevice(BaseModel):
    device: str
    clicks: int


class ClicksByReferrer(BaseModel):
    referrer: str
    clicks: int


class SmartLinkAnalyticsResponse(BaseModel):
    smart_link_id: Optional[str] = None
    days: int
    total_clicks: int
    clicks_by_day: list[ClicksByDay]
    clicks_by_device: list[ClicksByDevice]
    clicks_by_referrer: list[ClicksByReferrer]
