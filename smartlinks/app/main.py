from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from smartlinks.app.auth import Operator, can_manage, can_view
from smartlinks.app.models import (
    CampaignCreateRequest,
    CampaignGroupCreateRequest,
    CampaignGroupRecord,
    CampaignGroupUpdateRequest,
    CampaignRecord,
    GroupMemberSyncResponse,
    ResolveResponse,
    SmartLinkAnalyticsResponse,
    SmartLinkCreateRequest,
    SmartLinkRecord,
    SmartLinkUpdateRequest,
    utc_now,
)
from smartlinks.app.observability import MetricsRegistry, configure_logging, observe_request
from smartlinks.app.persistence import SqlitePersistence
from smartlinks.app.services.analytics import summarize_clicks, window_start
from smartlinks.app.services.clicks import ClickRecorder
from smartlinks.app.services.group_sync import sync_campaign_member_counts
from smartlinks.app.services.membership import ZapiMembershipProbe
from smartlinks.app.services.resolver import (
    MembershipProbe,
    RedirectResolver,
    ResolutionError,
)
from smartlinks.app.settings import Settings, load_settings
from smartlinks.app.store import InMemoryStore, StoreConflictError, StoreNotFoundError

logger = logging.getLogger("smartlinks.api")


def create_app() -> FastAPI:
    app = FastAPI(title="WhatsApp Smart Links API", version="0.1.0")
    configure_logging()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    settings = load_settings()
    persistence = SqlitePersistence(settings.database_url) if settings.persistence_enabled else None
    app.state.store = InMemoryStore(persistence=persistence)
    app.state.settings = settings
    app.state.metrics = MetricsRegistry()
    app.state.membership_probe = ZapiMembershipProbe(settings)
    if not settings.zapi_configured:
        logger.warning("zapi_not_configured member counts will come from cache only")

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    return app


def get_store(request: Request) -> InMemoryStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def get_membership_probe(request: Request) -> MembershipProbe:
    return request.app.state.membership_probe


def get_resolver(request: Request) -> RedirectResolver:
    store = get_store(request)
    recorder = ClickRecorder(
        store, max_field_length=get_settings(request).click_field_max_length
    )
    return RedirectResolver(store=store, probe=get_membership_probe(request), recorder=recorder)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def owned_campaign(store: InMemoryStore, campaign_id: str, operator: Operator) -> CampaignRecord:
    try:
        campaign = store.get_campaign(campaign_id)
    except StoreNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    # Other users' campaigns are reported as missing.
    if not operator.owns(campaign.owner_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"campaign not found: {campaign_id}",
        )
    return campaign


def owned_smart_link(store: InMemoryStore, link_id: str, operator: Operator) -> SmartLinkRecord:
    try:
        link = store.get_smart_link(link_id)
        campaign = store.get_campaign(link.campaign_id)
    except StoreNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if not operator.owns(campaign.owner_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"smart link not found: {link_id}",
        )
    return link


def visible_campaign_ids(store: InMemoryStore, operator: Operator) -> set[str]:
    return {
        campaign.id for campaign in store.list_campaigns() if operator.owns(campaign.owner_id)
    }


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        settings = get_settings(request)
        persistence = getattr(request.app.state.store, "persistence", None)
        if settings.persistence_enabled and persistence and not persistence.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="database unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus())

    @router.options("/resolve")
    def resolve_preflight() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @router.get("/resolve", response_model=ResolveResponse)
    def resolve(request: Request, slug: Optional[str] = None):
        registry = get_metrics(request)
        if not slug or not slug.strip():
            logger.warning("resolve_missing_slug")
            return error_response(status.HTTP_400_BAD_REQUEST, "Missing slug parameter")

        resolver = get_resolver(request)
        try:
            result = resolver.resolve(
                slug.strip(),
                user_agent=request.headers.get("user-agent", ""),
                referrer=request.headers.get("referer", ""),
            )
        except ResolutionError as exc:
            registry.record_redirect(exc.outcome.value)
            return error_response(status.HTTP_404_NOT_FOUND, str(exc))
        except Exception:
            logger.exception("resolve_failed slug=%s", slug)
            return error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error while resolving link"
            )

        registry.record_redirect(result.outcome.value)
        return ResolveResponse(
            success=True,
            invite_link=result.invite_link,
            redirect_url=result.redirect_url,
            device_type=result.device_type,
            group_name=result.group_name,
            delay=result.delay,
        )

    @router.post("/campaigns", response_model=CampaignRecord)
    def create_campaign(
        payload: CampaignCreateRequest,
        request: Request,
        operator: Operator = Depends(can_manage()),
    ) -> CampaignRecord:
        return get_store(request).create_campaign(payload, owner_id=operator.user_id)

    @router.get("/campaigns", response_model=list[CampaignRecord])
    def list_campaigns(
        request: Request,
        operator: Operator = Depends(can_view()),
    ) -> list[CampaignRecord]:
        campaigns = get_store(request).list_campaigns()
        return [campaign for campaign in campaigns if operator.owns(campaign.owner_id)]

    @router.get("/campaigns/{campaign_id}", response_model=CampaignRecord)
    def get_campaign(
        campaign_id: str,
        request: Request,
        operator: Operator = Depends(can_view()),
    ) -> CampaignRecord:
        return owned_campaign(get_store(request), campaign_id, operator)

    @router.post("/campaigns/{campaign_id}/groups", response_model=CampaignGroupRecord)
    def add_campaign_group(
        campaign_id: str,
        payload: CampaignGroupCreateRequest,
        request: Request,
        operator: Operator = Depends(can_manage()),
    ) -> CampaignGroupRecord:
        store = get_store(request)
        owned_campaign(store, campaign_id, operator)
        return store.add_campaign_group(
            campaign_id,
            payload,
            default_member_limit=get_settings(request).default_member_limit,
        )

    @router.get("/campaigns/{campaign_id}/groups", response_model=list[CampaignGroupRecord])
    def list_campaign_groups(
        campaign_id: str,
        request: Request,
        active_only: bool = False,
        operator: Operator = Depends(can_view()),
    ) -> list[CampaignGroupRecord]:
        store = get_store(request)
        owned_campaign(store, campaign_id, operator)
        return store.list_campaign_groups(campaign_id, active_only=active_only)

    @router.post(
        "/campaigns/{campaign_id}/groups/sync-members",
        response_model=GroupMemberSyncResponse,
    )
    def sync_group_members(
        campaign_id: str,
        request: Request,
        operator: Operator = Depends(can_manage()),
    ) -> GroupMemberSyncResponse:
        store = get_store(request)
        owned_campaign(store, campaign_id, operator)
        return sync_campaign_member_counts(store, get_membership_probe(request), campaign_id)

    @router.patch("/groups/{group_id}", response_model=CampaignGroupRecord)
    def update_campaign_group(
        group_id: str,
        payload: CampaignGroupUpdateRequest,
        request: Request,
        operator: Operator = Depends(can_manage()),
    ) -> CampaignGroupRecord:
        store = get_store(request)
        try:
            group = store.get_campaign_group(group_id)
        except StoreNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        owned_campaign(store, group.campaign_id, operator)
        return store.update_campaign_group(group_id, payload)

    @router.post("/smart-links", response_model=SmartLinkRecord)
    def create_smart_link(
        payload: SmartLinkCreateRequest,
        request: Request,
        operator: Operator = Depends(can_manage()),
    ) -> SmartLinkRecord:
        store = get_store(request)
        owned_campaign(store, payload.campaign_id, operator)
        try:
            return store.create_smart_link(payload)
        except StoreConflictError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    @router.get("/smart-links", response_model=list[SmartLinkRecord])
    def list_smart_links(
        request: Request,
        campaign_id: Optional[str] = None,
        operator: Operator = Depends(can_view()),
    ) -> list[SmartLinkRecord]:
        store = get_store(request)
        visible = visible_campaign_ids(store, operator)
        return [
            link
            for link in store.list_smart_links(campaign_id=campaign_id)
            if link.campaign_id in visible
        ]

    @router.get("/smart-links/{link_id}", response_model=SmartLinkRecord)
    def get_smart_link(
        link_id: str,
        request: Request,
        operator: Operator = Depends(can_view()),
    ) -> SmartLinkRecord:
        return owned_smart_link(get_store(request), link_id, operator)

    @router.patch("/smart-links/{link_id}", response_model=SmartLinkRecord)
    def update_smart_link(
        link_id: str,
        payload: SmartLinkUpdateRequest,
        request: Request,
        operator: Operator = Depends(can_manage()),
    ) -> SmartLinkRecord:
        store = get_store(request)
        owned_smart_link(store, link_id, operator)
        try:
            return store.update_smart_link(link_id, payload)
        except StoreConflictError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    @router.get("/smart-links/{link_id}/analytics", response_model=SmartLinkAnalyticsResponse)
    def smart_link_analytics(
        link_id: str,
        request: Request,
        days: int = Query(default=30, ge=1, le=365),
        operator: Operator = Depends(can_view()),
    ) -> SmartLinkAnalyticsResponse:
        store = get_store(request)
        owned_smart_link(store, link_id, operator)
        now = utc_now()
        events = store.list_click_events(smart_link_id=link_id, since=window_start(now, days))
        return summarize_clicks(events, days=days, now=now, smart_link_id=link_id)

    @router.get("/analytics", response_model=SmartLinkAnalyticsResponse)
    def all_links_analytics(
        request: Request,
        days: int = Query(default=30, ge=1, le=365),
        operator: Operator = Depends(can_view()),
    ) -> SmartLinkAnalyticsResponse:
        store = get_store(request)
        now = utc_now()
        events = store.list_click_events(since=window_start(now, days))
        if not operator.is_admin:
            visible = visible_campaign_ids(store, operator)
            link_ids = {link.id for link in store.list_smart_links() if link.campaign_id in visible}
            events = [event for event in events if event.smart_link_id in link_ids]
        return summarize_clicks(events, days=days, now=now)

    return router
