"""
Admin Dashboard API

Session login plus the aggregate queries behind the analytics dashboard.
Everything except the login endpoints requires an admin session.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from nutritionist.analytics.events import (
    DEFAULT_EVENTS_LIMIT,
    MAX_EVENTS_LIMIT,
    AnalyticsEventService,
    serialize_event,
)
from nutritionist.analytics.usage import AIUsageService, serialize_usage
from nutritionist.config import Settings, get_settings
from nutritionist.database.connection import get_db_dependency
from nutritionist.database.models import AIProvider, AIRequestType
from nutritionist.security.admin_auth import ADMIN_SESSION_COOKIE, authenticate_admin
from nutritionist.serving.api.dependencies import bearer_scheme, is_admin_request, require_admin
from nutritionist.serving.api.routes.tracking import TrackEventRequest
from nutritionist.timeutils import to_naive_utc

logger = structlog.get_logger(__name__)

auth_router = APIRouter()
router = APIRouter(dependencies=[Depends(require_admin)])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class LoginRequest(BaseModel):
    password: Optional[str] = None


class UsageRequest(BaseModel):
    """One LLM call reported by the chat API"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    provider: AIProvider
    model_name: str = Field(..., min_length=1, max_length=100)
    prompt_tokens: int = Field(..., ge=0)
    completion_tokens: int = Field(..., ge=0)
    request_type: AIRequestType
    user_id: Optional[str] = None
    session_id: Optional[str] = None


# =============================================================================
# AUTHENTICATION
# =============================================================================

def _set_session_cookie(response: Response, settings: Settings, token: str, max_age: int) -> None:
    response.set_cookie(
        ADMIN_SESSION_COOKIE,
        token,
        max_age=max_age,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


@auth_router.post("/admin/auth")
async def login(
    payload: LoginRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if not payload.password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Password required")

    lifetime_hours = settings.security.admin_session_hours
    token = authenticate_admin(
        payload.password,
        settings.security.admin_password.get_secret_value(),
        lifetime_hours,
    )
    if token is None:
        logger.warning("Admin login failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid password")

    _set_session_cookie(response, settings, token, lifetime_hours * 3600)
    logger.info("Admin logged in")
    return {"success": True, "message": "Authenticated successfully"}


@auth_router.delete("/admin/auth")
async def logout(response: Response, settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    _set_session_cookie(response, settings, "", 0)
    return {"message": "Logged out successfully"}


@auth_router.get("/admin/auth")
async def auth_status(
    request: Request,
    credentials=Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Dict[str, bool]:
    return {"authenticated": is_admin_request(request, settings, credentials)}


# =============================================================================
# EVENTS
# =============================================================================

@router.get("/admin/events")
async def list_events(
    event_type: Optional[str] = Query(None, alias="eventType"),
    user_id: Optional[str] = Query(None, alias="userId"),
    session_id: Optional[str] = Query(None, alias="sessionId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    limit: int = Query(DEFAULT_EVENTS_LIMIT, ge=1, le=MAX_EVENTS_LIMIT),
    skip: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    events = await AnalyticsEventService(db).get_events(
        event=event_type,
        user_id=user_id,
        session_id=session_id,
        start=to_naive_utc(start_date),
        end=to_naive_utc(end_date),
        limit=limit,
        skip=skip,
    )
    return {"success": True, "data": [serialize_event(e) for e in events], "count": len(events)}


@router.post("/admin/events", status_code=status.HTTP_201_CREATED)
async def create_event(
    payload: TrackEventRequest,
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    """Create an event by hand, for testing the dashboard."""
    record = await AnalyticsEventService(db).create_event(
        event=payload.event,
        session_id=payload.session_id,
        properties=payload.properties,
        user_id=payload.user_id,
    )
    return {"success": True, "data": serialize_event(record)}


# =============================================================================
# STATISTICS
# =============================================================================

@router.get("/admin/stats")
async def dashboard_stats(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    stats = await AnalyticsEventService(db).get_dashboard_stats(
        to_naive_utc(start_date),
        to_naive_utc(end_date),
    )
    return {"success": True, "data": stats}


@router.get("/admin/stats/comparison")
async def period_comparison(
    compare_start_date: Optional[datetime] = Query(None, alias="compareStartDate"),
    compare_end_date: Optional[datetime] = Query(None, alias="compareEndDate"),
    prev_start_date: Optional[datetime] = Query(None, alias="prevStartDate"),
    prev_end_date: Optional[datetime] = Query(None, alias="prevEndDate"),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    try:
        comparison = await AnalyticsEventService(db).get_period_comparison(
            to_naive_utc(compare_start_date),
            to_naive_utc(compare_end_date),
            to_naive_utc(prev_start_date),
            to_naive_utc(prev_end_date),
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"success": True, "data": comparison}


@router.get("/admin/stats/sales-chart")
async def sales_chart(
    granularity: str = Query("week"),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    try:
        chart = await AnalyticsEventService(db).get_sales_chart(granularity)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"success": True, "data": chart}


# =============================================================================
# AI USAGE
# =============================================================================

@router.get("/admin/usage")
async def usage_stats(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    return await AIUsageService(db).get_usage_stats(to_naive_utc(start_date), to_naive_utc(end_date))


@router.post("/admin/usage", status_code=status.HTTP_201_CREATED)
async def track_usage(
    payload: UsageRequest,
    db: AsyncSession = Depends(get_db_dependency),
) -> Dict[str, Any]:
    usage = await AIUsageService(db).track_usage(
        provider=payload.provider.value,
        model_name=payload.model_name,
        prompt_tokens=payload.prompt_tokens,
        completion_tokens=payload.completion_tokens,
        request_type=payload.request_type.value,
        user_id=payload.user_id,
        session_id=payload.session_id,
    )
    return {"success": True, "data": serialize_usage(usage)}
