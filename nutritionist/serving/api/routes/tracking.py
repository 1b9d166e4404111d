"""
Event Tracking Endpoint

Receives analytics events from the chat widget.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from nutritionist.analytics.events import AnalyticsEventService
from nutritionist.database.connection import get_db_dependency

router = APIRouter()


class TrackEventRequest(BaseModel):
    """Analytics event sent by the widget"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event: str = Field(..., min_length=1, max_length=100)
    properties: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = Field(default=None, max_length=255)
    session_id: str = Field(..., min_length=1, max_length=255)


class TrackEventResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    event_id: str


@router.post(
    "/analytics",
    response_model=TrackEventResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def track_event(
    payload: TrackEventRequest,
    db: AsyncSession = Depends(get_db_dependency),
) -> TrackEventResponse:
    """Persist one analytics event."""
    record = await AnalyticsEventService(db).create_event(
        event=payload.event,
        session_id=payload.session_id,
        properties=payload.properties,
        user_id=payload.user_id,
    )
    return TrackEventResponse(event_id=str(record.id))
