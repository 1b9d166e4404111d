"""
Analytics Event Service

Persists analytics events and serves the admin dashboard aggregates. Rows are
loaded for the requested window and handed to the polars functions in
`nutritionist.analytics.metrics`.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import polars as pl
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nutritionist.analytics import metrics
from nutritionist.database.models import AnalyticsEvent
from nutritionist.serving.cache import stats_cache
from nutritionist.timeutils import start_of_yesterday, utcnow

logger = structlog.get_logger(__name__)

DEFAULT_EVENTS_LIMIT = 100
MAX_EVENTS_LIMIT = 1000


def serialize_event(event: AnalyticsEvent) -> Dict[str, Any]:
    return {
        "id": str(event.id),
        "event": event.event,
        "properties": event.properties or {},
        "userId": event.user_id,
        "sessionId": event.session_id,
        "timestamp": event.timestamp.isoformat(),
        "createdAt": event.created_at.isoformat(),
    }


class AnalyticsEventService:
    """Event recording and dashboard queries bound to one session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _add(
        self,
        event: str,
        session_id: str,
        properties: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> AnalyticsEvent:
        now = utcnow()
        record = AnalyticsEvent(
            event=event,
            properties=properties or {},
            user_id=user_id or None,
            session_id=session_id,
            timestamp=timestamp or now,
            created_at=now,
        )
        self.db.add(record)
        await self.db.flush()

        logger.info("Event tracked", event_name=event, session_id=session_id, user_id=user_id)
        return record

    async def create_event(
        self,
        event: str,
        session_id: str,
        properties: Optional[Dict[str, Any]] = None,
        user_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> AnalyticsEvent:
        """Append one event. Events are never updated afterwards."""
        record = await self._add(event, session_id, properties, user_id, timestamp)
        await stats_cache.invalidate_all()
        return record

    async def get_events(
        self,
        event: Optional[str] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = DEFAULT_EVENTS_LIMIT,
        skip: int = 0,
    ) -> List[AnalyticsEvent]:
        """Most recent events first, filtered by any combination of fields."""
        query = select(AnalyticsEvent)

        if event:
            query = query.where(AnalyticsEvent.event == event)
        if user_id:
            query = query.where(AnalyticsEvent.user_id == user_id)
        if session_id:
            query = query.where(AnalyticsEvent.session_id == session_id)
        if start:
            query = query.where(AnalyticsEvent.timestamp >= start)
        if end:
            query = query.where(AnalyticsEvent.timestamp <= end)

        query = query.order_by(AnalyticsEvent.timestamp.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def load_frame(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> pl.DataFrame:
        """Load events between start and end (both inclusive) as a frame."""
        query = select(
            AnalyticsEvent.event,
            AnalyticsEvent.session_id,
            AnalyticsEvent.user_id,
            AnalyticsEvent.timestamp,
            AnalyticsEvent.properties,
        )
        if start:
            query = query.where(AnalyticsEvent.timestamp >= start)
        if end:
            query = query.where(AnalyticsEvent.timestamp <= end)

        result = await self.db.execute(query)
        return metrics.build_event_frame(
            metrics.event_record(
                row.event,
                row.session_id,
                row.timestamp,
                properties=row.properties,
                user_id=row.user_id,
            )
            for row in result
        )

    async def get_dashboard_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Dashboard aggregates, cached briefly per window."""
        now = now or utcnow()
        cache_key = f"dashboard:{start.isoformat() if start else '-'}:{end.isoformat() if end else '-'}"

        async def compute() -> Dict[str, Any]:
            window_df = await self.load_frame(start, end)
            recent_df = await self.load_frame(start_of_yesterday(now), now)
            return metrics.dashboard_stats(window_df, recent_df, now)

        return await stats_cache.get_or_set(cache_key, compute)

    async def get_period_comparison(
        self,
        current_start: Optional[datetime] = None,
        current_end: Optional[datetime] = None,
        previous_start: Optional[datetime] = None,
        previous_end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Current vs previous period metrics with percentage changes.

        Raises:
            ValueError: If a window ends before it starts
        """
        current, previous = metrics.resolve_comparison_windows(
            now or utcnow(),
            current_start,
            current_end,
            previous_start,
            previous_end,
        )

        frame = await self.load_frame(min(current.start, previous.start), max(current.end, previous.end))
        comparison = metrics.compare_periods(
            metrics.filter_window(frame, current.start, current.end, include_end=False),
            metrics.filter_window(frame, previous.start, previous.end, include_end=False),
        )
        comparison["currentPeriod"] = current.to_dict()
        comparison["previousPeriod"] = previous.to_dict()
        return comparison

    async def get_sales_chart(self, granularity: str = "week", now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Revenue per bucket for the requested granularity.

        Raises:
            ValueError: On an unknown granularity
        """
        now = now or utcnow()
        starts, _, _ = metrics.sales_chart_buckets(granularity, now)
        frame = await self.load_frame(starts[0], now)
        return metrics.sales_chart(frame, granularity, now)

    async def record_events(self, events: List[Dict[str, Any]]) -> int:
        """Append several events built by callers such as the order webhook."""
        for payload in events:
            await self._add(**payload)
        if events:
            await stats_cache.invalidate_all()
        return len(events)
