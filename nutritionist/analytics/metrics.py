"""
Event Metrics

Pure aggregations over a polars frame of analytics events. Every function
takes an already loaded frame (see `build_event_frame`) so the maths can be
tested without a database.

Revenue is reported two ways and never merged:
- cart revenue: sum of `value` on add_to_cart events (an approximation)
- verified revenue: sum of `total_value` on purchase_verified events,
  recorded only after a Shopify webhook confirmed the order
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import polars as pl
import structlog

from nutritionist.database.models import EventName
from nutritionist.timeutils import start_of_day, start_of_yesterday

logger = structlog.get_logger(__name__)


EVENT_SCHEMA = {
    "event": pl.Utf8,
    "session_id": pl.Utf8,
    "user_id": pl.Utf8,
    "timestamp": pl.Datetime("us"),
    "value": pl.Float64,
    "total_value": pl.Float64,
    "product_name": pl.Utf8,
}

CHAT = EventName.CHAT_API_REQUEST.value
RECOMMENDED = EventName.PRODUCT_RECOMMENDED.value
CART = EventName.ADD_TO_CART.value
PLAN = EventName.PLAN_GENERATED.value
PURCHASE = EventName.PURCHASE_VERIFIED.value
ORDER = EventName.ORDER_COMPLETED.value

DAILY_CHART_EVENTS = [CHAT, RECOMMENDED, CART, PLAN]
SALES_GRANULARITIES = ("week", "month", "year")


@dataclass
class Window:
    """Time window, end exclusive unless stated otherwise by the caller"""
    start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


# =============================================================================
# FRAME CONSTRUCTION
# =============================================================================

def _amount(value: Any) -> Optional[float]:
    """Numeric, non-negative property value or None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if value != value or value < 0:  # NaN or negative
        return None
    return float(value)


def event_record(
    event: str,
    session_id: str,
    timestamp: datetime,
    properties: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Flatten one stored event into a frame row."""
    properties = properties or {}
    product_name = properties.get("product_name")
    return {
        "event": event,
        "session_id": session_id,
        "user_id": user_id,
        "timestamp": timestamp,
        "value": _amount(properties.get("value")),
        "total_value": _amount(properties.get("total_value")),
        "product_name": str(product_name) if product_name is not None else None,
    }


def build_event_frame(records: Iterable[Dict[str, Any]]) -> pl.DataFrame:
    """Build the event frame from rows produced by `event_record`."""
    return pl.DataFrame(list(records), schema=EVENT_SCHEMA)


def filter_window(
    df: pl.DataFrame,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    include_end: bool = True,
) -> pl.DataFrame:
    """Keep events with start <= timestamp <= end (or < end)."""
    if start is not None:
        df = df.filter(pl.col("timestamp") >= start)
    if end is not None:
        if include_end:
            df = df.filter(pl.col("timestamp") <= end)
        else:
            df = df.filter(pl.col("timestamp") < end)
    return df


# =============================================================================
# COUNTS AND RATES
# =============================================================================

def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round to `digits` decimals with halves going up.

    The builtin `round` sends halves to the even neighbour, so 12.5 would
    become 12 instead of 13.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _count(df: pl.DataFrame, event: str) -> int:
    return df.filter(pl.col("event") == event).height


def _sum(series: pl.Series) -> float:
    return float(series.sum() or 0.0)


def count_by_event(df: pl.DataFrame) -> Dict[str, int]:
    counts = df.group_by("event").agg(pl.len().alias("count"))
    return {row["event"]: int(row["count"]) for row in counts.iter_rows(named=True)}


def conversation_count(df: pl.DataFrame) -> int:
    """Distinct sessions that sent at least one chat request."""
    return df.filter(pl.col("event") == CHAT)["session_id"].n_unique()


def conversion_rate(df: pl.DataFrame) -> float:
    """Cart additions per recommendation, in percent with 2 decimals."""
    recommended = _count(df, RECOMMENDED)
    if recommended == 0:
        return 0.0
    return round_half_up(_count(df, CART) / recommended * 100, 2)


def revenue_stats(df: pl.DataFrame) -> Dict[str, Any]:
    """Revenue approximated from add_to_cart values."""
    carts = df.filter(pl.col("event") == CART)
    total = _sum(carts["value"])
    sessions = carts["session_id"].n_unique()
    return {
        "totalRevenue": round_half_up(total, 2),
        "averageOrderValue": round_half_up(total / sessions, 2) if sessions else 0.0,
        "totalCartAdditions": carts.height,
    }


def verified_revenue_stats(df: pl.DataFrame) -> Dict[str, Any]:
    """Revenue confirmed by Shopify order webhooks."""
    purchases = df.filter(pl.col("event") == PURCHASE)
    return {
        "verifiedRevenue": round_half_up(_sum(purchases["total_value"]), 2),
        "verifiedPurchases": purchases.height,
        "verifiedOrders": _count(df, ORDER),
    }


def top_products(df: pl.DataFrame, limit: int = 10) -> List[Dict[str, Any]]:
    """Products ranked by cart additions, then recommendations."""
    grouped = (
        df.filter(
            pl.col("event").is_in([RECOMMENDED, CART])
            & pl.col("product_name").is_not_null()
        )
        .group_by("product_name")
        .agg(
            (pl.col("event") == RECOMMENDED).sum().alias("recommendations"),
            (pl.col("event") == CART).sum().alias("cartAdditions"),
        )
        .sort(
            ["cartAdditions", "recommendations", "product_name"],
            descending=[True, True, False],
        )
        .head(limit)
    )
    return [
        {
            "productName": row["product_name"],
            "recommendations": int(row["recommendations"]),
            "cartAdditions": int(row["cartAdditions"]),
        }
        for row in grouped.iter_rows(named=True)
    ]


def events_by_day(df: pl.DataFrame, event_types: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
    """Per-day event counts, oldest day first."""
    if event_types:
        df = df.filter(pl.col("event").is_in(list(event_types)))

    daily = (
        df.with_columns(pl.col("timestamp").dt.strftime("%Y-%m-%d").alias("date"))
        .group_by(["date", "event"])
        .agg(pl.len().alias("count"))
        .sort(["date", "event"])
    )

    days: Dict[str, Dict[str, Any]] = {}
    for row in daily.iter_rows(named=True):
        day = days.setdefault(row["date"], {"date": row["date"], "events": {}, "total": 0})
        day["events"][row["event"]] = int(row["count"])
        day["total"] += int(row["count"])
    return [days[key] for key in sorted(days)]


def event_type_breakdown(df: pl.DataFrame) -> List[Dict[str, Any]]:
    """Share of each event type, most frequent first."""
    total = df.height
    counts = (
        df.group_by("event")
        .agg(pl.len().alias("count"))
        .sort(["count", "event"], descending=[True, False])
    )
    return [
        {
            "eventType": row["event"],
            "count": int(row["count"]),
            "percentage": int(round_half_up(row["count"] / total * 100)) if total else 0,
        }
        for row in counts.iter_rows(named=True)
    ]


def hourly_activity(df: pl.DataFrame, now: datetime) -> List[Dict[str, int]]:
    """Events per hour since midnight, zero-filled up to the current hour."""
    today = filter_window(df, start_of_day(now), now)
    per_hour = today.group_by(pl.col("timestamp").dt.hour().alias("hour")).agg(pl.len().alias("events"))
    found = {int(row["hour"]): int(row["events"]) for row in per_hour.iter_rows(named=True)}
    return [{"hour": hour, "events": found.get(hour, 0)} for hour in range(now.hour + 1)]


# =============================================================================
# PERIOD COMPARISON
# =============================================================================

def percent_change(current: float, previous: float) -> Optional[float]:
    """
    Growth from previous to current, in percent with 1 decimal.

    0 when both are zero; None when only the previous value is zero, since
    growth from nothing has no meaningful percentage.
    """
    if previous == 0:
        return 0.0 if current == 0 else None
    return round_half_up((current - previous) / previous * 100, 1)


def period_metrics(df: pl.DataFrame) -> Dict[str, Any]:
    """Headline metrics for one window."""
    revenue = revenue_stats(df)
    verified = verified_revenue_stats(df)
    return {
        "conversations": conversation_count(df),
        "recommendations": _count(df, RECOMMENDED),
        "cartAdditions": revenue["totalCartAdditions"],
        "revenue": revenue["totalRevenue"],
        "verifiedPurchases": verified["verifiedPurchases"],
        "verifiedRevenue": verified["verifiedRevenue"],
        "conversionRate": conversion_rate(df),
    }


def compare_periods(current_df: pl.DataFrame, previous_df: pl.DataFrame) -> Dict[str, Any]:
    current = period_metrics(current_df)
    previous = period_metrics(previous_df)
    return {
        "current": current,
        "previous": previous,
        "changes": {key: percent_change(current[key], previous[key]) for key in current},
    }


def resolve_comparison_windows(
    now: datetime,
    current_start: Optional[datetime] = None,
    current_end: Optional[datetime] = None,
    previous_start: Optional[datetime] = None,
    previous_end: Optional[datetime] = None,
    default_days: int = 7,
) -> Tuple[Window, Window]:
    """
    Fill in missing window bounds.

    The current window defaults to the last `default_days` days. The previous
    window defaults to the window of equal length right before it.

    Raises:
        ValueError: If a window ends before it starts
    """
    current_end = current_end or now
    current_start = current_start or current_end - timedelta(days=default_days)
    if current_start > current_end:
        raise ValueError("Current period start must be before its end")

    length = current_end - current_start
    if previous_start is None and previous_end is None:
        previous_end = current_start
    if previous_end is None:
        previous_end = previous_start + length
    if previous_start is None:
        previous_start = previous_end - length
    if previous_start > previous_end:
        raise ValueError("Previous period start must be before its end")

    return Window(current_start, current_end), Window(previous_start, previous_end)


def today_vs_yesterday(df: pl.DataFrame, now: datetime) -> Dict[str, Any]:
    today_start = start_of_day(now)
    comparison = compare_periods(
        filter_window(df, today_start, now),
        filter_window(df, start_of_yesterday(now), today_start, include_end=False),
    )
    return {
        "today": comparison["current"],
        "yesterday": comparison["previous"],
        "changes": comparison["changes"],
    }


# =============================================================================
# SALES CHART
# =============================================================================

def sales_chart_buckets(granularity: str, now: datetime) -> Tuple[List[datetime], str, str]:
    """
    Bucket starts, polars truncation interval and label format.

    week: 7 daily buckets, month: 30 daily buckets, year: 12 monthly
    buckets, each ending with the bucket containing `now`.
    """
    if granularity not in SALES_GRANULARITIES:
        raise ValueError(f"Invalid granularity. Must be one of: {', '.join(SALES_GRANULARITIES)}")

    if granularity == "year":
        month_index = now.year * 12 + now.month - 1
        starts = [
            datetime((month_index - offset) // 12, (month_index - offset) % 12 + 1, 1)
            for offset in range(11, -1, -1)
        ]
        return starts, "1mo", "%Y-%m"

    days = 7 if granularity == "week" else 30
    today = start_of_day(now)
    starts = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    return starts, "1d", "%Y-%m-%d"


def sales_chart(df: pl.DataFrame, granularity: str, now: datetime) -> Dict[str, Any]:
    """Cart and verified revenue per bucket, zero-filled."""
    starts, every, label_format = sales_chart_buckets(granularity, now)

    frame = filter_window(df, starts[0], now).with_columns(
        pl.col("timestamp").dt.truncate(every).alias("bucket")
    )
    aggregated = frame.group_by("bucket").agg(
        pl.when(pl.col("event") == CART).then(pl.col("value")).otherwise(0.0).sum().alias("cartRevenue"),
        pl.when(pl.col("event") == PURCHASE).then(pl.col("total_value")).otherwise(0.0).sum().alias("verifiedRevenue"),
        (pl.col("event") == CART).sum().alias("cartAdditions"),
        (pl.col("event") == ORDER).sum().alias("verifiedOrders"),
    )
    by_bucket = {row["bucket"]: row for row in aggregated.iter_rows(named=True)}

    data = []
    for bucket_start in starts:
        row = by_bucket.get(bucket_start, {})
        data.append({
            "period": bucket_start.strftime(label_format),
            "cartRevenue": round_half_up(float(row.get("cartRevenue") or 0.0), 2),
            "verifiedRevenue": round_half_up(float(row.get("verifiedRevenue") or 0.0), 2),
            "cartAdditions": int(row.get("cartAdditions") or 0),
            "verifiedOrders": int(row.get("verifiedOrders") or 0),
        })

    return {
        "granularity": granularity,
        "data": data,
        "totals": {
            "cartRevenue": round_half_up(sum(point["cartRevenue"] for point in data), 2),
            "verifiedRevenue": round_half_up(sum(point["verifiedRevenue"] for point in data), 2),
            "cartAdditions": sum(point["cartAdditions"] for point in data),
            "verifiedOrders": sum(point["verifiedOrders"] for point in data),
        },
    }


# =============================================================================
# DASHBOARD
# =============================================================================

def dashboard_stats(window_df: pl.DataFrame, recent_df: pl.DataFrame, now: datetime) -> Dict[str, Any]:
    """
    All dashboard aggregates in one payload.

    Args:
        window_df: Events in the requested window
        recent_df: Events since yesterday midnight, for the daily widgets
        now: Reference time
    """
    stats = {
        "totalConversations": conversation_count(window_df),
        "conversionRate": conversion_rate(window_df),
        **revenue_stats(window_df),
        **verified_revenue_stats(window_df),
        "topProducts": top_products(window_df),
        "eventsByDay": events_by_day(window_df, DAILY_CHART_EVENTS),
        "eventTypeBreakdown": event_type_breakdown(window_df),
        "todayVsYesterday": today_vs_yesterday(recent_df, now),
        "hourlyActivity": hourly_activity(recent_df, now),
    }
    logger.debug(
        "Dashboard stats computed",
        events=window_df.height,
        conversations=stats["totalConversations"],
        revenue=stats["totalRevenue"],
    )
    return stats
