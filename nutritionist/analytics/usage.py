"""
AI Usage Accounting

Token and cost bookkeeping for LLM calls made by the chat API.
Prices are USD per one million tokens.
"""

from datetime import datetime
from typing import Any, Dict, Optional

import polars as pl
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from nutritionist.analytics.metrics import percent_change, round_half_up
from nutritionist.database.models import AIUsage
from nutritionist.timeutils import start_of_day, start_of_yesterday, utcnow

logger = structlog.get_logger(__name__)


PRICING: Dict[str, Dict[str, Dict[str, float]]] = {
    "openai": {
        "gpt-4": {"input": 30, "output": 60},
        "gpt-4-turbo": {"input": 10, "output": 30},
        "gpt-4-turbo-preview": {"input": 10, "output": 30},
        "gpt-4o": {"input": 2.5, "output": 10},
        "gpt-4o-mini": {"input": 0.15, "output": 0.6},
        "gpt-3.5-turbo": {"input": 0.5, "output": 1.5},
        "default": {"input": 2.5, "output": 10},
    },
    "gemini": {
        "gemini-2.0-flash": {"input": 0.075, "output": 0.3},
        "gemini-1.5-flash": {"input": 0.075, "output": 0.3},
        "gemini-1.5-pro": {"input": 1.25, "output": 5},
        "gemini-pro": {"input": 0.5, "output": 1.5},
        "default": {"input": 0.075, "output": 0.3},
    },
}

DAILY_USAGE_DAYS = 14

USAGE_SCHEMA = {
    "timestamp": pl.Datetime("us"),
    "provider": pl.Utf8,
    "request_type": pl.Utf8,
    "total_tokens": pl.Int64,
    "estimated_cost": pl.Float64,
}


def calculate_cost(provider: str, model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """
    Estimated USD cost of one call, rounded to 4 decimals.

    Unknown models use the provider's default price.

    Raises:
        ValueError: If the provider has no price table
    """
    if provider not in PRICING:
        raise ValueError(f"Unknown AI provider: {provider}")

    prices = PRICING[provider].get(model, PRICING[provider]["default"])
    input_cost = prompt_tokens / 1_000_000 * prices["input"]
    output_cost = completion_tokens / 1_000_000 * prices["output"]
    return round_half_up(input_cost + output_cost, 4)


def serialize_usage(usage: AIUsage) -> Dict[str, Any]:
    return {
        "id": str(usage.id),
        "timestamp": usage.timestamp.isoformat(),
        "provider": usage.provider,
        "modelName": usage.model_name,
        "promptTokens": usage.prompt_tokens,
        "completionTokens": usage.completion_tokens,
        "totalTokens": usage.total_tokens,
        "estimatedCost": usage.estimated_cost,
        "requestType": usage.request_type,
        "userId": usage.user_id,
        "sessionId": usage.session_id,
    }


def _totals(df: pl.DataFrame) -> Dict[str, Any]:
    return {
        "requests": df.height,
        "tokens": int(df["total_tokens"].sum() or 0),
        "cost": round_half_up(float(df["estimated_cost"].sum() or 0.0), 4),
    }


def _grouped(df: pl.DataFrame, column: str) -> Dict[str, Dict[str, Any]]:
    grouped = df.group_by(column).agg(
        pl.len().alias("requests"),
        pl.col("total_tokens").sum().alias("tokens"),
        pl.col("estimated_cost").sum().alias("cost"),
    ).sort(column)
    return {
        row[column]: {
            "requests": int(row["requests"]),
            "tokens": int(row["tokens"]),
            "cost": round_half_up(float(row["cost"]), 4),
        }
        for row in grouped.iter_rows(named=True)
    }


def usage_stats(df: pl.DataFrame, recent_df: pl.DataFrame, now: datetime) -> Dict[str, Any]:
    """
    Usage aggregates.

    Args:
        df: Usage rows in the requested window
        recent_df: Usage rows since yesterday midnight
        now: Reference time
    """
    daily = (
        df.with_columns(pl.col("timestamp").dt.strftime("%Y-%m-%d").alias("date"))
        .group_by("date")
        .agg(
            pl.len().alias("requests"),
            pl.col("total_tokens").sum().alias("tokens"),
            pl.col("estimated_cost").sum().alias("cost"),
        )
        .sort("date")
        .head(DAILY_USAGE_DAYS)
    )

    today_start = start_of_day(now)
    today = _totals(recent_df.filter(pl.col("timestamp") >= today_start))
    yesterday = _totals(recent_df.filter(
        (pl.col("timestamp") >= start_of_yesterday(now)) & (pl.col("timestamp") < today_start)
    ))
    totals = _totals(df)

    return {
        "totalRequests": totals["requests"],
        "totalTokens": totals["tokens"],
        "totalCost": totals["cost"],
        "byProvider": _grouped(df, "provider"),
        "byRequestType": _grouped(df, "request_type"),
        "dailyUsage": [
            {
                "date": row["date"],
                "requests": int(row["requests"]),
                "tokens": int(row["tokens"]),
                "cost": round_half_up(float(row["cost"]), 4),
            }
            for row in daily.iter_rows(named=True)
        ],
        "todayVsYesterday": {
            "today": today,
            "yesterday": yesterday,
            "change": {key: percent_change(today[key], yesterday[key]) for key in today},
        },
    }


class AIUsageService:
    """AI usage recording and reporting bound to one session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def track_usage(
        self,
        provider: str,
        model_name: str,
        prompt_tokens: int,
        completion_tokens: int,
        request_type: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> AIUsage:
        estimated_cost = calculate_cost(provider, model_name, prompt_tokens, completion_tokens)
        usage = AIUsage(
            timestamp=utcnow(),
            provider=provider,
            model_name=model_name,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            estimated_cost=estimated_cost,
            request_type=request_type,
            user_id=user_id,
            session_id=session_id,
        )
        self.db.add(usage)
        await self.db.flush()

        logger.info(
            "AI usage tracked",
            provider=provider,
            model=model_name,
            tokens=usage.total_tokens,
            cost=estimated_cost,
        )
        return usage

    async def load_frame(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> pl.DataFrame:
        query = select(
            AIUsage.timestamp,
            AIUsage.provider,
            AIUsage.request_type,
            AIUsage.total_tokens,
            AIUsage.estimated_cost,
        )
        if start:
            query = query.where(AIUsage.timestamp >= start)
        if end:
            query = query.where(AIUsage.timestamp <= end)

        result = await self.db.execute(query)
        return pl.DataFrame([dict(row._mapping) for row in result], schema=USAGE_SCHEMA)

    async def get_usage_stats(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = now or utcnow()
        window_df = await self.load_frame(start, end)
        recent_df = await self.load_frame(start_of_yesterday(now), now)
        return usage_stats(window_df, recent_df, now)
