"""
Unit Tests - AI Usage, Temp Storage, Cache and Demo Data
"""

from datetime import datetime
from pathlib import Path

import polars as pl
import pytest

from nutritionist.analytics.usage import USAGE_SCHEMA, calculate_cost, usage_stats
from nutritionist.data.generators import SessionEventGenerator
from nutritionist.serving.cache import CacheManager, cache_delete_pattern, cache_get, cache_set
from nutritionist.storage import PathOutsideStorage, content_type_for, resolve_temp_path

NOW = datetime(2025, 1, 15, 14, 30)


class TestCalculateCost:
    """Tests for LLM cost estimation"""

    def test_known_model(self):
        """gpt-4o-mini: 0.15$ input and 0.6$ output per million tokens"""
        assert calculate_cost("openai", "gpt-4o-mini", 1_000_000, 1_000_000) == 0.75

    def test_rounded_to_four_decimals(self):
        assert calculate_cost("openai", "gpt-4o-mini", 1234, 0) == 0.0002

    def test_unknown_model_uses_default(self):
        assert calculate_cost("gemini", "gemini-9-ultra", 1_000_000, 0) == 0.075

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown AI provider"):
            calculate_cost("mistral", "large", 10, 10)


class TestUsageStats:
    """Tests for usage aggregates"""

    @pytest.fixture
    def df(self):
        rows = [
            (datetime(2025, 1, 15, 9), "openai", "chat", 1000, 0.01),
            (datetime(2025, 1, 15, 10), "gemini", "chat", 500, 0.002),
            (datetime(2025, 1, 14, 10), "openai", "plan_generation", 3000, 0.03),
        ]
        return pl.DataFrame(
            [dict(zip(USAGE_SCHEMA, row)) for row in rows],
            schema=USAGE_SCHEMA,
        )

    def test_totals_and_groups(self, df):
        stats = usage_stats(df, df, NOW)

        assert stats["totalRequests"] == 3
        assert stats["totalTokens"] == 4500
        assert stats["totalCost"] == 0.042
        assert stats["byProvider"]["openai"] == {"requests": 2, "tokens": 4000, "cost": 0.04}
        assert set(stats["byRequestType"]) == {"chat", "plan_generation"}
        assert [d["date"] for d in stats["dailyUsage"]] == ["2025-01-14", "2025-01-15"]

    def test_today_vs_yesterday(self, df):
        comparison = usage_stats(df, df, NOW)["todayVsYesterday"]

        assert comparison["today"]["requests"] == 2
        assert comparison["yesterday"]["requests"] == 1
        assert comparison["change"]["requests"] == 100.0
        assert comparison["change"]["tokens"] == -50.0

    def test_empty(self):
        empty = pl.DataFrame(schema=USAGE_SCHEMA)

        stats = usage_stats(empty, empty, NOW)

        assert stats["totalRequests"] == 0
        assert stats["totalCost"] == 0.0
        assert stats["byProvider"] == {}
        assert stats["todayVsYesterday"]["change"]["requests"] == 0.0


class TestTempStorage:
    """Tests for temp file path resolution"""

    def test_resolves_inside(self, tmp_path):
        path = resolve_temp_path(tmp_path, "plans/plan_1.pdf")

        assert path == (tmp_path / "plans" / "plan_1.pdf").resolve()

    @pytest.mark.parametrize("relative", ["../secret.txt", "plans/../../etc/passwd", "/etc/passwd"])
    def test_traversal_rejected(self, tmp_path, relative):
        with pytest.raises(PathOutsideStorage):
            resolve_temp_path(tmp_path, relative)

    @pytest.mark.parametrize("name,expected", [
        ("plan.PDF", "application/pdf"),
        ("photo.jpeg", "image/jpeg"),
        ("label.png", "image/png"),
        ("archive.zip", "application/octet-stream"),
    ])
    def test_content_type(self, name, expected):
        assert content_type_for(Path(name)) == expected


class TestCacheWithoutRedis:
    """The cache degrades to misses when Redis is not initialised"""

    async def test_get_set(self):
        assert await cache_set("key", {"a": 1}) is False
        assert await cache_get("key") is None
        assert await cache_delete_pattern("key*") == 0

    async def test_get_or_set_computes(self):
        cache = CacheManager("test", ttl=10)
        calls = []

        async def factory():
            calls.append(1)
            return {"value": 42}

        assert await cache.get_or_set("k", factory) == {"value": 42}
        assert await cache.get_or_set("k", factory) == {"value": 42}
        assert len(calls) == 2


class TestCacheWithRedis:
    """Cache behaviour against a live client"""

    async def test_miss_then_hit(self, redis_client):
        cache = CacheManager("test", ttl=30)

        assert await cache.get("k") is None
        assert await cache.set("k", {"value": 1}) is True
        assert await cache.get("k") == {"value": 1}
        assert redis_client.expiry["test:k"] == 30

    async def test_get_or_set_computes_once(self, redis_client):
        cache = CacheManager("test", ttl=30)
        calls = []

        async def factory():
            calls.append(1)
            return {"value": 42}

        assert await cache.get_or_set("k", factory) == {"value": 42}
        assert await cache.get_or_set("k", factory) == {"value": 42}
        assert len(calls) == 1

    async def test_invalidate_all_stays_in_namespace(self, redis_client):
        stats = CacheManager("stats", ttl=30)
        products = CacheManager("products", ttl=30)
        await stats.set("a", 1)
        await stats.set("b", 2)
        await products.set("a", 3)

        assert await stats.invalidate_all() == 2
        assert await stats.get("a") is None
        assert await products.get("a") == 3

    async def test_undecodable_entry_is_a_miss(self, redis_client):
        redis_client.store["broken"] = "{not json"

        assert await cache_get("broken") is None


class TestSessionEventGenerator:
    """Tests for demo event generation"""

    def test_reproducible(self):
        first = SessionEventGenerator(seed=7, now=NOW).generate(sessions=20, days=5)
        second = SessionEventGenerator(seed=7, now=NOW).generate(sessions=20, days=5)

        assert [e["event"] for e in first] == [e["event"] for e in second]

    def test_events_are_sorted_and_bounded(self):
        events = SessionEventGenerator(seed=1, now=NOW).generate(sessions=50, days=10)

        timestamps = [e["timestamp"] for e in events]
        assert timestamps == sorted(timestamps)
        assert max(timestamps) <= NOW
        assert all(e["session_id"].startswith("session_") for e in events)

    def test_sessions_start_with_chat(self):
        events = SessionEventGenerator(seed=3, now=NOW).generate_session(datetime(2025, 1, 10, 12))

        assert events[0]["event"] == "chat_api_request"
        assert len({e["session_id"] for e in events}) == 1
