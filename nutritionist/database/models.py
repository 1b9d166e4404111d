"""
Database Models

Three collections back the service:

- AnalyticsEvent: append-only, timestamped events with free-form JSON
  properties. The only source for dashboard aggregates.
- UserProfile: onboarding answers and the optional Shopify customer link.
- AIUsage: token and cost accounting, one row per LLM call.

Properties are stored as JSONB on PostgreSQL and plain JSON elsewhere
(SQLite in tests).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from nutritionist.timeutils import utcnow


JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class EventName(str, Enum):
    """Event names the dashboard aggregates over"""
    CHAT_API_REQUEST = "chat_api_request"
    PRODUCT_RECOMMENDED = "product_recommended"
    ADD_TO_CART = "add_to_cart"
    PLAN_GENERATED = "plan_generated"
    PURCHASE_VERIFIED = "purchase_verified"
    ORDER_COMPLETED = "order_completed"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    PREFER_NOT_TO_SAY = "prefer-not-to-say"


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    CAD = "CAD"
    AUD = "AUD"
    JPY = "JPY"
    INR = "INR"
    BRL = "BRL"
    MXN = "MXN"
    CNY = "CNY"


class AIProvider(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"


class AIRequestType(str, Enum):
    CHAT = "chat"
    PLAN_GENERATION = "plan_generation"


# =============================================================================
# TABLES
# =============================================================================

class AnalyticsEvent(Base):
    """
    Analytics Event

    Never updated after insert. `properties` carries event specific values
    such as `value` for add_to_cart or `total_value` for purchase_verified.
    """
    __tablename__ = "analytics_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    properties: Mapped[Dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    session_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_analytics_events_event_timestamp", "event", "timestamp"),
        Index("ix_analytics_events_user_timestamp", "user_id", "timestamp"),
        Index("ix_analytics_events_session_event", "session_id", "event"),
    )


class UserProfile(Base):
    """
    User Profile

    Created on onboarding or on the first Shopify authenticated visit.
    """
    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    age: Mapped[int] = mapped_column(Integer, nullable=False)
    gender: Mapped[str] = mapped_column(String(20), nullable=False)
    goals: Mapped[List[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    allergies: Mapped[List[str]] = mapped_column(JSONDocument, nullable=False, default=list)

    # Budget range
    budget_min: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    budget_max: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    budget_currency: Mapped[str] = mapped_column(String(3), nullable=False, default=Currency.USD.value)

    # Shopify linkage
    shopify_customer_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    shopify_customer_name: Mapped[Optional[str]] = mapped_column(String(255))

    last_interaction: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    # Audit
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class AIUsage(Base):
    """AI Usage record, appended per LLM call"""
    __tablename__ = "ai_usage"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)  # USD
    request_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(255))

    __table_args__ = (
        Index("ix_ai_usage_timestamp_provider", "timestamp", "provider"),
        Index("ix_ai_usage_timestamp_request_type", "timestamp", "request_type"),
    )
