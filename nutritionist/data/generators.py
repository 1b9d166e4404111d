"""
Demo Event Generator

Generates realistic chat sessions for demos and local dashboards:
- Chat requests
- Product recommendations and cart additions
- Nutrition plans
- Some verified purchases
"""

import random
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from faker import Faker

from nutritionist.database.models import EventName
from nutritionist.timeutils import utcnow


# =============================================================================
# CONFIGURATION
# =============================================================================

PRODUCTS = [
    ("Vitamine D3", 19.99),
    ("Omega 3", 29.99),
    ("Magnésium Bisglycinate", 24.90),
    ("Zinc Picolinate", 14.90),
    ("Vitamine C Liposomale", 34.90),
    ("Probiotiques 20 Souches", 39.90),
    ("Ashwagandha KSM-66", 27.50),
    ("Collagène Marin", 44.90),
    ("Fer Bisglycinate", 16.90),
    ("Mélatonine 1mg", 12.90),
    ("Spiruline Bio", 22.00),
    ("Complexe Vitamines B", 18.50),
]

RECOMMENDATION_RATE = 0.7
CART_RATE = 0.3
PLAN_RATE = 0.2
PURCHASE_RATE = 0.35


class SessionEventGenerator:
    """
    Generate analytics events for simulated chat sessions.

    Example:
        events = SessionEventGenerator(seed=42).generate(sessions=200, days=30)
    """

    def __init__(self, seed: Optional[int] = None, now: Optional[datetime] = None):
        self.random = random.Random(seed)
        self.fake = Faker("fr_FR")
        if seed is not None:
            self.fake.seed_instance(seed)
        self.now = now or utcnow()

    def _event(self, name: EventName, session_id: str, user_id: Optional[str], timestamp: datetime,
               **properties: Any) -> Dict[str, Any]:
        return {
            "event": name.value,
            "session_id": session_id,
            "user_id": user_id,
            "timestamp": timestamp,
            "properties": properties,
        }

    def generate_session(self, start: datetime) -> List[Dict[str, Any]]:
        """Events of one session, in chronological order."""
        session_id = f"session_{int(start.timestamp() * 1000)}_{uuid.uuid4().hex[:9]}"
        user_id = f"user_{uuid.uuid4().hex[:12]}" if self.random.random() < 0.6 else None
        clock = start
        events: List[Dict[str, Any]] = []

        def tick() -> datetime:
            nonlocal clock
            clock = min(clock + timedelta(seconds=self.random.randint(5, 240)), self.now)
            return clock

        for _ in range(self.random.randint(1, 6)):
            events.append(self._event(
                EventName.CHAT_API_REQUEST, session_id, user_id, tick(),
                message_length=self.random.randint(10, 400),
                provider=self.random.choice(["openai", "gemini"]),
            ))

        carted = []
        if self.random.random() < RECOMMENDATION_RATE:
            for name, price in self.random.sample(PRODUCTS, self.random.randint(1, 4)):
                events.append(self._event(
                    EventName.PRODUCT_RECOMMENDED, session_id, user_id, tick(),
                    product_name=name, price=price,
                ))
                if self.random.random() < CART_RATE:
                    quantity = self.random.randint(1, 2)
                    carted.append((name, price, quantity))
                    events.append(self._event(
                        EventName.ADD_TO_CART, session_id, user_id, tick(),
                        product_name=name, quantity=quantity, value=round(price * quantity, 2),
                    ))

        if self.random.random() < PLAN_RATE:
            events.append(self._event(EventName.PLAN_GENERATED, session_id, user_id, tick()))

        if carted and self.random.random() < PURCHASE_RATE:
            events.extend(self._purchase(session_id, user_id, carted, tick()))

        return events

    def _purchase(self, session_id: str, user_id: Optional[str], carted, timestamp: datetime) -> List[Dict[str, Any]]:
        order_id = self.random.randint(10 ** 12, 10 ** 13)
        order_number = self.random.randint(1000, 10999)
        email = self.fake.email()
        events = [
            self._event(
                EventName.PURCHASE_VERIFIED, session_id, user_id, timestamp,
                order_id=order_id,
                order_number=order_number,
                product_name=name,
                quantity=quantity,
                unit_price=price,
                total_value=round(price * quantity, 2),
                currency="EUR",
                email=email,
                source="demo",
            )
            for name, price, quantity in carted
        ]
        events.append(self._event(
            EventName.ORDER_COMPLETED, session_id, user_id, timestamp,
            order_id=order_id,
            order_number=order_number,
            total_value=round(sum(price * quantity for _, price, quantity in carted), 2),
            currency="EUR",
            item_count=len(carted),
            email=email,
            source="demo",
        ))
        return events

    def generate(self, sessions: int = 200, days: int = 30) -> List[Dict[str, Any]]:
        """Events for `sessions` sessions spread over the last `days` days."""
        window_seconds = int(timedelta(days=days).total_seconds())
        events: List[Dict[str, Any]] = []
        for _ in range(sessions):
            start = self.now - timedelta(seconds=self.random.randint(0, window_seconds))
            events.extend(self.generate_session(start))
        events.sort(key=lambda e: e["timestamp"])
        return events
