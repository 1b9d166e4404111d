"""
Analytics Module

Event recording, dashboard aggregation and AI usage accounting.
"""
from .events import AnalyticsEventService
from .usage import AIUsageService, calculate_cost

__all__ = [
    "AnalyticsEventService",
    "AIUsageService",
    "calculate_cost",
]
