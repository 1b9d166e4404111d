"""
Demo Data Module
"""
from .generators import SessionEventGenerator

__all__ = ["SessionEventGenerator"]
