"""
AI Nutritionist Backend

Backend of a supplement recommendation chat assistant: event tracking,
user profiles, Shopify cart and order integration, admin analytics.
"""

__version__ = "1.0.0"
