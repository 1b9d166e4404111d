"""
Serving Module

HTTP API and cache.
"""
