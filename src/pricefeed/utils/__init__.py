# src/pricefeed/utils/__init__.py
"""Shared helpers: the retrying HTTP fetcher and date/time handling."""
