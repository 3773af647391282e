"""Fetch Service - SSRF-safe page downloads."""
from .fetcher import SafeFetcher

__all__ = ["SafeFetcher"]
