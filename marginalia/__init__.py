"""Marginalia - background research briefs for blog articles."""

__version__ = "1.0.0"
