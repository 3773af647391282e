"""Content Processing - HTML text extraction."""
from .extractor import extract_text, html_to_plain

__all__ = ["extract_text", "html_to_plain"]
