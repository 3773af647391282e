"""
HTML to plain-text extraction.

Turns fetched pages and article bodies into text suitable for prompts.
No network access happens here.
"""

import re

from bs4 import BeautifulSoup

from marginalia.utils.logging import get_logger

logger = get_logger(__name__)

# Tags dropped together with their content
_DROP_TAGS = ["script", "style", "noscript", "template"]

# Tags whose end marks a line break in the extracted text
_BLOCK_TAGS = [
    "p", "div", "li", "br", "h1", "h2", "h3", "h4", "h5", "h6",
    "tr", "blockquote", "pre", "section", "article", "table", "ul", "ol",
]

_INLINE_SPACE = re.compile(r"[ \t\r\f\v]+")
_SPACE_AROUND_NEWLINE = re.compile(r" *\n[ \n]*")


def extract_text(html: str) -> str:
    """
    Convert an HTML document into readable plain text.

    Script and style blocks are removed, block-level elements become line
    breaks, remaining markup is dropped, entities are decoded and runs of
    whitespace are collapsed.
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for element in soup(_DROP_TAGS):
        element.decompose()

    for element in soup.find_all(_BLOCK_TAGS):
        element.insert_after("\n")

    text = soup.get_text()
    text = text.replace("\xa0", " ")
    text = _INLINE_SPACE.sub(" ", text)
    text = _SPACE_AROUND_NEWLINE.sub("\n", text)
    text = text.strip()

    logger.debug(f"Extracted {len(text)} chars from {len(html)} chars of HTML")
    return text


def html_to_plain(html: str) -> str:
    """Flatten article markup into a single line of words."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    return " ".join(soup.get_text(" ").split())
