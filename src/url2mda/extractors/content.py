"""HTML to markdown conversion for rendered pages.

Primary converter: ``markdownify`` over the full document body after
BeautifulSoup has removed scripts, styles, embeds and page chrome.
Secondary: ``trafilatura`` markdown extraction, used when the body
conversion produced no text (e.g. pages whose content sits entirely inside
stripped elements).
"""

from __future__ import annotations

import logging
import re

import trafilatura
from bs4 import BeautifulSoup, Tag
from markdownify import MarkdownConverter

from url2mda.extractors.config import STRIP_TAGS

logger = logging.getLogger(__name__)

_LANGUAGE_PREFIXES = ("language-", "lang-")


class PageConverter(MarkdownConverter):
    """markdownify converter tuned for documentation-style pages."""

    def convert_pre(self, el, text, *args, **kwargs):
        """Fenced code block, language taken from a ``language-*`` class."""
        code = el.find("code")
        lang = ""
        for node in (code, el):
            if node is None:
                continue
            for cls in node.get("class", []):
                if cls.startswith(_LANGUAGE_PREFIXES):
                    lang = cls.split("-", 1)[1]
                    break
            if lang:
                break
        body = (code.get_text() if code is not None else el.get_text()).strip("\n")
        if not body.strip():
            return ""
        return f"\n\n```{lang}\n{body}\n```\n\n"

    def convert_img(self, el, text, *args, **kwargs):
        src = el.get("src", "")
        if not src or src.startswith("data:"):
            return ""
        alt = el.get("alt", "") or ""
        return f"![{alt}]({src})"

    def convert_details(self, el, text, *args, **kwargs):
        return f"\n\n{text}\n\n"

    def convert_summary(self, el, text, *args, **kwargs):
        title = (text or "").strip()
        return f"\n\n### {title}\n\n" if title else ""


_CONVERTER = PageConverter(heading_style="ATX", bullets="-", escape_underscores=False)


def _postprocess_markdown(markdown: str) -> str:
    lines = [line.rstrip() for line in markdown.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clean_body(html: str) -> Tag | None:
    """Parse *html* and return its ``<body>`` with non-content elements removed."""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(list(STRIP_TAGS)):
        tag.decompose()
    return soup.body


def body_to_markdown(html: str) -> str:
    """Convert the cleaned document body to markdown; empty string if it has no text."""
    body = clean_body(html)
    if body is None or not body.get_text(strip=True):
        return ""
    return _postprocess_markdown(_CONVERTER.convert_soup(body))


def structured_markdown(html: str, url: str) -> str:
    """Main-content markdown via trafilatura; empty string when nothing was found."""
    try:
        result = trafilatura.extract(
            html,
            url=url,
            output_format="markdown",
            include_links=True,
            include_images=True,
            include_tables=True,
            favor_recall=True,
        )
    except Exception as exc:  # noqa: BLE001
        logger.warning("content: trafilatura extraction failed for %s: %s", url, exc)
        return ""
    return _postprocess_markdown(result) if result else ""


def html_to_markdown(html: str, url: str) -> str:
    """Run the conversion chain and return the first non-empty markdown.

    Args:
        html: Rendered page source.
        url: Page URL (used by trafilatura for heuristics).

    Returns:
        Markdown text, or an empty string when neither converter found any
        content.
    """
    try:
        markdown = body_to_markdown(html)
    except Exception as exc:  # noqa: BLE001
        logger.warning("content: body conversion failed for %s: %s", url, exc)
        markdown = ""
    if markdown:
        return markdown
    logger.debug("content: body conversion empty for %s, trying trafilatura", url)
    return structured_markdown(html, url)
