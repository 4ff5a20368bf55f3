"""Source URL collection and ``Sources:`` line presentation."""

import re
from typing import Any, Iterable, List
from urllib.parse import urlsplit

from services.text import extract_urls_from_text

SOURCES_LINE = re.compile(r'^\s*sources:\s*(.*)$', re.I)
MARKDOWN_LINK = re.compile(r'\[[^\]]*\]\((https?://[^)\s]+)\)', re.I)

_URL_KEYS = ("url", "link", "sourceUrl", "finalUrl")
_MAX_DEPTH = 6


def _url_key(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}{parts.path.rstrip('/')}?{parts.query}"


def unique_source_urls(urls: Iterable[Any], limit: int = 3) -> List[str]:
    """Dedupe http(s) URLs, ignoring case of host and trailing slashes."""
    seen = set()
    unique: List[str] = []
    for raw in urls:
        url = str(raw or "").strip()
        if not url.lower().startswith(("http://", "https://")):
            continue
        key = _url_key(url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(url)
        if len(unique) >= max(1, limit):
            break
    return unique


def source_label(url: str) -> str:
    host = urlsplit(url).hostname or "source"
    return host[4:] if host.startswith("www.") else host


def format_source_buttons(urls: Iterable[str]) -> str:
    return " ".join(f"[{source_label(url)}]({url})" for url in urls)


def collect_source_urls_from_context(context: Any) -> List[str]:
    """Walk evidence data and collect URL-valued fields, in order."""
    urls: List[str] = []

    def walk(value: Any, depth: int) -> None:
        if depth > _MAX_DEPTH:
            return
        if isinstance(value, dict):
            for key in _URL_KEYS:
                candidate = value.get(key)
                if isinstance(candidate, str):
                    urls.extend(extract_urls_from_text(candidate))
            for child in value.values():
                if isinstance(child, (dict, list)):
                    walk(child, depth + 1)
        elif isinstance(value, list):
            for child in value:
                walk(child, depth + 1)

    walk(context, 0)
    return unique_source_urls(urls, limit=50)


def _urls_in_line(text: str) -> List[str]:
    linked = MARKDOWN_LINK.findall(text)
    return linked or extract_urls_from_text(text)


def normalize_source_presentation(text: str, context_urls: List[str], include_sources: bool = True) -> str:
    """Collapse every ``Sources:`` line into one trailing line.

    The merged line keeps at most three unique URLs. With ``include_sources``
    off, all ``Sources:`` lines are removed.
    """
    body: List[str] = []
    found: List[str] = []
    has_sources_line = False
    for line in str(text or "").split("\n"):
        match = SOURCES_LINE.match(line)
        if match:
            has_sources_line = True
            found.extend(_urls_in_line(match.group(1)))
            continue
        body.append(line)

    if not has_sources_line:
        return str(text or "").strip()
    cleaned = re.sub(r'\n{3,}', "\n\n", "\n".join(body)).strip()
    urls = unique_source_urls(found or context_urls, 3)
    if not include_sources or not urls:
        return cleaned
    return f"{cleaned}\n\nSources: {format_source_buttons(urls)}".strip()
