"""Humanizing passes applied to mission output before dispatch.

Structured JSON summaries and web-search-shaped objects are rendered as prose
with bullets; everything ends with a single normalized ``Sources:`` line.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

from services.output.sources import (
    collect_source_urls_from_context,
    format_source_buttons,
    normalize_source_presentation,
    unique_source_urls,
)
from services.text import (
    clean_text,
    extract_fact_sentences,
    extract_urls_from_text,
    normalize_snippet_text,
    normalize_source_snippet,
    parse_json_object,
)

_DETAIL = {
    # level: (max sources, snippet limit, answer limit, fact lines)
    "concise": (2, 120, 220, 1),
    "standard": (3, 170, 320, 2),
    "detailed": (4, 240, 500, 3),
}


def _detail(level: Optional[str]):
    return _DETAIL.get(level or "standard", _DETAIL["standard"])


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def format_structured_output(raw: str) -> str:
    """Render ``{summary, credibleSourceCount, bullets, sources}`` JSON as text."""
    text = str(raw or "").strip()
    if not text:
        return text
    parsed = parse_json_object(text)
    if not parsed:
        return text

    summary = clean_text(parsed["summary"]) if isinstance(parsed.get("summary"), str) else ""
    credible = _to_number(parsed.get("credibleSourceCount"))
    bullets = []
    if isinstance(parsed.get("bullets"), list):
        bullets = [clean_text(item) for item in parsed["bullets"] if clean_text(item)]
    sources: List[str] = []
    if isinstance(parsed.get("sources"), list):
        candidates = []
        for item in parsed["sources"]:
            if isinstance(item, str):
                candidates.extend(extract_urls_from_text(item))
            elif isinstance(item, dict):
                candidates.extend(extract_urls_from_text(item.get("url")))
        sources = unique_source_urls(candidates, 2)

    if not summary and not bullets and not sources and credible is None:
        return text

    lines: List[str] = []
    if summary:
        lines.append(summary)
    if credible is not None:
        count = int(credible) if credible.is_integer() else credible
        lines.append(f"{count} credible source{'' if count == 1 else 's'} found.")
    if bullets:
        if lines:
            lines.append("")
        lines.extend(f"- {bullet}" for bullet in bullets[:12])
    if sources:
        lines.append("")
        lines.append(f"Sources: {format_source_buttons(sources)}")
    return "\n".join(lines).strip() or text


def _heading_for(title: str, url: str) -> str:
    if title:
        return title
    if url:
        host = urlsplit(url).hostname
        if host:
            return host
    return "Source"


def format_web_search_object_output(
    obj: Dict[str, Any],
    include_sources: bool = True,
    detail_level: str = "standard",
) -> Optional[str]:
    """Render a web-search result object as fact bullets, or None if it has no results."""
    payload = obj.get("payload") if isinstance(obj.get("payload"), dict) else None
    direct = obj.get("results") if isinstance(obj.get("results"), list) else []
    nested = payload.get("results") if payload and isinstance(payload.get("results"), list) else []
    results = [row for row in (direct or nested) if isinstance(row, dict)]
    if not results:
        return None

    max_sources, snippet_limit, answer_limit, fact_count = _detail(detail_level)
    answer = normalize_snippet_text(obj.get("answer") or (payload or {}).get("answer") or "", answer_limit)
    lines: List[str] = [answer] if answer else []

    bullets = []
    for row in results[:max_sources]:
        title = clean_text(row.get("title") or row.get("pageTitle") or "")
        url = clean_text(row.get("url") or "")
        page_text = str(row.get("pageText") or row.get("content") or "")
        raw_snippet = str(row.get("snippet") or "")
        facts = extract_fact_sentences(page_text or raw_snippet, fact_count)
        snippet = normalize_snippet_text(normalize_source_snippet(title, raw_snippet or page_text), snippet_limit)
        if not title and not snippet and not facts:
            continue
        description = " ".join(facts) if facts else snippet
        bullets.append((f"- {description}" if description else f"- {_heading_for(title, url)}", url))

    if not bullets:
        return None
    if lines:
        lines.append("")
    for index, (bullet, _) in enumerate(bullets):
        lines.append(bullet)
        if index < len(bullets) - 1:
            lines.append("")

    urls = unique_source_urls([url for _, url in bullets if url], 2)
    if include_sources and urls:
        lines.append("")
        lines.append(f"Sources: {format_source_buttons(urls)}")
    return "\n".join(lines).strip() or None


def humanize_output_text(
    raw: str,
    context: Any = None,
    include_sources: bool = True,
    detail_level: str = "standard",
) -> str:
    text = str(raw or "").strip()
    formatted = format_structured_output(text)
    context_urls = collect_source_urls_from_context(context)

    parsed = parse_json_object(formatted)
    if parsed:
        web = format_web_search_object_output(parsed, include_sources, detail_level)
        if web:
            return normalize_source_presentation(web, context_urls, include_sources)

    if isinstance(context, dict) and str(context.get("mode") or "") == "web-search":
        from_context = format_web_search_object_output(context, include_sources, detail_level)
        if from_context:
            return normalize_source_presentation(from_context, context_urls, include_sources)

    return normalize_source_presentation(formatted or text, context_urls, include_sources)
