"""HTTP node handlers - HTTP Request and RSS Feed."""

import html
import json
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from core.logging import get_logger
from models.nodes import BaseNode
from services.execution.models import ExecutionContext, NodeOutput
from services.fetchers import HttpFetcher

logger = get_logger(__name__)

DEFAULT_RSS_ITEMS = 20

CDATA_PATTERN = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.S)


async def handle_http_request(node: BaseNode, ctx: ExecutionContext, *, fetcher: HttpFetcher) -> NodeOutput:
    """Make an outbound request. Error bodies never flow downstream."""
    url = ctx.resolve_expr(getattr(node, "url", ""))
    if not url.strip():
        return NodeOutput.failure("HTTP request URL is empty.")

    try:
        headers = {"Content-Type": "application/json", **(getattr(node, "headers", None) or {})}
        token = getattr(node, "auth_token", None)
        if getattr(node, "authentication", None) == "bearer" and token:
            headers["Authorization"] = f"Bearer {ctx.resolve_expr(token)}"

        method = str(getattr(node, "method", None) or "GET").strip().upper()
        raw_body = getattr(node, "body", None)
        body = ctx.resolve_expr(raw_body) if raw_body else None

        logger.info("[HTTP Request] Executing", node_id=node.id, method=method, url=url)
        response = await fetcher.fetch(
            url.strip(),
            method=method,
            headers=headers,
            body=body if body and method != "GET" else None,
            max_bytes=ctx.settings.workflow_http_response_max_bytes,
            use_cache="Authorization" not in headers,
        )
    except Exception as e:
        logger.warning("[HTTP Request] Failed", node_id=node.id, url=url, error=str(e))
        return NodeOutput(ok=False, error=str(e), error_code="FETCH_ERROR")

    data: Any = response.text
    if getattr(node, "response_format", None) == "json":
        try:
            data = json.loads(response.text)
        except ValueError:
            data = response.text

    if not response.ok:
        return NodeOutput(ok=False, text="", error=f"HTTP {response.status}",
                          error_code=f"HTTP_{response.status}")
    text = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    return NodeOutput(ok=True, text=text, data=data)


def _item_field(item: Tag, tag: str) -> Optional[str]:
    element = item.find(tag)
    if element is None:
        return None
    text = element.get_text(" ", strip=True)
    sibling = element.next_sibling
    # html.parser treats <link> as void, leaving the URL as the following text node
    if tag == "link" and not text and isinstance(sibling, NavigableString):
        text = str(sibling).strip()
    if tag == "title":
        # newer html.parser reads <title> as raw text and leaves its entities encoded
        text = html.unescape(text)
    return text or None


def _strip_markup(text: Optional[str]) -> Optional[str]:
    if not text or "<" not in text:
        return text
    return BeautifulSoup(text, "html.parser").get_text(" ", strip=True) or None


def parse_rss_items(xml: str, max_items: int) -> List[Dict[str, Optional[str]]]:
    """Decode the first ``max_items`` RSS items into plain-text fields."""
    if max_items <= 0:
        return []
    escaped = CDATA_PATTERN.sub(lambda m: html.escape(m.group(1), quote=False), xml)
    soup = BeautifulSoup(escaped, "html.parser")
    return [
        {
            "title": _item_field(item, "title"),
            "description": _strip_markup(_item_field(item, "description")),
            "link": _item_field(item, "link"),
            "pubDate": _item_field(item, "pubdate"),
        }
        for item in soup.find_all("item", limit=max_items)
    ]


def _matches_keywords(item: Dict[str, Optional[str]], keywords: List[str]) -> bool:
    title = (item.get("title") or "").lower()
    description = (item.get("description") or "").lower()
    return any(kw.lower() in title or kw.lower() in description for kw in keywords)


async def handle_rss_feed(node: BaseNode, ctx: ExecutionContext, *, fetcher: HttpFetcher) -> NodeOutput:
    url = ctx.resolve_expr(getattr(node, "url", ""))
    if not url.strip():
        return NodeOutput.failure("RSS feed URL is empty.")

    try:
        response = await fetcher.fetch(
            url.strip(),
            max_bytes=ctx.settings.workflow_rss_response_max_bytes,
            use_cache=True,
        )
        if not response.ok:
            return NodeOutput.failure(f"HTTP {response.status}")

        max_items = getattr(node, "max_items", None)
        items = parse_rss_items(response.text, DEFAULT_RSS_ITEMS if max_items is None else max_items)
        keywords = [kw for kw in (getattr(node, "filter_keywords", None) or []) if kw]
        if keywords:
            items = [item for item in items if _matches_keywords(item, keywords)]
    except Exception as e:
        logger.warning("[RSS Feed] Failed", node_id=node.id, url=url, error=str(e))
        return NodeOutput.failure(str(e))

    text = "\n\n".join(f"{item.get('title')}\n{item.get('description') or ''}" for item in items)
    return NodeOutput(ok=True, text=text, data={"items": items}, items=items)
