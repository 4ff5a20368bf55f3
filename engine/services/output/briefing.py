"""Deterministic morning-briefing presenter and upstream text aggregation.

When a mission combines a price node with sports, quote or tech steps, the
briefing is assembled from node outputs without an LLM: one section per
topic, each with its own character budget, under a hard total budget.
"""

import math
import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from services.output.briefing_quality import (
    clamp_section_text,
    extract_inspirational_quote,
    extract_nba_final_scores,
)

SECTION_BUDGETS = {
    "nba": 680,
    "quote": 380,
    "crypto": 260,
    "tech": 560,
}
TOTAL_BUDGET = 3000
MIN_REMAINING = 40

EASTERN = ZoneInfo("America/New_York")

SPORTS_PATTERN = re.compile(r'\b(nba|basketball|sports)\b', re.I)
NBA_PATTERN = re.compile(r'\b(nba|basketball)\b', re.I)
QUOTE_PATTERN = re.compile(r'\b(quote|inspirational|motivational)\b', re.I)
TECH_PATTERN = re.compile(r'\b(tech|technology|ai news)\b', re.I)
WHY_PREFIX = re.compile(r'^\s*why it matters:\s*', re.I)
SENTENCE = re.compile(r'[^.!?]+[.!?]+')

Entry = Tuple[Any, Any]


def _is_edge_type(node_type: str) -> bool:
    return node_type.endswith("-trigger") or node_type.endswith("-output")


def includes_token(node: Any, pattern: "re.Pattern") -> bool:
    """Match the node label, or the query of a web-search node."""
    if pattern.search(str(getattr(node, "label", "") or "").strip()):
        return True
    if node.type == "web-search":
        return bool(pattern.search(str(getattr(node, "query", "") or "")))
    return False


def collect_entries(mission: Any, node_outputs: Dict[str, Any]) -> List[Entry]:
    """(node, output) pairs in mission order; failed nodes included, unrun nodes not."""
    entries = []
    for node in mission.nodes:
        output = node_outputs.get(node.id)
        if output is None or _is_edge_type(node.type):
            continue
        entries.append((node, output))
    return entries


def _pick(entries: List[Entry], match: Callable[[Any], bool]) -> Optional[Entry]:
    return next((entry for entry in entries if match(entry[0])), None)


def looks_like_morning_briefing(entries: List[Entry]) -> bool:
    if not entries:
        return False
    has_coinbase = any(node.type == "coinbase" for node, _ in entries)
    has_sports = any(includes_token(node, SPORTS_PATTERN) for node, _ in entries)
    has_quote = any(includes_token(node, QUOTE_PATTERN) for node, _ in entries)
    has_tech = any(includes_token(node, TECH_PATTERN) for node, _ in entries)
    matched = sum([has_coinbase, has_sports, has_quote, has_tech])
    return matched >= 2 and (has_sports or has_quote or has_tech)


def format_usd(value: Any) -> str:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return "unavailable"
    if not math.isfinite(number):
        return "unavailable"
    sign = "-" if number < 0 else ""
    magnitude = abs(number)
    if magnitude >= 100:
        return f"{sign}${magnitude:,.2f}"
    digits = f"{magnitude:,.4f}".rstrip("0")
    whole, _, fraction = digits.partition(".")
    return f"{sign}${whole}.{fraction.ljust(2, '0')}"


def format_eastern_time(iso: Any) -> str:
    text = str(iso or "").strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return "unavailable"
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo("UTC"))
    local = parsed.astimezone(EASTERN)
    hour = local.hour % 12 or 12
    return f"{local:%b} {local.day}, {hour}:{local:%M} {local:%p}"


def extract_coinbase_prices(output: Any) -> Dict[str, str]:
    data = output.data if isinstance(output.data, dict) else {}
    by_asset: Dict[str, Dict[str, Any]] = {}
    for row in data.get("prices") or []:
        if not isinstance(row, dict):
            continue
        asset = str(row.get("baseAsset") or row.get("asset") or row.get("symbol") or "").strip().upper()
        if asset:
            by_asset[asset] = row
    return {
        "eth": format_usd(by_asset["ETH"].get("price")) if "ETH" in by_asset else "unavailable",
        "sui": format_usd(by_asset["SUI"].get("price")) if "SUI" in by_asset else "unavailable",
        "checked": format_eastern_time(data.get("checkedAtIso")),
    }


def extract_tech_story(output: Any) -> Tuple[str, str]:
    """Headline plus at most two sentences of context, preferring page text."""
    data = output.data if isinstance(output.data, dict) else {}
    results = data.get("results") if isinstance(data.get("results"), list) else []
    if results and isinstance(results[0], dict):
        first = results[0]
        headline = str(first.get("title") or "").strip()
        if headline:
            page_text = str(first.get("pageText") or "").strip()
            snippet = str(first.get("snippet") or "").strip()
            raw_why = WHY_PREFIX.sub("", page_text if len(page_text) > len(snippet) else snippet)
            sentences = SENTENCE.findall(raw_why)
            why = " ".join(sentences[:2]).strip() or raw_why[:200].strip()
            return headline, why

    lines = [row.strip() for row in re.split(r'\r?\n', str(output.text or "").strip()) if row.strip()]
    headline = lines[0] if lines else ""
    why = WHY_PREFIX.sub("", lines[1]) if len(lines) > 1 else ""
    return headline, why


def render_nba_section(entry: Optional[Entry]) -> str:
    header = "**NBA RECAP**"
    scores = extract_nba_final_scores(entry[1], 3) if entry else []
    if not scores:
        return f"{header}\nNo clean final NBA scores available from current sources."
    body = "\n".join(f"- {row}" for row in scores)
    return clamp_section_text(f"{header}\n{body}", SECTION_BUDGETS["nba"])


def render_quote_section(entry: Optional[Entry]) -> str:
    header = "**INSPIRATIONAL QUOTE**"
    quote = extract_inspirational_quote(entry[1]) if entry else None
    if not quote:
        return f"{header}\nNo verified inspirational quote available from current sources."
    return clamp_section_text(f'{header}\n"{quote[0]}" - {quote[1]}', SECTION_BUDGETS["quote"])


def render_crypto_section(entry: Optional[Entry]) -> str:
    header = "**CRYPTO PRICES (USD)**"
    if not entry:
        return f"{header}\nETH: unavailable | SUI: unavailable"
    prices = extract_coinbase_prices(entry[1])
    body = f"ETH: {prices['eth']} | SUI: {prices['sui']}\nUpdated: {prices['checked']} ET"
    return clamp_section_text(f"{header}\n{body}", SECTION_BUDGETS["crypto"])


def render_tech_section(entry: Optional[Entry]) -> str:
    header = "**TOP TECH STORY**"
    headline, why = extract_tech_story(entry[1]) if entry else ("", "")
    if not headline:
        return f"{header}\nNo top tech story available from current sources."
    lines = [f"Headline: {headline}"]
    if why:
        lines.append(f"Why it matters: {why}")
    return clamp_section_text(f"{header}\n" + "\n".join(lines), SECTION_BUDGETS["tech"])


def with_total_budget(sections: List[str], budget: int = TOTAL_BUDGET) -> List[str]:
    """Keep sections in order; clamp the first one that overflows, then stop."""
    kept: List[str] = []
    used = 0
    for section in sections:
        block = str(section or "").strip()
        if not block:
            continue
        if used + len(block) + 2 <= budget:
            kept.append(block)
            used += len(block) + 2
            continue
        remaining = budget - used - 2
        if remaining > MIN_REMAINING:
            kept.append(clamp_section_text(block, remaining))
        break
    return kept


def build_morning_briefing(mission: Any, node_outputs: Dict[str, Any]) -> Optional[str]:
    """Briefing text, or None when the mission does not look like a briefing."""
    if mission is None:
        return None
    entries = collect_entries(mission, node_outputs)
    if not looks_like_morning_briefing(entries):
        return None

    sections = with_total_budget([
        render_nba_section(_pick(entries, lambda n: includes_token(n, NBA_PATTERN))),
        render_quote_section(_pick(entries, lambda n: includes_token(n, QUOTE_PATTERN))),
        render_crypto_section(_pick(entries, lambda n: n.type == "coinbase")),
        render_tech_section(_pick(entries, lambda n: includes_token(n, TECH_PATTERN))),
    ])
    return "\n\n".join(sections).strip()


def aggregate_upstream_node_text(
    mission: Any,
    node_outputs: Dict[str, Any],
    max_chars: int = 12000,
    per_node_max_chars: int = 480,
) -> str:
    """``[Label]`` blocks of successful data/AI/logic node text."""
    max_chars = max(200, int(max_chars))
    per_node = max(80, int(per_node_max_chars))
    if mission is None:
        texts = [clamp_section_text(str(o.text or "").strip(), per_node) for o in node_outputs.values()]
        return "\n\n".join(t for t in texts if t)[:max_chars]

    blocks = []
    for node in mission.nodes:
        output = node_outputs.get(node.id)
        if output is None or not output.ok or _is_edge_type(node.type):
            continue
        text = str(output.text or "").strip()
        if text:
            blocks.append(f"[{node.label or node.type}]\n{clamp_section_text(text, per_node)}")
    return "\n\n".join(blocks).strip()[:max_chars]
