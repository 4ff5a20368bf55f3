"""Extraction rules for the deterministic briefing: final scores and quotes."""

import re
from typing import Any, List, Optional, Tuple

_TEAM = r"(?<![A-Za-z0-9])([A-Z0-9][A-Za-z0-9.'\- ]{1,29})"

SCORE_HYPHEN = re.compile(
    rf"{_TEAM}\s+(\d{{2,3}})\s*[-]\s*(\d{{2,3}})\s+{_TEAM}(?:\s*\(?\b(?:final|ot|2ot|3ot)\b\)?)?", re.I)
SCORE_CSV = re.compile(rf"{_TEAM}\s+(\d{{2,3}})\s*,\s*{_TEAM}\s+(\d{{2,3}})(?:\s*\bfinal\b)?", re.I)
SCORE_SPACED = re.compile(rf"{_TEAM}\s+(\d{{2,3}})\s+{_TEAM}\s+(\d{{2,3}})(?:\s*\bfinal\b)?", re.I)

MIN_SCORE = 70
MAX_SCORE = 180

QUOTE_PATTERNS = [
    re.compile(r'["“]([^"”\n]{20,240})["”]\s*[-—]\s*([A-Za-z][A-Za-z .\'\-]{1,80})'),
    re.compile(r'["“]([^"”\n]{20,240})["”]\s*\(([^)\n]{2,80})\)'),
]

_LISTICLE = re.compile(r'\b(top\s+\d+|best\s+\d+|quotes?\s+for|listicle|headlines?|read more)\b')
_WEAK_SOURCE_WORDS = re.compile(r'\b(article|blog)\b')
_QUOTE_MARKS = re.compile('["“”‘’\']')
_TRAILING_NOISE = re.compile(r'\b(read more|continue reading|live updates|play-by-play)\b.*$', re.I)
_QUALIFIERS = re.compile(r'\b(final|ot|2ot|3ot|f/ot)\b', re.I)


def normalize_whitespace(value: Any) -> str:
    text = str(value or "").replace("\r", "")
    text = re.sub(r'[ \t]+', " ", text)
    return re.sub(r'\n{3,}', "\n\n", text).strip()


def clean_line(value: Any) -> str:
    text = re.sub(r'\s+[|]\s+.*', "", normalize_whitespace(value))
    return _TRAILING_NOISE.sub("", text).strip()


def _output_fields(output: Any) -> Tuple[Any, str]:
    if isinstance(output, str):
        return None, output
    return getattr(output, "data", None), getattr(output, "text", None) or ""


def candidate_texts(output: Any) -> List[str]:
    """Result titles, snippets and page text first, then the raw output text."""
    data, raw_text = _output_fields(output)
    texts: List[str] = []
    if isinstance(data, dict) and isinstance(data.get("results"), list):
        for row in data["results"]:
            if not isinstance(row, dict):
                continue
            title = clean_line(row.get("title"))
            snippet = clean_line(row.get("snippet"))
            page_text = normalize_whitespace(row.get("pageText"))
            if title:
                texts.append(title)
            if snippet:
                texts.append(snippet)
            if page_text and page_text != snippet:
                texts.append(page_text)
    raw = normalize_whitespace(raw_text)
    if raw:
        texts.append(raw)
    return texts


def normalize_team_name(value: str) -> str:
    text = _QUALIFIERS.sub("", clean_line(value))
    return re.sub(r'\s{2,}', " ", text).strip()


def _render(team_a: str, a: str, b: str, team_b: str) -> Optional[str]:
    team_a, team_b = normalize_team_name(team_a), normalize_team_name(team_b)
    score_a, score_b = int(a), int(b)
    if not (MIN_SCORE <= score_a <= MAX_SCORE and MIN_SCORE <= score_b <= MAX_SCORE):
        return None
    if not team_a or not team_b:
        return None
    return f"{team_a} {score_a} - {score_b} {team_b}"


def parse_score_line(line: str) -> Optional[str]:
    cleaned = clean_line(line)
    if not cleaned:
        return None

    match = SCORE_HYPHEN.search(cleaned)
    if match:
        rendered = _render(match.group(1), match.group(2), match.group(3), match.group(4))
        if rendered:
            return rendered

    for pattern in (SCORE_CSV, SCORE_SPACED):
        match = pattern.search(cleaned)
        if match:
            rendered = _render(match.group(1), match.group(2), match.group(4), match.group(3))
            if rendered:
                return rendered
    return None


def extract_nba_final_scores(output: Any, max_games: int = 3) -> List[str]:
    """Final-score lines from a node output (or plain text), deduplicated."""
    lines: List[str] = []
    for chunk in candidate_texts(output):
        lines.extend(row.strip() for row in re.split(r'\n|[|]|•', chunk) if row.strip())

    scores: List[str] = []
    for line in lines:
        score = parse_score_line(line)
        if not score or score in scores:
            continue
        scores.append(score)
        if len(scores) >= max(1, max_games):
            break
    return scores


def is_likely_headline_or_listicle(text: str) -> bool:
    normalized = str(text or "").lower()
    if not normalized:
        return True
    if re.search(r'https?://', normalized):
        return True
    if _LISTICLE.search(normalized):
        return True
    if _WEAK_SOURCE_WORDS.search(normalized) and not _QUOTE_MARKS.search(normalized):
        return True
    return False


def is_valid_inspirational_quote(quote: str, author: str) -> bool:
    q, a = clean_line(quote), clean_line(author)
    if not q or not a:
        return False
    if not 20 <= len(q) <= 240 or not 2 <= len(a) <= 80:
        return False
    if is_likely_headline_or_listicle(q) or is_likely_headline_or_listicle(a):
        return False
    return not re.match(r'^\d', a)


def extract_inspirational_quote(output: Any) -> Optional[Tuple[str, str]]:
    """First valid ``(quote, author)`` pair found in the output, or None."""
    for candidate in candidate_texts(output):
        compact = normalize_whitespace(candidate)
        for pattern in QUOTE_PATTERNS:
            match = pattern.search(compact)
            if not match:
                continue
            quote, author = clean_line(match.group(1)), clean_line(match.group(2))
            if is_valid_inspirational_quote(quote, author):
                return quote, author
    return None


def clamp_section_text(value: Any, max_chars: int) -> str:
    text = normalize_whitespace(value)
    if not text:
        return ""
    limit = max(40, int(max_chars))
    if len(text) <= limit:
        return text
    head = text[:limit - 1]
    if not text[limit - 1].isspace():
        # end on a word break; one overlong word is cut hard
        cut = max(head.rfind(" "), head.rfind("\n"))
        if cut >= limit // 2:
            head = head[:cut]
    return f"{head.rstrip()}…"
