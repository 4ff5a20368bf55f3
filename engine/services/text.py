"""Text cleaning, truncation and fact-sentence extraction helpers.

Used by the AI executors (model input truncation), the output formatters and
the quality guardrail (evidence sentences).
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

_WHITESPACE = re.compile(r'\s+')

_NAVIGATION_NOISE = [
    (re.compile(r'\b(skip navigation|navigation toggle|all-star home|home tickets|open menu|close menu|'
                r'sign in to continue|submit search)\b', re.I), " "),
    (re.compile(r'\b(news|scores|highlights|stats|standings|rumors)\b\s*(\||-)\s*'
                r'\b(bleacher report|nbc sports|nba)\b', re.I), " "),
    (re.compile(r'\b(mlb|nfl|nhl|ncaa|premier league|horse racing|nascar)\b', re.I), " "),
    (re.compile(r'\s{2,}'), " "),
]

_SCRAPE_NOISE = [
    # photo and image credits
    (re.compile(r'\b(Image|Photo|Video|Credit)s?:?\s*[A-Za-z0-9\s,./]+(?:Getty|Reuters|AP|AFP|Images?|Photos?)\b', re.I), ""),
    (re.compile(r'By\s+Credit[A-Za-z\s]+', re.I), ""),
    (re.compile(r'\(Getty Images?\)', re.I), ""),
    (re.compile(r'\(Reuters\)', re.I), ""),
    (re.compile(r'\(AP Photo[^)]*\)', re.I), ""),
    # call-to-action links
    (re.compile(r'\bRead (more|full story|article)\b[→\s]*', re.I), ""),
    (re.compile(r'\bContinue reading\b[→\s]*', re.I), ""),
    (re.compile(r'\bSee (more|also)\b[→\s]*', re.I), ""),
    (re.compile(r'\bLearn more\b[→\s]*', re.I), ""),
    (re.compile(r'\bClick here\b[→\s]*', re.I), ""),
    # standalone timestamps and broken dates
    (re.compile(r'^\s*(\d{1,2}\s*(hours?|minutes?|days?)\s*ago|Today|Yesterday)\s*$', re.I | re.M), ""),
    (re.compile(r'^\s*\d{1,2},\s*\d{4}\s*', re.M), ""),
    # navigation, sharing and newsletter prompts
    (re.compile(r'\b(Home|About|Contact|Subscribe|Sign up|Log in|Menu)\s*[|>→]', re.I), ""),
    (re.compile(r'\b(Share|Tweet|Pin|Email) (this|on|via)\b[^.]*\.?', re.I), ""),
    (re.compile(r'\b(Subscribe to|Sign up for|Get) (our|the)? ?newsletter\b[^.]*\.?', re.I), ""),
    # concatenated table and ticker data
    (re.compile(r'[\d,]+\.?\d*[-+]?\d+\.?\d*%[-+]?\d+\.?\d*%'), ""),
    (re.compile(r'\d{1,3}(,\d{3})*[-+]\d+\.\d+%[-+]?\d+\.\d+%'), ""),
    (re.compile(r'\b[A-Z]{1,5}\d+\.?\d*[+-]\d+\.?\d*%'), ""),
    (re.compile(r'\b(YTD|MTD|QTD|1Y|5Y|10Y)[A-Z][a-z]+'), " "),
    # split glued words and numbers
    (re.compile(r'([a-zA-Z])(\d{1,3}(?:,\d{3})+)'), r"\1 \2"),
    (re.compile(r'(\d)([A-Z][a-z])'), r"\1 \2"),
    (re.compile(r'([a-z])([A-Z])'), r"\1. \2"),
    (re.compile(r'(\.)([A-Z])'), r"\1 \2"),
    (re.compile(r'\.{2,}'), "."),
    (re.compile(r'\s*\.\s*\.'), "."),
    (_WHITESPACE, " "),
]

CODE_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*([\s\S]*?)\s*```$', re.I)
URL_PATTERN = re.compile(r'https?://[^\s)]+', re.I)


def clean_text(text: Any) -> str:
    """Collapse all whitespace runs to single spaces."""
    return _WHITESPACE.sub(" ", str(text or "")).strip()


def strip_navigation_noise(value: Any) -> str:
    text = str(value or "")
    for pattern, replacement in _NAVIGATION_NOISE:
        text = pattern.sub(replacement, text)
    return clean_text(text)


def clean_scraped_text(text: Any) -> str:
    """Aggressively clean scraped web text before fact extraction."""
    value = str(text or "")
    if not value:
        return ""
    for pattern, replacement in _SCRAPE_NOISE:
        value = pattern.sub(replacement, value)
    return value.strip()


def is_raw_table_data(text: str) -> bool:
    """True when text looks like spreadsheet or ticker junk rather than prose."""
    if not text or len(text) < 20:
        return False
    cleaned = text.strip()
    word_count = len(cleaned.split())
    if cleaned.count("%") > word_count * 0.3:
        return True
    if len(re.findall(r'\d{1,3}(?:,\d{3})*[-+]\d', cleaned)) > 3:
        return True
    if len(re.findall(r'\b[A-Z]{2,5}\d', cleaned)) > 3:
        return True
    numbers = re.findall(r'\d+', cleaned)
    letters = re.findall(r'[a-zA-Z]+', cleaned)
    return len(numbers) > len(letters) * 2


def strip_code_fences(raw: str) -> str:
    text = str(raw or "").strip()
    match = CODE_FENCE_PATTERN.match(text)
    return match.group(1).strip() if match else text


def parse_json_object(raw: Any) -> Optional[Dict[str, Any]]:
    """Parse the outermost ``{...}`` object in ``raw`` (code fences allowed)."""
    cleaned = strip_code_fences(str(raw or ""))
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        parsed = json.loads(cleaned[start:end + 1])
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def normalize_source_snippet(title: Any, snippet: Any) -> str:
    """Drop a repeated title prefix from a search snippet."""
    normalized_title = clean_text(title)
    normalized_snippet = strip_navigation_noise(snippet)
    if not normalized_snippet:
        return ""
    if not normalized_title:
        return normalized_snippet
    if normalized_snippet.lower().startswith(normalized_title.lower()):
        return clean_text(normalized_snippet[len(normalized_title):])
    return normalized_snippet


def truncate_at_word_boundary(value: Any, limit: int) -> str:
    text = clean_text(value)
    if not text or len(text) <= limit:
        return text
    soft_slice = text[:max(limit + 1, 1)]
    cut = max(
        soft_slice.rfind(". "),
        soft_slice.rfind("; "),
        soft_slice.rfind(", "),
        soft_slice.rfind(" "),
    )
    if cut < limit * 6 // 10:
        cut = limit
    return f"{soft_slice[:cut].strip()}..."


def normalize_snippet_text(value: Any, limit: int = 220) -> str:
    text = str(value or "").replace("|", " ")
    text = re.sub(r'\s{2,}', " ", text)
    text = re.sub(r'\[\s*\.\.\.\s*\]', " ", text).strip()
    cleaned = clean_text(text)
    if not cleaned:
        return ""
    return truncate_at_word_boundary(cleaned, limit)


def truncate_for_model(text: Any, limit: int = 8000) -> str:
    normalized = clean_text(text)
    if len(normalized) <= limit:
        return normalized
    return f"{normalized[:limit]}..."


def extract_urls_from_text(value: Any) -> List[str]:
    urls = []
    for raw in URL_PATTERN.findall(str(value or "")):
        url = re.sub(r'[),.;]+$', "", raw.strip())
        if url:
            urls.append(url)
    return urls


# =============================================================================
# FACT SENTENCES
# =============================================================================

@dataclass
class ExtractedFact:
    sentence: str
    relevance: float
    kind: str = "general"


_STATISTIC = re.compile(r'\d+%|\$[\d,.]+|\d+\s*(million|billion|thousand|percent)', re.I)
_QUANTITY = re.compile(r'\b\d{1,3}[,.]?\d*\s*(points?|goals?|votes?|users?|downloads?|sales?|units?)', re.I)
_YEAR_CONTEXT = re.compile(r'\b(in|since|by|from)\s+\d{4}\b', re.I)
_QUOTED = re.compile(r'["“”].*["“”]')
_ATTRIBUTED = re.compile(r'\bsaid\b|\baccording to\b|\bstated\b|\bannounced\b', re.I)

_EVENT_PATTERNS = [
    re.compile(r'\b(announced|launched|released|unveiled|introduced|acquired|merged|filed|reported)\b', re.I),
    re.compile(r'\b(signed|appointed|resigned|fired|hired|promoted)\b', re.I),
    re.compile(r'\b(won|lost|beat|defeated|advanced|qualified|eliminated)\b', re.I),
    re.compile(r'\b(discovered|invented|developed|created|built|designed)\b', re.I),
    re.compile(r'\b(passed|enacted|signed into law|approved|rejected|vetoed)\b', re.I),
]

_CLAIM_PATTERNS = [
    re.compile(r'\b(found that|study shows|research indicates|data suggests|evidence shows)\b', re.I),
    re.compile(r'\b(is expected to|is projected to|will likely|may|could|should)\b', re.I),
    re.compile(r'\b(the first|the largest|the most|record-breaking|unprecedented)\b', re.I),
    re.compile(r'\b(increased|decreased|grew|fell|rose|dropped|surged|plunged)\s+by?\s+\d', re.I),
]

_DEFINITION = re.compile(r'\b(is defined as|refers to|means that|is known as|is called)\b', re.I)
_CAPITALIZED = re.compile(r'\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)*')

_LOW_SIGNAL_SENTENCE = [
    re.compile(r'\b(click here|read more|subscribe|sign up|follow us|share this)\b', re.I),
    re.compile(r'\b(read full story|view article|continue reading|see more|learn more)\b', re.I),
    re.compile(r'\b(cookie|privacy policy|terms of service|copyright)\b', re.I),
    re.compile(r'\b(menu|navigation|sidebar|footer|header|banner)\b', re.I),
    re.compile(r'^\s*(home|about|contact|search|login|register)\s*$', re.I),
    re.compile(r'\b(loading|please wait|javascript required)\b', re.I),
    re.compile(r'^(explore|discover|browse)\s+(the\s+)?(latest|our|more)', re.I),
    re.compile(r'\bwith\s+(reuters|ap|cnn|bbc|nyt)\b.*\bfrom\b', re.I),
]


def score_sentence(sentence: str) -> ExtractedFact:
    """Heuristic importance score in [0, 1]."""
    score = 0.3
    kind = "general"

    if _STATISTIC.search(sentence):
        score += 0.35
        kind = "statistic"
    elif _QUANTITY.search(sentence):
        score += 0.3
        kind = "statistic"
    elif _YEAR_CONTEXT.search(sentence):
        score += 0.15

    if _QUOTED.search(sentence) or _ATTRIBUTED.search(sentence):
        score += 0.25
        if kind == "general":
            kind = "quote"

    if any(p.search(sentence) for p in _EVENT_PATTERNS):
        score += 0.2
        if kind == "general":
            kind = "event"

    if any(p.search(sentence) for p in _CLAIM_PATTERNS):
        score += 0.15
        if kind == "general":
            kind = "claim"

    if _DEFINITION.search(sentence):
        score += 0.15
        if kind == "general":
            kind = "definition"

    score += min(len(_CAPITALIZED.findall(sentence[1:])) * 0.05, 0.15)

    if any(p.search(sentence) for p in _LOW_SIGNAL_SENTENCE):
        score -= 0.4

    if len(sentence) < 50:
        score -= 0.1
    if sentence.endswith("?") and "said" not in sentence:
        score -= 0.15

    return ExtractedFact(sentence=sentence, relevance=max(0.0, min(1.0, score)), kind=kind)


def split_into_sentences(text: str) -> List[str]:
    marked = re.sub(r'([.!?])\s+', r"\1\n", text)
    return [s.strip() for s in marked.split("\n") if s.strip()]


def extract_important_facts(text: Any, limit: int = 5) -> List[ExtractedFact]:
    if not text or not isinstance(text, str):
        return []
    scored = []
    for sentence in split_into_sentences(clean_text(text)):
        if len(sentence) < 30 or len(sentence) > 400:
            continue
        fact = score_sentence(sentence)
        if fact.relevance >= 0.3:
            fact.sentence = truncate_at_word_boundary(sentence, 250)
            scored.append(fact)
    scored.sort(key=lambda f: f.relevance, reverse=True)
    return scored[:limit]


def extract_fact_sentences(value: Any, limit: int = 3) -> List[str]:
    text = clean_scraped_text(strip_navigation_noise(value))
    if not text:
        return []
    return [clean_scraped_text(f.sentence) for f in extract_important_facts(text, limit)]
