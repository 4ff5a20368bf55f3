"""Output quality guardrail.

Scores outgoing mission text and, when it is low-signal, synthesizes an
evidence-grounded fallback from upstream fetch results. The fallback replaces
the draft text only when it scores at least ``FALLBACK_MARGIN`` points higher.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.config import Settings
from core.logging import get_logger
from services.output.sources import (
    collect_source_urls_from_context,
    format_source_buttons,
    unique_source_urls,
)
from services.text import clean_text, extract_fact_sentences, normalize_snippet_text

logger = get_logger(__name__)

FALLBACK_MARGIN = 8

LOW_SIGNAL_PATTERNS = [
    re.compile(r'\bno reliable (?:fetched )?data\b', re.I),
    re.compile(r'\bno data (?:available|retrieved|found)\b', re.I),
    re.compile(r'\bunable to extract meaningful insights\b', re.I),
    re.compile(r'\binsufficient (?:context|data)\b', re.I),
    re.compile(r'\bai step failed\b', re.I),
    re.compile(r'\bunknown error\b', re.I),
    re.compile(r'\bnot enough information\b', re.I),
]

_BULLET = re.compile(r'(^|\n)\s*-\s+')
_SECTION = re.compile(r'(^|\n)\s*(\*\*[^*\n]{2,}\*\*|#{1,6}\s+\S+)')
_SOURCES = re.compile(r'\bsources:\s+', re.I)
_SOURCE_LINK = re.compile(r'\[source\s+\d+\]\(https?://', re.I)
_TEMPLATE = re.compile(r'\{\{\s*[^}]+\s*\}\}')
_RAW_PAYLOAD = re.compile(r'^\s*[\[{].*[\]}]\s*$', re.S)
_BULLET_LINE = re.compile(r'^\s*-\s+', re.M)
_FETCH_PREFIX = re.compile(r'^fetch\s+', re.I)

_MAX_FACTS = {"concise": 3, "standard": 5, "detailed": 8}


@dataclass
class QualityReport:
    score: float
    low_signal: bool
    reasons: List[str] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "lowSignal": self.low_signal,
            "reasons": list(self.reasons),
            "metrics": dict(self.metrics),
        }


@dataclass
class GuardrailResult:
    text: str
    applied: bool
    report: QualityReport
    fallback_report: Optional[QualityReport] = None


def to_words(text: str) -> List[str]:
    lowered = re.sub(r'[^a-z0-9\s]+', " ", str(text or "").lower())
    return [part for part in lowered.split() if len(part) >= 2]


def _fetch_results(context: Any) -> List[Any]:
    if isinstance(context, dict) and isinstance(context.get("fetchResults"), list):
        return context["fetchResults"]
    return []


def _section_label(row: Dict[str, Any]) -> str:
    return clean_text(_FETCH_PREFIX.sub("", clean_text(row.get("stepTitle") or "")))


def collect_expected_sections(context: Any) -> List[str]:
    names: List[str] = []
    for row in _fetch_results(context):
        if not isinstance(row, dict):
            continue
        title = _section_label(row)
        if title and title.lower() not in (n.lower() for n in names):
            names.append(title)
    return names


def count_matched_sections(text: str, sections: List[str]) -> int:
    if not text or not sections:
        return 0
    matched = 0
    for section in sections:
        pattern = re.compile(rf'(^|\n)(\*\*)?{re.escape(section)}(\*\*)?\s*(\n|$)', re.I)
        if pattern.search(text):
            matched += 1
    return matched


def collect_evidence_rows(context: Any) -> List[Dict[str, str]]:
    """Flatten evidence into ``{section, text, url?}`` rows."""
    rows: List[Dict[str, str]] = []
    if not isinstance(context, dict):
        return rows

    def from_record(record: Dict[str, Any], section: str) -> None:
        payload = record.get("payload") if isinstance(record.get("payload"), dict) else {}
        text = normalize_snippet_text(payload.get("text") or record.get("text") or "", 420)
        if text:
            rows.append({"section": section, "text": text})
        results = payload.get("results") if isinstance(payload.get("results"), list) else []
        for result in results[:4]:
            if not isinstance(result, dict):
                continue
            body = str(result.get("pageText") or result.get("snippet") or "").strip()
            if body:
                rows.append({"section": section, "text": body, "url": str(result.get("url") or "").strip()})

    def from_result_row(row: Dict[str, Any], section: str) -> None:
        body = str(row.get("pageText") or row.get("snippet") or row.get("description")
                   or row.get("text") or "").strip()
        if body:
            rows.append({"section": section, "text": body,
                         "url": str(row.get("url") or row.get("link") or "").strip()})

    fetch_results = _fetch_results(context)
    if fetch_results:
        for row in fetch_results:
            if not isinstance(row, dict):
                continue
            section = _section_label(row) or "Update"
            if isinstance(row.get("data"), dict):
                from_record(row["data"], section)
            else:
                from_result_row(row, section)
        return rows

    from_record(context, "Update")
    return rows


def build_fallback_from_context(
    context: Any,
    include_sources: bool = True,
    detail_level: str = "standard",
) -> Optional[str]:
    max_facts = _MAX_FACTS.get(detail_level, _MAX_FACTS["standard"])
    evidence = collect_evidence_rows(context)
    if not evidence:
        return None

    facts: List[str] = []
    source_candidates: List[str] = []
    for row in evidence:
        if row.get("url"):
            source_candidates.append(row["url"])
        for fact in extract_fact_sentences(row["text"], 1 if detail_level == "concise" else 2):
            normalized = normalize_snippet_text(fact, 220)
            if normalized and normalized.lower() not in (f.lower() for f in facts):
                facts.append(normalized)
            if len(facts) >= max_facts:
                break
        if len(facts) >= max_facts:
            break

    if not facts:
        return None

    intro = "Quick update:" if detail_level == "concise" else "Here is the latest update:"
    lines = [f"{intro} {' '.join(facts).strip()}".strip()]
    if include_sources:
        urls = unique_source_urls(source_candidates + collect_source_urls_from_context(context), 3)
        if urls:
            lines.append("")
            lines.append(f"Sources: {format_source_buttons(urls)}")
    return "\n".join(lines).strip()


def evaluate_output_quality(
    raw: str,
    context: Any,
    settings: Settings,
    include_sources: bool = True,
) -> QualityReport:
    text = str(raw or "").replace("\r\n", "\n").strip()
    reasons: List[str] = []

    words = to_words(text)
    word_count = len(words)
    unique_ratio = len(set(words)) / word_count if word_count else 0.0
    pattern_hits = sum(1 for pattern in LOW_SIGNAL_PATTERNS if pattern.search(text))
    has_sources = bool(_SOURCES.search(text) or _SOURCE_LINK.search(text))
    expected = collect_expected_sections(context)

    score = 100.0
    if len(text) < 90:
        score -= 28
        reasons.append("too_short")
    if word_count < settings.mission_quality_min_words:
        score -= 24
        reasons.append("low_word_count")
    if unique_ratio < 0.48:
        score -= 14
        reasons.append("low_lexical_diversity")
    if _TEMPLATE.search(text):
        score -= 24
        reasons.append("unresolved_template_tokens")
    if pattern_hits:
        score -= min(42, pattern_hits * 14)
        reasons.append("low_signal_phrases")
    if _RAW_PAYLOAD.match(text) and not _BULLET_LINE.search(text):
        score -= 20
        reasons.append("raw_payload_shape")
    if include_sources and not has_sources and collect_source_urls_from_context(context):
        score -= 12
        reasons.append("missing_sources")

    score = max(0.0, min(100.0, score))
    return QualityReport(
        score=score,
        low_signal=score < settings.mission_quality_min_score,
        reasons=reasons,
        metrics={
            "charCount": len(text),
            "wordCount": word_count,
            "bulletCount": len(_BULLET.findall(text)),
            "sectionCount": len(_SECTION.findall(text)),
            "uniqueWordRatio": unique_ratio,
            "lowSignalPatternHits": pattern_hits,
            "hasSourceSection": has_sources,
            "expectedSectionCount": len(expected),
            "matchedSectionCount": count_matched_sections(text, expected),
        },
    )


def apply_output_quality_guardrails(
    raw: str,
    context: Any,
    settings: Settings,
    include_sources: bool = True,
    detail_level: str = "standard",
) -> GuardrailResult:
    """Return the text to send. Never raises on missing evidence."""
    text = str(raw or "").strip()
    report = evaluate_output_quality(text, context, settings, include_sources)
    if not report.low_signal:
        return GuardrailResult(text=text, applied=False, report=report)

    fallback = build_fallback_from_context(context, include_sources, detail_level)
    if not fallback:
        return GuardrailResult(text=text, applied=False, report=report)

    fallback_report = evaluate_output_quality(fallback, context, settings, include_sources)
    should_apply = fallback_report.score >= report.score + FALLBACK_MARGIN

    log = logger.info if settings.mission_quality_debug else logger.debug
    log("Mission output guardrail",
        decision="applied" if should_apply else "ignored",
        score=report.score,
        fallback_score=fallback_report.score,
        reasons=",".join(report.reasons) or "none")

    return GuardrailResult(
        text=fallback if should_apply else text,
        applied=should_apply,
        report=report,
        fallback_report=fallback_report,
    )
