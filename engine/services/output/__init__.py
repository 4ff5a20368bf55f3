"""Output shaping package.

- formatters.py: structured JSON and search payloads to readable prose
- sources.py: source URL collection and the single trailing Sources line
- quality.py: output quality scoring and the evidence fallback guardrail
- briefing.py / briefing_quality.py: deterministic morning briefing
- dispatch.py: guarded delivery through the Dispatcher collaborator
"""

from .formatters import humanize_output_text, format_structured_output
from .quality import apply_output_quality_guardrails, evaluate_output_quality
from .briefing import build_morning_briefing, aggregate_upstream_node_text

__all__ = [
    "humanize_output_text",
    "format_structured_output",
    "apply_output_quality_guardrails",
    "evaluate_output_quality",
    "build_morning_briefing",
    "aggregate_upstream_node_text",
]
