"""Expression Resolver - Template variable resolution.

Resolves ``{{$vars.name}}`` and ``{{$nodes.Label.output.field}}`` templates
against the outputs recorded so far in one mission run.
"""

import json
import re
from typing import Dict, Any, List, Optional, TYPE_CHECKING

from constants import BLOCKED_PROPERTY_NAMES
from core.logging import get_logger

if TYPE_CHECKING:
    from models.nodes import BaseNode
    from services.execution.models import NodeOutput

logger = get_logger(__name__)

# Compiled regex for template matching
TEMPLATE_PATTERN = re.compile(r'\{\{([^}]+)\}\}')


def to_text(value: Any) -> str:
    """Render a resolved value as expression text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False, default=str)


def navigate_path(data: Any, path: List[str]) -> Any:
    """Walk dicts (and lists by index) along ``path``.

    Prototype-style names and dunder segments are never traversed.
    """
    current = data
    for part in path:
        if part in BLOCKED_PROPERTY_NAMES or part.startswith("__"):
            return None
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


class ExpressionResolver:
    """Resolves templates for one run.

    Holds references to the run's live ``node_outputs`` and ``variables`` dicts,
    so values recorded later in the run are visible to later resolutions.
    """

    def __init__(
        self,
        node_outputs: Dict[str, "NodeOutput"],
        nodes_by_label: Dict[str, "BaseNode"],
        variables: Dict[str, str],
    ):
        self.node_outputs = node_outputs
        self.nodes_by_label = nodes_by_label
        self.variables = variables

    def resolve(self, template: str) -> str:
        if not template or '{{' not in template:
            return template or ""
        return TEMPLATE_PATTERN.sub(self._replace, template)

    def _replace(self, match: "re.Match") -> str:
        full_match = match.group(0)
        path = match.group(1).strip()

        if path.startswith("$vars."):
            return self.variables.get(path[len("$vars."):], "")

        if path.startswith("$nodes."):
            resolved = self._resolve_node_path(path[len("$nodes."):].split("."))
            if resolved is None:
                logger.debug("Unresolved node expression", expression=full_match)
                return full_match
            return resolved

        return full_match

    def _resolve_node_path(self, parts: List[str]) -> Optional[str]:
        node = self.nodes_by_label.get(parts[0])
        if node is None:
            return None
        output = self.node_outputs.get(node.id)
        if output is None:
            return None

        section = parts[1] if len(parts) > 1 else ""
        field = ".".join(parts[2:])
        if section != "output":
            return None

        if not field or field == "text":
            return output.text or ""
        if field == "data":
            if output.data is not None:
                return json.dumps(output.data, ensure_ascii=False, default=str)
            return output.text or ""
        if isinstance(output.data, (dict, list)):
            return to_text(navigate_path(output.data, parts[2:]))
        return None
