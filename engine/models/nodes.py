"""Pydantic models for mission nodes with discriminated unions.

Every node shares ``BaseNode`` (id, label, position, disabled, notes) and adds
type-specific fields. The ``type`` field routes raw JSON to the correct variant
in one lookup; unknown types fall back to ``GenericNode`` so the executor
registry stays open for extension.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Literal, Union, Annotated, Optional, Dict, Any, List, get_args
from pydantic import BaseModel, Field, TypeAdapter
from pydantic.alias_generators import to_camel


# =============================================================================
# BASE MODELS
# =============================================================================

_NODE_CONFIG = {
    "extra": "allow",
    "frozen": True,
    "populate_by_name": True,
    "alias_generator": to_camel,
}


class NodePosition(BaseModel):
    model_config = _NODE_CONFIG
    x: float = 0
    y: float = 0


class BaseNode(BaseModel):
    """Base class for all mission nodes."""
    model_config = _NODE_CONFIG

    id: str
    type: str
    label: str = ""
    position: NodePosition = Field(default_factory=NodePosition)
    disabled: bool = False
    notes: Optional[str] = None


class GenericNode(BaseNode):
    """Node of a type the engine has no model for."""


# =============================================================================
# TRIGGER NODES
# =============================================================================

class ScheduleTriggerNode(BaseNode):
    type: Literal["schedule-trigger"]
    trigger_mode: Literal["once", "daily", "weekly", "interval"] = "daily"
    trigger_time: Optional[str] = None
    trigger_timezone: Optional[str] = None
    trigger_days: List[str] = Field(default_factory=list)
    trigger_interval_minutes: Optional[float] = None
    trigger_window_minutes: Optional[float] = None


class ManualTriggerNode(BaseNode):
    type: Literal["manual-trigger"]


class WebhookTriggerNode(BaseNode):
    type: Literal["webhook-trigger"]
    method: str = "POST"
    path: str = ""
    authentication: str = "none"
    response_mode: str = "immediate"


class EventTriggerNode(BaseNode):
    type: Literal["event-trigger"]
    event_name: str = ""
    filter: Optional[str] = None


# =============================================================================
# DATA NODES
# =============================================================================

class WebSearchNode(BaseNode):
    type: Literal["web-search"]
    query: str = ""
    provider: Optional[str] = None
    max_results: Optional[int] = None
    include_sources: bool = True
    fetch_content: bool = False


class HttpRequestNode(BaseNode):
    type: Literal["http-request"]
    method: str = "GET"
    url: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    authentication: str = "none"
    auth_token: Optional[str] = None
    response_format: str = "text"
    selector: Optional[str] = None


class RssFeedNode(BaseNode):
    type: Literal["rss-feed"]
    url: str = ""
    max_items: Optional[int] = None
    filter_keywords: List[str] = Field(default_factory=list)


class CoinbaseFormat(BaseModel):
    model_config = _NODE_CONFIG
    style: str = "standard"
    include_raw_metadata: bool = True


class CoinbaseNode(BaseNode):
    type: Literal["coinbase"]
    intent: str = "price"
    assets: List[str] = Field(default_factory=list)
    quote_currency: Optional[str] = None
    threshold_pct: Optional[float] = None
    cadence: Optional[str] = None
    transaction_limit: Optional[int] = None
    include_previous_artifact_context: bool = True
    format: Optional[CoinbaseFormat] = None


class FileReadNode(BaseNode):
    type: Literal["file-read"]
    path: str = ""
    format: str = "text"


class FormField(BaseModel):
    model_config = _NODE_CONFIG
    name: str
    label: str = ""
    type: str = "text"
    options: List[str] = Field(default_factory=list)


class FormInputNode(BaseNode):
    type: Literal["form-input"]
    fields: List[FormField] = Field(default_factory=list)


# =============================================================================
# AI NODES
# =============================================================================

class AiNodeBase(BaseNode):
    prompt: str = ""
    integration: Optional[str] = None
    model: Optional[str] = None
    input_expression: Optional[str] = None


class AiSummarizeNode(AiNodeBase):
    type: Literal["ai-summarize"]
    detail_level: Optional[str] = None
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None


class AiClassifyNode(AiNodeBase):
    type: Literal["ai-classify"]
    categories: List[str] = Field(default_factory=list)


class AiExtractNode(AiNodeBase):
    type: Literal["ai-extract"]
    output_schema: Optional[str] = None


class AiGenerateNode(AiNodeBase):
    type: Literal["ai-generate"]
    detail_level: Optional[str] = None
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None


class ChatMessage(BaseModel):
    model_config = _NODE_CONFIG
    role: Literal["system", "user", "assistant"] = "user"
    content: str = ""


class AiChatNode(AiNodeBase):
    type: Literal["ai-chat"]
    messages: List[ChatMessage] = Field(default_factory=list)


# =============================================================================
# LOGIC NODES
# =============================================================================

class ConditionRule(BaseModel):
    model_config = _NODE_CONFIG
    field: str = ""
    operator: str = "exists"
    value: Optional[str] = None


class ConditionNode(BaseNode):
    type: Literal["condition"]
    rules: List[ConditionRule] = Field(default_factory=list)
    logic: Literal["all", "any"] = "all"


class SwitchCase(BaseModel):
    model_config = _NODE_CONFIG
    value: str = ""
    port: str = ""
    label: Optional[str] = None


class SwitchNode(BaseNode):
    type: Literal["switch"]
    expression: str = ""
    cases: List[SwitchCase] = Field(default_factory=list)
    fallthrough: bool = False


class LoopNode(BaseNode):
    type: Literal["loop"]
    input_expression: str = ""
    batch_size: Optional[int] = None
    max_iterations: Optional[int] = None


class MergeNode(BaseNode):
    type: Literal["merge"]
    mode: str = "wait-all"
    input_count: Optional[int] = None


class SplitNode(BaseNode):
    type: Literal["split"]
    output_count: Optional[int] = None


class WaitNode(BaseNode):
    type: Literal["wait"]
    wait_mode: str = "duration"
    duration_ms: Optional[int] = None
    until_time: Optional[str] = None
    webhook_path: Optional[str] = None


# =============================================================================
# TRANSFORM NODES
# =============================================================================

class Assignment(BaseModel):
    model_config = _NODE_CONFIG
    name: str = ""
    value: str = ""


class SetVariablesNode(BaseNode):
    type: Literal["set-variables"]
    assignments: List[Assignment] = Field(default_factory=list)


class CodeNode(BaseNode):
    type: Literal["code"]
    language: str = "python"
    code: str = ""
    input_expression: Optional[str] = None


class FormatNode(BaseNode):
    type: Literal["format"]
    template: str = ""
    output_format: str = "text"


class FilterNode(BaseNode):
    type: Literal["filter"]
    expression: str = ""
    mode: Literal["keep", "remove", "exclude"] = "keep"


class SortNode(BaseNode):
    type: Literal["sort"]
    field: str = ""
    direction: Literal["asc", "desc"] = "asc"


class DedupeNode(BaseNode):
    type: Literal["dedupe"]
    field: str = ""


# =============================================================================
# OUTPUT NODES
# =============================================================================

class OutputNodeBase(BaseNode):
    message_template: Optional[str] = None
    input_expression: Optional[str] = None


class NovaChatOutputNode(OutputNodeBase):
    type: Literal["novachat-output"]


class TelegramOutputNode(OutputNodeBase):
    type: Literal["telegram-output"]
    chat_ids: Optional[List[str]] = None
    parse_mode: Optional[str] = None


class DiscordOutputNode(OutputNodeBase):
    type: Literal["discord-output"]
    webhook_urls: Optional[List[str]] = None


class EmailOutputNode(OutputNodeBase):
    type: Literal["email-output"]
    recipients: Optional[List[str]] = None
    subject: Optional[str] = None
    format: str = "text"


class WebhookOutputNode(OutputNodeBase):
    type: Literal["webhook-output"]
    url: str = ""
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body_template: Optional[str] = None


class SlackOutputNode(OutputNodeBase):
    type: Literal["slack-output"]
    webhook_url: Optional[str] = None
    channel: Optional[str] = None


# =============================================================================
# UTILITY NODES
# =============================================================================

class StickyNoteNode(BaseNode):
    type: Literal["sticky-note"]
    content: str = ""
    color: Optional[str] = None


class SubWorkflowNode(BaseNode):
    type: Literal["sub-workflow"]
    mission_id: str = ""
    input_mapping: Dict[str, str] = Field(default_factory=dict)
    wait_for_completion: bool = True


# =============================================================================
# DISCRIMINATED UNION
# =============================================================================

KnownNode = Annotated[
    Union[
        ScheduleTriggerNode, ManualTriggerNode, WebhookTriggerNode, EventTriggerNode,
        WebSearchNode, HttpRequestNode, RssFeedNode, CoinbaseNode, FileReadNode, FormInputNode,
        AiSummarizeNode, AiClassifyNode, AiExtractNode, AiGenerateNode, AiChatNode,
        ConditionNode, SwitchNode, LoopNode, MergeNode, SplitNode, WaitNode,
        SetVariablesNode, CodeNode, FormatNode, FilterNode, SortNode, DedupeNode,
        NovaChatOutputNode, TelegramOutputNode, DiscordOutputNode, EmailOutputNode,
        WebhookOutputNode, SlackOutputNode,
        StickyNoteNode, SubWorkflowNode,
    ],
    Field(discriminator="type"),
]

_known_node_adapter = TypeAdapter(KnownNode)

KNOWN_NODE_TYPES = frozenset(
    get_args(model.model_fields["type"].annotation)[0]
    for model in get_args(get_args(KnownNode)[0])
)


def parse_node(raw: Union[BaseNode, Dict[str, Any]]) -> BaseNode:
    """Validate a raw node dict into its typed model.

    Known types raise ``ValidationError`` on malformed fields. Unknown types
    fall back to ``GenericNode`` so extensions still load.
    """
    if isinstance(raw, BaseNode):
        return raw
    if raw.get("type") in KNOWN_NODE_TYPES:
        return _known_node_adapter.validate_python(raw)
    return GenericNode.model_validate(raw)
