"""Mission model: a persisted, user-authored automation graph."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, SerializeAsAny, field_validator
from pydantic.alias_generators import to_camel

from constants import DEFAULT_CHANNEL, DEFAULT_TIMEZONE, MAIN_PORT, TRIGGER_TYPES
from models.nodes import BaseNode, parse_node

_MISSION_CONFIG = {
    "extra": "allow",
    "frozen": True,
    "populate_by_name": True,
    "alias_generator": to_camel,
}


class MissionConnection(BaseModel):
    """Directed edge from a source node port to a target node."""
    model_config = _MISSION_CONFIG

    id: str = ""
    source_node_id: str
    source_port: str = MAIN_PORT
    target_node_id: str
    target_port: Optional[str] = None

    @field_validator("source_port", mode="before")
    @classmethod
    def default_port(cls, value: Any) -> str:
        return str(value or MAIN_PORT)


class MissionVariable(BaseModel):
    model_config = _MISSION_CONFIG

    name: str
    value: str = ""
    type: str = "string"
    description: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def stringify(cls, value: Any) -> str:
        return "" if value is None else str(value)


class MissionSettings(BaseModel):
    model_config = _MISSION_CONFIG

    timezone: str = DEFAULT_TIMEZONE
    retry_on_fail: bool = False
    retry_count: int = 0
    retry_interval_ms: int = 0


class Mission(BaseModel):
    """Immutable for the duration of a run; updates produce a new copy."""
    model_config = _MISSION_CONFIG

    id: str
    label: str = ""
    user_id: str = ""
    description: str = ""
    nodes: List[SerializeAsAny[BaseNode]] = Field(default_factory=list)
    connections: List[MissionConnection] = Field(default_factory=list)
    variables: List[MissionVariable] = Field(default_factory=list)
    settings: MissionSettings = Field(default_factory=MissionSettings)
    integration: str = DEFAULT_CHANNEL
    chat_ids: List[str] = Field(default_factory=list)
    last_run_at: Optional[str] = None
    last_sent_local_date: Optional[str] = None
    run_count: int = 0
    success_count: int = 0
    failure_count: int = 0

    @field_validator("nodes", mode="before")
    @classmethod
    def parse_nodes(cls, value: Any) -> List[BaseNode]:
        return [parse_node(raw) for raw in (value or [])]

    def node_by_id(self, node_id: str) -> Optional[BaseNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def nodes_by_label(self) -> Dict[str, BaseNode]:
        """Label -> node. Later duplicates win, matching expression lookup."""
        return {node.label: node for node in self.nodes}

    def trigger_nodes(self) -> List[BaseNode]:
        return [node for node in self.nodes if node.type in TRIGGER_TYPES]

    def schedule_trigger(self) -> Optional[BaseNode]:
        return next((n for n in self.nodes if n.type == "schedule-trigger"), None)
