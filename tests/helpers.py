"""Shared builders and fake collaborators for the engine tests."""

from typing import Any, Dict, List, Optional

from models.mission import Mission
from services.collaborators import Completion, DispatchResult, PriceFeedResult


def node(node_id: str, node_type: str, label: Optional[str] = None, **fields) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "label": label or node_id, **fields}


def edge(source: str, target: str, port: str = "main") -> Dict[str, Any]:
    return {
        "id": f"{source}->{target}:{port}",
        "sourceNodeId": source,
        "targetNodeId": target,
        "sourcePort": port,
    }


def make_mission(nodes: List[Dict[str, Any]], connections: List[Dict[str, Any]] = (), **fields) -> Mission:
    payload = {
        "id": fields.pop("id", "mission-1"),
        "label": fields.pop("label", "Test Mission"),
        "userId": fields.pop("user_id", "user-1"),
        "nodes": list(nodes),
        "connections": list(connections),
        "chatIds": fields.pop("chat_ids", ["chat-1"]),
    }
    payload.update(fields)
    return Mission.model_validate(payload)


def chain(*nodes: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Main-port edges linking ``nodes`` in order."""
    return [edge(a["id"], b["id"]) for a, b in zip(nodes, nodes[1:])]


class FakeLLM:
    def __init__(self, text: str = "Generated answer.", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, system, prompt, max_tokens, scope, override=None):
        self.calls.append({
            "system": system,
            "prompt": prompt,
            "max_tokens": max_tokens,
            "scope": scope,
            "override": override,
        })
        if self.error is not None:
            raise self.error
        return Completion(text=self.text, provider="fake", model="fake-1")


class FakeSearch:
    def __init__(self, results: Optional[List[Dict[str, Any]]] = None, search_text: str = ""):
        self.results = results or []
        self.search_text = search_text
        self.calls: List[Dict[str, Any]] = []

    async def search(self, query, options, scope):
        self.calls.append({"query": query, "options": options})
        return {"searchText": self.search_text, "results": self.results}


class FakePriceFeed:
    def __init__(self, result: Optional[PriceFeedResult] = None):
        self.result = result or PriceFeedResult(
            ok=True,
            output={
                "prices": [{"baseAsset": "ETH", "price": 3125.5}, {"baseAsset": "SUI", "price": 1.2345}],
                "checkedAtIso": "2026-03-02T13:05:00+00:00",
            },
            summary="ETH and SUI prices",
        )
        self.requests: List[Dict[str, Any]] = []

    async def execute(self, request, scope):
        self.requests.append(request)
        return self.result


class FakeDispatcher:
    """Records every delivery. Channels in ``failing`` answer with a 503."""

    def __init__(self, failing=(), error: Optional[Exception] = None, empty: bool = False):
        self.failing = set(failing)
        self.error = error
        self.empty = empty
        self.calls: List[Dict[str, Any]] = []

    async def dispatch(self, channel, text, recipients, schedule, scope, meta):
        self.calls.append({
            "channel": channel,
            "text": text,
            "recipients": list(recipients),
            "schedule": schedule,
            "meta": meta,
        })
        if self.error is not None:
            raise self.error
        if self.empty:
            return []
        if channel in self.failing:
            return [DispatchResult(ok=False, error="channel down", status=503)]
        return [DispatchResult(ok=True, status=200) for _ in recipients or [None]]

    @property
    def channels(self) -> List[str]:
        return [call["channel"] for call in self.calls]
