"""External collaborator interfaces used by the node handlers.

The engine does not own LLM providers, search backends, exchange price feeds
or channel delivery. Hosts inject implementations of these protocols through
the container. The ``Null*`` classes are the unconfigured defaults.

Usage:
    from services.collaborators import LLMCompletion, NullLLMCompletion

    llm: LLMCompletion = host_llm or NullLLMCompletion()
    completion = await llm.complete(system, prompt, 2200, scope)
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from core.logging import get_logger

logger = get_logger(__name__)


class CollaboratorUnavailable(RuntimeError):
    """Raised by null collaborators that cannot produce a meaningful result."""


@dataclass
class Completion:
    text: str
    provider: str = ""
    model: str = ""


@dataclass
class DispatchResult:
    """Per-recipient delivery outcome."""
    ok: bool
    error: Optional[str] = None
    status: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "error": self.error, "status": self.status}


@dataclass
class PriceFeedResult:
    ok: bool
    output: Any = None
    error_code: Optional[str] = None
    artifact_ref: Optional[str] = None
    summary: str = ""


class LLMCompletion(Protocol):
    async def complete(
        self,
        system: str,
        prompt: str,
        max_tokens: int,
        scope: Dict[str, Any],
        override: Optional[Dict[str, str]] = None,
    ) -> Completion:
        """Complete ``prompt``. May raise; callers convert errors to node failures."""
        ...


class SearchProvider(Protocol):
    async def search(self, query: str, options: Dict[str, Any], scope: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``{"searchText": str, "results": [{title, url, snippet, pageText}]}``."""
        ...


class PriceFeed(Protocol):
    async def execute(self, request: Dict[str, Any], scope: Dict[str, Any]) -> PriceFeedResult:
        """Run one price/portfolio request. ``output`` carries ``prices`` and ``checkedAtIso``."""
        ...


class Dispatcher(Protocol):
    async def dispatch(
        self,
        channel: str,
        text: str,
        recipients: List[str],
        schedule: Dict[str, Any],
        scope: Dict[str, Any],
        meta: Dict[str, Any],
    ) -> List[DispatchResult]:
        """Deliver ``text`` to every recipient; one result per recipient."""
        ...


class NullLLMCompletion:
    """Unconfigured LLM. Every call fails so AI nodes report a clear error."""

    async def complete(self, system, prompt, max_tokens, scope, override=None) -> Completion:
        raise CollaboratorUnavailable("No LLM provider configured.")


class NullSearchProvider:
    """Unconfigured search: always returns no results."""

    async def search(self, query, options, scope) -> Dict[str, Any]:
        logger.debug("Search provider not configured", query=query)
        return {"searchText": "", "results": []}


class NullPriceFeed:
    async def execute(self, request, scope) -> PriceFeedResult:
        return PriceFeedResult(ok=False, error_code="PRICE_FEED_UNAVAILABLE")


class NullDispatcher:
    """Unconfigured delivery. Reports one failed result per call."""

    async def dispatch(self, channel, text, recipients, schedule, scope, meta) -> List[DispatchResult]:
        logger.debug("Dispatcher not configured, dropping output",
                     channel=channel, recipients=len(recipients), node_id=meta.get("nodeId"))
        return [DispatchResult(ok=False, error="No dispatcher configured.")]
