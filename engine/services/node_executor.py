"""Node Executor - Single node execution with handler dispatch.

Uses a registry pattern for clean handler dispatch without if-else chains.
Collaborators are bound into handlers once, at construction.
"""

import time
from functools import partial
from typing import Callable, Dict, List, Optional

from core.config import Settings
from core.logging import get_logger, log_execution_time
from models.nodes import BaseNode
from services.collaborators import (
    Dispatcher, LLMCompletion, NullDispatcher, NullLLMCompletion,
    NullPriceFeed, NullSearchProvider, PriceFeed, SearchProvider,
)
from services.execution.models import ExecutionContext, NodeOutput
from services.fetchers import HttpFetcher
from services.handlers import (
    handle_schedule_trigger, handle_manual_trigger, handle_webhook_trigger, handle_event_trigger,
    handle_web_search, handle_http_request, handle_rss_feed, handle_coinbase,
    handle_ai_summarize, handle_ai_classify, handle_ai_extract, handle_ai_generate, handle_ai_chat,
    handle_condition, handle_switch, handle_loop, handle_merge, handle_split, handle_wait,
    handle_set_variables, handle_format, handle_sort, handle_dedupe, handle_code, handle_filter,
    handle_novachat_output, handle_telegram_output, handle_discord_output,
    handle_email_output, handle_webhook_output, handle_slack_output,
    handle_file_read, handle_form_input, handle_sticky_note, handle_sub_workflow,
)
from services.sandbox import SandboxRunner

logger = get_logger(__name__)

Handler = Callable[[BaseNode, ExecutionContext], "NodeOutput"]


class NodeExecutor:
    """Executes individual mission nodes using registry-based dispatch."""

    def __init__(
        self,
        settings: Settings,
        fetcher: HttpFetcher,
        sandbox: SandboxRunner,
        llm: Optional[LLMCompletion] = None,
        search: Optional[SearchProvider] = None,
        price_feed: Optional[PriceFeed] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self.settings = settings
        self.fetcher = fetcher
        self.sandbox = sandbox
        self.llm = llm or NullLLMCompletion()
        self.search = search or NullSearchProvider()
        self.price_feed = price_feed or NullPriceFeed()
        self.dispatcher = dispatcher or NullDispatcher()
        self._handlers = self._build_handler_registry()

    def _build_handler_registry(self) -> Dict[str, Callable]:
        """Build handler registry with service dependencies bound via partial."""
        output = dict(dispatcher=self.dispatcher, settings=self.settings)
        return {
            # Triggers
            'schedule-trigger': handle_schedule_trigger,
            'manual-trigger': handle_manual_trigger,
            'webhook-trigger': handle_webhook_trigger,
            'event-trigger': handle_event_trigger,
            # Data
            'web-search': partial(handle_web_search, search=self.search),
            'http-request': partial(handle_http_request, fetcher=self.fetcher),
            'rss-feed': partial(handle_rss_feed, fetcher=self.fetcher),
            'coinbase': partial(handle_coinbase, price_feed=self.price_feed),
            'file-read': handle_file_read,
            'form-input': handle_form_input,
            # AI
            'ai-summarize': partial(handle_ai_summarize, llm=self.llm),
            'ai-classify': partial(handle_ai_classify, llm=self.llm),
            'ai-extract': partial(handle_ai_extract, llm=self.llm),
            'ai-generate': partial(handle_ai_generate, llm=self.llm),
            'ai-chat': partial(handle_ai_chat, llm=self.llm),
            # Logic
            'condition': handle_condition,
            'switch': handle_switch,
            'loop': handle_loop,
            'merge': handle_merge,
            'split': handle_split,
            'wait': handle_wait,
            # Transform
            'set-variables': handle_set_variables,
            'format': handle_format,
            'sort': handle_sort,
            'dedupe': handle_dedupe,
            'code': partial(handle_code, sandbox=self.sandbox),
            'filter': partial(handle_filter, sandbox=self.sandbox),
            # Output
            'novachat-output': partial(handle_novachat_output, **output),
            'telegram-output': partial(handle_telegram_output, **output),
            'discord-output': partial(handle_discord_output, **output),
            'email-output': partial(handle_email_output, **output),
            'webhook-output': partial(handle_webhook_output, **output),
            'slack-output': partial(handle_slack_output, **output),
            # Utility
            'sticky-note': handle_sticky_note,
            'sub-workflow': handle_sub_workflow,
        }

    def has_handler(self, node_type: str) -> bool:
        return node_type in self._handlers

    def registered_types(self) -> List[str]:
        return sorted(self._handlers)

    async def execute(self, node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
        """Execute a single mission node. Handler exceptions become failed outputs."""
        handler = self._handlers.get(node.type)
        if handler is None:
            logger.warning("No executor for node type", node_id=node.id, node_type=node.type)
            return NodeOutput.failure(f"No executor for node type: {node.type}", "NO_EXECUTOR")

        start_time = time.time()
        try:
            output = await handler(node, ctx)
        except Exception as e:
            logger.error("Node execution error", node_id=node.id, node_type=node.type,
                         mission_id=ctx.mission_id, error=str(e))
            return NodeOutput.failure(str(e), "EXECUTOR_EXCEPTION")
        finally:
            log_execution_time(logger, f"node_{node.type}", start_time, time.time(),
                               node_id=node.id, mission_id=ctx.mission_id)
        return output
