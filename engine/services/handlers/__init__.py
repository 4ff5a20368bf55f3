"""Node handlers package.

This package contains all node execution handlers organized by category:
- triggers.py: Schedule, Manual, Webhook, Event triggers
- search.py: Web Search
- http.py: HTTP Request, RSS Feed
- prices.py: Coinbase price feed
- ai.py: AI Summarize, Classify, Extract, Generate, Chat
- logic.py: Condition, Switch, Loop, Merge, Split, Wait
- transform.py: Set Variables, Format, Sort, Dedupe
- code.py: Code, Filter (sandboxed)
- output.py: NovaChat, Telegram, Discord, Email, Webhook, Slack outputs
- utility.py: File Read, Form Input, Sticky Note, Sub-workflow

Every handler has the signature ``async def handle_x(node, ctx, **deps)``
and returns a ``NodeOutput``. Collaborators are bound by ``NodeExecutor``.
"""

# Trigger handlers
from .triggers import (
    handle_schedule_trigger,
    handle_manual_trigger,
    handle_webhook_trigger,
    handle_event_trigger,
)

# Data handlers
from .search import handle_web_search
from .http import (
    handle_http_request,
    handle_rss_feed,
)
from .prices import handle_coinbase

# AI handlers
from .ai import (
    handle_ai_summarize,
    handle_ai_classify,
    handle_ai_extract,
    handle_ai_generate,
    handle_ai_chat,
)

# Logic handlers
from .logic import (
    handle_condition,
    handle_switch,
    handle_loop,
    handle_merge,
    handle_split,
    handle_wait,
)

# Transform handlers
from .transform import (
    handle_set_variables,
    handle_format,
    handle_sort,
    handle_dedupe,
)
from .code import (
    handle_code,
    handle_filter,
)

# Output handlers
from .output import (
    handle_novachat_output,
    handle_telegram_output,
    handle_discord_output,
    handle_email_output,
    handle_webhook_output,
    handle_slack_output,
)

# Utility handlers
from .utility import (
    handle_file_read,
    handle_form_input,
    handle_sticky_note,
    handle_sub_workflow,
)

__all__ = [
    # Triggers
    'handle_schedule_trigger',
    'handle_manual_trigger',
    'handle_webhook_trigger',
    'handle_event_trigger',
    # Data
    'handle_web_search',
    'handle_http_request',
    'handle_rss_feed',
    'handle_coinbase',
    # AI
    'handle_ai_summarize',
    'handle_ai_classify',
    'handle_ai_extract',
    'handle_ai_generate',
    'handle_ai_chat',
    # Logic
    'handle_condition',
    'handle_switch',
    'handle_loop',
    'handle_merge',
    'handle_split',
    'handle_wait',
    # Transform
    'handle_set_variables',
    'handle_format',
    'handle_sort',
    'handle_dedupe',
    'handle_code',
    'handle_filter',
    # Output
    'handle_novachat_output',
    'handle_telegram_output',
    'handle_discord_output',
    'handle_email_output',
    'handle_webhook_output',
    'handle_slack_output',
    # Utility
    'handle_file_read',
    'handle_form_input',
    'handle_sticky_note',
    'handle_sub_workflow',
]
