"""Execution engine package.

Mission execution with:
- Run-scoped ExecutionContext (no state shared between runs)
- Sequential node execution in topological order
- Port-based branch pruning and error-port routing
- Condition rules with a catastrophic-regex guard

The runner itself lives in ``services.execution.executor`` and is imported
from there, since it depends on the node handlers which depend on this package.
"""

from .models import (
    ExecutionContextError,
    RunSource,
    TraceStatus,
    NodeOutput,
    NodeTrace,
    OutputSummary,
    RunResult,
    ExecutionContext,
    TraceCallback,
)
from .conditions import (
    evaluate_rule,
    evaluate_condition_rule,
    evaluate_conditions,
    is_unsafe_pattern,
)

__all__ = [
    # Models
    "ExecutionContextError",
    "RunSource",
    "TraceStatus",
    "NodeOutput",
    "NodeTrace",
    "OutputSummary",
    "RunResult",
    "ExecutionContext",
    "TraceCallback",
    # Conditions
    "evaluate_rule",
    "evaluate_condition_rule",
    "evaluate_conditions",
    "is_unsafe_pattern",
]
