"""Utility node handlers - File Read, Form Input, Sticky Note, Sub-workflow.

None of these do real work in scheduled execution; they report fixed
outcomes so missions that contain them still run to completion.
"""

from models.nodes import BaseNode
from services.execution.models import ExecutionContext, NodeOutput


async def handle_file_read(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    return NodeOutput.failure("file-read not yet supported in server execution.")


async def handle_form_input(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    return NodeOutput.failure("form-input is not executable in scheduled missions.")


async def handle_sticky_note(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    return NodeOutput(ok=True, text="")


async def handle_sub_workflow(node: BaseNode, ctx: ExecutionContext) -> NodeOutput:
    return NodeOutput.failure("sub-workflow execution not yet implemented.")
