"""Agent execution loop.

Drives one bounded conversation between a model and the tools of a run:

1. send the transcript and tool schemas to the model
2. run every requested tool, recording each call
3. feed the results back and repeat

The run completes when the model ends its turn without calling tools, fails
when ``max_iterations`` is exhausted or the model call raises, and stops
between iterations when the run's cancel event is set. Exactly one terminal
event (``completed`` or ``failed``) is emitted per run.
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from taskcore.agents.types import (
    AgentContext,
    AgentEvent,
    AgentEventType,
    AgentResult,
    FileChange,
    FileChangeType,
    ToolExecutionRecord,
)
from taskcore.enhanced_logging import track_performance
from taskcore.exceptions_unified import error_message
from taskcore.interfaces.model_client import (
    CompletionRequest,
    ModelClient,
    StopReason,
    ToolUseBlock,
)
from taskcore.interfaces.tools import Tool, ToolResult, tool_schema

logger = logging.getLogger(__name__)

FILE_MODIFYING_TOOLS: Dict[str, FileChangeType] = {
    "write_file": FileChangeType.CREATED,
    "create_file": FileChangeType.CREATED,
    "edit_file": FileChangeType.MODIFIED,
    "delete_file": FileChangeType.DELETED,
}

CONTINUE_PROMPT = "Continue."
CANCELLED_ERROR = "Run cancelled"

AgentEventHandler = Callable[[AgentEvent], None]


def is_file_modifying(tool_name: str) -> bool:
    return tool_name in FILE_MODIFYING_TOOLS


def extract_file_change(tool_name: str, tool_input: Dict[str, Any], result: ToolResult) -> Optional[FileChange]:
    """File change implied by a successful file-modifying call, if any."""
    change_type = FILE_MODIFYING_TOOLS.get(tool_name)
    if change_type is None or not result.success:
        return None
    path = tool_input.get("path")
    if not isinstance(path, str) or not path:
        return None
    return FileChange(path=path, change_type=change_type, diff=result.metadata.get("diff"))


async def execute_tool(tool: Tool, tool_input: Dict[str, Any]) -> ToolResult:
    """Validate then execute; never raises."""
    try:
        validate = getattr(tool, "validate", None)
        if callable(validate):
            validation = validate(tool_input)
            if inspect.isawaitable(validation):
                validation = await validation
            if not validation.valid:
                return ToolResult.failure(f"Validation failed: {', '.join(validation.errors)}")
        return await tool.execute(tool_input)
    except Exception as exc:
        logger.warning("Tool %s raised: %s", getattr(tool, "name", "?"), exc)
        return ToolResult.failure(error_message(exc))


class AgentExecutionLoop:
    """Runs one task's model/tool conversation to a terminal result.

    A loop instance holds no per-run state; transcripts and records live in
    ``run`` so concurrent runs never share them.
    """

    def __init__(
        self,
        model_client: ModelClient,
        on_event: Optional[AgentEventHandler] = None,
    ) -> None:
        self.model_client = model_client
        self.on_event = on_event

    @track_performance(operation="agent_loop.run")
    async def run(
        self,
        context: AgentContext,
        system_prompt: str,
        initial_prompt: str,
    ) -> AgentResult:
        task = context.task
        role = task.role.value
        tools_used: List[ToolExecutionRecord] = []
        changes: List[FileChange] = []
        messages: List[Dict[str, Any]] = [{"role": "user", "content": initial_prompt}]
        schemas = [tool_schema(t) for t in context.tools.values()]
        settings = context.settings
        iterations = 0

        self._emit(AgentEventType.STARTED, task.id, role, message=f"Starting {role} agent")

        try:
            while iterations < context.max_iterations:
                if context.cancelled:
                    return self._fail(context, CANCELLED_ERROR, "Run cancelled before completion",
                                      changes, tools_used, iterations)

                iterations += 1
                self._emit(AgentEventType.ITERATION_START, task.id, role, iteration=iterations)

                response = await self.model_client.complete(
                    CompletionRequest(
                        system_prompt=system_prompt,
                        messages=list(messages),
                        tools=schemas,
                        model=settings.model,
                        max_tokens=settings.max_tokens,
                        temperature=settings.temperature,
                    )
                )

                tool_results: List[Dict[str, Any]] = []
                for block in response.content:
                    if isinstance(block, ToolUseBlock):
                        tool_results.append(
                            await self._handle_tool_call(context, block, tools_used, changes)
                        )
                    else:
                        self._emit(AgentEventType.THINKING, task.id, role, message=block.text)

                if response.content:
                    messages.append(
                        {"role": "assistant", "content": [b.to_message_content() for b in response.content]}
                    )

                if tool_results:
                    messages.append({"role": "user", "content": tool_results})
                    continue

                if response.stop_reason == StopReason.END_TURN:
                    texts = response.texts
                    result = AgentResult(
                        success=True,
                        summary=texts[-1] if texts else "Task completed",
                        changes=changes,
                        tools_used=tools_used,
                        iterations=iterations,
                    )
                    self._emit(AgentEventType.COMPLETED, task.id, role, result=result)
                    return result

                # Truncated or stopped early without tool calls: nudge the model on.
                # An empty reply leaves the user turn last; resend it as is.
                if messages[-1]["role"] != "user":
                    messages.append({"role": "user", "content": CONTINUE_PROMPT})

            return self._fail(
                context,
                f"Exceeded max iterations ({context.max_iterations})",
                "Maximum iterations reached without completion",
                changes,
                tools_used,
                iterations,
            )
        except Exception as exc:
            message = error_message(exc)
            logger.error("Agent run for task %s failed: %s", task.id, message)
            return self._fail(context, message, f"Agent failed: {message}", changes, tools_used, iterations)

    async def _handle_tool_call(
        self,
        context: AgentContext,
        block: ToolUseBlock,
        tools_used: List[ToolExecutionRecord],
        changes: List[FileChange],
    ) -> Dict[str, Any]:
        task = context.task
        role = task.role.value
        tool_input = dict(block.input or {})

        self._emit(AgentEventType.TOOL_CALL, task.id, role, tool_name=block.name, tool_input=tool_input)

        tool = context.tools.get(block.name)
        if tool is None:
            result = ToolResult.failure(f'Unknown tool "{block.name}"')
        else:
            result = await execute_tool(tool, tool_input)

        tools_used.append(ToolExecutionRecord(tool_name=block.name, input=tool_input, result=result))
        change = extract_file_change(block.name, tool_input, result)
        if change is not None:
            changes.append(change)

        self._emit(AgentEventType.TOOL_RESULT, task.id, role, tool_name=block.name, tool_result=result)

        return {
            "type": "tool_result",
            "tool_use_id": block.id,
            "content": result.output if result.success else f"Error: {result.error}",
            "is_error": not result.success,
        }

    def _fail(
        self,
        context: AgentContext,
        error: str,
        summary: str,
        changes: List[FileChange],
        tools_used: List[ToolExecutionRecord],
        iterations: int,
    ) -> AgentResult:
        result = AgentResult(
            success=False,
            summary=summary,
            changes=changes,
            tools_used=tools_used,
            iterations=iterations,
            error=error,
        )
        self._emit(AgentEventType.FAILED, context.task.id, context.task.role.value, result=result, error=error)
        return result

    def _emit(self, event_type: AgentEventType, task_id: str, role: str, **data: Any) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(AgentEvent(type=event_type, task_id=task_id, role=role, data=data))
        except Exception:
            logger.exception("Agent event handler failed for %s", event_type.value)
