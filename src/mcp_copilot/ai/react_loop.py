"""The ReAct tool-calling loop.

One user turn runs as an explicit state machine:

    IDLE -> AWAITING_MODEL -> DISPATCHING_TOOLS -> AWAITING_TOOL_RESULTS
         -> AWAITING_MODEL -> ... -> TERMINAL

Each model reply with tool calls produces one Batch. Auto-execute tools run
serially under a shared lock; manual tools are surfaced to the UI sink and
wait for ``confirm_tool`` or ``cancel_tool``. A batch settles exactly once,
either complete (results are resubmitted to the model) or cancelled (a
conclusion is requested with the tool catalog omitted).
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

from mcp_copilot.ai import prompts
from mcp_copilot.ai.client import ChatClient
from mcp_copilot.ai.conversation import build_messages
from mcp_copilot.ai.policies import SufficiencyPredicate
from mcp_copilot.ai.react_format import claimed_actions, is_final_answer
from mcp_copilot.ai.stream import StreamAccumulator, StreamResult
from mcp_copilot.ai.tools.base import ToolCallRequest, ToolOutcome
from mcp_copilot.ai.tools.executor import ToolExecutor
from mcp_copilot.ai.tools.registry import ToolRegistry
from mcp_copilot.config import LoopConfig
from mcp_copilot.core.conversation import ConversationManager
from mcp_copilot.core.errors import (
    ChatTransportError,
    CopilotError,
    EmptyModelResponse,
    PersistenceFailure,
    RecursionLimitExceeded,
    ResubmissionTransportError,
)
from mcp_copilot.core.types import BatchState, ConclusionReason, LoopState, TurnStatus
from mcp_copilot.log import get_logger
from mcp_copilot.storage.models import Message
from mcp_copilot.ui.base import TurnEvents

logger = get_logger(__name__)

CONCLUSION_WINDOW = 3


class Batch:
    """Tool calls issued by one model reply, tracked until they settle.

    ``record`` and ``cancel`` run synchronously on the event loop, so the
    check-and-transition in each is atomic with respect to other tasks.
    """

    def __init__(self, calls: list[ToolCallRequest], auto_count: int, recursion_depth: int):
        self.id = f"batch-{uuid.uuid4().hex[:12]}"
        self.calls = list(calls)
        self.tools = [c.name for c in calls]
        self.results: list[ToolOutcome] = []
        self.total_count = len(calls)
        self.auto_count = auto_count
        self.manual_count = len(calls) - auto_count
        self.recursion_depth = recursion_depth
        self.cancelled = False
        self.state = BatchState.PENDING
        self.error: BaseException | None = None
        self._settled: asyncio.Future[BatchState] = asyncio.get_running_loop().create_future()

    def record(self, outcome: ToolOutcome) -> bool:
        """Add an outcome. Returns True only for the call that completes the batch."""
        self.results.append(outcome)
        if (
            self.state is BatchState.PENDING
            and not self.cancelled
            and len(self.results) >= self.total_count
        ):
            self.state = BatchState.COMPLETE
            self.settle()
            return True
        return False

    def cancel(self) -> bool:
        """Mark the batch cancelled. Returns False if it had already settled."""
        if self.state is not BatchState.PENDING:
            return False
        self.cancelled = True
        self.state = BatchState.CANCELLED
        return True

    def abort(self, error: BaseException) -> None:
        self.error = error
        self.settle()

    def settle(self) -> None:
        if not self._settled.done():
            self._settled.set_result(self.state)

    async def wait(self) -> BatchState:
        state = await self._settled
        if self.error is not None:
            raise self.error
        return state


@dataclass
class RunContext:
    """State of one user turn, passed explicitly through the loop."""

    conversation_id: str
    query: str
    config: LoopConfig
    log: Any
    depth: int = 0
    state: LoopState = LoopState.IDLE
    batches: list[Batch] = field(default_factory=list)
    results: list[ToolOutcome] = field(default_factory=list)


@dataclass
class PendingPrompt:
    id: str
    call: ToolCallRequest
    batch: Batch
    context: RunContext
    route_missing: bool = False


@dataclass
class TurnResult:
    content: str
    status: TurnStatus
    error: CopilotError | None = None
    depth: int = 0
    results: list[ToolOutcome] = field(default_factory=list)
    claimed_actions: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is not TurnStatus.FAILED


class Orchestrator:
    """Drives user turns through model requests and tool batches."""

    def __init__(
        self,
        chat_client: ChatClient,
        executor: ToolExecutor,
        registry: ToolRegistry,
        conversations: ConversationManager,
        events: TurnEvents | None = None,
        config: LoopConfig | None = None,
        sufficiency: SufficiencyPredicate | None = None,
        log: Any = None,
    ):
        self._chat = chat_client
        self._executor = executor
        self._registry = registry
        self._conversations = conversations
        self._events = events or TurnEvents()
        self._config = config or LoopConfig()
        self._sufficiency = sufficiency
        self._log = log or logger
        self._tool_lock = asyncio.Lock()
        self._prompts: dict[str, PendingPrompt] = {}

    @property
    def events(self) -> TurnEvents:
        return self._events

    def pending_prompts(self) -> list[PendingPrompt]:
        return list(self._prompts.values())

    # ── turn entry ──────────────────────────────────────────────

    async def run_turn(self, conversation_id: str, text: str) -> TurnResult:
        ctx = RunContext(
            conversation_id=conversation_id,
            query=text,
            config=self._config,
            log=self._log.bind(conversation_id=conversation_id),
        )
        ctx.log.info("turn_started", query_length=len(text))
        try:
            result = await self._run(ctx)
        except CopilotError as e:
            result = await self._fail(ctx, e)
        finally:
            self._transition(ctx, LoopState.TERMINAL)
            self._drop_prompts(ctx)
        ctx.log.info("turn_finished", status=result.status, depth=ctx.depth)
        return result

    async def _run(self, ctx: RunContext) -> TurnResult:
        await self._append(ctx, Message.user(ctx.query))

        self._transition(ctx, LoopState.AWAITING_MODEL)
        reply = await self._request(ctx, self._registry.catalog() or None)

        while True:
            calls = reply.tool_calls or []
            if not calls:
                if reply.has_content:
                    return await self._complete(ctx, reply.content)
                if ctx.results:
                    return await self._conclude(ctx, ConclusionReason.EMPTY_ANSWER)
                if reply.empty_stream:
                    raise EmptyModelResponse(
                        "The chat API closed the stream without sending any chunks.",
                        empty_stream=True,
                    )
                raise EmptyModelResponse("The model returned neither an answer nor a tool call.")

            limit = ctx.config.max_tool_calls_per_turn
            if len(calls) > limit:
                ctx.log.warning("tool_calls_truncated", requested=len(calls), limit=limit)
                calls = calls[:limit]
            await self._append(ctx, Message.assistant(reply.content or None, calls, depth=ctx.depth))
            if reply.has_content:
                await self._events.on_assistant_text(reply.content)

            if ctx.depth >= ctx.config.max_recursion_depth:
                for call in calls:
                    await self._append(
                        ctx,
                        Message.tool(call, prompts.not_executed(call.name, "recursion limit")),
                    )
                raise RecursionLimitExceeded(ctx.depth, ctx.config.max_recursion_depth)
            ctx.depth += 1

            batch = await self._dispatch(ctx, calls)
            self._transition(ctx, LoopState.AWAITING_TOOL_RESULTS)
            state = await batch.wait()
            ctx.log.info("batch_settled", batch_id=batch.id, state=state, results=len(batch.results))

            if state is BatchState.CANCELLED:
                return await self._conclude(ctx, ConclusionReason.CANCELLED)
            if self._sufficiency is not None and self._sufficiency(ctx.results, ctx.query):
                ctx.log.info("results_sufficient", results=len(ctx.results))
                return await self._conclude(ctx, ConclusionReason.SUFFICIENT)

            self._transition(ctx, LoopState.AWAITING_MODEL)
            reply = await self._resubmit(ctx)

    # ── dispatch ────────────────────────────────────────────────

    async def _dispatch(self, ctx: RunContext, calls: list[ToolCallRequest]) -> Batch:
        self._transition(ctx, LoopState.DISPATCHING_TOOLS)
        auto: list[ToolCallRequest] = []
        manual: list[tuple[ToolCallRequest, bool]] = []
        for call in calls:
            descriptor = self._registry.get(call.name)
            route_missing = self._registry.find_owner(call.name) is None
            if descriptor is not None and descriptor.auto_execute and not route_missing:
                auto.append(call)
            else:
                manual.append((call, route_missing))

        batch = Batch(calls, auto_count=len(auto), recursion_depth=ctx.depth)
        ctx.batches.append(batch)
        ctx.log.info(
            "batch_created",
            batch_id=batch.id,
            depth=ctx.depth,
            auto=batch.auto_count,
            manual=batch.manual_count,
        )

        for call in auto:
            async with self._tool_lock:
                outcome = await self._executor.execute(call)
                await self._record(ctx, batch, outcome)

        for i, (call, route_missing) in enumerate(manual):
            if batch.cancelled:
                async with self._tool_lock:
                    for skipped, _ in manual[i:]:
                        note = prompts.not_executed(skipped.name, "cancelled")
                        await self._append(ctx, Message.tool(skipped, note))
                break
            prompt = PendingPrompt(
                id=f"prompt-{uuid.uuid4().hex[:12]}",
                call=call,
                batch=batch,
                context=ctx,
                route_missing=route_missing,
            )
            self._prompts[prompt.id] = prompt
            if route_missing:
                ctx.log.warning("tool_route_missing", tool=call.name, prompt_id=prompt.id)
            await self._events.on_tool_prompt_required(call, batch.id, prompt.id, route_missing)
        return batch

    async def _record(self, ctx: RunContext, batch: Batch, outcome: ToolOutcome) -> None:
        await self._append(
            ctx, Message.tool(outcome.call, outcome.content(), ok=outcome.ok, batch_id=batch.id)
        )
        ctx.results.append(outcome)
        await self._events.on_tool_result(outcome.call, outcome)
        if batch.record(outcome):
            ctx.log.info("batch_complete", batch_id=batch.id, results=len(batch.results))

    # ── callbacks from the UI ───────────────────────────────────

    async def confirm_tool(self, prompt_id: str) -> ToolOutcome | None:
        """Execute a manual tool the user approved."""
        prompt = self._prompts.pop(prompt_id, None)
        if prompt is None:
            logger.warning("tool_prompt_unknown", prompt_id=prompt_id)
            return None
        ctx, batch = prompt.context, prompt.batch
        ctx.log.info("tool_confirmed", tool=prompt.call.name, batch_id=batch.id)
        try:
            async with self._tool_lock:
                outcome = await self._executor.execute(prompt.call)
                await self._record(ctx, batch, outcome)
        except PersistenceFailure as e:
            batch.abort(e)
            return None
        return outcome

    async def cancel_tool(self, prompt_id: str) -> bool:
        """Cancel a manual tool, and with it the rest of its batch."""
        prompt = self._prompts.pop(prompt_id, None)
        if prompt is None:
            logger.warning("tool_prompt_unknown", prompt_id=prompt_id)
            return False
        ctx, batch = prompt.context, prompt.batch
        if not batch.cancel():
            return False
        ctx.log.info("tool_cancelled", tool=prompt.call.name, batch_id=batch.id)

        others = [p for p in self._prompts.values() if p.batch is batch]
        for other in others:
            del self._prompts[other.id]
        try:
            async with self._tool_lock:
                note = prompts.not_executed(prompt.call.name, "cancelled by user")
                await self._append(ctx, Message.tool(prompt.call, note))
                for other in others:
                    note = prompts.not_executed(other.call.name, "cancelled")
                    await self._append(ctx, Message.tool(other.call, note))
        except PersistenceFailure as e:
            batch.abort(e)
            return True
        batch.settle()
        return True

    def _drop_prompts(self, ctx: RunContext) -> None:
        for prompt_id in [p.id for p in self._prompts.values() if p.context is ctx]:
            del self._prompts[prompt_id]

    # ── model requests ──────────────────────────────────────────

    def _system_prompt(self, ctx: RunContext, with_tools: bool) -> str:
        base = self._config.system_prompt or (
            prompts.SYSTEM_FUNCTION_CALLING if with_tools else prompts.SYSTEM_DEFAULT
        )
        return base + prompts.owner_guidance(self._conversations.owner_emails(ctx.conversation_id))

    def _history(self, ctx: RunContext) -> list[Message]:
        return self._conversations.require(ctx.conversation_id).messages

    def _model_messages(
        self, ctx: RunContext, with_tools: bool, max_history: int | None = None
    ) -> list[dict[str, Any]]:
        return build_messages(
            self._history(ctx),
            system_prompt=self._system_prompt(ctx, with_tools),
            max_history=max_history or ctx.config.max_message_history,
            include_tool_results=ctx.config.include_tool_results,
            max_tool_result_length=ctx.config.max_tool_result_length,
        )

    async def _send(
        self, messages: list[dict[str, Any]], tools: list[dict[str, Any]] | None
    ) -> StreamResult:
        return await StreamAccumulator().consume(self._chat.send_turn(messages, tools))

    async def _request(self, ctx: RunContext, tools: list[dict[str, Any]] | None) -> StreamResult:
        result = await self._send(self._model_messages(ctx, tools is not None), tools)
        ctx.log.debug(
            "model_replied",
            content_length=len(result.content),
            tool_calls=len(result.tool_calls or []),
            skipped_frames=result.skipped_frames,
        )
        return result

    async def _resubmit(self, ctx: RunContext) -> StreamResult:
        """Send tool results back to the model, retrying transport failures."""
        retries = ctx.config.resubmit_retries
        attempt = 0
        while True:
            try:
                return await self._request(ctx, self._registry.catalog() or None)
            except ChatTransportError as e:
                if attempt >= retries:
                    raise ResubmissionTransportError(
                        f"Could not send tool results to the model after {attempt + 1} attempts: {e}"
                    ) from e
                delay = ctx.config.retry_backoff * (2**attempt)
                ctx.log.warning("resubmit_retry", attempt=attempt + 1, delay=delay, error=str(e))
                await asyncio.sleep(delay)
                attempt += 1

    # ── terminal paths ──────────────────────────────────────────

    async def _complete(self, ctx: RunContext, content: str) -> TurnResult:
        await self._append(ctx, Message.assistant(content, depth=ctx.depth))
        claimed = claimed_actions(content, self._registry.tool_names())
        if claimed:
            ctx.log.warning("claimed_action_without_tool_call", tools=claimed)
        elif not is_final_answer(content):
            ctx.log.info("answer_without_response_section", depth=ctx.depth)
        await self._events.on_assistant_text(content)
        await self._events.on_turn_complete(content)
        return TurnResult(
            content=content,
            status=TurnStatus.COMPLETED,
            depth=ctx.depth,
            results=list(ctx.results),
            claimed_actions=claimed,
        )

    def _conclusion_messages(
        self, ctx: RunContext, reason: ConclusionReason, attempt: int
    ) -> list[dict[str, Any]]:
        compact = attempt > 0
        instruction = {
            "role": "user",
            "content": prompts.conclusion_prompt(reason, ctx.query, ctx.results, compact=compact),
        }
        if attempt >= 2:
            return [instruction]
        window = CONCLUSION_WINDOW if compact else None
        return self._model_messages(ctx, with_tools=False, max_history=window) + [instruction]

    async def _conclude(self, ctx: RunContext, reason: ConclusionReason) -> TurnResult:
        """Ask for a final answer with tools disallowed, falling back to a summary."""
        async with self._tool_lock:
            # wait for an in-flight execution to record its result
            pass
        ctx.log.info("conclusion_started", reason=reason, results=len(ctx.results))

        if reason is ConclusionReason.CANCELLED and not ctx.results:
            batch = ctx.batches[-1] if ctx.batches else None
            note = prompts.cancelled_note(batch.tools if batch else [])
            await self._append(ctx, Message.assistant(note, cancelled=True))
            await self._events.on_assistant_text(note)
            await self._events.on_turn_complete(note)
            return TurnResult(content=note, status=TurnStatus.CANCELLED, depth=ctx.depth)

        self._transition(ctx, LoopState.AWAITING_MODEL)
        for attempt in range(ctx.config.conclusion_retries + 1):
            try:
                reply = await self._send(self._conclusion_messages(ctx, reason, attempt), None)
            except ChatTransportError as e:
                ctx.log.warning("conclusion_request_failed", attempt=attempt, error=str(e))
                continue
            if reply.tool_calls:
                ctx.log.warning("conclusion_tool_calls_ignored", count=len(reply.tool_calls))
            if reply.has_content:
                await self._append(ctx, Message.assistant(reply.content, conclusion=str(reason)))
                await self._events.on_assistant_text(reply.content)
                await self._events.on_turn_complete(reply.content)
                return TurnResult(
                    content=reply.content,
                    status=TurnStatus.CONCLUDED,
                    depth=ctx.depth,
                    results=list(ctx.results),
                )
            ctx.log.warning("conclusion_empty", attempt=attempt)

        summary = prompts.results_summary(ctx.query, ctx.results)
        await self._append(ctx, Message.assistant(summary, summary=True))
        await self._events.on_assistant_text(summary)
        await self._events.on_turn_complete(summary)
        return TurnResult(
            content=summary, status=TurnStatus.SUMMARY, depth=ctx.depth, results=list(ctx.results)
        )

    async def _fail(self, ctx: RunContext, error: CopilotError) -> TurnResult:
        ctx.log.error("turn_failed", error_type=type(error).__name__, error=str(error))
        note = prompts.error_note(error)
        if isinstance(error, ResubmissionTransportError) and ctx.results:
            note = prompts.results_summary(ctx.query, ctx.results) + "\n\n" + note
        try:
            await self._append(ctx, Message.assistant(note, error=type(error).__name__))
        except PersistenceFailure as e:
            ctx.log.error("error_note_not_saved", error=str(e))
        await self._events.on_turn_failed(error)
        return TurnResult(
            content=note,
            status=TurnStatus.FAILED,
            error=error,
            depth=ctx.depth,
            results=list(ctx.results),
        )

    # ── helpers ─────────────────────────────────────────────────

    async def _append(self, ctx: RunContext, message: Message) -> None:
        await self._conversations.append(ctx.conversation_id, message)

    @staticmethod
    def _transition(ctx: RunContext, state: LoopState) -> None:
        if ctx.state is not state:
            ctx.log.debug("loop_state", previous=ctx.state, state=state)
            ctx.state = state
