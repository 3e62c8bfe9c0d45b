"""Agent run engine.

Every run walks the same state machine::

    validating_input -> building_context -> invoking_model
        -> (executing_tools -> invoking_model)* -> validating_output
        -> persisting -> done

and may fail from any non-terminal state. The machine is an async event
generator (:meth:`Agent.astream`); the blocking and awaitable entry points
drain it and return the final :class:`RunResult`.
"""

import asyncio
import copy
import logging
import time
from collections.abc import AsyncIterator, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel

from cadre.agent.cancellation import CancellationToken
from cadre.agent.events import (
    ContentDelta,
    RunCompleted,
    RunEvent,
    RunFailed,
    RunStarted,
    StateChanged,
    ToolApprovalRequested,
    ToolCallCompleted,
    ToolCallStarted,
    WarningRaised,
)
from cadre.agent.guardrails import Guardrail, apply_guardrails
from cadre.agent.state import RunError, RunResult, RunState
from cadre.context.assembler import CompressionPolicy, ContextAssembler, render_content
from cadre.context.tokens import estimate_total_tokens
from cadre.errors import (
    InvalidInput,
    InvalidOutput,
    ModelError,
    RunFailure,
    RunWarning,
    ToolLoopExceeded,
    WarningCode,
)
from cadre.knowledge.base import KnowledgeRetriever
from cadre.llm.client import CompletionResponse, LLMClient, Message, StreamChunk
from cadre.memory.manager import MemoryManager
from cadre.memory.summary import SessionSummarizer
from cadre.storage.base import MemoryStore, SessionStore
from cadre.storage.in_memory import InMemoryStorage
from cadre.storage.locks import session_locks
from cadre.storage.schema import (
    MemoryRecord,
    RunMetrics,
    RunRecord,
    RunStatus,
    SessionRecord,
)
from cadre.tools.approval import (
    ApprovalCallback,
    ApprovalDecision,
    ApprovalGate,
    ApprovalRequest,
    ApprovalStatus,
    ask_callback,
)
from cadre.tools.base import Tool, ToolFunction, ToolResult, ToolStatus
from cadre.tools.registry import ToolRegistry
from cadre.validation import Schema, SchemaMismatch, schema_instructions, validate_payload

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTIONS = "You are a helpful AI assistant."

REFORMAT_PROMPT = (
    "Your previous reply did not match the required output schema: {error}\n"
    "Reply again with only the corrected JSON object."
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def merge_state(
    current: dict[str, Any],
    before: dict[str, Any],
    after: dict[str, Any],
) -> dict[str, Any]:
    """Apply the keys a run changed (``before`` -> ``after``) onto ``current``.

    Keys the run did not touch keep whatever another run committed.
    """
    merged = dict(current)
    for key, value in after.items():
        if key not in before or before[key] != value:
            merged[key] = value
    for key in before:
        if key not in after:
            merged.pop(key, None)
    return merged


async def _next_chunk(chunks: AsyncIterator[StreamChunk]) -> StreamChunk | None:
    try:
        return await anext(chunks)
    except StopAsyncIteration:
        return None


@dataclass
class _Run:
    """Mutable bookkeeping for one run."""

    run_id: str
    session_id: str
    user_id: str | None
    started: float = field(default_factory=time.perf_counter)
    current: RunState = RunState.VALIDATING_INPUT
    session: SessionRecord | None = None
    input: Any = None
    output: Any = None
    initial_state: dict[str, Any] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)
    warnings: list[RunWarning] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    metrics: RunMetrics = field(default_factory=RunMetrics)


class Agent:
    """Run engine for one configured agent.

    One instance serves many runs, concurrently if needed; per-run state
    lives in the run. Leaders of a :class:`~cadre.team.Team` are plain
    agents with ``role="leader"``.
    """

    def __init__(
        self,
        llm: LLMClient,
        name: str = "agent",
        *,
        agent_id: str | None = None,
        role: Literal["member", "leader"] = "member",
        description: str = "",
        instructions: str = DEFAULT_INSTRUCTIONS,
        role_context: str = "",
        tools: ToolRegistry | Iterable[Tool | ToolFunction] | None = None,
        storage: SessionStore | None = None,
        memory_store: MemoryStore | None = None,
        knowledge: KnowledgeRetriever | None = None,
        search_knowledge: bool | None = None,
        knowledge_top_k: int = 5,
        knowledge_filters: dict[str, Any] | None = None,
        add_history_to_context: bool = True,
        num_history_runs: int | None = 5,
        add_session_state_to_context: bool = False,
        session_state: dict[str, Any] | None = None,
        compression: CompressionPolicy | None = None,
        input_schema: Schema | None = None,
        output_schema: Schema | None = None,
        guardrails: Sequence[Guardrail] = (),
        requires_confirmation: bool = False,
        approval_gate: ApprovalGate | None = None,
        confirm_callback: ApprovalCallback | None = None,
        max_tool_iterations: int = 10,
        model_timeout: float | None = None,
        tool_timeout: float | None = None,
        retrieval_timeout: float | None = None,
        approval_timeout: float | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        generation_params: dict[str, Any] | None = None,
        enable_user_memories: bool = False,
        add_memories_to_context: bool | None = None,
        memory_mode: Literal["background", "awaited"] = "background",
        memory_manager: MemoryManager | None = None,
        summary_every_n_runs: int | None = None,
        summarizer: SessionSummarizer | None = None,
        owner_type: Literal["agent", "team", "workflow"] = "agent",
    ):
        """Initialize the agent.

        Args:
            llm: Model client
            name: Agent name, also shown to team leaders
            agent_id: Owner id recorded on sessions and runs (defaults to name)
            role: "member" or "leader"
            description: What the agent is good at
            instructions: Static system instructions
            role_context: Extra system section describing the agent's role
            tools: Registry or iterable of tools/functions
            storage: Session store (defaults to a private in-memory store)
            memory_store: Memory store (defaults to ``storage`` when it is one)
            knowledge: Retriever searched with the run input
            search_knowledge: Whether to search ``knowledge`` (default: when given)
            max_tool_iterations: Maximum tool/model cycles per run
            model_timeout: Seconds per model call (per chunk when streaming)
            tool_timeout: Seconds per tool call
            retrieval_timeout: Seconds per knowledge search
            approval_timeout: Seconds to wait for an approval decision
            confirm_callback: Called for confirmation-gated tools when no
                approval gate is set. Takes an ApprovalRequest, returns bool.
                With neither, gated tools are denied.
            memory_mode: Run memory extraction in the background or await it
            summary_every_n_runs: Regenerate the session summary this often
        """
        self.llm = llm
        self.name = name
        self.agent_id = agent_id or name
        self.role = role
        self.description = description
        self.instructions = instructions
        self.role_context = role_context
        self.tools = tools if isinstance(tools, ToolRegistry) else ToolRegistry(tools)
        self.storage: SessionStore = storage if storage is not None else InMemoryStorage()
        if memory_store is None and hasattr(self.storage, "list_memories"):
            memory_store = self.storage  # type: ignore[assignment]
        self.memory_store = memory_store
        self.knowledge = knowledge
        self.session_state = dict(session_state or {})
        self.input_schema = input_schema
        self.output_schema = output_schema
        self.guardrails = list(guardrails)
        self.requires_confirmation = requires_confirmation
        self.approval_gate = approval_gate
        self.confirm_callback = confirm_callback
        self.max_tool_iterations = max_tool_iterations
        self.model_timeout = model_timeout
        self.tool_timeout = tool_timeout
        self.approval_timeout = approval_timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.generation_params = dict(generation_params or {})
        self.owner_type = owner_type

        self.memory_mode = memory_mode
        self.memory_manager = memory_manager
        if enable_user_memories and memory_manager is None and memory_store is not None:
            self.memory_manager = MemoryManager(llm, memory_store)
        if add_memories_to_context is None:
            add_memories_to_context = self.memory_manager is not None
        self.add_memories_to_context = add_memories_to_context

        self.summary_every_n_runs = summary_every_n_runs
        self.summarizer = summarizer
        if summary_every_n_runs and summarizer is None:
            self.summarizer = SessionSummarizer(llm)

        self.assembler = ContextAssembler(
            instructions=instructions,
            add_history_to_context=add_history_to_context,
            num_history_runs=num_history_runs,
            search_knowledge=knowledge is not None if search_knowledge is None else search_knowledge,
            knowledge=knowledge,
            knowledge_top_k=knowledge_top_k,
            knowledge_filters=knowledge_filters,
            retrieval_timeout=retrieval_timeout,
            compression=compression,
            add_session_state_to_context=add_session_state_to_context,
        )

        self._background: set[asyncio.Task[None]] = set()

    def __repr__(self) -> str:
        return f"Agent(name={self.name!r}, role={self.role!r}, tools={self.tools.names})"

    # Entry points

    async def astream(
        self,
        input: Any,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        session_state: dict[str, Any] | None = None,
        cancel: CancellationToken | None = None,
        stream: bool = True,
    ) -> AsyncIterator[RunEvent]:
        """Run the agent, yielding events as the run progresses.

        Args:
            input: Text, mapping or model instance
            session_id: Session to run in (created on first use)
            user_id: Active user; sessions of other users are refused
            session_state: Values overriding the session state for this run
            cancel: Token the caller can fire to stop the run
            stream: Stream model output as ContentDelta events

        Yields:
            Run events, ending with RunCompleted or RunFailed
        """
        run = _Run(
            run_id=str(uuid4()),
            session_id=session_id or str(uuid4()),
            user_id=user_id,
        )
        cancel = cancel or CancellationToken()

        logger.info("Run %s of '%s' started on session %s", run.run_id, self.name, run.session_id)
        yield RunStarted(run.run_id, run.session_id, self.agent_id)

        try:
            async for event in self._execute(run, input, session_state, cancel, stream):
                yield event
        except RunFailure as failure:
            if failure.state is None:
                failure.state = run.current.value
            result = await self._fail(run, failure)
            yield StateChanged(run.run_id, RunState.FAILED)
            yield RunFailed(run.run_id, result)
            return

        run.current = RunState.DONE
        logger.info(
            "Run %s completed in %.0fms (%d model calls, %d tool calls)",
            run.run_id,
            run.metrics.latency_ms,
            run.metrics.model_calls,
            run.metrics.tool_calls,
        )
        yield StateChanged(run.run_id, RunState.DONE)
        yield RunCompleted(run.run_id, self._result(run))

    async def arun(self, input: Any, **kwargs: Any) -> RunResult:
        """Run the agent and return the final result.

        Accepts the keyword arguments of :meth:`astream`.
        """
        kwargs.setdefault("stream", False)
        result: RunResult | None = None
        async for event in self.astream(input, **kwargs):
            if isinstance(event, (RunCompleted, RunFailed)):
                result = event.result
        assert result is not None
        return result

    def run(self, input: Any, **kwargs: Any) -> RunResult:
        """Blocking version of :meth:`arun` for code without an event loop."""

        async def main() -> RunResult:
            try:
                return await self.arun(input, **kwargs)
            finally:
                await self.wait_for_background()

        return asyncio.run(main())

    def stream(self, input: Any, **kwargs: Any) -> Iterator[RunEvent]:
        """Blocking iterator over the events of :meth:`astream`."""
        loop = asyncio.new_event_loop()
        events = self.astream(input, **kwargs)
        try:
            while True:
                try:
                    yield loop.run_until_complete(anext(events))
                except StopAsyncIteration:
                    break
        finally:
            loop.run_until_complete(events.aclose())
            loop.run_until_complete(self.wait_for_background())
            loop.close()

    async def wait_for_background(self) -> None:
        """Wait for background memory updates started by earlier runs."""
        pending = [task for task in self._background if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # State machine

    def _enter(self, run: _Run, state: RunState) -> StateChanged:
        run.current = state
        logger.debug("Run %s -> %s", run.run_id, state)
        return StateChanged(run.run_id, state)

    def _warn(self, run: _Run, warning: RunWarning) -> WarningRaised:
        run.warnings.append(warning)
        return WarningRaised(run.run_id, warning)

    def _extra_instructions(self) -> list[str]:
        sections = [self.role_context] if self.role_context else []
        if self.output_schema is not None:
            sections.append(schema_instructions(self.output_schema))
        return sections

    async def _execute(
        self,
        run: _Run,
        raw_input: Any,
        overrides: dict[str, Any] | None,
        cancel: CancellationToken,
        stream: bool,
    ) -> AsyncIterator[RunEvent]:
        yield self._enter(run, RunState.VALIDATING_INPUT)
        cancel.raise_if_cancelled()
        value = raw_input
        if self.input_schema is not None:
            try:
                value = validate_payload(raw_input, self.input_schema)
            except SchemaMismatch as e:
                raise InvalidInput(f"Input does not match the input schema: {e}") from e
        value, warnings = apply_guardrails(self.guardrails, value, "input")
        for warning in warnings:
            yield self._warn(run, warning)
        run.input = value
        input_text = render_content(value)

        yield self._enter(run, RunState.BUILDING_CONTEXT)
        session = await self._open_session(run)
        run.initial_state = copy.deepcopy(session.state)
        run.state = copy.deepcopy(session.state)
        run.state.update(copy.deepcopy(overrides or {}))

        context = await cancel.guard(
            self.assembler.assemble(
                input_text,
                session=session,
                runs=self.storage.load_runs(run.session_id),
                memories=self._memories(run.user_id),
                state=run.state,
                extra_instructions=self._extra_instructions(),
            ),
            RunState.BUILDING_CONTEXT,
        )
        for warning in context.warnings:
            yield self._warn(run, warning)
        run.messages = list(context.messages)

        tool_schemas = self.tools.schemas() or None
        iterations = 0
        while True:
            yield self._enter(run, RunState.INVOKING_MODEL)
            response: CompletionResponse | None = None
            async for item in self._invoke(run, run.messages, tool_schemas, stream, cancel):
                if isinstance(item, CompletionResponse):
                    response = item
                else:
                    yield item
            assert response is not None

            if not response.tool_calls:
                break

            iterations += 1
            if iterations > self.max_tool_iterations:
                raise ToolLoopExceeded(
                    f"Model kept requesting tools after {self.max_tool_iterations} iterations",
                    state=RunState.EXECUTING_TOOLS,
                )

            yield self._enter(run, RunState.EXECUTING_TOOLS)
            async for event in self._execute_tools(run, response, cancel):
                yield event

        content = response.content
        run.messages.append(Message(role="assistant", content=content))

        yield self._enter(run, RunState.VALIDATING_OUTPUT)
        output: Any = content
        if self.output_schema is not None:
            try:
                output = validate_payload(content, self.output_schema)
            except SchemaMismatch as e:
                logger.info("Run %s output did not match the schema, asking to reformat", run.run_id)
                run.messages.append(Message(role="user", content=REFORMAT_PROMPT.format(error=e)))
                retry: CompletionResponse | None = None
                async for item in self._invoke(run, run.messages, None, False, cancel):
                    if isinstance(item, CompletionResponse):
                        retry = item
                assert retry is not None
                run.messages.append(Message(role="assistant", content=retry.content))
                try:
                    output = validate_payload(retry.content, self.output_schema)
                except SchemaMismatch as retry_error:
                    raise InvalidOutput(
                        f"Output does not match the output schema after reformatting: {retry_error}"
                    ) from retry_error
                yield self._warn(
                    run,
                    RunWarning(WarningCode.OUTPUT_REFORMATTED, f"Output reformatted after: {e}"),
                )

        output, warnings = apply_guardrails(self.guardrails, output, "output")
        if warnings and self.output_schema is not None:
            # A rewrite must still satisfy the schema
            try:
                output = validate_payload(output, self.output_schema)
            except SchemaMismatch as e:
                raise InvalidOutput(f"Guardrail rewrite does not match the output schema: {e}") from e
        for warning in warnings:
            yield self._warn(run, warning)
        run.output = "" if output is None else output

        yield self._enter(run, RunState.PERSISTING)
        await self._persist(run, RunStatus.COMPLETED)
        async for event in self._after_persist(run, input_text):
            yield event

    async def _open_session(self, run: _Run) -> SessionRecord:
        async with session_locks.lock(run.session_id):
            session = self.storage.load_session(run.session_id)
            if session is None:
                session = self.storage.create_session(
                    SessionRecord(
                        session_id=run.session_id,
                        owner_type=self.owner_type,
                        owner_id=self.agent_id,
                        user_id=run.user_id,
                        state=copy.deepcopy(self.session_state),
                    )
                )
                logger.info("Created session %s for '%s'", run.session_id, self.agent_id)
            elif run.user_id and session.user_id and session.user_id != run.user_id:
                raise InvalidInput(f"Session '{run.session_id}' belongs to another user")

        run.session = session
        run.user_id = run.user_id or session.user_id
        return session

    def _memories(self, user_id: str | None) -> list[MemoryRecord]:
        if not (self.add_memories_to_context and user_id and self.memory_store is not None):
            return []
        return self.memory_store.list_memories(user_id)

    async def _call_model(self, awaitable: Any) -> Any:
        if self.model_timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self.model_timeout)

    async def _invoke(
        self,
        run: _Run,
        messages: list[Message],
        tools: list[dict[str, Any]] | None,
        stream: bool,
        cancel: CancellationToken,
    ) -> AsyncIterator[ContentDelta | CompletionResponse]:
        """Call the model once, yielding content deltas and then the response."""
        run.metrics.model_calls += 1
        params: dict[str, Any] = dict(self.generation_params)
        params.update(temperature=self.temperature, max_tokens=self.max_tokens)

        try:
            if not stream:
                response = await cancel.guard(
                    self._call_model(self.llm.complete(messages, tools=tools, **params)),
                    RunState.INVOKING_MODEL,
                )
            else:
                parts: list[str] = []
                final: StreamChunk | None = None
                chunks = self.llm.stream_complete(messages, tools=tools, **params)
                try:
                    while True:
                        chunk = await cancel.guard(
                            self._call_model(_next_chunk(chunks)), RunState.INVOKING_MODEL
                        )
                        if chunk is None:
                            break
                        if chunk.content:
                            parts.append(chunk.content)
                            yield ContentDelta(run.run_id, chunk.content)
                        if chunk.done:
                            final = chunk
                finally:
                    aclose = getattr(chunks, "aclose", None)
                    if aclose is not None:
                        await aclose()
                response = CompletionResponse(
                    content="".join(parts),
                    tool_calls=(final.tool_calls or None) if final else None,
                    finish_reason=(final.finish_reason or "stop") if final else "stop",
                    usage=final.usage if final else None,
                )
        except RunFailure:
            raise
        except TimeoutError as e:
            logger.error("Model call of run %s timed out after %ss", run.run_id, self.model_timeout)
            raise ModelError(
                f"Model call timed out after {self.model_timeout}s", state=RunState.INVOKING_MODEL
            ) from e
        except Exception as e:
            logger.error("Model call of run %s failed: %s", run.run_id, e)
            raise ModelError(f"Model call failed: {e}", state=RunState.INVOKING_MODEL) from e

        if response.usage is not None:
            run.metrics.input_tokens += response.usage.input_tokens
            run.metrics.output_tokens += response.usage.output_tokens
        else:
            run.metrics.input_tokens += estimate_total_tokens(messages)
            run.metrics.output_tokens += len(response.content) // 4

        yield response

    async def _execute_tools(
        self,
        run: _Run,
        response: CompletionResponse,
        cancel: CancellationToken,
    ) -> AsyncIterator[RunEvent]:
        calls = response.tool_calls or []
        run.messages.append(Message(role="assistant", content=response.content, tool_calls=calls))

        # Unknown names fail the run before anything executes
        resolved = [(call, self.tools.resolve(call.name)) for call in calls]

        results: dict[int, ToolResult] = {}
        approved = []
        for index, (call, target) in enumerate(resolved):
            if self.requires_confirmation or target.requires_confirmation:
                decision: ApprovalDecision | None = None
                async for item in self._approve(run, call.id, call.name, call.arguments, target, cancel):
                    if isinstance(item, ApprovalDecision):
                        decision = item
                    else:
                        yield item
                assert decision is not None

                if not decision.approved:
                    reason = f": {decision.reason}" if decision.reason else ""
                    logger.info("Tool '%s' denied in run %s%s", call.name, run.run_id, reason)
                    results[index] = ToolResult(
                        tool_call_id=call.id,
                        name=call.name,
                        content=f"[DENIED] User declined to execute '{call.name}'{reason}",
                        status=ToolStatus.DENIED,
                        arguments=call.arguments,
                    )
                    yield self._warn(
                        run,
                        RunWarning(WarningCode.TOOL_DENIED, f"Tool '{call.name}' was denied{reason}"),
                    )
                    continue

            approved.append((index, call, target))

        for _, call, _ in approved:
            yield ToolCallStarted(run.run_id, call.id, call.name, call.arguments)

        if approved:
            run.metrics.tool_calls += len(approved)
            outcomes = await cancel.guard(
                asyncio.gather(
                    *(
                        self.tools.invoke(
                            target,
                            call.arguments,
                            tool_call_id=call.id,
                            timeout=self.tool_timeout,
                            session_state=run.state,
                        )
                        for _, call, target in approved
                    )
                ),
                RunState.EXECUTING_TOOLS,
            )
            for (index, _, _), outcome in zip(approved, outcomes, strict=True):
                results[index] = outcome

        # Results go back to the model in request order
        for index in range(len(calls)):
            result = results[index]
            run.tool_results.append(result)
            run.messages.append(
                Message(
                    role="tool",
                    content=result.content,
                    tool_call_id=result.tool_call_id,
                    name=result.name,
                )
            )
            if result.status in (ToolStatus.ERROR, ToolStatus.TIMEOUT):
                yield self._warn(run, RunWarning(WarningCode.TOOL_FAILED, result.content))
            yield ToolCallCompleted(run.run_id, result)

    async def _approve(
        self,
        run: _Run,
        tool_call_id: str,
        name: str,
        arguments: dict[str, Any],
        target: Tool,
        cancel: CancellationToken,
    ) -> AsyncIterator[RunEvent | ApprovalDecision]:
        request = ApprovalRequest(
            tool_name=name,
            arguments=arguments,
            tool_call_id=tool_call_id,
            description=target.schema.description,
            run_id=run.run_id,
            session_id=run.session_id,
            user_id=run.user_id,
        )

        if self.approval_gate is not None:
            pending = self.approval_gate.open(request, timeout=self.approval_timeout)
            yield ToolApprovalRequested(run.run_id, pending.approval_id, tool_call_id, name, arguments)
            yield await cancel.guard(self.approval_gate.wait(pending), RunState.EXECUTING_TOOLS)
            return

        if self.confirm_callback is None:
            yield ApprovalDecision(
                status=ApprovalStatus.DENIED,
                reason="requires user confirmation and no approval handler is configured",
            )
            return

        asking = ask_callback(self.confirm_callback, request)
        if self.approval_timeout is not None:
            asking = asyncio.wait_for(asking, timeout=self.approval_timeout)
        try:
            approved = await cancel.guard(asking, RunState.EXECUTING_TOOLS)
        except RunFailure:
            raise
        except TimeoutError:
            yield ApprovalDecision(
                status=ApprovalStatus.TIMEOUT,
                reason=f"no decision within {self.approval_timeout}s",
            )
            return
        except Exception as e:
            logger.warning("Approval callback for '%s' failed: %s", name, e)
            yield ApprovalDecision(status=ApprovalStatus.DENIED, reason=f"approval failed: {e}")
            return

        yield ApprovalDecision(
            status=ApprovalStatus.APPROVED if approved else ApprovalStatus.DENIED,
        )

    # Persistence

    def _record(self, run: _Run, status: RunStatus, error: RunError | None = None) -> RunRecord:
        run.metrics.latency_ms = (time.perf_counter() - run.started) * 1000
        return RunRecord(
            run_id=run.run_id,
            session_id=run.session_id,
            runner_id=self.agent_id,
            user_id=run.user_id,
            status=status,
            input=_jsonable(run.input),
            output=_jsonable(run.output) if status == RunStatus.COMPLETED else None,
            error=error.model_dump(mode="json") if error else None,
            messages=[m.to_dict() for m in run.messages],
            warnings=[{"code": w.code.value, "message": w.message} for w in run.warnings],
            metrics=run.metrics.model_copy(),
        )

    async def _persist(self, run: _Run, status: RunStatus, error: RunError | None = None) -> None:
        record = self._record(run, status, error)
        async with session_locks.lock(run.session_id):
            if status == RunStatus.COMPLETED:
                current = self.storage.get_state(run.session_id)
                run.state = merge_state(current, run.initial_state, run.state)
                self.storage.set_state(run.session_id, run.state)
            self.storage.append_run(run.session_id, record)

    async def _after_persist(self, run: _Run, input_text: str) -> AsyncIterator[RunEvent]:
        if self.memory_manager is not None and run.user_id:
            exchange = [
                Message(role="user", content=input_text),
                Message(role="assistant", content=render_content(run.output)),
            ]
            if self.memory_mode == "awaited":
                try:
                    await self.memory_manager.update(run.user_id, exchange)
                except Exception as e:
                    logger.warning("Memory update for run %s failed: %s", run.run_id, e)
                    yield self._warn(
                        run, RunWarning(WarningCode.MEMORY_UPDATE_FAILED, f"Memory update failed: {e}")
                    )
            else:
                task = asyncio.create_task(self._update_memories(run.run_id, run.user_id, exchange))
                self._background.add(task)
                task.add_done_callback(self._background.discard)

        if self.summarizer is not None and self.summary_every_n_runs:
            await self._maybe_summarize(run)

    async def _update_memories(self, run_id: str, user_id: str, exchange: list[Message]) -> None:
        try:
            await self.memory_manager.update(user_id, exchange)  # type: ignore[union-attr]
        except Exception as e:
            logger.warning("Background memory update for run %s failed: %s", run_id, e)

    async def _maybe_summarize(self, run: _Run) -> None:
        n = self.summary_every_n_runs or 0
        completed = [
            r for r in self.storage.load_runs(run.session_id) if r.status == RunStatus.COMPLETED
        ]
        if not completed or len(completed) % n:
            return

        session = self.storage.load_session(run.session_id)
        previous = session.summary if session is not None else None
        try:
            summary = await self.summarizer.summarize(completed[-n:], previous)  # type: ignore[union-attr]
        except Exception as e:
            logger.warning("Summary of session %s failed: %s", run.session_id, e)
            return
        self.storage.set_summary(run.session_id, summary)
        logger.info("Updated summary of session %s", run.session_id)

    async def _fail(self, run: _Run, failure: RunFailure) -> RunResult:
        error = RunError.from_failure(failure)
        run.current = RunState.FAILED
        logger.warning(
            "Run %s failed in %s: %s (%s)", run.run_id, error.state, error.message, error.code
        )
        if run.session is not None:
            await self._persist(run, RunStatus.FAILED, error)
        else:
            run.metrics.latency_ms = (time.perf_counter() - run.started) * 1000

        return RunResult(
            run_id=run.run_id,
            session_id=run.session_id,
            runner_id=self.agent_id,
            user_id=run.user_id,
            error=error,
            warnings=list(run.warnings),
            messages=list(run.messages),
            tool_results=list(run.tool_results),
            session_state=run.initial_state,
            metrics=run.metrics.model_copy(),
        )

    def _result(self, run: _Run) -> RunResult:
        return RunResult(
            run_id=run.run_id,
            session_id=run.session_id,
            runner_id=self.agent_id,
            user_id=run.user_id,
            content=run.output,
            warnings=list(run.warnings),
            messages=list(run.messages),
            tool_results=list(run.tool_results),
            session_state=copy.deepcopy(run.state),
            metrics=run.metrics.model_copy(),
        )
