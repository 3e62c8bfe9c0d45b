"""Tests for the agent run engine."""

import asyncio

import pytest
from pydantic import BaseModel

from cadre.agent.cancellation import CancellationToken
from cadre.agent.events import (
    ContentDelta,
    RunCompleted,
    RunStarted,
    StateChanged,
    ToolApprovalRequested,
    ToolCallCompleted,
    ToolCallStarted,
)
from cadre.agent.guardrails import Guardrail, GuardrailResult
from cadre.agent.loop import Agent, merge_state
from cadre.agent.state import RunState
from cadre.errors import WarningCode
from cadre.llm.client import CompletionResponse, ToolCall, Usage
from cadre.storage.schema import RunStatus
from cadre.tools import ApprovalGate, ToolStatus, tool


def _calls(*calls: tuple[str, str, dict]) -> CompletionResponse:
    return CompletionResponse(
        content="",
        tool_calls=[ToolCall(id=cid, name=name, arguments=args) for cid, name, args in calls],
        finish_reason="tool_calls",
    )


async def ping(host: str) -> str:
    """Ping a host.

    Args:
        host: Host name
    """
    return f"pong from {host}"


class TestRunBasics:
    @pytest.mark.asyncio
    async def test_simple_response(self, make_llm, storage):
        llm = make_llm(["Hello! I'm here to help."])
        agent = Agent(llm, storage=storage)

        result = await agent.arun("Hi there", session_id="s1")

        assert result.succeeded
        assert result.content == "Hello! I'm here to help."
        assert result.state == RunState.DONE
        assert llm.call_count == 1
        runs = storage.load_runs("s1")
        assert len(runs) == 1
        assert runs[0].status == RunStatus.COMPLETED
        assert runs[0].input == "Hi there"
        assert runs[0].output == "Hello! I'm here to help."

    @pytest.mark.asyncio
    async def test_fresh_session_has_no_history(self, make_llm, storage):
        llm = make_llm(["First answer", "Second answer"])
        agent = Agent(llm, instructions="Be brief.", storage=storage)

        await agent.arun("first question", session_id="s1")
        first = llm.calls[0]["messages"]
        assert [m.role for m in first] == ["system", "user"]
        assert first[0].content == "Be brief."
        assert first[1].content == "first question"

        await agent.arun("second question", session_id="s1")
        second = llm.calls[1]["messages"]
        assert [m.role for m in second] == ["system", "user", "assistant", "user"]
        assert second[1].content == "first question"
        assert second[2].content == "First answer"

    @pytest.mark.asyncio
    async def test_history_disabled(self, make_llm, storage):
        llm = make_llm(["a", "b"])
        agent = Agent(llm, storage=storage, add_history_to_context=False)

        await agent.arun("one", session_id="s1")
        await agent.arun("two", session_id="s1")

        assert [m.role for m in llm.calls[1]["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_usage_feeds_metrics(self, make_llm):
        llm = make_llm([CompletionResponse(content="ok", usage=Usage(input_tokens=12, output_tokens=3))])
        result = await Agent(llm).arun("hi")

        assert result.metrics.input_tokens == 12
        assert result.metrics.output_tokens == 3
        assert result.metrics.model_calls == 1
        assert result.metrics.latency_ms > 0

    def test_blocking_run(self, make_llm):
        llm = make_llm(["sync answer"])
        result = Agent(llm).run("hello")

        assert result.content == "sync answer"

    @pytest.mark.asyncio
    async def test_session_of_another_user_is_refused(self, make_llm, storage):
        llm = make_llm(["hello alice"])
        agent = Agent(llm, storage=storage)
        await agent.arun("hi", session_id="s1", user_id="alice")

        result = await agent.arun("hi", session_id="s1", user_id="bob")

        assert result.error.code == "invalid_input"
        assert llm.call_count == 1

    @pytest.mark.asyncio
    async def test_model_failure(self, make_llm, storage):
        llm = make_llm([RuntimeError("backend down")])
        result = await Agent(llm, storage=storage).arun("hi", session_id="s1")

        assert result.error.code == "model_error"
        assert result.error.state == RunState.INVOKING_MODEL
        assert "backend down" in result.error.message
        assert storage.load_runs("s1")[0].status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_model_timeout(self, make_llm):
        llm = make_llm(["too late"], delay=1.0)
        result = await Agent(llm, model_timeout=0.05).arun("hi")

        assert result.error.code == "model_error"
        assert "timed out" in result.error.message

    @pytest.mark.asyncio
    async def test_failed_runs_are_not_replayed(self, make_llm, storage):
        llm = make_llm([RuntimeError("boom"), "recovered"])
        agent = Agent(llm, storage=storage)

        await agent.arun("first", session_id="s1")
        result = await agent.arun("second", session_id="s1")

        assert result.succeeded
        assert [m.role for m in llm.calls[1]["messages"]] == ["system", "user"]
        statuses = [r.status for r in storage.load_runs("s1")]
        assert statuses == [RunStatus.FAILED, RunStatus.COMPLETED]


class TestInputValidation:
    @pytest.mark.asyncio
    async def test_invalid_input_fails_before_model_call(self, make_llm, storage):
        class Order(BaseModel):
            item: str
            quantity: int

        llm = make_llm(["unused"])
        agent = Agent(llm, storage=storage, input_schema=Order)

        result = await agent.arun({"item": "apple", "quantity": "lots"}, session_id="s1")

        assert result.error.code == "invalid_input"
        assert result.error.state == RunState.VALIDATING_INPUT
        assert llm.call_count == 0
        assert storage.load_session("s1") is None

    @pytest.mark.asyncio
    async def test_valid_model_input_is_rendered_as_json(self, make_llm):
        class Order(BaseModel):
            item: str
            quantity: int

        llm = make_llm(["ordered"])
        result = await Agent(llm, input_schema=Order).arun('{"item": "pear", "quantity": 2}')

        assert result.succeeded
        assert llm.calls[0]["messages"][-1].content == '{"item":"pear","quantity":2}'

    @pytest.mark.asyncio
    async def test_json_schema_input(self, make_llm):
        schema = {
            "type": "object",
            "properties": {"query": {"type": "string"}},
            "required": ["query"],
        }
        llm = make_llm(["unused"])

        result = await Agent(llm, input_schema=schema).arun({"q": "typo"})

        assert result.error.code == "invalid_input"
        assert "query" in result.error.message


class TestTools:
    @pytest.mark.asyncio
    async def test_single_tool_call(self, make_llm, storage):
        llm = make_llm([_calls(("call_1", "ping", {"host": "example.org"})), "It answered."])
        agent = Agent(llm, tools=[ping], storage=storage)

        result = await agent.arun("ping example.org", session_id="s1")

        assert result.content == "It answered."
        assert result.tool_results[0].content == "pong from example.org"
        assert result.metrics.tool_calls == 1
        tool_message = llm.calls[1]["messages"][-1]
        assert tool_message.role == "tool"
        assert tool_message.tool_call_id == "call_1"
        assert llm.calls[0]["tools"][0]["function"]["name"] == "ping"

    @pytest.mark.asyncio
    async def test_results_return_in_request_order(self, make_llm):
        async def slow(label: str) -> str:
            await asyncio.sleep(0.05)
            return f"slow {label}"

        async def fast(label: str) -> str:
            return f"fast {label}"

        llm = make_llm(
            [_calls(("c1", "slow", {"label": "a"}), ("c2", "fast", {"label": "b"})), "done"]
        )
        result = await Agent(llm, tools=[slow, fast]).arun("go")

        tool_messages = [m for m in llm.calls[1]["messages"] if m.role == "tool"]
        assert [m.tool_call_id for m in tool_messages] == ["c1", "c2"]
        assert [r.content for r in result.tool_results] == ["slow a", "fast b"]

    @pytest.mark.asyncio
    async def test_unknown_tool_fails_run(self, make_llm):
        llm = make_llm([_calls(("c1", "teleport", {}))])
        result = await Agent(llm, tools=[ping]).arun("go")

        assert result.error.code == "unknown_tool"
        assert result.error.state == RunState.EXECUTING_TOOLS

    @pytest.mark.asyncio
    async def test_tool_loop_is_bounded(self, make_llm):
        llm = make_llm([_calls((f"c{i}", "ping", {"host": "h"})) for i in range(5)])
        result = await Agent(llm, tools=[ping], max_tool_iterations=2).arun("loop forever")

        assert result.error.code == "tool_loop_exceeded"
        assert llm.call_count == 3
        assert result.metrics.tool_calls == 2

    @pytest.mark.asyncio
    async def test_tool_failure_is_a_warning(self, make_llm):
        async def flaky(x: int) -> str:
            raise ValueError("disk on fire")

        llm = make_llm([_calls(("c1", "flaky", {"x": 1})), "Sorry, that failed."])
        result = await Agent(llm, tools=[flaky]).arun("go")

        assert result.succeeded
        assert result.has_warning(WarningCode.TOOL_FAILED)
        assert result.tool_results[0].status == ToolStatus.ERROR
        assert "disk on fire" in llm.calls[1]["messages"][-1].content

    @pytest.mark.asyncio
    async def test_tool_timeout(self, make_llm):
        async def sleepy() -> str:
            await asyncio.sleep(1)
            return "awake"

        llm = make_llm([_calls(("c1", "sleepy", {})), "gave up"])
        result = await Agent(llm, tools=[sleepy], tool_timeout=0.05).arun("go")

        assert result.succeeded
        assert result.tool_results[0].status == ToolStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_tool_updates_session_state(self, make_llm, storage):
        async def add_item(item: str, session_state: dict) -> str:
            """Add an item to the shopping list.

            Args:
                item: Item to add
            """
            session_state.setdefault("shopping_list", []).append(item)
            return f"Added {item}"

        llm = make_llm([_calls(("c1", "add_item", {"item": "milk"})), "Added milk."])
        agent = Agent(llm, tools=[add_item], storage=storage, session_state={"shopping_list": []})

        result = await agent.arun("add milk", session_id="s1")

        assert result.session_state == {"shopping_list": ["milk"]}
        assert storage.get_state("s1") == {"shopping_list": ["milk"]}
        params = llm.calls[0]["tools"][0]["function"]["parameters"]
        assert "session_state" not in params["properties"]


class TestApprovals:
    @pytest.mark.asyncio
    async def test_denied_confirmation_still_completes(self, make_llm, storage):
        executed = []

        @tool(description="Delete a file", requires_confirmation=True)
        async def delete_file(path: str) -> str:
            executed.append(path)
            return "deleted"

        llm = make_llm([_calls(("c1", "delete_file", {"path": "/tmp/x"})), "I did not delete it."])
        agent = Agent(llm, tools=[delete_file], storage=storage)

        result = await agent.arun("delete /tmp/x", session_id="s1")

        assert result.succeeded
        assert result.state == RunState.DONE
        assert executed == []
        assert result.has_warning(WarningCode.TOOL_DENIED)
        assert result.tool_results[0].status == ToolStatus.DENIED
        assert llm.calls[1]["messages"][-1].content.startswith("[DENIED]")
        assert storage.load_runs("s1")[0].status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_confirm_callback_approves(self, make_llm):
        seen = []

        def confirm(request):
            seen.append((request.tool_name, request.arguments))
            return True

        llm = make_llm([_calls(("c1", "ping", {"host": "a"})), "ok"])
        agent = Agent(llm, tools=[ping], requires_confirmation=True, confirm_callback=confirm)

        result = await agent.arun("go")

        assert seen == [("ping", {"host": "a"})]
        assert result.tool_results[0].status == ToolStatus.SUCCESS
        assert not result.warnings

    @pytest.mark.asyncio
    async def test_approval_gate_decision_from_event_consumer(self, make_llm):
        gate = ApprovalGate(default_timeout=5)
        llm = make_llm([_calls(("c1", "ping", {"host": "a"})), "ok"])
        agent = Agent(llm, tools=[ping], requires_confirmation=True, approval_gate=gate)

        events = []
        async for event in agent.astream("go", stream=False):
            events.append(event)
            if isinstance(event, ToolApprovalRequested):
                assert gate.approve(event.approval_id, user="admin")

        kinds = [type(e) for e in events]
        assert kinds.index(ToolApprovalRequested) < kinds.index(ToolCallStarted)
        assert isinstance(events[-1], RunCompleted)
        assert events[-1].result.tool_results[0].status == ToolStatus.SUCCESS
        assert gate.list_pending() == []

    @pytest.mark.asyncio
    async def test_approval_timeout_denies(self, make_llm):
        def never(request):
            import time

            time.sleep(0.5)
            return True

        llm = make_llm([_calls(("c1", "ping", {"host": "a"})), "ok"])
        agent = Agent(
            llm,
            tools=[ping],
            requires_confirmation=True,
            confirm_callback=never,
            approval_timeout=0.05,
        )

        result = await agent.arun("go")

        assert result.tool_results[0].status == ToolStatus.DENIED
        assert result.has_warning(WarningCode.TOOL_DENIED)


class TestOutputSchema:
    class Forecast(BaseModel):
        city: str
        temperature: float

    @pytest.mark.asyncio
    async def test_valid_output(self, make_llm):
        llm = make_llm(['{"city": "Lisbon", "temperature": 21.5}'])
        result = await Agent(llm, output_schema=self.Forecast).arun("weather?")

        assert result.content == self.Forecast(city="Lisbon", temperature=21.5)
        assert "<output_schema>" in llm.system_prompt()
        assert not result.warnings

    @pytest.mark.asyncio
    async def test_reformat_retry(self, make_llm):
        llm = make_llm(["It is sunny.", '```json\n{"city": "Lisbon", "temperature": 21.5}\n```'])
        result = await Agent(llm, tools=[ping], output_schema=self.Forecast).arun("weather?")

        assert result.content.city == "Lisbon"
        assert result.has_warning(WarningCode.OUTPUT_REFORMATTED)
        assert llm.calls[1]["tools"] is None
        assert "did not match" in llm.calls[1]["messages"][-1].content

    @pytest.mark.asyncio
    async def test_persistent_mismatch_fails(self, make_llm):
        llm = make_llm(["sunny", "still sunny"])
        result = await Agent(llm, output_schema=self.Forecast).arun("weather?")

        assert result.error.code == "invalid_output"
        assert result.error.state == RunState.VALIDATING_OUTPUT
        assert llm.call_count == 2


class TestGuardrails:
    @pytest.mark.asyncio
    async def test_input_rewrite(self, make_llm):
        redact = Guardrail(
            "redact",
            check_input=lambda v: GuardrailResult.rewrite(v.replace("secret", "[redacted]"), "pii"),
        )
        llm = make_llm(["noted"])
        result = await Agent(llm, guardrails=[redact]).arun("my secret plan")

        assert llm.calls[0]["messages"][-1].content == "my [redacted] plan"
        assert result.has_warning(WarningCode.GUARDRAIL_TRIGGERED)

    @pytest.mark.asyncio
    async def test_fatal_output_reject(self, make_llm):
        polite = Guardrail(
            "polite",
            check_output=lambda v: GuardrailResult.reject("rude") if "darn" in v else None,
        )
        llm = make_llm(["darn it"])
        result = await Agent(llm, guardrails=[polite]).arun("hi")

        assert result.error.code == "invalid_output"
        assert "rude" in result.error.message

    @pytest.mark.asyncio
    async def test_non_fatal_reject_is_warning(self, make_llm):
        check = Guardrail(
            "length", check_output=lambda v: GuardrailResult.reject("too short"), fatal=False
        )
        llm = make_llm(["ok"])
        result = await Agent(llm, guardrails=[check]).arun("hi")

        assert result.content == "ok"
        assert result.has_warning(WarningCode.GUARDRAIL_TRIGGERED)

    @pytest.mark.asyncio
    async def test_output_rewrite_must_match_schema(self, make_llm, storage):
        class Out(BaseModel):
            answer: str

        clobber = Guardrail(
            "clobber", check_output=lambda v: GuardrailResult.rewrite("not a schema object")
        )
        llm = make_llm(['{"answer": "42"}'])
        agent = Agent(llm, output_schema=Out, guardrails=[clobber], storage=storage)

        result = await agent.arun("hi", session_id="s1")

        assert not result.succeeded
        assert result.error.code == "invalid_output"
        assert storage.load_runs("s1")[0].status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_output_rewrite_matching_schema_is_kept(self, make_llm):
        class Out(BaseModel):
            answer: str

        soften = Guardrail(
            "soften", check_output=lambda v: GuardrailResult.rewrite(Out(answer=v.answer.lower()))
        )
        llm = make_llm(['{"answer": "YES"}'])
        result = await Agent(llm, output_schema=Out, guardrails=[soften]).arun("hi")

        assert result.content == Out(answer="yes")
        assert result.has_warning(WarningCode.GUARDRAIL_TRIGGERED)


class TestStreaming:
    @pytest.mark.asyncio
    async def test_event_sequence(self, make_llm):
        llm = make_llm(["Hello there friend"])
        events = [event async for event in Agent(llm).astream("hi", session_id="s1")]

        assert isinstance(events[0], RunStarted)
        assert isinstance(events[-1], RunCompleted)
        deltas = "".join(e.content for e in events if isinstance(e, ContentDelta))
        assert deltas == "Hello there friend"
        states = [e.state for e in events if isinstance(e, StateChanged)]
        assert states == [
            RunState.VALIDATING_INPUT,
            RunState.BUILDING_CONTEXT,
            RunState.INVOKING_MODEL,
            RunState.VALIDATING_OUTPUT,
            RunState.PERSISTING,
            RunState.DONE,
        ]

    @pytest.mark.asyncio
    async def test_tool_events(self, make_llm):
        llm = make_llm([_calls(("c1", "ping", {"host": "a"})), "done"])
        events = [event async for event in Agent(llm, tools=[ping]).astream("go")]

        started = [e for e in events if isinstance(e, ToolCallStarted)]
        completed = [e for e in events if isinstance(e, ToolCallCompleted)]
        assert [e.name for e in started] == ["ping"]
        assert completed[0].result.content == "pong from a"

    def test_blocking_stream(self, make_llm):
        llm = make_llm(["one two"])
        events = list(Agent(llm).stream("hi"))

        assert isinstance(events[-1], RunCompleted)
        assert events[-1].result.content == "one two"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_during_model_call(self, make_llm, storage):
        llm = make_llm(["never seen"], delay=5)
        cancel = CancellationToken()
        agent = Agent(llm, storage=storage)

        async def fire():
            await asyncio.sleep(0.05)
            cancel.cancel("user pressed stop")

        trigger = asyncio.create_task(fire())
        result = await agent.arun("hi", session_id="s1", cancel=cancel)
        await trigger

        assert result.error.code == "cancelled"
        assert result.error.state == RunState.INVOKING_MODEL
        assert storage.load_runs("s1")[0].status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, make_llm):
        llm = make_llm(["unused"])
        cancel = CancellationToken()
        cancel.cancel()

        result = await Agent(llm).arun("hi", cancel=cancel)

        assert result.error.code == "cancelled"
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_cancel_during_tool_call(self, make_llm, storage):
        finished = []

        async def crawl(url: str, session_state: dict) -> str:
            """Crawl a site.

            Args:
                url: Start page
            """
            await asyncio.sleep(5)
            session_state["crawled"] = url
            finished.append(url)
            return "crawled"

        llm = make_llm([_calls(("c1", "crawl", {"url": "https://example.org"})), "never seen"])
        cancel = CancellationToken()
        agent = Agent(llm, tools=[crawl], storage=storage)

        async def fire():
            await asyncio.sleep(0.05)
            cancel.cancel("user pressed stop")

        trigger = asyncio.create_task(fire())
        result = await agent.arun("crawl it", session_id="s1", cancel=cancel)
        await trigger

        assert result.error.code == "cancelled"
        assert result.error.state == RunState.EXECUTING_TOOLS
        assert result.content is None
        assert llm.call_count == 1
        assert finished == []
        runs = storage.load_runs("s1")
        assert [r.status for r in runs] == [RunStatus.FAILED]
        assert "crawled" not in storage.get_state("s1")


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_runs_on_one_session_both_persist(self, make_llm, storage):
        async def remember(key: str, value: str, session_state: dict) -> str:
            session_state[key] = value
            return f"{key}={value}"

        def script(messages, tools):
            last = messages[-1]
            if last.role == "tool":
                return CompletionResponse(content=f"stored {last.content}")
            key = last.content
            return _calls((f"call-{key}", "remember", {"key": key, "value": key.upper()}))

        llm = make_llm([script] * 4)
        agent = Agent(llm, tools=[remember], storage=storage, add_history_to_context=False)

        first, second = await asyncio.gather(
            agent.arun("a", session_id="shared"),
            agent.arun("b", session_id="shared"),
        )

        assert first.succeeded and second.succeeded
        runs = storage.load_runs("shared")
        assert len(runs) == 2
        assert {r.input for r in runs} == {"a", "b"}
        assert storage.get_state("shared") == {"a": "A", "b": "B"}


class TestMemory:
    @pytest.mark.asyncio
    async def test_awaited_memory_update_feeds_next_run(self, make_llm, storage):
        llm = make_llm(
            [
                "Nice to meet you, Ana.",
                '{"operations": [{"op": "add", "memory": "User is called Ana"}]}',
                "You are Ana.",
                '{"operations": []}',
            ]
        )
        agent = Agent(llm, storage=storage, enable_user_memories=True, memory_mode="awaited")

        await agent.arun("I'm Ana", session_id="s1", user_id="u1")
        memories = storage.list_memories("u1")
        assert [m.memory for m in memories] == ["User is called Ana"]

        result = await agent.arun("Who am I?", session_id="s2", user_id="u1")
        assert result.content == "You are Ana."
        assert "User is called Ana" in llm.system_prompt(2)

    @pytest.mark.asyncio
    async def test_memory_failure_is_a_warning(self, make_llm, storage):
        llm = make_llm(["hello", "not json at all"])
        agent = Agent(llm, storage=storage, enable_user_memories=True, memory_mode="awaited")

        result = await agent.arun("hi", session_id="s1", user_id="u1")

        assert result.succeeded
        assert result.has_warning(WarningCode.MEMORY_UPDATE_FAILED)

    @pytest.mark.asyncio
    async def test_background_memory_update(self, make_llm, storage):
        llm = make_llm(["hello", '{"operations": [{"op": "add", "memory": "Likes tea"}]}'])
        agent = Agent(llm, storage=storage, enable_user_memories=True)

        result = await agent.arun("I like tea", session_id="s1", user_id="u1")
        await agent.wait_for_background()

        assert not result.warnings
        assert [m.memory for m in storage.list_memories("u1")] == ["Likes tea"]

    @pytest.mark.asyncio
    async def test_session_summary_every_n_runs(self, make_llm, storage):
        llm = make_llm(["a1", "a2", '{"summary": "Talked about a.", "topics": ["a"]}'])
        agent = Agent(llm, storage=storage, summary_every_n_runs=2)

        await agent.arun("q1", session_id="s1")
        assert storage.load_session("s1").summary is None

        await agent.arun("q2", session_id="s1")
        summary = storage.load_session("s1").summary
        assert summary.summary == "Talked about a."
        assert summary.topics == ["a"]


class TestMergeState:
    def test_untouched_keys_keep_concurrent_writes(self):
        current = {"a": 1, "b": 2, "c": 3}
        before = {"a": 1, "b": 1}
        after = {"a": 5, "b": 1}

        assert merge_state(current, before, after) == {"a": 5, "b": 2, "c": 3}

    def test_removed_keys_are_dropped(self):
        assert merge_state({"a": 1, "x": 9}, {"a": 1}, {}) == {"x": 9}
