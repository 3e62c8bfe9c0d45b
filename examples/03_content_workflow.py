"""
Content Workflow Example
========================

A workflow that drafts a post with an agent, then checks it in parallel
(length and banned words) and loops on revisions until both checks pass.
Progress is checkpointed after every completed step, so a failed run can be
resumed by passing its ``workflow_run_id`` back in.

Prerequisites:
- Ollama installed and running
- A model pulled (e.g., qwen2.5:7b)
- cadre installed: pip install -e .

Usage:
    python examples/03_content_workflow.py
"""

import asyncio

from cadre.agent import Agent
from cadre.llm import OllamaClient
from cadre.storage import SQLiteStorage
from cadre.workflow import (
    AgentStep,
    FunctionStep,
    Loop,
    Parallel,
    StepCompleted,
    StepOutput,
    Workflow,
)

BANNED = {"synergy", "leverage", "disrupt"}


def check_length(step):
    ok = len(str(step.state.get("draft", "")).split()) <= 80
    return StepOutput(content=ok, state={"length_ok": ok})


def check_words(step):
    words = set(str(step.state.get("draft", "")).lower().split())
    ok = not (words & BANNED)
    return StepOutput(content=ok, state={"words_ok": ok})


def revision_prompt(step):
    return (
        f"Rewrite this post in under 80 words without the words {sorted(BANNED)}:\n\n"
        f"{step.state.get('draft', step.input)}"
    )


def checks_passed(step):
    return step.state.get("length_ok") and step.state.get("words_ok")


def checks(name):
    return Parallel(
        name,
        [
            FunctionStep(f"{name}_length", check_length, writes=["length_ok"]),
            FunctionStep(f"{name}_words", check_words, writes=["words_ok"]),
        ],
    )


async def main():
    storage = SQLiteStorage("~/.cadre/examples.db")
    writer = Agent(
        OllamaClient(model="qwen2.5:7b"),
        "writer",
        instructions="You write short, plain product announcements.",
        storage=storage,
    )

    workflow = Workflow(
        "announcement",
        [
            AgentStep("draft", writer, output_key="draft"),
            checks("checks"),
            Loop(
                "revise",
                [AgentStep("rewrite", writer, input_fn=revision_prompt, output_key="draft"), checks("recheck")],
                max_iterations=3,
                until=checks_passed,
            ),
        ],
        storage=storage,
    )

    async for event in workflow.astream("Announce our new offline mode.", session_id="post-42"):
        if isinstance(event, StepCompleted):
            print(f"step {event.index} ({event.name}) done")

    session = storage.load_session("post-42")
    print(f"\nFinal draft:\n{session.state.get('draft')}")


if __name__ == "__main__":
    asyncio.run(main())
