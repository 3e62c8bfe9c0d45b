"""
Research Team Example
=====================

A leader delegating to two members: a researcher and a critic. The leader
decides each round whether to hand out more work or answer; members run
concurrently in their own sub-sessions.

Prerequisites:
- Ollama installed and running
- A model pulled (e.g., qwen2.5:7b)
- cadre installed: pip install -e .

Usage:
    python examples/02_research_team.py
"""

import asyncio

from cadre.agent import Agent
from cadre.llm import OllamaClient
from cadre.storage import InMemoryStorage
from cadre.team import DelegationCompleted, DelegationStarted, Team


async def main():
    llm = OllamaClient(model="qwen2.5:7b", temperature=0.3)
    storage = InMemoryStorage()

    researcher = Agent(
        llm,
        "researcher",
        description="Gathers facts and lists trade-offs",
        instructions="List the relevant facts and trade-offs. Be concrete.",
        storage=storage,
    )
    critic = Agent(
        llm,
        "critic",
        description="Finds weak points in a draft answer",
        instructions="Point out what is missing or wrong. Be brief.",
        storage=storage,
    )
    team = Team(llm, [researcher, critic], "review-board", storage=storage, max_rounds=3)

    question = "Should a five-person startup run its own Postgres or use a managed service?"
    print(f"Question: {question}\n")

    async for event in team.astream(question, session_id="board-1"):
        if isinstance(event, DelegationStarted):
            print(f"[round {event.round}] -> {event.member}: {event.task[:70]}")
        elif isinstance(event, DelegationCompleted):
            status = "ok" if event.result and event.result.succeeded else "failed"
            print(f"[round {event.round}] <- {event.member} ({status})")

    result = await team.arun("Summarize your recommendation in one sentence.", session_id="board-1")
    print(f"\nAnswer: {result.content if result.succeeded else result.error.message}")
    print(f"Tokens used: {result.metrics.total_tokens}")


if __name__ == "__main__":
    asyncio.run(main())
