"""
Session Agent Example
=====================

An agent with one custom tool, talking in a persistent SQLite session.
Run it twice: the second time the agent still knows what was said,
because history is replayed from the stored runs.

Prerequisites:
- Ollama installed and running
- A model pulled (e.g., qwen2.5:7b)
- cadre installed: pip install -e .

Usage:
    python examples/01_session_agent.py
"""

import asyncio

from cadre.agent import Agent
from cadre.llm import OllamaClient
from cadre.storage import SQLiteStorage
from cadre.tools import tool


@tool
def remember_city(city: str, session_state: dict) -> str:
    """Store the city the user is planning to visit.

    Args:
        city: City name
    """
    session_state["city"] = city
    return f"Saved {city}"


async def main():
    agent = Agent(
        llm=OllamaClient(model="qwen2.5:7b"),
        name="planner",
        instructions="You help plan short trips. Use remember_city when the user names a destination.",
        tools=[remember_city],
        storage=SQLiteStorage("~/.cadre/examples.db"),
        add_session_state_to_context=True,
    )

    for prompt in ["I'm going to Lisbon in May.", "Which city am I visiting again?"]:
        print(f"\nYou: {prompt}")
        result = await agent.arun(prompt, session_id="trip-planning")
        if result.error:
            print(f"Run failed ({result.error.code}): {result.error.message}")
            break
        print(f"{agent.name}: {result.content}")

    print(f"\nSession state: {result.session_state}")


if __name__ == "__main__":
    asyncio.run(main())
