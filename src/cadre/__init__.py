"""cadre - agents, teams and workflows over persistent sessions.

cadre runs LLM agents that call tools, remember users and search
knowledge, coordinates them in leader/member teams, and composes agents,
teams and functions into explicit step workflows. Every run is persisted
in a session so conversations pick up where they left off.

Key modules:

- :mod:`cadre.agent` - Run engine (state machine, tool loop, validation)
- :mod:`cadre.team` - Leader/member delegation
- :mod:`cadre.workflow` - Sequential, conditional, looping and parallel steps
- :mod:`cadre.context` - Context assembly and history compression
- :mod:`cadre.memory` - User memories and session summaries
- :mod:`cadre.knowledge` - ChromaDB-backed retrieval
- :mod:`cadre.storage` - SQLite and in-memory session stores
- :mod:`cadre.tools` - Tool registry and human approval gate
- :mod:`cadre.llm` - OpenAI-compatible model clients
"""

__version__ = "0.1.0"
