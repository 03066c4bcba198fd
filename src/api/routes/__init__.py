"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from src.api.routes import agents, chat_router, conversations, runs

__all__ = [
    "agents",
    "chat_router",
    "conversations",
    "runs",
]
