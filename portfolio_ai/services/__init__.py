"""Service layer for the portfolio assistant.

Services contain the chat logic and the wiring of its collaborators.
"""

from portfolio_ai.services.assistant import ChatAnswer, ChatAssembler, ChatMessage
from portfolio_ai.services.container import AssistantServices, build_services

__all__ = [
    "AssistantServices",
    "ChatAnswer",
    "ChatAssembler",
    "ChatMessage",
    "build_services",
]
