"""API v1 router aggregating all endpoint routers.

AI Assistant:
  /api/v1/ai-assistant/chat    - ask a question (JSON or SSE stream)
  /api/v1/ai-assistant/status  - component health and corpus statistics
"""

from fastapi import APIRouter

from portfolio_ai.api.v1.endpoints import assistant

api_router = APIRouter()

api_router.include_router(assistant.router, prefix="/ai-assistant", tags=["ai-assistant"])
