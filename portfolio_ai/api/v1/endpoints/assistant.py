"""AI assistant endpoints: chat (JSON or SSE) and system status."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Annotated, Any, AsyncIterator, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from portfolio_ai.api.dependencies import get_assembler, get_services
from portfolio_ai.core.ai_constants import ERROR_MESSAGE
from portfolio_ai.knowledge.exceptions import (
    InvalidQueryError,
    KnowledgeStoreUnavailable,
    VectorIndexUnavailable,
)
from portfolio_ai.services.assistant import ChatAssembler, ChatMessage
from portfolio_ai.services.container import AssistantServices

router = APIRouter()
logger = logging.getLogger(__name__)

STATUS_PROBE_TIMEOUT_SECONDS = 10.0


# -------------------------------------------------------------------------
# Request/Response Models
# -------------------------------------------------------------------------


class ChatRequest(BaseModel):
    """Message to the assistant."""

    message: str = Field(..., min_length=1, max_length=1000)
    conversation_history: list[ChatMessage] = Field(default_factory=list, max_length=50)
    stream: bool = False


class SourceResponse(BaseModel):
    content: str
    category: str
    score: float


class ChatResponse(BaseModel):
    """Assistant reply with the knowledge it was grounded on."""

    response: str
    sources: list[SourceResponse] = Field(default_factory=list)
    retrieval_method: str


class ComponentStatus(BaseModel):
    status: str
    message: Optional[str] = None
    model: Optional[str] = None


class StatusResponse(BaseModel):
    """Health of the assistant and its dependencies."""

    status: Literal["healthy", "degraded", "error"]
    timestamp: datetime
    components: dict[str, ComponentStatus]
    statistics: dict[str, Any]
    recommendations: list[str]


# -------------------------------------------------------------------------
# Chat
# -------------------------------------------------------------------------


async def _sse_events(
    assembler: ChatAssembler,
    request: ChatRequest,
) -> AsyncIterator[str]:
    async for event in assembler.stream_answer(request.message, request.conversation_history):
        yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    assembler: Annotated[ChatAssembler, Depends(get_assembler)],
):
    """Answer a question about the site owner.

    With ``stream=true`` the reply is sent as Server-Sent Events of type
    ``chunk``, ``sources``, ``done`` or ``error``.

    Raises:
        HTTPException: 400 for a blank message, 500 on unexpected errors.
    """
    if not request.message.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message must not be blank",
        )

    if request.stream:
        return StreamingResponse(
            _sse_events(assembler, request),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    try:
        answer = await assembler.answer(request.message, request.conversation_history)
    except InvalidQueryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception:
        logger.exception("Error in chat API")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=ERROR_MESSAGE,
        )

    return ChatResponse(
        response=answer.response,
        sources=[SourceResponse(**source) for source in answer.sources],
        retrieval_method=answer.retrieval_method,
    )


# -------------------------------------------------------------------------
# Status
# -------------------------------------------------------------------------


async def _collect_status(services: AssistantServices) -> StatusResponse:
    components: dict[str, ComponentStatus] = {}
    statistics: dict[str, Any] = {
        "total_documents": 0,
        "documents_by_category": {},
        "documents_with_embeddings": 0,
        "total_queries": 0,
    }
    recommendations: list[str] = []

    # Database
    try:
        stats = await services.store.stats()
        components["database"] = ComponentStatus(status="connected")
        statistics.update(
            total_documents=stats.total_active,
            documents_by_category=stats.by_category,
            documents_with_embeddings=stats.with_embeddings,
            total_queries=stats.total_queries,
        )
    except KnowledgeStoreUnavailable as e:
        stats = None
        components["database"] = ComponentStatus(status="disconnected", message=str(e))
        recommendations.append("Check DATABASE_URL and that the database is reachable")

    # Embeddings
    provider = services.embedding_provider
    probe_embedding: list[float] | None = None
    if provider is None:
        components["embeddings"] = ComponentStatus(
            status="unavailable", message="No embedding API key configured"
        )
        recommendations.append("Add GOOGLE_AI_API_KEY (or OPENAI_API_KEY) to the environment")
    else:
        try:
            probe_embedding = await asyncio.wait_for(
                provider.embed("test", for_query=True), timeout=STATUS_PROBE_TIMEOUT_SECONDS
            )
            components["embeddings"] = ComponentStatus(
                status="available", model=getattr(provider, "model", provider.name)
            )
        except Exception as e:
            components["embeddings"] = ComponentStatus(status="error", message=str(e))

    # Vector search
    if stats is None or probe_embedding is None:
        components["vector_search"] = ComponentStatus(
            status="not_configured", message="Requires database and embeddings"
        )
    elif stats.with_embeddings == 0:
        components["vector_search"] = ComponentStatus(
            status="not_configured", message="No fragments have embeddings"
        )
    else:
        try:
            await asyncio.wait_for(
                services.store.vector_search(probe_embedding, k=1, num_candidates=10),
                timeout=STATUS_PROBE_TIMEOUT_SECONDS,
            )
            components["vector_search"] = ComponentStatus(status="working")
        except VectorIndexUnavailable as e:
            components["vector_search"] = ComponentStatus(status="not_configured", message=str(e))
            recommendations.append("Use PostgreSQL with the pgvector extension for vector search")
        except Exception as e:
            components["vector_search"] = ComponentStatus(status="error", message=str(e))

    # Language model
    if services.language_model is None:
        components["llm"] = ComponentStatus(
            status="unavailable", message="Answers use templated responses"
        )
    else:
        components["llm"] = ComponentStatus(
            status="available", model=getattr(services.language_model, "model", None)
        )

    if stats is not None:
        if stats.total_active == 0:
            recommendations.append(
                "Seed the knowledge base: python scripts/build_knowledge_index.py --database"
            )
        elif stats.with_embeddings == 0:
            recommendations.append("Regenerate embeddings for existing fragments")

    if components["database"].status != "connected":
        overall = "error"
    elif all(c.status in ("connected", "available", "working") for c in components.values()):
        overall = "healthy"
    else:
        overall = "degraded"

    return StatusResponse(
        status=overall,
        timestamp=datetime.now(timezone.utc),
        components=components,
        statistics=statistics,
        recommendations=recommendations,
    )


@router.get("/status", response_model=StatusResponse)
async def assistant_status(
    services: Annotated[AssistantServices, Depends(get_services)],
) -> StatusResponse:
    """Report component health, corpus statistics and recommendations."""
    return await _collect_status(services)
