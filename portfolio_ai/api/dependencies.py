"""FastAPI dependencies resolving the services built at startup."""

from fastapi import HTTPException, Request, status

from portfolio_ai.services.assistant import ChatAssembler
from portfolio_ai.services.container import AssistantServices


def get_services(request: Request) -> AssistantServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Assistant is starting up",
        )
    return services


def get_assembler(request: Request) -> ChatAssembler:
    return get_services(request).assembler
