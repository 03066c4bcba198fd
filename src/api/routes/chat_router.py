"""FastAPI routes for the conversational command router.

Provides the single-message router endpoint and the out-of-band
approve/deny endpoints for pending command confirmations. The router
answers with the pipeline's own status code: 200 for every handled
outcome, 500 only for unexpected internal failures.
"""

import logging
from functools import lru_cache

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from src.api.schemas import (
    ConfirmationApproveRequest,
    ConfirmationDenyRequest,
    RouterRequest,
)
from src.config import RouterSettings, get_config
from src.db.connection import get_db
from src.orchestrator.intent_catalog import IntentCatalog, build_intent_catalog
from src.services.chat_router import ChatRouter, RouterResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat-router", tags=["chat-router"])


def get_router_settings() -> RouterSettings:
    """Dependency to get the router behaviour settings."""
    return get_config().router


@lru_cache(maxsize=4)
def _cached_catalog(path: str | None) -> IntentCatalog:
    return build_intent_catalog(path)


def get_intent_catalog(
    settings: RouterSettings = Depends(get_router_settings),
) -> IntentCatalog:
    """Dependency to get the intent catalog (loaded once per path)."""
    return _cached_catalog(settings.intent_catalog_path)


def get_chat_router(
    db: Session = Depends(get_db),
    catalog: IntentCatalog = Depends(get_intent_catalog),
    settings: RouterSettings = Depends(get_router_settings),
) -> ChatRouter:
    """Dependency to get a ChatRouter bound to the request's session."""
    return ChatRouter(db, catalog, settings)


def _respond(result: RouterResult) -> JSONResponse:
    return JSONResponse(status_code=result.http_status, content=result.to_response())


@router.post("")
def route_message(
    request: RouterRequest,
    chat_router: ChatRouter = Depends(get_chat_router),
) -> JSONResponse:
    """Route one user message through the command pipeline.

    Args:
        request: Tenant, user, agent, conversation and message text.
        chat_router: Router dependency.

    Returns:
        The router outcome ({state, message?, run_id?, schema?, ...}).
    """
    result = chat_router.route(
        tenant_id=request.tenant_id,
        user_id=request.user_id,
        agent_id=request.agent_id,
        conversation_id=request.conversation_id,
        text=request.text,
        inputs=request.inputs,
        request_id=request.request_id,
    )
    logger.info(
        "Conversation %s -> %s (%s)",
        request.conversation_id,
        result.state,
        result.outcome,
    )
    return _respond(result)


@router.post("/confirmations/{confirmation_id}/approve")
def approve_confirmation(
    confirmation_id: str,
    decision: ConfirmationApproveRequest,
    chat_router: ChatRouter = Depends(get_chat_router),
) -> JSONResponse:
    """Approve a pending confirmation and continue the command.

    Raises:
        NotFoundError: If the confirmation does not exist (404).
        ConfirmationStateError: If it is no longer pending (409).
    """
    result = chat_router.resume(
        confirmation_id, decision.user_id, request_id=decision.request_id
    )
    return _respond(result)


@router.post("/confirmations/{confirmation_id}/deny")
def deny_confirmation(
    confirmation_id: str,
    decision: ConfirmationDenyRequest,
    chat_router: ChatRouter = Depends(get_chat_router),
) -> JSONResponse:
    """Deny a pending confirmation.

    Raises:
        NotFoundError: If the confirmation does not exist (404).
        ConfirmationStateError: If it is no longer pending (409).
    """
    result = chat_router.reject(confirmation_id, decision.user_id, decision.reason)
    return _respond(result)
