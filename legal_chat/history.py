"""Conversation history routes for registered users."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from legal_chat.db import crud
from legal_chat.db.database import get_db
from legal_chat.identity import Identity, resolve_identity
from legal_chat.schemas import (
    ActionResponse,
    ConversationStats,
    ConversationStatsResponse,
    ErrorResponse,
    MessageOut,
    SessionListResponse,
    SessionMessagesResponse,
    SessionOut,
    UpdateTitleRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/conversations",
    responses={
        401: {"model": ErrorResponse, "description": "Not signed in"},
        404: {"model": ErrorResponse, "description": "User or session not found"},
    },
)

SESSION_NOT_FOUND_MESSAGE = "Session non trouvée"


async def require_user(identity: Identity = Depends(resolve_identity)) -> int:
    """Owner id of the signed-in caller."""
    if not identity.registered:
        raise HTTPException(status_code=401, detail="Authentification requise")
    if identity.user_id is None:
        raise HTTPException(status_code=404, detail="Utilisateur non trouvé")
    return identity.user_id


@router.get("", response_model=SessionListResponse)
async def list_sessions(
    limit: int = Query(default=20, ge=1, le=100),
    owner_id: int = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> SessionListResponse:
    """Most recently active sessions first."""
    sessions = await crud.list_sessions(db, owner_id, limit)
    return SessionListResponse(
        sessions=[SessionOut.model_validate(s) for s in sessions],
        count=len(sessions),
    )


@router.get("/stats", response_model=ConversationStatsResponse)
async def session_stats(
    owner_id: int = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> ConversationStatsResponse:
    stats = await crud.conversation_stats(db, owner_id)
    return ConversationStatsResponse(stats=ConversationStats(**stats))


@router.get("/{session_id}/messages", response_model=SessionMessagesResponse)
async def session_messages(
    session_id: int,
    owner_id: int = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> SessionMessagesResponse:
    try:
        messages = await crud.list_messages(db, session_id, owner_id)
    except (crud.SessionNotFoundError, crud.SessionAccessError) as e:
        logger.info(f"Message listing refused: {e}")
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND_MESSAGE)

    return SessionMessagesResponse(
        session_id=session_id,
        messages=[MessageOut.model_validate(m) for m in messages],
    )


@router.delete("/{session_id}", response_model=ActionResponse)
async def delete_session(
    session_id: int,
    owner_id: int = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> ActionResponse:
    try:
        await crud.delete_session(db, session_id, owner_id)
    except (crud.SessionNotFoundError, crud.SessionAccessError) as e:
        logger.info(f"Session deletion refused: {e}")
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND_MESSAGE)

    logger.info(f"Session deleted (user={owner_id}, session={session_id})")
    return ActionResponse(message="Session supprimée avec succès")


@router.put("/{session_id}", response_model=ActionResponse)
async def rename_session(
    session_id: int,
    body: UpdateTitleRequest,
    owner_id: int = Depends(require_user),
    db: AsyncSession = Depends(get_db),
) -> ActionResponse:
    try:
        await crud.update_session_title(db, session_id, owner_id, body.title)
    except (crud.SessionNotFoundError, crud.SessionAccessError) as e:
        logger.info(f"Session rename refused: {e}")
        raise HTTPException(status_code=404, detail=SESSION_NOT_FOUND_MESSAGE)

    logger.debug(f"Session title updated (user={owner_id}, session={session_id})")
    return ActionResponse(message="Titre mis à jour avec succès")
