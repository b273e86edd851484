"""Best-effort recording of chat exchanges into conversation sessions."""

import logging
from dataclasses import dataclass

from legal_chat.db import crud, database
from legal_chat.services.metrics import metrics

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 50
FALLBACK_TITLE = "Nouvelle conversation"


def session_title(seed: str | None) -> str:
    """Title a new session from the first user message."""
    seed = (seed or "").strip()
    if not seed:
        return FALLBACK_TITLE
    if len(seed) > TITLE_MAX_LENGTH:
        return seed[:TITLE_MAX_LENGTH] + "..."
    return seed


@dataclass(frozen=True)
class ExchangeMetadata:
    """What the assistant message of an exchange records."""

    tokens_used: int
    response_time_ms: int
    was_cached: bool


class ConversationRecorder:
    """Creates sessions and appends messages for registered users.

    Ownership of an existing session is checked by ``crud.add_message``, so a
    caller-supplied session id is passed through rather than re-validated here.
    """

    async def ensure_session(
        self, owner_id: int, existing_session_id: int | None, seed_title: str | None
    ) -> int:
        if existing_session_id:
            return existing_session_id

        async with database.session_scope() as db:
            session = await crud.create_session(db, owner_id, session_title(seed_title))
        logger.debug(f"Created conversation session {session.id} for user {owner_id}")
        return session.id

    async def try_ensure_session(
        self, owner_id: int, existing_session_id: int | None, seed_title: str | None
    ) -> int | None:
        """Like :meth:`ensure_session` but returns the given id when creation fails."""
        try:
            return await self.ensure_session(owner_id, existing_session_id, seed_title)
        except Exception:
            metrics.record_recording_failure()
            logger.exception(f"Could not open a conversation session for user {owner_id}")
            return existing_session_id

    async def append(
        self,
        session_id: int,
        owner_id: int,
        role: str,
        content: str,
        metadata: ExchangeMetadata | None = None,
    ) -> None:
        async with database.session_scope() as db:
            if metadata is None:
                await crud.add_message(db, session_id, owner_id, role, content)
            else:
                await crud.add_message(
                    db,
                    session_id,
                    owner_id,
                    role,
                    content,
                    tokens_used=metadata.tokens_used,
                    response_time_ms=metadata.response_time_ms,
                    was_cached=metadata.was_cached,
                )

    async def record_exchange(
        self,
        session_id: int,
        owner_id: int,
        question: str,
        answer: str,
        metadata: ExchangeMetadata,
    ) -> None:
        """Append the question and the answer. Never raises."""
        try:
            await self.append(session_id, owner_id, "user", question)
            await self.append(session_id, owner_id, "assistant", answer, metadata)
            logger.info(
                f"Conversation saved (user={owner_id}, session={session_id}, "
                f"cached={metadata.was_cached})"
            )
        except Exception:
            metrics.record_recording_failure()
            logger.exception(f"Failed to save conversation for session {session_id}")


conversation_recorder = ConversationRecorder()
