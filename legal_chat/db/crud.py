"""Queries over users, conversation sessions and messages.

Every session-scoped function takes the caller's ``owner_id`` and refuses to
touch a session owned by someone else.
"""

from sqlalchemy import case, delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from legal_chat.db.models import ConversationMessage, ConversationSession, User, utcnow

MESSAGE_ROLES = ("user", "assistant")


class SessionNotFoundError(LookupError):
    """The session does not exist."""


class SessionAccessError(PermissionError):
    """The session exists but belongs to another user."""


# --- Users ---

async def find_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, email: str) -> User:
    user = User(email=email)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


# --- Sessions ---

async def create_session(db: AsyncSession, owner_id: int, title: str) -> ConversationSession:
    session = ConversationSession(owner_id=owner_id, title=title)
    db.add(session)
    await db.commit()
    await db.refresh(session)
    return session


async def get_owned_session(
    db: AsyncSession, session_id: int, owner_id: int
) -> ConversationSession:
    session = await db.get(ConversationSession, session_id)
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} not found")
    if session.owner_id != owner_id:
        raise SessionAccessError(f"Session {session_id} is not owned by user {owner_id}")
    return session


async def list_sessions(
    db: AsyncSession, owner_id: int, limit: int = 20
) -> list[ConversationSession]:
    result = await db.execute(
        select(ConversationSession)
        .where(ConversationSession.owner_id == owner_id)
        .order_by(desc(ConversationSession.last_message_at), desc(ConversationSession.id))
        .limit(limit)
    )
    return list(result.scalars().all())


async def update_session_title(
    db: AsyncSession, session_id: int, owner_id: int, title: str
) -> ConversationSession:
    session = await get_owned_session(db, session_id, owner_id)
    session.title = title
    await db.commit()
    await db.refresh(session)
    return session


async def delete_session(db: AsyncSession, session_id: int, owner_id: int) -> None:
    session = await get_owned_session(db, session_id, owner_id)
    await db.execute(
        delete(ConversationMessage).where(ConversationMessage.session_id == session.id)
    )
    await db.delete(session)
    await db.commit()


# --- Messages ---

async def add_message(
    db: AsyncSession,
    session_id: int,
    owner_id: int,
    role: str,
    content: str,
    tokens_used: int = 0,
    response_time_ms: int | None = None,
    was_cached: bool = False,
) -> ConversationMessage:
    if role not in MESSAGE_ROLES:
        raise ValueError(f"Unknown message role: {role!r}")

    session = await get_owned_session(db, session_id, owner_id)
    message = ConversationMessage(
        session_id=session.id,
        role=role,
        content=content,
        tokens_used=max(0, tokens_used),
        response_time_ms=response_time_ms,
        was_cached=was_cached,
    )
    db.add(message)
    session.message_count += 1
    session.last_message_at = utcnow()

    await db.commit()
    await db.refresh(message)
    return message


async def list_messages(
    db: AsyncSession, session_id: int, owner_id: int
) -> list[ConversationMessage]:
    await get_owned_session(db, session_id, owner_id)
    result = await db.execute(
        select(ConversationMessage)
        .where(ConversationMessage.session_id == session_id)
        .order_by(ConversationMessage.created_at, ConversationMessage.id)
    )
    return list(result.scalars().all())


async def conversation_stats(db: AsyncSession, owner_id: int) -> dict:
    session_count = await db.scalar(
        select(func.count(ConversationSession.id)).where(
            ConversationSession.owner_id == owner_id
        )
    )
    owned = select(ConversationSession.id).where(ConversationSession.owner_id == owner_id)
    row = (
        await db.execute(
            select(
                func.count(ConversationMessage.id),
                func.coalesce(func.sum(ConversationMessage.tokens_used), 0),
                func.coalesce(
                    func.sum(case((ConversationMessage.was_cached.is_(True), 1), else_=0)), 0
                ),
            ).where(ConversationMessage.session_id.in_(owned))
        )
    ).one()

    return {
        "total_sessions": int(session_count or 0),
        "total_messages": int(row[0]),
        "total_tokens": int(row[1]),
        "cached_answers": int(row[2]),
    }
