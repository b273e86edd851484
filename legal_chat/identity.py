"""Caller identity from the cookies set by the account service."""

import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError

from legal_chat.config import settings
from legal_chat.db import crud, database

logger = logging.getLogger(__name__)

REGISTERED_COOKIE = "registered"
EMAIL_COOKIE = "user_email"


@dataclass(frozen=True)
class Identity:
    """Who is calling.

    ``registered`` requires both the registered flag and an email. ``user_id``
    is only set when that email matches a stored user, and is the owner id
    conversations are recorded under.
    """

    client_ip: str
    registered: bool = False
    email: str | None = None
    user_id: int | None = None


def get_client_ip(request: Request) -> str:
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()
    return request.client.host if request.client else "unknown"


async def resolve_identity(request: Request) -> Identity:
    """FastAPI dependency returning the caller's :class:`Identity`."""
    client_ip = get_client_ip(request)
    email = request.cookies.get(EMAIL_COOKIE) or None
    registered = request.cookies.get(REGISTERED_COOKIE) == "1" and email is not None

    if not registered:
        return Identity(client_ip=client_ip)

    user_id = None
    try:
        async with database.session_scope() as db:
            user = await crud.find_user_by_email(db, email)
        if user is not None:
            user_id = user.id
    except (SQLAlchemyError, RuntimeError) as e:
        logger.error(f"User lookup failed: {e}")

    return Identity(client_ip=client_ip, registered=True, email=email, user_id=user_id)
