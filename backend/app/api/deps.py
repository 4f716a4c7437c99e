"""FastAPI dependencies for the API layer."""

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from helphub.realtime import ChatGateway

from app.core.security import AuthenticationError, user_id_from_token
from app.database import get_db
from app.models import User
from app.services import ConversationAggregator, MessageStore, NotificationBridge

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the current user from the JWT token."""

    if not token:
        raise AuthenticationError("Not authenticated")
    return get_user_from_token(token, db)


def get_user_from_token(token: str, db: Session) -> User:
    """Resolve an active user from a JWT token or raise ``AuthenticationError``."""

    user = db.get(User, user_id_from_token(token))
    if user is None or not user.is_active:
        raise AuthenticationError("Could not validate credentials")
    return user


def get_message_store(request: Request) -> MessageStore:
    return request.app.state.message_store


def get_notification_bridge(request: Request) -> NotificationBridge:
    return request.app.state.notifications


def get_conversation_aggregator(request: Request) -> ConversationAggregator:
    return request.app.state.conversations


def get_chat_gateway(request: Request) -> ChatGateway:
    return request.app.state.gateway
