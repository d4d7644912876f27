"""FastAPI dependencies for the API layer."""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.security import decode_access_token
from app.database import get_db
from app.models import User
from app.services.calls import CallService
from app.services.media_tokens import MediaTokenIssuer, get_media_token_issuer
from app.services.notifications import NotificationDispatcher, get_notification_dispatcher

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the current user from the JWT token."""

    return get_user_from_token(token, db)


def get_user_from_token(token: str, db: Session) -> User:
    """Resolve an active user from a JWT token or raise an HTTP 401 error."""

    payload = decode_access_token(token)
    subject = payload.get("sub") or payload.get("id")
    if subject is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    user = db.get(User, str(subject))
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user


def get_call_service(
    issuer: MediaTokenIssuer = Depends(get_media_token_issuer),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> CallService:
    return CallService(issuer=issuer, dispatcher=dispatcher)
