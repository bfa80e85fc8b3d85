from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from coursehub.core.config import Settings
from coursehub.core.deps import get_db
from coursehub.core.errors import Unauthenticated
from coursehub.core.security import decode_access_token
from coursehub.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


def user_from_token(db: Session, settings: Settings, token: str | None) -> User:
    """Resolve a bearer token to a stored user (also used by the websocket)."""
    if not token:
        raise Unauthenticated("Not authenticated")

    payload = decode_access_token(token, settings.secret_key, settings.algorithm)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise Unauthenticated("Could not validate credentials")

    user = db.get(User, user_id)
    if user is None:
        raise Unauthenticated("Could not validate credentials")
    return user


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials if credentials else None
    return user_from_token(db, request.app.state.settings, token)
