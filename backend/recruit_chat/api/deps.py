from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from recruit_chat.core.security import user_id_from_token
from recruit_chat.db.session import SessionLocal, get_db
from recruit_chat.models.user import User
from recruit_chat.realtime.bus import LiveEventBus

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        user_id = user_id_from_token(credentials.credentials)
    except ValueError:
        raise credentials_exception
    user = db.get(User, user_id)
    if user is None:
        raise credentials_exception
    return user


def get_event_bus(request: Request) -> LiveEventBus:
    return request.app.state.bus


def get_session_factory() -> sessionmaker:
    """Factory for short-lived sessions in long-running handlers (websockets)."""
    return SessionLocal
