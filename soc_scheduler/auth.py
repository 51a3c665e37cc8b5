from __future__ import annotations

import os
from datetime import timedelta

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from soc_scheduler.db import get_db
from soc_scheduler.models import SessionRecord, User, as_utc, utcnow
from soc_scheduler.security import new_session_token

BEARER_PREFIX = "Bearer "


def session_ttl() -> timedelta:
    return timedelta(days=int(os.getenv("SESSION_TTL_DAYS", "14")))


def create_session(db: Session, user_id: str) -> str:
    while True:
        token = new_session_token()
        if db.get(SessionRecord, token) is None:
            break
    db.add(SessionRecord(token=token, user_id=user_id, expires_at=utcnow() + session_ttl()))
    db.commit()
    return token


def delete_session_if_exists(db: Session, token: str) -> None:
    session = db.get(SessionRecord, token)
    if session is not None:
        db.delete(session)
        db.commit()


def get_session_user(db: Session, token: str | None) -> User | None:
    if not token:
        return None
    session = db.get(SessionRecord, token)
    if session is None:
        return None
    if as_utc(session.expires_at) <= utcnow():
        db.delete(session)
        db.commit()
        return None
    user = db.get(User, session.user_id)
    if user is None or not user.is_active:
        db.delete(session)
        db.commit()
        return None
    return user


def bearer_token(authorization: str | None = Header(default=None)) -> str | None:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):].strip() or None


def get_current_user(token: str | None = Depends(bearer_token), db: Session = Depends(get_db)) -> User:
    user = get_session_user(db, token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def get_admin_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return current_user
