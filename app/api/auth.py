from typing import Optional

from fastapi import Cookie, Depends, Header
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.errors import Unauthorized
from app.core.security import decode_access_token
from app.models.profile import Profile


def _token_from(access_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    # Cookie first, then Authorization header
    raw = access_token or authorization
    if not raw:
        return None
    return raw.replace("Bearer ", "", 1).strip() or None


def _resolve_user(db: Session, access_token: Optional[str], authorization: Optional[str]) -> Optional[Profile]:
    token = _token_from(access_token, authorization)
    if not token:
        return None

    claims = decode_access_token(token)
    if not claims:
        return None

    user_id = claims.get("id") or claims.get("sub")
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return db.get(Profile, user_id)


# ---------------------------------------------------------
# DEPENDENCIES
# ---------------------------------------------------------
def get_current_user(
    access_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Profile:
    """The authenticated caller ({id, role}). 401 when there is none."""
    user = _resolve_user(db, access_token, authorization)
    if user is None:
        raise Unauthorized()
    return user


def get_optional_user(
    access_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Optional[Profile]:
    return _resolve_user(db, access_token, authorization)
