import uuid
from typing import Optional

from fastapi import Cookie, Header, Response

from config import get_settings

SESSION_COOKIE = "session_id"


def get_session_id(
    response: Response,
    sessionid: Optional[str] = Header(None),
    session_id: Optional[str] = Cookie(None),
) -> str:
    """Guest session: the sessionid header wins, then the cookie, else a new id is issued."""
    if sessionid and sessionid.strip():
        return sessionid.strip()
    if session_id and session_id.strip():
        return session_id.strip()

    new_id = str(uuid.uuid4())
    response.set_cookie(
        SESSION_COOKIE,
        new_id,
        max_age=get_settings().session_cookie_max_age,
        httponly=True,
        samesite="lax",
        path="/",
    )
    return new_id
