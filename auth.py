"""
Admin bearer tokens

Tokens are issued elsewhere; this module only verifies them. Logged-out
tokens are kept in the revoked_token collection until they would have
expired anyway (a TTL index removes them), so revocation survives restarts
and is shared by every instance.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import get_settings
from database import REVOKED_TOKENS, get_db, utcnow
from errors import AuthenticationError, PermissionDeniedError
from schemas import RevokedToken

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_TOKEN_LIFETIME = timedelta(days=7)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("No token provided. Please login first.")
    return authorization[len("Bearer "):].strip()


def is_token_revoked(db: Database, token: str) -> bool:
    return db[REVOKED_TOKENS].find_one({"token": token}) is not None


def decode_token(db: Database, token: str) -> dict:
    if is_token_revoked(db, token):
        raise AuthenticationError("Token has been revoked. Please login again.")
    try:
        return jwt.decode(token, get_settings().jwt_secret, algorithms=[ALGORITHM])
    except jwt.PyJWTError as e:
        logger.debug("Rejected bearer token: %s", e)
        raise AuthenticationError("Invalid or expired token. Please login again.")


def revoke_token(db: Database, token: str) -> None:
    """Remember a token as revoked until its own expiry."""
    try:
        claims = jwt.decode(token, get_settings().jwt_secret, algorithms=[ALGORITHM])
    except jwt.PyJWTError:
        # already unusable, nothing to remember
        return
    exp = claims.get("exp")
    expires_at = datetime.fromtimestamp(exp, tz=timezone.utc) if exp else utcnow() + DEFAULT_TOKEN_LIFETIME
    try:
        db[REVOKED_TOKENS].insert_one(RevokedToken(token=token, expiresAt=expires_at).model_dump())
    except DuplicateKeyError:
        pass


def get_current_user(authorization: Optional[str] = Header(None), db: Database = Depends(get_db)) -> dict:
    return decode_token(db, bearer_token(authorization))


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("isAdmin"):
        raise PermissionDeniedError("Access denied. Admin privileges required.")
    return user
