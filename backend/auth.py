"""Bearer token authentication.

Tokens are issued elsewhere; this module only turns a verified token into the
account id every core operation is scoped by.
"""
import logging
import os

import jwt
from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)

DEV_JWT_SECRET = "dev-only-secret-do-not-use-in-production"
JWT_ALGORITHM = "HS256"


def load_jwt_secret() -> str:
    """Read JWT_SECRET, refusing the development fallback in production."""
    secret = os.getenv("JWT_SECRET")
    if secret:
        return secret

    env = os.getenv("ENV", os.getenv("RENDER", "").lower() or "dev")
    if env in ("prod", "production") or os.getenv("RENDER"):
        raise RuntimeError(
            "JWT_SECRET missing in production; refusing to start with the development secret. "
            "Please configure JWT_SECRET environment variable."
        )
    logger.warning("JWT_SECRET not set, using the development secret")
    return DEV_JWT_SECRET


JWT_SECRET = load_jwt_secret()


def get_account_id(authorization: str | None = Header(default=None)) -> int:
    """Resolve the Authorization header to the caller's account id."""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = authorization[len("Bearer "):]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected token: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid token") from e

    user_id = payload.get("user_id")
    if not isinstance(user_id, int):
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id
