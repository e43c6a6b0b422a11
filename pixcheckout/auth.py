import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from fastapi import Header, HTTPException, Request
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def ensure_jwt_secret(settings):
    if not settings.jwt_secret:
        # Tokens issued with a generated secret do not survive a restart.
        settings.jwt_secret = secrets.token_urlsafe(32)
        logger.warning("JWT_SECRET is not set, using a per-process secret")
    return settings.jwt_secret


def check_password(settings, password: str) -> bool:
    return hmac.compare_digest(password.encode(), settings.admin_password.encode())


def create_access_token(settings) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": "admin",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.token_ttl_minutes)).timestamp()),
    }
    return jwt.encode(claims, ensure_jwt_secret(settings), algorithm=ALGORITHM)


def verify_token(request: Request, authorization: str = Header(None)):
    settings = request.app.state.settings
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("unsupported scheme")
        claims = jwt.decode(token, ensure_jwt_secret(settings), algorithms=[ALGORITHM])
        if claims.get("sub") != "admin":
            raise ValueError("unexpected subject")
    except (AttributeError, ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return claims
