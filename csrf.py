import logging
from datetime import timedelta
from typing import Optional

from fastapi import Header, HTTPException
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import get_settings
from services import get_current_user_id

logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"
TOKEN_TTL = timedelta(hours=2)


def _signer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(get_settings().csrf_secret, salt="budgets-csrf")


def generate_csrf_token(user_id: Optional[int] = None) -> str:
    """Sign a token for one user. The signer stamps the issue time itself."""
    return _signer().dumps({"user": user_id or get_current_user_id()})


def validate_csrf_token(
    token: str, user_id: Optional[int] = None, ttl: timedelta = TOKEN_TTL
) -> bool:
    owner = user_id or get_current_user_id()
    try:
        claims = _signer().loads(token, max_age=int(ttl.total_seconds()))
    except SignatureExpired:
        logger.debug("csrf_rejected reason=expired")
        return False
    except BadSignature:
        logger.debug("csrf_rejected reason=bad_signature")
        return False

    if claims.get("user") != owner:
        logger.debug(f"csrf_rejected reason=user_mismatch user_id={owner}")
        return False
    return True


def require_csrf(
    x_csrf_token: Optional[str] = Header(default=None, alias=CSRF_HEADER),
) -> None:
    if x_csrf_token is None or not validate_csrf_token(x_csrf_token):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
