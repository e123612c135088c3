from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from chatrelay.config import SERVER_CONFIG


def create_visitor_token(visitor_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(seconds=SERVER_CONFIG["VISITOR_COOKIE_MAX_AGE"]))
    to_encode = {"sub": visitor_id, "exp": expire}
    return jwt.encode(to_encode, SERVER_CONFIG["SECRET_KEY"], algorithm=SERVER_CONFIG["ALGORITHM"])


def read_visitor_token(token: Optional[str]) -> Optional[str]:
    """Visitor id carried by a cookie token, or None if it is missing, forged or expired."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, SERVER_CONFIG["SECRET_KEY"], algorithms=[SERVER_CONFIG["ALGORITHM"]])
    except JWTError:
        return None
    return payload.get("sub") or None
