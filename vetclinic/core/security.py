from datetime import datetime, timedelta
from typing import Any, Optional
from jose import jwt, JWTError
from vetclinic.core.config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60
ACTOR_CLAIM = "user_id"


def create_access_token(actor_id: Any, expires_delta: Optional[timedelta] = None, **claims) -> str:
    """Mint a token for `actor_id`.

    Staff tokens are issued by the practice's identity service; this is only
    used by local tooling and tests.
    """
    now = datetime.utcnow()
    payload = {
        **claims,
        ACTOR_CLAIM: str(actor_id),
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)

def decode_access_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except JWTError:
        return None

def actor_from_token(token: str) -> Optional[str]:
    payload = decode_access_token(token)
    if not payload or not payload.get(ACTOR_CLAIM):
        return None
    return str(payload[ACTOR_CLAIM])
