from typing import Optional
from fastapi import Depends, HTTPException, Request, Header
from vetclinic.core.security import actor_from_token


async def get_bearer_token(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> str:
    # the admin console sends the token as a cookie, other clients as a header
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):]
    token = request.cookies.get("access_token")
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return token

async def get_current_actor(token: str = Depends(get_bearer_token)) -> str:
    """Id of the staff member making the request. It is recorded on invoices,
    payments and stock movements as-is."""
    actor_id = actor_from_token(token)
    if not actor_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return actor_id
