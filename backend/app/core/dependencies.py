from fastapi import Depends, Header, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.security import decode_session_token, secrets_match, shop_from_claims

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_shop(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> str:
    """Resolve the merchant shop domain from the embedded admin's session token."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    claims = decode_session_token(credentials.credentials)
    if not claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session token")

    shop = shop_from_claims(claims)
    if not shop:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session token payload")
    return shop


async def require_owner_secret(
    x_owner_secret: str | None = Header(default=None),
    secret: str | None = Query(default=None),
) -> None:
    if not secrets_match(x_owner_secret or secret, settings.owner_dashboard_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid owner secret")
