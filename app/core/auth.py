from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from .settings import config_settings

# Clients send "Authorization: Bearer <token>"; the tokenUrl is only advertised
# in the OpenAPI schema, the service does not issue tokens itself.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def require_auth_token(token: Annotated[str, Depends(oauth2_scheme)]) -> str:
    """
    Dependency applied to every route. Accepts only the service tokens
    listed in the TOKENS setting.

    A missing header is rejected by OAuth2PasswordBearer itself with a 401.
    """
    if not token or token not in config_settings.TOKENS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token
