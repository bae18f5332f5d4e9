from fastapi import Depends, Header, HTTPException, status

from rewards_api.api.dependencies.session import optional_session_user
from rewards_api.core.settings import settings
from rewards_api.models.user import User


async def require_internal_api_key(x_api_key: str = Header("", alias="X-API-Key")) -> None:
    if not settings.internal_api_key:
        return

    if x_api_key != settings.internal_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )


async def require_internal_or_admin(
    x_api_key: str = Header("", alias="X-API-Key"),
    session_user: User | None = Depends(optional_session_user),
) -> None:
    """Allow system callers holding the internal key, or an admin session."""

    if settings.internal_api_key and x_api_key == settings.internal_api_key:
        return

    if session_user is not None:
        if not session_user.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return

    await require_internal_api_key(x_api_key)
