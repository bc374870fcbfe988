"""FastAPI dependencies for authentication.

Dependencies:
  get_current_principal  → decode JWT, reload the user, return a Principal
  require_tier(...)      → restrict a route to one or more privilege tiers

Resource-level checks do not live here: routers call the access engine
(`app.auth.decisions`) against the loaded resource.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.decisions import Reason
from app.auth.jwt import decode_token
from app.auth.principal import Principal
from app.database import get_db
from app.middleware.exceptions import AuthorizationError
from app.models.user import Tier, User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_current_principal(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Resolve the bearer token into a Principal.

    The role and active flag come from the database, not from the token,
    so a demotion or deactivation takes effect on the next request.
    """
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )

    return Principal.from_user(user)


def require_tier(*tiers: Tier):
    """Dependency factory: restrict to one or more privilege tiers.

    Usage:
        @router.get("/users")
        async def list_users(
            principal: Principal = Depends(require_tier(Tier.ADMINISTRATOR)),
        ):
            ...
    """
    async def _check(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if principal.tier not in tiers:
            raise AuthorizationError(
                Reason.ROLE_NOT_PERMITTED,
                f"Requires tier: {', '.join(t.value for t in tiers)}",
            )
        return principal

    return _check
