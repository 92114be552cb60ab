"""Authentication and permission dependencies.

    get_current_user          JWT → active User, with the token's claims attached
    require_permission(...)   dependency factory: the user must hold every permission
    user_can(user, perm)      the same check inside a handler (own-vs-all scoping)

Permissions come from the access token (resolved at login), so the
checks never touch the database.  A missing or bad token is a 401; a
valid token without the permission is a 403 in the usual error envelope.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.jwt import decode_token
from app.auth.permissions import has_permission
from app.database import get_db
from app.middleware.exceptions import PermissionDeniedError
from app.models.public.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def token_claims(user: User) -> dict:
    return getattr(user, "_token_payload", None) or {}


def user_can(user: User, permission: str) -> bool:
    return has_permission(token_claims(user).get("permissions", []), permission)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    claims = decode_token(token)
    user_id = claims.get("sub") if claims else None
    if not user_id or claims.get("type") != "access":
        raise _unauthorized("Invalid or expired token")

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise _unauthorized("User not found or inactive")

    user._token_payload = claims  # type: ignore[attr-defined]
    return user


def require_permission(*perms: str):
    """Restrict a route to users holding all of `perms`.

        @router.post("/{batch_id}/confirm")
        async def confirm(user: User = Depends(require_permission("deposit.confirm"))):
    """
    async def _check(user: User = Depends(get_current_user)) -> User:
        missing = [p for p in perms if not user_can(user, p)]
        if missing:
            raise PermissionDeniedError(f"Missing permissions: {', '.join(missing)}")
        return user

    return _check
