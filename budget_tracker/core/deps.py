from typing import Annotated
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from budget_tracker.db.session import get_db
from budget_tracker.core.security import decode_token
from budget_tracker.repositories.user_repository import UserRepository
from budget_tracker.models.user import User, UserRole
from budget_tracker.models.fund_type import FundType
from budget_tracker.services.fund_adapters import FundAdapter, get_adapter


# Tokens are issued by the external identity provider
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


DBSessionDep = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user(db: DBSessionDep, token: Annotated[str, Depends(oauth2_scheme)]) -> User:
    payload = decode_token(token)
    if not payload or "sub" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")
    user = await UserRepository(db).get_by_id(user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]


def require_roles(*roles: UserRole | str):
    async def _role_dep(user: User = Depends(get_current_user)):
        allowed = {r.value if hasattr(r, "value") else r for r in roles}
        if allowed and user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return user
    return _role_dep


def get_fund_adapter(fund_type: FundType) -> FundAdapter:
    """Resolve the ``{fund_type}`` path parameter to its adapter"""
    return get_adapter(fund_type)


FundAdapterDep = Annotated[FundAdapter, Depends(get_fund_adapter)]
