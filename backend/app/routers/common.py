"""
Helpers shared by the resource routers: pagination envelope, 404 lookup
and institution scoping for staff users.
"""

from typing import Generic, TypeVar

from fastapi import HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User, UserRole

T = TypeVar("T")
M = TypeVar("M")


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    limit: int
    offset: int


class Pagination:
    """Query-string pagination (``?limit=&offset=``)."""

    def __init__(
        self,
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
    ):
        self.limit = limit
        self.offset = offset


async def paginate(db: AsyncSession, stmt: Select, pagination: Pagination) -> tuple[list, int]:
    """Run ``stmt`` for one page and count the unpaginated rows."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await db.execute(count_stmt)).scalar_one()
    result = await db.execute(stmt.limit(pagination.limit).offset(pagination.offset))
    return list(result.scalars().unique().all()), total


async def get_or_404(db: AsyncSession, model: type[M], obj_id: int, name: str | None = None) -> M:
    obj = await db.get(model, obj_id)
    if obj is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{name or model.__name__} not found",
        )
    return obj


def scoped_institution_id(user: User) -> int | None:
    """Institution a user is confined to; None means unrestricted (admin)."""
    if user.role == UserRole.ADMIN:
        return None
    return user.institution_id


def ensure_institution_access(user: User, institution_id: int | None, name: str = "Resource") -> None:
    """404 when a non-admin touches another institution's data."""
    scope = scoped_institution_id(user)
    if user.role != UserRole.ADMIN and (scope is None or institution_id != scope):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{name} not found",
        )


def require_institution(user: User) -> int:
    """Staff must belong to an institution to create scoped records."""
    if user.institution_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is not assigned to an institution",
        )
    return user.institution_id
