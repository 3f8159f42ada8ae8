from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import select, func, delete, insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.group import Group, users_groups
from app.models.user import User, UserRole
from app.routers.auth import StaffUser
from app.routers.common import (
    Page,
    Pagination,
    paginate,
    get_or_404,
    ensure_institution_access,
    scoped_institution_id,
    require_institution,
)

router = APIRouter()


# Schemas
class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    # Admins pick the institution; staff always create in their own
    institution_id: int | None = None


class GroupUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None


class GroupResponse(BaseModel):
    id: int
    institution_id: int
    name: str
    description: str | None
    member_count: int = 0
    created_at: datetime


class MemberResponse(BaseModel):
    id: int
    email: str
    given_name: str
    family_name: str
    role: UserRole

    class Config:
        from_attributes = True


class AddMembersRequest(BaseModel):
    user_ids: list[int] = Field(min_length=1)


def _to_response(group: Group, member_count: int) -> GroupResponse:
    return GroupResponse(
        id=group.id,
        institution_id=group.institution_id,
        name=group.name,
        description=group.description,
        member_count=member_count,
        created_at=group.created_at,
    )


async def _member_count(db: AsyncSession, group_id: int) -> int:
    return (
        await db.execute(
            select(func.count()).select_from(users_groups).where(users_groups.c.group_id == group_id)
        )
    ).scalar_one()


async def get_scoped_group(db: AsyncSession, group_id: int, user: User) -> Group:
    group = await get_or_404(db, Group, group_id)
    ensure_institution_access(user, group.institution_id, "Group")
    return group


# Endpoints
@router.get("", response_model=Page[GroupResponse])
async def list_groups(
    current_user: StaffUser,
    search: str | None = None,
    institution_id: int | None = None,
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Group).order_by(Group.name, Group.id)
    scope = scoped_institution_id(current_user)
    if scope is not None:
        stmt = stmt.where(Group.institution_id == scope)
    elif institution_id is not None:
        stmt = stmt.where(Group.institution_id == institution_id)
    if search:
        stmt = stmt.where(Group.name.ilike(f"%{search}%"))

    groups, total = await paginate(db, stmt, pagination)

    counts: dict[int, int] = {}
    if groups:
        rows = await db.execute(
            select(users_groups.c.group_id, func.count())
            .where(users_groups.c.group_id.in_([g.id for g in groups]))
            .group_by(users_groups.c.group_id)
        )
        counts = dict(rows.all())

    return Page(
        items=[_to_response(g, counts.get(g.id, 0)) for g in groups],
        total=total,
        limit=pagination.limit,
        offset=pagination.offset,
    )


@router.post("", response_model=GroupResponse, status_code=status.HTTP_201_CREATED)
async def create_group(data: GroupCreate, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    if current_user.role == UserRole.ADMIN and data.institution_id is not None:
        institution_id = data.institution_id
    else:
        institution_id = require_institution(current_user)

    group = Group(institution_id=institution_id, name=data.name, description=data.description)
    db.add(group)
    await db.commit()
    await db.refresh(group)
    return _to_response(group, 0)


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(group_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    group = await get_scoped_group(db, group_id, current_user)
    return _to_response(group, await _member_count(db, group.id))


@router.put("/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: int,
    data: GroupUpdate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    group = await get_scoped_group(db, group_id, current_user)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(group, field, value)
    await db.commit()
    await db.refresh(group)
    return _to_response(group, await _member_count(db, group.id))


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(group_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    group = await get_scoped_group(db, group_id, current_user)
    await db.delete(group)
    await db.commit()


# Members
@router.get("/{group_id}/members", response_model=list[MemberResponse])
async def list_members(group_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    await get_scoped_group(db, group_id, current_user)
    result = await db.execute(
        select(User)
        .join(users_groups, users_groups.c.user_id == User.id)
        .where(users_groups.c.group_id == group_id)
        .order_by(User.family_name, User.given_name, User.id)
    )
    return result.scalars().all()


@router.get("/{group_id}/members/available", response_model=list[MemberResponse])
async def list_available_members(
    group_id: int,
    current_user: StaffUser,
    search: str | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Users of the group's institution that are not members yet."""
    group = await get_scoped_group(db, group_id, current_user)
    members = select(users_groups.c.user_id).where(users_groups.c.group_id == group_id)
    stmt = (
        select(User)
        .where(
            User.institution_id == group.institution_id,
            User.is_active.is_(True),
            User.id.not_in(members),
        )
        .order_by(User.family_name, User.given_name, User.id)
    )
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            User.email.ilike(pattern) | User.given_name.ilike(pattern) | User.family_name.ilike(pattern)
        )
    result = await db.execute(stmt)
    return result.scalars().all()


@router.post("/{group_id}/members", response_model=list[MemberResponse])
async def add_members(
    group_id: int,
    data: AddMembersRequest,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    """Add users to the group. Users already in it are skipped."""
    group = await get_scoped_group(db, group_id, current_user)

    requested = set(data.user_ids)
    result = await db.execute(select(User).where(User.id.in_(requested)))
    users = result.scalars().all()
    foreign = [u.id for u in users if u.institution_id != group.institution_id]
    missing = requested - {u.id for u in users}
    if missing or foreign:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="All users must exist and belong to the group's institution",
        )

    existing = set(
        (
            await db.execute(
                select(users_groups.c.user_id).where(
                    users_groups.c.group_id == group_id,
                    users_groups.c.user_id.in_(requested),
                )
            )
        ).scalars()
    )
    new_ids = sorted(requested - existing)
    if new_ids:
        await db.execute(
            insert(users_groups),
            [{"user_id": user_id, "group_id": group_id} for user_id in new_ids],
        )
        await db.commit()

    return await list_members(group_id, current_user, db)


@router.delete("/{group_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    group_id: int,
    user_id: int,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    await get_scoped_group(db, group_id, current_user)
    result = await db.execute(
        delete(users_groups).where(
            users_groups.c.group_id == group_id,
            users_groups.c.user_id == user_id,
        )
    )
    if result.rowcount == 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User is not a member of this group",
        )
    await db.commit()
