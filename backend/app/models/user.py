from datetime import datetime
from enum import Enum
from sqlalchemy import String, Integer, DateTime, Boolean, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.models.group import users_groups


class UserRole(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    CLERK = "clerk"
    STUDENT = "student"


STAFF_ROLES = (UserRole.TEACHER, UserRole.CLERK)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    given_name: Mapped[str] = mapped_column(String(100), nullable=False)
    family_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    role: Mapped[UserRole] = mapped_column(SQLEnum(UserRole), nullable=False)
    institution_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("institutions.id", ondelete="RESTRICT"), nullable=True
    )
    language_preference: Mapped[str] = mapped_column(String(5), default="es", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    reset_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reset_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    institution: Mapped["Institution | None"] = relationship(
        "Institution", back_populates="users"
    )
    groups: Mapped[list["Group"]] = relationship(
        "Group", secondary=users_groups, back_populates="members"
    )

    @property
    def full_name(self) -> str:
        return f"{self.given_name} {self.family_name}".strip()

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
