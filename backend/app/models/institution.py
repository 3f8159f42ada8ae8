from datetime import datetime
from sqlalchemy import String, Text, Integer, Float, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class Institution(Base):
    __tablename__ = "institutions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Maximum score shown alongside results
    scoring_scale: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    users: Mapped[list["User"]] = relationship("User", back_populates="institution")
    level_settings: Mapped[list["SkillLevelSetting"]] = relationship(
        "SkillLevelSetting",
        back_populates="institution",
        cascade="all, delete-orphan",
        order_by="SkillLevelSetting.order",
    )


class SkillLevelSetting(Base):
    """Institution-wide template of ordered proficiency labels."""

    __tablename__ = "skill_level_settings"
    __table_args__ = (
        UniqueConstraint("institution_id", "order", name="uq_level_setting_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    institution_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    lower_limit: Mapped[float | None] = mapped_column(Float, nullable=True)
    upper_limit: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Relationships
    institution: Mapped["Institution"] = relationship(
        "Institution", back_populates="level_settings"
    )
