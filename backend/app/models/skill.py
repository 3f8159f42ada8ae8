from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Float,
    DateTime,
    ForeignKey,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


skills_sources = Table(
    "skills_sources",
    Base.metadata,
    Column("skill_id", Integer, ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True),
    Column("source_id", Integer, ForeignKey("sources.id", ondelete="CASCADE"), primary_key=True),
)


class Skill(Base):
    __tablename__ = "skills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    domain_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("domains.id", ondelete="RESTRICT"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    # Relationships
    domain: Mapped["Domain"] = relationship("Domain", back_populates="skills")
    levels: Mapped[list["SkillLevel"]] = relationship(
        "SkillLevel",
        back_populates="skill",
        cascade="all, delete-orphan",
        order_by="SkillLevel.order",
    )
    sources: Mapped[list["Source"]] = relationship(
        "Source", secondary=skills_sources, back_populates="skills"
    )


class SkillLevel(Base):
    __tablename__ = "skill_levels"
    __table_args__ = (
        UniqueConstraint("skill_id", "order", name="uq_skill_level_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    skill_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("skills.id", ondelete="CASCADE"), nullable=False
    )
    skill_level_setting_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("skill_level_settings.id", ondelete="SET NULL"), nullable=True
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    # Score awarded on the institution's scoring scale
    standard: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # Relationships
    skill: Mapped["Skill"] = relationship("Skill", back_populates="levels")
