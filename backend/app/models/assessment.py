from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Table,
    JSON,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class AssessmentStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


assessments_skills = Table(
    "assessments_skills",
    Base.metadata,
    Column("assessment_id", Integer, ForeignKey("assessments.id", ondelete="CASCADE"), primary_key=True),
    Column("skill_id", Integer, ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True),
)

assessments_groups = Table(
    "assessments_groups",
    Base.metadata,
    Column("assessment_id", Integer, ForeignKey("assessments.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", Integer, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)


class Assessment(Base):
    __tablename__ = "assessments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    institution_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("institutions.id", ondelete="CASCADE"), nullable=False
    )
    teacher_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    show_teacher_name: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    integrity_protection: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    difficulty_level: Mapped[str] = mapped_column(String(50), nullable=False)
    educational_level: Mapped[str] = mapped_column(String(100), nullable=False)
    output_language: Mapped[str] = mapped_column(String(5), default="es", nullable=False)
    evaluation_context: Mapped[str] = mapped_column(Text, nullable=False)
    case_text: Mapped[str] = mapped_column(Text, nullable=False)
    case_solution: Mapped[str | None] = mapped_column(Text, nullable=True)
    case_sections: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    case_navigation_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    questions_per_skill: Mapped[int] = mapped_column(Integer, nullable=False)
    available_from: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    available_until: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    # Days after completion during which a student may dispute a result
    dispute_period: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AssessmentStatus] = mapped_column(
        SQLEnum(AssessmentStatus), default=AssessmentStatus.ACTIVE, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    institution: Mapped["Institution"] = relationship("Institution")
    teacher: Mapped["User"] = relationship("User")
    skills: Mapped[list["Skill"]] = relationship("Skill", secondary=assessments_skills)
    groups: Mapped[list["Group"]] = relationship("Group", secondary=assessments_groups)
    attempts: Mapped[list["Attempt"]] = relationship(
        "Attempt", back_populates="assessment", cascade="all, delete-orphan"
    )

    def is_available(self, now: datetime) -> bool:
        return (
            self.status == AssessmentStatus.ACTIVE
            and self.available_from <= now <= self.available_until
        )
