from sqlalchemy import Text, Integer, Float, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class Result(Base):
    """The proficiency level assigned to one skill in a completed attempt."""

    __tablename__ = "results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("attempts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    skill_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("skills.id", ondelete="CASCADE"), nullable=False
    )
    skill_level_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("skill_levels.id", ondelete="RESTRICT"), nullable=False
    )
    grade: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    feedback: Mapped[str] = mapped_column(Text, default="", nullable=False)

    # Relationships
    attempt: Mapped["Attempt"] = relationship("Attempt", back_populates="results")
    skill: Mapped["Skill"] = relationship("Skill")
    skill_level: Mapped["SkillLevel"] = relationship("SkillLevel")
    dispute: Mapped["Dispute | None"] = relationship(
        "Dispute", back_populates="result", uselist=False, cascade="all, delete-orphan"
    )
