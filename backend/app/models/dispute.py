from datetime import datetime
from enum import Enum
from sqlalchemy import Text, Integer, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class DisputeStatus(str, Enum):
    PENDING = "Pending"
    UNDER_REVIEW = "Under review"
    SOLVED = "Solved"
    REJECTED = "Rejected"


class Dispute(Base):
    __tablename__ = "disputes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    result_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("results.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    status: Mapped[DisputeStatus] = mapped_column(
        SQLEnum(DisputeStatus), default=DisputeStatus.PENDING, nullable=False
    )
    student_argument: Mapped[str] = mapped_column(Text, nullable=False)
    teacher_argument: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    # Relationships
    result: Mapped["Result"] = relationship("Result", back_populates="dispute")
