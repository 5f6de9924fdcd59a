# services/attendance_management_system/models/class_session.py
from sqlalchemy import Column, String, Date, DateTime, Enum, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from shared.db import Base
import enum


class SessionStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ClassSession(Base):
    __tablename__ = "class_sessions"

    # SESSION_<date>_<timeSlotId>; the unique constraint below is what prevents duplicates
    id = Column(String(64), primary_key=True)
    subject_id = Column(String(20), ForeignKey("subjects.id"), nullable=False)
    time_slot_id = Column(String(20), ForeignKey("time_slots.id"), nullable=False)
    session_date = Column(Date, nullable=False)
    status = Column(Enum(SessionStatus), nullable=False, default=SessionStatus.SCHEDULED)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    subject = relationship("Subject")
    time_slot = relationship("TimeSlot")

    __table_args__ = (
        UniqueConstraint("time_slot_id", "session_date", name="uq_class_session_slot_date"),
        Index("idx_class_session_subject_date", "subject_id", "session_date"),
        Index("idx_class_session_status", "status"),
    )
