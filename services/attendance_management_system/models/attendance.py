# services/attendance_management_system/models/attendance.py
from sqlalchemy import Column, ForeignKey, Enum, String, Float, Index, DateTime, LargeBinary, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from shared.db import Base
import enum
import uuid


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    LATE = "LATE"
    ABSENT = "ABSENT"
    EXCUSED = "EXCUSED"


class Attendance(Base):
    __tablename__ = "attendances"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(String(20), ForeignKey("student_accounts.id"), nullable=False)
    subject_id = Column(String(20), ForeignKey("subjects.id"), nullable=False)
    session_id = Column(String(64), ForeignKey("class_sessions.id"), nullable=False)
    enrollment_id = Column(UUID(as_uuid=True), ForeignKey("enrollments.id"), nullable=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(Enum(AttendanceStatus), nullable=False)
    image_id = Column(UUID(as_uuid=True), nullable=True)
    created_by = Column(String(20), nullable=True)  # admin id for manual records

    # Relationships
    student = relationship("StudentAccount")
    subject = relationship("Subject")
    session = relationship("ClassSession")

    __table_args__ = (
        Index('idx_attendance_student', 'student_id'),
        Index('idx_attendance_session', 'session_id'),
        UniqueConstraint('student_id', 'session_id', name='uq_attendance_per_student_per_session'),
    )


class CapturedImage(Base):
    __tablename__ = "captured_images"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(String(20), ForeignKey("student_accounts.id"), nullable=True)
    attendance_id = Column(UUID(as_uuid=True), ForeignKey("attendances.id"), nullable=True)
    subject_id = Column(String(20), ForeignKey("subjects.id"), nullable=True)
    image_data = Column(LargeBinary, nullable=False)
    confidence = Column(Float, nullable=False, default=0)
    recognition_result = Column(String(20), nullable=False)  # SUCCESS / FAILED
    captured_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('idx_captured_image_attendance', 'attendance_id'),
    )
