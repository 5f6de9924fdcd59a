# services/face_recognition/models/recognition_attempt.py
from sqlalchemy import Column, String, Float, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from shared.db import Base
import uuid


# Append-only log consumed by monitoring/analytics
class RecognitionAttempt(Base):
    __tablename__ = "recognition_attempts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(String(20), ForeignKey("student_accounts.id"), nullable=True)
    confidence = Column(Float, nullable=False, default=0)
    success = Column(Boolean, nullable=False)
    result = Column(String(20), nullable=False)  # SUCCESS / FAILED / NOT_REGISTERED / ADMIN_RESET ...
    subject_id = Column(String(20), nullable=True)
    time_slot_id = Column(String(20), nullable=True)
    attendance_id = Column(UUID(as_uuid=True), ForeignKey("attendances.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_recognition_student", "student_id"),
        Index("idx_recognition_created", "created_at"),
    )
