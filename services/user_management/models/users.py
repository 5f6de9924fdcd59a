# services/user_management/models/users.py
from sqlalchemy import Column, String, DateTime, Boolean, JSON, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from shared.db import Base


class StudentAccount(Base):
    __tablename__ = "student_accounts"

    id = Column(String(20), primary_key=True)  # Student code, e.g. "SV001"
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    # Registered face descriptor, NULL until the student registers
    face_embedding = Column(JSON(none_as_null=True), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    enrollments = relationship("Enrollment", back_populates="student", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_student_email', 'email'),
    )


class AdminAccount(Base):
    __tablename__ = "admin_accounts"

    id = Column(String(20), primary_key=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
