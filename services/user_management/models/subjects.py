# services/user_management/models/subjects.py

from sqlalchemy import Column, String, Float, Integer, Time, ForeignKey, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from shared.db import Base
import uuid


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(String(20), primary_key=True)
    code = Column(String(20), nullable=False, unique=True)
    name = Column(String, nullable=False)

    time_slots = relationship("TimeSlot", back_populates="subject", cascade="all, delete-orphan")


# Room geo-anchor; rooms without coordinates skip the geofence check
class Room(Base):
    __tablename__ = "rooms"

    id = Column(String(20), primary_key=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    radius = Column(Integer, nullable=True)  # meters


# Weekly recurring slot of a subject
class TimeSlot(Base):
    __tablename__ = "time_slots"

    id = Column(String(20), primary_key=True)
    subject_id = Column(String(20), ForeignKey("subjects.id"), nullable=False)
    room_id = Column(String(20), ForeignKey("rooms.id"), nullable=True)
    day_of_week = Column(String(3), nullable=False)  # "Mon" .. "Sun"
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    __table_args__ = (
        Index("ix_time_slot_day", "day_of_week"),
    )

    subject = relationship("Subject", back_populates="time_slots")
    room = relationship("Room")


class Enrollment(Base):
    __tablename__ = "enrollments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(String(20), ForeignKey("student_accounts.id"), nullable=False)
    subject_id = Column(String(20), ForeignKey("subjects.id"), nullable=False)
    semester = Column(String(20), nullable=True)

    __table_args__ = (
        UniqueConstraint("student_id", "subject_id", name="uq_enrollment_student_subject"),
    )

    student = relationship("StudentAccount", back_populates="enrollments")
    subject = relationship("Subject")
