from datetime import date, datetime, time
from typing import List, Optional
from pydantic import BaseModel, Field
import uuid

from services.attendance_management_system.models.attendance import AttendanceStatus


class CheckInRequest(BaseModel):
    subject_id: str
    latitude: float = Field(..., ge=-90, le=90, allow_inf_nan=False)
    longitude: float = Field(..., ge=-180, le=180, allow_inf_nan=False)
    image_data: Optional[str] = Field(default=None, description="Base64 image, data-URL prefix allowed")
    face_descriptor: Optional[List[float]] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=100, description="Face recognition confidence (%)")


class CheckInResponse(BaseModel):
    success: bool = True
    attendance_id: uuid.UUID
    session_id: str
    status: AttendanceStatus
    message: str
    timestamp: datetime
    location_valid: bool
    face_recognition_success: bool
    image_id: Optional[uuid.UUID] = None


class AttendanceOut(BaseModel):
    id: uuid.UUID
    student_id: str
    subject_id: str
    session_id: str
    enrollment_id: uuid.UUID
    checked_in_at: datetime
    status: AttendanceStatus
    image_id: Optional[uuid.UUID] = None
    created_by: Optional[str] = None

    class Config:
        from_attributes = True


class AttendanceHistoryRecord(BaseModel):
    id: uuid.UUID
    subject_id: str
    subject_name: str
    session_id: str
    session_date: date
    start_time: time
    end_time: time
    checked_in_at: datetime
    status: AttendanceStatus
    image_id: Optional[uuid.UUID] = None


class AttendanceHistoryResponse(BaseModel):
    student_id: str
    page: int
    limit: int
    count: int
    total_records: int
    records: List[AttendanceHistoryRecord]


class AdminStatusUpdate(BaseModel):
    status: AttendanceStatus


class AdminCreateAttendance(BaseModel):
    student_id: str
    subject_id: str
    status: AttendanceStatus
    session_id: Optional[str] = Field(default=None, description="Defaults to the subject's session today")


class StudentAttendanceStats(BaseModel):
    student_id: str
    student_name: str
    email: str
    total_sessions: int
    present_days: int
    late_days: int
    excused_days: int
    absent_days: int
    absent_equivalent: int
    attendance_rate: int


class SubjectAttendanceStatsResponse(BaseModel):
    subject_id: str
    total_sessions: int
    students: List[StudentAttendanceStats]


class DailyAttendanceRecord(BaseModel):
    id: uuid.UUID
    student_id: str
    student_name: str
    subject_id: str
    session_id: str
    status: AttendanceStatus
    checked_in_at: datetime
    created_by: Optional[str] = None
    image_id: Optional[uuid.UUID] = None
    has_image: bool
    confidence: Optional[float] = None


class DailyAttendanceResponse(BaseModel):
    session_date: date
    count: int
    records: List[DailyAttendanceRecord]


class CapturedImageRecord(BaseModel):
    image_id: uuid.UUID
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    subject_id: Optional[str] = None
    subject_name: Optional[str] = None
    attendance_id: Optional[uuid.UUID] = None
    confidence: float
    recognition_result: str
    captured_at: datetime


class CapturedImageHistoryResponse(BaseModel):
    count: int
    records: List[CapturedImageRecord]
