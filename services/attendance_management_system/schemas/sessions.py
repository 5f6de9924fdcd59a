from datetime import date, datetime, time
from typing import List, Optional
from pydantic import BaseModel, Field
from services.attendance_management_system.models.class_session import SessionStatus


class ActiveSessionOut(BaseModel):
    session_id: str
    subject_id: str
    subject_name: str
    subject_code: str
    time_slot_id: str
    session_date: date
    status: SessionStatus
    start_time: time
    end_time: time
    room_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius: Optional[int] = None

    @property
    def has_geo_anchor(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class SessionOut(BaseModel):
    session_id: str
    subject_id: str
    time_slot_id: str
    session_date: date
    status: SessionStatus
    start_time: time
    end_time: time
    room_id: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class GenerateSessionsRequest(BaseModel):
    session_date: Optional[date] = None
    days: int = Field(default=1, ge=1, le=31)


class GenerateSessionsResponse(BaseModel):
    start_date: date
    days: int
    generated: int


class SweepResult(BaseModel):
    activated: int = 0
    completed: int = 0


class AbsentStudentOut(BaseModel):
    student_id: str
    student_name: str
    student_email: str


class AbsentStudentsResponse(BaseModel):
    session_id: str
    session_date: date
    count: int
    absent_students: List[AbsentStudentOut]


class DashboardSessionOut(BaseModel):
    session_id: str
    subject_id: str
    subject_name: str
    subject_code: str
    status: SessionStatus
    start_time: time
    end_time: time
    room_id: Optional[str] = None
    total_enrolled: int
    total_present: int
    total_absent: int
    attendance_rate: int


class DailyDashboardResponse(BaseModel):
    session_date: date
    sessions: List[DashboardSessionOut]
