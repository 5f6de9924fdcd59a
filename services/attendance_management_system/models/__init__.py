from .class_session import ClassSession, SessionStatus
from .attendance import Attendance, AttendanceStatus, CapturedImage
