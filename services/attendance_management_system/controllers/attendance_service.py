import logging
import tempfile
import uuid
from collections import Counter
from datetime import date, datetime, time
from typing import Optional, Union

import openpyxl
from openpyxl.styles import Font, Alignment
from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from shared import config
from shared.auth import get_current_admin, get_current_student
from shared.config import local_now
from shared.db import get_db
from shared.errors import (
    AlreadyCheckedIn,
    AttendanceError,
    CheckInWindowClosed,
    NoSession,
    NotEnrolled,
    OutOfRange,
    RecordNotFound,
    SystemFailure,
)
from shared.logging_config import security_logger
from services.user_management.models.users import StudentAccount
from services.user_management.models.subjects import Subject, TimeSlot, Enrollment
from services.attendance_management_system.models.attendance import Attendance, AttendanceStatus, CapturedImage
from services.attendance_management_system.models.class_session import ClassSession, SessionStatus
from services.attendance_management_system.controllers.session_service import (
    get_current_active_session,
    wall_clock,
)
from services.attendance_management_system.geofence import distance_meters, within_geofence
from services.attendance_management_system.image_store import save_image
from services.attendance_management_system.schemas.attendance import (
    CheckInRequest,
    CheckInResponse,
    AttendanceOut,
    AttendanceHistoryRecord,
    AttendanceHistoryResponse,
    AdminStatusUpdate,
    AdminCreateAttendance,
    StudentAttendanceStats,
    SubjectAttendanceStatsResponse,
    DailyAttendanceRecord,
    DailyAttendanceResponse,
    CapturedImageRecord,
    CapturedImageHistoryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/attendance", tags=["Attendance Management"])


def _as_time(value: Union[time, datetime, str]) -> time:
    if isinstance(value, datetime):
        return wall_clock(value)
    if isinstance(value, time):
        return value.replace(microsecond=0, tzinfo=None)
    return time.fromisoformat(value)


def _seconds(value: time) -> int:
    return value.hour * 3600 + value.minute * 60 + value.second


def determine_attendance_status(
    start_time: Union[time, str],
    now: Union[time, datetime, str],
    late_threshold_minutes: Optional[int] = None,
    deadline_minutes: Optional[int] = None,
) -> Optional[AttendanceStatus]:
    """
    PRESENT up to and including start + late threshold, LATE up to and
    including start + deadline, None after that. Compares times of day, so
    the session and the check-in must fall on the same calendar date.
    """
    if late_threshold_minutes is None:
        late_threshold_minutes = config.LATE_THRESHOLD_MINUTES
    if deadline_minutes is None:
        deadline_minutes = config.CHECK_IN_DEADLINE_MINUTES

    start = _as_time(start_time)
    current = _as_time(now)

    elapsed = _seconds(current) - _seconds(start)
    if elapsed > deadline_minutes * 60:
        return None
    if elapsed <= late_threshold_minutes * 60:
        return AttendanceStatus.PRESENT
    return AttendanceStatus.LATE


async def get_enrollment_id(db: AsyncSession, student_id: str, subject_id: str) -> Optional[uuid.UUID]:
    result = await db.execute(
        select(Enrollment.id).where(
            Enrollment.student_id == student_id,
            Enrollment.subject_id == subject_id,
        )
    )
    return result.scalars().first()


async def is_enrolled(db: AsyncSession, student_id: str, subject_id: str) -> bool:
    return await get_enrollment_id(db, student_id, subject_id) is not None


async def find_attendance(db: AsyncSession, student_id: str, session_id: str) -> Optional[Attendance]:
    result = await db.execute(
        select(Attendance)
        .where(Attendance.student_id == student_id, Attendance.session_id == session_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def insert_attendance(
    db: AsyncSession,
    *,
    student_id: str,
    subject_id: str,
    session_id: str,
    enrollment_id: uuid.UUID,
    status: AttendanceStatus,
    checked_in_at: datetime,
    created_by: Optional[str] = None,
) -> Attendance:
    """
    Insert one attendance row. The (student_id, session_id) unique constraint
    turns a concurrent duplicate into AlreadyCheckedIn.
    """
    attendance = Attendance(
        student_id=student_id,
        subject_id=subject_id,
        session_id=session_id,
        enrollment_id=enrollment_id,
        checked_in_at=checked_in_at,
        status=status,
        image_id=None,
        created_by=created_by,
    )
    db.add(attendance)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await find_attendance(db, student_id, session_id)
        if existing is None:
            raise
        raise AlreadyCheckedIn(
            "Already checked in for this session",
            attendance_id=str(existing.id),
            session_id=session_id,
        )
    return attendance


async def link_attendance_image(db: AsyncSession, attendance_id: uuid.UUID, image_id: uuid.UUID) -> None:
    await db.execute(
        update(Attendance).where(Attendance.id == attendance_id).values(image_id=image_id)
    )
    await db.commit()


async def _attach_image(db: AsyncSession, attendance: Attendance, request: CheckInRequest) -> Optional[uuid.UUID]:
    # The attendance row is already committed; a failed image never undoes it
    try:
        image_id = await save_image(
            db,
            student_id=attendance.student_id,
            image_data=request.image_data,
            attendance_id=attendance.id,
            subject_id=attendance.subject_id,
            confidence=request.confidence,
            success=True,
        )
        await link_attendance_image(db, attendance.id, image_id)
        attendance.image_id = image_id
        return image_id
    except AttendanceError as exc:
        logger.info(f"Image for attendance {attendance.id} not stored: {exc.message}")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Failed to store image for attendance {attendance.id}")
    return None


async def check_in(
    db: AsyncSession,
    student_id: str,
    request: CheckInRequest,
    now: Optional[datetime] = None,
) -> CheckInResponse:
    """
    Validate and record one check-in. Each step must pass before the next
    runs; a failure raises the matching AttendanceError and writes nothing.
    """
    now = now or local_now()
    subject_id = request.subject_id
    logger.debug(f"Check-in attempt: student={student_id} subject={subject_id}")

    try:
        # 1. Session running right now
        session = await get_current_active_session(db, subject_id, now)

        # 2. Enrollment
        enrollment_id = await get_enrollment_id(db, student_id, subject_id)
        if enrollment_id is None:
            raise NotEnrolled("Student not enrolled in this subject", subject_id=subject_id)

        # 3. One attendance per session
        existing = await find_attendance(db, student_id, session.session_id)
        if existing is not None:
            raise AlreadyCheckedIn(
                "Already checked in for this session",
                attendance_id=str(existing.id),
                session_id=session.session_id,
            )

        # 4. Geofence, skipped for rooms without coordinates
        allowed_radius = session.radius or config.DEFAULT_GEOFENCE_RADIUS_METERS
        if not within_geofence(request.latitude, request.longitude, session.latitude, session.longitude, allowed_radius):
            distance = distance_meters(request.latitude, request.longitude, session.latitude, session.longitude)
            raise OutOfRange(
                f"You are {round(distance)}m away. Must be within {allowed_radius}m of classroom.",
                distance=round(distance),
                allowed_radius=allowed_radius,
                location_valid=False,
            )

        # 5. Time window
        status = determine_attendance_status(session.start_time, now)
        if status is None:
            raise CheckInWindowClosed(
                f"Check-in closed: only allowed within {config.CHECK_IN_DEADLINE_MINUTES} minutes "
                f"of the class start ({session.start_time.strftime('%H:%M')})",
                session_id=session.session_id,
                location_valid=True,
            )

        # 6. Attendance row first, image afterwards
        attendance = await insert_attendance(
            db,
            student_id=student_id,
            subject_id=subject_id,
            session_id=session.session_id,
            enrollment_id=enrollment_id,
            status=status,
            checked_in_at=now,
        )
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception(f"Check-in system error: student={student_id} subject={subject_id}")
        raise SystemFailure("Check-in system error") from exc

    # 7. Optional captured image
    image_id = None
    if request.image_data:
        image_id = await _attach_image(db, attendance, request)

    logger.info(f"Check-in successful: {attendance.id} - Status: {status.value}")
    return CheckInResponse(
        attendance_id=attendance.id,
        session_id=session.session_id,
        status=status,
        message=f"Check-in successful! Status: {status.value}",
        timestamp=now,
        location_valid=True,
        face_recognition_success=bool(request.face_descriptor),
        image_id=image_id,
    )


async def admin_update_attendance_status(
    db: AsyncSession,
    attendance_id: uuid.UUID,
    new_status: AttendanceStatus,
    admin_id: str,
) -> Attendance:
    result = await db.execute(select(Attendance).where(Attendance.id == attendance_id))
    attendance = result.scalars().first()
    if attendance is None:
        raise RecordNotFound("Attendance record not found", attendance_id=str(attendance_id))

    previous = attendance.status
    attendance.status = new_status
    await db.commit()

    security_logger.log_admin_action(
        admin_id, "UPDATE_ATTENDANCE_STATUS",
        f"{attendance_id}: {previous.value} -> {new_status.value}"
    )
    return attendance


async def _resolve_admin_session(
    db: AsyncSession,
    subject_id: str,
    session_id: Optional[str],
    now: datetime,
) -> str:
    if session_id:
        result = await db.execute(
            select(ClassSession.id).where(
                ClassSession.id == session_id,
                ClassSession.subject_id == subject_id,
                ClassSession.status != SessionStatus.CANCELLED,
            )
        )
        found = result.scalar_one_or_none()
        if found is None:
            raise NoSession(f"Session {session_id} not found for this subject", session_id=session_id)
        return found

    # Today's ACTIVE session first, then the latest of today's sessions
    result = await db.execute(
        select(ClassSession.id, ClassSession.status)
        .join(TimeSlot, ClassSession.time_slot_id == TimeSlot.id)
        .where(
            ClassSession.subject_id == subject_id,
            ClassSession.session_date == now.date(),
            ClassSession.status != SessionStatus.CANCELLED,
        )
        .order_by(TimeSlot.start_time.desc())
    )
    rows = result.all()
    if not rows:
        raise NoSession("No session found for this subject today", subject_id=subject_id)
    active = [sid for sid, status in rows if status == SessionStatus.ACTIVE]
    return active[0] if active else rows[0][0]


async def admin_create_attendance_record(
    db: AsyncSession,
    student_id: str,
    subject_id: str,
    status: AttendanceStatus,
    admin_id: str,
    session_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Attendance:
    """Manual attendance for a student who never checked in; skips the check-in pipeline."""
    now = now or local_now()
    resolved_session = await _resolve_admin_session(db, subject_id, session_id, now)

    enrollment_id = await get_enrollment_id(db, student_id, subject_id)
    if enrollment_id is None:
        raise NotEnrolled("Student is not enrolled in this subject", subject_id=subject_id)

    attendance = await insert_attendance(
        db,
        student_id=student_id,
        subject_id=subject_id,
        session_id=resolved_session,
        enrollment_id=enrollment_id,
        status=status,
        checked_in_at=now,
        created_by=admin_id,
    )
    security_logger.log_admin_action(
        admin_id, "CREATE_ATTENDANCE",
        f"{attendance.id}: {student_id} in {resolved_session} -> {status.value}"
    )
    return attendance


async def get_attendance_history(
    db: AsyncSession,
    student_id: str,
    subject_id: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> AttendanceHistoryResponse:
    filters = [Attendance.student_id == student_id]
    if subject_id:
        filters.append(Attendance.subject_id == subject_id)

    total = (await db.execute(select(func.count(Attendance.id)).where(*filters))).scalar_one()

    result = await db.execute(
        select(Attendance, Subject.name, ClassSession.session_date, TimeSlot.start_time, TimeSlot.end_time)
        .join(Subject, Attendance.subject_id == Subject.id)
        .join(ClassSession, Attendance.session_id == ClassSession.id)
        .join(TimeSlot, ClassSession.time_slot_id == TimeSlot.id)
        .where(*filters)
        .order_by(Attendance.checked_in_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    records = [
        AttendanceHistoryRecord(
            id=attendance.id,
            subject_id=attendance.subject_id,
            subject_name=subject_name,
            session_id=attendance.session_id,
            session_date=session_date,
            start_time=start_time,
            end_time=end_time,
            checked_in_at=attendance.checked_in_at,
            status=attendance.status,
            image_id=attendance.image_id,
        )
        for attendance, subject_name, session_date, start_time, end_time in result.all()
    ]
    return AttendanceHistoryResponse(
        student_id=student_id,
        page=page,
        limit=limit,
        count=len(records),
        total_records=total,
        records=records,
    )


async def get_attendance_records_by_date(db: AsyncSession, target_date: date) -> DailyAttendanceResponse:
    """Every attendance row of the sessions held on `target_date`, newest first."""
    result = await db.execute(
        select(Attendance, StudentAccount.name, CapturedImage.confidence)
        .join(ClassSession, Attendance.session_id == ClassSession.id)
        .join(StudentAccount, Attendance.student_id == StudentAccount.id)
        .outerjoin(CapturedImage, Attendance.image_id == CapturedImage.id)
        .where(ClassSession.session_date == target_date)
        .order_by(Attendance.checked_in_at.desc())
    )
    records = [
        DailyAttendanceRecord(
            id=attendance.id,
            student_id=attendance.student_id,
            student_name=student_name,
            subject_id=attendance.subject_id,
            session_id=attendance.session_id,
            status=attendance.status,
            checked_in_at=attendance.checked_in_at,
            created_by=attendance.created_by,
            image_id=attendance.image_id,
            has_image=attendance.image_id is not None,
            confidence=confidence,
        )
        for attendance, student_name, confidence in result.all()
    ]
    return DailyAttendanceResponse(session_date=target_date, count=len(records), records=records)


async def get_captured_image_history(db: AsyncSession, limit: int = 100) -> CapturedImageHistoryResponse:
    # Image bytes stay out of the listing
    result = await db.execute(
        select(
            CapturedImage.id,
            CapturedImage.student_id,
            StudentAccount.name,
            CapturedImage.subject_id,
            Subject.name,
            CapturedImage.attendance_id,
            CapturedImage.confidence,
            CapturedImage.recognition_result,
            CapturedImage.captured_at,
        )
        .outerjoin(StudentAccount, CapturedImage.student_id == StudentAccount.id)
        .outerjoin(Subject, CapturedImage.subject_id == Subject.id)
        .order_by(CapturedImage.captured_at.desc())
        .limit(limit)
    )
    records = [
        CapturedImageRecord(
            image_id=image_id,
            student_id=student_id,
            student_name=student_name,
            subject_id=subject_id,
            subject_name=subject_name,
            attendance_id=attendance_id,
            confidence=confidence,
            recognition_result=recognition_result,
            captured_at=captured_at,
        )
        for (image_id, student_id, student_name, subject_id, subject_name,
             attendance_id, confidence, recognition_result, captured_at) in result.all()
    ]
    return CapturedImageHistoryResponse(count=len(records), records=records)


async def get_subject_attendance_stats(db: AsyncSession, subject_id: str) -> SubjectAttendanceStatsResponse:
    """
    Per-student counts over the subject's ACTIVE and COMPLETED sessions.
    Two late arrivals count as one absence in absent_equivalent.
    """
    held = [SessionStatus.ACTIVE, SessionStatus.COMPLETED]
    total_sessions = (await db.execute(
        select(func.count(ClassSession.id)).where(
            ClassSession.subject_id == subject_id,
            ClassSession.status.in_(held),
        )
    )).scalar_one()

    students = (await db.execute(
        select(StudentAccount.id, StudentAccount.name, StudentAccount.email)
        .join(Enrollment, Enrollment.student_id == StudentAccount.id)
        .where(Enrollment.subject_id == subject_id)
        .order_by(StudentAccount.name)
    )).all()

    counted = (await db.execute(
        select(Attendance.student_id, Attendance.status, func.count(Attendance.id))
        .join(ClassSession, Attendance.session_id == ClassSession.id)
        .where(Attendance.subject_id == subject_id, ClassSession.status.in_(held))
        .group_by(Attendance.student_id, Attendance.status)
    )).all()
    per_student = {}
    for sid, status, count in counted:
        per_student.setdefault(sid, Counter())[status] = count

    stats = []
    for sid, name, email in students:
        counts = per_student.get(sid, Counter())
        present = counts[AttendanceStatus.PRESENT]
        late = counts[AttendanceStatus.LATE]
        excused = counts[AttendanceStatus.EXCUSED]
        absent = max(0, total_sessions - present - late - excused)
        stats.append(StudentAttendanceStats(
            student_id=sid,
            student_name=name,
            email=email,
            total_sessions=total_sessions,
            present_days=present,
            late_days=late,
            excused_days=excused,
            absent_days=absent,
            absent_equivalent=absent + late // 2,
            attendance_rate=round((present + late) / total_sessions * 100) if total_sessions else 0,
        ))

    return SubjectAttendanceStatsResponse(subject_id=subject_id, total_sessions=total_sessions, students=stats)


def build_stats_workbook(stats: SubjectAttendanceStatsResponse) -> openpyxl.Workbook:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Attendance Report"

    headers = ["Student ID", "Student Name", "Email", "Total Sessions", "Present", "Late",
               "Excused", "Absent", "Absent Equivalent", "Attendance %"]
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal="center")

    for row in stats.students:
        ws.append([
            row.student_id, row.student_name, row.email, row.total_sessions,
            row.present_days, row.late_days, row.excused_days, row.absent_days,
            row.absent_equivalent, f"{row.attendance_rate}%",
        ])

    summary_row = len(stats.students) + 3
    ws[f"A{summary_row}"] = "Subject Summary"
    ws[f"A{summary_row}"].font = Font(bold=True)
    ws[f"A{summary_row + 1}"] = "Subject"
    ws[f"B{summary_row + 1}"] = stats.subject_id
    ws[f"A{summary_row + 2}"] = "Total Students"
    ws[f"B{summary_row + 2}"] = len(stats.students)
    ws[f"A{summary_row + 3}"] = "Total Sessions"
    ws[f"B{summary_row + 3}"] = stats.total_sessions
    return wb


# --- STUDENT CHECK-IN ---
@router.post("/check-in", response_model=CheckInResponse)
async def student_check_in(
    payload: CheckInRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_student)
):
    return await check_in(db, current_user["user_id"], payload)


# --- OWN ATTENDANCE HISTORY ---
@router.get("/history", response_model=AttendanceHistoryResponse)
async def read_attendance_history(
    subject_id: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_student)
):
    return await get_attendance_history(db, current_user["user_id"], subject_id, page, limit)


# --- ADMIN: CHANGE STATUS OF A RECORD ---
@router.patch("/{attendance_id}/status", response_model=AttendanceOut)
async def update_attendance_status(
    attendance_id: uuid.UUID,
    payload: AdminStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await admin_update_attendance_status(db, attendance_id, payload.status, current_user["user_id"])


# --- ADMIN: CREATE A RECORD FOR A STUDENT WHO NEVER CHECKED IN ---
@router.post("/admin-create", response_model=AttendanceOut)
async def create_attendance_record(
    payload: AdminCreateAttendance,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await admin_create_attendance_record(
        db,
        payload.student_id,
        payload.subject_id,
        payload.status,
        current_user["user_id"],
        session_id=payload.session_id,
    )


# --- ADMIN: ATTENDANCE OF A DAY ---
@router.get("/by-date", response_model=DailyAttendanceResponse)
async def read_attendance_by_date(
    session_date: Optional[date] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await get_attendance_records_by_date(db, session_date or local_now().date())


# --- ADMIN: CAPTURED IMAGE HISTORY ---
@router.get("/images", response_model=CapturedImageHistoryResponse)
async def read_captured_images(
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await get_captured_image_history(db, limit)


# --- ADMIN: SUBJECT STATISTICS ---
@router.get("/subjects/{subject_id}/stats", response_model=SubjectAttendanceStatsResponse)
async def read_subject_stats(
    subject_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await get_subject_attendance_stats(db, subject_id)


# --- ADMIN: SUBJECT STATISTICS AS EXCEL ---
@router.get("/subjects/{subject_id}/export-excel")
async def export_subject_attendance(
    subject_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    stats = await get_subject_attendance_stats(db, subject_id)
    wb = build_stats_workbook(stats)

    with tempfile.NamedTemporaryFile(delete=False, suffix=".xlsx") as tmp:
        wb.save(tmp.name)
        tmp_path = tmp.name

    return FileResponse(
        tmp_path,
        filename=f"attendance_{subject_id}.xlsx",
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
