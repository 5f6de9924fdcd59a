import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import and_, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from shared.auth import get_current_admin, get_current_user
from shared.config import local_now
from shared.db import get_db
from shared.errors import NoActiveSession, RecordNotFound
from services.user_management.models.users import StudentAccount
from services.user_management.models.subjects import Subject, Room, TimeSlot, Enrollment
from services.attendance_management_system.models.class_session import ClassSession, SessionStatus
from services.attendance_management_system.models.attendance import Attendance, AttendanceStatus
from services.attendance_management_system.schemas.sessions import (
    ActiveSessionOut,
    SessionOut,
    GenerateSessionsRequest,
    GenerateSessionsResponse,
    SweepResult,
    AbsentStudentOut,
    AbsentStudentsResponse,
    DashboardSessionOut,
    DailyDashboardResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Class Sessions"])

DAY_CODES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# Allowed predecessors of each target status; transitions never go backwards
_PREDECESSORS = {
    SessionStatus.ACTIVE: (SessionStatus.SCHEDULED,),
    SessionStatus.COMPLETED: (SessionStatus.SCHEDULED, SessionStatus.ACTIVE),
    SessionStatus.CANCELLED: (SessionStatus.SCHEDULED, SessionStatus.ACTIVE),
}


def day_code(target_date: date) -> str:
    return DAY_CODES[target_date.weekday()]


def build_session_id(session_date: date, time_slot_id: str) -> str:
    return f"SESSION_{session_date.isoformat()}_{time_slot_id}"


def wall_clock(now: datetime) -> time:
    """Time of day at one-second resolution, without tzinfo."""
    return now.time().replace(microsecond=0, tzinfo=None)


def reconcile(status: SessionStatus, session_date: date, start_time: time, end_time: time, now: datetime) -> SessionStatus:
    """
    Re-derive the status a session should have at `now`.

    SCHEDULED sessions of today activate once start_time has passed, ACTIVE
    sessions complete once end_time has passed or their date is over.
    SCHEDULED sessions of earlier dates are left alone.
    """
    if status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED):
        return status

    today = now.date()
    if session_date > today:
        return status
    if session_date < today:
        return SessionStatus.COMPLETED if status == SessionStatus.ACTIVE else status

    current = wall_clock(now)
    if status == SessionStatus.SCHEDULED and current >= start_time:
        status = SessionStatus.ACTIVE
    if status == SessionStatus.ACTIVE and current > end_time:
        status = SessionStatus.COMPLETED
    return status


def in_session_window(start_time: time, end_time: time, now: datetime) -> bool:
    return start_time <= wall_clock(now) <= end_time


async def update_session_status(
    db: AsyncSession,
    session_id: str,
    new_status: SessionStatus,
    now: Optional[datetime] = None,
) -> bool:
    """
    Move a session forward to `new_status` and stamp started_at / ended_at.
    Returns False when the session is already at or past that status.
    Database errors propagate.
    """
    now = now or local_now()
    values = {"status": new_status}
    if new_status == SessionStatus.ACTIVE:
        values["started_at"] = now
    elif new_status == SessionStatus.COMPLETED:
        values["ended_at"] = now

    result = await db.execute(
        update(ClassSession)
        .where(
            ClassSession.id == session_id,
            ClassSession.status.in_(_PREDECESSORS.get(new_status, ())),
        )
        .values(**values)
    )
    await db.commit()

    if result.rowcount:
        logger.info(f"Session {session_id} status updated to {new_status.value}")
        return True

    exists = await db.execute(select(ClassSession.id).where(ClassSession.id == session_id))
    if exists.scalar_one_or_none() is None:
        raise RecordNotFound(f"Class session {session_id} not found", session_id=session_id)
    logger.debug(f"Session {session_id} not moved to {new_status.value}: already past it")
    return False


async def generate_sessions_for_date(db: AsyncSession, target_date: Optional[date] = None) -> int:
    """
    Create a SCHEDULED session for every time slot on the target date's
    weekday that does not have one yet. Returns the number created.
    """
    target_date = target_date or local_now().date()
    code = day_code(target_date)

    slots = (await db.execute(
        select(TimeSlot.id, TimeSlot.subject_id).where(TimeSlot.day_of_week == code)
    )).all()

    existing = set((await db.execute(
        select(ClassSession.time_slot_id).where(ClassSession.session_date == target_date)
    )).scalars().all())

    generated = 0
    for slot_id, subject_id in slots:
        if slot_id in existing:
            continue
        db.add(ClassSession(
            id=build_session_id(target_date, slot_id),
            subject_id=subject_id,
            time_slot_id=slot_id,
            session_date=target_date,
            status=SessionStatus.SCHEDULED,
            started_at=None,
            ended_at=None,
        ))
        try:
            await db.commit()
            generated += 1
        except IntegrityError:
            # Another request generated it between our read and insert
            await db.rollback()
            logger.debug(f"Session for slot {slot_id} on {target_date} already exists")

    if generated:
        logger.info(f"Generated {generated} new sessions for {code} ({target_date})")
    return generated


async def generate_sessions_for_range(db: AsyncSession, start_date: Optional[date] = None, days: int = 1) -> int:
    start_date = start_date or local_now().date()
    total = 0
    for offset in range(days):
        total += await generate_sessions_for_date(db, start_date + timedelta(days=offset))
    return total


async def complete_expired_sessions(db: AsyncSession, now: Optional[datetime] = None) -> SweepResult:
    """
    Activate today's SCHEDULED sessions whose start has passed and complete
    ACTIVE sessions whose end has passed, including ACTIVE sessions left over
    from earlier dates. Idempotent.
    """
    now = now or local_now()
    today = now.date()

    rows = (await db.execute(
        select(
            ClassSession.id,
            ClassSession.status,
            ClassSession.session_date,
            TimeSlot.start_time,
            TimeSlot.end_time,
        )
        .join(TimeSlot, ClassSession.time_slot_id == TimeSlot.id)
        .where(
            or_(
                and_(ClassSession.status == SessionStatus.SCHEDULED, ClassSession.session_date == today),
                and_(ClassSession.status == SessionStatus.ACTIVE, ClassSession.session_date <= today),
            )
        )
    )).all()

    result = SweepResult()
    for session_id, current, session_date, start_time, end_time in rows:
        target = reconcile(current, session_date, start_time, end_time, now)
        if target == current:
            continue
        if current == SessionStatus.SCHEDULED:
            if await update_session_status(db, session_id, SessionStatus.ACTIVE, now):
                result.activated += 1
        if target == SessionStatus.COMPLETED:
            if await update_session_status(db, session_id, SessionStatus.COMPLETED, now):
                result.completed += 1

    if result.activated or result.completed:
        logger.info(f"Session sweep: activated {result.activated}, completed {result.completed}")
    return result


async def get_current_active_session(
    db: AsyncSession,
    subject_id: str,
    now: Optional[datetime] = None,
) -> ActiveSessionOut:
    """
    The session of `subject_id` running right now, with subject and room
    details. Lazily generates today's sessions and sweeps stale ones first.
    Raises NoActiveSession when nothing is running.
    """
    now = now or local_now()
    today = now.date()

    await generate_sessions_for_date(db, today)
    await complete_expired_sessions(db, now)

    rows = (await db.execute(
        select(
            ClassSession.id,
            ClassSession.subject_id,
            ClassSession.time_slot_id,
            ClassSession.session_date,
            ClassSession.status,
            Subject.name,
            Subject.code,
            TimeSlot.start_time,
            TimeSlot.end_time,
            TimeSlot.room_id,
            Room.latitude,
            Room.longitude,
            Room.radius,
        )
        .join(Subject, ClassSession.subject_id == Subject.id)
        .join(TimeSlot, ClassSession.time_slot_id == TimeSlot.id)
        .outerjoin(Room, TimeSlot.room_id == Room.id)
        .where(
            ClassSession.subject_id == subject_id,
            ClassSession.session_date == today,
            ClassSession.status.in_([SessionStatus.SCHEDULED, SessionStatus.ACTIVE]),
        )
        .order_by(TimeSlot.start_time)
    )).all()

    # Overlapping slots of one subject: earliest start wins
    row = next((r for r in rows if in_session_window(r.start_time, r.end_time, now)), None)
    if row is None:
        raise NoActiveSession("No active class session at this time", subject_id=subject_id)

    status = row.status
    if status == SessionStatus.SCHEDULED:
        await update_session_status(db, row.id, SessionStatus.ACTIVE, now)
        status = SessionStatus.ACTIVE

    return ActiveSessionOut(
        session_id=row.id,
        subject_id=row.subject_id,
        subject_name=row.name,
        subject_code=row.code,
        time_slot_id=row.time_slot_id,
        session_date=row.session_date,
        status=status,
        start_time=row.start_time,
        end_time=row.end_time,
        room_id=row.room_id,
        latitude=row.latitude,
        longitude=row.longitude,
        radius=row.radius,
    )


async def list_sessions_for_date(db: AsyncSession, target_date: date) -> List[SessionOut]:
    result = await db.execute(
        select(ClassSession, TimeSlot)
        .join(TimeSlot, ClassSession.time_slot_id == TimeSlot.id)
        .where(ClassSession.session_date == target_date)
        .order_by(TimeSlot.start_time)
        .execution_options(populate_existing=True)
    )
    return [
        SessionOut(
            session_id=session.id,
            subject_id=session.subject_id,
            time_slot_id=session.time_slot_id,
            session_date=session.session_date,
            status=session.status,
            start_time=slot.start_time,
            end_time=slot.end_time,
            room_id=slot.room_id,
            started_at=session.started_at,
            ended_at=session.ended_at,
        )
        for session, slot in result.all()
    ]


async def get_absent_students_for_session(db: AsyncSession, session_id: str) -> AbsentStudentsResponse:
    session_row = (await db.execute(
        select(ClassSession.subject_id, ClassSession.session_date).where(ClassSession.id == session_id)
    )).first()
    if session_row is None:
        raise RecordNotFound(f"Class session {session_id} not found", session_id=session_id)

    result = await db.execute(
        select(StudentAccount.id, StudentAccount.name, StudentAccount.email)
        .join(Enrollment, Enrollment.student_id == StudentAccount.id)
        .outerjoin(
            Attendance,
            and_(Attendance.student_id == StudentAccount.id, Attendance.session_id == session_id),
        )
        .where(Enrollment.subject_id == session_row.subject_id, Attendance.id.is_(None))
        .order_by(StudentAccount.name)
    )
    absent = [
        AbsentStudentOut(student_id=sid, student_name=name, student_email=email)
        for sid, name, email in result.all()
    ]
    return AbsentStudentsResponse(
        session_id=session_id,
        session_date=session_row.session_date,
        count=len(absent),
        absent_students=absent,
    )


async def get_daily_attendance_dashboard(db: AsyncSession, target_date: date) -> DailyDashboardResponse:
    """
    Per-session turnout for one date. PRESENT and LATE count as attended;
    every other enrolled student counts as absent.
    """
    sessions = (await db.execute(
        select(
            ClassSession.id,
            ClassSession.subject_id,
            ClassSession.status,
            Subject.name,
            Subject.code,
            TimeSlot.start_time,
            TimeSlot.end_time,
            TimeSlot.room_id,
        )
        .join(Subject, ClassSession.subject_id == Subject.id)
        .join(TimeSlot, ClassSession.time_slot_id == TimeSlot.id)
        .where(ClassSession.session_date == target_date)
        .order_by(TimeSlot.start_time)
    )).all()
    if not sessions:
        return DailyDashboardResponse(session_date=target_date, sessions=[])

    subject_ids = {row.subject_id for row in sessions}
    enrolled = dict((await db.execute(
        select(Enrollment.subject_id, func.count(func.distinct(Enrollment.student_id)))
        .where(Enrollment.subject_id.in_(subject_ids))
        .group_by(Enrollment.subject_id)
    )).all())

    present = dict((await db.execute(
        select(Attendance.session_id, func.count(func.distinct(Attendance.student_id)))
        .where(
            Attendance.session_id.in_([row.id for row in sessions]),
            Attendance.status.in_([AttendanceStatus.PRESENT, AttendanceStatus.LATE]),
        )
        .group_by(Attendance.session_id)
    )).all())

    rows = []
    for row in sessions:
        total_enrolled = enrolled.get(row.subject_id, 0)
        total_present = present.get(row.id, 0)
        rows.append(DashboardSessionOut(
            session_id=row.id,
            subject_id=row.subject_id,
            subject_name=row.name,
            subject_code=row.code,
            status=row.status,
            start_time=row.start_time,
            end_time=row.end_time,
            room_id=row.room_id,
            total_enrolled=total_enrolled,
            total_present=total_present,
            total_absent=max(0, total_enrolled - total_present),
            attendance_rate=round(total_present / total_enrolled * 100) if total_enrolled else 0,
        ))
    return DailyDashboardResponse(session_date=target_date, sessions=rows)


# --- CURRENT ACTIVE SESSION FOR A SUBJECT ---
@router.get("/active/{subject_id}", response_model=ActiveSessionOut)
async def read_active_session(
    subject_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_user)
):
    return await get_current_active_session(db, subject_id)


# --- GENERATE SESSIONS (ADMIN) ---
@router.post("/generate", response_model=GenerateSessionsResponse)
async def generate_sessions(
    payload: GenerateSessionsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    start_date = payload.session_date or local_now().date()
    generated = await generate_sessions_for_range(db, start_date, payload.days)
    return GenerateSessionsResponse(start_date=start_date, days=payload.days, generated=generated)


# --- SWEEP STALE SESSIONS (ADMIN) ---
@router.post("/sweep", response_model=SweepResult)
async def sweep_sessions(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await complete_expired_sessions(db)


# --- SESSIONS OF A DAY (ADMIN) ---
@router.get("/by-date", response_model=List[SessionOut])
async def read_sessions_by_date(
    session_date: Optional[date] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await list_sessions_for_date(db, session_date or local_now().date())


# --- ABSENT STUDENTS OF A SESSION (ADMIN) ---
@router.get("/{session_id}/absent", response_model=AbsentStudentsResponse)
async def read_absent_students(
    session_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await get_absent_students_for_session(db, session_id)


# --- DAILY ATTENDANCE DASHBOARD (ADMIN) ---
@router.get("/dashboard", response_model=DailyDashboardResponse)
async def read_daily_dashboard(
    session_date: Optional[date] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await get_daily_attendance_dashboard(db, session_date or local_now().date())
