from datetime import time

import pytest
from sqlalchemy import func
from sqlalchemy.future import select

from shared.errors import NoActiveSession, RecordNotFound
from services.user_management.models.subjects import TimeSlot
from services.attendance_management_system.models.class_session import ClassSession, SessionStatus
from services.attendance_management_system.controllers.session_service import (
    build_session_id,
    complete_expired_sessions,
    generate_sessions_for_date,
    generate_sessions_for_range,
    get_absent_students_for_session,
    get_current_active_session,
    list_sessions_for_date,
    reconcile,
    update_session_status,
)

from tests.conftest import MONDAY, TUESDAY, at

SESSION_ID = build_session_id(MONDAY, "TS1")


async def _status(db, session_id=SESSION_ID):
    result = await db.execute(
        select(ClassSession.status)
        .where(ClassSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


def test_session_id_format():
    assert SESSION_ID == "SESSION_2024-01-01_TS1"


def test_reconcile_transitions():
    start, end = time(9, 0), time(10, 30)
    assert reconcile(SessionStatus.SCHEDULED, MONDAY, start, end, at(8, 59)) == SessionStatus.SCHEDULED
    assert reconcile(SessionStatus.SCHEDULED, MONDAY, start, end, at(9, 0)) == SessionStatus.ACTIVE
    assert reconcile(SessionStatus.ACTIVE, MONDAY, start, end, at(10, 30)) == SessionStatus.ACTIVE
    assert reconcile(SessionStatus.ACTIVE, MONDAY, start, end, at(10, 31)) == SessionStatus.COMPLETED
    assert reconcile(SessionStatus.SCHEDULED, MONDAY, start, end, at(11, 0)) == SessionStatus.COMPLETED


def test_reconcile_other_dates():
    start, end = time(9, 0), time(10, 30)
    assert reconcile(SessionStatus.ACTIVE, MONDAY, start, end, at(8, 0, TUESDAY)) == SessionStatus.COMPLETED
    assert reconcile(SessionStatus.SCHEDULED, MONDAY, start, end, at(8, 0, TUESDAY)) == SessionStatus.SCHEDULED
    assert reconcile(SessionStatus.SCHEDULED, TUESDAY, start, end, at(12, 0)) == SessionStatus.SCHEDULED


def test_reconcile_terminal_states_are_kept():
    for status in (SessionStatus.COMPLETED, SessionStatus.CANCELLED):
        assert reconcile(status, MONDAY, time(9, 0), time(10, 30), at(9, 30)) == status


async def test_generation_is_idempotent(seeded):
    db = seeded
    assert await generate_sessions_for_date(db, MONDAY) == 1
    assert await generate_sessions_for_date(db, MONDAY) == 0

    count = (await db.execute(select(func.count(ClassSession.id)))).scalar_one()
    assert count == 1
    assert await _status(db) == SessionStatus.SCHEDULED


async def test_generation_skips_days_without_slots(seeded):
    assert await generate_sessions_for_date(seeded, TUESDAY) == 0


async def test_generate_range_covers_one_week(seeded):
    assert await generate_sessions_for_range(seeded, MONDAY, 7) == 1
    assert await generate_sessions_for_range(seeded, MONDAY, 14) == 1


async def test_active_session_lookup_activates(seeded):
    db = seeded
    session = await get_current_active_session(db, "CS101", at(9, 5))

    assert session.session_id == SESSION_ID
    assert session.status == SessionStatus.ACTIVE
    assert session.radius == 50
    assert session.subject_code == "CS101"
    assert session.has_geo_anchor
    assert await _status(db) == SessionStatus.ACTIVE

    again = await get_current_active_session(db, "CS101", at(9, 6))
    assert again.session_id == SESSION_ID


async def test_no_active_session_before_start(seeded):
    with pytest.raises(NoActiveSession):
        await get_current_active_session(seeded, "CS101", at(8, 30))
    assert await _status(seeded) == SessionStatus.SCHEDULED


async def test_no_active_session_after_end(seeded):
    with pytest.raises(NoActiveSession):
        await get_current_active_session(seeded, "CS101", at(10, 45))
    assert await _status(seeded) == SessionStatus.COMPLETED


async def test_overlapping_slots_earliest_start_wins(seeded):
    db = seeded
    db.add(TimeSlot(
        id="TS0", subject_id="CS101", room_id="A101", day_of_week="Mon",
        start_time=time(8, 30), end_time=time(9, 30),
    ))
    await db.commit()

    session = await get_current_active_session(db, "CS101", at(9, 10))
    assert session.time_slot_id == "TS0"


async def test_sweep_completes_and_is_idempotent(seeded):
    db = seeded
    await get_current_active_session(db, "CS101", at(9, 5))

    first = await complete_expired_sessions(db, at(10, 31))
    assert (first.activated, first.completed) == (0, 1)
    assert await _status(db) == SessionStatus.COMPLETED

    second = await complete_expired_sessions(db, at(10, 32))
    assert (second.activated, second.completed) == (0, 0)


async def test_sweep_activates_started_sessions(seeded):
    db = seeded
    await generate_sessions_for_date(db, MONDAY)

    result = await complete_expired_sessions(db, at(9, 1))
    assert (result.activated, result.completed) == (1, 0)
    assert await _status(db) == SessionStatus.ACTIVE


async def test_sweep_completes_previous_day_active_sessions(seeded):
    db = seeded
    await get_current_active_session(db, "CS101", at(9, 5))

    result = await complete_expired_sessions(db, at(7, 0, TUESDAY))
    assert result.completed == 1
    assert await _status(db) == SessionStatus.COMPLETED


async def test_sweep_leaves_previous_day_scheduled_sessions(seeded):
    db = seeded
    await generate_sessions_for_date(db, MONDAY)

    result = await complete_expired_sessions(db, at(7, 0, TUESDAY))
    assert (result.activated, result.completed) == (0, 0)
    assert await _status(db) == SessionStatus.SCHEDULED


async def test_transitions_never_go_backwards(seeded):
    db = seeded
    await generate_sessions_for_date(db, MONDAY)

    assert await update_session_status(db, SESSION_ID, SessionStatus.COMPLETED, at(11, 0))
    assert not await update_session_status(db, SESSION_ID, SessionStatus.ACTIVE, at(11, 1))
    assert await _status(db) == SessionStatus.COMPLETED


async def test_update_stamps_times(seeded):
    db = seeded
    await generate_sessions_for_date(db, MONDAY)
    await update_session_status(db, SESSION_ID, SessionStatus.ACTIVE, at(9, 0))
    await update_session_status(db, SESSION_ID, SessionStatus.COMPLETED, at(10, 30))

    sessions = await list_sessions_for_date(db, MONDAY)
    assert len(sessions) == 1
    assert sessions[0].started_at is not None
    assert sessions[0].ended_at is not None


async def test_update_unknown_session(seeded):
    with pytest.raises(RecordNotFound):
        await update_session_status(seeded, "SESSION_2024-01-01_NOPE", SessionStatus.ACTIVE, at(9, 0))


async def test_absent_students_lists_enrolled_without_attendance(seeded):
    db = seeded
    await generate_sessions_for_date(db, MONDAY)

    absent = await get_absent_students_for_session(db, SESSION_ID)
    assert absent.count == 1
    assert absent.absent_students[0].student_id == "SV001"

    with pytest.raises(RecordNotFound):
        await get_absent_students_for_session(db, "SESSION_missing")
