import base64
from datetime import time

import pytest
from sqlalchemy.future import select

from shared import config
from shared.errors import (
    AlreadyCheckedIn,
    CheckInWindowClosed,
    NoActiveSession,
    NotEnrolled,
    OutOfRange,
)
from services.user_management.models.subjects import Enrollment, Room, Subject, TimeSlot
from services.attendance_management_system.models.attendance import Attendance, AttendanceStatus, CapturedImage
from services.attendance_management_system.controllers.attendance_service import (
    check_in,
    get_enrollment_id,
    insert_attendance,
)
from services.attendance_management_system.controllers.session_service import (
    build_session_id,
    generate_sessions_for_date,
)
from services.attendance_management_system.schemas.attendance import CheckInRequest

from tests.conftest import MONDAY, ROOM_LAT, ROOM_LON, at, north_of

IMAGE = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8\xff\xe0 fake jpeg body").decode()


def request_at(meters: float = 10, **extra) -> CheckInRequest:
    return CheckInRequest(
        subject_id="CS101",
        latitude=north_of(ROOM_LAT, meters),
        longitude=ROOM_LON,
        **extra,
    )


async def _attendance_rows(db):
    result = await db.execute(select(Attendance).execution_options(populate_existing=True))
    return result.scalars().all()


async def test_happy_path_is_present(seeded):
    response = await check_in(seeded, "SV001", request_at(10), now=at(9, 10))

    assert response.success
    assert response.status == AttendanceStatus.PRESENT
    assert response.session_id == build_session_id(MONDAY, "TS1")
    assert response.location_valid
    assert not response.face_recognition_success
    assert response.image_id is None

    rows = await _attendance_rows(seeded)
    assert [r.id for r in rows] == [response.attendance_id]
    assert rows[0].enrollment_id is not None


async def test_late_check_in(seeded):
    response = await check_in(seeded, "SV001", request_at(10), now=at(9, 20))
    assert response.status == AttendanceStatus.LATE


async def test_out_of_range_reports_distance_and_radius(seeded):
    with pytest.raises(OutOfRange) as exc:
        await check_in(seeded, "SV001", request_at(200), now=at(9, 10))

    assert "200m" in exc.value.message
    assert "50m" in exc.value.message
    assert exc.value.details["allowed_radius"] == 50
    assert await _attendance_rows(seeded) == []


async def test_not_enrolled(seeded):
    with pytest.raises(NotEnrolled):
        await check_in(seeded, "SV002", request_at(10), now=at(9, 10))
    assert await _attendance_rows(seeded) == []


async def test_no_active_session(seeded):
    with pytest.raises(NoActiveSession):
        await check_in(seeded, "SV001", request_at(10), now=at(11, 0))


async def test_window_closed(seeded):
    with pytest.raises(CheckInWindowClosed):
        await check_in(seeded, "SV001", request_at(10), now=at(9, 35))
    assert await _attendance_rows(seeded) == []


async def test_second_check_in_is_rejected(seeded):
    first = await check_in(seeded, "SV001", request_at(10), now=at(9, 5))

    with pytest.raises(AlreadyCheckedIn) as exc:
        await check_in(seeded, "SV001", request_at(10), now=at(9, 6))

    assert exc.value.details["attendance_id"] == str(first.attendance_id)
    assert len(await _attendance_rows(seeded)) == 1


async def test_concurrent_duplicate_insert_becomes_already_checked_in(seeded):
    db = seeded
    await generate_sessions_for_date(db, MONDAY)
    enrollment_id = await get_enrollment_id(db, "SV001", "CS101")
    fields = dict(
        student_id="SV001",
        subject_id="CS101",
        session_id=build_session_id(MONDAY, "TS1"),
        enrollment_id=enrollment_id,
        status=AttendanceStatus.PRESENT,
        checked_in_at=at(9, 5),
    )

    first = await insert_attendance(db, **fields)
    with pytest.raises(AlreadyCheckedIn) as exc:
        await insert_attendance(db, **fields)

    assert exc.value.details["attendance_id"] == str(first.id)
    assert len(await _attendance_rows(db)) == 1


async def test_image_is_stored_and_linked(seeded):
    db = seeded
    response = await check_in(db, "SV001", request_at(10, image_data=IMAGE, confidence=87.456), now=at(9, 10))
    assert response.image_id is not None

    image = (await db.execute(select(CapturedImage))).scalars().one()
    assert image.id == response.image_id
    assert image.attendance_id == response.attendance_id
    assert image.confidence == pytest.approx(87.46)
    assert image.image_data.startswith(b"\xff\xd8")

    row = (await _attendance_rows(db))[0]
    assert row.image_id == response.image_id


async def test_rejected_image_does_not_fail_check_in(seeded, monkeypatch):
    monkeypatch.setattr(config, "MAX_IMAGE_SIZE_BYTES", 4)

    response = await check_in(seeded, "SV001", request_at(10, image_data=IMAGE), now=at(9, 10))

    assert response.status == AttendanceStatus.PRESENT
    assert response.image_id is None
    assert len(await _attendance_rows(seeded)) == 1


async def test_invalid_base64_image_does_not_fail_check_in(seeded):
    response = await check_in(seeded, "SV001", request_at(10, image_data="not base64!!"), now=at(9, 10))
    assert response.image_id is None


async def test_face_descriptor_flag(seeded):
    response = await check_in(seeded, "SV001", request_at(10, face_descriptor=[0.1, 0.2]), now=at(9, 10))
    assert response.face_recognition_success


async def test_room_without_coordinates_skips_geofence(seeded):
    db = seeded
    db.add_all([
        Subject(id="MA201", code="MA201", name="Calculus"),
        Room(id="HALL", latitude=None, longitude=None, radius=None),
    ])
    await db.commit()
    db.add_all([
        TimeSlot(id="TS2", subject_id="MA201", room_id="HALL", day_of_week="Mon",
                 start_time=time(13, 0), end_time=time(14, 0)),
        Enrollment(student_id="SV001", subject_id="MA201"),
    ])
    await db.commit()

    request = CheckInRequest(subject_id="MA201", latitude=21.0285, longitude=105.8542)
    response = await check_in(db, "SV001", request, now=at(13, 5))
    assert response.status == AttendanceStatus.PRESENT


async def test_room_without_radius_uses_default(seeded, monkeypatch):
    db = seeded
    room = (await db.execute(select(Room).where(Room.id == "A101"))).scalar_one()
    room.radius = None
    await db.commit()
    monkeypatch.setattr(config, "DEFAULT_GEOFENCE_RADIUS_METERS", 500)

    response = await check_in(db, "SV001", request_at(200), now=at(9, 10))
    assert response.location_valid
