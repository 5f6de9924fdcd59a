import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from shared.auth import get_current_admin, get_current_student
from shared.db import get_db
from shared.errors import AlreadyRegistered, AttendanceError, NotRegistered, StudentNotFound
from shared.logging_config import recognition_logger, security_logger
from services.user_management.models.users import StudentAccount
from services.face_recognition.models.recognition_attempt import RecognitionAttempt
from services.face_recognition.matcher import match, resolve_threshold, validate_descriptor
from services.attendance_management_system.image_store import save_image
from services.face_recognition.schemas.face import (
    FaceRegistrationRequest,
    FaceRegistrationResponse,
    FaceRecognitionRequest,
    FaceRecognitionResponse,
    FaceInfoResponse,
    FaceResetResponse,
    RegisteredFaceCount,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/face", tags=["Face Recognition"])


async def _load_student(db: AsyncSession, student_id: str):
    result = await db.execute(
        select(StudentAccount.id, StudentAccount.name, StudentAccount.face_embedding)
        .where(StudentAccount.id == student_id)
    )
    row = result.first()
    if row is None:
        raise StudentNotFound(f"Student {student_id} not found", student_id=student_id)
    return row


async def get_descriptor(db: AsyncSession, student_id: str) -> Optional[list]:
    return (await _load_student(db, student_id)).face_embedding


async def set_descriptor(db: AsyncSession, student_id: str, descriptor: list) -> bool:
    """Store the descriptor only if the student has none. Returns False otherwise."""
    result = await db.execute(
        update(StudentAccount)
        .where(StudentAccount.id == student_id, StudentAccount.face_embedding.is_(None))
        .values(face_embedding=descriptor)
    )
    await db.commit()
    return result.rowcount == 1


async def append_attempt(
    db: AsyncSession,
    *,
    student_id: Optional[str],
    confidence: float,
    success: bool,
    result: str,
    subject_id: Optional[str] = None,
    time_slot_id: Optional[str] = None,
    attendance_id: Optional[uuid.UUID] = None,
) -> RecognitionAttempt:
    attempt = RecognitionAttempt(
        student_id=student_id,
        confidence=round(confidence, 2),
        success=success,
        result=result,
        subject_id=subject_id,
        time_slot_id=time_slot_id,
        attendance_id=attendance_id,
    )
    db.add(attempt)
    await db.commit()
    return attempt


async def register_face(
    db: AsyncSession,
    student_id: str,
    descriptor,
    image_data: Optional[str] = None,
) -> FaceRegistrationResponse:
    """
    One-shot registration. Fails with AlreadyRegistered when a descriptor
    exists; only an admin reset allows registering again.
    """
    values = validate_descriptor(descriptor)
    student = await _load_student(db, student_id)

    if student.face_embedding is not None:
        raise AlreadyRegistered(
            "Face already registered. Contact admin to reset before re-registering.",
            student_id=student_id,
        )

    # The IS NULL guard on the write covers a registration racing this one
    if not await set_descriptor(db, student_id, values):
        raise AlreadyRegistered(
            "Face already registered. Contact admin to reset before re-registering.",
            student_id=student_id,
        )

    if image_data:
        try:
            await save_image(db, student_id=student_id, image_data=image_data, confidence=100, success=True)
        except AttendanceError as exc:
            logger.info(f"Registration image for {student_id} not stored: {exc.message}")
        except SQLAlchemyError:
            # Descriptor stays committed
            await db.rollback()
            logger.exception(f"Failed to store registration image for {student_id}")

    logger.info(f"Face registered for student {student_id} ({len(values)} values)")
    return FaceRegistrationResponse(
        student_id=student_id,
        descriptor_length=len(values),
        message="Face registered successfully",
    )


async def recognize(
    db: AsyncSession,
    student_id: str,
    descriptor,
    subject_id: Optional[str] = None,
    time_slot_id: Optional[str] = None,
    sensitivity=None,
    threshold: Optional[float] = None,
    image_data: Optional[str] = None,
    attendance_id: Optional[uuid.UUID] = None,
) -> FaceRecognitionResponse:
    """
    Compare a submitted descriptor with the claimed student's registered one.
    Every attempt, failed or not, is appended to the recognition log.
    """
    threshold = resolve_threshold(sensitivity, threshold)
    known_student = None
    try:
        student = await _load_student(db, student_id)
        known_student = student.id
        candidate = validate_descriptor(descriptor)
        if student.face_embedding is None:
            raise NotRegistered(
                f"Student {student_id} has not registered a face",
                student_id=student_id,
            )
        outcome = match(candidate, student.face_embedding, threshold)
    except AttendanceError as exc:
        await append_attempt(
            db,
            student_id=known_student,
            confidence=0,
            success=False,
            result=exc.kind,
            subject_id=subject_id,
            time_slot_id=time_slot_id,
            attendance_id=attendance_id,
        )
        recognition_logger.log_attempt(student_id, 0, False)
        raise

    attempt = await append_attempt(
        db,
        student_id=student.id,
        confidence=outcome.confidence,
        success=outcome.is_match,
        result="SUCCESS" if outcome.is_match else "FAILED",
        subject_id=subject_id,
        time_slot_id=time_slot_id,
        attendance_id=attendance_id,
    )
    recognition_logger.log_attempt(student.id, outcome.confidence, outcome.is_match, outcome.distance)

    if image_data:
        try:
            await save_image(
                db,
                student_id=student.id,
                image_data=image_data,
                attendance_id=attendance_id,
                subject_id=subject_id,
                confidence=outcome.confidence,
                success=outcome.is_match,
            )
        except AttendanceError as exc:
            logger.info(f"Recognition image for {student.id} not stored: {exc.message}")
        except SQLAlchemyError:
            await db.rollback()
            logger.exception(f"Failed to store recognition image for {student.id}")

    confidence = round(outcome.confidence, 2)
    if outcome.is_match:
        message = f"Recognized {student.name} ({confidence:.1f}%)"
    else:
        message = f"Face does not match account {student.id} ({confidence:.1f}%)"

    return FaceRecognitionResponse(
        is_match=outcome.is_match,
        confidence=confidence,
        distance=round(outcome.distance, 6),
        threshold=threshold,
        student_id=student.id if outcome.is_match else None,
        student_name=student.name if outcome.is_match else None,
        attempt_id=attempt.id,
        message=message,
    )


async def get_face_info(db: AsyncSession, student_id: str) -> FaceInfoResponse:
    student = await _load_student(db, student_id)
    registered = bool(student.face_embedding)
    return FaceInfoResponse(
        student_id=student.id,
        name=student.name,
        registered=registered,
        can_register=not registered,
        reason="Face already registered. Contact admin to reset." if registered else None,
    )


async def admin_reset_face(db: AsyncSession, student_id: str, admin_id: str) -> FaceResetResponse:
    student = await _load_student(db, student_id)
    if student.face_embedding is None:
        return FaceResetResponse(student_id=student_id, cleared=False, message="No face data to reset")

    await db.execute(
        update(StudentAccount)
        .where(StudentAccount.id == student_id)
        .values(face_embedding=None)
    )
    await db.commit()

    await append_attempt(db, student_id=student_id, confidence=0, success=False, result="ADMIN_RESET")
    security_logger.log_admin_action(admin_id, "RESET_FACE", student_id)
    return FaceResetResponse(student_id=student_id, cleared=True, message="Face data cleared")


async def count_registered_faces(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(StudentAccount.id)).where(StudentAccount.face_embedding.is_not(None))
    )
    return result.scalar_one()


# --- REGISTER OWN FACE ---
@router.post("/register", response_model=FaceRegistrationResponse)
async def register_own_face(
    payload: FaceRegistrationRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_student)
):
    return await register_face(db, current_user["user_id"], payload.descriptor, payload.image_data)


# --- RECOGNIZE AGAINST OWN FACE ---
@router.post("/recognize", response_model=FaceRecognitionResponse)
async def recognize_own_face(
    payload: FaceRecognitionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_student)
):
    return await recognize(
        db,
        current_user["user_id"],
        payload.descriptor,
        subject_id=payload.subject_id,
        time_slot_id=payload.time_slot_id,
        sensitivity=payload.sensitivity,
        image_data=payload.image_data,
    )


# --- OWN FACE STATUS ---
@router.get("/info", response_model=FaceInfoResponse)
async def read_face_info(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_student)
):
    return await get_face_info(db, current_user["user_id"])


# --- ADMIN: COUNT OF REGISTERED FACES ---
@router.get("/registered-count", response_model=RegisteredFaceCount)
async def read_registered_count(
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return RegisteredFaceCount(count=await count_registered_faces(db))


# --- ADMIN: RESET A STUDENT'S FACE ---
@router.post("/{student_id}/reset", response_model=FaceResetResponse)
async def reset_student_face(
    student_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    return await admin_reset_face(db, student_id, current_user["user_id"])
