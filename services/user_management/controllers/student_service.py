# services/user_management/controllers/student_service.py

import logging
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from services.user_management.models.users import StudentAccount
from services.user_management.models.subjects import Subject, Enrollment
from services.user_management.schemas.users import StudentCreate, StudentOut
from shared.auth import get_current_admin, get_password_hash
from shared.db import get_db
from shared.logging_config import security_logger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def generate_student_code() -> str:
    return f"SV{uuid4().hex[:8].upper()}"


async def create_student_account(
    db: AsyncSession,
    name: str,
    email: str,
    password: str,
    subject_ids: List[str],
    student_id: Optional[str] = None,
    semester: Optional[str] = None,
) -> StudentOut:
    """
    Create a student and one enrollment per subject as a single unit.
    Any failure rolls back the account together with its enrollments.
    """
    existing = await db.execute(select(StudentAccount.id).where(StudentAccount.email == email))
    if existing.first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Student with this email already exists"
        )

    subject_ids = list(dict.fromkeys(subject_ids))
    if subject_ids:
        found = await db.execute(select(Subject.id).where(Subject.id.in_(subject_ids)))
        missing = set(subject_ids) - set(found.scalars().all())
        if missing:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown subjects: {', '.join(sorted(missing))}"
            )

    student = StudentAccount(
        id=student_id or generate_student_code(),
        name=name,
        email=email,
        hashed_password=get_password_hash(password),
        is_active=True,
    )
    db.add(student)
    for subject_id in subject_ids:
        db.add(Enrollment(student_id=student.id, subject_id=subject_id, semester=semester))

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Integrity error while creating student"
        )
    except SQLAlchemyError:
        await db.rollback()
        logger.exception(f"Failed to create student account {email}")
        raise

    await db.refresh(student)
    logger.info(f"Student {student.id} created with {len(subject_ids)} enrollments")
    return StudentOut(
        id=student.id,
        name=student.name,
        email=student.email,
        is_active=student.is_active,
        created_at=student.created_at,
        subject_ids=subject_ids,
    )


# --- ADMIN: CREATE STUDENT WITH ENROLLMENTS ---
@router.post("/students", response_model=StudentOut, status_code=status.HTTP_201_CREATED)
async def register_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: dict = Depends(get_current_admin)
):
    created = await create_student_account(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        subject_ids=payload.subject_ids,
        student_id=payload.id,
        semester=payload.semester,
    )
    security_logger.log_admin_action(current_user["user_id"], "CREATE_STUDENT", created.id)
    return created
