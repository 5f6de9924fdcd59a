# services/attendance_management_system/image_store.py
import base64
import binascii
import logging
import re
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shared import config
from shared.errors import ImageRejected
from services.attendance_management_system.models.attendance import CapturedImage

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,")


def decode_image_payload(image_data: str, max_size: Optional[int] = None) -> bytes:
    """Strip an optional data-URL prefix, decode base64 and enforce the size limit."""
    max_size = max_size if max_size is not None else config.MAX_IMAGE_SIZE_BYTES
    payload = DATA_URL_PREFIX.sub("", image_data.strip(), count=1)
    # Reject by encoded length before decoding
    estimated = len(payload) * 3 // 4 - payload[-2:].count("=")
    if estimated > max_size:
        raise ImageRejected(
            f"Image too large: {estimated} bytes (max: {max_size})",
            size=estimated,
            max_size=max_size,
        )
    try:
        image_bytes = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ImageRejected("Image data is not valid base64")

    if not image_bytes:
        raise ImageRejected("Image data is empty")
    if len(image_bytes) > max_size:
        raise ImageRejected(
            f"Image too large: {len(image_bytes)} bytes (max: {max_size})",
            size=len(image_bytes),
            max_size=max_size,
        )
    return image_bytes


async def save_image(
    db: AsyncSession,
    *,
    student_id: Optional[str],
    image_data: str,
    attendance_id: Optional[uuid.UUID] = None,
    subject_id: Optional[str] = None,
    confidence: Optional[float] = None,
    success: bool = True,
) -> uuid.UUID:
    image_bytes = decode_image_payload(image_data)

    image = CapturedImage(
        student_id=student_id,
        attendance_id=attendance_id,
        subject_id=subject_id,
        image_data=image_bytes,
        confidence=round(confidence or 0, 2),
        recognition_result="SUCCESS" if success else "FAILED",
    )
    db.add(image)
    await db.commit()

    logger.info(f"Captured image saved: {image.id} ({len(image_bytes)} bytes) for attendance {attendance_id}")
    return image.id
