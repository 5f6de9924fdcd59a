from typing import List, Literal, Optional
from pydantic import BaseModel, Field
import uuid


class FaceRegistrationRequest(BaseModel):
    descriptor: List[float] = Field(..., min_length=1)
    image_data: Optional[str] = None


class FaceRegistrationResponse(BaseModel):
    success: bool = True
    student_id: str
    descriptor_length: int
    message: str


class FaceRecognitionRequest(BaseModel):
    descriptor: List[float] = Field(..., min_length=1)
    image_data: Optional[str] = None
    subject_id: Optional[str] = None
    time_slot_id: Optional[str] = None
    sensitivity: Optional[Literal["STRICT", "EXCELLENT", "GOOD", "ACCEPTABLE"]] = None


class FaceRecognitionResponse(BaseModel):
    success: bool = True
    is_match: bool
    confidence: float
    distance: float
    threshold: float
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    attempt_id: uuid.UUID
    message: str


class FaceInfoResponse(BaseModel):
    student_id: str
    name: Optional[str] = None
    registered: bool
    can_register: bool
    reason: Optional[str] = None


class FaceResetResponse(BaseModel):
    success: bool = True
    student_id: str
    cleared: bool
    message: str


class RegisteredFaceCount(BaseModel):
    count: int
