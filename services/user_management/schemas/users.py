from pydantic import BaseModel, EmailStr, Field
from typing import List, Optional
from datetime import datetime


class StudentCreate(BaseModel):
    id: Optional[str] = Field(default=None, max_length=20, description="Student code; generated when omitted")
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    semester: Optional[str] = None
    subject_ids: List[str] = []


class StudentOut(BaseModel):
    id: str
    name: str
    email: EmailStr
    is_active: bool
    created_at: Optional[datetime] = None
    subject_ids: List[str] = []

    class Config:
        from_attributes = True


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    id: str
    name: str
    role: str
    access_token: str
    token_type: str = "bearer"


class LimiterResetRequest(BaseModel):
    email: Optional[EmailStr] = None


class LimiterResetResponse(BaseModel):
    success: bool = True
    cleared: str
