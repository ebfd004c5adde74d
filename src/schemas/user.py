"""
User Schemas
Pydantic models for role directory and designated approver responses
"""

from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from datetime import datetime

from src.models.user import UserRole, Department


class UserResponse(BaseModel):
    """Schema for user response"""
    id: int
    name: str
    email: EmailStr
    role: UserRole
    department: Optional[Department] = None
    student_id: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserRoleUpdate(BaseModel):
    """Admin request to change a user's role"""
    role: UserRole


class SchoolChairAssignment(BaseModel):
    """Admin request to designate a School Chair"""
    school: Department
    user_id: int = Field(..., gt=0)


class InstituteApproverAssignment(BaseModel):
    """Admin request to designate the Dean SRIC or the Director"""
    user_id: int = Field(..., gt=0)


class SchoolAdminResponse(BaseModel):
    """Designated approvers of one school (or the institute row)"""
    id: int
    school: str
    school_chair_id: Optional[int] = None
    school_chair_name: Optional[str] = None
    dean_sric_id: Optional[int] = None
    dean_sric_name: Optional[str] = None
    director_id: Optional[int] = None
    director_name: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuditLogResponse(BaseModel):
    """Audit log entry"""
    id: int
    user_id: int
    action: str
    entity_type: str
    entity_id: Optional[int] = None
    report_id: Optional[int] = None
    description: str
    changes: Optional[dict] = None
    created_at: datetime

    class Config:
        from_attributes = True
