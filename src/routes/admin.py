"""
Admin Routes
User role management, designated approver registry and audit log endpoints
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from src.config.database import get_db
from src.services.auth_service import auth_service
from src.services.approver_registry import SqlApproverRegistry
from src.models.audit_log import AuditLog
from src.models.school_admin import SchoolAdmin
from src.models.user import User, UserRole, Department, DEPARTMENT_BOUND_ROLES
from src.schemas.user import (
    AuditLogResponse,
    InstituteApproverAssignment,
    SchoolAdminResponse,
    SchoolChairAssignment,
    UserResponse,
    UserRoleUpdate,
)
from src.utils.exceptions import NotFoundError, ValidationError
from src.utils.logger import setup_logger, log_audit

logger = setup_logger()
router = APIRouter()

require_admin = auth_service.require_role(UserRole.ADMIN.value)


def _record_assignment(db: Session, admin: User, action: str, record: SchoolAdmin, description: str):
    db.add(AuditLog(
        user_id=admin.id,
        action=action,
        entity_type="school_admin",
        entity_id=record.id,
        description=description,
        changes={
            "school": record.school,
            "school_chair_id": record.school_chair_id,
            "dean_sric_id": record.dean_sric_id,
            "director_id": record.director_id,
        }
    ))
    db.commit()
    db.refresh(record)
    log_audit(admin.id, action, {"school": record.school, "description": description})


# ============================================
# USERS
# ============================================

@router.get("/users", response_model=List[UserResponse])
async def get_all_users(
    role: Optional[UserRole] = None,
    department: Optional[Department] = None,
    is_active: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """
    Get all users (Admin only)

    **Filters:**
    - role: Filter by role
    - department: Filter by school
    - is_active: Filter by active status
    """
    query = db.query(User)

    if role is not None:
        query = query.filter(User.role == role)
    if department is not None:
        query = query.filter(User.department == department)
    if is_active is not None:
        query = query.filter(User.is_active == is_active)

    users = query.order_by(User.id).offset(skip).limit(limit).all()

    logger.info(f"Admin {current_user.id} retrieved {len(users)} users")

    return users


@router.patch("/users/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: int,
    role_data: UserRoleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """
    Update user role (Admin only)

    Roles tied to a school need the user to have a department.
    """
    user = db.query(User).filter(User.id == user_id).first()

    if not user:
        raise NotFoundError.for_resource("User", user_id)

    # Prevent admin from changing their own role
    if user.id == current_user.id:
        raise ValidationError("Cannot change your own role")

    if role_data.role in DEPARTMENT_BOUND_ROLES and user.department is None:
        raise ValidationError(
            f"{role_data.role.value} users must belong to a department",
            {"user_id": user.id}
        )

    old_role = user.role.value
    user.role = role_data.role
    db.add(AuditLog(
        user_id=current_user.id,
        action="update_user_role",
        entity_type="user",
        entity_id=user.id,
        description=f"Changed role for user {user.email} from {old_role} to {role_data.role.value}",
        changes={"old_role": old_role, "new_role": role_data.role.value}
    ))
    db.commit()
    db.refresh(user)

    logger.info(f"Admin {current_user.id} changed user {user.id} role from {old_role} to {user.role.value}")
    log_audit(current_user.id, "update_user_role", {"user_id": user.id, "role": user.role.value})

    return user


# ============================================
# DESIGNATED APPROVERS
# ============================================

@router.get("/school-admins", response_model=List[SchoolAdminResponse])
async def get_school_admins(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """School Chairs per school plus the institute Dean SRIC / Director row"""
    return SqlApproverRegistry(db).list_school_admins()


@router.post("/school-admins/chair", response_model=SchoolAdminResponse)
async def assign_school_chair(
    assignment: SchoolChairAssignment,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Designate the School Chair of a school (must be Faculty of that school)"""
    try:
        record = SqlApproverRegistry(db).assign_school_chair(assignment.school, assignment.user_id)
    except Exception:
        db.rollback()
        raise
    _record_assignment(
        db, current_user, "assign_school_chair", record,
        f"{record.school_chair_name} designated School Chair of {record.school}"
    )
    return record


@router.post("/school-admins/dean-sric", response_model=SchoolAdminResponse)
async def assign_dean_sric(
    assignment: InstituteApproverAssignment,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Designate the institute Dean SRIC"""
    try:
        record = SqlApproverRegistry(db).assign_dean_sric(assignment.user_id)
    except Exception:
        db.rollback()
        raise
    _record_assignment(
        db, current_user, "assign_dean_sric", record,
        f"{record.dean_sric_name} designated Dean SRIC"
    )
    return record


@router.post("/school-admins/director", response_model=SchoolAdminResponse)
async def assign_director(
    assignment: InstituteApproverAssignment,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Designate the institute Director"""
    try:
        record = SqlApproverRegistry(db).assign_director(assignment.user_id)
    except Exception:
        db.rollback()
        raise
    _record_assignment(
        db, current_user, "assign_director", record,
        f"{record.director_name} designated Director"
    )
    return record


# ============================================
# AUDIT LOG
# ============================================

@router.get("/logs", response_model=List[AuditLogResponse])
async def get_audit_logs(
    action: Optional[str] = None,
    report_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """Audit log entries, newest first"""
    query = db.query(AuditLog)

    if action:
        query = query.filter(AuditLog.action == action)
    if report_id is not None:
        query = query.filter(AuditLog.report_id == report_id)

    return query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit).all()
