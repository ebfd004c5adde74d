"""
User Routes
Role directory lookups (the faculty picker used by students)
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List, Optional

from src.config.database import get_db
from src.services.auth_service import auth_service
from src.models.user import User, UserRole, Department
from src.schemas.user import UserResponse

router = APIRouter()


@router.get("/list", response_model=List[UserResponse])
async def list_users_by_role(
    role: UserRole,
    department: Optional[Department] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Active users holding a role, optionally within one school

    **Example:** ``/api/users/list?role=Faculty&department=SCS``
    """
    query = db.query(User).filter(User.role == role, User.is_active.is_(True))
    if department is not None:
        query = query.filter(User.department == department)
    return query.order_by(User.name).all()


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(auth_service.get_current_user)):
    """Profile of the caller"""
    return current_user
