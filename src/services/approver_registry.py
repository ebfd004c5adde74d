"""
Approver Registry
Designated School Chair / Dean SRIC / Director lookups and assignments
"""

from typing import List, Optional, Protocol

from sqlalchemy.orm import Session

from src.models.school_admin import SchoolAdmin, INSTITUTE_KEY
from src.models.user import User, UserRole, Department
from src.utils.exceptions import NotFoundError, ValidationError
from src.utils.logger import setup_logger

logger = setup_logger()


class ApproverRegistry(Protocol):
    """Read side of the registry the workflow engine depends on"""

    def get_school_chair(self, department) -> Optional[User]:
        ...

    def get_dean_sric(self) -> Optional[User]:
        ...

    def get_director(self) -> Optional[User]:
        ...


class SqlApproverRegistry:
    """Registry backed by the school_admins table"""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _record(self, school: str) -> Optional[SchoolAdmin]:
        return self.db.query(SchoolAdmin).filter(SchoolAdmin.school == school).first()

    def get_school_chair(self, department) -> Optional[User]:
        """
        Get the designated School Chair of a school

        Args:
            department: Department enum or its code

        Returns:
            User or None when no chair is registered
        """
        if department is None:
            return None
        record = self._record(Department(department).value)
        return record.school_chair if record else None

    def get_dean_sric(self) -> Optional[User]:
        record = self._record(INSTITUTE_KEY)
        return record.dean_sric if record else None

    def get_director(self) -> Optional[User]:
        record = self._record(INSTITUTE_KEY)
        return record.director if record else None

    def list_school_admins(self) -> List[SchoolAdmin]:
        return self.db.query(SchoolAdmin).order_by(SchoolAdmin.school).all()

    # ------------------------------------------------------------------
    # Assignments (Admin only, enforced at the route)
    # ------------------------------------------------------------------

    def _faculty_member(self, user_id: int, role_label: str, designated_role: UserRole) -> User:
        # Faculty, or somebody already promoted to the designated role
        # (so re-assigning the same person stays valid)
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError.for_resource("User", user_id)
        if user.role not in (UserRole.FACULTY, designated_role):
            raise ValidationError(
                f"{role_label} must be a Faculty member",
                {"user_id": user_id, "role": user.role.value}
            )
        return user

    def _upsert(self, school: str) -> SchoolAdmin:
        record = self._record(school)
        if record is None:
            record = SchoolAdmin(school=school)
            self.db.add(record)
        return record

    def assign_school_chair(self, department, user_id: int) -> SchoolAdmin:
        """
        Register a Faculty member as School Chair of their own school

        Raises:
            ValidationError: unknown school, non-Faculty user or user from another school
            NotFoundError: user does not exist
        """
        try:
            school = Department(department)
        except ValueError:
            raise ValidationError(f"Unknown school: {department}", {"school": department})

        user = self._faculty_member(user_id, "Selected user", UserRole.SCHOOL_CHAIR)
        if user.department != school:
            raise ValidationError(
                "School chair must be from the same school",
                {"school": school.value, "user_department": user.department_code}
            )

        record = self._upsert(school.value)
        record.school_chair_id = user.id
        record.school_chair_name = user.name
        self.db.flush()
        logger.info(f"School Chair for {school.value} set to {user.name} (ID: {user.id})")
        return record

    def assign_dean_sric(self, user_id: int) -> SchoolAdmin:
        user = self._faculty_member(user_id, "Dean SRIC", UserRole.DEAN_SRIC)
        record = self._upsert(INSTITUTE_KEY)
        record.dean_sric_id = user.id
        record.dean_sric_name = user.name
        self.db.flush()
        logger.info(f"Dean SRIC set to {user.name} (ID: {user.id})")
        return record

    def assign_director(self, user_id: int) -> SchoolAdmin:
        user = self._faculty_member(user_id, "Director", UserRole.DIRECTOR)
        record = self._upsert(INSTITUTE_KEY)
        record.director_id = user.id
        record.director_name = user.name
        self.db.flush()
        logger.info(f"Director set to {user.name} (ID: {user.id})")
        return record
