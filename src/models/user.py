"""
User Model
Role directory: every person known to the system with their role and school
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from src.config.database import Base


class UserRole(str, enum.Enum):
    """User roles"""
    STUDENT = "Student"
    FACULTY = "Faculty"
    SCHOOL_CHAIR = "School Chair"
    DEAN_SRIC = "Dean SRIC"
    DIRECTOR = "Director"
    AUDIT = "Audit"
    FINANCE = "Finance"
    ADMIN = "Admin"


class Department(str, enum.Enum):
    """Schools and centres of the institute"""
    SCEE = "SCEE"  # Civil and Environmental Engineering
    SMME = "SMME"  # Mechanical and Materials Engineering
    SCENE = "SCENE"  # Electronics and Communication Engineering
    SBB = "SBB"  # Biomedical and Biological Sciences
    SCS = "SCS"  # Computing Sciences
    SMSS = "SMSS"  # Management and Social Sciences
    SPS = "SPS"  # Physical Sciences
    SOM = "SoM"  # Mathematics
    SHSS = "SHSS"  # Humanities and Social Sciences
    CAIR = "CAIR"
    IKSMHA = "IKSMHA"
    AMRC = "AMRC"
    CQST = "CQST"
    C4DFED = "C4DFED"
    BIOX_CENTRE = "BioX Centre"


# Roles that belong to a school and therefore must carry a department
DEPARTMENT_BOUND_ROLES = {UserRole.STUDENT, UserRole.FACULTY, UserRole.SCHOOL_CHAIR}

# Roles allowed to create and submit expense reports
SUBMITTER_ROLES = {UserRole.STUDENT, UserRole.FACULTY}


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class User(Base):
    """User model"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)

    # Role and school
    role = Column(
        Enum(UserRole, values_callable=_enum_values, name="user_role"),
        default=UserRole.FACULTY,
        nullable=False
    )
    department = Column(
        Enum(Department, values_callable=_enum_values, name="department"),
        nullable=True
    )

    # Student specific
    student_id = Column(String, unique=True, index=True, nullable=True)

    phone = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    audit_logs = relationship("AuditLog", back_populates="user")

    def __repr__(self):
        return f"<User {self.email} ({self.role.value})>"

    @property
    def department_code(self):
        """Department as its plain string code (None when unset)"""
        return self.department.value if self.department else None

    def can_submit_reports(self) -> bool:
        """Students and Faculty own expense reports"""
        return self.is_active and self.role in SUBMITTER_ROLES
