"""
School Admin Model
Designated approvers: the School Chair of each school and the
institute-wide Dean SRIC and Director (stored under the "Institute" key)
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime

from src.config.database import Base

INSTITUTE_KEY = "Institute"


class SchoolAdmin(Base):
    """Designated approver record, one row per school plus the institute row"""
    __tablename__ = "school_admins"

    id = Column(Integer, primary_key=True, index=True)
    school = Column(String, unique=True, index=True, nullable=False)

    school_chair_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    school_chair_name = Column(String, nullable=True)
    dean_sric_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    dean_sric_name = Column(String, nullable=True)
    director_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    director_name = Column(String, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    school_chair = relationship("User", foreign_keys=[school_chair_id])
    dean_sric = relationship("User", foreign_keys=[dean_sric_id])
    director = relationship("User", foreign_keys=[director_id])

    def __repr__(self):
        return f"<SchoolAdmin {self.school}>"
