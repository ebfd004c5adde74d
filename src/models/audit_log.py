"""
Audit Log Model
Tracks report lifecycle and administration actions for compliance
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime

from src.config.database import Base


class AuditLog(Base):
    """Audit log model"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # User who performed the action
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Action details
    action = Column(String, nullable=False)  # e.g., "submit_report", "approve_report"
    entity_type = Column(String, nullable=False)  # e.g., "expense_report", "school_admin"
    entity_id = Column(Integer, nullable=True)

    description = Column(Text, nullable=False)
    changes = Column(JSON, nullable=True)  # Before/after values

    # Related report (nulled when the draft is deleted)
    report_id = Column(Integer, ForeignKey("expense_reports.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="audit_logs")
    report = relationship("ExpenseReport", back_populates="audit_logs")

    def __repr__(self):
        return f"<AuditLog {self.action} by User {self.user_id}>"
