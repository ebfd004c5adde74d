"""
Approval History Model
Append-only log of workflow actions taken on an expense report
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, Text, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from src.config.database import Base
from src.models.user import _enum_values


class ApprovalStage(str, enum.Enum):
    """Stages of the approval chain"""
    FACULTY = "Faculty"
    SCHOOL_CHAIR = "School Chair"
    DEAN_SRIC = "Dean SRIC"
    DIRECTOR = "Director"
    AUDIT = "Audit"
    FINANCE = "Finance"


class WorkflowAction(str, enum.Enum):
    """Actions an approver can take"""
    APPROVE = "approve"
    REJECT = "reject"
    SENDBACK = "sendback"


# Legacy snapshot column on ExpenseReport for each stage
LEGACY_STAGE_FIELDS = {
    ApprovalStage.FACULTY: "faculty_approval",
    ApprovalStage.SCHOOL_CHAIR: "school_chair_approval",
    ApprovalStage.DEAN_SRIC: "dean_sric_approval",
    ApprovalStage.DIRECTOR: "director_approval",
    ApprovalStage.AUDIT: "audit_approval",
    ApprovalStage.FINANCE: "finance_approval",
}


class ApprovalHistoryEntry(Base):
    """Approval history entry, never updated once written"""
    __tablename__ = "approval_history"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("expense_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    stage = Column(Enum(ApprovalStage, values_callable=_enum_values, name="approval_stage"), nullable=False)
    approved = Column(Boolean, nullable=False)
    date = Column(DateTime, default=datetime.utcnow, nullable=False)
    remarks = Column(Text, nullable=True)
    action = Column(String, nullable=True)  # "sendback" or None
    approved_by = Column(String, nullable=True)
    approved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    report = relationship("ExpenseReport", back_populates="approval_history")

    def __repr__(self):
        outcome = self.action or ("approved" if self.approved else "rejected")
        return f"<ApprovalHistoryEntry {self.stage.value} - {outcome}>"

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "approved": self.approved,
            "date": self.date,
            "remarks": self.remarks,
            "action": self.action,
            "approved_by": self.approved_by,
            "approved_by_id": self.approved_by_id,
        }
