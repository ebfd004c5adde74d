"""
Expense Report Model
One claim submitted by a Student or Faculty member, its line items and
the routing attributes the approval workflow runs on
"""

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, Enum, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.ext.orderinglist import ordering_list
from datetime import datetime
import enum

from src.config.database import Base
from src.models.user import Department, UserRole, _enum_values


class ReportStatus(str, enum.Enum):
    """Expense report status"""
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    FACULTY_APPROVED = "Faculty Approved"
    SCHOOL_CHAIR_APPROVED = "School Chair Approved"
    DEAN_SRIC_APPROVED = "Dean SRIC Approved"
    DIRECTOR_APPROVED = "Director Approved"
    AUDIT_APPROVED = "Audit Approved"
    FINANCE_APPROVED = "Finance Approved"
    COMPLETED = "Completed"
    REJECTED = "Rejected"


TERMINAL_STATUSES = {
    ReportStatus.REJECTED,
    ReportStatus.FINANCE_APPROVED,
    ReportStatus.COMPLETED,
}


class FundType(str, enum.Enum):
    """Funding source chosen by Faculty; decides the mid-chain approver"""
    INSTITUTE_FUND = "Institute Fund"
    DEPARTMENT_SCHOOL_FUND = "Department/School Fund"
    PROJECT_FUND = "Project Fund"
    PROFESSIONAL_DEVELOPMENT_ALLOWANCE = "Professional Development Allowance"


class PaymentMethod(str, enum.Enum):
    """How a line item was paid"""
    UNIVERSITY_CARD = "University Credit Card (P-Card)"
    PERSONAL_FUNDS = "Personal Funds (Reimbursement)"
    DIRECT_INVOICE = "Direct Invoice to University"


class ExpenseCategory(str, enum.Enum):
    """Line item categories"""
    TRAVEL_AIR = "Travel - Air"
    TRAVEL_TRAIN = "Travel - Train"
    TRAVEL_BUS = "Travel - Bus"
    TRAVEL_GROUND = "Travel - Ground Transport"
    ACCOMMODATION_HOTEL = "Accommodation - Hotel"
    ACCOMMODATION_GUEST = "Accommodation - Guest House"
    MEALS_BREAKFAST = "Meals - Breakfast"
    MEALS_LUNCH = "Meals - Lunch"
    MEALS_DINNER = "Meals - Dinner"
    CONFERENCE_REGISTRATION = "Conference - Registration"
    CONFERENCE_WORKSHOP = "Conference - Workshop"
    SUPPLIES_LAB = "Supplies - Lab"
    SUPPLIES_OFFICE = "Supplies - Office"
    MISCELLANEOUS = "Miscellaneous - Other"


class ReportType(str, enum.Enum):
    """Nature of the activity the report covers"""
    TEACHING = "Teaching-related"
    RESEARCH = "Research-related"
    ADMINISTRATIVE = "Administrative/Service"
    OTHER = "Other"


class FundingSource(str, enum.Enum):
    """Budget line declared by the submitter"""
    DEPARTMENT_BUDGET = "Department Budget"
    RESEARCH_GRANT = "Research Grant"
    GIFT_ENDOWMENT = "Gift/Endowment Fund"
    COST_SHARING = "Cost-Sharing/Matching Fund"


class ExpenseReport(Base):
    """Expense report model"""
    __tablename__ = "expense_reports"

    id = Column(Integer, primary_key=True, index=True)
    report_number = Column(String, unique=True, index=True, nullable=False)

    # Submitter information
    submitter_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    submitter_role = Column(Enum(UserRole, values_callable=_enum_values, name="submitter_role"), nullable=False)
    student_id = Column(String, nullable=True)
    student_name = Column(String, nullable=True)

    # Reviewing faculty (chosen by the student or filled in on first faculty action)
    faculty_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    faculty_name = Column(String, nullable=True)

    # Header
    department = Column(Enum(Department, values_callable=_enum_values, name="department"), nullable=True, index=True)
    expense_report_date = Column(DateTime, default=datetime.utcnow)
    expense_period_start = Column(Date, nullable=False)
    expense_period_end = Column(Date, nullable=False)
    purpose_of_expense = Column(Text, nullable=False)
    report_type = Column(Enum(ReportType, values_callable=_enum_values, name="report_type"), nullable=False)
    funding_source = Column(Enum(FundingSource, values_callable=_enum_values, name="funding_source"), nullable=False)
    cost_center = Column(String, nullable=True)
    program_project_code = Column(String, nullable=True)
    business_unit = Column(String, nullable=True)
    function = Column(String, nullable=True)
    fund = Column(String, nullable=True)
    region = Column(String, nullable=True)

    # Routing (set by Faculty)
    fund_type = Column(Enum(FundType, values_callable=_enum_values, name="fund_type"), nullable=True, index=True)
    project_id = Column(String, nullable=True)

    # Totals, derived from items by the totals calculator
    total_amount = Column(Float, default=0.0, nullable=False)
    university_card_amount = Column(Float, default=0.0, nullable=False)
    personal_amount = Column(Float, default=0.0, nullable=False)
    non_reimbursable_amount = Column(Float, default=0.0, nullable=False)
    net_reimbursement = Column(Float, default=0.0, nullable=False)

    # Status and workflow
    status = Column(
        Enum(ReportStatus, values_callable=_enum_values, name="report_status"),
        default=ReportStatus.DRAFT,
        nullable=False,
        index=True
    )
    submission_date = Column(DateTime, nullable=True)

    # Legacy per-stage snapshots from before approval history existed.
    # Read only: migrated into approval_history on the next workflow action.
    faculty_approval = Column(JSON, nullable=True)
    school_chair_approval = Column(JSON, nullable=True)
    dean_sric_approval = Column(JSON, nullable=True)
    director_approval = Column(JSON, nullable=True)
    audit_approval = Column(JSON, nullable=True)
    finance_approval = Column(JSON, nullable=True)

    # Optimistic lock counter
    version = Column(Integer, nullable=False, default=1)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    submitter = relationship("User", foreign_keys=[submitter_id])
    faculty = relationship("User", foreign_keys=[faculty_id])
    items = relationship(
        "ExpenseItem",
        back_populates="report",
        order_by="ExpenseItem.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan"
    )
    approval_history = relationship(
        "ApprovalHistoryEntry",
        back_populates="report",
        order_by="ApprovalHistoryEntry.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan"
    )
    audit_logs = relationship("AuditLog", back_populates="report")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<ExpenseReport {self.report_number} - {self.status.value}>"

    @property
    def is_editable(self) -> bool:
        """Header and items can only change while the report is a draft"""
        return self.status == ReportStatus.DRAFT


class ExpenseItem(Base):
    """A single receipt-backed line of an expense report"""
    __tablename__ = "expense_items"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(Integer, ForeignKey("expense_reports.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    expense_date = Column(Date, nullable=False)
    category = Column(Enum(ExpenseCategory, values_callable=_enum_values, name="expense_category"), nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="INR", nullable=False)
    amount_in_inr = Column(Float, nullable=True)
    payment_method = Column(Enum(PaymentMethod, values_callable=_enum_values, name="payment_method"), nullable=False)
    receipt_image = Column(String, nullable=False)
    business_purpose = Column(Text, nullable=True)
    vendor = Column(String, nullable=True)

    report = relationship("ExpenseReport", back_populates="items")

    def __repr__(self):
        return f"<ExpenseItem {self.category.value} {self.amount} {self.currency}>"
