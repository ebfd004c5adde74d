"""
Expense Report Schemas
Pydantic models for expense report requests and responses
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, date

from src.models.approval import ApprovalStage, WorkflowAction
from src.models.expense_report import (
    ReportStatus, FundType, PaymentMethod, ExpenseCategory, ReportType, FundingSource
)
from src.models.user import Department, UserRole


# ============================================================================
# LINE ITEMS
# ============================================================================

class ExpenseItemBase(BaseModel):
    """Fields shared by item create and response"""
    expense_date: date
    category: ExpenseCategory
    description: str = Field(..., min_length=1, max_length=1000)
    amount: float = Field(..., gt=0)
    currency: str = Field("INR", min_length=3, max_length=3)
    amount_in_inr: Optional[float] = Field(None, ge=0)
    payment_method: PaymentMethod
    receipt_image: str = Field(..., min_length=1, description="Stored receipt reference")
    business_purpose: Optional[str] = None
    vendor: Optional[str] = None


class ExpenseItemCreate(ExpenseItemBase):
    """Schema for adding a line item"""

    @field_validator("receipt_image")
    @classmethod
    def validate_receipt(cls, value: str) -> str:
        """Receipt reference must not be blank"""
        value = value.strip()
        if not value:
            raise ValueError("Receipt image is required")
        return value


class ExpenseItemUpdate(BaseModel):
    """Partial update of a line item; receipt cannot be cleared"""
    expense_date: Optional[date] = None
    category: Optional[ExpenseCategory] = None
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    amount: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    amount_in_inr: Optional[float] = Field(None, ge=0)
    payment_method: Optional[PaymentMethod] = None
    receipt_image: Optional[str] = Field(None, min_length=1)
    business_purpose: Optional[str] = None
    vendor: Optional[str] = None

    @field_validator("receipt_image")
    @classmethod
    def validate_receipt(cls, value: Optional[str]) -> Optional[str]:
        """A provided receipt reference must not be blank"""
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Receipt image cannot be blank")
        return value


class ExpenseItemResponse(ExpenseItemBase):
    """Schema for line item response"""
    id: int
    position: int

    class Config:
        from_attributes = True


# ============================================================================
# REPORT HEADER
# ============================================================================

class ExpenseReportCreate(BaseModel):
    """Schema for creating a draft report"""
    expense_period_start: date
    expense_period_end: date
    purpose_of_expense: str = Field(..., min_length=1, max_length=1000)
    report_type: ReportType
    funding_source: FundingSource
    cost_center: Optional[str] = None
    program_project_code: Optional[str] = None
    business_unit: Optional[str] = None
    function: Optional[str] = None
    fund: Optional[str] = None
    region: Optional[str] = None

    # Student: reviewing faculty. Faculty: fund type and project.
    faculty_id: Optional[int] = None
    fund_type: Optional[FundType] = None
    project_id: Optional[str] = None

    non_reimbursable_amount: float = Field(0.0, ge=0)
    items: List[ExpenseItemCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_period(self):
        """Expense period must not end before it starts"""
        if self.expense_period_end < self.expense_period_start:
            raise ValueError("expense_period_end must be on or after expense_period_start")
        return self


class ExpenseReportUpdate(BaseModel):
    """Partial header update while the report is a draft"""
    expense_period_start: Optional[date] = None
    expense_period_end: Optional[date] = None
    purpose_of_expense: Optional[str] = Field(None, min_length=1, max_length=1000)
    report_type: Optional[ReportType] = None
    funding_source: Optional[FundingSource] = None
    cost_center: Optional[str] = None
    program_project_code: Optional[str] = None
    business_unit: Optional[str] = None
    function: Optional[str] = None
    fund: Optional[str] = None
    region: Optional[str] = None
    faculty_id: Optional[int] = None
    fund_type: Optional[FundType] = None
    project_id: Optional[str] = None
    non_reimbursable_amount: Optional[float] = Field(None, ge=0)
    items: Optional[List[ExpenseItemCreate]] = None


# ============================================================================
# WORKFLOW
# ============================================================================

class WorkflowActionRequest(BaseModel):
    """Body of PATCH /expense-reports/{id}/approve"""
    action: WorkflowAction
    remarks: Optional[str] = None
    fund_type: Optional[FundType] = None
    project_id: Optional[str] = None
    # Optimistic check: refuse if the report already moved on
    expected_status: Optional[ReportStatus] = None


class ApprovalHistoryResponse(BaseModel):
    """One history entry"""
    stage: ApprovalStage
    approved: bool
    date: datetime
    remarks: Optional[str] = None
    action: Optional[str] = None
    approved_by: Optional[str] = None
    approved_by_id: Optional[int] = None

    class Config:
        from_attributes = True


class ExpenseReportResponse(BaseModel):
    """Full expense report"""
    id: int
    report_number: str
    submitter_id: int
    submitter_role: UserRole
    student_id: Optional[str] = None
    student_name: Optional[str] = None
    faculty_id: Optional[int] = None
    faculty_name: Optional[str] = None

    department: Optional[Department] = None
    expense_report_date: Optional[datetime] = None
    expense_period_start: date
    expense_period_end: date
    purpose_of_expense: str
    report_type: ReportType
    funding_source: FundingSource
    cost_center: Optional[str] = None
    program_project_code: Optional[str] = None
    business_unit: Optional[str] = None
    function: Optional[str] = None
    fund: Optional[str] = None
    region: Optional[str] = None

    fund_type: Optional[FundType] = None
    project_id: Optional[str] = None

    items: List[ExpenseItemResponse] = Field(default_factory=list)

    total_amount: float
    university_card_amount: float
    personal_amount: float
    non_reimbursable_amount: float
    net_reimbursement: float

    status: ReportStatus
    submission_date: Optional[datetime] = None
    approval_history: List[ApprovalHistoryResponse] = Field(default_factory=list)

    # Derived views
    stage_approvals: Dict[str, Any] = Field(default_factory=dict)
    pending_approver_role: Optional[UserRole] = None

    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExpenseReportListResponse(BaseModel):
    """List of reports visible to the caller"""
    count: int
    reports: List[ExpenseReportResponse]


class WorkflowHistoryResponse(BaseModel):
    """History plus what is still ahead of the report"""
    report_id: int
    status: ReportStatus
    fund_type: Optional[FundType] = None
    pending_approver_role: Optional[UserRole] = None
    approval_path: List[ApprovalStage]
    remaining_stages: List[ApprovalStage]
    history: List[ApprovalHistoryResponse]
