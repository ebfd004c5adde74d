"""
Expense Report Routes
Drafting, submission and approval workflow endpoints
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from src.config.database import get_db
from src.services.auth_service import auth_service
from src.services.expense_report_service import expense_report_service
from src.models.user import User
from src.schemas.expense_report import (
    ExpenseItemCreate,
    ExpenseItemUpdate,
    ExpenseReportCreate,
    ExpenseReportListResponse,
    ExpenseReportResponse,
    ExpenseReportUpdate,
    WorkflowActionRequest,
    WorkflowHistoryResponse,
)
from src.utils.logger import setup_logger

logger = setup_logger()
router = APIRouter()


@router.post("/", response_model=ExpenseReportResponse, status_code=status.HTTP_201_CREATED)
async def create_expense_report(
    report_data: ExpenseReportCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.require_role("Student", "Faculty"))
):
    """
    Create a draft expense report

    Students pick their reviewing faculty (``faculty_id``); Faculty
    choose ``fund_type`` (and ``project_id`` for Project Fund).
    """
    report = expense_report_service.create_report(db, current_user, report_data)
    return expense_report_service.build_response(report)


@router.get("/", response_model=ExpenseReportListResponse)
async def list_expense_reports(
    pending: bool = False,
    processed: bool = False,
    reviewed: bool = False,
    all_reports: bool = Query(False, alias="all"),
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    List reports visible to the caller

    **Queues by role:**
    - Student: own reports
    - Faculty: own reports, ``pending`` student reports to review, ``reviewed`` ones
    - School Chair: school reports awaiting approval, or ``processed``
    - Dean SRIC / Director: their fund type, pending or ``processed``
    - Audit: awaiting audit, or ``all`` audited
    - Finance: awaiting finance, or ``processed``
    - Admin: every report
    """
    reports = expense_report_service.list_reports(
        db, current_user,
        pending=pending, processed=processed, reviewed=reviewed, all_reports=all_reports
    )
    return ExpenseReportListResponse(
        count=len(reports),
        reports=[expense_report_service.build_response(report) for report in reports]
    )


@router.get("/{report_id}", response_model=ExpenseReportResponse)
async def get_expense_report(
    report_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Get a report (totals are recalculated on read)"""
    report = expense_report_service.view_report(db, current_user, report_id)
    return expense_report_service.build_response(report)


@router.patch("/{report_id}", response_model=ExpenseReportResponse)
@router.put("/{report_id}", response_model=ExpenseReportResponse)
async def update_expense_report(
    report_id: int,
    report_data: ExpenseReportUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Update a draft; ``items`` replaces the whole item list"""
    report = expense_report_service.update_report(db, current_user, report_id, report_data)
    return expense_report_service.build_response(report)


@router.patch("/{report_id}/submit", response_model=ExpenseReportResponse)
async def submit_expense_report(
    report_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Submit a draft into the approval chain"""
    report = expense_report_service.submit_report(db, current_user, report_id)
    return expense_report_service.build_response(report)


@router.patch("/{report_id}/approve", response_model=ExpenseReportResponse)
async def act_on_expense_report(
    report_id: int,
    action_data: WorkflowActionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Approve, reject or send back a report

    **Body:**
    - action: approve, reject or sendback
    - remarks: required for reject and sendback
    - fund_type / project_id: required when Faculty approves
    - expected_status: optional guard against acting on a stale view
    """
    report = expense_report_service.act_on_report(db, current_user, report_id, action_data)
    return expense_report_service.build_response(report)


@router.get("/{report_id}/history", response_model=WorkflowHistoryResponse)
async def get_expense_report_history(
    report_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Approval history with the pending approver and remaining stages"""
    return expense_report_service.history(db, current_user, report_id)


@router.post("/{report_id}/items", response_model=ExpenseReportResponse, status_code=status.HTTP_201_CREATED)
async def add_expense_item(
    report_id: int,
    item_data: ExpenseItemCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Add a line item to a draft"""
    report = expense_report_service.add_item(db, current_user, report_id, item_data)
    return expense_report_service.build_response(report)


@router.put("/{report_id}/items/{item_id}", response_model=ExpenseReportResponse)
async def update_expense_item(
    report_id: int,
    item_id: int,
    item_data: ExpenseItemUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Edit a line item of a draft"""
    report = expense_report_service.update_item(db, current_user, report_id, item_id, item_data)
    return expense_report_service.build_response(report)


@router.delete("/{report_id}/items/{item_id}", response_model=ExpenseReportResponse)
async def delete_expense_item(
    report_id: int,
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Remove a line item from a draft"""
    report = expense_report_service.delete_item(db, current_user, report_id, item_id)
    return expense_report_service.build_response(report)


@router.delete("/{report_id}", status_code=status.HTTP_200_OK)
async def delete_expense_report(
    report_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Delete a draft (submitter only)"""
    expense_report_service.delete_report(db, current_user, report_id)
    return {"success": True, "message": "Report deleted successfully"}
