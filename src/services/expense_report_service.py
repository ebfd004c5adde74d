"""
Expense Report Service
Business logic for expense reports: drafting, items, submission,
approval workflow actions and role based listing
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from src.models.approval import ApprovalHistoryEntry
from src.models.audit_log import AuditLog
from src.models.expense_report import ExpenseItem, ExpenseReport, FundType, ReportStatus
from src.models.user import User, UserRole
from src.schemas.expense_report import (
    ApprovalHistoryResponse,
    ExpenseItemCreate,
    ExpenseItemUpdate,
    ExpenseReportCreate,
    ExpenseReportResponse,
    ExpenseReportUpdate,
    WorkflowActionRequest,
    WorkflowHistoryResponse,
)
from src.services.approver_registry import SqlApproverRegistry
from src.services.history_service import latest_by_stage, migrate_legacy_history
from src.services.totals_service import recalculate_totals, snapshot_totals
from src.services.workflow_engine import (
    Actor,
    WorkflowEngine,
    apply_updates,
    approval_path,
    next_approver_role,
    remaining_stages,
)
from src.utils.exceptions import (
    AppError,
    ForbiddenError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from src.utils.helpers import format_currency, generate_report_number
from src.utils.logger import setup_logger, log_audit

logger = setup_logger()

# Roles that may open any report
REVIEWER_ROLES = {
    UserRole.SCHOOL_CHAIR,
    UserRole.DEAN_SRIC,
    UserRole.DIRECTOR,
    UserRole.AUDIT,
    UserRole.FINANCE,
    UserRole.ADMIN,
}

# Statuses reached once a report has left the submitter
POST_FACULTY_STATUSES = [
    ReportStatus.FACULTY_APPROVED,
    ReportStatus.SCHOOL_CHAIR_APPROVED,
    ReportStatus.DEAN_SRIC_APPROVED,
    ReportStatus.DIRECTOR_APPROVED,
    ReportStatus.AUDIT_APPROVED,
    ReportStatus.FINANCE_APPROVED,
    ReportStatus.REJECTED,
]

FINAL_REVIEW_STATUSES = [
    ReportStatus.AUDIT_APPROVED,
    ReportStatus.FINANCE_APPROVED,
    ReportStatus.REJECTED,
]

REQUIRED_HEADER_FIELDS = {
    "expense_period_start",
    "expense_period_end",
    "purpose_of_expense",
    "report_type",
    "funding_source",
    "non_reimbursable_amount",
}

OPTIONAL_ITEM_FIELDS = {"amount_in_inr", "business_purpose", "vendor"}


@contextmanager
def _transaction(db: Session):
    """Commit on success, roll back on any failure"""
    try:
        yield
        db.commit()
    except StaleDataError:
        db.rollback()
        raise InvalidStateTransitionError("Report was modified by another request")
    except Exception:
        db.rollback()
        raise


class ExpenseReportService:
    """Service for expense report business logic"""

    def __init__(self, engine_factory=None):
        """
        Args:
            engine_factory: Builds a WorkflowEngine for a session
                (defaults to one backed by the school_admins table)
        """
        self.engine_factory = engine_factory or (lambda db: WorkflowEngine(SqlApproverRegistry(db)))

    # ------------------------------------------------------------------
    # Loading and access
    # ------------------------------------------------------------------

    def get_report(self, db: Session, report_id: int) -> ExpenseReport:
        report = db.query(ExpenseReport).filter(ExpenseReport.id == report_id).first()
        if not report:
            raise NotFoundError.for_resource("Report", report_id)
        return report

    def can_view(self, user: User, report: ExpenseReport) -> bool:
        """Owner, linked faculty, reviewers further up the chain and Admin"""
        if report.submitter_id == user.id or report.faculty_id == user.id:
            return True
        if user.role in REVIEWER_ROLES:
            return True
        # Unassigned student report waiting for any faculty
        return (
            user.role == UserRole.FACULTY
            and report.faculty_id is None
            and report.submitter_role == UserRole.STUDENT
            and report.status == ReportStatus.SUBMITTED
        )

    def _owned_draft(self, db: Session, user: User, report_id: int, what: str) -> ExpenseReport:
        report = self.get_report(db, report_id)
        if report.submitter_id != user.id:
            raise ForbiddenError(f"You can only {what} your own reports")
        if not report.is_editable:
            raise ForbiddenError(
                f"Cannot {what} a report in status {report.status.value}",
                {"status": report.status.value}
            )
        return report

    def _audit(
        self,
        db: Session,
        user: User,
        action: str,
        report: Optional[ExpenseReport],
        description: str,
        changes: Optional[Dict[str, Any]] = None
    ):
        db.add(AuditLog(
            user_id=user.id,
            action=action,
            entity_type="expense_report",
            entity_id=report.id if report is not None else None,
            report_id=report.id if report is not None else None,
            description=description,
            changes=changes,
        ))

    def _faculty_reviewer(self, db: Session, faculty_id: int) -> User:
        faculty = db.query(User).filter(User.id == faculty_id).first()
        if not faculty:
            raise NotFoundError.for_resource("Faculty", faculty_id)
        if faculty.role != UserRole.FACULTY:
            raise ValidationError(
                "Selected reviewer must be a Faculty member",
                {"faculty_id": faculty_id, "role": faculty.role.value}
            )
        return faculty

    def _apply_routing(self, db: Session, user: User, report: ExpenseReport, data: Dict[str, Any]):
        """Faculty linkage for students, fund type for faculty"""
        if user.role == UserRole.STUDENT:
            if data.get("fund_type") is not None or data.get("project_id"):
                raise ForbiddenError("Students cannot set the fund type")
            if data.get("faculty_id") is not None:
                faculty = self._faculty_reviewer(db, data["faculty_id"])
                report.faculty_id = faculty.id
                report.faculty_name = faculty.name
            return

        if "fund_type" in data:
            report.fund_type = data["fund_type"]
        if "project_id" in data:
            report.project_id = (data["project_id"] or "").strip() or None
        if report.fund_type != FundType.PROJECT_FUND:
            report.project_id = None

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def create_report(self, db: Session, user: User, data: ExpenseReportCreate) -> ExpenseReport:
        """
        Create a Draft report for a Student or Faculty member

        Raises:
            ForbiddenError: caller cannot own reports
            ValidationError: student without student ID, bad reviewer
        """
        if not user.can_submit_reports():
            raise ForbiddenError("Only Students and Faculty can create expense reports")
        if user.role == UserRole.STUDENT and not (user.student_id or "").strip():
            raise ValidationError(
                "Student ID is required. Please complete your profile before creating expense reports.",
                {"requires_profile_update": True}
            )

        with _transaction(db):
            payload = data.model_dump(exclude={"items", "faculty_id", "fund_type", "project_id"})
            report = ExpenseReport(
                report_number=generate_report_number(),
                submitter_id=user.id,
                submitter_role=user.role,
                department=user.department,
                status=ReportStatus.DRAFT,
                expense_report_date=datetime.utcnow(),
                **payload
            )
            if user.role == UserRole.STUDENT:
                report.student_id = user.student_id
                report.student_name = user.name

            self._apply_routing(db, user, report, data.model_dump(
                include={"faculty_id", "fund_type", "project_id"}, exclude_none=True
            ))
            for item in data.items:
                report.items.append(ExpenseItem(**item.model_dump()))
            recalculate_totals(report)

            db.add(report)
            db.flush()
            self._audit(db, user, "create_report", report, f"Created draft {report.report_number}")

        db.refresh(report)
        log_audit(user.id, "create_report", {"report_number": report.report_number})
        logger.info(f"Report {report.report_number} created by user {user.id} ({user.role.value})")
        return report

    def update_report(self, db: Session, user: User, report_id: int, data: ExpenseReportUpdate) -> ExpenseReport:
        """Update header fields (and optionally replace items) of an owned draft"""
        report = self._owned_draft(db, user, report_id, "edit")
        updates = data.model_dump(exclude_unset=True)

        with _transaction(db):
            routing = {key: updates.pop(key) for key in ("faculty_id", "fund_type", "project_id") if key in updates}
            items = updates.pop("items", None)

            for field, value in updates.items():
                if value is None and field in REQUIRED_HEADER_FIELDS:
                    raise ValidationError(f"{field} cannot be empty", {"field": field})
                setattr(report, field, value)
            if report.expense_period_end < report.expense_period_start:
                raise ValidationError("expense_period_end must be on or after expense_period_start")

            self._apply_routing(db, user, report, routing)

            if items is not None:
                report.items.clear()
                for item in data.items:
                    report.items.append(ExpenseItem(**item.model_dump()))
            recalculate_totals(report)

        db.refresh(report)
        logger.info(f"Report {report.report_number} updated by user {user.id}")
        return report

    def delete_report(self, db: Session, user: User, report_id: int):
        """Delete a draft; only its submitter may do so"""
        report = self.get_report(db, report_id)
        if report.submitter_id != user.id:
            raise ForbiddenError("You can only delete your own reports")
        if report.status != ReportStatus.DRAFT:
            raise InvalidStateTransitionError(
                "Cannot delete submitted reports",
                {"status": report.status.value}
            )

        report_number = report.report_number
        with _transaction(db):
            self._audit(db, user, "delete_report", None, f"Deleted draft {report_number}",
                        {"report_id": report.id})
            db.delete(report)

        log_audit(user.id, "delete_report", {"report_number": report_number})
        logger.info(f"Report {report_number} deleted by user {user.id}")

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def _find_item(self, report: ExpenseReport, item_id: int) -> ExpenseItem:
        for item in report.items:
            if item.id == item_id:
                return item
        raise NotFoundError.for_resource("Item", item_id)

    def add_item(self, db: Session, user: User, report_id: int, data: ExpenseItemCreate) -> ExpenseReport:
        report = self._owned_draft(db, user, report_id, "modify items of")
        with _transaction(db):
            report.items.append(ExpenseItem(**data.model_dump()))
            recalculate_totals(report)
        db.refresh(report)
        return report

    def update_item(
        self, db: Session, user: User, report_id: int, item_id: int, data: ExpenseItemUpdate
    ) -> ExpenseReport:
        report = self._owned_draft(db, user, report_id, "modify items of")
        item = self._find_item(report, item_id)
        with _transaction(db):
            for field, value in data.model_dump(exclude_unset=True).items():
                if field == "receipt_image" and not value:
                    raise ValidationError("Receipt image is required for all expense items")
                if value is None and field not in OPTIONAL_ITEM_FIELDS:
                    raise ValidationError(f"{field} cannot be empty", {"field": field})
                setattr(item, field, value)
            recalculate_totals(report)
        db.refresh(report)
        return report

    def delete_item(self, db: Session, user: User, report_id: int, item_id: int) -> ExpenseReport:
        report = self._owned_draft(db, user, report_id, "modify items of")
        item = self._find_item(report, item_id)
        with _transaction(db):
            report.items.remove(item)
            report.items.reorder()
            recalculate_totals(report)
        db.refresh(report)
        return report

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def submit_report(self, db: Session, user: User, report_id: int) -> ExpenseReport:
        """
        Submit a draft into the approval chain

        Students land in Submitted (waiting for their faculty); Faculty
        skip their own stage and land in Faculty Approved.
        """
        report = self.get_report(db, report_id)
        engine = self.engine_factory(db)

        with _transaction(db):
            updates = engine.decide_submission(
                report,
                Actor.from_user(user),
                faculty_lookup=lambda faculty_id: db.query(User).filter(User.id == faculty_id).first()
            )
            apply_updates(report, updates)
            recalculate_totals(report)
            self._audit(
                db, user, "submit_report", report,
                f"Submitted {report.report_number} for {format_currency(report.total_amount)}",
                {"status": {"old": ReportStatus.DRAFT.value, "new": report.status.value}}
            )

        db.refresh(report)
        log_audit(user.id, "submit_report", {"report_number": report.report_number, "status": report.status.value})
        logger.info(f"Report {report.report_number} submitted by user {user.id}, now {report.status.value}")
        return report

    def act_on_report(
        self, db: Session, user: User, report_id: int, request: WorkflowActionRequest
    ) -> ExpenseReport:
        """
        Approve, reject or send back a report

        Raises:
            InvalidStateTransitionError: wrong stage, stale expected_status
                or a concurrent modification
            ForbiddenError: caller is not the designated approver
            ValidationError: missing fund type, project ID or remarks
        """
        report = self.get_report(db, report_id)
        if request.expected_status is not None and report.status != request.expected_status:
            raise InvalidStateTransitionError(
                "Report status has changed since it was loaded",
                {"expected": request.expected_status.value, "actual": report.status.value}
            )

        engine = self.engine_factory(db)
        try:
            with _transaction(db):
                migrate_legacy_history(report, ApprovalHistoryEntry)
                decision = engine.decide(
                    report,
                    Actor.from_user(user),
                    request.action,
                    remarks=request.remarks,
                    fund_type=request.fund_type,
                    project_id=request.project_id,
                )
                engine.apply_decision(report, decision, ApprovalHistoryEntry)
                self._audit(
                    db, user, f"{decision.action.value}_report", report,
                    f"{decision.stage.value} {decision.action.value} on {report.report_number}",
                    {
                        "status": {"old": decision.previous_status.value, "new": decision.new_status.value},
                        "remarks": decision.entry.get("remarks"),
                    }
                )
        except AppError as e:
            logger.info(f"Workflow action on report {report_id} by user {user.id} refused: {e.code} {e.message}")
            raise

        db.refresh(report)
        log_audit(user.id, f"{decision.action.value}_report", {
            "report_number": report.report_number,
            "stage": decision.stage.value,
            "status": report.status.value,
        })
        return report

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def view_report(self, db: Session, user: User, report_id: int) -> ExpenseReport:
        """Fetch a report for display, healing stale totals on the way"""
        report = self.get_report(db, report_id)
        if not self.can_view(user, report):
            raise ForbiddenError("Access denied")

        before = snapshot_totals(report)
        recalculate_totals(report)
        if snapshot_totals(report) != before:
            logger.warning(f"Report {report.report_number} totals were stale, recalculated {before}")
            with _transaction(db):
                db.add(report)
            db.refresh(report)
        return report

    def history(self, db: Session, user: User, report_id: int) -> WorkflowHistoryResponse:
        report = self.view_report(db, user, report_id)
        pending = next_approver_role(report.status, report.fund_type)
        return WorkflowHistoryResponse(
            report_id=report.id,
            status=report.status,
            fund_type=report.fund_type,
            pending_approver_role=pending,
            approval_path=approval_path(report.fund_type),
            remaining_stages=remaining_stages(report.status, report.fund_type),
            history=[ApprovalHistoryResponse.model_validate(entry) for entry in report.approval_history],
        )

    def list_reports(
        self,
        db: Session,
        user: User,
        pending: bool = False,
        processed: bool = False,
        reviewed: bool = False,
        all_reports: bool = False
    ) -> List[ExpenseReport]:
        """
        Reports visible to the caller, newest first

        The flags select the queue within the caller's role (pending work,
        already processed, faculty reviewed, audit all).
        """
        query = db.query(ExpenseReport)
        role = user.role

        if role == UserRole.STUDENT:
            query = query.filter(ExpenseReport.submitter_id == user.id)

        elif role == UserRole.FACULTY:
            if pending:
                query = query.filter(
                    or_(
                        ExpenseReport.faculty_id == user.id,
                        ExpenseReport.faculty_id.is_(None),
                    ),
                    ExpenseReport.submitter_role == UserRole.STUDENT,
                    ExpenseReport.status == ReportStatus.SUBMITTED,
                )
            elif reviewed:
                query = query.filter(
                    ExpenseReport.faculty_id == user.id,
                    ExpenseReport.submitter_role == UserRole.STUDENT,
                    ExpenseReport.status.in_([ReportStatus.DRAFT] + POST_FACULTY_STATUSES),
                )
            else:
                query = query.filter(ExpenseReport.submitter_id == user.id)

        elif role == UserRole.SCHOOL_CHAIR:
            query = query.filter(ExpenseReport.department == user.department)
            if processed:
                query = query.filter(ExpenseReport.status.in_(POST_FACULTY_STATUSES[1:]))
            else:
                query = query.filter(ExpenseReport.status == ReportStatus.FACULTY_APPROVED)

        elif role in (UserRole.DEAN_SRIC, UserRole.DIRECTOR):
            if role == UserRole.DEAN_SRIC:
                fund_type, own_status = FundType.PROJECT_FUND, ReportStatus.DEAN_SRIC_APPROVED
            else:
                fund_type, own_status = FundType.INSTITUTE_FUND, ReportStatus.DIRECTOR_APPROVED
            query = query.filter(ExpenseReport.fund_type == fund_type)
            if processed:
                query = query.filter(ExpenseReport.status.in_([own_status] + FINAL_REVIEW_STATUSES))
            else:
                query = query.filter(ExpenseReport.status == ReportStatus.SCHOOL_CHAIR_APPROVED)

        elif role == UserRole.AUDIT:
            if all_reports:
                query = query.filter(ExpenseReport.status.in_(FINAL_REVIEW_STATUSES))
            else:
                query = query.filter(or_(
                    and_(
                        ExpenseReport.status == ReportStatus.SCHOOL_CHAIR_APPROVED,
                        ExpenseReport.fund_type.in_([
                            FundType.DEPARTMENT_SCHOOL_FUND,
                            FundType.PROFESSIONAL_DEVELOPMENT_ALLOWANCE,
                        ]),
                    ),
                    ExpenseReport.status == ReportStatus.DEAN_SRIC_APPROVED,
                    ExpenseReport.status == ReportStatus.DIRECTOR_APPROVED,
                ))

        elif role == UserRole.FINANCE:
            if processed:
                query = query.filter(ExpenseReport.status.in_(FINAL_REVIEW_STATUSES))
            else:
                query = query.filter(ExpenseReport.status == ReportStatus.AUDIT_APPROVED)

        elif role != UserRole.ADMIN:
            return []

        return query.order_by(ExpenseReport.created_at.desc(), ExpenseReport.id.desc()).all()

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def build_response(self, report: ExpenseReport) -> ExpenseReportResponse:
        """Report response with the derived per-stage and pending views"""
        response = ExpenseReportResponse.model_validate(report)
        response.stage_approvals = latest_by_stage(report.approval_history)
        response.pending_approver_role = next_approver_role(report.status, report.fund_type)
        return response


# Create singleton instance
expense_report_service = ExpenseReportService()
