"""
Workflow Engine
Approval routing state machine for expense reports

The engine is pure decision logic. Given a report, the acting user and a
requested action it either returns a ``WorkflowDecision`` (new status,
field updates and the history entry to append) or raises one of the typed
application errors. Nothing is written to the report until every check has
passed; ``apply_decision`` then performs the mutation in one step.

Routing after School Chair depends on the fund type:

    Institute Fund                      -> Director  -> Audit -> Finance
    Project Fund                        -> Dean SRIC -> Audit -> Finance
    Department/School Fund              -> Audit -> Finance
    Professional Development Allowance  -> Audit -> Finance
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from src.config.settings import settings
from src.models.approval import ApprovalHistoryEntry, ApprovalStage, WorkflowAction
from src.models.expense_report import FundType, ReportStatus, TERMINAL_STATUSES
from src.models.user import UserRole
from src.services.approver_registry import ApproverRegistry
from src.utils.exceptions import ForbiddenError, InvalidStateTransitionError, ValidationError
from src.utils.logger import setup_logger

logger = setup_logger()


@dataclass(frozen=True)
class Actor:
    """The acting user as the workflow sees it"""
    id: int
    name: str
    role: UserRole
    department: Optional[Any] = None

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=user.id, name=user.name, role=UserRole(user.role), department=user.department)


# Registry checks a transition may require
CHECK_SCHOOL_CHAIR = "school_chair"
CHECK_DEAN_SRIC = "dean_sric"
CHECK_DIRECTOR = "director"
CHECK_LINKED_FACULTY = "linked_faculty"

ANY_FUND = None
DEPARTMENT_LEVEL_FUNDS = frozenset({
    FundType.DEPARTMENT_SCHOOL_FUND,
    FundType.PROFESSIONAL_DEVELOPMENT_ALLOWANCE,
})


@dataclass(frozen=True)
class Transition:
    """One row of the transition table"""
    from_status: ReportStatus
    role: UserRole
    fund_types: Optional[FrozenSet[FundType]]
    stage: ApprovalStage
    approve_to: ReportStatus
    check: Optional[str] = None

    def matches(self, status: ReportStatus, role: UserRole, fund_type: Optional[FundType]) -> bool:
        if self.from_status != status or self.role != role:
            return False
        return self.fund_types is ANY_FUND or fund_type in self.fund_types


TRANSITIONS = (
    Transition(ReportStatus.SUBMITTED, UserRole.FACULTY, ANY_FUND,
               ApprovalStage.FACULTY, ReportStatus.FACULTY_APPROVED, CHECK_LINKED_FACULTY),
    Transition(ReportStatus.FACULTY_APPROVED, UserRole.SCHOOL_CHAIR, ANY_FUND,
               ApprovalStage.SCHOOL_CHAIR, ReportStatus.SCHOOL_CHAIR_APPROVED, CHECK_SCHOOL_CHAIR),
    Transition(ReportStatus.SCHOOL_CHAIR_APPROVED, UserRole.DEAN_SRIC, frozenset({FundType.PROJECT_FUND}),
               ApprovalStage.DEAN_SRIC, ReportStatus.DEAN_SRIC_APPROVED, CHECK_DEAN_SRIC),
    Transition(ReportStatus.SCHOOL_CHAIR_APPROVED, UserRole.DIRECTOR, frozenset({FundType.INSTITUTE_FUND}),
               ApprovalStage.DIRECTOR, ReportStatus.DIRECTOR_APPROVED, CHECK_DIRECTOR),
    Transition(ReportStatus.SCHOOL_CHAIR_APPROVED, UserRole.AUDIT, DEPARTMENT_LEVEL_FUNDS,
               ApprovalStage.AUDIT, ReportStatus.AUDIT_APPROVED),
    Transition(ReportStatus.DEAN_SRIC_APPROVED, UserRole.AUDIT, frozenset({FundType.PROJECT_FUND}),
               ApprovalStage.AUDIT, ReportStatus.AUDIT_APPROVED),
    Transition(ReportStatus.DIRECTOR_APPROVED, UserRole.AUDIT, frozenset({FundType.INSTITUTE_FUND}),
               ApprovalStage.AUDIT, ReportStatus.AUDIT_APPROVED),
    Transition(ReportStatus.AUDIT_APPROVED, UserRole.FINANCE, ANY_FUND,
               ApprovalStage.FINANCE, ReportStatus.FINANCE_APPROVED),
)

# Reject and send-back land in the same place from every stage
ACTION_TARGETS = {
    WorkflowAction.REJECT: ReportStatus.REJECTED,
    WorkflowAction.SENDBACK: ReportStatus.DRAFT,
}

_STAGE_AFTER_SCHOOL_CHAIR = {
    FundType.INSTITUTE_FUND: ApprovalStage.DIRECTOR,
    FundType.PROJECT_FUND: ApprovalStage.DEAN_SRIC,
}


def _status(value) -> ReportStatus:
    return ReportStatus(value)


def _fund(value) -> Optional[FundType]:
    if value is None or value == "":
        return None
    try:
        return FundType(value)
    except ValueError:
        raise ValidationError(f"Invalid fund type: {value}", {"fund_type": value})


def approval_path(fund_type) -> List[ApprovalStage]:
    """
    Ordered stages a report with this fund type goes through

    Unknown or unset fund types follow the department path.
    """
    path = [ApprovalStage.FACULTY, ApprovalStage.SCHOOL_CHAIR]
    middle = _STAGE_AFTER_SCHOOL_CHAIR.get(_fund(fund_type))
    if middle:
        path.append(middle)
    path.extend([ApprovalStage.AUDIT, ApprovalStage.FINANCE])
    return path


def next_approver_role(status, fund_type) -> Optional[UserRole]:
    """The single role that may act on a report next, or None"""
    status = _status(status)
    fund = _fund(fund_type)
    for transition in TRANSITIONS:
        if transition.from_status != status:
            continue
        if transition.fund_types is ANY_FUND or fund in transition.fund_types:
            return transition.role
    return None


def remaining_stages(status, fund_type) -> List[ApprovalStage]:
    """Stages still ahead of a report, current pending stage first"""
    role = next_approver_role(status, fund_type)
    if role is None:
        return []
    path = approval_path(fund_type)
    pending = next(t.stage for t in TRANSITIONS if t.role == role and t.from_status == _status(status))
    return path[path.index(pending):]


@dataclass
class WorkflowDecision:
    """Outcome of a validated workflow action, not yet applied"""
    stage: ApprovalStage
    action: WorkflowAction
    previous_status: ReportStatus
    new_status: ReportStatus
    updates: Dict[str, Any] = field(default_factory=dict)
    entry: Dict[str, Any] = field(default_factory=dict)


class WorkflowEngine:
    """Decides and applies approval transitions"""

    def __init__(self, registry: ApproverRegistry, strict_institute_match: Optional[bool] = None):
        self.registry = registry
        if strict_institute_match is None:
            strict_institute_match = settings.STRICT_INSTITUTE_APPROVER_MATCH
        self.strict_institute_match = strict_institute_match

    # ------------------------------------------------------------------
    # Table dispatch
    # ------------------------------------------------------------------

    def resolve_transition(self, report, actor: Actor) -> Transition:
        """
        Find the table row for the report's state and the actor's role

        Raises:
            InvalidStateTransitionError: terminal report or no matching row
        """
        status = _status(report.status)
        fund_type = _fund(report.fund_type)

        if status in TERMINAL_STATUSES:
            raise InvalidStateTransitionError(
                f"Report is {status.value} and accepts no further actions",
                {"status": status.value}
            )

        for transition in TRANSITIONS:
            if transition.matches(status, actor.role, fund_type):
                return transition

        expected = next_approver_role(status, fund_type)
        raise InvalidStateTransitionError(
            "Invalid approval action for current status and user role",
            {
                "status": status.value,
                "fund_type": fund_type.value if fund_type else None,
                "role": actor.role.value,
                "expected_role": expected.value if expected else None,
            }
        )

    # ------------------------------------------------------------------
    # Authorization against the designated approver registry
    # ------------------------------------------------------------------

    def _authorize(self, transition: Transition, report, actor: Actor):
        if transition.check == CHECK_LINKED_FACULTY:
            if report.faculty_id is None:
                if UserRole(report.submitter_role) != UserRole.STUDENT:
                    raise ForbiddenError("Only the linked faculty can review this report")
            elif report.faculty_id != actor.id:
                raise ForbiddenError(
                    "This report is assigned to another faculty member",
                    {"faculty_id": report.faculty_id}
                )

        elif transition.check == CHECK_SCHOOL_CHAIR:
            chair = self.registry.get_school_chair(report.department)
            if chair is None or chair.id != actor.id:
                raise ForbiddenError(
                    "You are not authorized to approve reports for this school",
                    {"department": getattr(report.department, "value", report.department)}
                )

        elif transition.check in (CHECK_DEAN_SRIC, CHECK_DIRECTOR):
            if transition.check == CHECK_DEAN_SRIC:
                designated = self.registry.get_dean_sric()
            else:
                designated = self.registry.get_director()

            if designated is not None and designated.id == actor.id:
                return
            if self.strict_institute_match:
                raise ForbiddenError(
                    f"You are not the designated {transition.role.value}",
                    {"user_id": actor.id}
                )
            if designated is not None:
                logger.warning(
                    f"{transition.role.value} mismatch: user {actor.id} is not the registered "
                    f"{transition.role.value} ({designated.id}) but holds the role"
                )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        report,
        actor: Actor,
        action,
        remarks: Optional[str] = None,
        fund_type=None,
        project_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> WorkflowDecision:
        """
        Validate an approve / reject / sendback request

        Args:
            report: Expense report in its current state
            actor: Acting user
            action: approve, reject or sendback
            remarks: Free text, mandatory for reject and sendback
            fund_type: Required when Faculty approves
            project_id: Required when fund_type is Project Fund
            now: Timestamp for the history entry

        Returns:
            WorkflowDecision: what applying the action will change

        Raises:
            ValidationError, ForbiddenError, InvalidStateTransitionError
        """
        try:
            action = WorkflowAction(action)
        except ValueError:
            raise ValidationError(
                f"Unknown action: {action}",
                {"allowed": [a.value for a in WorkflowAction]}
            )

        transition = self.resolve_transition(report, actor)
        self._authorize(transition, report, actor)

        remarks = remarks.strip() if remarks else None
        if remarks and len(remarks) > settings.MAX_REMARKS_LENGTH:
            raise ValidationError(
                f"Remarks cannot exceed {settings.MAX_REMARKS_LENGTH} characters"
            )
        if action != WorkflowAction.APPROVE and not remarks:
            raise ValidationError("Remarks are required to reject or send back a report")

        updates: Dict[str, Any] = {}

        if transition.stage == ApprovalStage.FACULTY:
            if action == WorkflowAction.APPROVE:
                chosen = _fund(fund_type)
                if chosen is None:
                    raise ValidationError("Fund type must be selected before approval")
                project_id = project_id.strip() if project_id else None
                if chosen == FundType.PROJECT_FUND and not project_id:
                    raise ValidationError("Project ID is required for Project Fund")
                updates["fund_type"] = chosen
                updates["project_id"] = project_id if chosen == FundType.PROJECT_FUND else None

            # First faculty touch on a student report fixes School Chair routing
            if (action != WorkflowAction.SENDBACK and report.faculty_id is None
                    and UserRole(report.submitter_role) == UserRole.STUDENT):
                updates["faculty_id"] = actor.id
                updates["faculty_name"] = actor.name
                updates["department"] = actor.department

        if action == WorkflowAction.APPROVE:
            new_status = transition.approve_to
        else:
            new_status = ACTION_TARGETS[action]
        updates["status"] = new_status

        entry = {
            "stage": transition.stage,
            "approved": action == WorkflowAction.APPROVE,
            "date": now or datetime.utcnow(),
            "remarks": remarks,
            "action": WorkflowAction.SENDBACK.value if action == WorkflowAction.SENDBACK else None,
            "approved_by": actor.name,
            "approved_by_id": actor.id,
        }

        return WorkflowDecision(
            stage=transition.stage,
            action=action,
            previous_status=_status(report.status),
            new_status=new_status,
            updates=updates,
            entry=entry,
        )

    def decide_submission(
        self,
        report,
        actor: Actor,
        faculty_lookup: Optional[Callable[[int], Any]] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Validate a Draft submission and compute the field updates

        Args:
            report: Draft report
            actor: Submitting user, must own the report
            faculty_lookup: Returns the user for a faculty id (student reports)
            now: Submission timestamp

        Returns:
            dict: attribute updates to apply to the report
        """
        if _status(report.status) != ReportStatus.DRAFT:
            raise InvalidStateTransitionError(
                "Only draft reports can be submitted",
                {"status": _status(report.status).value}
            )
        if report.submitter_id != actor.id:
            raise ForbiddenError("You can only submit your own reports")

        items = list(report.items or [])
        if not items:
            raise ValidationError("At least one expense item is required")
        if any(not (getattr(item, "receipt_image", None) or "").strip() for item in items):
            raise ValidationError("All expense items must have receipt images before submission")

        updates: Dict[str, Any] = {"submission_date": now or datetime.utcnow()}
        submitter_role = UserRole(report.submitter_role)

        if submitter_role == UserRole.STUDENT:
            updates["status"] = ReportStatus.SUBMITTED
            # School Chair routing follows the reviewing faculty's school
            if report.faculty_id and faculty_lookup:
                faculty = faculty_lookup(report.faculty_id)
                if faculty is not None and faculty.department:
                    updates["department"] = faculty.department

        elif submitter_role == UserRole.FACULTY:
            fund_type = _fund(report.fund_type)
            if fund_type is None:
                raise ValidationError("Fund type is required for faculty expense reports")
            if fund_type == FundType.PROJECT_FUND and not (report.project_id or "").strip():
                raise ValidationError('Project ID is required when Fund Type is "Project Fund"')
            updates["status"] = ReportStatus.FACULTY_APPROVED
            updates["faculty_id"] = actor.id
            updates["faculty_name"] = actor.name

        else:
            raise ForbiddenError("Only Students and Faculty can submit expense reports")

        return updates

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply_decision(self, report, decision: WorkflowDecision, entry_factory=ApprovalHistoryEntry):
        """Write the decision onto the report and append its history entry"""
        for attr, value in decision.updates.items():
            setattr(report, attr, value)
        entry = entry_factory(**decision.entry)
        report.approval_history.append(entry)
        logger.info(
            f"Report {getattr(report, 'report_number', report)}: {decision.stage.value} "
            f"{decision.action.value} ({decision.previous_status.value} -> {decision.new_status.value})"
        )
        return entry


def apply_updates(report, updates: Dict[str, Any]):
    """Set plain attribute updates (used for submissions)"""
    for attr, value in updates.items():
        setattr(report, attr, value)
    return report
