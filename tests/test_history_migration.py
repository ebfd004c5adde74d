"""
Approval History Migration Tests
Tests for backfilling history from legacy per-stage snapshots
"""

from datetime import datetime

from src.models.approval import ApprovalHistoryEntry, ApprovalStage
from src.models.expense_report import ExpenseReport, FundType, ReportStatus
from src.models.user import UserRole
from src.services.history_service import latest_by_stage, legacy_entries, migrate_legacy_history


def legacy_report(**snapshots):
    return ExpenseReport(
        report_number="EXR-20240101-LEGACY",
        submitter_id=1,
        submitter_role=UserRole.STUDENT,
        status=ReportStatus.SCHOOL_CHAIR_APPROVED,
        fund_type=FundType.PROJECT_FUND,
        **snapshots
    )


FACULTY_SNAPSHOT = {
    "approved": True,
    "date": "2024-01-05T09:00:00.000Z",
    "remarks": "ok",
    "approvedBy": "Ravi Faculty",
    "approvedById": 2,
}
CHAIR_SNAPSHOT = {
    "approved": True,
    "date": "2024-01-03T12:00:00+05:30",
    "remarks": None,
    "approved_by": "Kiran Chair",
}


class TestLegacyEntries:
    """Test reading legacy snapshots"""

    def test_reads_camel_and_snake_case(self):
        entries = legacy_entries(legacy_report(
            faculty_approval=FACULTY_SNAPSHOT, school_chair_approval=CHAIR_SNAPSHOT
        ))
        by_stage = {entry["stage"]: entry for entry in entries}

        assert by_stage[ApprovalStage.FACULTY]["approved_by"] == "Ravi Faculty"
        assert by_stage[ApprovalStage.FACULTY]["approved_by_id"] == 2
        assert by_stage[ApprovalStage.FACULTY]["date"] == datetime(2024, 1, 5, 9, 0)
        assert by_stage[ApprovalStage.SCHOOL_CHAIR]["approved_by"] == "Kiran Chair"
        # Offsets are normalized to naive UTC
        assert by_stage[ApprovalStage.SCHOOL_CHAIR]["date"] == datetime(2024, 1, 3, 6, 30)

    def test_snapshots_without_date_are_skipped(self):
        report = legacy_report(audit_approval={"approved": False, "remarks": "pending"})
        assert legacy_entries(report) == []


class TestMigrateLegacyHistory:
    """Test the backfill itself"""

    def test_backfill_is_sorted_by_date(self):
        report = legacy_report(faculty_approval=FACULTY_SNAPSHOT, school_chair_approval=CHAIR_SNAPSHOT)

        added = migrate_legacy_history(report, ApprovalHistoryEntry)

        assert added == 2
        assert [entry.stage for entry in report.approval_history] == [
            ApprovalStage.SCHOOL_CHAIR, ApprovalStage.FACULTY
        ]
        assert [entry.position for entry in report.approval_history] == [0, 1]

    def test_running_twice_adds_nothing(self):
        report = legacy_report(faculty_approval=FACULTY_SNAPSHOT)

        assert migrate_legacy_history(report, ApprovalHistoryEntry) == 1
        assert migrate_legacy_history(report, ApprovalHistoryEntry) == 0
        assert len(report.approval_history) == 1

    def test_existing_equivalent_entry_is_kept(self):
        report = legacy_report(faculty_approval=FACULTY_SNAPSHOT)
        report.approval_history.append(ApprovalHistoryEntry(
            stage=ApprovalStage.FACULTY,
            approved=True,
            date=datetime(2024, 1, 5, 9, 0),
            approved_by="Ravi Faculty",
            approved_by_id=2,
        ))

        assert migrate_legacy_history(report, ApprovalHistoryEntry) == 0
        assert len(report.approval_history) == 1

    def test_legacy_columns_are_not_written(self):
        report = legacy_report(faculty_approval=dict(FACULTY_SNAPSHOT))
        migrate_legacy_history(report, ApprovalHistoryEntry)
        assert report.faculty_approval == FACULTY_SNAPSHOT
        assert report.finance_approval is None

    def test_existing_entries_are_renumbered_in_date_order(self):
        report = legacy_report(faculty_approval=FACULTY_SNAPSHOT)
        report.approval_history.extend([
            ApprovalHistoryEntry(stage=ApprovalStage.SCHOOL_CHAIR, approved=True, date=datetime(2024, 1, 8)),
            ApprovalHistoryEntry(stage=ApprovalStage.DEAN_SRIC, approved=True, date=datetime(2024, 1, 9)),
        ])
        assert [entry.position for entry in report.approval_history] == [0, 1]

        assert migrate_legacy_history(report, ApprovalHistoryEntry) == 1

        assert [entry.stage for entry in report.approval_history] == [
            ApprovalStage.FACULTY, ApprovalStage.SCHOOL_CHAIR, ApprovalStage.DEAN_SRIC
        ]
        assert [entry.position for entry in report.approval_history] == [0, 1, 2]

    def test_nothing_to_migrate(self):
        assert migrate_legacy_history(legacy_report(), ApprovalHistoryEntry) == 0


class TestLatestByStage:
    """Test the per-stage projection"""

    def test_last_entry_per_stage_wins(self):
        report = legacy_report()
        report.approval_history.extend([
            ApprovalHistoryEntry(stage=ApprovalStage.FACULTY, approved=False, date=datetime(2024, 1, 1),
                                 remarks="fix", action="sendback"),
            ApprovalHistoryEntry(stage=ApprovalStage.FACULTY, approved=True, date=datetime(2024, 1, 2)),
            ApprovalHistoryEntry(stage=ApprovalStage.SCHOOL_CHAIR, approved=True, date=datetime(2024, 1, 3)),
        ])

        view = latest_by_stage(report.approval_history)

        assert set(view) == {"Faculty", "School Chair"}
        assert view["Faculty"]["approved"] is True
        assert view["Faculty"]["action"] is None
