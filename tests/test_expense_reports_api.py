"""
Expense Report API Tests
Tests for drafting, submission and the approval workflow over HTTP
"""

import pytest

from src.config.database import SessionLocal
from src.models.audit_log import AuditLog
from src.models.expense_report import ExpenseReport
from src.models.user import User
from src.schemas.expense_report import WorkflowActionRequest
from src.services.expense_report_service import expense_report_service
from src.utils.exceptions import InvalidStateTransitionError

BASE = "/api/expense-reports"


@pytest.fixture
def student_report(client, users, auth_headers, report_payload):
    """Draft created by the student, reviewed by the SCS faculty member"""
    response = client.post(
        f"{BASE}/",
        json=report_payload(faculty_id=users["faculty"].id),
        headers=auth_headers(users["student"])
    )
    assert response.status_code == 201, response.json()
    return response.json()


@pytest.fixture
def act(client, auth_headers):
    """PATCH /approve as a given user"""
    def _act(report_id, user, action="approve", **body):
        return client.patch(
            f"{BASE}/{report_id}/approve",
            json={"action": action, **body},
            headers=auth_headers(user)
        )
    return _act


@pytest.fixture
def submitted_report(client, users, auth_headers, student_report):
    response = client.patch(f"{BASE}/{student_report['id']}/submit", headers=auth_headers(users["student"]))
    assert response.status_code == 200, response.json()
    return response.json()


class TestDrafts:
    """Test draft creation and editing"""

    def test_create_draft(self, student_report, users):
        assert student_report["status"] == "Draft"
        assert student_report["report_number"].startswith("EXR-")
        assert student_report["department"] == "SCS"
        assert student_report["student_id"] == "2024SCS001"
        assert student_report["faculty_id"] == users["faculty"].id
        assert student_report["faculty_name"] == users["faculty"].name
        assert student_report["total_amount"] == 1000.0
        assert student_report["personal_amount"] == 1000.0
        assert student_report["net_reimbursement"] == 1000.0
        assert student_report["pending_approver_role"] is None
        assert len(student_report["items"]) == 1

    def test_student_cannot_set_fund_type(self, client, users, auth_headers, report_payload):
        response = client.post(
            f"{BASE}/",
            json=report_payload(fund_type="Institute Fund"),
            headers=auth_headers(users["student"])
        )
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_student_needs_student_id(self, client, db, users, auth_headers, report_payload):
        users["student"].student_id = None
        db.commit()

        response = client.post(f"{BASE}/", json=report_payload(), headers=auth_headers(users["student"]))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "VALIDATION_ERROR"
        assert "Student ID is required" in body["message"]

    def test_approver_roles_cannot_create(self, client, users, auth_headers, report_payload):
        response = client.post(f"{BASE}/", json=report_payload(), headers=auth_headers(users["audit"]))
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_missing_token(self, client, users, report_payload):
        response = client.post(f"{BASE}/", json=report_payload())
        assert response.status_code == 401

    def test_period_must_not_end_before_start(self, client, users, auth_headers, report_payload):
        response = client.post(
            f"{BASE}/",
            json=report_payload(expense_period_start="2025-02-01", expense_period_end="2025-01-01"),
            headers=auth_headers(users["student"])
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_items_drive_totals(self, client, users, auth_headers, student_report, item_payload):
        headers = auth_headers(users["student"])
        report_id = student_report["id"]

        response = client.post(
            f"{BASE}/{report_id}/items",
            json=item_payload(amount=400.0, payment_method="University Credit Card (P-Card)"),
            headers=headers
        )
        assert response.status_code == 201
        body = response.json()
        assert body["total_amount"] == 1400.0
        assert body["university_card_amount"] == 400.0
        assert [item["position"] for item in body["items"]] == [0, 1]

        card_item = body["items"][1]
        response = client.put(
            f"{BASE}/{report_id}/items/{card_item['id']}", json={"amount": 600.0}, headers=headers
        )
        assert response.json()["university_card_amount"] == 600.0

        response = client.delete(f"{BASE}/{report_id}/items/{card_item['id']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["total_amount"] == 1000.0
        assert response.json()["university_card_amount"] == 0.0

    def test_item_requires_receipt(self, client, users, auth_headers, student_report, item_payload):
        response = client.post(
            f"{BASE}/{student_report['id']}/items",
            json=item_payload(receipt_image=""),
            headers=auth_headers(users["student"])
        )
        assert response.status_code == 422

    def test_blank_receipt_is_refused(self, client, users, auth_headers, report_payload, item_payload):
        response = client.post(
            f"{BASE}/",
            json=report_payload(items=[item_payload(receipt_image="   ")]),
            headers=auth_headers(users["student"])
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_receipt_cannot_be_blanked(self, client, users, auth_headers, student_report):
        item_id = student_report["items"][0]["id"]
        response = client.put(
            f"{BASE}/{student_report['id']}/items/{item_id}",
            json={"receipt_image": "  "},
            headers=auth_headers(users["student"])
        )
        assert response.status_code == 422

    def test_receipt_is_stripped(self, client, users, auth_headers, student_report, item_payload):
        response = client.post(
            f"{BASE}/{student_report['id']}/items",
            json=item_payload(receipt_image="  receipts/bus.jpg "),
            headers=auth_headers(users["student"])
        )
        assert response.status_code == 201
        assert response.json()["items"][-1]["receipt_image"] == "receipts/bus.jpg"

    def test_update_header_and_non_reimbursable(self, client, users, auth_headers, student_report):
        response = client.patch(
            f"{BASE}/{student_report['id']}",
            json={"purpose_of_expense": "Workshop", "non_reimbursable_amount": 150.0},
            headers=auth_headers(users["student"])
        )
        assert response.status_code == 200
        body = response.json()
        assert body["purpose_of_expense"] == "Workshop"
        assert body["net_reimbursement"] == 850.0

    def test_only_owner_edits(self, client, users, auth_headers, student_report):
        response = client.put(
            f"{BASE}/{student_report['id']}",
            json={"purpose_of_expense": "Hijack"},
            headers=auth_headers(users["faculty"])
        )
        assert response.status_code == 403

    def test_delete_draft(self, client, users, auth_headers, student_report):
        headers = auth_headers(users["student"])
        response = client.delete(f"{BASE}/{student_report['id']}", headers=headers)
        assert response.status_code == 200

        response = client.get(f"{BASE}/{student_report['id']}", headers=headers)
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_delete_someone_elses_draft(self, client, users, auth_headers, student_report):
        response = client.delete(f"{BASE}/{student_report['id']}", headers=auth_headers(users["faculty"]))
        assert response.status_code == 403

    def test_delete_someone_elses_submitted_report(self, client, users, auth_headers, submitted_report):
        response = client.delete(f"{BASE}/{submitted_report['id']}", headers=auth_headers(users["faculty"]))
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    def test_owner_cannot_delete_submitted_report(self, client, users, auth_headers, submitted_report):
        response = client.delete(f"{BASE}/{submitted_report['id']}", headers=auth_headers(users["student"]))
        assert response.status_code == 409


class TestSubmission:
    """Test submitting drafts"""

    def test_student_submission(self, submitted_report):
        assert submitted_report["status"] == "Submitted"
        assert submitted_report["submission_date"] is not None
        assert submitted_report["pending_approver_role"] == "Faculty"

    def test_submission_needs_items(self, client, users, auth_headers, report_payload):
        headers = auth_headers(users["student"])
        report = client.post(f"{BASE}/", json=report_payload(items=[]), headers=headers).json()

        response = client.patch(f"{BASE}/{report['id']}/submit", headers=headers)

        assert response.status_code == 400
        assert response.json()["message"] == "At least one expense item is required"

    def test_submitted_report_is_frozen(self, client, users, auth_headers, submitted_report, item_payload):
        headers = auth_headers(users["student"])
        report_id = submitted_report["id"]

        response = client.post(f"{BASE}/{report_id}/items", json=item_payload(), headers=headers)
        assert response.status_code == 403

        response = client.delete(f"{BASE}/{report_id}", headers=headers)
        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE_TRANSITION"

        response = client.patch(f"{BASE}/{report_id}/submit", headers=headers)
        assert response.status_code == 409

    def test_faculty_report_skips_faculty_stage(self, client, users, auth_headers, report_payload):
        headers = auth_headers(users["faculty"])
        report = client.post(
            f"{BASE}/", json=report_payload(fund_type="Institute Fund", project_id="ignored"), headers=headers
        ).json()
        assert report["fund_type"] == "Institute Fund"
        assert report["project_id"] is None

        response = client.patch(f"{BASE}/{report['id']}/submit", headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "Faculty Approved"
        assert body["faculty_id"] == users["faculty"].id
        assert body["pending_approver_role"] == "School Chair"


class TestWorkflow:
    """Test approval actions over HTTP"""

    def test_project_fund_requires_project_id(self, act, client, users, auth_headers, submitted_report):
        response = act(submitted_report["id"], users["faculty"], fund_type="Project Fund")

        assert response.status_code == 400
        assert response.json()["message"] == "Project ID is required for Project Fund"

        report = client.get(f"{BASE}/{submitted_report['id']}", headers=auth_headers(users["faculty"])).json()
        assert report["status"] == "Submitted"
        assert report["approval_history"] == []

    def test_department_fund_chain(self, act, client, db, users, auth_headers, submitted_report):
        report_id = submitted_report["id"]

        response = act(report_id, users["faculty"], fund_type="Department/School Fund")
        assert response.status_code == 200, response.json()
        assert response.json()["pending_approver_role"] == "School Chair"

        assert act(report_id, users["chair"]).json()["pending_approver_role"] == "Audit"
        assert act(report_id, users["audit"]).json()["status"] == "Audit Approved"
        response = act(report_id, users["finance"], remarks="Paid by NEFT")
        assert response.status_code == 200

        body = response.json()
        assert body["status"] == "Finance Approved"
        assert body["pending_approver_role"] is None
        assert set(body["stage_approvals"]) == {"Faculty", "School Chair", "Audit", "Finance"}
        assert body["stage_approvals"]["Finance"]["remarks"] == "Paid by NEFT"

        history = client.get(f"{BASE}/{report_id}/history", headers=auth_headers(users["student"])).json()
        assert [entry["stage"] for entry in history["history"]] == ["Faculty", "School Chair", "Audit", "Finance"]
        assert history["remaining_stages"] == []
        assert history["approval_path"] == ["Faculty", "School Chair", "Audit", "Finance"]

        actions = {row.action for row in db.query(AuditLog).filter(AuditLog.report_id == report_id)}
        assert {"create_report", "submit_report", "approve_report"} <= actions

    def test_finished_report_accepts_nothing(self, act, users, submitted_report):
        report_id = submitted_report["id"]
        act(report_id, users["faculty"], "reject", remarks="Not eligible")

        response = act(report_id, users["finance"], "sendback", remarks="reopen")

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE_TRANSITION"

    def test_wrong_stage_is_refused(self, act, users, submitted_report):
        response = act(submitted_report["id"], users["audit"])
        assert response.status_code == 409
        assert response.json()["details"]["expected_role"] == "Faculty"

    def test_chair_of_another_school_is_refused(self, act, users, submitted_report):
        act(submitted_report["id"], users["faculty"], fund_type="Institute Fund")
        response = act(submitted_report["id"], users["other_chair"])
        assert response.status_code == 403

    def test_sendback_returns_to_draft_and_resubmits(self, act, client, users, auth_headers, submitted_report):
        report_id = submitted_report["id"]
        headers = auth_headers(users["student"])

        response = act(report_id, users["faculty"], "sendback", remarks="missing invoice")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "Draft"
        assert body["approval_history"][-1]["action"] == "sendback"
        assert body["approval_history"][-1]["remarks"] == "missing invoice"

        response = client.patch(f"{BASE}/{report_id}", json={"purpose_of_expense": "With invoice"}, headers=headers)
        assert response.status_code == 200
        response = client.patch(f"{BASE}/{report_id}/submit", headers=headers)
        assert response.json()["status"] == "Submitted"
        assert len(response.json()["approval_history"]) == 1

    def test_sendback_requires_remarks(self, act, users, submitted_report):
        response = act(submitted_report["id"], users["faculty"], "sendback")
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_unknown_action_is_a_validation_error(self, act, users, submitted_report):
        response = act(submitted_report["id"], users["faculty"], "escalate")
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_expected_status_guard(self, act, users, submitted_report):
        response = act(
            submitted_report["id"], users["faculty"],
            fund_type="Institute Fund", expected_status="Faculty Approved"
        )
        assert response.status_code == 409

    def test_concurrent_modification(self, act, users, submitted_report):
        stale = SessionLocal()
        try:
            report = stale.get(ExpenseReport, submitted_report["id"])
            list(report.items)
            list(report.approval_history)
            faculty = stale.get(User, users["faculty"].id)

            # Another request moves the report on
            assert act(report.id, users["faculty"], fund_type="Institute Fund").status_code == 200

            with pytest.raises(InvalidStateTransitionError, match="modified by another request"):
                expense_report_service.act_on_report(
                    stale, faculty, report.id,
                    WorkflowActionRequest(action="approve", fund_type="Department/School Fund")
                )
        finally:
            stale.close()


class TestVisibility:
    """Test role based listing and access"""

    def test_queues(self, act, client, users, auth_headers, submitted_report):
        def count(user, **params):
            response = client.get(f"{BASE}/", params=params, headers=auth_headers(user))
            assert response.status_code == 200
            return response.json()["count"]

        assert count(users["student"]) == 1
        assert count(users["faculty"], pending=True) == 1
        assert count(users["faculty"]) == 0
        assert count(users["chair"]) == 0

        act(submitted_report["id"], users["faculty"], fund_type="Project Fund", project_id="SRIC-9")
        assert count(users["faculty"], pending=True) == 0
        assert count(users["faculty"], reviewed=True) == 1
        assert count(users["chair"]) == 1
        assert count(users["other_chair"]) == 0

        act(submitted_report["id"], users["chair"])
        assert count(users["chair"], processed=True) == 1
        assert count(users["dean"]) == 1
        assert count(users["director"]) == 0
        assert count(users["audit"]) == 0
        assert count(users["admin"]) == 1

    def test_unassigned_student_report_is_pending_for_all_faculty(
        self, act, client, users, auth_headers, report_payload
    ):
        headers = auth_headers(users["student"])
        report = client.post(f"{BASE}/", json=report_payload(), headers=headers).json()
        assert report["faculty_id"] is None
        assert client.patch(f"{BASE}/{report['id']}/submit", headers=headers).status_code == 200

        for faculty in (users["faculty"], users["other_faculty"]):
            response = client.get(f"{BASE}/", params={"pending": True}, headers=auth_headers(faculty))
            assert [row["id"] for row in response.json()["reports"]] == [report["id"]]

        response = act(report["id"], users["other_faculty"], fund_type="Institute Fund")
        assert response.status_code == 200
        assert response.json()["faculty_id"] == users["other_faculty"].id

        response = client.get(f"{BASE}/", params={"pending": True}, headers=auth_headers(users["faculty"]))
        assert response.json()["count"] == 0

    def test_unrelated_faculty_cannot_view(self, client, users, auth_headers, submitted_report):
        response = client.get(f"{BASE}/{submitted_report['id']}", headers=auth_headers(users["other_faculty"]))
        assert response.status_code == 403

    def test_reviewers_can_view(self, client, users, auth_headers, submitted_report):
        for key in ("faculty", "chair", "audit", "admin"):
            response = client.get(f"{BASE}/{submitted_report['id']}", headers=auth_headers(users[key]))
            assert response.status_code == 200

    def test_totals_heal_on_read(self, client, db, users, auth_headers, student_report):
        db.query(ExpenseReport).filter(ExpenseReport.id == student_report["id"]).update({"total_amount": 1.0})
        db.commit()

        response = client.get(f"{BASE}/{student_report['id']}", headers=auth_headers(users["student"]))

        assert response.json()["total_amount"] == 1000.0
        db.expire_all()
        assert db.get(ExpenseReport, student_report["id"]).total_amount == 1000.0
