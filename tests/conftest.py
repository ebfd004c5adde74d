"""
Shared test fixtures: SQLite database, seeded role directory and API client
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from datetime import date
from fastapi.testclient import TestClient

from src.main import app
from src.config.database import Base, SessionLocal, engine, get_db
from src.models.school_admin import SchoolAdmin, INSTITUTE_KEY
from src.models.user import User, UserRole, Department
from src.utils.security import create_access_token


def override_get_db():
    """Override database dependency for testing"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(scope="function")
def db():
    """Fresh tables and a session for direct assertions"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    """API client bound to the fresh test database"""
    return TestClient(app)


def _make_user(db, name, email, role, department=None, student_id=None):
    user = User(
        name=name,
        email=email,
        role=role,
        department=department,
        student_id=student_id,
        is_active=True,
    )
    db.add(user)
    return user


@pytest.fixture
def users(db):
    """
    One user per workflow role

    SCS has a registered School Chair; the institute row holds the
    Dean SRIC and the Director.
    """
    people = {
        "student": _make_user(db, "Asha Student", "asha@test.edu", UserRole.STUDENT, Department.SCS, "2024SCS001"),
        "faculty": _make_user(db, "Ravi Faculty", "ravi@test.edu", UserRole.FACULTY, Department.SCS),
        "other_faculty": _make_user(db, "Meena Faculty", "meena@test.edu", UserRole.FACULTY, Department.SCEE),
        "chair": _make_user(db, "Kiran Chair", "kiran@test.edu", UserRole.SCHOOL_CHAIR, Department.SCS),
        "other_chair": _make_user(db, "Dev Chair", "dev@test.edu", UserRole.SCHOOL_CHAIR, Department.SCEE),
        "dean": _make_user(db, "Lata Dean", "lata@test.edu", UserRole.DEAN_SRIC, Department.SPS),
        "director": _make_user(db, "Omar Director", "omar@test.edu", UserRole.DIRECTOR, Department.SCEE),
        "audit": _make_user(db, "Audit Office", "audit@test.edu", UserRole.AUDIT),
        "finance": _make_user(db, "Finance Office", "finance@test.edu", UserRole.FINANCE),
        "admin": _make_user(db, "Admin", "admin@test.edu", UserRole.ADMIN),
    }
    db.flush()

    db.add(SchoolAdmin(
        school=Department.SCS.value,
        school_chair_id=people["chair"].id,
        school_chair_name=people["chair"].name,
    ))
    db.add(SchoolAdmin(
        school=INSTITUTE_KEY,
        dean_sric_id=people["dean"].id,
        dean_sric_name=people["dean"].name,
        director_id=people["director"].id,
        director_name=people["director"].name,
    ))
    db.commit()
    for user in people.values():
        db.refresh(user)
    return people


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user"""
    def _headers(user):
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def item_payload():
    """A receipt-backed personal funds line item"""
    def _item(amount=1000.0, payment_method="Personal Funds (Reimbursement)", **overrides):
        item = {
            "expense_date": date(2025, 1, 10).isoformat(),
            "category": "Travel - Train",
            "description": "Train to conference",
            "amount": amount,
            "payment_method": payment_method,
            "receipt_image": "receipts/train.jpg",
        }
        item.update(overrides)
        return item
    return _item


@pytest.fixture
def report_payload(item_payload):
    """Draft report body with one item"""
    def _report(**overrides):
        body = {
            "expense_period_start": date(2025, 1, 9).isoformat(),
            "expense_period_end": date(2025, 1, 12).isoformat(),
            "purpose_of_expense": "Paper presentation",
            "report_type": "Research-related",
            "funding_source": "Research Grant",
            "items": [item_payload()],
        }
        body.update(overrides)
        return body
    return _report
