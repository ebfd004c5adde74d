"""
Database Setup Script
Creates all tables and seeds the role directory and designated approvers
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.config.database import SessionLocal, init_db
from src.models.user import User, UserRole, Department
from src.services.approver_registry import SqlApproverRegistry
from src.utils.security import create_access_token

EMAIL_DOMAIN = "institute.edu"

# Schools that get a seeded faculty member and School Chair
SEEDED_SCHOOLS = [Department.SCS, Department.SCEE, Department.SMME, Department.SPS]


def create_tables():
    """Create all database tables"""
    print("Creating database tables...")
    init_db()
    print("✓ Database tables created successfully")


def _user(name: str, email: str, role: UserRole, department=None, student_id=None) -> User:
    return User(
        name=name,
        email=f"{email}@{EMAIL_DOMAIN}",
        role=role,
        department=department,
        student_id=student_id,
        is_active=True,
    )


def create_initial_users(db) -> dict:
    """
    Create one user per role plus a faculty member and a chair per seeded school

    Returns:
        dict: seeded users keyed by a short label
    """
    print("\nCreating initial users...")

    if db.query(User).first():
        print("✓ Users already exist, skipping...")
        return {}

    users = {
        "admin": _user("System Administrator", "admin", UserRole.ADMIN),
        "audit": _user("Internal Audit", "audit", UserRole.AUDIT),
        "finance": _user("Finance Office", "finance", UserRole.FINANCE),
        "dean_sric": _user("Dean SRIC", "dean.sric", UserRole.DEAN_SRIC, Department.SPS),
        "director": _user("Director", "director", UserRole.DIRECTOR, Department.SCEE),
        "student": _user("Sample Student", "student", UserRole.STUDENT, Department.SCS, "2024SCS001"),
    }
    for school in SEEDED_SCHOOLS:
        code = school.value.lower()
        users[f"faculty_{code}"] = _user(f"Faculty {school.value}", f"faculty.{code}", UserRole.FACULTY, school)
        users[f"chair_{code}"] = _user(f"Chair {school.value}", f"chair.{code}", UserRole.FACULTY, school)

    db.add_all(users.values())
    db.commit()
    print(f"✓ {len(users)} users created successfully")
    return users


def assign_designated_approvers(db, users: dict):
    """Register School Chairs and the institute Dean SRIC / Director"""
    print("\nRegistering designated approvers...")
    registry = SqlApproverRegistry(db)

    for school in SEEDED_SCHOOLS:
        chair = users[f"chair_{school.value.lower()}"]
        registry.assign_school_chair(school, chair.id)
        # Chairs act in the workflow under the School Chair role
        chair.role = UserRole.SCHOOL_CHAIR

    registry.assign_dean_sric(users["dean_sric"].id)
    registry.assign_director(users["director"].id)
    db.commit()
    print(f"✓ {len(SEEDED_SCHOOLS)} School Chairs, Dean SRIC and Director registered")


def print_setup_summary(users: dict):
    """Print setup summary and development tokens"""
    print("\n" + "=" * 70)
    print("✓ DATABASE SETUP COMPLETED SUCCESSFULLY!")
    print("=" * 70)

    if not users:
        return

    print("\n🔐 DEVELOPMENT BEARER TOKENS:")
    for label, user in users.items():
        token = create_access_token({"sub": str(user.id)})
        print(f"  {label:<14} {user.role.value:<13} {token}")

    print("\n🚀 NEXT STEPS:")
    print("  1. Start the application: uvicorn src.main:app --reload")
    print("  2. Access API Documentation: http://localhost:8000/api/docs")
    print("  3. Authorize with any token above")
    print("\n" + "=" * 70 + "\n")


def main():
    """Main setup function"""
    print("=" * 70)
    print("EXPENSE REPORT APPROVAL SYSTEM - DATABASE SETUP")
    print("=" * 70)

    db = SessionLocal()
    try:
        create_tables()
        users = create_initial_users(db)
        if users:
            assign_designated_approvers(db, users)
            for user in users.values():
                db.refresh(user)
        print_setup_summary(users)

    except Exception as e:
        db.rollback()
        print(f"\n✗ Database setup failed: {str(e)}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
