"""
Database Migration - Backfill Approval History
Copies legacy per-stage approval snapshots into approval_history
Run this once after upgrading; running it again adds nothing
"""

from src.config.database import SessionLocal, init_db
from src.models.approval import ApprovalHistoryEntry
from src.models.expense_report import ExpenseReport
from src.services.history_service import migrate_legacy_history


def run_migration() -> int:
    """
    Run database migration

    Returns:
        int: number of history entries added
    """
    init_db()
    db = SessionLocal()

    print("🔧 Starting approval history backfill...")

    added = 0
    migrated_reports = 0

    try:
        reports = db.query(ExpenseReport).order_by(ExpenseReport.id).all()
        for report in reports:
            count = migrate_legacy_history(report, ApprovalHistoryEntry)
            if count:
                added += count
                migrated_reports += 1
                print(f"  → {report.report_number}: {count} entr{'y' if count == 1 else 'ies'}")

        db.commit()
        print(f"✅ Migration completed: {added} entries added to {migrated_reports} reports")
        return added

    except Exception as e:
        db.rollback()
        print(f"❌ Migration failed: {e}")
        raise

    finally:
        db.close()


if __name__ == "__main__":
    run_migration()
