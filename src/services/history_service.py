"""
Approval History Service
Backfills history from legacy per-stage fields and projects it back per stage
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.models.approval import ApprovalHistoryEntry, ApprovalStage, LEGACY_STAGE_FIELDS
from src.utils.logger import setup_logger

logger = setup_logger()


def _parse_date(value) -> Optional[datetime]:
    """Legacy snapshots store dates as ISO strings; history uses naive UTC"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Ignoring unparseable legacy approval date: {value!r}")
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _pick(snapshot: Dict[str, Any], *keys):
    for key in keys:
        if key in snapshot and snapshot[key] is not None:
            return snapshot[key]
    return None


def legacy_entries(report) -> List[Dict[str, Any]]:
    """
    History entries synthesized from the legacy per-stage snapshot columns

    Snapshots without a date are skipped. Both the old camelCase keys and
    snake_case keys are understood.
    """
    entries = []
    for stage, column in LEGACY_STAGE_FIELDS.items():
        snapshot = getattr(report, column, None)
        if not snapshot:
            continue
        date = _parse_date(snapshot.get("date"))
        if date is None:
            continue
        entries.append({
            "stage": stage,
            "approved": bool(snapshot.get("approved")),
            "date": date,
            "remarks": snapshot.get("remarks"),
            "action": snapshot.get("action"),
            "approved_by": _pick(snapshot, "approved_by", "approvedBy"),
            "approved_by_id": _pick(snapshot, "approved_by_id", "approvedById"),
        })
    return entries


def _has_equivalent(history, stage: ApprovalStage, date: datetime) -> bool:
    return any(
        ApprovalStage(entry.stage) == stage and entry.date is not None and _parse_date(entry.date) == date
        for entry in history
    )


def migrate_legacy_history(report, entry_factory=ApprovalHistoryEntry) -> int:
    """
    Move legacy per-stage approvals into approval_history

    Safe to run on every workflow action: a legacy snapshot is only copied
    when no history entry with the same stage and timestamp exists.

    When anything is added the whole history is re-sorted by date and
    `position` is renumbered, so rows saved earlier may get a new position.
    Their relative order is kept.

    Returns:
        int: number of entries added
    """
    history = report.approval_history
    added = 0
    for data in legacy_entries(report):
        if _has_equivalent(history, data["stage"], data["date"]):
            continue
        history.append(entry_factory(**data))
        added += 1

    if added:
        history.sort(key=lambda entry: _parse_date(entry.date) or datetime.min)
        reorder = getattr(history, "reorder", None)
        if reorder is not None:
            reorder()
        logger.info(
            f"Migrated {added} legacy approval(s) into history for report "
            f"{getattr(report, 'report_number', '?')}"
        )
    return added


def latest_by_stage(history) -> Dict[str, Dict[str, Any]]:
    """Last written history entry per stage (read-only per-stage view)"""
    latest: Dict[str, Dict[str, Any]] = {}
    for entry in history:
        latest[ApprovalStage(entry.stage).value] = entry.to_dict()
    return latest
