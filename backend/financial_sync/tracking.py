"""
Pending Sync Tracking

Stores the plan produced by a full review so a later run can apply just the
pending writes (``use_pending_only``) without re-reading either store.

Storage: one JSON file per organization/window under SYNC_TRACKING_DIR.
"""

import json
import logging
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from financial_sync.models import ReconciliationPlan

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def tracking_key(organization_id: str, start_date: date, end_date: date) -> str:
    raw = f"sync_tracking_{organization_id}_{start_date.isoformat()}_{end_date.isoformat()}"
    return _UNSAFE_CHARS.sub("_", raw)


class SyncTrackingStore:
    """File-based storage for pending reconciliation plans"""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, organization_id: str, start_date: date, end_date: date) -> Path:
        return self.directory / f"{tracking_key(organization_id, start_date, end_date)}.json"

    def store(self, organization_id: str, start_date: date, end_date: date, plan: ReconciliationPlan):
        """Save the pending part of ``plan`` for the window"""
        self.directory.mkdir(parents=True, exist_ok=True)
        data = {
            "organization_id": organization_id,
            "date_range": {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            "last_review": datetime.now(timezone.utc).isoformat(),
            "plan": plan.to_dict(),
        }
        path = self._path(organization_id, start_date, end_date)
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        logger.info(
            f"Stored sync tracking for {len(plan.to_create)} creates, "
            f"{len(plan.to_update)} updates, {len(plan.to_delete)} deletes"
        )

    def _load(self, organization_id: str, start_date: date, end_date: date) -> Optional[Dict[str, Any]]:
        path = self._path(organization_id, start_date, end_date)
        if not path.exists():
            return None
        try:
            with open(path, "r") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading sync tracking {path.name}: {e}")
            return None

    def get(self, organization_id: str, start_date: date, end_date: date) -> Optional[ReconciliationPlan]:
        """Stored plan for the window, or None"""
        data = self._load(organization_id, start_date, end_date)
        if data is None:
            return None
        return ReconciliationPlan.from_dict(data.get("plan") or {})

    def clear(self, organization_id: str, start_date: date, end_date: date):
        path = self._path(organization_id, start_date, end_date)
        path.unlink(missing_ok=True)
        logger.info(f"Cleared sync tracking for {organization_id} {start_date.isoformat()} to {end_date.isoformat()}")

    def has_pending(self, organization_id: str, start_date: date, end_date: date) -> bool:
        plan = self.get(organization_id, start_date, end_date)
        return plan is not None and plan.has_pending_writes

    def pending_summary(self, organization_id: str, start_date: date, end_date: date) -> Dict[str, Any]:
        data = self._load(organization_id, start_date, end_date)
        if data is None:
            return {
                "has_pending": False,
                "to_create": 0,
                "to_update": 0,
                "to_delete": 0,
                "last_review": None,
            }

        plan = data.get("plan") or {}
        to_create = len(plan.get("to_create", []))
        to_update = len(plan.get("to_update", []))
        to_delete = len(plan.get("to_delete", []))
        return {
            "has_pending": bool(to_create or to_update or to_delete),
            "to_create": to_create,
            "to_update": to_update,
            "to_delete": to_delete,
            "last_review": data.get("last_review"),
        }
