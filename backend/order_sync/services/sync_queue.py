"""
Pending Sync Queue
Append-only log of modifications made while offline.

The queue doubles as the permanent modification audit trail: entries are
never removed, and marking an entry synced is the only mutation allowed.
"""

import json
import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from order_sync.schemas.order import utcnow
from order_sync.schemas.sync import PendingSyncTask, SyncFailure
from order_sync.services.storage import JsonDocument, KeyValueStore, corrupt_key

logger = logging.getLogger(__name__)

PENDING_SYNC_KEY = "pending_order_changes_sync"
SYNC_FAILURES_KEY = "pending_order_changes_sync.failures"


class PendingSyncQueue:
    """Durable queue of PendingSyncTask entries."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._doc = JsonDocument(store, PENDING_SYNC_KEY, list, list)
        self._failures = JsonDocument(store, SYNC_FAILURES_KEY, dict, dict)

    # ==================== PERSISTENCE ====================

    def _load(self) -> List[PendingSyncTask]:
        tasks: List[PendingSyncTask] = []
        malformed = []
        for entry in self._doc.load():
            try:
                tasks.append(PendingSyncTask.model_validate(entry))
            except PydanticValidationError as e:
                logger.error(f"Dropping malformed entry from {PENDING_SYNC_KEY}: {e}")
                malformed.append(entry)

        if malformed:
            self._quarantine(malformed)
            self._save(tasks)
        return tasks

    def _quarantine(self, entries: list) -> None:
        key = corrupt_key(PENDING_SYNC_KEY)
        try:
            existing = json.loads(self._store.get_item(key) or "[]")
            if not isinstance(existing, list):
                existing = [existing]
        except ValueError:
            existing = []
        self._store.set_item(key, json.dumps(existing + entries))

    def _save(self, tasks: List[PendingSyncTask]) -> None:
        self._doc.save([t.model_dump(mode="json") for t in tasks])

    # ==================== OPERATIONS ====================

    def enqueue(self, task: PendingSyncTask) -> PendingSyncTask:
        tasks = self._load()
        if any(t.task_id == task.task_id for t in tasks):
            logger.warning(f"Task {task.task_id} already queued, ignoring duplicate enqueue")
            return task
        tasks.append(task)
        self._save(tasks)
        logger.info(
            f"Queued {len(task.changes)} changes for order {task.order_number or task.order_id} "
            f"(task {task.task_id})"
        )
        return task

    def list_all(self) -> List[PendingSyncTask]:
        return self._load()

    def list_unsynced(self) -> List[PendingSyncTask]:
        """Unsynced tasks by enqueue time; ties keep append order (sort is stable)."""
        unsynced = [t for t in self._load() if not t.synced]
        return sorted(unsynced, key=lambda t: t.enqueued_at)

    def unsynced_count(self) -> int:
        return sum(1 for t in self._load() if not t.synced)

    def get(self, task_id: str) -> Optional[PendingSyncTask]:
        return next((t for t in self._load() if t.task_id == task_id), None)

    def mark_synced(self, task_id: str, synced_at: Optional[datetime] = None) -> bool:
        """Flag a task synced. Write-once: returns False if unknown or already synced."""
        tasks = self._load()
        for i, task in enumerate(tasks):
            if task.task_id != task_id:
                continue
            if task.synced:
                return False
            tasks[i] = task.model_copy(update={
                "synced": True,
                "synced_at": synced_at or utcnow(),
            })
            self._save(tasks)
            return True
        logger.warning(f"mark_synced: task {task_id} not found")
        return False

    # ==================== FAILURE BOOKKEEPING ====================
    # Kept beside the log, not in it: entries themselves only ever change
    # through mark_synced.

    def record_failure(self, task_id: str, error: str) -> SyncFailure:
        failures = self._failures.load()
        previous = failures.get(task_id) or {}
        failure = SyncFailure(
            task_id=task_id,
            attempts=int(previous.get("attempts", 0)) + 1,
            last_error=error,
            last_attempt_at=utcnow(),
        )
        failures[task_id] = failure.model_dump(mode="json")
        self._failures.save(failures)
        return failure

    def failures(self) -> Dict[str, SyncFailure]:
        """Failure info for tasks that are still unsynced."""
        unsynced = {t.task_id for t in self._load() if not t.synced}
        result = {}
        for task_id, raw in self._failures.load().items():
            if task_id not in unsynced:
                continue
            try:
                result[task_id] = SyncFailure.model_validate(raw)
            except PydanticValidationError:
                logger.error(f"Ignoring malformed failure record for task {task_id}")
        return result
