"""Task hierarchy service: per-project task forests with sign-off locking.

Features:
- Idempotent bulk insert (duplicates reported, never overwritten)
- Match-based bulk updates by task id and by task_info substring
- Locking: completed/archived tasks are frozen except for being reopened,
  and every descendant of a locked task is frozen entirely
- Status cascades from a task to its whole subtree
- Whole-project wipe
"""

import asyncio
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from agentpad.domain.models import (
    UNLOCK_STATUSES,
    AddTasksResult,
    SetTasksStateResult,
    Task,
    TaskStateChange,
    TaskStatus,
    utc_now,
)
from agentpad.infrastructure.database import Database
from agentpad.infrastructure.logger import get_logger
from agentpad.services.tree_walk import DEFAULT_MAX_DEPTH, TaskForest

logger = get_logger(__name__)


class TaskHierarchyError(Exception):
    """Base exception for task hierarchy errors."""

    pass


class TaskValidationError(TaskHierarchyError):
    """Raised for malformed requests, before any state is mutated."""

    pass


class TaskHierarchyService:
    """Owns task records per project: creation, locking, bulk updates, cascades.

    Usage:
        service = TaskHierarchyService(db)

        await service.add_tasks("proj", [
            {"task_id": "epic", "task_info": "Ship v1"},
            {"task_id": "api", "task_info": "Build API", "parent_id": "epic"},
        ])
        result = await service.set_tasks_state(
            "proj", TaskStateChange(match_ids=["epic"], state=TaskStatus.COMPLETED)
        )
        # result.changed_ids == ["epic"], result.cascaded_ids == ["api"]

    Locking rules applied to each resolved target, in resolution order:
        ancestor locked          -> forbidden (even an unlock of the task itself)
        self locked + fields     -> forbidden
        self locked + state      -> allowed only for pending / in_progress
        otherwise                -> applied; a status change cascades to all
                                    descendants without re-checking their locks

    Writers within one project are serialized, so a task's lock check and
    its write cannot interleave with another writer in this process.
    """

    def __init__(self, database: Database, max_traversal_depth: int = DEFAULT_MAX_DEPTH) -> None:
        """Initialize task hierarchy service.

        Args:
            database: Record store
            max_traversal_depth: Bound on parent-chain and subtree walks
        """
        self.db = database
        self.max_traversal_depth = max_traversal_depth
        self._project_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, project_id: str) -> asyncio.Lock:
        lock = self._project_locks.get(project_id)
        if lock is None:
            lock = self._project_locks[project_id] = asyncio.Lock()
        return lock

    @staticmethod
    def _require_project(project_id: str) -> str:
        project_id = (project_id or "").strip()
        if not project_id:
            raise TaskValidationError("project_id_required")
        return project_id

    async def add_tasks(
        self, project_id: str, tasks: Iterable[Mapping[str, Any]]
    ) -> AddTasksResult:
        """Insert tasks whose task_id is new to the project.

        Args:
            project_id: Owning project
            tasks: Mappings with task_id, task_info and optional parent_id,
                status, extra_note

        Returns:
            AddTasksResult with added ids, already-existing ids and invalid
            entries (with the validation reason)
        """
        project_id = self._require_project(project_id)
        result = AddTasksResult()

        async with self._lock_for(project_id):
            for entry in tasks:
                try:
                    fields = {k: entry[k] for k in Task.model_fields if k in entry}
                    fields["project_id"] = project_id
                    task = Task(**fields)
                except (ValidationError, TypeError) as e:
                    result.invalid.append({"task": dict(entry), "reason": _first_error(e)})
                    continue

                if await self.db.insert_task(task):
                    result.added.append(task.task_id)
                else:
                    result.exists.append(task.task_id)

        logger.info(
            "tasks_added",
            project_id=project_id,
            added=len(result.added),
            exists=len(result.exists),
            invalid=len(result.invalid),
        )
        return result

    async def set_tasks_state(
        self, project_id: str, change: TaskStateChange | Mapping[str, Any]
    ) -> SetTasksStateResult:
        """Apply a status and/or field change to every matched task.

        Targets are resolved independently by id and by case-insensitive
        ``task_info`` substring; ids and terms that match nothing are
        reported in ``not_matched``, lock violations in ``forbidden``.

        Raises:
            TaskValidationError: If the request is malformed (no matchers,
                nothing to change, or an unknown state)
        """
        project_id = self._require_project(project_id)
        if not isinstance(change, TaskStateChange):
            try:
                change = TaskStateChange.model_validate(dict(change))
            except ValidationError as e:
                raise TaskValidationError(_first_error(e)) from e

        fields = change.requested_fields()
        if not change.match_ids and not change.match_text:
            raise TaskValidationError("match_ids or match_text required")
        if not change.has_state and not fields:
            raise TaskValidationError("state or at least one field to update is required")
        if "task_info" in fields and not (fields["task_info"] or "").strip():
            raise TaskValidationError("task_info must not be empty")
        if "task_info" in fields:
            fields["task_info"] = fields["task_info"].strip()
        if "parent_id" in fields:
            fields["parent_id"] = (fields["parent_id"] or "").strip() or None

        result = SetTasksStateResult()

        async with self._lock_for(project_id):
            forest = TaskForest(await self.db.list_tasks(project_id), self.max_traversal_depth)
            targets = self._resolve_targets(forest, change, result)
            cascaded: set[str] = set()

            for task_id in targets:
                task = forest.get(task_id)
                if task is None:
                    continue

                locked_by = forest.locked_ancestor(task_id)
                if locked_by is not None:
                    logger.info(
                        "task_update_forbidden",
                        project_id=project_id,
                        task_id=task_id,
                        reason="ancestor_locked",
                        ancestor=locked_by.task_id,
                    )
                    result.forbidden.append(task_id)
                    continue

                if task.is_locked and fields:
                    result.forbidden.append(task_id)
                    continue

                if task.is_locked and change.state is not None and change.state not in UNLOCK_STATUSES:
                    result.forbidden.append(task_id)
                    continue

                now = utc_now()
                update: dict[str, Any] = dict(fields)
                update["updated_at"] = now
                if change.state is not None:
                    update["status"] = change.state
                updated = task.model_copy(update=update)
                forest.tasks[task_id] = updated
                if "parent_id" in fields:
                    forest.reparent(task_id, task.parent_id, updated.parent_id)
                await self.db.update_task(updated)
                result.changed_ids.append(task_id)

                if change.state is not None:
                    descendants = forest.descendants(task_id)
                    for child_id in descendants:
                        forest.tasks[child_id] = forest.tasks[child_id].model_copy(
                            update={"status": change.state, "updated_at": now}
                        )
                    await self.db.update_task_statuses(project_id, descendants, change.state, now)
                    for child_id in descendants:
                        if child_id not in cascaded:
                            cascaded.add(child_id)
                            result.cascaded_ids.append(child_id)

        logger.info(
            "tasks_state_updated",
            project_id=project_id,
            state=change.state.value if change.state else None,
            changed=len(result.changed_ids),
            cascaded=len(result.cascaded_ids),
            forbidden=len(result.forbidden),
            not_matched=len(result.not_matched),
        )
        return result

    def _resolve_targets(
        self, forest: TaskForest, change: TaskStateChange, result: SetTasksStateResult
    ) -> list[str]:
        """Resolve ids first, then text terms; union in order, deduplicated."""
        targets: list[str] = []
        seen: set[str] = set()

        for task_id in change.match_ids:
            if task_id not in forest:
                result.not_matched.append(task_id)
                continue
            if task_id not in seen:
                seen.add(task_id)
                targets.append(task_id)

        for term in change.match_text:
            needle = term.lower()
            hits = [t.task_id for t in forest.tasks.values() if needle in t.task_info.lower()]
            if not hits:
                result.not_matched.append(term)
                continue
            for task_id in hits:
                if task_id not in seen:
                    seen.add(task_id)
                    targets.append(task_id)

        return targets

    async def mark_complete(
        self,
        project_id: str,
        match_ids: list[str] | None = None,
        match_text: list[str] | None = None,
    ) -> SetTasksStateResult:
        """Shorthand for setting matched tasks to completed."""
        return await self.set_tasks_state(
            project_id,
            TaskStateChange(
                match_ids=match_ids or [],
                match_text=match_text or [],
                state=TaskStatus.COMPLETED,
            ),
        )

    async def list_tasks(
        self, project_id: str, only: Iterable[str | TaskStatus] | None = None
    ) -> list[Task]:
        """List a project's tasks, optionally filtered by status.

        Raises:
            TaskValidationError: If a status filter value is unknown
        """
        project_id = self._require_project(project_id)
        statuses = None
        if only is not None:
            try:
                statuses = [TaskStatus(str(s).strip().lower()) for s in only]
            except ValueError as e:
                raise TaskValidationError(f"invalid status filter: {e}") from e
        return await self.db.list_tasks(project_id, statuses)

    async def delete_all_tasks(self, project_id: str) -> int:
        """Irreversibly remove every task of the project.

        Returns:
            Number of tasks removed
        """
        project_id = self._require_project(project_id)
        async with self._lock_for(project_id):
            deleted = await self.db.delete_project_tasks(project_id)
        logger.warning("project_tasks_deleted", project_id=project_id, count=deleted)
        return deleted


def _first_error(error: Exception) -> str:
    """Short human-readable reason from a pydantic ValidationError."""
    if isinstance(error, ValidationError):
        details = error.errors()
        if details:
            first = details[0]
            loc = ".".join(str(part) for part in first.get("loc", ()))
            return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
    return str(error)
