"""Scratchpad store: small per-project task buffers with shared memory."""

import asyncio
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from agentpad.domain.models import (
    Scratchpad,
    ScratchpadInitResult,
    ScratchpadTask,
    ScratchpadUpdateResult,
    utc_now,
)
from agentpad.infrastructure.database import Database
from agentpad.infrastructure.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_TASKS = 6
DEFAULT_ID_ATTEMPTS = 1000
MERGEABLE_FIELDS = ("status", "task_info", "scratchpad", "comments")


class ScratchpadError(Exception):
    """Base exception for scratchpad errors."""

    pass


class ScratchpadValidationError(ScratchpadError):
    """Raised for malformed requests, before any state is mutated."""

    pass


class ScratchpadNotFoundError(ScratchpadError):
    """Raised when a scratchpad id doesn't exist in the project."""

    pass


class ScratchpadExistsError(ScratchpadError):
    """Raised when a caller-supplied scratchpad id is already taken."""

    pass


class ScratchpadIdExhaustedError(ScratchpadError):
    """Raised when no free scratchpad id was found within the retry bound."""

    pass


def merge_text(prior: str, addition: str) -> str:
    """Append text on a new line, stripping the combined result."""
    separator = "\n" if prior and not prior.endswith("\n") else ""
    return (prior + separator + addition).strip()


class ScratchpadService:
    """Owns scratchpads: creation, entry updates, memory appends.

    A scratchpad holds at most ``max_tasks`` entries. Extra candidates at
    creation are dropped silently; candidates that fail validation or repeat
    an earlier task_id are dropped and reported. ``common_memory`` only
    ever grows.

    Read-modify-write operations on the same scratchpad are serialized, so a
    subagent writing its output and a human editing the same scratchpad
    each see the other's last committed state (last write wins per entry).
    """

    def __init__(
        self,
        database: Database,
        max_tasks: int = DEFAULT_MAX_TASKS,
        id_generation_attempts: int = DEFAULT_ID_ATTEMPTS,
    ) -> None:
        self.db = database
        self.max_tasks = max_tasks
        self.id_generation_attempts = id_generation_attempts
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, project_id: str, scratchpad_id: str) -> asyncio.Lock:
        key = (project_id, scratchpad_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    @staticmethod
    def _require(value: str | None, code: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ScratchpadValidationError(code)
        return value

    def generate_id(self) -> str:
        return f"sp-{uuid.uuid4().hex[:8]}"

    async def init_scratchpad(
        self,
        project_id: str,
        tasks: Iterable[Mapping[str, Any]],
        scratchpad_id: str | None = None,
    ) -> ScratchpadInitResult:
        """Create a scratchpad from up to ``max_tasks`` candidate entries.

        Args:
            project_id: Owning project
            tasks: Candidate entries (task_id, task_info, optional status,
                scratchpad, comments)
            scratchpad_id: Optional caller-chosen id

        Returns:
            The new scratchpad and the invalid candidates that were dropped

        Raises:
            ScratchpadExistsError: If scratchpad_id is already taken
            ScratchpadIdExhaustedError: If id generation ran out of attempts
        """
        project_id = self._require(project_id, "project_id_required")

        valid: list[ScratchpadTask] = []
        invalid: list[dict[str, Any]] = []
        seen: set[str] = set()
        for entry in list(tasks)[: self.max_tasks]:
            try:
                fields = {k: entry[k] for k in ScratchpadTask.model_fields if k in entry}
                task = ScratchpadTask(**fields)
            except (ValidationError, TypeError) as e:
                invalid.append({"task": dict(entry), "reason": _reason(e)})
                continue
            # first occurrence wins
            if task.task_id in seen:
                invalid.append({"task": dict(entry), "reason": "duplicate task_id"})
                continue
            seen.add(task.task_id)
            valid.append(task)

        now = utc_now()
        if scratchpad_id is not None and scratchpad_id.strip():
            scratchpad = Scratchpad(
                project_id=project_id,
                scratchpad_id=scratchpad_id.strip(),
                tasks=valid,
                created_at=now,
                updated_at=now,
            )
            if not await self.db.insert_scratchpad(scratchpad):
                raise ScratchpadExistsError(f"scratchpad_exists:{scratchpad.scratchpad_id}")
        else:
            for _ in range(self.id_generation_attempts):
                candidate = self.generate_id()
                if await self.db.scratchpad_exists(project_id, candidate):
                    continue
                scratchpad = Scratchpad(
                    project_id=project_id,
                    scratchpad_id=candidate,
                    tasks=valid,
                    created_at=now,
                    updated_at=now,
                )
                if await self.db.insert_scratchpad(scratchpad):
                    break
            else:
                raise ScratchpadIdExhaustedError(
                    f"could not allocate a scratchpad id after {self.id_generation_attempts} attempts"
                )

        logger.info(
            "scratchpad_initialized",
            project_id=project_id,
            scratchpad_id=scratchpad.scratchpad_id,
            tasks=len(valid),
            invalid=len(invalid),
        )
        return ScratchpadInitResult(scratchpad=scratchpad, invalid=invalid)

    async def get_scratchpad(self, project_id: str, scratchpad_id: str) -> Scratchpad:
        """Load a scratchpad.

        Raises:
            ScratchpadNotFoundError: If it doesn't exist in the project
        """
        project_id = self._require(project_id, "project_id_required")
        scratchpad_id = self._require(scratchpad_id, "scratchpad_id_required")
        scratchpad = await self.db.get_scratchpad(project_id, scratchpad_id)
        if scratchpad is None:
            raise ScratchpadNotFoundError("scratchpad_not_found")
        return scratchpad

    async def update_scratchpad_tasks(
        self,
        project_id: str,
        scratchpad_id: str,
        updates: Iterable[Mapping[str, Any]],
    ) -> ScratchpadUpdateResult:
        """Merge present fields of each update into the entry with its task_id.

        Only status, task_info, scratchpad and comments are merged; any
        project_id on an update is ignored. Unknown task_ids are reported
        in ``not_found``.
        """
        updates = list(updates)
        for update in updates:
            if not str(update.get("task_id") or "").strip():
                raise ScratchpadValidationError("task_id is required on every update")

        async with self._lock_for(project_id, scratchpad_id):
            scratchpad = await self.get_scratchpad(project_id, scratchpad_id)
            result = ScratchpadUpdateResult(scratchpad=scratchpad)

            for update in updates:
                task_id = str(update["task_id"]).strip()
                index = next(
                    (i for i, t in enumerate(scratchpad.tasks) if t.task_id == task_id), None
                )
                if index is None:
                    result.not_found.append(task_id)
                    continue
                current = scratchpad.tasks[index]
                merged = current.model_dump()
                merged.update({k: update[k] for k in MERGEABLE_FIELDS if k in update})
                try:
                    scratchpad.tasks[index] = ScratchpadTask(**merged)
                except ValidationError as e:
                    raise ScratchpadValidationError(f"{task_id}: {_reason(e)}") from e
                result.updated.append(task_id)

            if result.updated:
                scratchpad.updated_at = utc_now()
                await self.db.update_scratchpad(scratchpad)

        logger.info(
            "scratchpad_tasks_updated",
            project_id=project_id,
            scratchpad_id=scratchpad_id,
            updated=len(result.updated),
            not_found=len(result.not_found),
        )
        return result

    async def append_common_memory(
        self,
        project_id: str,
        scratchpad_id: str,
        text: str | Iterable[str] | None,
    ) -> Scratchpad:
        """Append one or more lines to the scratchpad's common memory.

        Blank input is a no-op that returns the current scratchpad.
        """
        if text is None:
            items: list[str] = []
        elif isinstance(text, str):
            items = [text]
        else:
            items = [str(item) for item in text if item is not None]
        lines = [item.strip() for item in items if item.strip()]

        async with self._lock_for(project_id, scratchpad_id):
            scratchpad = await self.get_scratchpad(project_id, scratchpad_id)
            if not lines:
                return scratchpad

            addition = "\n".join(lines)
            existing = scratchpad.common_memory
            if existing and not existing.endswith("\n"):
                existing += "\n"
            scratchpad.common_memory = existing + addition
            scratchpad.updated_at = utc_now()
            await self.db.update_scratchpad(scratchpad)

        logger.info(
            "scratchpad_memory_appended",
            project_id=project_id,
            scratchpad_id=scratchpad_id,
            lines=len(lines),
        )
        return scratchpad

    async def append_task_output(
        self,
        project_id: str,
        scratchpad_id: str,
        task_id: str,
        scratchpad_text: str,
        comments_text: str,
    ) -> Scratchpad:
        """Append run output to an entry's scratchpad and comments fields.

        The entry is re-read under the scratchpad lock so edits made while
        a run was in flight are kept.

        Raises:
            ScratchpadNotFoundError: If the scratchpad or entry is gone
        """
        async with self._lock_for(project_id, scratchpad_id):
            scratchpad = await self.get_scratchpad(project_id, scratchpad_id)
            entry = scratchpad.find_task(task_id)
            if entry is None:
                raise ScratchpadNotFoundError("task_not_found_in_scratchpad")
            entry.scratchpad = merge_text(entry.scratchpad, scratchpad_text)
            if comments_text:
                entry.comments = merge_text(entry.comments, comments_text)
            scratchpad.updated_at = utc_now()
            await self.db.update_scratchpad(scratchpad)
        return scratchpad


def _reason(error: Exception) -> str:
    if isinstance(error, ValidationError):
        details = error.errors()
        if details:
            loc = ".".join(str(part) for part in details[0].get("loc", ()))
            msg = details[0].get("msg")
            return f"{loc}: {msg}" if loc else str(msg)
    return str(error)
