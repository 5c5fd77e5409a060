"""Cycle-safe traversal over a project's task forest.

Tasks reference their parent by ``task_id`` only, and nothing stops a
client from writing a ``parent_id`` cycle. Every walk here carries a
visited set and a depth bound instead of assuming a DAG.
"""

from collections import deque
from collections.abc import Iterable, Iterator

from agentpad.domain.models import Task
from agentpad.infrastructure.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_DEPTH = 1000


class TaskForest:
    """In-memory adjacency view of one project's tasks.

    The project is the arena boundary: parents outside the given task set
    are treated as absent, so no edge ever crosses projects.
    """

    def __init__(self, tasks: Iterable[Task], max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        self.max_depth = max_depth
        self.tasks: dict[str, Task] = {}
        self._children: dict[str, list[str]] = {}
        for task in tasks:
            self.tasks[task.task_id] = task
        for task in self.tasks.values():
            if task.parent_id is not None:
                self._children.setdefault(task.parent_id, []).append(task.task_id)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.tasks

    def get(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    def children(self, task_id: str) -> list[str]:
        return list(self._children.get(task_id, ()))

    def ancestors(self, task_id: str) -> Iterator[Task]:
        """Yield transitive parents, nearest first.

        Stops at a missing parent, a repeated node, or ``max_depth`` hops.
        """
        seen = {task_id}
        current = self.tasks.get(task_id)
        depth = 0
        while current is not None and current.parent_id is not None:
            parent_id = current.parent_id
            if parent_id in seen:
                logger.warning("task_parent_cycle_detected", task_id=task_id, at=parent_id)
                return
            depth += 1
            if depth > self.max_depth:
                logger.warning("task_ancestry_depth_exceeded", task_id=task_id, depth=depth)
                return
            seen.add(parent_id)
            parent = self.tasks.get(parent_id)
            if parent is None:
                return
            yield parent
            current = parent

    def locked_ancestor(self, task_id: str) -> Task | None:
        """First locked transitive parent, if any."""
        for ancestor in self.ancestors(task_id):
            if ancestor.is_locked:
                return ancestor
        return None

    def descendants(self, task_id: str) -> list[str]:
        """All transitive descendants in breadth-first order (root excluded)."""
        seen = {task_id}
        order: list[str] = []
        queue: deque[tuple[str, int]] = deque([(task_id, 0)])
        while queue:
            node, depth = queue.popleft()
            if depth >= self.max_depth:
                logger.warning("task_descendant_depth_exceeded", task_id=task_id, depth=depth)
                continue
            for child in self._children.get(node, ()):
                if child in seen:
                    continue
                seen.add(child)
                order.append(child)
                queue.append((child, depth + 1))
        return order

    def reparent(self, task_id: str, old_parent: str | None, new_parent: str | None) -> None:
        """Keep the child index in step with a parent_id change."""
        if old_parent == new_parent:
            return
        if old_parent is not None:
            siblings = self._children.get(old_parent)
            if siblings and task_id in siblings:
                siblings.remove(task_id)
        if new_parent is not None:
            self._children.setdefault(new_parent, []).append(task_id)
