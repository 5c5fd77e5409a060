"""Unit tests for cycle-safe task tree traversal."""

from agentpad.domain.models import Task, TaskStatus
from agentpad.services.tree_walk import TaskForest


def _task(task_id: str, parent_id: str | None = None, status: TaskStatus = TaskStatus.PENDING) -> Task:
    return Task(project_id="p1", task_id=task_id, task_info=task_id, parent_id=parent_id, status=status)


class TestAncestors:
    """Tests for ancestor walks."""

    def test_nearest_first(self) -> None:
        forest = TaskForest([_task("root"), _task("mid", "root"), _task("leaf", "mid")])

        assert [t.task_id for t in forest.ancestors("leaf")] == ["mid", "root"]

    def test_missing_parent_ends_walk(self) -> None:
        forest = TaskForest([_task("orphan", "elsewhere")])

        assert list(forest.ancestors("orphan")) == []

    def test_cycle_terminates(self) -> None:
        forest = TaskForest([_task("a", "b"), _task("b", "a")])

        assert [t.task_id for t in forest.ancestors("a")] == ["b"]

    def test_self_parent_terminates(self) -> None:
        forest = TaskForest([_task("a", "a")])

        assert list(forest.ancestors("a")) == []

    def test_depth_bound(self) -> None:
        tasks = [_task("t0")] + [_task(f"t{i}", f"t{i - 1}") for i in range(1, 20)]
        forest = TaskForest(tasks, max_depth=5)

        assert len(list(forest.ancestors("t19"))) == 5

    def test_locked_ancestor(self) -> None:
        forest = TaskForest(
            [
                _task("root", status=TaskStatus.ARCHIVED),
                _task("mid", "root"),
                _task("leaf", "mid"),
            ]
        )

        locked = forest.locked_ancestor("leaf")
        assert locked is not None
        assert locked.task_id == "root"
        assert forest.locked_ancestor("root") is None


class TestDescendants:
    """Tests for breadth-first descendant walks."""

    def test_breadth_first_order(self) -> None:
        forest = TaskForest(
            [
                _task("root"),
                _task("a", "root"),
                _task("b", "root"),
                _task("a1", "a"),
                _task("b1", "b"),
            ]
        )

        assert forest.descendants("root") == ["a", "b", "a1", "b1"]

    def test_cycle_visits_each_node_once(self) -> None:
        forest = TaskForest([_task("a", "c"), _task("b", "a"), _task("c", "b")])

        assert forest.descendants("a") == ["b", "c"]

    def test_depth_bound(self) -> None:
        tasks = [_task("t0")] + [_task(f"t{i}", f"t{i - 1}") for i in range(1, 20)]
        forest = TaskForest(tasks, max_depth=3)

        assert forest.descendants("t0") == ["t1", "t2", "t3"]

    def test_reparent_moves_subtree(self) -> None:
        forest = TaskForest([_task("x"), _task("y"), _task("child", "x")])

        forest.reparent("child", "x", "y")

        assert forest.descendants("x") == []
        assert forest.descendants("y") == ["child"]
