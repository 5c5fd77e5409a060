"""MCP server exposing agentpad task, scratchpad and subagent tools."""

import argparse
import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from agentpad.application.providers.registry import ProviderRegistry
from agentpad.application.subagent_orchestrator import SubagentOrchestrator
from agentpad.domain.models import Scratchpad, Task
from agentpad.infrastructure.config import Config, ConfigManager
from agentpad.infrastructure.database import Database
from agentpad.infrastructure.logger import get_logger, setup_logging
from agentpad.services.scratchpad_service import (
    ScratchpadExistsError,
    ScratchpadIdExhaustedError,
    ScratchpadNotFoundError,
    ScratchpadService,
    ScratchpadValidationError,
)
from agentpad.services.task_hierarchy_service import TaskHierarchyService, TaskValidationError

logger = get_logger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]

_PROJECT = {"type": "string", "description": "Project the data belongs to"}
_SCRATCHPAD = {"type": "string", "description": "Scratchpad id (sp-xxxxxxxx)"}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_TASK_STATES = ["pending", "in_progress", "completed", "archived"]


def _tool_definitions() -> list[Tool]:
    return [
        Tool(
            name="task_add",
            description="Add tasks to a project's task tree; existing task ids are reported, never overwritten",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": _PROJECT,
                    "tasks": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "task_id": {"type": "string"},
                                "task_info": {"type": "string"},
                                "parent_id": {"type": "string"},
                                "status": {"type": "string", "enum": _TASK_STATES},
                                "extra_note": {"type": "string"},
                            },
                            "required": ["task_id", "task_info"],
                        },
                    },
                },
                "required": ["project_id", "tasks"],
            },
        ),
        Tool(
            name="task_set_state",
            description=(
                "Change status and/or fields of tasks matched by id or text. "
                "Completed/archived tasks only accept pending or in_progress; "
                "a state change cascades to all descendants"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": _PROJECT,
                    "match_ids": {**_STRING_LIST, "description": "Exact task ids"},
                    "match_text": {
                        **_STRING_LIST,
                        "description": "Case-insensitive substrings of task_info",
                    },
                    "state": {"type": "string", "enum": _TASK_STATES},
                    "task_info": {"type": "string"},
                    "parent_id": {"type": ["string", "null"]},
                    "extra_note": {"type": ["string", "null"]},
                },
                "required": ["project_id"],
            },
        ),
        Tool(
            name="task_mark_complete",
            description="Mark matched tasks (and their descendants) completed",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": _PROJECT,
                    "match_ids": _STRING_LIST,
                    "match_text": _STRING_LIST,
                },
                "required": ["project_id"],
            },
        ),
        Tool(
            name="task_list",
            description="List a project's tasks, optionally only those in the given states",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": _PROJECT,
                    "only": {"type": "array", "items": {"type": "string", "enum": _TASK_STATES}},
                },
                "required": ["project_id"],
            },
        ),
        Tool(
            name="task_delete_all",
            description="Irreversibly delete every task of a project",
            inputSchema={
                "type": "object",
                "properties": {"project_id": _PROJECT},
                "required": ["project_id"],
            },
        ),
        Tool(
            name="scratchpad_initialize",
            description="Create a scratchpad holding up to six tasks for subagent work",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": _PROJECT,
                    "scratchpad_id": {**_SCRATCHPAD, "description": "Optional explicit id"},
                    "tasks": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "task_id": {"type": "string"},
                                "task_info": {"type": "string"},
                                "status": {"type": "string", "enum": ["open", "complete"]},
                                "scratchpad": {"type": "string"},
                                "comments": {"type": "string"},
                            },
                            "required": ["task_id", "task_info"],
                        },
                    },
                },
                "required": ["project_id", "tasks"],
            },
        ),
        Tool(
            name="scratchpad_review",
            description="Read a scratchpad with its tasks and common memory",
            inputSchema={
                "type": "object",
                "properties": {"project_id": _PROJECT, "scratchpad_id": _SCRATCHPAD},
                "required": ["project_id", "scratchpad_id"],
            },
        ),
        Tool(
            name="scratchpad_update_tasks",
            description="Merge status, task_info, scratchpad or comments into scratchpad tasks",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": _PROJECT,
                    "scratchpad_id": _SCRATCHPAD,
                    "tasks": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "task_id": {"type": "string"},
                                "status": {"type": "string", "enum": ["open", "complete"]},
                                "task_info": {"type": "string"},
                                "scratchpad": {"type": "string"},
                                "comments": {"type": "string"},
                            },
                            "required": ["task_id"],
                        },
                    },
                },
                "required": ["project_id", "scratchpad_id", "tasks"],
            },
        ),
        Tool(
            name="scratchpad_append_common_memory",
            description="Append lines to the scratchpad's shared memory",
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": _PROJECT,
                    "scratchpad_id": _SCRATCHPAD,
                    "append": {
                        "oneOf": [{"type": "string"}, _STRING_LIST],
                        "description": "Text or list of lines to append",
                    },
                },
                "required": ["project_id", "scratchpad_id", "append"],
            },
        ),
        Tool(
            name="scratchpad_subagent",
            description=(
                "Run one scratchpad task through the configured AI provider. "
                "Returns success/failure, or in_progress if the run outlives the "
                "soft deadline (poll scratchpad_subagent_status)"
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "project_id": _PROJECT,
                    "scratchpad_id": _SCRATCHPAD,
                    "task_id": {"type": "string"},
                    "prompt": {"type": "string"},
                    "sys_prompt": {"type": "string"},
                    "tool": {
                        "oneOf": [{"type": "string"}, _STRING_LIST],
                        "description": (
                            "Capabilities (grounding, crawling, code_execution, all) "
                            "or MCP server names for the mcp provider"
                        ),
                    },
                    "file_path": {"type": "string"},
                    "file_id": {"type": "string"},
                    "user_id": {"type": "string"},
                },
                "required": ["project_id", "scratchpad_id", "task_id", "prompt"],
            },
        ),
        Tool(
            name="scratchpad_subagent_status",
            description="Poll the status of a subagent run",
            inputSchema={
                "type": "object",
                "properties": {"project_id": _PROJECT, "run_id": {"type": "string"}},
                "required": ["project_id", "run_id"],
            },
        ),
    ]


def _serialize_task(task: Task) -> dict[str, Any]:
    return task.model_dump(mode="json")


def _serialize_scratchpad(scratchpad: Scratchpad) -> dict[str, Any]:
    return scratchpad.model_dump(mode="json")


def _require_list(arguments: dict[str, Any], key: str) -> list[Any] | dict[str, Any]:
    value = arguments.get(key)
    if not isinstance(value, list):
        return {"error": "ValidationError", "message": f"{key} must be an array"}
    return value


class AgentpadServer:
    """MCP server for agentpad.

    Exposes tools for:
    - Task tree management with locking and cascades
    - Scratchpad creation, review and updates
    - Subagent runs and run status polling
    """

    def __init__(
        self,
        db_path: Path,
        config: Config | None = None,
        config_manager: ConfigManager | None = None,
    ) -> None:
        """Initialize server.

        Args:
            db_path: Path to SQLite database
            config: Loaded configuration (defaults are used when omitted)
            config_manager: Source of the provider API key
        """
        self.db_path = db_path
        self.config = config or Config()
        self.config_manager = config_manager or ConfigManager()
        self._db: Database | None = None
        self.tasks: TaskHierarchyService | None = None
        self.scratchpads: ScratchpadService | None = None
        self.orchestrator: SubagentOrchestrator | None = None
        self.server = Server("agentpad")
        self._handlers: dict[str, Handler] = {
            "task_add": self._handle_task_add,
            "task_set_state": self._handle_task_set_state,
            "task_mark_complete": self._handle_task_mark_complete,
            "task_list": self._handle_task_list,
            "task_delete_all": self._handle_task_delete_all,
            "scratchpad_initialize": self._handle_scratchpad_initialize,
            "scratchpad_review": self._handle_scratchpad_review,
            "scratchpad_update_tasks": self._handle_scratchpad_update_tasks,
            "scratchpad_append_common_memory": self._handle_scratchpad_append_common_memory,
            "scratchpad_subagent": self._handle_scratchpad_subagent,
            "scratchpad_subagent_status": self._handle_scratchpad_subagent_status,
        }

        self._register_tools()

    def _register_tools(self) -> None:
        """Register all MCP tools."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            return _tool_definitions()

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            result = await self.dispatch(name, arguments or {})
            return [TextContent(type="text", text=json.dumps(result, default=str))]

    async def initialize(self, database: Database | None = None) -> None:
        """Open the database and build the services."""
        if database is None:
            database = Database(self.db_path)
            await database.initialize()
        self._db = database
        self.tasks = TaskHierarchyService(database, self.config.tasks.max_traversal_depth)
        self.scratchpads = ScratchpadService(
            database,
            max_tasks=self.config.scratchpad.max_tasks,
            id_generation_attempts=self.config.scratchpad.id_generation_attempts,
        )
        self.orchestrator = SubagentOrchestrator(
            database,
            self.scratchpads,
            ProviderRegistry(
                mcp_skip_servers=self.config.ai.mcp_skip_servers,
                project_root=self.config_manager.project_root,
            ),
            self.config.ai,
            api_key_provider=self.config_manager.get_api_key,
        )

    async def dispatch(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Run one tool and turn service errors into error payloads."""
        if self._db is None:
            return {"error": "InternalError", "message": "Database not initialized"}

        handler = self._handlers.get(name)
        if handler is None:
            return {"error": "UnknownTool", "message": f"Unknown tool: {name}"}

        try:
            return await handler(arguments)
        except (TaskValidationError, ScratchpadValidationError) as e:
            return {"error": "ValidationError", "message": str(e)}
        except ScratchpadNotFoundError as e:
            return {"error": "NotFoundError", "message": str(e)}
        except (ScratchpadExistsError, ScratchpadIdExhaustedError) as e:
            return {"error": "ConflictError", "message": str(e)}
        except Exception as e:
            logger.error("mcp_tool_error", tool=name, error=str(e))
            return {"error": "InternalError", "message": str(e), "tool": name}

    async def _handle_task_add(self, arguments: dict[str, Any]) -> dict[str, Any]:
        assert self.tasks is not None
        tasks = _require_list(arguments, "tasks")
        if isinstance(tasks, dict):
            return tasks
        if not all(isinstance(entry, dict) for entry in tasks):
            return {"error": "ValidationError", "message": "tasks must be objects"}
        result = await self.tasks.add_tasks(arguments.get("project_id", ""), tasks)
        return result.model_dump(mode="json")

    async def _handle_task_set_state(self, arguments: dict[str, Any]) -> dict[str, Any]:
        assert self.tasks is not None
        change = {k: v for k, v in arguments.items() if k != "project_id"}
        result = await self.tasks.set_tasks_state(arguments.get("project_id", ""), change)
        return result.model_dump(mode="json")

    async def _handle_task_mark_complete(self, arguments: dict[str, Any]) -> dict[str, Any]:
        assert self.tasks is not None
        result = await self.tasks.mark_complete(
            arguments.get("project_id", ""),
            match_ids=arguments.get("match_ids"),
            match_text=arguments.get("match_text"),
        )
        return result.model_dump(mode="json")

    async def _handle_task_list(self, arguments: dict[str, Any]) -> dict[str, Any]:
        assert self.tasks is not None
        tasks = await self.tasks.list_tasks(arguments.get("project_id", ""), arguments.get("only"))
        return {"tasks": [_serialize_task(task) for task in tasks]}

    async def _handle_task_delete_all(self, arguments: dict[str, Any]) -> dict[str, Any]:
        assert self.tasks is not None
        deleted = await self.tasks.delete_all_tasks(arguments.get("project_id", ""))
        return {"deleted": deleted}

    async def _handle_scratchpad_initialize(self, arguments: dict[str, Any]) -> dict[str, Any]:
        assert self.scratchpads is not None
        tasks = _require_list(arguments, "tasks")
        if isinstance(tasks, dict):
            return tasks
        if not all(isinstance(entry, dict) for entry in tasks):
            return {"error": "ValidationError", "message": "tasks must be objects"}
        result = await self.scratchpads.init_scratchpad(
            arguments.get("project_id", ""), tasks, arguments.get("scratchpad_id")
        )
        return {
            "scratchpad": _serialize_scratchpad(result.scratchpad),
            "invalid": result.invalid,
        }

    async def _handle_scratchpad_review(self, arguments: dict[str, Any]) -> dict[str, Any]:
        assert self.scratchpads is not None
        scratchpad = await self.scratchpads.get_scratchpad(
            arguments.get("project_id", ""), arguments.get("scratchpad_id", "")
        )
        return _serialize_scratchpad(scratchpad)

    async def _handle_scratchpad_update_tasks(self, arguments: dict[str, Any]) -> dict[str, Any]:
        assert self.scratchpads is not None
        updates = _require_list(arguments, "tasks")
        if isinstance(updates, dict):
            return updates
        if not all(isinstance(entry, dict) for entry in updates):
            return {"error": "ValidationError", "message": "tasks must be objects"}
        result = await self.scratchpads.update_scratchpad_tasks(
            arguments.get("project_id", ""), arguments.get("scratchpad_id", ""), updates
        )
        return {
            "scratchpad": _serialize_scratchpad(result.scratchpad),
            "updated": result.updated,
            "not_found": result.not_found,
        }

    async def _handle_scratchpad_append_common_memory(
        self, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        assert self.scratchpads is not None
        scratchpad = await self.scratchpads.append_common_memory(
            arguments.get("project_id", ""),
            arguments.get("scratchpad_id", ""),
            arguments.get("append"),
        )
        return _serialize_scratchpad(scratchpad)

    async def _handle_scratchpad_subagent(self, arguments: dict[str, Any]) -> dict[str, Any]:
        assert self.orchestrator is not None
        request = {k: v for k, v in arguments.items() if k != "user_id"}
        result = await self.orchestrator.run_scratchpad_subagent(arguments.get("user_id"), request)
        return result.to_payload()

    async def _handle_scratchpad_subagent_status(
        self, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        assert self.orchestrator is not None
        result = await self.orchestrator.get_run_status(
            arguments.get("project_id", ""), arguments.get("run_id", "")
        )
        return result.to_payload()

    async def close(self) -> None:
        """Wait for in-flight runs and close the database."""
        if self.orchestrator is not None:
            await self.orchestrator.shutdown()
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def run(self) -> None:
        """Run the MCP server over stdio."""
        await self.initialize()
        logger.info("agentpad_mcp_server_started", db_path=str(self.db_path))

        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream, write_stream, self.server.create_initialization_options()
                )
        finally:
            await self.close()


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="agentpad MCP server")
    parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="Path to SQLite database (default: .agentpad/agentpad.db)",
    )
    args = parser.parse_args()

    config_manager = ConfigManager()
    config = config_manager.load_config()
    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())

    server = AgentpadServer(
        args.db_path or config_manager.get_database_path(),
        config=config,
        config_manager=config_manager,
    )
    await server.run()


def cli_main() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
