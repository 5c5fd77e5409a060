"""Subagent run orchestration: run a scratchpad task through an inference provider."""

import asyncio
import contextlib
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from agentpad.application.attachments import load_file_payload
from agentpad.application.capabilities import (
    default_system_prompt,
    describe_tools,
    normalize_tools,
    parse_mcp_selection,
)
from agentpad.application.providers.registry import ProviderRegistry
from agentpad.domain.models import (
    FileAttachment,
    InferenceRequest,
    InferenceResult,
    RunResult,
    RunStatus,
    SubagentRun,
    SubagentRunRequest,
    utc_now,
)
from agentpad.domain.ports.collaborators import AttachmentResolver, ProjectAccessResolver
from agentpad.domain.ports.inference_provider import InferenceProvider
from agentpad.infrastructure.config import AIConfig
from agentpad.infrastructure.database import Database
from agentpad.infrastructure.exceptions import (
    AttachmentError,
    MissingAPIKeyError,
    ProviderUnavailableError,
)
from agentpad.infrastructure.logger import get_logger
from agentpad.services.scratchpad_service import ScratchpadNotFoundError, ScratchpadService

logger = get_logger(__name__)

MEMORY_CONTEXT_HEADER = "Context (scratchpad common_memory):"


def _first_error(error: ValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    loc = ".".join(str(part) for part in details[0].get("loc", ()))
    msg = details[0].get("msg")
    return f"{loc}: {msg}" if loc else str(msg)


def format_scratchpad_append(run_id: str, result: InferenceResult, stamp: datetime) -> str:
    """Timestamped block carrying the run's output text."""
    text = result.text.strip() or "(no response text)"
    return f"\n[subagent {run_id} @ {stamp.isoformat()}]\n{text}"


def format_comment_block(run_id: str, result: InferenceResult) -> str:
    """Metadata block listing sources, code used and code output."""
    parts = [f"[subagent {run_id} meta]"]
    urls = list(dict.fromkeys(url for url in result.urls if url))
    if urls:
        parts.append("Sources:")
        parts.extend(f"- {url}" for url in urls)
    if result.code_snippets:
        parts.append("Code used:")
        parts.extend(f"```\n{snippet}\n```" for snippet in result.code_snippets)
    if result.code_results:
        parts.append("Code results:")
        parts.extend(f"```\n{output}\n```" for output in result.code_results)
    if result.tool_calls:
        parts.append("Tool calls:")
        parts.extend(
            f"- {call.server + ':' if call.server else ''}{call.name}" for call in result.tool_calls
        )
    return "\n".join(parts)


class SubagentOrchestrator:
    """Runs one scratchpad task against the configured inference provider.

    Run state machine (persisted in the record store):
        pending -> in_progress -> success | failure

    ``run_scratchpad_subagent`` validates the request, creates the run
    record, resolves the scratchpad entry, provider, credentials, tools and
    attachment, then launches the provider call as a background task. The
    caller waits at most ``soft_deadline_seconds``: if the call finishes in
    time the terminal result is returned, otherwise ``in_progress`` is
    returned and the task keeps running until it finishes or hits the hard
    timeout. Every path after the run record exists ends in a terminal
    status except that early return.
    """

    def __init__(
        self,
        database: Database,
        scratchpads: ScratchpadService,
        providers: ProviderRegistry,
        ai_config: AIConfig | None = None,
        api_key_provider: Callable[[], str | None] | None = None,
        access_resolver: ProjectAccessResolver | None = None,
        attachment_resolver: AttachmentResolver | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            database: Record store holding run records
            scratchpads: Scratchpad store the run reads from and writes into
            providers: Provider lookup
            ai_config: Provider selection, model, timeouts and limits
            api_key_provider: Returns the provider API key (may raise
                MissingAPIKeyError)
            access_resolver: Optional project permission check
            attachment_resolver: Optional file id resolution
        """
        self.db = database
        self.scratchpads = scratchpads
        self.providers = providers
        self.ai = ai_config or AIConfig()
        self._api_key_provider = api_key_provider
        self.access_resolver = access_resolver
        self.attachment_resolver = attachment_resolver
        self._background: set[asyncio.Task[RunResult]] = set()
        self._slots = (
            asyncio.Semaphore(self.ai.max_concurrent_runs) if self.ai.max_concurrent_runs else None
        )

    @property
    def active_runs(self) -> int:
        return len(self._background)

    async def run_scratchpad_subagent(
        self, user_id: str | None, request: SubagentRunRequest | dict[str, Any]
    ) -> RunResult:
        """Start a subagent run for one scratchpad task.

        Returns:
            A terminal RunResult, or ``in_progress`` if the soft deadline
            passed first
        """
        if not isinstance(request, SubagentRunRequest):
            try:
                request = SubagentRunRequest.model_validate(request)
            except ValidationError as e:
                return RunResult.failure(f"invalid_request: {_first_error(e)}")

        if not self.ai.enabled:
            return RunResult.failure("external_ai_disabled")
        if not request.scratchpad_id or not request.task_id or not request.prompt:
            return RunResult.failure("scratchpad_id, task_id and prompt are required")
        if not request.project_id:
            return RunResult.failure("project_id_required")

        if self.access_resolver is not None:
            access = await self.access_resolver.resolve(user_id, request.project_id)
            if access is None:
                return RunResult.failure("project_not_found")
            if access.read_only:
                return RunResult.failure("read_only_project")

        run = SubagentRun(
            project_id=request.project_id,
            user_id=user_id,
            scratchpad_id=request.scratchpad_id,
            task_id=request.task_id,
        )
        await self.db.insert_subagent_run(run)
        log = logger.bind(
            project_id=run.project_id,
            run_id=run.run_id,
            scratchpad_id=run.scratchpad_id,
            task_id=run.task_id,
        )
        log.info("subagent_run_created")

        try:
            scratchpad = await self.scratchpads.get_scratchpad(run.project_id, run.scratchpad_id)
        except ScratchpadNotFoundError:
            return await self._fail(run, "scratchpad_not_found")
        if scratchpad.find_task(run.task_id) is None:
            return await self._fail(run, "task_not_found_in_scratchpad")

        selection = normalize_tools(request.tool)
        user_prompt = request.prompt
        if scratchpad.common_memory.strip():
            user_prompt = f"{user_prompt}\n\n{MEMORY_CONTEXT_HEADER}\n{scratchpad.common_memory}"

        try:
            provider = self.providers.get(self.ai.api_type)
        except ProviderUnavailableError as e:
            return await self._fail(run, e.code)

        api_key = self._resolve_api_key()
        if not api_key:
            return await self._fail(run, MissingAPIKeyError.code)

        mcp_servers: list[str] | None = None
        if provider.selects_external_tools:
            tools: list[str] = []
            mcp_servers = parse_mcp_selection(request.tool)
            tools_phrase = describe_tools([], mcp=True, mcp_servers=mcp_servers)
        else:
            supported = provider.supported_capabilities()
            unsupported = selection.unsupported(supported)
            if unsupported:
                return await self._fail(
                    run, f"Tool(s) not supported by {provider.name}: [{', '.join(unsupported)}]"
                )
            tools = selection.resolve(supported)
            tools_phrase = describe_tools(tools)

        try:
            attachment = await self._load_attachment(user_id, run.project_id, request)
        except AttachmentError as e:
            return await self._fail(run, str(e))

        inference_request = InferenceRequest(
            api_key=api_key,
            model=self.ai.model or provider.default_model,
            base_url=self.ai.base_url,
            system_prompt=(request.sys_prompt or "").strip() or default_system_prompt(tools_phrase),
            user_prompt=user_prompt,
            tools=tools,
            mcp_servers=mcp_servers,
            timeout_seconds=self.ai.timeout_seconds,
            attachment=attachment,
        )

        work = asyncio.create_task(
            self._execute(run, provider, inference_request), name=f"subagent-{run.run_id}"
        )
        self._background.add(work)
        work.add_done_callback(self._background.discard)

        done, _ = await asyncio.wait({work}, timeout=self.ai.soft_deadline_seconds)
        if work in done:
            return work.result()

        log.info("subagent_run_soft_deadline_reached", soft_deadline=self.ai.soft_deadline_seconds)
        return RunResult(run_id=run.run_id, status=RunStatus.IN_PROGRESS)

    async def get_run_status(self, project_id: str, run_id: str) -> RunResult:
        """Read a run's current status."""
        project_id = (project_id or "").strip()
        run_id = (run_id or "").strip()
        if not project_id:
            return RunResult.failure("project_id_required")
        if not run_id:
            return RunResult.failure("run_id_required")
        run = await self.db.get_subagent_run(project_id, run_id)
        if run is None:
            return RunResult.failure("run_not_found", run_id)
        return RunResult(
            run_id=run.run_id,
            status=run.status,
            error=run.error if run.status == RunStatus.FAILURE else None,
        )

    async def wait_for_background(self) -> None:
        """Wait until every in-flight run has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        if self._background:
            logger.info("waiting_for_subagent_runs", count=len(self._background))
        await self.wait_for_background()

    def _resolve_api_key(self) -> str | None:
        if self._api_key_provider is None:
            return None
        try:
            key = self._api_key_provider()
        except MissingAPIKeyError:
            return None
        return key.strip() if key else None

    async def _load_attachment(
        self, user_id: str | None, project_id: str, request: SubagentRunRequest
    ) -> FileAttachment | None:
        file_path = (request.file_path or "").strip()
        file_id = (request.file_id or "").strip()
        mime_type = None
        original_name = None
        if not file_path and file_id:
            if self.attachment_resolver is None:
                raise AttachmentError("file_resolution_unavailable")
            reference = await self.attachment_resolver.resolve(user_id, project_id, file_id)
            file_path = reference.path
            mime_type = reference.mime_type
            original_name = reference.name
        if not file_path:
            return None
        return await asyncio.to_thread(
            load_file_payload,
            file_path,
            mime_type,
            original_name,
            self.ai.attachment_text_limit,
        )

    async def _fail(self, run: SubagentRun, error: str) -> RunResult:
        await self.db.update_subagent_run_status(
            run.project_id, run.run_id, RunStatus.FAILURE, error
        )
        logger.info("subagent_run_failed", project_id=run.project_id, run_id=run.run_id, error=error)
        return RunResult.failure(error, run.run_id)

    async def _execute(
        self, run: SubagentRun, provider: InferenceProvider, request: InferenceRequest
    ) -> RunResult:
        """The background unit of work: infer, write output, finalize the run.

        Queued runs stay ``pending`` until a concurrency slot frees up.
        """
        slot = self._slots if self._slots is not None else contextlib.nullcontext()
        result: InferenceResult | None = None
        error: str | None = None

        async with slot:
            logger.info(
                "subagent_run_started",
                project_id=run.project_id,
                run_id=run.run_id,
                provider=provider.name,
                model=request.model,
                tools=request.tools,
            )
            try:
                await self.db.update_subagent_run_status(
                    run.project_id, run.run_id, RunStatus.IN_PROGRESS
                )
                result = await asyncio.wait_for(
                    provider.infer(request), timeout=request.timeout_seconds
                )
                await self.scratchpads.append_task_output(
                    run.project_id,
                    run.scratchpad_id,
                    run.task_id,
                    format_scratchpad_append(run.run_id, result, utc_now()),
                    format_comment_block(run.run_id, result),
                )
            except asyncio.TimeoutError:
                error = f"provider_timeout after {request.timeout_seconds:g}s"
            except Exception as e:
                error = str(e) or type(e).__name__

        if error is None:
            await self.db.update_subagent_run_status(run.project_id, run.run_id, RunStatus.SUCCESS)
            outcome = RunResult(run_id=run.run_id, status=RunStatus.SUCCESS)
            logger.info("subagent_run_succeeded", project_id=run.project_id, run_id=run.run_id)
        else:
            await self.db.update_subagent_run_status(
                run.project_id, run.run_id, RunStatus.FAILURE, error
            )
            outcome = RunResult.failure(error, run.run_id)
            logger.error(
                "subagent_run_failed", project_id=run.project_id, run_id=run.run_id, error=error
            )

        await self._audit(run, provider, request, result, outcome)
        return outcome

    async def _audit(
        self,
        run: SubagentRun,
        provider: InferenceProvider,
        request: InferenceRequest,
        result: InferenceResult | None,
        outcome: RunResult,
    ) -> None:
        action_data: dict[str, Any] = {
            "scratchpad_id": run.scratchpad_id,
            "task_id": run.task_id,
            "provider": provider.name,
            "model": request.model,
            "tools": request.tools,
            "mcp_servers": request.mcp_servers,
        }
        if result is not None:
            action_data["urls"] = len(result.urls)
            action_data["tool_calls"] = [call.model_dump() for call in result.tool_calls]
        if outcome.error:
            action_data["error"] = outcome.error
        try:
            await self.db.log_audit(
                run.project_id,
                "subagent_run",
                run_id=run.run_id,
                action_data=action_data,
                result=outcome.status.value,
            )
        except Exception as e:
            logger.error("audit_log_failed", run_id=run.run_id, error=str(e))
