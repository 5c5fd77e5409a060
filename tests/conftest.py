"""Pytest configuration and fixtures."""

import asyncio
import tempfile
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
from agentpad.domain.models import InferenceRequest, InferenceResult
from agentpad.domain.ports.inference_provider import InferenceProvider
from agentpad.infrastructure.database import Database
from agentpad.services import ScratchpadService, TaskHierarchyService


class FakeProvider(InferenceProvider):
    """Scripted provider recording every request it receives."""

    def __init__(
        self,
        name: str = "fake",
        capabilities: frozenset[str] = frozenset({"grounding", "crawling", "code_execution"}),
        result: InferenceResult | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        selects_external_tools: bool = False,
    ) -> None:
        self.name = name
        self.default_model = "fake-model"
        self.selects_external_tools = selects_external_tools
        self._capabilities = capabilities
        self.result = result or InferenceResult(text="fake answer")
        self.error = error
        self.delay = delay
        self.requests: list[InferenceRequest] = []

    def supported_capabilities(self) -> frozenset[str]:
        return self._capabilities

    async def infer(self, request: InferenceRequest) -> InferenceResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def provider_factory() -> type[FakeProvider]:
    """FakeProvider class, for tests that need several configurations."""
    return FakeProvider


# Database fixtures
@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
async def memory_db() -> AsyncGenerator[Database, None]:
    """Create in-memory database for fast tests."""
    db = Database(Path(":memory:"))
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
async def file_db(temp_db_path: Path) -> AsyncGenerator[Database, None]:
    """Create file-based database for persistence tests."""
    db = Database(temp_db_path)
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def task_service(memory_db: Database) -> TaskHierarchyService:
    return TaskHierarchyService(memory_db)


@pytest.fixture
def scratchpad_service(memory_db: Database) -> ScratchpadService:
    return ScratchpadService(memory_db)
