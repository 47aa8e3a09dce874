"""pytest fixtures for the image proxy tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance (migrated)
- session: Function-scoped database session with table cleanup
- uow_factory: Function-scoped UnitOfWork factory bound to the test database
- memory_uow_factory: In-memory UnitOfWork double for handler/route tests
- stub_provider: Scriptable ImageProvider double
"""

import os

# Settings skip the GEMINI_API_KEY requirement in test environments
os.environ.setdefault("APP_ENV", "test")
os.environ["TZ"] = "UTC"

import hashlib  # noqa: E402
import subprocess  # noqa: E402
import sys  # noqa: E402
from dataclasses import replace  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import AsyncGenerator  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from nanobanana.core.database import setup_db_session  # noqa: E402
from nanobanana.repositories.image_generation import (  # noqa: E402
    FALLBACK_SAME_DIMENSIONS,
    FALLBACK_SAME_STYLE,
    CachedImage,
)
from nanobanana.services.image_generation.params import (  # noqa: E402
    GenerationParams,
    detect_operation_type,
)
from nanobanana.services.image_generation.provider import GenerationResult  # noqa: E402
from nanobanana.uow import create_uow_factory  # noqa: E402

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# 1x1 transparent PNG
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c63f8ffff3f0005fe02fea7d6a4a20000"
    "000049454e44ae426082"
)


def _docker_available() -> bool:
    try:
        import docker

        docker.from_env().ping()
        return True
    except Exception:
        return False


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Container starts once per test session and is reused across all tests.
    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    if not _docker_available():
        pytest.skip("Docker is not available for the PostgreSQL testcontainer")

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_nanobanana",
    ) as container:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container


@pytest_asyncio.fixture(scope="function")
async def session(postgres_container) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session with table cleanup.

    Large objects are unlinked before rows are deleted so tests do not leak them.
    """
    db_url = postgres_container.get_connection_url(driver="psycopg")
    session_factory = setup_db_session(db_url, pool_size=5)

    async with session_factory() as session:
        yield session

        await session.rollback()
        await session.execute(
            text(
                "SELECT lo_unlink(content_oid) FROM image_generations "
                "WHERE content_oid IS NOT NULL"
            )
        )
        await session.execute(text("DELETE FROM image_generations"))
        await session.commit()

    await session_factory.kw["bind"].dispose()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session: AsyncSession):
    """Provide function-scoped UnitOfWork factory using the test database."""
    session_factory = async_sessionmaker(
        bind=session.bind,
        expire_on_commit=False,
    )
    return create_uow_factory(session_factory)


class InMemoryGenerationRepository:
    """Dict-backed stand-in for ImageGenerationRepository.

    Methods named in fail_on raise SQLAlchemyError to simulate storage outages.
    """

    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.fail_on: set[str] = set()
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _check(self, method: str) -> None:
        if method in self.fail_on:
            raise SQLAlchemyError(f"simulated {method} failure")

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _successful(self) -> list[dict]:
        return [row for row in self.rows.values() if row["success"]]

    @staticmethod
    def _cached(row: dict, fallback_type: str | None = None) -> CachedImage:
        return replace(row["image"], fallback_type=fallback_type)

    async def get(self, fingerprint):
        self._check("get")
        row = self.rows.get(fingerprint)
        return self._cached(row) if row and row["success"] else None

    async def get_by_id(self, record_id):
        self._check("get_by_id")
        for row in self._successful():
            if row["image"].id == record_id:
                return self._cached(row)
        return None

    async def put_success(self, params, fingerprint, payload, content_type, provider, actor=None):
        self._check("put_success")
        existing = self.rows.get(fingerprint)
        record_id = existing["id"] if existing else uuid4()
        image = CachedImage(
            id=record_id,
            fingerprint=fingerprint,
            provider=provider,
            prompt=params.prompt_text,
            style=params.style,
            width=params.width_value,
            height=params.height_value,
            content=payload,
            content_type=content_type,
            content_sha256=hashlib.sha256(payload).hexdigest(),
            created_at=self._tick(),
        )
        self.rows[fingerprint] = {
            "id": record_id,
            "success": True,
            "error_message": None,
            "actor": actor,
            "image": image,
        }
        return image

    async def put_failure(self, params, fingerprint, error_message, provider, actor=None):
        self._check("put_failure")
        existing = self.rows.get(fingerprint)
        self.rows[fingerprint] = {
            "id": existing["id"] if existing else uuid4(),
            "success": False,
            "error_message": error_message,
            "actor": actor,
            "image": None,
            "provider": provider,
            "created_at": self._tick(),
        }

    async def find_fallback(self, params):
        self._check("find_fallback")
        candidates = sorted(
            self._successful(), key=lambda row: row["image"].created_at, reverse=True
        )
        for row in candidates:
            image = row["image"]
            if (
                image.width == params.width_value
                and image.height == params.height_value
                and image.style == params.style
            ):
                return self._cached(row, FALLBACK_SAME_DIMENSIONS)
        for row in candidates:
            if row["image"].style == params.style:
                return self._cached(row, FALLBACK_SAME_STYLE)
        return None


class InMemoryUnitOfWork:
    def __init__(self, repository: InMemoryGenerationRepository):
        self.generations = repository

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class InMemoryUowFactory:
    """Callable returning awaitable UnitOfWork doubles sharing one repository."""

    def __init__(self):
        self.repository = InMemoryGenerationRepository()

    async def __call__(self):
        return InMemoryUnitOfWork(self.repository)


class StubProvider:
    """ImageProvider double that records calls and returns or raises on demand."""

    name = "nanobanana"

    def __init__(self):
        self.calls: list[GenerationParams] = []
        self.error: Exception | None = None
        self.image = PNG_BYTES
        self.mime_type = "image/png"

    async def generate(self, params: GenerationParams) -> GenerationResult:
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return GenerationResult(
            image=self.image,
            mime_type=self.mime_type,
            operation=detect_operation_type(params),
            credit_cost=1,
        )


@pytest.fixture
def memory_uow_factory() -> InMemoryUowFactory:
    return InMemoryUowFactory()


@pytest.fixture
def stub_provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES
