"""Pytest configuration and fixtures for backend tests."""

import os

# Settings được đọc lúc import model -> cấu hình môi trường test trước
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["EMBEDDING_DIM"] = "32"
os.environ["GENERATION_PROVIDER"] = "gemini"
os.environ["GOOGLE_API_KEY"] = ""
os.environ["MCP_KEEPALIVE_SECONDS"] = "0.01"

import hashlib
import re
from typing import AsyncGenerator, List, Optional

import numpy as np
import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from knowledge_hub.core.api.deps import build_services, get_services
from knowledge_hub.core.config import get_settings
from knowledge_hub.core.exceptions import EmbeddingUnavailable, GenerationFailure
from knowledge_hub.core.rate_limit import limiter
from knowledge_hub.database.postgre import get_db, init_models
from knowledge_hub.main import app as main_app
from knowledge_hub.service.vector_store import VectorStore

DIM = 32


def unit(*components: float) -> np.ndarray:
    """Vector DIM chiều từ vài thành phần đầu, phần còn lại là 0."""
    vector = np.zeros(DIM, dtype=np.float32)
    vector[: len(components)] = components
    return vector


# -------------------------------------------------------------------------
# Fakes
# -------------------------------------------------------------------------


class FakeEmbedder:
    """Bag-of-words băm vào DIM chiều: cùng tập từ -> cùng vector."""

    def __init__(self, dimension: int = DIM, fail_on: Optional[dict] = None):
        self.dimension = dimension
        # {chuỗi con: retryable} -> text chứa chuỗi con sẽ embed lỗi
        self.fail_on = fail_on or {}
        self.calls: List[str] = []

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        for marker, retryable in self.fail_on.items():
            if marker in text:
                raise EmbeddingUnavailable(f"cannot embed '{marker}'", retryable=retryable)

        vector = np.zeros(self.dimension, dtype=np.float32)
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        if not vector.any():
            raise EmbeddingUnavailable("Cannot embed empty text", retryable=False)
        return vector / np.linalg.norm(vector)


class FakeGenerator:
    """Phát lại các đoạn text cho trước; ghi nhận instruction nhận được."""

    def __init__(self, deltas=("Xin ", "chào", "!"), error: Optional[Exception] = None):
        self.deltas = list(deltas)
        self.error = error
        self.calls: List[dict] = []

    async def stream(self, prompt, system_instruction=None, temperature=0.3):
        self.calls.append({"prompt": prompt, "system_instruction": system_instruction, "temperature": temperature})
        for delta in self.deltas:
            yield delta
        if self.error is not None:
            raise self.error


# -------------------------------------------------------------------------
# Database Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory) -> VectorStore:
    return VectorStore(session_factory, dimension=DIM)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def failing_generator() -> FakeGenerator:
    return FakeGenerator(deltas=["Một phần"], error=GenerationFailure("upstream closed the stream"))


# -------------------------------------------------------------------------
# App Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def services(session_factory, embedder, generator):
    return build_services(get_settings(), session_factory, embedder=embedder, generator=generator)


@pytest.fixture
def app(services, session_factory) -> FastAPI:
    """FastAPI app dùng DB in-memory và các service giả."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    main_app.dependency_overrides[get_services] = lambda: services
    main_app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    yield main_app
    limiter.enabled = True
    main_app.dependency_overrides.clear()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
async def kb(store):
    return await store.create_knowledge_base("ESP32", "Vi điều khiển", "cpu")
