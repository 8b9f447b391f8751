"""Shared test fixtures."""

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import wificomp.database as db_module
import wificomp.exclusions.models  # noqa: F401
from wificomp.config import settings
from wificomp.database import get_session
from wificomp.exclusions.registry import ExclusionRegistry
from wificomp.main import app


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool ensures every session uses the same connection,
    so the in-memory database is shared across the test.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as s:
        yield s


@pytest.fixture
def registry(engine) -> ExclusionRegistry:
    reg = ExclusionRegistry(engine)
    reg.load()
    return reg


@pytest.fixture
def sessions_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "sessions"
    monkeypatch.setattr(settings, "sessions_dir", path)
    monkeypatch.setattr(settings, "exports_dir", tmp_path / "exports")
    return path


@pytest.fixture
def client(
    engine, sessions_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with the test DB engine and the mock scan source."""
    # Patch the module-level engine so lifespan's init_db() and the
    # exclusion registry both use the test engine.
    original_engine = db_module.engine
    db_module.engine = engine
    monkeypatch.setattr(settings, "scan_source", "mock")
    monkeypatch.setattr(settings, "interface", None)

    def _override_session() -> Generator[Session, None, None]:
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _override_session
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    db_module.engine = original_engine
