"""Test fixtures for the FileMaker bridge.

Provides:
- state_store: FakeStateStore with a manual clock
- fm_server: FakeFileMakerServer behind httpx.MockTransport
- fm_client / unconfigured_client: FileMakerClient wired to the fakes
- portal_repo: InMemoryPortalRepository
- credentials, layouts

No network, Redis or database is touched.
"""

from __future__ import annotations

import pytest

from src.portal.filemaker.circuit import CircuitBreaker
from src.portal.filemaker.client import FileMakerClient
from src.portal.filemaker.schemas import FileMakerCredentials, Layouts
from src.portal.filemaker.session import SessionManager
from tests.fakes import (
    DATABASE,
    SERVER_URL,
    FakeFileMakerServer,
    FakeStateStore,
    InMemoryPortalRepository,
)


# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def state_store() -> FakeStateStore:
    return FakeStateStore()


@pytest.fixture
def fm_server() -> FakeFileMakerServer:
    return FakeFileMakerServer()


@pytest.fixture
def credentials() -> FileMakerCredentials:
    return FileMakerCredentials(
        server_url=SERVER_URL,
        database=DATABASE,
        username="portal",
        password="secret",
    )


@pytest.fixture
def layouts() -> Layouts:
    return Layouts(
        properties="Properties",
        buyers="Properties",
        submissions="Submissions",
        communications="Communications",
    )


@pytest.fixture
def fm_client(credentials, state_store, fm_server) -> FileMakerClient:
    transport = fm_server.transport
    sessions = SessionManager(credentials, state_store, transport=transport)
    return FileMakerClient(
        credentials, sessions, CircuitBreaker(state_store), transport=transport
    )


@pytest.fixture
def unconfigured_client(state_store, fm_server) -> FileMakerClient:
    transport = fm_server.transport
    sessions = SessionManager(None, state_store, transport=transport)
    return FileMakerClient(None, sessions, CircuitBreaker(state_store), transport=transport)


@pytest.fixture
def portal_repo() -> InMemoryPortalRepository:
    return InMemoryPortalRepository()
