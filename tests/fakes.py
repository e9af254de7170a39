"""Test doubles for the FileMaker bridge.

- FakeStateStore: in-memory SharedStateStore with a controllable clock
- FakeFileMakerServer: routes Data API requests through httpx.MockTransport
- InMemoryPortalRepository: LocalRepository test double
- fm_ok / fm_error / fm_records: Data API response bodies
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

import httpx

from src.portal.core.redis import StateStoreError
from src.portal.filemaker.repository import (
    BuyerRead,
    CommunicationDetail,
    ProgramRead,
    PropertyRead,
    SubmissionDetail,
)
from src.portal.filemaker.schemas import SyncMetadataRead

SERVER_URL = "https://fm.example.com"
DATABASE = "GCLB"
BASE_PATH = f"/fmi/data/v1/databases/{DATABASE}"


# ── FileMaker response helpers ──────────────────────────────────────────────


def fm_body(response: dict[str, Any] | None = None, code: str = "0", message: str = "OK") -> dict:
    return {"response": response or {}, "messages": [{"code": code, "message": message}]}


def fm_ok(response: dict[str, Any] | None = None) -> tuple[int, dict]:
    return 200, fm_body(response)


def fm_error(code: str, message: str = "FileMaker error", status: int = 500) -> tuple[int, dict]:
    return status, fm_body({}, code, message)


def fm_records(*field_data: dict[str, Any], start_id: int = 1) -> tuple[int, dict]:
    """A records page with sequential recordIds."""
    data = [
        {"recordId": str(start_id + i), "modId": "1", "fieldData": fd, "portalData": {}}
        for i, fd in enumerate(field_data)
    ]
    return fm_ok({"data": data, "dataInfo": {"returnedCount": len(data)}})


# ── Fake shared state store ─────────────────────────────────────────────────


class FakeStateStore:
    """Dictionary-backed SharedStateStore with TTLs against a manual clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.fail = False
        self._data: dict[str, tuple[str, float | None]] = {}

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def ttl(self, key: str) -> float | None:
        entry = self._live(key)
        if entry is None or entry[1] is None:
            return None
        return entry[1] - self.now

    def _check(self) -> None:
        if self.fail:
            raise StateStoreError("store unavailable")

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] is not None and self.now >= entry[1]:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        self._check()
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self._check()
        expires = self.now + ttl_seconds if ttl_seconds else None
        self._data[key] = (str(value), expires)

    async def incr(self, key: str) -> int:
        self._check()
        entry = self._live(key)
        count = int(entry[0]) + 1 if entry else 1
        self._data[key] = (str(count), entry[1] if entry else None)
        return count

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        self._check()
        entry = self._live(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self.now + ttl_seconds)
        return True

    async def delete(self, key: str) -> int:
        self._check()
        return 1 if self._data.pop(key, None) is not None else 0


# ── Fake FileMaker Data API ─────────────────────────────────────────────────

Responder = tuple[int, dict] | Callable[[httpx.Request], Any]


class FakeFileMakerServer:
    """Routes requests by (method, path relative to the database root).

    POST sessions is answered automatically with token-1, token-2, ... unless
    a route overrides it. Each route holds a queue of responders; the last
    one repeats once the queue is drained.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.logins = 0

    def on(self, method: str, path: str, *responders: Responder) -> None:
        self.routes[(method.upper(), path)] = list(responders)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if (r.method, self._relative(r)) == (method.upper(), path)]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @staticmethod
    def _relative(request: httpx.Request) -> str:
        path = request.url.path
        prefix = BASE_PATH + "/"
        return path[len(prefix):] if path.startswith(prefix) else path

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, self._relative(request))

        if key == ("POST", "sessions") and key not in self.routes:
            self.logins += 1
            return httpx.Response(200, json=fm_body({"token": f"token-{self.logins}"}))

        queue = self.routes.get(key)
        if not queue:
            return httpx.Response(500, json=fm_body({}, "-1", f"unrouted {key}"))

        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        result = responder(request) if callable(responder) else responder
        if isinstance(result, httpx.Response):
            return result
        status, body = result
        return httpx.Response(status, json=body)


# ── In-memory portal repository ─────────────────────────────────────────────


class InMemoryPortalRepository:
    """LocalRepository test double holding rows as plain dicts."""

    def __init__(self) -> None:
        self.properties: dict[str, dict[str, Any]] = {}
        self.buyers: dict[str, dict[str, Any]] = {}
        self.programs: list[ProgramRead] = []
        self.submissions: dict[str, SubmissionDetail] = {}
        self.communications: dict[str, CommunicationDetail] = {}
        self.sync_metadata = SyncMetadataRead()

    def add_program(self, key: str, label: str) -> ProgramRead:
        program = ProgramRead(id=str(uuid.uuid4()), key=key, label=label)
        self.programs.append(program)
        return program

    @staticmethod
    def _property_read(row: dict[str, Any]) -> PropertyRead:
        return PropertyRead(
            id=row["id"],
            parcel_id=row["parcel_id"],
            address=row.get("address", ""),
            program_type=row.get("program_type"),
            status=row.get("status"),
            buyer_id=row.get("buyer_id"),
            program_id=row.get("program_id"),
            date_sold=row.get("date_sold"),
        )

    @staticmethod
    def _buyer_read(row: dict[str, Any]) -> BuyerRead:
        return BuyerRead(**{k: v for k, v in row.items() if k in BuyerRead.model_fields})

    def property_by_parcel(self, parcel_id: str) -> dict[str, Any] | None:
        for row in self.properties.values():
            if row["parcel_id"] == parcel_id:
                return row
        return None

    async def find_property_by_parcel_id(self, parcel_id: str) -> PropertyRead | None:
        row = self.property_by_parcel(parcel_id)
        return self._property_read(row) if row else None

    async def create_property(self, data: dict[str, Any]) -> PropertyRead:
        row = {"id": str(uuid.uuid4()), **data}
        self.properties[row["id"]] = row
        return self._property_read(row)

    async def update_property(self, property_id: str, data: dict[str, Any]) -> PropertyRead:
        row = self.properties[property_id]
        row.update(data)
        return self._property_read(row)

    async def count_properties(self) -> int:
        return len(self.properties)

    async def find_buyer_by_email(self, email: str) -> BuyerRead | None:
        for row in self.buyers.values():
            if row.get("email") == email:
                return self._buyer_read(row)
        return None

    async def create_buyer(self, data: dict[str, Any]) -> BuyerRead:
        row = {"id": str(uuid.uuid4()), **data}
        self.buyers[row["id"]] = row
        return self._buyer_read(row)

    async def update_buyer(self, buyer_id: str, data: dict[str, Any]) -> BuyerRead:
        row = self.buyers[buyer_id]
        row.update(data)
        return self._buyer_read(row)

    async def list_programs(self) -> list[ProgramRead]:
        return list(self.programs)

    async def get_submission_detail(self, submission_id: str) -> SubmissionDetail | None:
        return self.submissions.get(submission_id)

    async def get_communication_detail(
        self, communication_id: str
    ) -> CommunicationDetail | None:
        return self.communications.get(communication_id)

    async def get_sync_metadata(self) -> SyncMetadataRead:
        return self.sync_metadata

    async def save_sync_metadata(self, **changes: Any) -> SyncMetadataRead:
        self.sync_metadata = self.sync_metadata.model_copy(update=changes)
        return self.sync_metadata

    async def claim_sync(self) -> bool:
        if self.sync_metadata.status == "running":
            return False
        await self.save_sync_metadata(status="running", error_message=None)
        return True
