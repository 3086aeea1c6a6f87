"""Shared fixtures: throwaway SQLite database, mock storage, console mailer."""

import os
import uuid
from pathlib import Path
from typing import Generator

TEST_DB_PATH = Path(__file__).parent / "test_senditfast.db"

# Settings are read at import time, so the environment goes first.
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["STORAGE_BACKEND"] = "mock"
os.environ.pop("MOCK_STORAGE", None)
os.environ["EMAIL_BACKEND"] = "console"
os.environ["EMAIL_RETRY_BACKOFF_SECS"] = "0"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["CRON_SECRET"] = ""
os.environ["PUBLIC_BASE_URL"] = "https://send.example.com"

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import senditfast.models  # noqa: F401
from senditfast.core.database import Base, SessionLocal
from senditfast.core.security import create_access_token
from senditfast.main import app
from senditfast.models.branding import Branding
from senditfast.models.user import User
from senditfast.storage.mock_gateway import MockStorageGateway

sync_engine = create_engine(f"sqlite:///{TEST_DB_PATH}", connect_args={"check_same_thread": False})


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_database() -> Generator[None, None, None]:
    yield
    sync_engine.dispose()
    for suffix in ("", "-wal", "-shm"):
        path = Path(f"{TEST_DB_PATH}{suffix}")
        if path.exists():
            path.unlink()


@pytest.fixture(autouse=True)
def reset_schema() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=sync_engine)
    Base.metadata.create_all(bind=sync_engine)
    yield


@pytest.fixture()
def make_user():
    """Insert a user and return its id."""
    def _make(plan: str = "FREE", is_admin: bool = False, name: str | None = None, branding: dict | None = None) -> str:
        user_id = str(uuid.uuid4())
        with Session(sync_engine) as session:
            session.add(User(
                id=user_id,
                email=f"{user_id[:8]}@example.com",
                name=name,
                plan=plan,
                is_admin=is_admin,
                is_active=True,
            ))
            if branding:
                session.flush()
                session.add(Branding(user_id=user_id, **branding))
            session.commit()
        return user_id

    return _make


@pytest.fixture()
def sync_session() -> Generator[Session, None, None]:
    with Session(sync_engine) as session:
        yield session


def auth_headers(user_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest.fixture()
def headers_for():
    return auth_headers


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def storage() -> MockStorageGateway:
    return MockStorageGateway()


@pytest_asyncio.fixture()
async def db():
    async with SessionLocal() as session:
        yield session


async def _single_chunk(data: bytes):
    yield data


@pytest.fixture()
def upload_completed():
    """Run a whole multipart upload against the mock backend; returns the storage key."""
    import httpx

    from senditfast.services import uploads
    from senditfast.services.relay import relay_part
    from senditfast.storage.base import CompletedPart

    async def _upload(db, storage, owner, data: bytes, name: str = "report.pdf",
                      content_type: str = "application/pdf", part_size: int = 5) -> str:
        created = await uploads.create_upload(db, storage, owner, name, len(data), content_type, part_size=part_size)
        parts = []
        async with httpx.AsyncClient(transport=storage.http_transport()) as http:
            for r in uploads.part_ranges(len(data), part_size):
                chunk = data[r.start:r.end]
                etag = await relay_part(http, created["partUrls"][r.part_number - 1], r.part_number,
                                        _single_chunk(chunk), len(chunk))
                parts.append(CompletedPart(r.part_number, etag))
        await uploads.complete_upload(db, storage, owner, created["uploadId"], created["key"], parts)
        return created["key"]

    return _upload


@pytest.fixture()
def make_transfer():
    """Upload files through the HTTP API and bundle them into a transfer; returns the create response."""
    def _make(client: TestClient, headers: dict, files: dict[str, bytes] | None = None, **extra) -> dict:
        files = files or {"notes.txt": b"hello world"}
        entries = []
        for name, data in files.items():
            created = client.post(
                "/upload/create",
                json={"fileName": name, "fileSize": len(data), "contentType": "text/plain"},
                headers=headers,
            ).json()
            relayed = client.post(
                "/upload/parts",
                headers=headers,
                data={
                    "partUrl": created["partUrls"][0],
                    "partNumber": "1",
                    "uploadId": created["uploadId"],
                    "key": created["key"],
                },
                files={"file": (name, data, "application/octet-stream")},
            ).json()
            completed = client.post(
                "/upload/complete",
                headers=headers,
                json={
                    "uploadId": created["uploadId"],
                    "key": created["key"],
                    "parts": [{"PartNumber": 1, "ETag": relayed["etag"]}],
                },
            )
            assert completed.status_code == 200, completed.text
            entries.append({"key": created["key"], "name": name, "size_bytes": len(data), "content_type": "text/plain"})

        response = client.post("/transfers/create", headers=headers, json={"files": entries, **extra})
        assert response.status_code == 200, response.text
        return response.json()

    return _make
