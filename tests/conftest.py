import asyncio
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["LOCAL_STORAGE_DIR"] = tempfile.mkdtemp(prefix="bonsbras-storage-")
os.environ["OPENAI_API_KEY"] = ""

import io
from types import SimpleNamespace
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bonsbras.auth.security import create_access_token
from bonsbras.db import Base, get_db
from bonsbras.main import app
from bonsbras.models.models import User, ClientProfile, ProProfile
from bonsbras.services.assistant import RenovationAssistant, get_assistant
from bonsbras.storage.blob_provider import get_storage
from bonsbras.storage.provider import StorageProvider, StorageConflictError


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)


@event.listens_for(engine, "connect")
def _fk_pragma(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class FakeStorage(StorageProvider):
    """In-memory storage; ``fail_on`` makes the n-th upload (1-based) raise."""

    name = "fake"

    def __init__(self, fail_on: Optional[int] = None):
        self.objects = {}
        self.deleted = []
        self.fail_on = fail_on
        self.upload_calls = 0
        self.uploads_on_loop = []

    def upload(self, bucket, path, data, content_type, upsert=False):
        self.upload_calls += 1
        self.uploads_on_loop.append(on_event_loop())
        if self.fail_on is not None and self.upload_calls == self.fail_on:
            raise IOError("storage unavailable")
        if (bucket, path) in self.objects and not upsert:
            raise StorageConflictError(f"{bucket}/{path} already exists")
        self.objects[(bucket, path)] = (data, content_type)
        return f"https://files.test/{bucket}/{path}"

    def get_public_url(self, bucket, path):
        return f"https://files.test/{bucket}/{path}" if (bucket, path) in self.objects else None

    def exists(self, bucket, path):
        return (bucket, path) in self.objects

    def delete(self, bucket, path):
        self.deleted.append((bucket, path))
        self.objects.pop((bucket, path), None)


class FakeOpenAI:
    """Stands in for the openai client: records calls, returns canned responses."""

    def __init__(self, content="Conseil: peignez les murs en blanc.", edit_url="https://images.test/edited.png", error=None):
        self.calls = []
        self.calls_on_loop = []
        self.content = content
        self.edit_url = edit_url
        self.error = error
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self.images = SimpleNamespace(edit=self._edit)

    def _create(self, **kwargs):
        self.calls.append(("chat", kwargs))
        self.calls_on_loop.append(on_event_loop())
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    def _edit(self, **kwargs):
        self.calls.append(("edit", kwargs))
        if self.error is not None:
            raise self.error
        data = [SimpleNamespace(url=self.edit_url)] if self.edit_url else []
        return SimpleNamespace(data=data)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def openai_client():
    return FakeOpenAI()


@pytest.fixture
def client(db, storage, openai_client):
    def _get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_assistant] = lambda: RenovationAssistant(client=openai_client)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_user(db, email: str, role: Optional[str] = None) -> User:
    user = User(email=email, user_metadata={"role": role} if role else {})
    db.add(user)
    db.flush()
    return user


def make_client(db, email: str = "client@example.com", full_name: str = "Camille Client") -> User:
    user = make_user(db, email, role="client")
    db.add(ClientProfile(user_id=user.id, full_name=full_name, email=email))
    db.commit()
    return user


def make_pro(db, email: str = "pro@example.com", onboarded: bool = True, **fields) -> User:
    user = make_user(db, email, role="professional")
    defaults = dict(
        full_name="Paul Pro",
        company_name="Rénovations Paul",
        specialties=["general_contractor"],
        onboarding_complete=onboarded,
    )
    defaults.update(fields)
    db.add(ProProfile(user_id=user.id, email=email, **defaults))
    db.commit()
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


def png_bytes(size=(64, 48), color=(200, 180, 160)) -> bytes:
    out = io.BytesIO()
    Image.new("RGB", size, color).save(out, format="PNG")
    return out.getvalue()
