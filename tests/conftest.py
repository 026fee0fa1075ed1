import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from healthmate.ai_client import AnalysisResult
from healthmate.auth import get_password_hash
from healthmate.database import get_db
from healthmate.dependencies import get_analysis_queue, get_storage
from healthmate.exceptions import StorageError
from healthmate.main import app
from healthmate.models import Base, User
from healthmate.pipeline import AnalysisQueue
from healthmate.schemas import AiSummary
from healthmate.storage import StoredFile

SAMPLE_SUMMARY = AiSummary(
    english="Your blood test looks mostly normal. Vitamin D is slightly low.",
    secondary_language="Aap ka blood test zyada tar normal hai.",
    key_findings=["Hemoglobin within range", "Vitamin D slightly low"],
    abnormal_values=["Vitamin D: 18 ng/mL (low)"],
    recommendations=["Spend some time in sunlight"],
    doctor_questions=["Do I need vitamin D supplements?"],
)


class FakeStorage:
    name = "fake"

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_delete = False

    def upload(self, content: bytes, original_name: str, content_type: str) -> StoredFile:
        public_id = f"healthmate/reports/test_{len(self.files) + 1}"
        self.files[public_id] = content
        return StoredFile(public_id=public_id, url=f"https://files.test/{public_id}", filename=public_id.rsplit("/", 1)[-1])

    def delete(self, public_id: str) -> None:
        if self.fail_delete:
            raise StorageError("storage provider unreachable")
        self.deleted.append(public_id)
        self.files.pop(public_id, None)


class FakeAnalyzer:
    def __init__(self, result: AnalysisResult | None = None):
        self.result = result or AnalysisResult(success=True, data=SAMPLE_SUMMARY, raw_response="raw", model="test-model")
        self.calls: list[tuple[str, str | None]] = []

    async def __call__(self, file_url: str, mime_hint: str | None) -> AnalysisResult:
        self.calls.append((file_url, mime_hint))
        return self.result


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db):
    user = User(name="Ayesha Khan", email="ayesha@example.com", hashed_password=get_password_hash("secret123"))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def queue(session_factory, analyzer):
    return AnalysisQueue(session_factory, analyzer=analyzer, timeout=5)


@pytest.fixture
def client(session_factory, storage, queue):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_analysis_queue] = lambda: queue
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client, email="patient@example.com", password="secret123", name="Test Patient"):
    response = client.post("/auth/register", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['data']['token']}"}


@pytest.fixture
def auth_headers(client):
    return register(client)
