import json
import os
import tempfile
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["MEDIA_ROOT"] = os.path.join(tempfile.gettempdir(), "catalog-test-media")

import app.models  # noqa: F401
from app.api.deps import get_media_storage, get_search_index
from app.cache.store import InMemoryCacheStore
from app.core.exceptions import MediaUploadFailed
from app.core.security import create_access_token
from app.db.base_class import Base
from app.db.session import get_db
from app.main import app
from app.services.media_storage import MediaStorage
from app.services.search_index import SearchIndex

ADMIN_ID = 1
CUSTOMER_ID = 2
OTHER_CUSTOMER_ID = 3


class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMediaStorage(MediaStorage):
    def __init__(self):
        self.uploaded = []
        self.deleted = []
        self.fail_on_upload = None  # 1-based index of the upload that fails

    def upload(self, file) -> str:
        if self.fail_on_upload is not None and len(self.uploaded) + 1 >= self.fail_on_upload:
            raise MediaUploadFailed()
        url = f"/static/uploads/{uuid.uuid4().hex}-{file.filename}"
        self.uploaded.append(url)
        return url

    def delete(self, url: str) -> None:
        self.deleted.append(url)


class RecordingSearchIndex(SearchIndex):
    def __init__(self):
        self.documents = {}
        self.removed = []

    def upsert(self, document: dict) -> None:
        self.documents[document["id"]] = document

    def remove(self, product_id: int) -> None:
        self.documents.pop(product_id, None)
        self.removed.append(product_id)


def image_files(count: int):
    return [("images", (f"image-{idx}.png", b"not-really-a-png", "image/png")) for idx in range(count)]


def auth_headers(user_id: int, role: str) -> dict:
    token = create_access_token({"sub": str(user_id), "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache_store(clock: FakeClock) -> InMemoryCacheStore:
    return InMemoryCacheStore(clock=clock)


@pytest.fixture()
def media() -> FakeMediaStorage:
    return FakeMediaStorage()


@pytest.fixture()
def search_index() -> RecordingSearchIndex:
    return RecordingSearchIndex()


@pytest.fixture()
def client(
    db_session: Session,
    cache_store: InMemoryCacheStore,
    media: FakeMediaStorage,
    search_index: RecordingSearchIndex,
) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_media_storage] = lambda: media
    app.dependency_overrides[get_search_index] = lambda: search_index
    original_store = app.state.cache_store
    app.state.cache_store = cache_store
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.state.cache_store = original_store
    app.dependency_overrides.clear()


@pytest.fixture()
def admin_headers() -> dict:
    return auth_headers(ADMIN_ID, "admin")


@pytest.fixture()
def customer_headers() -> dict:
    return auth_headers(CUSTOMER_ID, "customer")


@pytest.fixture()
def other_customer_headers() -> dict:
    return auth_headers(OTHER_CUSTOMER_ID, "customer")


@pytest.fixture()
def make_category(client: TestClient, admin_headers: dict):
    def _make(name: str, type: str = "Main", parent_id: int = None, images: int = 2, expect: int = 201, **fields):
        data = {"name": name, "type": type}
        if parent_id is not None:
            data["parent_id"] = str(parent_id)
        data.update({key: str(value).lower() if isinstance(value, bool) else str(value) for key, value in fields.items()})
        response = client.post(
            "/api/v1/admin/categories",
            data=data,
            files=image_files(images),
            headers=admin_headers,
        )
        assert response.status_code == expect, response.text
        return response.json()["data"] if expect == 201 else response.json()

    return _make


@pytest.fixture()
def make_product(client: TestClient, admin_headers: dict, make_category):
    def _make(
        name: str = "Rose Serum",
        category_id: int = None,
        subcategory_id: int = None,
        variants: list = None,
        images: int = 1,
        expect: int = 201,
        **fields,
    ):
        if category_id is None:
            category_id = make_category(f"Shelf {uuid.uuid4().hex[:8]}")["id"]
        data = {
            "name": name,
            "category_id": str(category_id),
            "brand": "Glow Lab",
            "description": fields.pop("description", f"{name} for daily care"),
            "variants": json.dumps(
                variants or [{"size": "50ml", "color": "Pink", "price": 500.0, "stock_quantity": 10}]
            ),
        }
        if subcategory_id is not None:
            data["subcategory_id"] = str(subcategory_id)
        for key, value in fields.items():
            if isinstance(value, (list, dict)):
                data[key] = json.dumps(value)
            elif isinstance(value, bool):
                data[key] = str(value).lower()
            else:
                data[key] = str(value)
        response = client.post(
            "/api/v1/admin/products",
            data=data,
            files=image_files(images),
            headers=admin_headers,
        )
        assert response.status_code == expect, response.text
        return response.json()["data"] if expect == 201 else response.json()

    return _make
