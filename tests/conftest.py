"""Shared fixtures: temporary database, in-memory file gateway and API client."""

import io
from typing import Dict, Optional, Set, Tuple

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from controllers.ingestion_controller import ImageIngestor
from controllers.retrieval_controller import ImageResolver
from dal.image_dal import ImageDAL
from main import create_app
from models.gateway_models import DownloadedFile, FileDescriptor, UploadResult, UploadState
from services.task_runner import DetachedTaskRunner
from services.telegram_gateway import classify_content_type
from services.thumbnail_generator import ThumbnailGenerator
from utils.database_init import AsyncDatabaseInitializer
from utils.exceptions import FetchError, GatewayError
from utils.settings import Settings


class FakeGateway:
    """In-memory stand-in for `TelegramGateway` that counts every call."""

    bot_token = "test-token"

    def __init__(self) -> None:
        self.paths: Dict[str, Tuple[bytes, str]] = {}
        self.file_paths: Dict[str, str] = {}
        self.upload_calls = 0
        self.resolve_calls = 0
        self.download_calls = 0
        self.fail_on_uploads: Set[int] = set()
        self.resolve_on_upload = True
        self.resolvable = True
        self.resolve_error: Optional[Exception] = None
        self.download_error: Optional[Exception] = None

    async def upload(self, content, content_type, filename="file", caption=None) -> UploadResult:
        self.upload_calls += 1
        rule = classify_content_type(content_type)
        if self.upload_calls in self.fail_on_uploads:
            return UploadResult(
                ok=False,
                state=UploadState.FAILED_TRANSPORT,
                endpoint=rule.endpoint,
                field_name=rule.field_name,
                error="Bad Request: simulated failure",
            )

        file_id = f"file-{self.upload_calls}"
        path = f"photos/file_{self.upload_calls}.png"
        self.paths[path] = (bytes(content), content_type)
        self.file_paths[file_id] = path
        return UploadResult(
            ok=True,
            state=UploadState.RESOLVED if self.resolve_on_upload else UploadState.RESOLVE_FAILED,
            endpoint=rule.endpoint,
            field_name=rule.field_name,
            chat_id="-100",
            message_id=100 + self.upload_calls,
            file=FileDescriptor(file_id=file_id, file_name=f"tg_{self.upload_calls}"),
            file_path=path if self.resolve_on_upload else None,
        )

    async def resolve_file_path(self, file_id: str) -> Optional[str]:
        self.resolve_calls += 1
        if self.resolve_error is not None:
            raise self.resolve_error
        if not self.resolvable:
            return None
        return self.file_paths.get(file_id)

    def build_fetch_url(self, path: str) -> str:
        return f"https://files.example.test/{path}"

    async def download(self, path: str) -> DownloadedFile:
        self.download_calls += 1
        if self.download_error is not None:
            raise self.download_error
        if path not in self.paths:
            raise FetchError("Failed to fetch file: HTTP 404")
        content, content_type = self.paths[path]
        return DownloadedFile(content=content, content_type=content_type)

    async def aclose(self) -> None:
        return None

    @property
    def total_calls(self) -> int:
        return self.upload_calls + self.resolve_calls + self.download_calls


class CountingDAL(ImageDAL):
    """ImageDAL that records how many write calls were made."""

    def __init__(self, db_initializer) -> None:
        super().__init__(db_initializer)
        self.insert_calls = 0

    async def insert(self, record):
        self.insert_calls += 1
        return await super().insert(record)


def png_bytes(size=(32, 24), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png():
    return png_bytes()


@pytest.fixture
def db_initializer(tmp_path):
    return AsyncDatabaseInitializer(tmp_path / "db")


@pytest.fixture
def image_dal(db_initializer):
    return CountingDAL(db_initializer)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def task_runner():
    return DetachedTaskRunner()


@pytest.fixture
def ingestor(image_dal, gateway, task_runner):
    return ImageIngestor(image_dal, gateway, task_runner, thumbnails=ThumbnailGenerator())


@pytest.fixture
def resolver(image_dal, gateway, task_runner):
    return ImageResolver(image_dal, gateway, task_runner)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_dir=str(tmp_path / "api-db"),
        tg_bot_token="test-token",
        tg_chat_id="-100",
        admin_username="admin",
        admin_password="s3cret",
        login_max_attempts=3,
    )


@pytest.fixture
def client(settings, gateway):
    app = create_app(settings=settings, gateway=gateway)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def gateway_error():
    return GatewayError("getFile request failed: timed out", retryable=True)
