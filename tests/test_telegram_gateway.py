import re

import httpx
import pytest

from models.gateway_models import EndpointRule, UploadState
from services.telegram_gateway import (
    DEFAULT_RULE,
    TelegramGateway,
    classify_content_type,
    extract_file_descriptor,
)
from utils.exceptions import FetchError, GatewayError

TOKEN = "123:abc"
API = "https://api.telegram.test"


def _multipart_fields(request: httpx.Request) -> dict:
    """Split an httpx multipart body into {field name: bytes}."""
    boundary = re.search(r"boundary=([^;]+)", request.headers["content-type"]).group(1).encode()
    fields = {}
    for part in request.content.split(b"--" + boundary):
        if b"\r\n\r\n" not in part:
            continue
        head, _, body = part.partition(b"\r\n\r\n")
        name = re.search(rb'name="([^"]+)"', head)
        if name:
            fields[name.group(1).decode()] = body[:-2] if body.endswith(b"\r\n") else body
    return fields


class FakeBotApi:
    """Minimal bot API: send* stores the file, getFile resolves, /file serves bytes."""

    def __init__(self, photo_sizes=(100, 900, 400), resolvable=True, send_status=200):
        self.photo_sizes = photo_sizes
        self.resolvable = resolvable
        self.send_status = send_status
        self.stored = {}
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith(f"/file/bot{TOKEN}/"):
            file_path = path[len(f"/file/bot{TOKEN}/"):]
            if file_path not in self.stored:
                return httpx.Response(404)
            return httpx.Response(200, content=self.stored[file_path], headers={"content-type": "application/octet-stream"})

        method = path.rsplit("/", 1)[-1]
        if method == "getFile":
            file_id = request.url.params["file_id"]
            if not self.resolvable:
                return httpx.Response(400, json={"ok": False, "description": "Bad Request: invalid file_id"})
            return httpx.Response(200, json={"ok": True, "result": {"file_id": file_id, "file_path": f"stored/{file_id}.jpg"}})

        if self.send_status != 200:
            return httpx.Response(self.send_status, json={"ok": False, "description": "Too Many Requests"})

        fields = _multipart_fields(request)
        result = {"message_id": 55, "chat": {"id": int(fields["chat_id"])}}
        if method == "sendPhoto":
            result["photo"] = [
                {"file_id": f"photo-{size}", "file_unique_id": f"u{size}", "file_size": size} for size in self.photo_sizes
            ]
            for size in self.photo_sizes:
                self.stored[f"stored/photo-{size}.jpg"] = fields["photo"]
        elif method == "sendDocument":
            result["document"] = {"file_id": "doc-1", "file_unique_id": "udoc", "file_name": "report.pdf"}
            self.stored["stored/doc-1.jpg"] = fields["document"]
        return httpx.Response(200, json={"ok": True, "result": result})


def _gateway(api: FakeBotApi, token=TOKEN, chat_id="-100123") -> TelegramGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(api))
    return TelegramGateway(token, chat_id, api_base=API, client=client)


@pytest.mark.parametrize(
    "content_type, endpoint, field_name",
    [
        ("image/png", "sendPhoto", "photo"),
        ("IMAGE/JPEG", "sendPhoto", "photo"),
        ("video/mp4", "sendVideo", "video"),
        ("audio/ogg", "sendAudio", "audio"),
        ("application/pdf", "sendDocument", "document"),
        ("application/zip", "sendDocument", "document"),
        (None, "sendDocument", "document"),
    ],
)
def test_classify_content_type(content_type, endpoint, field_name):
    rule = classify_content_type(content_type)
    assert (rule.endpoint, rule.field_name) == (endpoint, field_name)


def test_classification_rules_are_data_driven():
    rules = (EndpointRule("image/gif", "sendAnimation", "animation"),)
    assert classify_content_type("image/gif", rules).endpoint == "sendAnimation"
    assert classify_content_type("image/png", rules) == DEFAULT_RULE


def test_largest_photo_variant_wins_and_ties_keep_first():
    payload = {
        "ok": True,
        "result": {
            "photo": [
                {"file_id": "small", "file_unique_id": "s", "file_size": 10},
                {"file_id": "big-a", "file_unique_id": "a", "file_size": 50},
                {"file_id": "big-b", "file_unique_id": "b", "file_size": 50},
            ]
        },
    }
    descriptor = extract_file_descriptor(payload)
    assert descriptor.file_id == "big-a"
    assert descriptor.file_name == "a"


def test_no_descriptor_for_failed_or_empty_response():
    assert extract_file_descriptor({"ok": False}) is None
    assert extract_file_descriptor({"ok": True, "result": {"text": "hi"}}) is None


@pytest.mark.asyncio
async def test_upload_photo_resolves_largest_variant():
    api = FakeBotApi()
    gateway = _gateway(api)

    result = await gateway.upload(b"\x89PNG-bytes", "image/png", "cat.png", caption="hello")

    assert result.ok is True
    assert result.state is UploadState.RESOLVED
    assert (result.endpoint, result.field_name) == ("sendPhoto", "photo")
    assert result.file_id == "photo-900"
    assert result.file_path == "stored/photo-900.jpg"
    assert result.message_id == 55
    assert result.chat_id == "-100123"
    assert result.linkage.tg_file_name == "u900"

    send = api.requests[0]
    fields = _multipart_fields(send)
    assert send.url.path == f"/bot{TOKEN}/sendPhoto"
    assert fields["photo"] == b"\x89PNG-bytes"
    assert fields["caption"] == b"hello"
    assert api.requests[1].url.path == f"/bot{TOKEN}/getFile"


@pytest.mark.asyncio
async def test_upload_keeps_handle_when_resolution_fails():
    gateway = _gateway(FakeBotApi(resolvable=False))

    result = await gateway.upload(b"data", "application/pdf", "report.pdf")

    assert result.ok is True
    assert result.state is UploadState.RESOLVE_FAILED
    assert result.file_id == "doc-1"
    assert result.file_path is None
    assert result.file.file_name == "report.pdf"


@pytest.mark.asyncio
async def test_upload_non_2xx_reports_failure():
    gateway = _gateway(FakeBotApi(send_status=429))

    result = await gateway.upload(b"data", "image/png", "cat.png")

    assert result.ok is False
    assert result.state is UploadState.FAILED_TRANSPORT
    assert result.file_id is None
    assert "Too Many Requests" in result.error


@pytest.mark.asyncio
async def test_upload_without_handle_reports_no_handle():
    def handler(request):
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 1, "chat": {"id": 1}}})

    gateway = TelegramGateway(TOKEN, "1", api_base=API, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    result = await gateway.upload(b"data", "image/png", "cat.png")

    assert result.ok is True
    assert result.state is UploadState.FAILED_NO_HANDLE
    assert result.file_id is None


@pytest.mark.asyncio
async def test_malformed_result_payloads_are_tolerated():
    def handler(request):
        return httpx.Response(200, json={"ok": True, "result": ["not", "an", "object"]})

    gateway = TelegramGateway(TOKEN, "1", api_base=API, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    result = await gateway.upload(b"data", "image/png", "cat.png")

    assert result.state is UploadState.FAILED_NO_HANDLE
    assert result.message_id is None
    assert result.chat_id == ""
    assert await gateway.resolve_file_path("abc") is None


@pytest.mark.asyncio
async def test_upload_requires_credentials():
    api = FakeBotApi()
    with pytest.raises(GatewayError) as missing_token:
        await _gateway(api, token=None).upload(b"x", "image/png")
    with pytest.raises(GatewayError) as missing_chat:
        await _gateway(api, chat_id=None).upload(b"x", "image/png")

    assert missing_token.value.retryable is False
    assert missing_chat.value.retryable is False
    assert api.requests == []


@pytest.mark.asyncio
async def test_upload_transport_error_is_retryable_gateway_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    gateway = TelegramGateway(TOKEN, "1", api_base=API, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    with pytest.raises(GatewayError) as excinfo:
        await gateway.upload(b"x", "image/png")
    assert excinfo.value.retryable is True


@pytest.mark.asyncio
async def test_resolve_file_path_returns_none_when_api_has_no_path():
    gateway = _gateway(FakeBotApi(resolvable=False))
    assert await gateway.resolve_file_path("whatever") is None


@pytest.mark.asyncio
async def test_resolve_file_path_is_repeatable():
    api = FakeBotApi()
    gateway = _gateway(api)

    first = await gateway.resolve_file_path("abc")
    second = await gateway.resolve_file_path("abc")

    assert first == second == "stored/abc.jpg"
    assert api.requests[0].url.params["file_id"] == "abc"


def test_build_fetch_url_is_pure():
    gateway = TelegramGateway(TOKEN, None, api_base=API, client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))))
    assert gateway.build_fetch_url("photos/file_1.jpg") == f"{API}/file/bot{TOKEN}/photos/file_1.jpg"


@pytest.mark.asyncio
async def test_download_returns_bytes_and_guesses_type():
    api = FakeBotApi()
    api.stored["photos/a.jpg"] = b"jpeg-bytes"
    gateway = _gateway(api)

    downloaded = await gateway.download("photos/a.jpg")

    assert downloaded.content == b"jpeg-bytes"
    assert downloaded.content_type == "image/jpeg"


@pytest.mark.asyncio
async def test_download_failure_raises_fetch_error():
    gateway = _gateway(FakeBotApi())
    with pytest.raises(FetchError):
        await gateway.download("photos/missing.jpg")


def test_multipart_helper_sanity():
    request = httpx.Request("POST", "https://x.test", data={"chat_id": "1"}, files={"photo": ("a.png", b"\r\nraw\r\n", "image/png")})
    request.read()
    assert _multipart_fields(request) == {"chat_id": b"1", "photo": b"\r\nraw\r\n"}
