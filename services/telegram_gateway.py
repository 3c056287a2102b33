"""External file gateway backed by the Telegram Bot API.

Files are stored by sending them to a chat; the API answers with an opaque
`file_id` which a second `getFile` call turns into a path on the bot file
server. Fetch URLs embed the bot token, so they are built on demand and never
logged.
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Any, Dict, Optional, Sequence
from urllib.parse import quote

import httpx

from models.gateway_models import DownloadedFile, EndpointRule, FileDescriptor, UploadResult, UploadState
from utils.exceptions import FetchError, GatewayError

LOGGER = logging.getLogger(__name__)

# Evaluated first-match against the lower-cased MIME type.
ENDPOINT_RULES: Sequence[EndpointRule] = (
    EndpointRule("image/", "sendPhoto", "photo"),
    EndpointRule("video/", "sendVideo", "video"),
    EndpointRule("audio/", "sendAudio", "audio"),
    EndpointRule("application/pdf", "sendDocument", "document"),
)
DEFAULT_RULE = EndpointRule("", "sendDocument", "document")

# Single-descriptor message keys, checked in order after `photo`.
_SINGLE_FILE_KEYS = ("video", "audio", "document", "animation")

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)


def classify_content_type(content_type: Optional[str], rules: Sequence[EndpointRule] = ENDPOINT_RULES) -> EndpointRule:
    """Return the upload rule for `content_type`, defaulting to documents."""
    ct = (content_type or "").lower()
    for rule in rules:
        if rule.matches(ct):
            return rule
    return DEFAULT_RULE


def extract_file_descriptor(payload: Dict[str, Any]) -> Optional[FileDescriptor]:
    """Pull the stored file descriptor out of a send* response.

    Photos come back as several size variants; the largest `file_size` wins
    and equal sizes keep the first occurrence.
    """
    if not isinstance(payload, dict) or not payload.get("ok"):
        return None
    result = payload.get("result")
    if not isinstance(result, dict):
        return None

    photos = result.get("photo")
    if isinstance(photos, list) and photos:
        variants = [p for p in photos if isinstance(p, dict) and p.get("file_id")]
        if variants:
            largest = max(variants, key=lambda p: p.get("file_size") or 0)
            return _descriptor(largest)

    for key in _SINGLE_FILE_KEYS:
        item = result.get(key)
        if isinstance(item, dict) and item.get("file_id"):
            return _descriptor(item)
    return None


def _descriptor(item: Dict[str, Any]) -> FileDescriptor:
    return FileDescriptor(
        file_id=str(item["file_id"]),
        file_name=item.get("file_name") or item.get("file_unique_id"),
    )


class TelegramGateway:
    """Move bytes to and from the bot API file storage.

    Args:
        bot_token: Bot credential; required for every network call.
        chat_id: Chat receiving uploads; required for `upload`.
        api_base: Base URL of the bot API.
        timeout: Seconds allowed for each outbound request.
        client: Optional preconfigured `httpx.AsyncClient` (tests inject one
            with a mock transport). A client created here is closed by `aclose`.
    """

    def __init__(
        self,
        bot_token: Optional[str],
        chat_id: Optional[str],
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_base = api_base.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": _USER_AGENT},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _require_token(self) -> str:
        if not self.bot_token:
            raise GatewayError("TG_BOT_TOKEN is not set")
        return self.bot_token

    def _method_url(self, method: str) -> str:
        return f"{self.api_base}/bot{self._require_token()}/{method}"

    async def upload(
        self,
        content: bytes,
        content_type: Optional[str],
        filename: str = "file",
        caption: Optional[str] = None,
    ) -> UploadResult:
        """Send `content` to the storage chat and resolve the resulting handle.

        Raises:
            GatewayError: Credentials are missing, or the request could not be
                sent at all (`retryable=True`).
        """
        self._require_token()
        if not self.chat_id:
            raise GatewayError("TG_CHAT_ID is not set")

        rule = classify_content_type(content_type)
        data = {"chat_id": self.chat_id}
        if caption:
            data["caption"] = caption
        files = {rule.field_name: (filename, content, content_type or "application/octet-stream")}

        def _result(state: UploadState, **kwargs: Any) -> UploadResult:
            return UploadResult(
                ok=kwargs.pop("ok", False),
                state=state,
                endpoint=rule.endpoint,
                field_name=rule.field_name,
                **kwargs,
            )

        try:
            response = await self._client.post(self._method_url(rule.endpoint), data=data, files=files)
        except httpx.HTTPError as exc:
            LOGGER.error("Upload via %s failed to send: %s", rule.endpoint, exc)
            raise GatewayError(f"Failed to send file to {rule.endpoint}: {exc}", retryable=True) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        if response.is_error or not payload.get("ok"):
            description = payload.get("description") or f"HTTP {response.status_code}"
            LOGGER.warning("Upload via %s rejected: %s", rule.endpoint, description)
            return _result(UploadState.FAILED_TRANSPORT, error=str(description), raw=payload)

        result = payload.get("result")
        if not isinstance(result, dict):
            result = {}
        message_id = result.get("message_id")
        chat = result.get("chat")
        if not isinstance(chat, dict):
            chat = {}
        common = {
            "ok": True,
            "chat_id": str(chat["id"]) if chat.get("id") is not None else "",
            "message_id": message_id if isinstance(message_id, int) else None,
            "raw": payload,
        }

        descriptor = extract_file_descriptor(payload)
        if descriptor is None:
            LOGGER.warning("Upload via %s returned no file descriptor", rule.endpoint)
            return _result(UploadState.FAILED_NO_HANDLE, error="No file descriptor in response", **common)

        try:
            file_path = await self.resolve_file_path(descriptor.file_id)
        except GatewayError as exc:
            LOGGER.warning("Resolving uploaded file %s failed: %s", descriptor.file_id, exc)
            file_path = None

        state = UploadState.RESOLVED if file_path else UploadState.RESOLVE_FAILED
        LOGGER.info("Uploaded %s via %s (%s)", filename, rule.endpoint, state.value)
        return _result(state, file=descriptor, file_path=file_path, **common)

    async def resolve_file_path(self, file_id: str) -> Optional[str]:
        """Turn an opaque file id into a path on the file server.

        Returns None when the API reports no path.

        Raises:
            GatewayError: The token is missing, or the request failed at the
                transport level (`retryable=True`).
        """
        url = self._method_url("getFile")
        try:
            response = await self._client.get(url, params={"file_id": file_id})
        except httpx.HTTPError as exc:
            raise GatewayError(f"getFile request failed: {exc}", retryable=True) from exc

        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict) or not payload.get("ok"):
            LOGGER.debug("getFile reported no path for %s", file_id)
            return None
        result = payload.get("result")
        file_path = result.get("file_path") if isinstance(result, dict) else None
        return str(file_path) if file_path else None

    def build_fetch_url(self, path: str) -> str:
        """Compose the absolute download URL for `path`. No I/O."""
        return f"{self.api_base}/file/bot{self._require_token()}/{quote(path.lstrip('/'), safe='/')}"

    async def download(self, path: str) -> DownloadedFile:
        """Fetch the bytes stored at `path`.

        Raises:
            FetchError: On any transport failure or non-2xx answer.
        """
        url = self.build_fetch_url(path)
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            LOGGER.error("Download of %s failed with HTTP %s", path, exc.response.status_code)
            raise FetchError(f"Failed to fetch file: HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            LOGGER.error("Download of %s failed: %s", path, exc)
            raise FetchError(f"Failed to fetch file: {exc}") from exc

        content_type = response.headers.get("content-type")
        if content_type:
            content_type = content_type.split(";", 1)[0].strip()
        if not content_type or content_type == "application/octet-stream":
            content_type = mimetypes.guess_type(path)[0] or content_type
        return DownloadedFile(content=response.content, content_type=content_type)
