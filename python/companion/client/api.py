"""Async HTTP client for the Companion API.

Wraps the user-facing routes with a shared httpx.AsyncClient:
- No retries (callers degrade to polling instead)
- No caching: every read goes to the canonical store
- Non-2xx responses raise ApiClientError carrying the server's error code

stream_events() parses Server-Sent Events from the /stream/* routes into
SseFrame values. Keepalive comments are dropped.
"""

import base64
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import httpx

from companion.schemas.chat import AccessOut, ChatOut, MessageOut

TokenProvider = Callable[[], Awaitable[str]]

# Largest page the server accepts
MESSAGE_PAGE_SIZE = 100


class ApiClientError(Exception):
    """A request the server rejected, or that never reached it."""

    def __init__(self, code: str, message: str, status_code: int | None = None):
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(f"{code}: {message}")


@dataclass
class SseFrame:
    event: str
    data: dict[str, Any] = field(default_factory=dict)


class CompanionApi:
    """Client for one signed-in user."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        http_client: httpx.AsyncClient,
    ):
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._client = http_client

    async def _headers(self) -> dict[str, str]:
        token = await self._token_provider()
        return {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method,
                f"{self._base_url}{path}",
                headers=await self._headers(),
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise ApiClientError("E_NETWORK", str(exc) or type(exc).__name__) from exc

        if response.is_success:
            return response.json()
        raise _error_from_response(response)

    async def list_chats(self) -> list[ChatOut]:
        body = await self._request("GET", "/chats")
        return [ChatOut.model_validate(c) for c in body["data"]]

    async def open_chat(self, profile_id: UUID) -> ChatOut:
        body = await self._request("POST", f"/profiles/{profile_id}/chat")
        return ChatOut.model_validate(body["data"])

    async def check_access(self, profile_id: UUID) -> AccessOut:
        body = await self._request("GET", f"/profiles/{profile_id}/access")
        return AccessOut.model_validate(body["data"])

    async def fetch_messages(self, chat_id: UUID) -> list[MessageOut]:
        """Fetch the full ordered message history of a chat.

        Follows next_cursor until the server reports no further page.
        """
        messages: list[MessageOut] = []
        cursor: str | None = None
        while True:
            params: dict[str, Any] = {"limit": MESSAGE_PAGE_SIZE}
            if cursor:
                params["cursor"] = cursor
            body = await self._request("GET", f"/chats/{chat_id}/messages", params=params)
            messages.extend(MessageOut.model_validate(m) for m in body["data"])
            cursor = body.get("page", {}).get("next_cursor")
            if not cursor:
                return messages

    async def send_text(self, chat_id: UUID, content: str) -> MessageOut:
        body = await self._request("POST", f"/chats/{chat_id}/messages", json={"content": content})
        return MessageOut.model_validate(body["data"])

    async def send_audio(self, chat_id: UUID, audio: bytes, mime_type: str) -> MessageOut:
        payload = {
            "audio_data": base64.b64encode(audio).decode("ascii"),
            "audio_type": mime_type,
        }
        body = await self._request("POST", f"/chats/{chat_id}/messages", json=payload)
        return MessageOut.model_validate(body["data"])

    async def stream_events(self, path: str, **params: Any) -> AsyncIterator[SseFrame]:
        """Open an SSE stream and yield its frames until the server closes it.

        Args:
            path: Route under the API base URL, e.g. /stream/me/events.
            **params: Query parameters (e.g. channel="typing").

        Raises:
            ApiClientError: If the stream could not be opened.
        """
        try:
            async with self._client.stream(
                "GET",
                f"{self._base_url}{path}",
                headers={**await self._headers(), "Accept": "text/event-stream"},
                params=params,
                timeout=httpx.Timeout(None, connect=10.0),
            ) as response:
                if not response.is_success:
                    await response.aread()
                    raise _error_from_response(response)

                async for frame in parse_sse_lines(response.aiter_lines()):
                    yield frame
        except httpx.HTTPError as exc:
            raise ApiClientError("E_NETWORK", str(exc) or type(exc).__name__) from exc

    def chat_events(self, chat_id: UUID, channel: str = "messages") -> AsyncIterator[SseFrame]:
        return self.stream_events(f"/stream/chats/{chat_id}/events", channel=channel)

    def my_events(self) -> AsyncIterator[SseFrame]:
        return self.stream_events("/stream/me/events")


async def parse_sse_lines(lines: AsyncIterator[str]) -> AsyncIterator[SseFrame]:
    """Group SSE lines into frames.

    A frame ends at a blank line. Comment lines (leading ':') and frames
    whose data is not a JSON object are skipped.
    """
    event = "message"
    data_lines: list[str] = []

    async for line in lines:
        if not line:
            if data_lines:
                try:
                    data = json.loads("\n".join(data_lines))
                except json.JSONDecodeError:
                    data = None
                if isinstance(data, dict):
                    yield SseFrame(event=event, data=data)
            event = "message"
            data_lines = []
            continue

        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event = line[6:].strip()
        elif line.startswith("data:"):
            data_lines.append(line[5:].lstrip())


def _error_from_response(response: httpx.Response) -> ApiClientError:
    code = f"E_HTTP_{response.status_code}"
    message = response.reason_phrase or "Request failed"
    try:
        error = response.json().get("error")
    except (json.JSONDecodeError, AttributeError, UnicodeDecodeError):
        error = None
    if isinstance(error, dict):
        code = error.get("code", code)
        message = error.get("message", message)
    return ApiClientError(code, message, response.status_code)
