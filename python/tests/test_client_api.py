"""Tests for the async API client (HTTP mocked with respx)."""

import base64
import json
from uuid import uuid4

import httpx
import pytest
import respx

from companion.client.api import ApiClientError, CompanionApi, SseFrame, parse_sse_lines
from companion.db.models import utcnow

BASE_URL = "https://api.companion.test"


async def _token() -> str:
    return "user-token"


def _message(chat_id, seq: int, sender_type: str = "ai") -> dict:
    return {
        "id": str(uuid4()),
        "chat_id": str(chat_id),
        "seq": seq,
        "sender_type": sender_type,
        "message_type": "text",
        "content": f"m{seq}",
        "created_at": utcnow().isoformat(),
    }


async def _lines(*lines: str):
    for line in lines:
        yield line


async def _collect(frames) -> list[SseFrame]:
    return [frame async for frame in frames]


class TestRequests:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_follows_cursor(self):
        chat_id = uuid4()
        route = respx.get(f"{BASE_URL}/chats/{chat_id}/messages").mock(
            side_effect=[
                httpx.Response(
                    200,
                    json={"data": [_message(chat_id, 1)], "page": {"next_cursor": "c1"}},
                ),
                httpx.Response(
                    200,
                    json={"data": [_message(chat_id, 2)], "page": {"next_cursor": None}},
                ),
            ]
        )

        async with httpx.AsyncClient() as http:
            messages = await CompanionApi(BASE_URL, _token, http).fetch_messages(chat_id)

        assert [m.seq for m in messages] == [1, 2]
        assert route.calls[0].request.headers["authorization"] == "Bearer user-token"
        assert "cursor" not in route.calls[0].request.url.params
        assert route.calls[1].request.url.params["cursor"] == "c1"

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_envelope_raised(self):
        chat_id = uuid4()
        respx.post(f"{BASE_URL}/chats/{chat_id}/messages").mock(
            return_value=httpx.Response(
                403,
                json={"error": {"code": "E_ACCESS_DENIED", "message": "No access"}},
            )
        )

        async with httpx.AsyncClient() as http:
            with pytest.raises(ApiClientError) as exc_info:
                await CompanionApi(BASE_URL, _token, http).send_text(chat_id, "hi")

        assert exc_info.value.code == "E_ACCESS_DENIED"
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_json_error(self):
        respx.get(f"{BASE_URL}/chats").mock(return_value=httpx.Response(502, text="Bad gateway"))

        async with httpx.AsyncClient() as http:
            with pytest.raises(ApiClientError) as exc_info:
                await CompanionApi(BASE_URL, _token, http).list_chats()

        assert exc_info.value.code == "E_HTTP_502"

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_failure(self):
        respx.get(f"{BASE_URL}/chats").mock(side_effect=httpx.ConnectError("refused"))

        async with httpx.AsyncClient() as http:
            with pytest.raises(ApiClientError) as exc_info:
                await CompanionApi(BASE_URL, _token, http).list_chats()

        assert exc_info.value.code == "E_NETWORK"

    @pytest.mark.asyncio
    @respx.mock
    async def test_send_audio_encodes_base64(self):
        chat_id = uuid4()
        route = respx.post(f"{BASE_URL}/chats/{chat_id}/messages").mock(
            return_value=httpx.Response(201, json={"data": _message(chat_id, 1, "user")})
        )

        async with httpx.AsyncClient() as http:
            api = CompanionApi(BASE_URL, _token, http)
            await api.send_audio(chat_id, b"\x00\x01", "audio/webm")

        body = json.loads(route.calls.last.request.content)
        assert body == {
            "audio_data": base64.b64encode(b"\x00\x01").decode(),
            "audio_type": "audio/webm",
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_check_access(self):
        profile_id = uuid4()
        respx.get(f"{BASE_URL}/profiles/{profile_id}/access").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": {
                        "profile_id": str(profile_id),
                        "has_access": False,
                        "has_subscription": False,
                        "has_free_access": False,
                    }
                },
            )
        )

        async with httpx.AsyncClient() as http:
            access = await CompanionApi(BASE_URL, _token, http).check_access(profile_id)

        assert access.has_access is False


class TestStreams:
    @pytest.mark.asyncio
    @respx.mock
    async def test_chat_events_parsed(self):
        chat_id = uuid4()
        body = (
            'event: status\ndata: {"state": "live"}\n\n'
            ": keepalive\n\n"
            'event: message_inserted\ndata: {"id": "m1"}\n\n'
        )
        route = respx.get(f"{BASE_URL}/stream/chats/{chat_id}/events").mock(
            return_value=httpx.Response(
                200, text=body, headers={"content-type": "text/event-stream"}
            )
        )

        async with httpx.AsyncClient() as http:
            api = CompanionApi(BASE_URL, _token, http)
            frames = await _collect(api.chat_events(chat_id, "typing"))

        assert frames == [
            SseFrame("status", {"state": "live"}),
            SseFrame("message_inserted", {"id": "m1"}),
        ]
        assert route.calls.last.request.url.params["channel"] == "typing"

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_rejected(self):
        respx.get(f"{BASE_URL}/stream/me/events").mock(
            return_value=httpx.Response(
                401, json={"error": {"code": "E_UNAUTHENTICATED", "message": "No token"}}
            )
        )

        async with httpx.AsyncClient() as http:
            with pytest.raises(ApiClientError) as exc_info:
                await _collect(CompanionApi(BASE_URL, _token, http).my_events())

        assert exc_info.value.code == "E_UNAUTHENTICATED"


class TestParseSseLines:
    @pytest.mark.asyncio
    async def test_multiline_data_joined(self):
        lines = _lines("event: x", 'data: {"a":', "data: 1}", "")
        frames = await _collect(parse_sse_lines(lines))
        assert frames == [SseFrame("x", {"a": 1})]

    @pytest.mark.asyncio
    async def test_default_event_name(self):
        frames = await _collect(parse_sse_lines(_lines('data: {"a": 1}', "")))
        assert frames == [SseFrame("message", {"a": 1})]

    @pytest.mark.asyncio
    async def test_bad_payloads_skipped(self):
        frames = await _collect(
            parse_sse_lines(_lines("data: not json", "", "data: [1, 2]", "", ": comment", ""))
        )
        assert frames == []

    @pytest.mark.asyncio
    async def test_unterminated_frame_dropped(self):
        frames = await _collect(parse_sse_lines(_lines('data: {"a": 1}')))
        assert frames == []
