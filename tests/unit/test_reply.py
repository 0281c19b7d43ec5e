"""Tests for reply composition and the LINE reply client."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic import ValidationError

from src.webhook.models import ReplyPayload, TextMessage
from src.webhook.reply import (
    LineReplyClient,
    ReplyComposer,
    ReplyDeliveryError,
    image_message,
    mapping_prompt,
)


def _mock_async_client(mock_client_cls: MagicMock) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


class TestReplyComposer:
    @pytest.mark.asyncio
    async def test_text_reply_payload(self) -> None:
        client = AsyncMock()
        await ReplyComposer(client).reply_text("tok-1", "hello")

        client.send_reply.assert_awaited_once()
        payload: ReplyPayload = client.send_reply.call_args[0][0]
        assert payload.to_wire() == {
            "replyToken": "tok-1",
            "messages": [{"type": "text", "text": "hello"}],
        }

    @pytest.mark.asyncio
    async def test_image_reply_payload(self) -> None:
        client = AsyncMock()
        await ReplyComposer(client).reply_image("tok-2", "https://example.com/a.jpg")

        payload: ReplyPayload = client.send_reply.call_args[0][0]
        assert payload.to_wire()["messages"] == [{
            "type": "image",
            "originalContentUrl": "https://example.com/a.jpg",
            "previewImageUrl": "https://example.com/a.jpg",
        }]

    @pytest.mark.asyncio
    async def test_delivery_error_propagates_without_retry(self) -> None:
        client = AsyncMock()
        client.send_reply.side_effect = ReplyDeliveryError("tok-1", "boom")
        with pytest.raises(ReplyDeliveryError):
            await ReplyComposer(client).reply_text("tok-1", "hello")
        assert client.send_reply.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_message_list_refused(self) -> None:
        with pytest.raises(ValidationError):
            await ReplyComposer(AsyncMock()).reply("tok-1", [])


class TestMappingPrompt:
    def test_buttons_carry_pending_and_target(self) -> None:
        message = mapping_prompt("abc", ["menu1", "menu2"], "Pick one")
        wire = message.model_dump(by_alias=True)
        assert wire["type"] == "template"
        assert wire["altText"] == "Pick one"
        assert wire["template"]["type"] == "buttons"
        assert [a["data"] for a in wire["template"]["actions"]] == [
            "pending=abc&target=menu1",
            "pending=abc&target=menu2",
        ]
        assert all(a["type"] == "postback" for a in wire["template"]["actions"])

    def test_more_than_four_buttons_refused(self) -> None:
        with pytest.raises(ValidationError):
            mapping_prompt("abc", [f"m{i}" for i in range(5)], "Pick one")


class TestLineReplyClient:
    @pytest.mark.asyncio
    async def test_posts_payload_with_bearer_token(self) -> None:
        client = LineReplyClient(access_token="access")
        payload = ReplyPayload(reply_token="tok-1", messages=[TextMessage(text="hi")])

        with patch("src.webhook.reply.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_async_client(mock_client_cls)
            mock_client.post.return_value = MagicMock(status_code=200)

            await client.send_reply(payload)

            mock_client.post.assert_called_once()
            args, kwargs = mock_client.post.call_args
            assert args[0] == "https://api.line.me/v2/bot/message/reply"
            assert kwargs["headers"]["Authorization"] == "Bearer access"
            assert kwargs["json"] == {
                "replyToken": "tok-1",
                "messages": [{"type": "text", "text": "hi"}],
            }
            assert mock_client_cls.call_args.kwargs["verify"] is True

    @pytest.mark.asyncio
    async def test_error_status_raises_once(self) -> None:
        client = LineReplyClient(access_token="access")
        payload = ReplyPayload(reply_token="tok-1", messages=[image_message("https://x/y.jpg")])

        with patch("src.webhook.reply.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_async_client(mock_client_cls)
            mock_client.post.return_value = MagicMock(status_code=500, text="oops")

            with pytest.raises(ReplyDeliveryError) as exc_info:
                await client.send_reply(payload)

            assert exc_info.value.status_code == 500
            assert mock_client.post.call_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_not_retried(self) -> None:
        client = LineReplyClient(access_token="access")
        payload = ReplyPayload(reply_token="tok-1", messages=[TextMessage(text="hi")])

        with patch("src.webhook.reply.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_async_client(mock_client_cls)
            mock_client.post.return_value = MagicMock(status_code=429, text="slow down")

            with pytest.raises(ReplyDeliveryError):
                await client.send_reply(payload)
            assert mock_client.post.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_delivery_error(self) -> None:
        client = LineReplyClient(access_token="access")
        payload = ReplyPayload(reply_token="tok-1", messages=[TextMessage(text="hi")])

        with patch("src.webhook.reply.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_async_client(mock_client_cls)
            mock_client.post.side_effect = httpx.ReadTimeout("timed out")

            with pytest.raises(ReplyDeliveryError) as exc_info:
                await client.send_reply(payload)
            assert "ReadTimeout" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_connect_error_becomes_delivery_error(self) -> None:
        client = LineReplyClient(access_token="access", api_base="https://line.test/v2/bot/")

        with patch("src.webhook.reply.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_async_client(mock_client_cls)
            mock_client.post.side_effect = httpx.ConnectError("refused")

            with pytest.raises(ReplyDeliveryError):
                await client.send_reply(
                    ReplyPayload(reply_token="t", messages=[TextMessage(text="x")]),
                )
            assert mock_client.post.call_args[0][0] == "https://line.test/v2/bot/message/reply"
