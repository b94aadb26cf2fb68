"""
Unit tests for List-Unsubscribe parsing and one-click execution.
"""

import httpx
import pytest

from calmesh.integrations.types import UnsubscribeInfo
from calmesh.integrations.unsubscribe import (
    UnsubscribeExecutor,
    parse_mailto_url,
    parse_unsubscribe_headers,
)

# ---------------------------------------------------------------------------
# Header parsing
# ---------------------------------------------------------------------------


class TestParseHeaders:
    def test_https_and_mailto(self):
        info = parse_unsubscribe_headers(
            "<mailto:leave@list.example.com?subject=unsub>, <https://list.example.com/u/1>",
            "List-Unsubscribe=One-Click",
        )

        assert info.https_url == "https://list.example.com/u/1"
        assert info.mailto_url == "mailto:leave@list.example.com?subject=unsub"
        assert info.supports_one_click
        assert info.recommended_method == "one-click"

    def test_first_url_of_each_kind_wins(self):
        info = parse_unsubscribe_headers("<https://a.example.com/1>, <https://b.example.com/2>")
        assert info.https_url == "https://a.example.com/1"

    def test_post_header_is_case_insensitive(self):
        info = parse_unsubscribe_headers(
            "<https://list.example.com/u/1>", "list-unsubscribe=one-click"
        )
        assert info.supports_one_click

    def test_one_click_needs_https(self):
        info = parse_unsubscribe_headers(
            "<mailto:leave@list.example.com>", "List-Unsubscribe=One-Click"
        )
        assert not info.supports_one_click
        assert info.recommended_method == "mailto"

    def test_without_post_header(self):
        info = parse_unsubscribe_headers("<https://list.example.com/u/1>")
        assert not info.supports_one_click
        assert info.recommended_method == "https"
        assert info.list_unsubscribe == "<https://list.example.com/u/1>"

    @pytest.mark.parametrize("header", [None, "", "   ", "<http://insecure.example.com/u>"])
    def test_nothing_usable(self, header):
        assert parse_unsubscribe_headers(header) is None


class TestParseMailto:
    def test_query_fields(self):
        target = parse_mailto_url("mailto:leave@list.example.com?subject=Remove%20me&body=bye+now")

        assert target.to == "leave@list.example.com"
        assert target.subject == "Remove me"
        assert target.body == "bye now"

    def test_defaults(self):
        target = parse_mailto_url("MAILTO:leave@list.example.com")

        assert target.subject == "Unsubscribe"
        assert target.body == "Unsubscribe"

    @pytest.mark.parametrize("url", ["", "https://list.example.com", "mailto:?subject=x"])
    def test_invalid(self, url):
        assert parse_mailto_url(url) is None


# ---------------------------------------------------------------------------
# One-click
# ---------------------------------------------------------------------------

INFO = UnsubscribeInfo(
    https_url="https://list.example.com/u/1",
    supports_one_click=True,
    list_unsubscribe="<https://list.example.com/u/1>",
    list_unsubscribe_post="List-Unsubscribe=One-Click",
)


def _executor(handler) -> UnsubscribeExecutor:
    return UnsubscribeExecutor(transport=httpx.MockTransport(handler))


class TestOneClick:
    @pytest.mark.asyncio
    async def test_posts_form(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        executor = _executor(handler)
        result = await executor.execute_one_click(INFO)
        await executor.aclose()

        assert result.success
        assert result.message == "Successfully unsubscribed via one-click (RFC 8058)"
        assert seen[0].method == "POST"
        assert seen[0].content == b"List-Unsubscribe=One-Click"
        assert seen[0].headers["content-type"] == "application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        executor = _executor(lambda request: httpx.Response(410, text="gone"))

        result = await executor.execute_one_click(INFO)

        assert not result.success
        assert result.message == "Unsubscribe request returned HTTP 410"
        assert result.error_details == "gone"

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = await _executor(handler).execute_one_click(INFO)

        assert not result.success
        assert result.message == "Unsubscribe request timed out"

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await _executor(handler).execute_one_click(INFO)

        assert result.message == "Failed to execute one-click unsubscribe"
        assert result.error_details == "refused"

    @pytest.mark.asyncio
    async def test_not_one_click(self):
        calls: list[httpx.Request] = []
        executor = _executor(lambda request: calls.append(request) or httpx.Response(200))
        info = UnsubscribeInfo(https_url="https://list.example.com/u/1")

        result = await executor.execute_one_click(info)

        assert not result.success
        assert result.message == "Email does not support one-click unsubscribe"
        assert calls == []
