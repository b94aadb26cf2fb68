"""
List-Unsubscribe handling.

Parses the RFC 2369 ``List-Unsubscribe`` header (plus the RFC 8058
``List-Unsubscribe-Post`` companion) into UnsubscribeInfo, and performs
one-click unsubscribe requests over httpx.
"""

import logging
import re
from urllib.parse import unquote

import httpx
from pydantic import BaseModel

from calmesh.integrations.types import UnsubscribeInfo

logger = logging.getLogger(__name__)

ONE_CLICK_VALUE = "List-Unsubscribe=One-Click"
DEFAULT_MAILTO_TEXT = "Unsubscribe"

_ANGLE_URL_RE = re.compile(r"<([^>]+)>")


class UnsubscribeResult(BaseModel):
    """Outcome of an unsubscribe attempt."""

    success: bool
    method: str
    message: str
    error_details: str | None = None


class MailtoTarget(BaseModel):
    to: str
    subject: str = DEFAULT_MAILTO_TEXT
    body: str = DEFAULT_MAILTO_TEXT


def parse_unsubscribe_headers(
    list_unsubscribe: str | None, list_unsubscribe_post: str | None = None
) -> UnsubscribeInfo | None:
    """
    Extract unsubscribe options from the raw header values.

    The first https URL and the first mailto URL win. Plain http URLs are
    ignored. Returns None when the header is missing or offers neither.
    """
    if not list_unsubscribe or not list_unsubscribe.strip():
        return None

    https_url = None
    mailto_url = None
    for candidate in _ANGLE_URL_RE.findall(list_unsubscribe):
        url = candidate.strip()
        lowered = url.lower()
        if https_url is None and lowered.startswith("https://"):
            https_url = url
        elif mailto_url is None and lowered.startswith("mailto:"):
            mailto_url = url

    if https_url is None and mailto_url is None:
        return None

    one_click = (
        https_url is not None
        and list_unsubscribe_post is not None
        and ONE_CLICK_VALUE.lower() in list_unsubscribe_post.lower()
    )
    return UnsubscribeInfo(
        https_url=https_url,
        mailto_url=mailto_url,
        supports_one_click=one_click,
        list_unsubscribe=list_unsubscribe,
        list_unsubscribe_post=list_unsubscribe_post,
    )


def parse_mailto_url(url: str) -> MailtoTarget | None:
    """Split ``mailto:addr?subject=..&body=..``; subject and body default to "Unsubscribe"."""
    if not url or not url.lower().startswith("mailto:"):
        return None

    address, _, query = url[len("mailto:") :].partition("?")
    address = unquote(address).strip()
    if not address:
        return None

    fields: dict[str, str] = {}
    for pair in query.split("&") if query else []:
        key, sep, value = pair.partition("=")
        if sep:
            fields[key.strip().lower()] = unquote(value.replace("+", " "))

    return MailtoTarget(
        to=address,
        subject=fields.get("subject") or DEFAULT_MAILTO_TEXT,
        body=fields.get("body") or DEFAULT_MAILTO_TEXT,
    )


class UnsubscribeExecutor:
    """
    Sends RFC 8058 one-click unsubscribe requests.

    Example:
        >>> executor = UnsubscribeExecutor(timeout=30)
        >>> result = await executor.execute_one_click(info)
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def execute_one_click(self, info: UnsubscribeInfo) -> UnsubscribeResult:
        if not info.supports_one_click or not info.https_url:
            return UnsubscribeResult(
                success=False,
                method="one-click",
                message="Email does not support one-click unsubscribe",
            )

        url = info.https_url
        logger.info(f"Executing one-click unsubscribe: {url}")
        try:
            response = await self._client.post(url, data={"List-Unsubscribe": "One-Click"})
        except httpx.TimeoutException as e:
            logger.warning(f"One-click unsubscribe timed out: {url}")
            return UnsubscribeResult(
                success=False,
                method="one-click",
                message="Unsubscribe request timed out",
                error_details=str(e),
            )
        except httpx.HTTPError as e:
            logger.error(f"One-click unsubscribe failed: {url}: {e}")
            return UnsubscribeResult(
                success=False,
                method="one-click",
                message="Failed to execute one-click unsubscribe",
                error_details=str(e),
            )

        if response.is_success:
            return UnsubscribeResult(
                success=True,
                method="one-click",
                message="Successfully unsubscribed via one-click (RFC 8058)",
            )
        logger.warning(
            f"One-click unsubscribe returned HTTP {response.status_code}: {url}",
            extra={"status_code": response.status_code},
        )
        return UnsubscribeResult(
            success=False,
            method="one-click",
            message=f"Unsubscribe request returned HTTP {response.status_code}",
            error_details=response.text,
        )
