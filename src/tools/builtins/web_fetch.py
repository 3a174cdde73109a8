from __future__ import annotations

import asyncio
import ipaddress
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import httpx
import structlog
from bs4 import BeautifulSoup

from src.infra.errors import SecurityViolation
from src.tools.base import DeclarativeTool, ToolInvocation, ToolResult

if TYPE_CHECKING:
    from src.infra.cancellation import CancellationToken
    from src.tools.context import ToolContext

logger = structlog.get_logger()

_LOCAL_HOSTNAMES = frozenset({"localhost", "localhost.localdomain"})


def is_private_host(host: str) -> bool:
    """Loopback, private, link-local or otherwise non-public hosts."""
    host = host.strip("[]").lower()
    if host in _LOCAL_HOSTNAMES or host.endswith(".localhost") or host.endswith(".local"):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


def needs_confirmation(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme != "https" or is_private_host(parsed.hostname or "")


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    lines = (line.strip() for line in soup.get_text(separator="\n").splitlines())
    return "\n".join(line for line in lines if line)


class WebFetchInvocation(ToolInvocation):
    def __init__(
        self,
        tool: WebFetchTool,
        params: dict,
        context: ToolContext,
        transport: httpx.AsyncBaseTransport | None,
    ) -> None:
        super().__init__(tool, params, context)
        self._transport = transport

    def get_description(self) -> str:
        return f"Fetch {self.params['url']}"

    def should_confirm_execute(self) -> bool:
        """Public https fetches run unconfirmed; local or plain-http targets ask first."""
        return needs_confirmation(self.params["url"])

    async def _check_redirect(self, request: httpx.Request) -> None:
        """Redirect hops may not reach a target that would have needed confirmation."""
        target = str(request.url)
        if self.should_confirm_execute() or not needs_confirmation(target):
            return
        logger.warning("web_fetch_redirect_blocked", url=self.params["url"], target=target)
        raise SecurityViolation(
            f"Redirect to a private or non-https address is not allowed: {target}",
            target=target,
        )

    async def _get(self, url: str) -> httpx.Response:
        settings = self.context.web_fetch
        async with httpx.AsyncClient(
            timeout=settings.timeout_s,
            follow_redirects=True,
            headers={"User-Agent": settings.user_agent},
            event_hooks={"request": [self._check_redirect]},
            transport=self._transport,
        ) as client:
            return await client.get(url)

    async def execute(self, token: CancellationToken) -> ToolResult:
        url: str = self.params["url"]
        if token.is_cancelled:
            return ToolResult.cancelled()

        request = asyncio.ensure_future(self._get(url))
        cancelled = asyncio.ensure_future(token.wait())
        try:
            await asyncio.wait({request, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
        if not request.done():
            request.cancel()
            await asyncio.wait({request})
            return ToolResult.cancelled(f"Fetch cancelled: {url}")

        try:
            response = request.result()
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return ToolResult.failure(
                "HTTP_ERROR", f"Request failed with status {e.response.status_code}: {url}"
            )
        except httpx.HTTPError as e:
            logger.warning("web_fetch_failed", url=url, error=str(e))
            return ToolResult.failure("FETCH_ERROR", f"Error fetching {url}: {e}")

        content_type = response.headers.get("content-type", "")
        text = response.text
        if "html" in content_type:
            text = html_to_text(text)
        elif not (content_type.startswith("text/") or "json" in content_type or not content_type):
            return ToolResult.failure(
                "UNSUPPORTED_CONTENT", f"Unsupported content type '{content_type}' for {url}"
            )

        limit = self.context.web_fetch.max_content_bytes
        encoded = text.encode("utf-8")
        truncated = len(encoded) > limit
        if truncated:
            text = encoded[:limit].decode("utf-8", errors="ignore")
            text += f"\n\n[Content truncated to {limit} bytes]"

        logger.info(
            "web_fetch_done",
            url=url,
            status=response.status_code,
            size=len(encoded),
            truncated=truncated,
        )
        return ToolResult(
            machine_content=f"Content from {url}:\n\n{text}",
            human_summary=f"Fetched {url} ({response.status_code}, {len(encoded)} bytes)",
        )


class WebFetchTool(DeclarativeTool):
    """Fetch one URL over HTTP(S) and return its text."""

    def __init__(
        self, context: ToolContext, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        super().__init__(context)
        self._transport = transport

    @property
    def name(self) -> str:
        return "web_fetch"

    @property
    def display_name(self) -> str:
        return "WebFetch"

    @property
    def description(self) -> str:
        return (
            "Fetches a URL (http or https) and returns its content as text. HTML is "
            f"reduced to readable text and content is capped at "
            f"{self.context.web_fetch.max_content_bytes} bytes."
        )

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "url": {
                    "type": "string",
                    "pattern": "^https?://",
                    "description": "Absolute http or https URL to fetch.",
                },
            },
            "required": ["url"],
        }

    def validate_params(self, params: dict) -> list[str]:
        if not urlparse(params["url"]).hostname:
            return ["url: must include a host"]
        return []

    def create_invocation(self, params: dict) -> WebFetchInvocation:
        return WebFetchInvocation(self, params, self.context, self._transport)
