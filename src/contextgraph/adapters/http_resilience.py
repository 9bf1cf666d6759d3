"""Async HTTP access to producer services.

Requests go through a retry transport and, when the config carries a rate
limit, one ``aiolimiter`` bucket shared by every request of the client.
"""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, TypedDict

import httpx
from aiolimiter import AsyncLimiter
from httpx_retries import RetryTransport

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    from httpx._types import QueryParamTypes, TimeoutTypes

    from contextgraph.config.http_resilience import ResilienceConfig

log = getLogger(__name__)


class _ClientSettings(TypedDict, total=False):
    base_url: str
    timeout: TimeoutTypes
    headers: dict[str, str]
    event_hooks: dict[str, list[Callable[[httpx.Response], Awaitable[None]]]]
    transport: httpx.AsyncBaseTransport


async def _log_error_response(response: httpx.Response) -> None:
    if response.is_error:
        log.warning(
            "%s %s answered %s",
            response.request.method,
            response.request.url,
            response.status_code,
        )


def _client_settings(
    config: ResilienceConfig,
    transport: httpx.AsyncBaseTransport | None,
) -> _ClientSettings:
    settings: _ClientSettings = {
        "timeout": config.timeout_seconds,
        "transport": RetryTransport(transport=transport, retry=config.retry.build()),
        "event_hooks": {"response": [_log_error_response]},
    }
    if config.base_url is not None:
        settings["base_url"] = config.base_url
    if config.default_headers:
        settings["headers"] = dict(config.default_headers)
    return settings


class ResilientClient:
    """``httpx.AsyncClient`` with retries and optional client-side rate limiting.

    ``transport`` replaces the network layer underneath the retry transport,
    which is how tests plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._limiter = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit
            else None
        )
        self._client = httpx.AsyncClient(**_client_settings(config, transport))

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, url: str, *, params: QueryParamTypes | None = None) -> httpx.Response:
        if self._limiter is None:
            return await self._client.get(url, params=params)
        async with self._limiter:
            return await self._client.get(url, params=params)

    async def get_json(self, url: str, *, params: QueryParamTypes | None = None) -> object:
        """GET ``url`` and decode the body.

        Non-2xx answers raise ``httpx.HTTPStatusError``; undecodable bodies
        raise ``ValueError``.
        """

        response = await self.get(url, params=params)
        response.raise_for_status()
        return response.json()
