from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx
from pydantic import BaseModel, Field

from app.config import get_settings
from tools.tool_runner import run_tool

logger = logging.getLogger(__name__)


class RPCError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RemoteCall(BaseModel):
    """
    A fully built request: url + method + headers + serialized body.
    """

    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None
    # label used by run_tool logging
    tool_name: str = "rpc.call"


class RpcClient:
    """
    Async transport for every remote call the engine makes.

    - One shared httpx.AsyncClient (injectable for tests via `transport`)
    - Instruments each call via tools.run_tool
    - Transport failures and (by default) non-2xx statuses raise RPCError
    """

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        if client is None:
            timeout = timeout if timeout is not None else get_settings().http_timeout_sec
            client = httpx.AsyncClient(transport=transport, timeout=timeout)
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def send(self, call: RemoteCall, *, raise_for_status: bool = True) -> httpx.Response:
        async def _do() -> httpx.Response:
            try:
                res = await self._client.request(
                    call.method,
                    call.url,
                    headers=call.headers,
                    content=call.body,
                )
            except httpx.HTTPError as e:
                raise RPCError(f"{call.method} {call.url} failed: {e}") from e

            if raise_for_status and not res.is_success:
                raise RPCError(f"RPC {res.status_code}", status=res.status_code)
            return res

        return await run_tool(
            tool_name=call.tool_name,
            request={"method": call.method, "url": call.url},
            fn=_do,
        )
