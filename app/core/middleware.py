from __future__ import annotations

import re
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.context import bound_run_id

RUN_PATH = re.compile(r"/runs/([^/]+)")
RUN_HEADER = "X-Run-Id"


def run_id_from_request(request: Request) -> Optional[str]:
    """
    /.../runs/{run_id}/... wins over the X-Run-Id header.

    Path params are not resolved yet at middleware time, so the path is matched directly.
    """
    m = RUN_PATH.search(request.url.path)
    if m:
        return m.group(1)
    return request.headers.get(RUN_HEADER) or None


class RunContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        with bound_run_id(run_id_from_request(request)):
            return await call_next(request)
