from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from app.core.context import get_run_id

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_tool(
    *,
    tool_name: str,
    request: Any,
    fn: Callable[[], Awaitable[T]],
) -> T:
    """
    Generic remote-call execution wrapper.

    - Logs start with the request summary
    - Awaits fn()
    - Logs finish with elapsed milliseconds
    - Re-raises exceptions after logging
    """
    started = time.perf_counter()
    logger.debug("tool %s start run_id=%s request=%s", tool_name, get_run_id(), request)

    try:
        result = await fn()
    except Exception as e:
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.warning("tool %s failed after %sms: %s", tool_name, elapsed_ms, e)
        raise

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info("tool %s ok in %sms", tool_name, elapsed_ms)
    return result
