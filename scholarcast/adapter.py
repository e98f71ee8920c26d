"""
Fallback-aware service adapter.

Every external capability (fetch, extract, summarize, embed, synthesize,
persist) is called through FallbackAdapter.invoke(): the primary backend runs
first, and on any exception (a timeout included) the local fallback runs with
the same arguments. Strict runs disable the fallback and surface a
StageFailure instead.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from scholarcast.errors import StageFailure

logger = logging.getLogger(__name__)


async def _call(fn: Callable, args, kwargs, timeout: Optional[float]) -> Any:
    if inspect.iscoroutinefunction(fn):
        coro = fn(*args, **kwargs)
    else:
        result = fn(*args, **kwargs)
        if not inspect.isawaitable(result):
            return result
        coro = result
    if timeout:
        return await asyncio.wait_for(coro, timeout=timeout)
    return await coro


class FallbackAdapter:
    """Try primary, degrade to fallback.

    use_fallbacks=False turns every degradation into a StageFailure so
    strict runs see the real error.
    """

    def __init__(self, use_fallbacks: bool = True):
        self.use_fallbacks = use_fallbacks

    async def invoke(self, stage: str, primary: Callable, fallback: Callable, *args,
                     timeout: Optional[float] = None, context: str = "", **kwargs) -> Any:
        try:
            return await _call(primary, args, kwargs, timeout)
        except Exception as e:
            reason = "timed out" if isinstance(e, asyncio.TimeoutError) else f"{type(e).__name__}: {e}"
            where = f" [{context}]" if context else ""
            if not self.use_fallbacks:
                logger.warning(f"Stage '{stage}'{where} failed in strict mode: {reason}")
                raise StageFailure(stage, e) from e
            logger.warning(f"Stage '{stage}'{where} failed ({reason}), using fallback")
        return await _call(fallback, args, kwargs, None)
