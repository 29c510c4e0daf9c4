from __future__ import annotations

import inspect
from typing import Any, Callable


async def invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a user callback that may be sync or async"""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result
