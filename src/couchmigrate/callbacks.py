"""Calling convention for user-supplied row callbacks.

All row callbacks (``source_filter``, ``fetch_keys``, ``changes``) are
invoked through a single asynchronous convention. A callback may be a plain
function or a coroutine function; plain functions are adapted by
:func:`as_async`, which awaits the result only when it is awaitable.
"""

from __future__ import annotations

import functools
import inspect
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


def as_async(fn: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
    """Adapt ``fn`` to the async calling convention.

    Args:
        fn: Sync or async callable

    Returns:
        A coroutine function with the same signature
    """
    if inspect.iscoroutinefunction(fn):
        return fn

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        result = fn(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    return wrapper


def as_list(result: Any) -> list[Any]:
    """Normalize a callback result to a list.

    ``None`` becomes an empty list, a list or tuple is copied, and any other
    value becomes a one-item list.
    """
    if result is None:
        return []
    if isinstance(result, (list, tuple)):
        return list(result)
    return [result]
