"""Group-preserving batch utilities.

Enrichment and bulk writes both aggregate per-row items into one flat store
call and then need the answers back per row. :func:`grouped_call` does the
whole round trip: flatten the groups, call the bulk operation once, and
regroup the flat response with the original group sizes.

Example:
    ```python
    groups = [["a", "b"], [], ["c"]]
    docs = await grouped_call(groups, store.multi_get, operation="multi_get")
    # docs == [[doc_a, doc_b], [], [doc_c]]
    ```
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from .exceptions import StoreProtocolError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator, Sequence

T = TypeVar("T")
R = TypeVar("R")


def flatten(groups: Sequence[Sequence[T]]) -> list[T]:
    """Concatenate groups, preserving group order then item order."""
    return [item for group in groups for item in group]


def unflatten(items: Sequence[R], counts: Sequence[int]) -> list[list[R]]:
    """Split ``items`` into consecutive groups of the given sizes.

    Groups beyond the end of ``items`` come back short (possibly empty),
    mirroring a plain slice.
    """
    groups: list[list[R]] = []
    start = 0
    for count in counts:
        groups.append(list(items[start:start + count]))
        start += count
    return groups


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size <= 0:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


async def grouped_call(
    groups: Sequence[Sequence[T]],
    call: Callable[[list[T]], Awaitable[Sequence[R]]],
    operation: str = "bulk",
) -> list[list[R]]:
    """Run one bulk ``call`` over all groups and regroup its results.

    The call is skipped entirely when every group is empty. The call must
    return exactly one result per submitted item, in submission order.

    Args:
        groups: Per-item groups to submit
        call: Async bulk operation taking the flat list
        operation: Name used in error messages

    Returns:
        One result list per input group, each the same length as its group

    Raises:
        StoreProtocolError: If the call returns a different number of results
    """
    counts = [len(group) for group in groups]
    flat = flatten(groups)
    if not flat:
        return [[] for _ in groups]

    results = await call(flat)
    if len(results) != len(flat):
        raise StoreProtocolError(
            operation,
            f"expected {len(flat)} results, got {len(results)}",
        )
    return unflatten(results, counts)
