from __future__ import annotations

from typing import Callable, Generator, Sequence, Tuple, TypeVar

T = TypeVar("T")
P = TypeVar("P")


def paginate(
    fetch: Callable[[P | None], Tuple[Sequence[T], P | None]]
) -> Generator[T, None, None]:
    """
    Generic paginator yielding items from a fetch(page_token) function.
    The fetch function must return (items, next_page_token). If next_page_token
    is falsy, pagination stops.
    """
    page: P | None = None
    while True:
        items, next_page = fetch(page)
        for it in items:
            yield it
        if not next_page:
            break
        page = next_page


def next_page_number(page: int, last_page: int | None) -> int | None:
    """
    Return the page after `page`, or None when `page` is the last one.
    A missing last page means the listing fits on the current page.
    """
    if last_page is None or page >= last_page:
        return None
    return page + 1
