from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def parallel_map_ordered(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: int,
    *,
    thread_name_prefix: str = "cloud-monitor",
) -> List[R]:
    """
    Run func over items in a thread pool and return the results in input order.

    The first worker exception is re-raised once every submitted call has
    settled; calls that had not started yet are cancelled.
    """
    work = list(items)
    if not work:
        return []
    workers = max(1, min(max_workers, len(work)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=thread_name_prefix) as executor:
        futures: List[Future[R]] = [executor.submit(func, item) for item in work]
        try:
            return [future.result() for future in futures]
        except BaseException:
            for future in futures:
                future.cancel()
            raise
