from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def gather_bounded(fn: Callable[[T], R], items: Iterable[T], max_workers: int = 10) -> list[R]:
    """Run ``fn`` over ``items`` with at most ``max_workers`` calls in flight.

    Results keep the order of ``items``. The first exception is re-raised after
    queued calls are cancelled; calls already running are joined first.
    """
    items = list(items)
    if not items:
        return []

    results: list = [None] * len(items)
    pool = ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items))))
    try:
        futures = {pool.submit(fn, item): i for i, item in enumerate(items)}
        for fut in as_completed(futures):
            results[futures[fut]] = fut.result()
    except BaseException:
        pool.shutdown(wait=True, cancel_futures=True)
        raise
    pool.shutdown(wait=True)
    return results
