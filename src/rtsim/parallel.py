from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Sequence, TypeVar

from .exceptions import Cancelled

K = TypeVar("K")
R = TypeVar("R")


class CancellationToken:
    """Cooperative stop flag shared by every task of a run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("Operation cancelled.")


def fan_out(
    keys: Sequence[K],
    task: Callable[[K], R],
    *,
    n_jobs: int = 1,
    token: CancellationToken | None = None,
) -> list[R]:
    """Run ``task`` once per key on a bounded thread pool and join them all.

    Results come back in key order. The first failing task cancels the token and its
    exception is re-raised once the pool has drained; nothing is aggregated from a
    cancelled run.
    """
    if n_jobs <= 0:
        raise ValueError("n_jobs must be > 0.")
    if token is None:
        token = CancellationToken()

    if n_jobs == 1 or len(keys) <= 1:
        out: list[R] = []
        for key in keys:
            token.raise_if_cancelled()
            out.append(task(key))
        token.raise_if_cancelled()
        return out

    results: dict[int, R] = {}
    with ThreadPoolExecutor(max_workers=n_jobs) as ex:
        fut_to_idx = {ex.submit(task, key): idx for idx, key in enumerate(keys)}
        try:
            for fut in as_completed(fut_to_idx):
                results[fut_to_idx[fut]] = fut.result()
        except BaseException:
            token.cancel()
            for fut in fut_to_idx:
                fut.cancel()
            raise
    token.raise_if_cancelled()
    return [results[i] for i in range(len(keys))]
