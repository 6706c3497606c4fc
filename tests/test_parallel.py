from __future__ import annotations

import threading
import time

import pytest

from rtsim.exceptions import Cancelled
from rtsim.parallel import CancellationToken, fan_out


def test_fan_out_keeps_key_order() -> None:
    def _slow_square(x: int) -> int:
        time.sleep(0.01 * (5 - x))
        return x * x

    assert fan_out([1, 2, 3, 4], _slow_square, n_jobs=4) == [1, 4, 9, 16]
    assert fan_out([1, 2, 3, 4], _slow_square, n_jobs=1) == [1, 4, 9, 16]
    assert fan_out([], _slow_square, n_jobs=2) == []


def test_first_error_cancels_the_token_and_propagates() -> None:
    token = CancellationToken()

    def _task(x: int) -> int:
        if x == 2:
            raise RuntimeError("boom")
        return x

    with pytest.raises(RuntimeError, match="boom"):
        fan_out([1, 2, 3], _task, n_jobs=3, token=token)
    assert token.cancelled


def test_cancelled_run_returns_nothing() -> None:
    token = CancellationToken()
    started = threading.Event()

    def _task(x: int) -> int:
        started.set()
        token.cancel()
        return x

    with pytest.raises(Cancelled):
        fan_out([1, 2], _task, n_jobs=2, token=token)
    assert started.is_set()


def test_invalid_job_count() -> None:
    with pytest.raises(ValueError):
        fan_out([1], lambda x: x, n_jobs=0)
