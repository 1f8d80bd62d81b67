import threading
import time

import pytest

from revenue_projection.executor import run_per_model


def _boom():
    raise ValueError("boom")


@pytest.mark.parametrize("max_workers", [1, 4])
def test_failures_are_isolated(max_workers):
    outcomes = run_per_model({1: lambda: "a", 2: _boom, 3: lambda: "c"}, max_workers=max_workers)

    assert outcomes[1] == ("a", None)
    assert outcomes[3] == ("c", None)
    result, error = outcomes[2]
    assert result is None
    assert isinstance(error, ValueError)


def test_results_come_back_in_task_order():
    outcomes = run_per_model({3: lambda: 3, 1: lambda: 1, 2: lambda: 2}, max_workers=3)
    assert list(outcomes) == [3, 1, 2]


def test_slow_task_times_out_without_blocking_siblings():
    start = time.monotonic()
    outcomes = run_per_model({1: lambda: time.sleep(2) or "late", 2: lambda: "fast"}, max_workers=2, timeout=0.2)

    assert time.monotonic() - start < 1.5
    assert outcomes[2] == ("fast", None)
    assert isinstance(outcomes[1][1], TimeoutError)


def test_single_worker_timeout_does_not_hold_up_the_queue():
    start = time.monotonic()
    outcomes = run_per_model(
        {1: lambda: time.sleep(3) or "late", 2: lambda: "fast", 3: _boom},
        max_workers=1,
        timeout=0.2,
    )

    assert time.monotonic() - start < 1.5
    assert isinstance(outcomes[1][1], TimeoutError)
    assert outcomes[2] == ("fast", None)
    assert isinstance(outcomes[3][1], ValueError)


def test_timed_out_task_runs_on_a_daemon_thread():
    release = threading.Event()
    outcomes = run_per_model({1: lambda: release.wait(5)}, max_workers=1, timeout=0.1)

    hung = [thread for thread in threading.enumerate() if thread.name == "model-1"]
    release.set()
    assert isinstance(outcomes[1][1], TimeoutError)
    assert hung and all(thread.daemon for thread in hung)
