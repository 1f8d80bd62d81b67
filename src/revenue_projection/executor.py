"""Run one independent task per model, isolating failures and timeouts."""

from __future__ import annotations

import concurrent.futures
import logging
import queue
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

Outcome = Tuple[Any, Optional[BaseException]]

_POLL_SECONDS = 0.05


def _run_sequential(tasks: Mapping[int, Callable[[], Any]]) -> Dict[int, Outcome]:
    outcomes: Dict[int, Outcome] = {}
    for model_id, task in tasks.items():
        try:
            outcomes[model_id] = (task(), None)
        except Exception as exc:  # noqa: BLE001
            outcomes[model_id] = (None, exc)
    return outcomes


def _run_pooled(tasks: Mapping[int, Callable[[], Any]], max_workers: Optional[int]) -> Dict[int, Outcome]:
    outcomes: Dict[int, Outcome] = {}
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {pool.submit(task): model_id for model_id, task in tasks.items()}
        for future in concurrent.futures.as_completed(futures):
            error = future.exception()
            outcomes[futures[future]] = (None, error) if error is not None else (future.result(), None)
    return outcomes


def _run_with_timeout(
    tasks: Mapping[int, Callable[[], Any]],
    max_workers: Optional[int],
    timeout: float,
) -> Dict[int, Outcome]:
    # One daemon thread per task. An overrunning task frees its slot and does
    # not block interpreter exit.
    finished: "queue.Queue[Tuple[int, Any, Optional[BaseException]]]" = queue.Queue()

    def _target(model_id: int, task: Callable[[], Any]) -> None:
        try:
            finished.put((model_id, task(), None))
        except Exception as exc:  # noqa: BLE001
            finished.put((model_id, None, exc))

    limit = max_workers or max(len(tasks), 1)
    waiting: List[Tuple[int, Callable[[], Any]]] = list(tasks.items())
    running: Dict[int, float] = {}
    outcomes: Dict[int, Outcome] = {}
    while waiting or running:
        while waiting and len(running) < limit:
            model_id, task = waiting.pop(0)
            thread = threading.Thread(target=_target, args=(model_id, task), name=f"model-{model_id}", daemon=True)
            running[model_id] = time.monotonic()
            thread.start()

        try:
            model_id, result, error = finished.get(timeout=_POLL_SECONDS)
        except queue.Empty:
            pass
        else:
            # Results from tasks already reported as timed out are dropped.
            if running.pop(model_id, None) is not None:
                outcomes[model_id] = (result, error)

        now = time.monotonic()
        for model_id, began in list(running.items()):
            if now - began > timeout:
                logger.warning("Model %s exceeded the %.1fs timeout", model_id, timeout)
                outcomes[model_id] = (None, TimeoutError(f"exceeded {timeout}s timeout"))
                del running[model_id]
    return outcomes


def run_per_model(
    tasks: Mapping[int, Callable[[], Any]],
    max_workers: Optional[int] = 1,
    timeout: Optional[float] = None,
) -> Dict[int, Outcome]:
    """Return ``{model_id: (result, error)}`` with exactly one of the two set.

    ``timeout`` bounds each task from the moment it starts running. A task
    that overruns is reported as a ``TimeoutError`` and frees its worker
    slot; its thread cannot be interrupted, so its eventual result is
    discarded.
    """
    if timeout is not None:
        outcomes = _run_with_timeout(tasks, max_workers, timeout)
    elif max_workers == 1:
        outcomes = _run_sequential(tasks)
    else:
        outcomes = _run_pooled(tasks, max_workers)
    return {model_id: outcomes[model_id] for model_id in tasks}
