"""
Background work alongside the interactive workflow.

Two shapes are supported:

- ``run_with_progress``: run a call on a worker thread while the main
  thread polls it and animates a spinner. The caller waits for completion;
  Ctrl+C abandons the wait and sets a cancel event that the worker
  checks before writing anything.
- ``run_advisory``: run a best-effort call in a child process with a hard
  deadline; the process is terminated if it is still running.
"""

import logging
import multiprocessing
import queue
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Any, Callable, Optional, Sequence

from console import Spinner

logger = logging.getLogger(__name__)


def run_with_progress(
    func: Callable[..., Any],
    *args,
    message: str = "Working...",
    interval: float = 0.1,
    stream=None,
    cancel: Optional[threading.Event] = None,
    **kwargs,
) -> Any:
    """
    Run ``func`` on a worker thread and show a spinner until it finishes.

    If the wait is abandoned (Ctrl+C or a termination signal), ``cancel``
    is set before the exception propagates. A call that is already running
    cannot be stopped, so it should check the event before any side effect.

    Args:
        func: Callable to run
        *args: Positional arguments for func
        message: Spinner text
        interval: Poll interval in seconds
        stream: Spinner output stream (stderr by default)
        cancel: Event set when the wait is abandoned
        **kwargs: Keyword arguments for func

    Returns:
        Whatever func returns; its exceptions are re-raised here
    """
    spinner = Spinner(message, stream)
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="background")
    future = executor.submit(func, *args, **kwargs)
    try:
        while True:
            done, _ = wait([future], timeout=interval, return_when=FIRST_COMPLETED)
            if done:
                break
            spinner.tick()
    except BaseException:
        if cancel is not None:
            cancel.set()
        future.cancel()
        raise
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
        spinner.clear()
    return future.result()


def _advisory_entry(results, target: Callable[..., Any], args: Sequence) -> None:
    try:
        results.put(target(*args))
    except Exception:
        results.put(None)


def run_advisory(
    target: Callable[..., Any], args: Sequence = (), deadline: float = 0.5
) -> Optional[Any]:
    """
    Run a best-effort check in a child process, bounded by ``deadline``.

    Args:
        target: Picklable top-level callable
        args: Arguments for target
        deadline: Seconds to wait before terminating the child

    Returns:
        The target's result, or None if it failed or ran out of time
    """
    results = multiprocessing.Queue()
    process = multiprocessing.Process(
        target=_advisory_entry, args=(results, target, tuple(args)), daemon=True
    )
    process.start()
    process.join(deadline)

    if process.is_alive():
        process.terminate()
        process.join(0.1)
        logger.debug(f"Advisory check still running after {deadline}s; terminated")
        return None

    try:
        return results.get(timeout=0.1)
    except queue.Empty:
        return None
    finally:
        results.close()
