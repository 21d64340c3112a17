"""
Execution Context for Radius Propagation
=========================================

Radius tasks are scheduled on a ``concurrent.futures.Executor`` supplied by
the caller or created here. When no parallel resource can be obtained the
same tasks run on :class:`SerialExecutor`, in-process and in submission
order. Results are identical either way because the propagation reduces
candidates with an element-wise maximum.
"""

import logging
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

logger = logging.getLogger(__name__)


class SerialExecutor(Executor):
    """Executor that runs every task immediately in the calling thread."""

    def __init__(self):
        self._shutdown = False

    def submit(self, fn: Callable, /, *args, **kwargs) -> Future:
        if self._shutdown:
            raise RuntimeError("cannot schedule new futures after shutdown")
        future: Future = Future()
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        self._shutdown = True


@contextmanager
def execution_context(
    use_parallel: bool = True,
    executor: Optional[Executor] = None,
    max_workers: Optional[int] = None,
) -> Iterator[Executor]:
    """
    Yield the executor radius tasks should run on.

    Args:
        use_parallel: Request parallel execution. False always yields a
                      :class:`SerialExecutor`.
        executor: Caller-owned executor. It is used as-is and never shut
                  down here.
        max_workers: Worker count for the thread pool created when no
                     executor is supplied (None = ThreadPoolExecutor default).

    A thread pool that cannot be created is logged and replaced by a
    :class:`SerialExecutor`; it is never an error.
    """
    if max_workers is not None and max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")

    if not use_parallel:
        yield SerialExecutor()
        return

    if executor is not None:
        yield executor
        return

    try:
        pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="pore-radius"
        )
    except (RuntimeError, OSError) as exc:
        logger.warning("Parallel executor unavailable (%s), running serially", exc)
        yield SerialExecutor()
        return

    try:
        yield pool
    finally:
        pool.shutdown(wait=True)


def submit_all(executor: Executor, fn: Callable, tasks: List) -> List[Future]:
    """
    Submit ``fn(task)`` for every task.

    An executor that refuses work (shut down, broken pool) is logged and the
    remaining tasks are run on a :class:`SerialExecutor` instead.
    """
    futures: List[Future] = []
    for idx, task in enumerate(tasks):
        try:
            futures.append(executor.submit(fn, task))
        except RuntimeError as exc:
            logger.warning(
                "Executor rejected task %d/%d (%s), running the rest serially",
                idx + 1,
                len(tasks),
                exc,
            )
            fallback = SerialExecutor()
            futures.extend(fallback.submit(fn, rest) for rest in tasks[idx:])
            break
    return futures
