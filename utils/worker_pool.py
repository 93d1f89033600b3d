import logging
from typing import Any, Callable, Iterable, List, Optional
from joblib import Parallel, delayed, cpu_count


class WorkerPool:
    """
    Explicit handle over a fixed-size joblib worker pool.

    The pool is acquired once by entering the context and released on every exit
    path, including when a task raises. Tasks submitted outside the context are
    rejected so no caller can hold the pool past its own scope.
    """

    def __init__(self, n_jobs: int = 1, backend: str = "loky", logger: Optional[logging.Logger] = None):
        self.n_jobs = cpu_count() if n_jobs == -1 else max(1, int(n_jobs))
        self.backend = backend
        self.logger = logger or logging.getLogger(__name__)
        self._parallel: Optional[Parallel] = None

    def __enter__(self) -> "WorkerPool":
        if self._parallel is not None:
            raise RuntimeError("WorkerPool is already acquired.")
        self._parallel = Parallel(n_jobs=self.n_jobs, backend=self.backend)
        self._parallel.__enter__()
        self.logger.info(f"Worker pool acquired ({self.n_jobs} workers, backend={self.backend}).")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        parallel, self._parallel = self._parallel, None
        if parallel is not None:
            parallel.__exit__(exc_type, exc, tb)
            self.logger.info("Worker pool released.")

    @property
    def active(self) -> bool:
        return self._parallel is not None

    def map(self, func: Callable[..., Any], items: Iterable[Any]) -> List[Any]:
        """Run func over items on the pool; results come back in submission order."""
        if self._parallel is None:
            raise RuntimeError("WorkerPool used outside of its acquisition scope.")
        return self._parallel(delayed(func)(item) for item in items)

    def inner_jobs(self, n_outer_tasks: int) -> int:
        """
        Workers left for nested parallelism when n_outer_tasks run concurrently.
        outer x inner never exceeds the pool size.
        """
        concurrent = max(1, min(int(n_outer_tasks), self.n_jobs))
        return max(1, self.n_jobs // concurrent)
