"""Scan options shared by every walker, including the worker budget."""

import threading

UNBOUNDED = -1
# Worker ids and counters fit in a signed 16-bit range
MAX_WORKERS_LIMIT = 32767


class Options:
    """
    Behaviour flags plus the live worker budget for one scan.

    Every accessor takes the same lock. Only try_acquire() and release()
    read and modify the counter in a single critical section, so admission
    stays race-free however many walkers fan out at once.
    """

    def __init__(
        self,
        require_confirmation: bool = True,
        delete_duplicates: bool = False,
        max_workers: int = UNBOUNDED,
    ):
        """
        Initialize scan options.

        Args:
            require_confirmation: Ask before deleting each duplicate
            delete_duplicates: Remove duplicates instead of only reporting them
            max_workers: Maximum concurrent walker tasks (-1 = unbounded)

        Raises:
            ValueError: If max_workers is out of range
        """
        if max_workers != UNBOUNDED and not 1 <= max_workers <= MAX_WORKERS_LIMIT:
            raise ValueError(f"max_workers must be -1 or between 1 and {MAX_WORKERS_LIMIT}, got {max_workers}")

        self._lock = threading.Lock()
        self._require_confirmation = require_confirmation
        self._delete_duplicates = delete_duplicates
        self._max_workers = max_workers
        self._current_workers = 0
        self._peak_workers = 0

    @property
    def require_confirmation(self) -> bool:
        with self._lock:
            return self._require_confirmation

    @require_confirmation.setter
    def require_confirmation(self, value: bool) -> None:
        with self._lock:
            self._require_confirmation = value

    @property
    def delete_duplicates(self) -> bool:
        with self._lock:
            return self._delete_duplicates

    @delete_duplicates.setter
    def delete_duplicates(self, value: bool) -> None:
        with self._lock:
            self._delete_duplicates = value

    @property
    def max_workers(self) -> int:
        with self._lock:
            return self._max_workers

    @max_workers.setter
    def max_workers(self, value: int) -> None:
        with self._lock:
            self._max_workers = value

    @property
    def current_workers(self) -> int:
        with self._lock:
            return self._current_workers

    @current_workers.setter
    def current_workers(self, value: int) -> None:
        with self._lock:
            self._current_workers = value
            self._peak_workers = max(self._peak_workers, value)

    @property
    def peak_workers(self) -> int:
        """Highest number of simultaneously admitted workers seen so far."""
        with self._lock:
            return self._peak_workers

    def try_acquire(self) -> bool:
        """
        Claim a worker slot if the budget allows it.

        Returns:
            True if a slot was granted (caller must release() it later),
            False if the budget is exhausted (nothing changed)
        """
        with self._lock:
            if self._max_workers == UNBOUNDED or self._current_workers < self._max_workers:
                self._current_workers += 1
                self._peak_workers = max(self._peak_workers, self._current_workers)
                return True
            return False

    def release(self) -> None:
        """Return a slot granted by try_acquire()."""
        with self._lock:
            if self._current_workers <= 0:
                raise RuntimeError("release() called without a matching try_acquire()")
            self._current_workers -= 1

    def as_dict(self) -> dict:
        with self._lock:
            return {
                "require_confirmation": self._require_confirmation,
                "delete_duplicates": self._delete_duplicates,
                "max_workers": self._max_workers,
            }
