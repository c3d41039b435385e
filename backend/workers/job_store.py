"""TTL-bounded store for in-flight document jobs."""
import logging
import time
from typing import Callable, Optional

from cachetools import TTLCache

from config import settings

logger = logging.getLogger(__name__)


class JobStore:
    """
    Two TTL caches owned by the pipeline.

    ``awaiting`` holds analysed jobs keyed by user id until the user picks a
    party.  It is last-write-wins: a newer job for the same user replaces the
    older one and the older party-selection buttons then resolve to the newer
    analysis.  ``pending`` holds rejected jobs keyed by their short id so that
    the "this is a contract" and "process as text" buttons can resume them
    without downloading the file again.
    """

    def __init__(self, ttl: Optional[int] = None, maxsize: Optional[int] = None,
                 timer: Callable[[], float] = time.monotonic):
        ttl = ttl or settings.JOB_TTL_SECONDS
        maxsize = maxsize or settings.JOB_STORE_MAX_SIZE
        self._awaiting = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._pending = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)

    def put_awaiting(self, job) -> None:
        previous = self._awaiting.get(job.user_id)
        if previous is not None and previous.job_id != job.job_id:
            logger.info(f"Job {job.job_id} replaces pending party selection of job {previous.job_id} "
                        f"for user {job.user_id}")
        self._awaiting[job.user_id] = job

    def get_awaiting(self, user_id: str):
        return self._awaiting.get(user_id)

    def pop_awaiting(self, user_id: str):
        return self._awaiting.pop(user_id, None)

    def put_pending(self, job) -> None:
        self._pending[job.job_id] = job

    def get_pending(self, job_id: str):
        return self._pending.get(job_id)

    def pop_pending(self, job_id: str):
        return self._pending.pop(job_id, None)

    def __len__(self) -> int:
        return len(self._awaiting) + len(self._pending)
