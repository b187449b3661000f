"""
executor.py - The Stopwatch

Runs a job body against a hard time budget. A body that fails with a
timeout while budget remains is run exactly once more after a fixed
backoff; every other failure propagates immediately.
"""

import logging
import threading
import time
from concurrent.futures import Future, wait as wait_futures
from typing import Any, Callable, Optional, Set, TypeVar

from config.settings import JOB_RETRY_DELAY_SECONDS
from kine_app.database.session import bind_abandon_flag, unbind_abandon_flag
from kine_app.errors import JobTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar('T')


def is_timeout_error(error: BaseException) -> bool:
    """
    Decide whether a failure counts as a timeout.

    Driver and storage layers report connection or statement timeouts with
    their own exception types, so the message is inspected as well.
    """
    if isinstance(error, (JobTimeoutError, TimeoutError)):
        return True
    return 'timeout' in str(error).lower()


class RetryingExecutor:
    """
    Timeout-bounded runner with a single retry on timeout.

    Each attempt runs on its own daemon thread, so a body stuck past its
    budget never holds up later jobs. An abandoned attempt keeps running
    until it returns, but its database units of work roll back instead of
    committing.

    Args:
        retry_delay_seconds: Backoff before the retry
        clock: Monotonic time source, in seconds
        sleep: Blocking sleep used for the backoff
    """

    def __init__(self,
                 retry_delay_seconds: float = JOB_RETRY_DELAY_SECONDS,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.retry_delay_seconds = retry_delay_seconds
        self.clock = clock
        self.sleep = sleep
        self._threads: Set[threading.Thread] = set()
        self._threads_lock = threading.Lock()

    def _start_attempt(self, name: str, work: Callable[[], T]):
        future = Future()
        abandoned = threading.Event()

        def run():
            token = bind_abandon_flag(abandoned)
            try:
                future.set_result(work())
            except BaseException as e:
                future.set_exception(e)
            finally:
                unbind_abandon_flag(token)
                with self._threads_lock:
                    self._threads.discard(threading.current_thread())

        thread = threading.Thread(target=run, name=f'maintenance-{name}', daemon=True)
        with self._threads_lock:
            self._threads.add(thread)
        future.set_running_or_notify_cancel()
        thread.start()
        return future, abandoned

    def _run_attempt(self, name: str, work: Callable[[], T], timeout_seconds: float) -> T:
        future, abandoned = self._start_attempt(name, work)

        done, _ = wait_futures([future], timeout=timeout_seconds)
        if not done:
            abandoned.set()
            raise JobTimeoutError(name, timeout_seconds)

        # Re-raises the body's own exception unchanged
        return future.result()

    def execute(self, name: str, work: Callable[[], T], timeout_seconds: float) -> T:
        """
        Run `work` within `timeout_seconds`, retrying once on an early timeout.

        Args:
            name: Job name used in log lines
            work: Zero-argument callable performing the job
            timeout_seconds: Budget for each attempt

        Returns:
            The result of the successful attempt

        Raises:
            JobTimeoutError: If an attempt exceeds its budget and cannot be retried
            Exception: Any non-timeout failure of `work`, or the retry's failure
        """
        started_at = self.clock()
        deadline = started_at + timeout_seconds
        logger.info(f"⏱️ [{name}] starting (timeout {timeout_seconds:g}s)")

        try:
            result = self._run_attempt(name, work, timeout_seconds)

        except Exception as e:
            failed_at = self.clock()
            elapsed = failed_at - started_at

            if not is_timeout_error(e):
                logger.error(f"❌ [{name}] failed after {elapsed:.2f}s: {e}")
                raise

            # An expired timer has consumed the whole budget by definition
            remaining = 0.0 if isinstance(e, JobTimeoutError) else deadline - failed_at
            if remaining <= 0:
                logger.error(f"❌ [{name}] timed out after {elapsed:.2f}s, budget exhausted: {e}")
                raise

            logger.warning(
                f"⚠️ [{name}] timeout after {elapsed:.2f}s ({remaining:.2f}s budget left), "
                f"retrying in {self.retry_delay_seconds:g}s"
            )
            self.sleep(self.retry_delay_seconds)

            retry_started_at = self.clock()
            try:
                result = self._run_attempt(name, work, timeout_seconds)
            except Exception as retry_error:
                logger.error(
                    f"❌ [{name}] retry failed after {self.clock() - retry_started_at:.2f}s: {retry_error}"
                )
                raise

            logger.info(
                f"✅ [{name}] succeeded on retry in {self.clock() - retry_started_at:.2f}s "
                f"(total {self.clock() - started_at:.2f}s)"
            )
            return result

        logger.info(f"✅ [{name}] completed in {self.clock() - started_at:.2f}s")
        return result

    def shutdown(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """Optionally wait for attempt threads still running, abandoned ones included."""
        if not wait:
            return

        with self._threads_lock:
            running = list(self._threads)
        for thread in running:
            thread.join(timeout)


_default_executor: Optional[RetryingExecutor] = None
_default_lock = threading.Lock()


def get_default_executor() -> RetryingExecutor:
    """Process-wide executor used by the scheduled and manual entry points."""
    global _default_executor
    with _default_lock:
        if _default_executor is None:
            _default_executor = RetryingExecutor()
        return _default_executor


def execute_with_timeout(name: str, work: Callable[[], Any], timeout_seconds: float) -> Any:
    """Run `work` through the default executor."""
    return get_default_executor().execute(name, work, timeout_seconds)
