"""
Test suite for the retrying task executor.

A fake clock stands in for time.monotonic and its sleep simply advances the
clock, so the 30 second backoff costs nothing.
"""

import threading
from unittest.mock import Mock, patch

import pytest

from kine_app.database import queries
from kine_app.database.models import Notification
from kine_app.errors import JobTimeoutError
from kine_app.jobs.executor import RetryingExecutor, is_timeout_error
from kine_app.jobs.program_notifications import generate_program_completed_notifications

from conftest import NOW


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []
        self._lock = threading.Lock()

    def __call__(self):
        with self._lock:
            return self.now

    def advance(self, seconds):
        with self._lock:
            self.now += seconds

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.advance(seconds)


class TestRetryingExecutor:

    def setup_method(self):
        self.clock = FakeClock()
        self.executor = RetryingExecutor(retry_delay_seconds=30, clock=self.clock, sleep=self.clock.sleep)

    def teardown_method(self):
        self.executor.shutdown(wait=False)

    def test_returns_result_on_first_success(self):
        work = Mock(return_value={'programs': 2})

        result = self.executor.execute('archive_programmes', work, timeout_seconds=90)

        assert result == {'programs': 2}
        work.assert_called_once_with()
        assert self.clock.sleeps == []

    def test_retries_once_after_timeout_and_returns_second_result(self):
        attempts = []

        def work():
            attempts.append(self.clock())
            if len(attempts) == 1:
                raise TimeoutError("Connection timeout while acquiring pool slot")
            return {'created': 1}

        result = self.executor.execute('program_notifications', work, timeout_seconds=90)

        assert result == {'created': 1}
        assert len(attempts) == 2
        assert self.clock.sleeps == [30]
        assert attempts[1] - attempts[0] >= 30

    def test_non_timeout_error_propagates_without_retry(self):
        work = Mock(side_effect=ValueError("relation \"programmes\" does not exist"))

        with pytest.raises(ValueError):
            self.executor.execute('purge_archived', work, timeout_seconds=120)

        assert work.call_count == 1
        assert self.clock.sleeps == []

    def test_second_timeout_propagates(self):
        work = Mock(side_effect=TimeoutError("statement timeout"))

        with pytest.raises(TimeoutError):
            self.executor.execute('reap_orphan_assets', work, timeout_seconds=120)

        assert work.call_count == 2
        assert self.clock.sleeps == [30]

    def test_no_retry_when_budget_exhausted(self):
        def work():
            self.clock.advance(95)
            raise TimeoutError("query timeout")

        with pytest.raises(TimeoutError):
            self.executor.execute('archive_programmes', work, timeout_seconds=90)

        assert self.clock.sleeps == []

    def test_message_based_timeout_is_retried(self):
        work = Mock(side_effect=[RuntimeError("Read timeout on endpoint URL"), {'deleted': 0}])

        result = self.executor.execute('reap_orphan_assets', work, timeout_seconds=120)

        assert result == {'deleted': 0}
        assert work.call_count == 2


class TestExecutorTimer:

    def test_slow_body_raises_job_timeout(self):
        sleep = Mock()
        executor = RetryingExecutor(retry_delay_seconds=30, sleep=sleep)
        release = threading.Event()

        def slow_work():
            release.wait(5)
            return 'late'

        try:
            with pytest.raises(JobTimeoutError) as exc_info:
                executor.execute('purge_archived', slow_work, timeout_seconds=0.05)
        finally:
            release.set()
            executor.shutdown(wait=False)

        assert exc_info.value.job_name == 'purge_archived'
        # The timer consumed the whole budget, so no retry is attempted
        sleep.assert_not_called()

    def test_fast_body_beats_timer(self):
        executor = RetryingExecutor(retry_delay_seconds=30)
        try:
            assert executor.execute('clean_kine_chat', lambda: {'deleted': 3}, timeout_seconds=5) == {'deleted': 3}
        finally:
            executor.shutdown(wait=False)

    def test_builtin_timeout_raised_by_body_is_retried(self):
        sleep = Mock()
        executor = RetryingExecutor(retry_delay_seconds=30, sleep=sleep)
        work = Mock(side_effect=[TimeoutError("timed out reading from server"), {'created': 2}])

        try:
            result = executor.execute('program_notifications', work, timeout_seconds=5)
        finally:
            executor.shutdown(wait=True, timeout=5)

        assert result == {'created': 2}
        assert work.call_count == 2
        sleep.assert_called_once_with(30)

    def test_body_exception_keeps_its_type(self):
        executor = RetryingExecutor(retry_delay_seconds=30, sleep=Mock())

        try:
            with pytest.raises(TimeoutError) as exc_info:
                executor.execute('reap_orphan_assets', Mock(side_effect=TimeoutError("read timeout")), timeout_seconds=5)
        finally:
            executor.shutdown(wait=True, timeout=5)

        assert not isinstance(exc_info.value, JobTimeoutError)

    def test_hung_attempts_do_not_starve_later_jobs(self):
        executor = RetryingExecutor(retry_delay_seconds=30, sleep=Mock())
        release = threading.Event()

        try:
            for _ in range(6):
                with pytest.raises(JobTimeoutError):
                    executor.execute('purge_archived', lambda: release.wait(10), timeout_seconds=0.05)

            assert executor.execute('clean_kine_chat', lambda: 'ok', timeout_seconds=2) == 'ok'
        finally:
            release.set()
            executor.shutdown(wait=True, timeout=5)


class TestAbandonedAttempt:

    def test_timed_out_attempt_does_not_commit(self, seed):
        seed.programme(seed.patient())
        inserted = threading.Event()
        release = threading.Event()
        real_create = queries.create_notification

        def slow_create(session, *args, **kwargs):
            row = real_create(session, *args, **kwargs)
            inserted.set()
            release.wait(5)
            return row

        executor = RetryingExecutor(retry_delay_seconds=30, sleep=Mock())

        with patch('kine_app.jobs.program_notifications.create_notification', side_effect=slow_create):
            try:
                with pytest.raises(JobTimeoutError):
                    executor.execute(
                        'program_notifications',
                        lambda: generate_program_completed_notifications(now=NOW),
                        timeout_seconds=0.2
                    )
            finally:
                release.set()
                executor.shutdown(wait=True, timeout=5)

        assert inserted.is_set()
        assert seed.fetch(lambda s: s.query(Notification).count()) == 0

    def test_next_attempt_commits_normally(self, seed):
        seed.programme(seed.patient())
        executor = RetryingExecutor(retry_delay_seconds=30, sleep=Mock())
        release = threading.Event()

        try:
            with pytest.raises(JobTimeoutError):
                executor.execute('purge_archived', lambda: release.wait(10), timeout_seconds=0.05)

            stats = executor.execute(
                'program_notifications',
                lambda: generate_program_completed_notifications(now=NOW),
                timeout_seconds=5
            )
        finally:
            release.set()
            executor.shutdown(wait=True, timeout=5)

        assert stats['created'] == 1
        assert seed.fetch(lambda s: s.query(Notification).count()) == 1


class TestIsTimeoutError:

    def test_job_timeout(self):
        assert is_timeout_error(JobTimeoutError('x', 1))

    def test_builtin_timeout(self):
        assert is_timeout_error(TimeoutError())

    def test_message_match_is_case_insensitive(self):
        assert is_timeout_error(Exception("Connect TIMEOUT on postgres"))

    def test_other_errors(self):
        assert not is_timeout_error(KeyError('programmeId'))
        assert not is_timeout_error(RuntimeError("unique constraint violated"))
