"""
Test suite for the maintenance scheduler.

The APScheduler instance and the executor are mocked: these tests check
registration, requeue-on-failure and the manual entry points, not timing.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, Mock, patch

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from kine_app.errors import UnknownJobError
from kine_app.jobs import JOB_SCHEDULES
from kine_app.jobs.scheduler import (
    MANUAL_TESTS,
    MaintenanceScheduler,
    ScheduledJob,
    default_jobs,
    manual_archive_test,
    manual_cleanup_test,
)

# Monday 19 October 2026, 12:00 in Paris
NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def make_job(name='archive_programmes', func=None, retry_after=timedelta(minutes=10)):
    return ScheduledJob(
        name=name,
        func=func or Mock(return_value={'programs': 0}),
        cron=JOB_SCHEDULES.get(name, '0 2 * * *'),
        timeout_seconds=90,
        manual_timeout_seconds=60,
        retry_after=retry_after
    )


class TestDefaultJobs:

    def test_registry(self):
        jobs = {job.name: job for job in default_jobs()}

        assert set(jobs) == set(JOB_SCHEDULES) == set(MANUAL_TESTS)
        assert jobs['program_notifications'].timeout_seconds == 90
        assert jobs['archive_programmes'].timeout_seconds == 90
        assert jobs['purge_archived'].timeout_seconds == 120
        assert jobs['reap_orphan_assets'].timeout_seconds == 120
        assert jobs['archive_programmes'].manual_timeout_seconds == 60
        assert jobs['purge_archived'].manual_timeout_seconds == 180
        assert jobs['clean_kine_chat'].retry_after is None
        assert all(
            jobs[name].retry_after == timedelta(minutes=10)
            for name in ('program_notifications', 'archive_programmes', 'purge_archived', 'reap_orphan_assets')
        )

    def test_next_run_times_in_paris(self):
        scheduler = MaintenanceScheduler(default_jobs(), executor=Mock(), clock=lambda: NOW)

        runs = scheduler.next_run_times()

        def local(name):
            fire = runs[name]
            return fire.date().isoformat(), fire.hour, fire.minute

        assert local('program_notifications') == ('2026-10-20', 0, 5)
        assert local('archive_programmes') == ('2026-10-20', 2, 0)
        assert local('clean_kine_chat') == ('2026-10-20', 2, 30)
        assert local('purge_archived') == ('2026-10-25', 3, 0)
        assert local('reap_orphan_assets') == ('2026-10-25', 4, 0)
        # Notifications run before archival on the same night
        assert runs['program_notifications'] < runs['archive_programmes']


class TestMaintenanceScheduler:

    def setup_method(self):
        self.executor = Mock()
        self.aps = MagicMock()
        self.job = make_job()
        self.scheduler = MaintenanceScheduler(
            [self.job, make_job('clean_kine_chat', retry_after=None)],
            executor=self.executor,
            clock=lambda: NOW,
            scheduler=self.aps
        )

    def test_start_registers_every_job(self):
        self.scheduler.start()

        assert self.scheduler.running
        self.aps.start.assert_called_once()
        registered = {c.kwargs['id']: c for c in self.aps.add_job.call_args_list}
        assert set(registered) == {'archive_programmes', 'clean_kine_chat'}

        call = registered['archive_programmes']
        assert call.args[0] == self.scheduler.run_job
        assert isinstance(call.args[1], CronTrigger)
        assert call.kwargs['args'] == ['archive_programmes']

    def test_start_twice_is_noop(self):
        self.scheduler.start()
        self.scheduler.start()
        self.aps.start.assert_called_once()

    def test_stop(self):
        self.scheduler.start()
        self.scheduler.stop()

        self.aps.shutdown.assert_called_once_with(wait=False)
        assert not self.scheduler.running

    def test_run_job_uses_scheduled_timeout(self):
        self.executor.execute.return_value = {'programs': 3}

        assert self.scheduler.run_job('archive_programmes') == {'programs': 3}
        self.executor.execute.assert_called_once_with('archive_programmes', self.job.func, 90)

    def test_failed_tick_is_requeued_once(self):
        self.scheduler.start()
        self.aps.add_job.reset_mock()
        self.executor.execute.side_effect = RuntimeError("database unavailable")

        assert self.scheduler.run_job('archive_programmes') is None

        self.aps.add_job.assert_called_once()
        call = self.aps.add_job.call_args
        assert isinstance(call.args[1], DateTrigger)
        assert call.kwargs['id'] == 'archive_programmes__requeue'
        assert call.kwargs['kwargs'] == {'requeue': False}
        assert call.args[1].run_date == NOW + timedelta(minutes=10)

    def test_requeued_run_failure_is_not_requeued_again(self):
        self.scheduler.start()
        self.aps.add_job.reset_mock()
        self.executor.execute.side_effect = RuntimeError("still down")

        assert self.scheduler.run_job('archive_programmes', requeue=False) is None
        self.aps.add_job.assert_not_called()

    def test_job_without_retry_policy_is_not_requeued(self):
        self.scheduler.start()
        self.aps.add_job.reset_mock()
        self.executor.execute.side_effect = RuntimeError("boom")

        self.scheduler.run_job('clean_kine_chat')
        self.aps.add_job.assert_not_called()

    def test_run_manual_uses_manual_timeout_and_raises(self):
        self.executor.execute.side_effect = RuntimeError("boom")

        with pytest.raises(RuntimeError):
            self.scheduler.run_manual('archive_programmes')
        self.executor.execute.assert_called_once_with('archive_programmes', self.job.func, 60)

    def test_unknown_job(self):
        with pytest.raises(UnknownJobError):
            self.scheduler.run_job('send_invoices')


class TestManualEntryPoints:

    @patch('kine_app.jobs.scheduler.get_default_executor')
    @patch('kine_app.jobs.scheduler.archive_finished_programmes')
    def test_manual_archive_test(self, mock_archive, mock_get_executor):
        mock_get_executor.return_value.execute.return_value = {'programs': 1, 'messages': 0, 'details': []}

        result = manual_archive_test()

        assert result['programs'] == 1
        mock_get_executor.return_value.execute.assert_called_once_with('archive_programmes', mock_archive, 60)

    @patch('kine_app.jobs.scheduler.get_default_executor')
    @patch('kine_app.jobs.scheduler.purge_archived_programmes')
    def test_manual_cleanup_test_runs_purge_with_long_timeout(self, mock_purge, mock_get_executor):
        manual_cleanup_test()

        mock_get_executor.return_value.execute.assert_called_once_with('purge_archived', mock_purge, 180)
