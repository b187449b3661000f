"""
End-to-end scenario: a programme that ended yesterday is notified, then
archived, both runs going through the retrying executor.
"""

from datetime import timedelta

from kine_app.database.models import Notification, Programme, ensure_utc
from kine_app.jobs.archive_programmes import archive_finished_programmes
from kine_app.jobs.executor import RetryingExecutor
from kine_app.jobs.program_notifications import generate_program_completed_notifications

from conftest import NOW


class TestNotifyThenArchive:

    def setup_method(self):
        self.executor = RetryingExecutor(retry_delay_seconds=0)

    def teardown_method(self):
        self.executor.shutdown(wait=True)

    def test_scenario(self, seed):
        patient = seed.patient("Chloé", "Moreau")
        yesterday = NOW - timedelta(days=1)
        programme = seed.programme(
            patient,
            titre="Renforcement quadriceps",
            date_debut=yesterday - timedelta(days=4),
            date_fin=yesterday
        )
        seed.validations(programme, 3)

        notified = self.executor.execute(
            'program_notifications',
            lambda: generate_program_completed_notifications(now=NOW),
            timeout_seconds=30
        )

        assert notified['created'] == 1
        notifications = seed.fetch(lambda s: s.query(Notification).all())
        assert len(notifications) == 1
        assert notifications[0].payload['totalDays'] == 5
        assert notifications[0].payload['completionPercentage'] == 60

        archived = self.executor.execute(
            'archive_programmes',
            lambda: archive_finished_programmes(now=NOW),
            timeout_seconds=30
        )

        assert archived['programs'] == 1
        stored = seed.fetch(lambda s: s.get(Programme, programme.id))
        assert stored.is_archived is True
        assert ensure_utc(stored.archived_at) == NOW

        # Archived programmes are no longer candidates for notification
        again = generate_program_completed_notifications(now=NOW + timedelta(days=1))
        assert again['checked'] == 0
