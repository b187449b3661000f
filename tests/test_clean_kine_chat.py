"""
Test suite for the practitioner chat history cleanup.
"""

from datetime import timedelta

from kine_app.database.models import ChatKine
from kine_app.jobs.clean_kine_chat import clean_kine_chat_history

from conftest import NOW


class TestCleanKineChatHistory:

    def test_deletes_only_rows_older_than_retention(self, seed):
        patient = seed.patient()
        seed.kine_chat(patient.kine_id, NOW - timedelta(days=6))
        seed.kine_chat(patient.kine_id, NOW - timedelta(days=5, seconds=1))
        recent = seed.kine_chat(patient.kine_id, NOW - timedelta(days=4))

        result = clean_kine_chat_history(now=NOW)

        assert result == {'deleted': 2}
        remaining = seed.fetch(lambda s: [row.id for row in s.query(ChatKine).all()])
        assert remaining == [recent.id]

    def test_nothing_to_delete(self, seed):
        assert clean_kine_chat_history(now=NOW) == {'deleted': 0}
