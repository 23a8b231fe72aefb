import tempfile
import unittest
from datetime import date, datetime
from fastapi.testclient import TestClient
from watchsync import server
from watchsync.config import settings
from watchsync.models import ChangeLogEntry, LaneReport, RunReport
from watchsync.state import StateManager

class StubService:
    def __init__(self, report=None, state_manager=None):
        self.last_report = report
        self.state_manager = state_manager

class TestServer(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(server.app)
        settings.HTTP_SERVER_TOKEN = None
        self.addCleanup(setattr, server, "service", None)

    def test_healthz_before_first_run(self):
        server.service = StubService()
        self.assertEqual(self.client.get("/healthz").json(), {"status": "starting"})

    def test_healthz_after_run(self):
        server.service = StubService(RunReport(finished_at=datetime.now()))
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})

    def test_status_requires_token(self):
        settings.HTTP_SERVER_TOKEN = "s3cret"
        self.addCleanup(setattr, settings, "HTTP_SERVER_TOKEN", None)
        server.service = StubService(RunReport(finished_at=datetime.now()))

        self.assertEqual(self.client.get("/status").status_code, 401)
        resp = self.client.get("/status", headers={"X-Token": "s3cret"})
        self.assertEqual(resp.status_code, 200)
        self.assertIn("last_run", resp.json())

    def test_changes_lists_todays_log(self):
        with tempfile.TemporaryDirectory() as tmp:
            sm = StateManager(tmp)
            sm.append_changes([ChangeLogEntry(library="Kodi", message="Dune 2021 updated", detail="Set to watched")],
                              today=date.today())
            server.service = StubService(state_manager=sm)

            entries = self.client.get("/changes").json()

        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["detail"], "Set to watched")

    def test_metrics(self):
        report = RunReport(finished_at=datetime.now(), changes=1, lanes=[
            LaneReport(name="Kodi", state="online", movies=3, episodes=7, updated=1),
        ])
        server.service = StubService(report)

        text = self.client.get("/metrics").text

        self.assertIn('watchsync_online{library="Kodi"} 1', text)
        self.assertIn('watchsync_episodes{library="Kodi"} 7', text)
        self.assertIn('watchsync_changes 1', text)

if __name__ == '__main__':
    unittest.main()
