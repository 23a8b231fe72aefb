import tempfile
import unittest
from datetime import date
from pathlib import Path
from watchsync.models import ChangeLogEntry, Episode, LibrarySyncState, Movie, ResumeState, Snapshot
from watchsync.state import StateManager, one_month_before

def sample_state():
    return LibrarySyncState(
        movies=Snapshot[Movie](items=[
            Movie(label="Dune", year="2021", external_number="tt1160419", play_count=1, library_id=3),
        ], has_data=True),
        episodes=Snapshot[Episode](items=[
            Episode(label="Pilot", show_title="Show", resume=ResumeState(position=300, total=2400), library_id=8),
        ], has_data=True),
    )

class TestStateManager(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self.tmp.name) / "data"
        self.sm = StateManager(str(self.data_dir))

    def tearDown(self):
        self.tmp.cleanup()

    def test_snapshot_path_is_derived_from_address(self):
        self.assertEqual(self.sm.snapshot_path("192.168.1.20").name, "192_168_1_20.json")
        self.assertEqual(self.sm.snapshot_path("kodi-box.local").name, "kodi_box_local.json")

    def test_save_and_load_snapshot(self):
        state = sample_state()
        state.movies.items[0].is_watched_outdated = True

        self.assertTrue(self.sm.save_snapshot("10.0.0.5", state))
        self.assertTrue((self.data_dir / "10_0_0_5.json").exists())
        self.assertFalse((self.data_dir / "10_0_0_5.tmp").exists())

        loaded = self.sm.load_snapshot("10.0.0.5")
        self.assertTrue(loaded.has_results)
        self.assertEqual(loaded.movies.items[0].external_number, "tt1160419")
        self.assertEqual(loaded.movies.items[0].play_count, 1)
        self.assertFalse(loaded.movies.items[0].is_outdated)
        self.assertEqual(loaded.episodes.items[0].resume.position, 300)
        self.assertEqual(loaded.episodes.items[0].library_id, 8)

    def test_cache_uses_service_field_names(self):
        self.sm.save_snapshot("10.0.0.5", sample_state())
        text = (self.data_dir / "10_0_0_5.json").read_text()
        self.assertIn('"imdbnumber"', text)
        self.assertIn('"showtitle"', text)
        self.assertNotIn("outdated", text)

    def test_missing_snapshot_has_no_results(self):
        self.assertFalse(self.sm.load_snapshot("10.0.0.9").has_results)

    def test_corrupt_snapshot_has_no_results(self):
        self.data_dir.mkdir(parents=True)
        (self.data_dir / "10_0_0_5.json").write_text("{not json")
        self.assertFalse(self.sm.load_snapshot("10.0.0.5").has_results)

    def test_save_failure_is_reported(self):
        # A file where the data directory should be
        blocker = Path(self.tmp.name) / "blocked"
        blocker.write_text("")
        sm = StateManager(str(blocker / "data"))
        self.assertFalse(sm.save_snapshot("10.0.0.5", sample_state()))

    def test_append_changes(self):
        day = date(2024, 5, 14)
        first = [ChangeLogEntry(library="Kodi", message="Dune 2021 updated", detail="Set to watched")]
        second = [ChangeLogEntry(library="Kodi", message="Show Pilot updated", detail="Set resume pos to 300")]

        self.assertTrue(self.sm.append_changes(first, today=day))
        self.assertTrue(self.sm.append_changes(second, today=day))

        entries = self.sm.read_changes(day)
        self.assertEqual([e.message for e in entries], ["Dune 2021 updated", "Show Pilot updated"])
        self.assertTrue((self.data_dir / "Log_20240514.jsonl").exists())

    def test_append_nothing_writes_nothing(self):
        self.assertTrue(self.sm.append_changes([], today=date(2024, 5, 14)))
        self.assertFalse(self.data_dir.exists())

    def test_append_purges_log_from_one_month_ago(self):
        self.data_dir.mkdir(parents=True)
        expired = self.data_dir / "Log_20240414.jsonl"
        kept = self.data_dir / "Log_20240413.jsonl"
        expired.write_text("")
        kept.write_text("")

        self.sm.append_changes([ChangeLogEntry(message="x")], today=date(2024, 5, 14))

        self.assertFalse(expired.exists())
        self.assertTrue(kept.exists())

    def test_failed_purge_keeps_written_entries(self):
        # A directory in place of the expired log cannot be unlinked
        expired = self.data_dir / "Log_20240414.jsonl"
        expired.mkdir(parents=True)

        ok = self.sm.append_changes([ChangeLogEntry(message="Dune 2021 updated")], today=date(2024, 5, 14))

        self.assertTrue(ok)
        self.assertTrue(expired.exists())
        self.assertEqual([e.message for e in self.sm.read_changes(date(2024, 5, 14))], ["Dune 2021 updated"])

    def test_truncated_log_line_is_skipped(self):
        day = date(2024, 5, 14)
        self.sm.append_changes([ChangeLogEntry(message="Dune 2021 updated")], today=day)
        with open(self.sm.log_path(day), "a", encoding="utf-8") as f:
            f.write('{"timestamp": "2024-05')

        entries = self.sm.read_changes(day)

        self.assertEqual([e.message for e in entries], ["Dune 2021 updated"])

    def test_append_failure_is_reported(self):
        blocker = Path(self.tmp.name) / "blocked"
        blocker.write_text("")
        sm = StateManager(str(blocker / "data"))
        self.assertFalse(sm.append_changes([ChangeLogEntry(message="x")], today=date(2024, 5, 14)))

class TestOneMonthBefore(unittest.TestCase):
    def test_same_day(self):
        self.assertEqual(one_month_before(date(2024, 5, 14)), date(2024, 4, 14))

    def test_january_wraps_year(self):
        self.assertEqual(one_month_before(date(2024, 1, 10)), date(2023, 12, 10))

    def test_clamps_to_short_month(self):
        self.assertEqual(one_month_before(date(2024, 3, 31)), date(2024, 2, 29))
        self.assertEqual(one_month_before(date(2023, 3, 31)), date(2023, 2, 28))

if __name__ == '__main__':
    unittest.main()
