import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import tempfile

from intraday_engine.utils.persistence import DebouncedJsonWriter, load_state, save_state

import unittest


class FakeClock:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


class TestStateFiles(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = tmp.name

    def test_missing_file_loads_as_none(self) -> None:
        self.assertIsNone(load_state(os.path.join(self.dir, "nothing.json")))

    def test_save_creates_parents_and_leaves_no_temp_file(self) -> None:
        path = os.path.join(self.dir, "nested", "live-state.json")
        save_state(path, {'b': 1, 'a': "₹"})
        self.assertEqual(load_state(path), {'a': "₹", 'b': 1})
        self.assertEqual(os.listdir(os.path.dirname(path)), ["live-state.json"])

    def test_non_object_document_is_ignored(self) -> None:
        path = os.path.join(self.dir, "list.json")
        with open(path, "w", encoding="utf-8") as fh:
            fh.write("[1, 2, 3]")
        self.assertIsNone(load_state(path))


class TestDebouncedJsonWriter(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.path = os.path.join(tmp.name, "state.json")
        self.clock = FakeClock()
        self.writer = DebouncedJsonWriter(self.path, 5.0, clock=self.clock)
        self.builds = 0

    def _build(self) -> dict:
        self.builds += 1
        return {'version': self.builds}

    def test_clean_writer_does_not_write(self) -> None:
        self.assertFalse(self.writer.flush(self._build))
        self.assertFalse(os.path.exists(self.path))

    def test_dirty_writes_respect_interval(self) -> None:
        self.writer.mark_dirty()
        self.assertTrue(self.writer.flush(self._build))
        self.writer.mark_dirty()
        self.clock.value = 4.0
        self.assertFalse(self.writer.flush(self._build))
        self.clock.value = 5.0
        self.assertTrue(self.writer.flush(self._build))
        self.assertEqual(load_state(self.path), {'version': 2})
        self.assertFalse(self.writer.dirty)

    def test_force_ignores_interval(self) -> None:
        self.writer.mark_dirty()
        self.writer.flush(self._build)
        self.assertTrue(self.writer.flush(self._build, force=True))
        self.assertEqual(self.builds, 2)


if __name__ == '__main__':
    unittest.main()
