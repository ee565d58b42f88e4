"""
Tests for HistoryManager

Covers linear undo/redo, redo-tail truncation and snapshot isolation.
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

from formflow.contracts import FormGraph, TextStep
from formflow.core.history_manager import HistoryManager


def graph_with(question):
    return FormGraph(
        root_step_id="q1",
        steps={"q1": TextStep(id="q1", question=question)},
    )


class TestHistoryManager(unittest.TestCase):

    def setUp(self):
        self.cleared = []
        self.history = HistoryManager(clear_selection=lambda: self.cleared.append(True))
        self.history.load(graph_with("v0"))

    def test_load_has_nothing_to_undo(self):
        self.assertFalse(self.history.can_undo)
        self.assertFalse(self.history.can_redo)
        self.assertEqual(len(self.history), 1)
        self.assertIsNone(self.history.undo())
        self.assertIsNone(self.history.redo())

    def test_undo_redo_round_trip(self):
        self.history.push(graph_with("v1"))
        self.history.push(graph_with("v2"))

        self.assertEqual(self.history.undo().steps["q1"].question, "v1")
        self.assertEqual(self.history.undo().steps["q1"].question, "v0")
        self.assertFalse(self.history.can_undo)

        self.assertEqual(self.history.redo().steps["q1"].question, "v1")
        self.assertEqual(self.history.redo().steps["q1"].question, "v2")
        self.assertFalse(self.history.can_redo)

        # Selection cleared on each of the four restores
        self.assertEqual(len(self.cleared), 4)

    def test_two_undos_then_push_drops_both(self):
        self.history.push(graph_with("s1"))
        self.history.push(graph_with("s2"))
        self.history.undo()
        restored = self.history.undo()
        self.assertEqual(restored.steps["q1"].question, "v0")

        self.history.push(graph_with("s3"))

        self.assertIsNone(self.history.redo())
        self.assertEqual(len(self.history), 2)

    def test_push_after_undo_discards_redo_tail(self):
        self.history.push(graph_with("v1"))
        self.history.push(graph_with("v2"))
        self.history.undo()

        self.history.push(graph_with("v3"))

        self.assertFalse(self.history.can_redo)
        self.assertEqual(len(self.history), 3)
        self.assertEqual(self.history.snapshot(2).steps["q1"].question, "v3")
        self.assertEqual(self.history.undo().steps["q1"].question, "v1")

    def test_snapshots_are_isolated_from_caller(self):
        live = graph_with("v1")
        self.history.push(live)

        # Editing the pushed object must not reach history
        live.steps["q1"].question = "mutated"
        self.assertEqual(self.history.current().steps["q1"].question, "v1")

        # Editing a returned graph must not reach history either
        restored = self.history.undo()
        restored.steps["q1"].question = "mutated again"
        self.assertEqual(self.history.snapshot(0).steps["q1"].question, "v0")
        self.assertIsNot(self.history.current(), self.history.current())

    def test_snapshot_out_of_range(self):
        with self.assertRaises(IndexError):
            self.history.snapshot(5)

    def test_push_before_load_seeds(self):
        history = HistoryManager()
        self.assertIsNone(history.current())

        history.push(graph_with("first"))
        self.assertEqual(history.cursor, 0)
        self.assertFalse(history.can_undo)


def run_tests():
    """Run all tests"""
    suite = unittest.TestLoader().loadTestsFromTestCase(TestHistoryManager)
    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return result.wasSuccessful()


if __name__ == '__main__':
    success = run_tests()
    sys.exit(0 if success else 1)
