"""
Test AutosaveCoordinator - debounce, no-op detection, failure and overlap

Timers are fake: nothing fires until the test says so.

Run with: python3 tests/test_autosave.py
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from formflow.contracts import FormGraph, TextStep
from formflow.core.autosave import STATUS_PENDING, STATUS_SAVED, STATUS_SAVING, AutosaveCoordinator


class FakeTimer:
    """threading.Timer stand-in fired by hand"""

    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if self.cancelled or self.fired:
            return
        self.fired = True
        self.callback()


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def active(self):
        return [t for t in self.timers if t.started and not t.cancelled and not t.fired]

    def fire_all(self):
        for timer in list(self.active()):
            timer.fire()


class MockTemplateStore:
    """Mock store for testing"""

    def __init__(self):
        self.saves = []
        self.advisory = []
        self.fail = False
        self.raise_error = None
        self.during_save = None

    def save(self, template_id, name, graph):
        if self.during_save is not None:
            hook, self.during_save = self.during_save, None
            hook()
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail:
            return False
        self.saves.append((template_id, name, graph.to_json()))
        return True

    def save_advisory(self, template_id, name, graph):
        self.advisory.append((template_id, name, graph.to_json()))


def graph_with(question):
    return FormGraph(root_step_id="q1", steps={"q1": TextStep(id="q1", question=question)})


def make_coordinator(store=None):
    store = store or MockTemplateStore()
    factory = FakeTimerFactory()
    statuses = []
    coordinator = AutosaveCoordinator(
        "tpl-1",
        store,
        "My form",
        graph_with("v0"),
        debounce_seconds=1.5,
        timer_factory=factory,
        dispatch=lambda func: func(),
        on_status_change=statuses.append,
    )
    return coordinator, store, factory, statuses


def test_loaded_state_is_saved():
    coordinator, store, factory, statuses = make_coordinator()

    assert coordinator.status == STATUS_SAVED
    assert not coordinator.has_unsaved_changes

    coordinator.notify_change("My form", graph_with("v0"))
    assert coordinator.status == STATUS_SAVED
    assert factory.active() == []
    assert statuses == []

    print("✓ Loaded state saved test passed")


def test_debounced_save():
    """Rapid edits collapse into one save of the latest state"""
    coordinator, store, factory, statuses = make_coordinator()

    coordinator.notify_change("My form", graph_with("v1"))
    coordinator.notify_change("My form", graph_with("v2"))
    coordinator.notify_change("My form", graph_with("v3"))

    assert coordinator.status == STATUS_PENDING
    assert len(factory.active()) == 1
    assert factory.active()[0].delay == 1.5

    factory.fire_all()

    assert len(store.saves) == 1
    assert store.saves[0][2]["steps"]["q1"]["question"] == "v3"
    assert coordinator.status == STATUS_SAVED
    assert statuses == [STATUS_PENDING, STATUS_SAVING, STATUS_SAVED]

    print("✓ Debounced save test passed")


def test_revert_to_saved_cancels_save():
    """Undoing back to the saved content schedules nothing"""
    coordinator, store, factory, statuses = make_coordinator()

    coordinator.notify_change("My form", graph_with("v1"))
    coordinator.notify_change("My form", graph_with("v0"))

    assert coordinator.status == STATUS_SAVED
    assert factory.active() == []

    factory.fire_all()
    assert store.saves == []

    print("✓ Revert to saved test passed")


def test_repeated_firing_after_save_is_noop():
    coordinator, store, factory, _ = make_coordinator()

    coordinator.notify_change("My form", graph_with("v1"))
    factory.fire_all()
    for _ in range(3):
        coordinator.save_now()

    assert len(store.saves) == 1

    print("✓ Idempotent save test passed")


def test_rename_counts_as_change():
    coordinator, store, factory, _ = make_coordinator()

    coordinator.notify_change("Renamed", graph_with("v0"))
    assert coordinator.has_unsaved_changes
    factory.fire_all()
    assert store.saves[0][1] == "Renamed"

    print("✓ Rename change test passed")


def test_failed_save_retries_next_window():
    coordinator, store, factory, _ = make_coordinator()
    store.fail = True

    coordinator.notify_change("My form", graph_with("v1"))
    factory.fire_all()

    assert coordinator.status == STATUS_PENDING
    assert "Will retry shortly" in coordinator.last_error
    assert len(factory.active()) == 1

    store.fail = False
    factory.fire_all()

    assert coordinator.status == STATUS_SAVED
    assert coordinator.last_error is None
    assert len(store.saves) == 1

    print("✓ Failed save retry test passed")


def test_save_exception_is_contained():
    coordinator, store, factory, _ = make_coordinator()
    store.raise_error = ConnectionError("network down")

    coordinator.notify_change("My form", graph_with("v1"))
    factory.fire_all()

    assert coordinator.status == STATUS_PENDING
    assert "network down" in coordinator.last_error
    assert coordinator.has_unsaved_changes

    print("✓ Save exception test passed")


def test_no_overlapping_saves():
    """A timer firing mid-save is deferred, and the newer edit is saved after"""
    coordinator, store, factory, _ = make_coordinator()
    save_calls = []
    original_save = store.save

    def counting_save(template_id, name, graph):
        save_calls.append(graph.steps["q1"].question)
        return original_save(template_id, name, graph)

    store.save = counting_save

    def edit_during_save():
        coordinator.notify_change("My form", graph_with("v2"))
        # Timer fires while the first save is still in flight
        factory.fire_all()
        assert coordinator.status == STATUS_SAVING

    store.during_save = edit_during_save

    coordinator.notify_change("My form", graph_with("v1"))
    factory.fire_all()

    # Only the first save ran; the second state is waiting
    assert save_calls == ["v1"]
    assert coordinator.status == STATUS_PENDING
    assert len(factory.active()) == 1

    factory.fire_all()
    assert save_calls == ["v1", "v2"]
    assert coordinator.status == STATUS_SAVED

    print("✓ No overlapping saves test passed")


def test_save_now():
    coordinator, store, factory, _ = make_coordinator()

    coordinator.notify_change("My form", graph_with("v1"))
    assert coordinator.save_now()
    assert len(store.saves) == 1
    assert factory.active() == []

    print("✓ save_now test passed")


def test_advisory_flush():
    """Flush is fire-and-forget and never marks the state saved"""
    coordinator, store, factory, _ = make_coordinator()

    assert not coordinator.flush_advisory()
    assert store.advisory == []

    coordinator.notify_change("My form", graph_with("v1"))
    assert coordinator.on_hide()

    assert len(store.advisory) == 1
    assert store.saves == []
    assert factory.active() == []
    assert coordinator.has_unsaved_changes
    assert coordinator.status == STATUS_PENDING

    print("✓ Advisory flush test passed")


def test_advisory_flush_failure_is_swallowed():
    coordinator, store, factory, _ = make_coordinator()

    def broken(template_id, name, graph):
        raise OSError("gone")

    store.save_advisory = broken
    coordinator.notify_change("My form", graph_with("v1"))

    # Outcome is never observed by the caller
    assert coordinator.flush_advisory()

    print("✓ Advisory failure test passed")


def test_close_flushes_and_stops():
    coordinator, store, factory, _ = make_coordinator()

    coordinator.notify_change("My form", graph_with("v1"))
    coordinator.close()

    assert len(store.advisory) == 1
    assert factory.active() == []

    print("✓ Close test passed")


if __name__ == '__main__':
    print("\n" + "="*60)
    print("TESTING AUTOSAVE COORDINATOR")
    print("="*60 + "\n")

    test_loaded_state_is_saved()
    test_debounced_save()
    test_revert_to_saved_cancels_save()
    test_repeated_firing_after_save_is_noop()
    test_rename_counts_as_change()
    test_failed_save_retries_next_window()
    test_save_exception_is_contained()
    test_no_overlapping_saves()
    test_save_now()
    test_advisory_flush()
    test_advisory_flush_failure_is_swallowed()
    test_close_flushes_and_stops()

    print("\n" + "="*60)
    print("ALL AUTOSAVE TESTS PASSED ✓")
    print("="*60 + "\n")
