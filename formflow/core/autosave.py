"""
Autosave Coordinator - debounced background saving for the form editor

Responsibilities:
- Track the last saved {name, graph} and the current editable pair
- Skip no-op saves by comparing serialized content, not timestamps
- Debounce saves behind one owned timer (cancel-then-reschedule)
- Never overlap two saves: a timer firing during a save is deferred to the
  next debounce window, never dropped and never duplicated
- Flush unsaved state on hide/teardown with an advisory, fire-and-forget
  request whose outcome is never observed

Status values:
    saved   - current content equals last saved content
    pending - unsaved changes, a save is scheduled
    saving  - a save call is in flight

Failure contract: a failed save leaves the status pending and retries on
the next debounce window. It is not guaranteed delivery.
"""

import json
import logging
import threading
from typing import Callable, Optional

from formflow.contracts import FormGraph
from formflow.utils.debounce import DebounceTimer

logger = logging.getLogger(__name__)


STATUS_SAVED = "saved"
STATUS_PENDING = "pending"
STATUS_SAVING = "saving"

DEFAULT_DEBOUNCE_SECONDS = 1.5


def serialize_state(name: str, graph: Optional[FormGraph]) -> str:
    """Canonical serialization used for the content equality check."""
    return json.dumps(
        {"name": name, "graph": graph.to_json() if graph is not None else None},
        sort_keys=True,
    )


def _fire_and_forget(func: Callable[[], None]) -> None:
    threading.Thread(target=func, name="autosave-advisory-flush", daemon=True).start()


class AutosaveCoordinator:
    """Editor-side autosave for one template."""

    def __init__(
        self,
        template_id: str,
        store,
        name: str,
        graph: FormGraph,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        timer_factory: Optional[Callable] = None,
        dispatch: Optional[Callable[[Callable[[], None]], None]] = None,
        on_status_change: Optional[Callable[[str], None]] = None,
    ):
        """
        Args:
            template_id: Template being edited
            store: Template Store with save() and save_advisory()
            name: Name as loaded (treated as already saved)
            graph: Graph as loaded (treated as already saved)
            debounce_seconds: Quiet period before a save
            timer_factory: threading.Timer-compatible constructor (tests inject fakes)
            dispatch: Runs the advisory flush without waiting (default: daemon thread)
            on_status_change: Called with the new status on every change
        """
        self.template_id = template_id
        self.store = store
        self._lock = threading.RLock()
        self._dispatch = dispatch or _fire_and_forget
        self._on_status_change = on_status_change

        self._current_name = name
        self._current_graph = graph.clone()
        self._last_saved_payload = serialize_state(name, graph)

        self._status = STATUS_SAVED
        self._saving = False
        self.last_error: Optional[str] = None
        self._timer = DebounceTimer(debounce_seconds, self._on_timer, timer_factory)

        logger.info(f"Autosave initialized for template {template_id}")

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    @property
    def has_unsaved_changes(self) -> bool:
        """True when leaving now would lose edits (drives the navigation guard)."""
        with self._lock:
            return serialize_state(self._current_name, self._current_graph) != self._last_saved_payload

    def notify_change(self, name: str, graph: FormGraph) -> None:
        """
        Observe a new editable state.

        Equal to the last save -> 'saved' and nothing is scheduled (this is
        what keeps an undo back to the saved state from triggering a save).
        Different -> 'pending' and the debounce timer restarts.
        """
        with self._lock:
            self._current_name = name
            self._current_graph = graph.clone()

            if serialize_state(name, graph) == self._last_saved_payload:
                self._timer.cancel()
                if not self._saving:
                    self._set_status(STATUS_SAVED)
                return

            if not self._saving:
                self._set_status(STATUS_PENDING)

        self._timer.schedule()

    def save_now(self) -> bool:
        """
        Save immediately instead of waiting for the timer.

        Returns:
            True when nothing is left unsaved afterwards
        """
        self._timer.cancel()
        self._on_timer()
        return self.status == STATUS_SAVED

    def flush_advisory(self) -> bool:
        """
        Best-effort flush for page hide, tab hide and teardown.

        Sends the unsaved state through store.save_advisory() without
        waiting and without looking at the outcome. last_saved is NOT
        updated: an advisory flush is not a confirmed save.

        Returns:
            True when a flush was dispatched
        """
        with self._lock:
            self._timer.cancel()
            if serialize_state(self._current_name, self._current_graph) == self._last_saved_payload:
                return False
            name = self._current_name
            graph = self._current_graph.clone()

        sender = getattr(self.store, "save_advisory", None) or self.store.save
        template_id = self.template_id

        def send():
            try:
                sender(template_id, name, graph)
            except Exception as e:
                logger.warning(f"Advisory flush for template {template_id} failed: {e}")

        self._dispatch(send)
        logger.info(f"Advisory flush dispatched for template {template_id}")
        return True

    def on_hide(self) -> bool:
        """Page-hide / tab-hide hook."""
        return self.flush_advisory()

    def close(self) -> None:
        """Teardown: flush once, then stop observing."""
        self.flush_advisory()
        self._timer.cancel()

    # =========================================================================
    # Timer callback
    # =========================================================================

    def _on_timer(self) -> None:
        with self._lock:
            if self._saving:
                logger.debug("Save in flight, deferring to next debounce window")
                defer = True
            else:
                defer = False
                payload = serialize_state(self._current_name, self._current_graph)
                if payload == self._last_saved_payload:
                    self._set_status(STATUS_SAVED)
                    return
                self._saving = True
                self._set_status(STATUS_SAVING)
                name = self._current_name
                graph = self._current_graph.clone()

        if defer:
            self._timer.schedule()
            return

        try:
            ok = bool(self.store.save(self.template_id, name, graph))
            error = None if ok else "save was rejected"
        except Exception as e:
            ok = False
            error = str(e) or type(e).__name__

        with self._lock:
            self._saving = False
            if ok:
                self._last_saved_payload = payload
                self.last_error = None
                current = serialize_state(self._current_name, self._current_graph)
                reschedule = current != payload
                self._set_status(STATUS_PENDING if reschedule else STATUS_SAVED)
                logger.info(f"Autosaved template {self.template_id}")
            else:
                reschedule = True
                self.last_error = f"Could not save changes ({error}). Will retry shortly."
                self._set_status(STATUS_PENDING)
                logger.error(f"Autosave failed for template {self.template_id}: {error}")

        if reschedule:
            self._timer.schedule()

    def _set_status(self, status: str) -> None:
        if status == self._status:
            return
        self._status = status
        if self._on_status_change is not None:
            self._on_status_change(status)
