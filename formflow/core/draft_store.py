"""
Draft Store - best-effort recovery of in-progress form fills

DraftStore reads and writes one serialized Draft per form in a Local
Storage (get_item / set_item / remove_item). DraftAutosaver keeps that draft
in sync with a FormRunner while the user fills the form.

Rules:
- Key is 'form-draft-<form id>'
- A draft older than the TTL (24h) is removed on read
- A draft that references a step the current graph no longer has is removed
  on read (the form was edited since)
- A found draft is only ever offered (pending_draft); resume() applies it,
  discard() deletes it
- A successful submission deletes the draft
- Storage failures are logged and swallowed: the fill goes on without drafts
"""

import json
import logging
import time
from typing import Callable, Optional

from formflow.contracts import Draft, FormGraph
from formflow.core.form_runner import EVENT_CHANGED, EVENT_SUBMITTED
from formflow.utils.debounce import DebounceTimer

logger = logging.getLogger(__name__)


DRAFT_KEY_PREFIX = "form-draft-"
DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_DEBOUNCE_SECONDS = 0.5


class DraftStore:
    """Draft persistence over a Local Storage."""

    def __init__(self, storage, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.storage = storage
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @staticmethod
    def key(form_id: str) -> str:
        return f"{DRAFT_KEY_PREFIX}{form_id}"

    def load(self, form_id: str, graph: Optional[FormGraph] = None) -> Optional[Draft]:
        """
        Read the draft for a form.

        Args:
            form_id: Form identifier
            graph: Current graph; when given, drafts pointing at steps it
                does not contain are dropped

        Returns:
            Draft, or None when there is no usable draft
        """
        key = self.key(form_id)
        try:
            raw = self.storage.get_item(key)
        except Exception as e:
            logger.warning(f"Could not read draft {key}: {e}")
            return None

        if not raw:
            return None

        try:
            draft = Draft.from_json(json.loads(raw))
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable draft {key}: {e}")
            return None

        age_ms = self._clock() * 1000 - draft.saved_at
        if age_ms > self.ttl_seconds * 1000:
            logger.info(f"Draft {key} expired, removing")
            self._remove(key)
            return None

        if graph is not None:
            missing = sorted(step_id for step_id in draft.referenced_step_ids() if step_id not in graph.steps)
            if missing:
                logger.info(f"Draft {key} references removed step(s) {missing}, removing")
                self._remove(key)
                return None

        return draft

    def save(self, form_id: str, draft: Draft) -> bool:
        """
        Stamp saved_at and write the draft.

        Returns:
            True if written, False if storage refused (quota, disabled, ...)
        """
        key = self.key(form_id)
        draft.saved_at = int(self._clock() * 1000)
        try:
            self.storage.set_item(key, json.dumps(draft.to_json()))
        except Exception as e:
            logger.warning(f"Could not save draft {key}: {e}")
            return False
        return True

    def clear(self, form_id: str) -> None:
        self._remove(self.key(form_id))

    def _remove(self, key: str) -> None:
        try:
            self.storage.remove_item(key)
        except Exception as e:
            logger.warning(f"Could not remove draft {key}: {e}")


class DraftAutosaver:
    """
    Keeps one runner's draft up to date.

    Lifecycle:
        autosaver = DraftAutosaver(form_id, store, runner)
        autosaver.start()            # may set pending_draft
        autosaver.resume() / discard()
        ...                          # runner changes trigger debounced saves
        autosaver.on_unload()        # synchronous save before leaving
    """

    def __init__(self, form_id: str, store: DraftStore, runner,
                 debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
                 timer_factory: Optional[Callable] = None):
        self.form_id = form_id
        self.store = store
        self.runner = runner
        self.pending_draft: Optional[Draft] = None
        self._timer = DebounceTimer(debounce_seconds, self.save_now, timer_factory)
        runner.add_listener(self._on_runner_event)

    # ========================
    # Session start
    # ========================

    def start(self) -> Optional[Draft]:
        """Look for a recoverable draft and hold it for an explicit decision."""
        self.pending_draft = self.store.load(self.form_id, self.runner.graph)
        if self.pending_draft is not None:
            logger.info(f"Recoverable draft found for form {self.form_id}")
        return self.pending_draft

    def resume(self) -> bool:
        """Apply the pending draft to the runner."""
        draft = self.pending_draft
        if draft is None:
            return False
        self.pending_draft = None
        self.runner.restore_draft(draft)
        logger.info(f"Resumed draft for form {self.form_id} at step {draft.current_step_id}")
        return True

    def discard(self) -> None:
        """Start fresh: forget and delete the pending draft."""
        self.pending_draft = None
        self.store.clear(self.form_id)
        logger.info(f"Discarded draft for form {self.form_id}")

    # ========================
    # Saving
    # ========================

    def has_meaningful_content(self) -> bool:
        """Anything worth recovering: an answer, a phone number or typed input."""
        return bool(
            self.runner.answers
            or self.runner.customer_phone.strip()
            or self.runner.input_value.strip()
        )

    def _has_leave_content(self) -> bool:
        return bool(self.runner.answers or self.runner.customer_phone.strip())

    def notify_change(self) -> None:
        """Debounce a save after a runner change."""
        if self.pending_draft is not None or not self.has_meaningful_content():
            return
        self._timer.schedule()

    def save_now(self) -> bool:
        if self.runner.is_submitted:
            return False
        return self.store.save(self.form_id, self.runner.to_draft())

    def on_hide(self) -> bool:
        """Tab hidden: save synchronously if anything was entered."""
        self._timer.cancel()
        if self.pending_draft is not None or not self._has_leave_content():
            return False
        return self.save_now()

    def on_unload(self) -> bool:
        """
        Page is being left.

        Returns:
            True when the user should be asked to confirm leaving
        """
        self._timer.cancel()
        if self.pending_draft is not None or self.runner.is_submitted:
            return False
        if not self._has_leave_content():
            return False
        self.save_now()
        return True

    def close(self) -> None:
        self._timer.cancel()

    def _on_runner_event(self, event: str) -> None:
        if event == EVENT_SUBMITTED:
            self._timer.cancel()
            self.store.clear(self.form_id)
            logger.info(f"Submission complete, draft cleared for form {self.form_id}")
        elif event == EVENT_CHANGED:
            self.notify_change()
