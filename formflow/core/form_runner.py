"""
Form Runner - drives one end user through a form graph

Phases:
    question  -> showing current_step_id (text, choice, quantity or conclusion)
    contact   -> walked off the end of the graph, collecting phone/name
    review    -> everything answered, waiting for the final submit
    submitted -> terminal

State owned by one fill session:
- answers: step id -> Answer
- history: ordered ids of the steps answered so far. The current step is
  not in history, except while revising a step reached from the review
  screen (then history ends with it and re-answering replaces in place) or
  fixing a quantity step after a stock change (answers after it are kept)
- widget state for the current step (input_value, quantity_selections) and
  contact fields

Stock is re-checked at every commit point: leaving a quantity step, leaving
contact capture and right before the submission call. A check that cannot
reach the inventory source rejects the transition rather than guessing.

Every public mutator returns a TransitionResult. Rejections leave answers
and history untouched, so nothing the user typed is ever lost.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from formflow.commands import (
    EditFromReview, GoBack, SelectChoice, SetContact, SetInput, SetQuantity,
    Submit, SubmitConclusion, SubmitContact, SubmitQuantities, SubmitText,
)
from formflow.contracts import (
    Answer, ChoiceStep, ConclusionStep, Draft, FormGraph, QuantityAnswer,
    QuantityStep, Step, TextStep,
)
from formflow.core.graph_model import resolve_next
from formflow.core.inventory_validator import InventoryValidator, StockIssue
from formflow.errors import InventoryUnavailable
from formflow.results import IllegalCommand, TransitionResult
from formflow.utils.helpers import MIN_PHONE_DIGITS, is_valid_phone
from formflow.utils.retry import call_with_retry

logger = logging.getLogger(__name__)


EVENT_CHANGED = "changed"
EVENT_SUBMITTED = "submitted"

AVAILABILITY_UNKNOWN_MESSAGE = "We could not verify availability right now. Please try again."
SUBMITTED_MESSAGE = "Thank you! Your submission has been received."


class FormPhase(str, Enum):
    QUESTION = "question"
    CONTACT = "contact"
    REVIEW = "review"
    SUBMITTED = "submitted"


@dataclass(frozen=True)
class ReviewItem:
    index: int
    step_id: str
    question: str
    answer: Answer


class FormRunner:
    """Answer collection, contact capture, review and submission for one fill."""

    def __init__(
        self,
        form_id: str,
        graph: FormGraph,
        sink=None,
        inventory: Optional[InventoryValidator] = None,
        min_phone_digits: int = MIN_PHONE_DIGITS,
        submit_max_attempts: int = 3,
        submit_base_delay: float = 0.5,
        submit_max_delay: float = 4.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            form_id: Form being filled (passed to the sink)
            graph: Published graph, not mutated
            sink: Submission Sink with submit(form_id, answers, name, phone)
            inventory: Stock checks; None disables them (preview mode)
            min_phone_digits: Digits required after stripping formatting
            submit_max_attempts: Attempts per submit action
            submit_base_delay: First backoff delay in seconds
            submit_max_delay: Backoff cap in seconds
            sleep: Injected for tests
        """
        self.form_id = form_id
        self.graph = graph
        self.sink = sink
        self.inventory = inventory
        self.min_phone_digits = min_phone_digits
        self.submit_max_attempts = submit_max_attempts
        self.submit_base_delay = submit_base_delay
        self.submit_max_delay = submit_max_delay
        self._sleep = sleep

        self.answers: Dict[str, Answer] = {}
        self.history: List[str] = []
        self.current_step_id: Optional[str] = None
        self.phase = FormPhase.QUESTION

        self.input_value = ""
        self.quantity_selections: Dict[str, int] = {}
        self.customer_name = ""
        self.customer_phone = ""
        self.show_phone_input = False
        self.last_error: Optional[str] = None

        # Set while fixing a quantity step after a stock change: the step
        # being fixed and the (phase, step) to return to once it is re-submitted
        self._fixing_step_id: Optional[str] = None
        self._fix_return: Optional[Tuple[FormPhase, Optional[str]]] = None

        self._listeners: List[Callable[[str], None]] = []
        self._submit_lock = threading.Lock()
        self._submitting = False

        self._enter(graph.root_step_id)
        logger.info(f"Runner started for form {form_id} at {self.current_step_id}")

    # =========================================================================
    # Read-only views
    # =========================================================================

    @property
    def current_step(self) -> Optional[Step]:
        if self.phase != FormPhase.QUESTION:
            return None
        return self.graph.get(self.current_step_id)

    @property
    def is_submitted(self) -> bool:
        return self.phase == FormPhase.SUBMITTED

    @property
    def is_revising(self) -> bool:
        """True while re-answering a step reached from review or a stock change."""
        if self.is_fixing_stock:
            return True
        return bool(self.history) and self.history[-1] == self.current_step_id

    @property
    def is_fixing_stock(self) -> bool:
        return self._fixing_step_id is not None and self._fixing_step_id == self.current_step_id

    def progress_percent(self) -> int:
        if self.phase == FormPhase.SUBMITTED:
            return 100
        total = len(self.graph.steps)
        if not total:
            return 0
        return round(len(self.answers) / total * 100)

    def review_items(self) -> List[ReviewItem]:
        items = []
        for index, step_id in enumerate(self.history):
            if step_id not in self.answers:
                continue
            step = self.graph.get(step_id)
            items.append(ReviewItem(
                index=index,
                step_id=step_id,
                question=step.question if step else step_id,
                answer=self.answers[step_id],
            ))
        return items

    def total_price(self) -> float:
        total = 0
        for answer in self.answers.values():
            if isinstance(answer, list):
                total += sum(line.quantity * line.price for line in answer)
        return total

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callback receiving EVENT_CHANGED / EVENT_SUBMITTED."""
        self._listeners.append(listener)

    def _notify(self, event: str = EVENT_CHANGED) -> None:
        for listener in list(self._listeners):
            listener(event)

    # =========================================================================
    # Command interface
    # =========================================================================

    def handle(self, command) -> TransitionResult | IllegalCommand:
        """Dispatch one command (see formflow.commands)."""
        command_type = type(command).__name__

        if self.phase == FormPhase.SUBMITTED:
            return IllegalCommand(reason="This form has already been submitted", command_type=command_type)

        if isinstance(command, SubmitText):
            return self.submit_text(command.value)
        if isinstance(command, SelectChoice):
            return self.select_choice(command.choice_id)
        if isinstance(command, SetInput):
            return self.set_input(command.value)
        if isinstance(command, SetQuantity):
            return self.set_quantity(command.choice_id, command.quantity)
        if isinstance(command, SubmitQuantities):
            return self.submit_quantities()
        if isinstance(command, SetContact):
            return self.set_contact(phone=command.phone, name=command.name)
        if isinstance(command, SubmitContact):
            return self.submit_contact(command.phone, command.name)
        if isinstance(command, EditFromReview):
            return self.edit_from_review(command.index)
        if isinstance(command, GoBack):
            return self.go_back()
        if isinstance(command, Submit):
            return self.submit()
        if isinstance(command, SubmitConclusion):
            return self.submit_conclusion(phone=command.phone, name=command.name)

        return IllegalCommand(reason=f"Unknown command: {command_type}", command_type=command_type)

    # =========================================================================
    # Question phase
    # =========================================================================

    def submit_text(self, value: str) -> TransitionResult:
        step = self.current_step
        if not isinstance(step, TextStep):
            return self._reject("The current step does not take a text answer")
        if not value or not value.strip():
            return self._reject("Please enter an answer")

        self._record(step.id, value)
        self.input_value = ""
        self._enter(resolve_next(step))
        return self._accept()

    def select_choice(self, choice_id: str) -> TransitionResult:
        step = self.current_step
        if not isinstance(step, ChoiceStep):
            return self._reject("The current step is not a choice")
        choice = step.find_choice(choice_id)
        if choice is None:
            return self._reject(f"Unknown choice '{choice_id}'")

        self._record(step.id, choice.label)
        self._enter(choice.next_step_id)
        return self._accept()

    def set_input(self, value: str) -> TransitionResult:
        """Track typed-but-unsubmitted text so drafts can restore it."""
        self.input_value = value or ""
        return self._accept()

    def set_quantity(self, choice_id: str, quantity: int) -> TransitionResult:
        step = self.current_step
        if not isinstance(step, QuantityStep):
            return self._reject("The current step does not take quantities")
        choice = step.find_choice(choice_id)
        if choice is None or choice.is_no_thanks:
            return self._reject(f"Unknown item '{choice_id}'")

        self.quantity_selections[choice_id] = max(0, int(quantity))
        return self._accept()

    def submit_quantities(self) -> TransitionResult:
        """
        Commit the current quantity step.

        Stock is fetched fresh. Any selection above what is left gets
        clamped and the transition is rejected with one notice per clamp,
        so the user sees the adjusted amounts before moving on.
        """
        step = self.current_step
        if not isinstance(step, QuantityStep):
            return self._reject("The current step does not take quantities")

        if self.inventory is not None:
            try:
                refreshed = self.inventory.refresh(step, self.quantity_selections)
            except InventoryUnavailable:
                return self._reject(AVAILABILITY_UNKNOWN_MESSAGE)

            if refreshed.clamped:
                self.quantity_selections = refreshed.selections
                self._notify()
                return self._reject(
                    "Some selections exceed what is available and were adjusted",
                    issues=refreshed.notices,
                )

        answer = [
            QuantityAnswer(
                choice_id=choice.id,
                label=choice.label,
                quantity=self.quantity_selections.get(choice.id, 0),
                price=choice.price,
            )
            for choice in step.purchasable_choices()
        ]
        fixing = self.is_fixing_stock
        self._record(step.id, answer)
        if fixing:
            self._finish_stock_fix()
        else:
            self._enter(step.next_step_id)
        return self._accept()

    def submit_conclusion(self, phone: Optional[str] = None,
                          name: Optional[str] = None) -> TransitionResult:
        """Submit from a conclusion step, capturing contact details first if needed."""
        if not isinstance(self.current_step, ConclusionStep):
            return self._reject("The current step is not a conclusion")

        self._apply_contact(phone, name)
        if not is_valid_phone(self.customer_phone, self.min_phone_digits):
            self.show_phone_input = True
            self._notify()
            return self._reject(self._phone_message())

        self.show_phone_input = False
        return self._submit()

    # =========================================================================
    # Contact capture
    # =========================================================================

    def set_contact(self, phone: Optional[str] = None, name: Optional[str] = None) -> TransitionResult:
        self._apply_contact(phone, name)
        return self._accept()

    def submit_contact(self, phone: str, name: str = "") -> TransitionResult:
        if self.phase != FormPhase.CONTACT:
            return self._reject("Contact details are not being collected right now")

        self._apply_contact(phone, name)
        if not is_valid_phone(self.customer_phone, self.min_phone_digits):
            return self._reject(self._phone_message())

        rejection = self._revalidate_stock()
        if rejection is not None:
            return rejection

        self.phase = FormPhase.REVIEW
        self.current_step_id = None
        logger.info(f"Form {self.form_id}: contact captured, moving to review")
        return self._accept()

    # =========================================================================
    # Review and submission
    # =========================================================================

    def edit_from_review(self, index: int) -> TransitionResult:
        """
        Revisit the step at history[index].

        Everything answered after it is discarded. Its own answer stays and
        seeds the input widget; re-answering replaces it.
        """
        if self.phase not in (FormPhase.REVIEW, FormPhase.CONTACT):
            return self._reject("Answers can only be edited from the review screen")
        if index < 0 or index >= len(self.history):
            return self._reject(f"No answered step at position {index}")

        self._rewind_to(index)
        logger.info(f"Form {self.form_id}: editing step {self.current_step_id} from review")
        return self._accept()

    def submit(self) -> TransitionResult:
        if self.phase != FormPhase.REVIEW:
            return self._reject("The form is not ready to submit")
        return self._submit()

    def _submit(self) -> TransitionResult:
        with self._submit_lock:
            if self._submitting or self.phase == FormPhase.SUBMITTED:
                return self._reject("Submission already in progress")
            self._submitting = True

        conclusion = self.current_step if isinstance(self.current_step, ConclusionStep) else None

        try:
            rejection = self._revalidate_stock()
            if rejection is not None:
                return rejection

            if self.sink is None:
                raise RuntimeError("No submission sink configured")

            answers = dict(self.answers)
            outcome = call_with_retry(
                lambda: self.sink.submit(self.form_id, answers, self.customer_name, self.customer_phone),
                max_attempts=self.submit_max_attempts,
                base_delay=self.submit_base_delay,
                max_delay=self.submit_max_delay,
                sleep=self._sleep,
                description=f"Submission of form {self.form_id}",
            )

            if not outcome.succeeded:
                self.last_error = outcome.error
                return self._reject(
                    f"Your submission could not be sent ({outcome.error}). Your answers are saved, please try again."
                )

            self.last_error = None
            self.phase = FormPhase.SUBMITTED
            self.current_step_id = None
            logger.info(f"Form {self.form_id} submitted after {outcome.attempts} attempt(s)")
            self._notify(EVENT_SUBMITTED)
            return TransitionResult(accepted=True, phase=self.phase.value, current_step_id=None,
                                    message=conclusion.thank_you_message if conclusion else SUBMITTED_MESSAGE)
        finally:
            with self._submit_lock:
                self._submitting = False

    # =========================================================================
    # Back navigation
    # =========================================================================

    def go_back(self) -> TransitionResult:
        """
        Step to the previously answered step.

        Its answer is removed and its widget state restored from it, so the
        step is in progress again until re-submitted.
        """
        if self.phase == FormPhase.SUBMITTED:
            return self._reject("This form has already been submitted")

        # Leaving a stock fix backwards is ordinary back navigation from that step
        if self.is_fixing_stock:
            self._rewind_to(self.history.index(self.current_step_id))

        if self.phase == FormPhase.QUESTION and self.is_revising:
            revised = self.history.pop()
            self.answers.pop(revised, None)

        if not self.history:
            return self._reject("There is no previous step")

        previous = self.history.pop()
        answer = self.answers.pop(previous, None)

        self.phase = FormPhase.QUESTION
        self.current_step_id = previous
        self.show_phone_input = False
        self._load_widget(previous, answer)
        return self._accept()

    # =========================================================================
    # Drafts
    # =========================================================================

    def to_draft(self) -> Draft:
        current_step_id = self.current_step_id
        if self.is_fixing_stock:
            # Resume where the fix started; stock is checked again from there
            current_step_id = self._fix_return[1]
        return Draft(
            answers=dict(self.answers),
            history=list(self.history),
            current_step_id=current_step_id,
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            quantity_selections=dict(self.quantity_selections),
            show_phone_input=self.show_phone_input,
            input_value=self.input_value,
        )

    def restore_draft(self, draft: Draft) -> None:
        """
        Resume from a draft.

        A draft positioned on a step resumes in the question phase; one past
        the last step resumes at contact capture (review always requires a
        fresh stock check, so it is never restored directly).
        """
        self.answers = dict(draft.answers)
        self.history = list(draft.history)
        self.customer_name = draft.customer_name
        self.customer_phone = draft.customer_phone
        self.quantity_selections = dict(draft.quantity_selections)
        self.show_phone_input = draft.show_phone_input
        self.input_value = draft.input_value
        self._clear_stock_fix()

        if draft.current_step_id and draft.current_step_id in self.graph.steps:
            self.phase = FormPhase.QUESTION
            self.current_step_id = draft.current_step_id
        elif self.history:
            self.phase = FormPhase.CONTACT
            self.current_step_id = None
        else:
            self._enter(self.graph.root_step_id)

        self._notify()

    # =========================================================================
    # Internals
    # =========================================================================

    def _record(self, step_id: str, answer: Answer) -> None:
        self.answers[step_id] = answer
        if not self.is_revising:
            self.history.append(step_id)

    def _enter(self, step_id: Optional[str]) -> None:
        """
        Move to step_id, or to contact capture when there is no such step.

        A step already answered in this fill is treated as terminal, which
        is how cycles in the graph end at runtime.
        """
        step = self.graph.get(step_id)
        self.input_value = ""
        self.quantity_selections = {}
        self._clear_stock_fix()

        if step is None or step_id in self.history:
            self.phase = FormPhase.CONTACT
            self.current_step_id = None
            return

        self.phase = FormPhase.QUESTION
        self.current_step_id = step_id
        if isinstance(step, ConclusionStep):
            self.show_phone_input = not is_valid_phone(self.customer_phone, self.min_phone_digits)

    def _load_widget(self, step_id: str, answer: Optional[Answer]) -> None:
        step = self.graph.get(step_id)
        self.input_value = ""
        self.quantity_selections = {}
        if isinstance(step, TextStep) and isinstance(answer, str):
            self.input_value = answer
        elif isinstance(step, QuantityStep) and isinstance(answer, list):
            self.quantity_selections = {line.choice_id: line.quantity for line in answer}

    def _rewind_to(self, index: int) -> None:
        step_id = self.history[index]
        kept = self.history[:index + 1]
        self.answers = {sid: answer for sid, answer in self.answers.items() if sid in kept}
        self.history = kept
        self._clear_stock_fix()
        self.phase = FormPhase.QUESTION
        self.current_step_id = step_id
        self.show_phone_input = False
        self._load_widget(step_id, self.answers.get(step_id))

    def _apply_contact(self, phone: Optional[str], name: Optional[str]) -> None:
        if phone is not None:
            self.customer_phone = phone
        if name is not None:
            self.customer_name = name

    def _phone_message(self) -> str:
        return f"Please enter a valid phone number (at least {self.min_phone_digits} digits)"

    def _revalidate_stock(self) -> Optional[TransitionResult]:
        """
        Check every recorded quantity against fresh stock.

        Returns:
            None when everything fits, otherwise the rejection to return. On
            stock issues the runner opens the first offending quantity step
            with its selections clamped to what is left, keeping every answer.
        """
        if self.inventory is None:
            return None

        try:
            fresh = self.inventory.fetch()
        except InventoryUnavailable:
            return self._reject(AVAILABILITY_UNKNOWN_MESSAGE)

        issues = self.inventory.find_stock_issues(self.answers, fresh)
        if not issues:
            return None

        self._return_to_stock_issue(issues)
        self._notify()
        return self._reject(
            "Some items are no longer available in the quantities you selected",
            issues=[issue.message for issue in issues],
        )

    def _return_to_stock_issue(self, issues: List[StockIssue]) -> None:
        """
        Open the first offending quantity step for fixing.

        Answers and history are left as they are; re-submitting the step
        replaces its answer and returns to where the check failed.
        """
        for step_id in self.history:
            step_issues = [issue for issue in issues if issue.step_id == step_id]
            if not step_issues:
                continue
            self._fix_return = (self.phase, self.current_step_id)
            self._fixing_step_id = step_id
            self.phase = FormPhase.QUESTION
            self.current_step_id = step_id
            self._load_widget(step_id, self.answers.get(step_id))
            for issue in step_issues:
                self.quantity_selections[issue.choice_id] = issue.remaining
            logger.info(f"Form {self.form_id}: returned to {step_id} after stock change")
            return

    def _finish_stock_fix(self) -> None:
        phase, step_id = self._fix_return
        self._clear_stock_fix()
        self.phase = phase
        self.current_step_id = step_id
        self.quantity_selections = {}
        logger.info(f"Form {self.form_id}: stock fixed, back to {phase.value}")

    def _clear_stock_fix(self) -> None:
        self._fixing_step_id = None
        self._fix_return = None

    def _accept(self, message: Optional[str] = None) -> TransitionResult:
        self.last_error = None
        self._notify()
        return TransitionResult(accepted=True, phase=self.phase.value,
                                current_step_id=self.current_step_id, message=message)

    def _reject(self, message: str, issues: Optional[List[str]] = None) -> TransitionResult:
        logger.info(f"Form {self.form_id}: rejected - {message}")
        return TransitionResult(accepted=False, phase=self.phase.value,
                                current_step_id=self.current_step_id, message=message,
                                issues=list(issues or []))
