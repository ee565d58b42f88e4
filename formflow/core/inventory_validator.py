"""
Inventory Validator - stock checks for quantity steps

Holds the last fetched stock snapshot for one form and answers three
questions for the runner:
- how many of an item are left (None = unlimited)
- whether an item is sold out
- which recorded quantities no longer fit the current stock

A fresh snapshot is fetched at every commit point (leaving a quantity step,
leaving contact capture, final submit). A failed fetch keeps the previous
snapshot and raises InventoryUnavailable; the caller decides what to do.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from formflow.contracts import Answer, InventoryStatus, QuantityStep
from formflow.errors import InventoryUnavailable

logger = logging.getLogger(__name__)


def sold_out_message(label: str) -> str:
    return f'"{label}" is now sold out'


def only_left_message(label: str, remaining: int, requested: int) -> str:
    return f'"{label}": only {remaining} left (you selected {requested})'


@dataclass(frozen=True)
class StockIssue:
    """
    One recorded quantity that exceeds current stock.

    Attributes:
        step_id: Quantity step holding the selection
        choice_id: Item selected
        label: Item label (for messages)
        requested: Quantity selected
        remaining: Units left (0 when sold out)
        sold_out: True when nothing is left at all
    """
    step_id: str
    choice_id: str
    label: str
    requested: int
    remaining: int
    sold_out: bool

    @property
    def message(self) -> str:
        if self.sold_out:
            return sold_out_message(self.label)
        return only_left_message(self.label, self.remaining, self.requested)


@dataclass
class RefreshResult:
    """
    Outcome of InventoryValidator.refresh().

    selections holds the input selections with every over-limit quantity
    clamped down to what is left; notices has one message per clamp.
    """
    statuses: List[InventoryStatus] = field(default_factory=list)
    selections: Dict[str, int] = field(default_factory=dict)
    notices: List[str] = field(default_factory=list)

    @property
    def clamped(self) -> bool:
        return bool(self.notices)


class InventoryValidator:
    """Stock snapshot and checks for one form."""

    def __init__(self, source, form_id: str):
        """
        Args:
            source: Inventory Source with fetch_status(form_id)
            form_id: Form whose stock is tracked
        """
        self.source = source
        self.form_id = form_id
        self.statuses: List[InventoryStatus] = []

    # ========================
    # Snapshot lookups
    # ========================

    def _lookup(self, step_id: str, choice_id: str,
                statuses: Optional[List[InventoryStatus]] = None) -> Optional[InventoryStatus]:
        for status in self.statuses if statuses is None else statuses:
            if status.step_id == step_id and status.choice_id == choice_id:
                return status
        return None

    def remaining(self, step_id: str, choice_id: str) -> Optional[int]:
        """Units left, None when unlimited or unknown."""
        status = self._lookup(step_id, choice_id)
        return status.remaining if status else None

    def is_sold_out(self, step_id: str, choice_id: str) -> bool:
        status = self._lookup(step_id, choice_id)
        return bool(status and status.is_sold_out)

    # ========================
    # Fetching
    # ========================

    def fetch(self) -> List[InventoryStatus]:
        """
        Replace the snapshot with a fresh one.

        Raises:
            InventoryUnavailable: The source failed; the old snapshot is kept
        """
        try:
            fresh = list(self.source.fetch_status(self.form_id))
        except Exception as e:
            logger.warning(f"Inventory fetch failed for form {self.form_id}: {e}")
            raise InventoryUnavailable(f"Could not load availability for form {self.form_id}") from e

        self.statuses = fresh
        logger.debug(f"Inventory refreshed for form {self.form_id}: {len(fresh)} status(es)")
        return fresh

    def refresh(self, step: Optional[QuantityStep] = None,
                selections: Optional[Dict[str, int]] = None) -> RefreshResult:
        """
        Fetch fresh stock and clamp the selections of one quantity step.

        Args:
            step: Quantity step the selections belong to (None = fetch only)
            selections: choice id -> quantity currently selected

        Returns:
            RefreshResult

        Raises:
            InventoryUnavailable: Fetch failed
        """
        fresh = self.fetch()
        clamped = dict(selections or {})
        notices = []

        if step is not None:
            for choice in step.purchasable_choices():
                requested = clamped.get(choice.id, 0)
                if requested <= 0:
                    continue
                status = self._lookup(step.id, choice.id, fresh)
                if status is None or status.remaining is None:
                    continue
                if status.is_sold_out or status.remaining <= 0:
                    clamped[choice.id] = 0
                    notices.append(sold_out_message(choice.label))
                elif requested > status.remaining:
                    clamped[choice.id] = status.remaining
                    notices.append(only_left_message(choice.label, status.remaining, requested))

        if notices:
            logger.info(f"Clamped {len(notices)} selection(s) on step {step.id}")

        return RefreshResult(statuses=fresh, selections=clamped, notices=notices)

    # ========================
    # Checks
    # ========================

    def find_stock_issues(self, answers: Dict[str, Answer],
                          fresh: Optional[List[InventoryStatus]] = None) -> List[StockIssue]:
        """
        Compare every recorded quantity answer with a stock snapshot.

        Args:
            answers: Runner answers (only quantity answers are inspected)
            fresh: Snapshot to check against (default: the held snapshot)

        Returns:
            list[StockIssue]: In answer order, empty when everything fits
        """
        issues = []
        for step_id, answer in answers.items():
            if not isinstance(answer, list):
                continue
            for line in answer:
                if line.quantity <= 0:
                    continue
                status = self._lookup(step_id, line.choice_id, fresh)
                if status is None or status.remaining is None:
                    continue
                if status.is_sold_out or status.remaining <= 0:
                    issues.append(StockIssue(step_id, line.choice_id, line.label,
                                             line.quantity, 0, True))
                elif line.quantity > status.remaining:
                    issues.append(StockIssue(step_id, line.choice_id, line.label,
                                             line.quantity, status.remaining, False))
        return issues

    def check_stock_issues(self, answers: Dict[str, Answer],
                           fresh: Optional[List[InventoryStatus]] = None) -> List[str]:
        """One human-readable message per stock issue."""
        return [issue.message for issue in self.find_stock_issues(answers, fresh)]
