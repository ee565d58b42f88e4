"""
File-backed collaborators for the form engine.

The core only talks to narrow interfaces (Template Store, Inventory Source,
Submission Sink, Local Storage). This module provides local implementations
used by app.py, main.py and the tests.

Layout under the data directory:
    templates/<template id>.json
    submissions/FORM-<form id>/FORM-<form id>_SUB-001.json
    drafts.json   (JsonFileStorage)
"""

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from formflow.contracts import Answer, FormGraph, InventoryStatus, QuantityStep, answers_to_json
from formflow.core.graph_model import parse_graph
from formflow.errors import StorageQuotaExceeded, SubmissionFailed

logger = logging.getLogger(__name__)


class JsonTemplateStore:
    """
    Template Store backed by one JSON file per template.

    File shape: {"name": ..., "graph": {"rootStepId": ..., "steps": {...}}}
    """

    def __init__(self, base_dir: str = "outputs/templates"):
        """
        Args:
            base_dir: Directory holding the template files
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"JsonTemplateStore initialized: {self.base_dir}")

    def _path(self, template_id: str) -> Path:
        return self.base_dir / f"{template_id}.json"

    def exists(self, template_id: str) -> bool:
        return self._path(template_id).exists()

    def list_templates(self) -> List[str]:
        return sorted(p.stem for p in self.base_dir.glob("*.json"))

    def load(self, template_id: str) -> Tuple[str, FormGraph]:
        """
        Load a template.

        Returns:
            tuple: (name, graph)

        Raises:
            FileNotFoundError: Unknown template
            GraphValidationError: Stored graph is malformed
        """
        path = self._path(template_id)
        if not path.exists():
            raise FileNotFoundError(f"Template not found: {template_id}")

        with open(path, 'r') as f:
            data = json.load(f)

        return data.get("name", template_id), parse_graph(data.get("graph"))

    def save(self, template_id: str, name: str, graph: FormGraph) -> bool:
        """
        Write a template (atomic replace).

        Returns:
            bool: False if the write failed
        """
        path = self._path(template_id)
        tmp_path = path.with_suffix(".json.tmp")
        payload = {"name": name, "graph": graph.to_json()}

        try:
            with self._lock:
                with open(tmp_path, 'w') as f:
                    json.dump(payload, f, indent=2, ensure_ascii=False)
                os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to save template {template_id}: {e}")
            return False

        logger.info(f"Saved template {template_id} ({len(graph.steps)} steps)")
        return True

    def save_advisory(self, template_id: str, name: str, graph: FormGraph) -> None:
        """Best-effort save; the outcome is not reported."""
        self.save(template_id, name, graph)


class SubmissionLog:
    """
    Append-only JSON record of submissions.

    Layout:
        outputs/submissions/FORM-abc123/
            FORM-abc123_SUB-001.json
            FORM-abc123_SUB-002.json
            ...
    """

    def __init__(self, base_dir: str = "outputs/submissions"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        logger.info(f"SubmissionLog initialized: {self.base_dir}")

    def _form_dir(self, form_id: str) -> Path:
        return self.base_dir / f"FORM-{form_id}"

    def count(self, form_id: str) -> int:
        form_dir = self._form_dir(form_id)
        if not form_dir.exists():
            return 0
        return len(list(form_dir.glob(f"FORM-{form_id}_SUB-*.json")))

    def append(self, form_id: str, record: dict, number: Optional[int] = None) -> str:
        """
        Write one submission file.

        Args:
            form_id: Form identifier
            record: JSON-safe submission payload
            number: Explicit sequence number (default: next free)

        Returns:
            str: Absolute path to saved file

        Raises:
            FileExistsError: If the submission file already exists (double-submit)
        """
        form_dir = self._form_dir(form_id)
        form_dir.mkdir(exist_ok=True)

        with self._lock:
            number = number if number is not None else self.count(form_id) + 1
            filepath = form_dir / f"FORM-{form_id}_SUB-{number:03d}.json"

            if filepath.exists():
                raise FileExistsError(
                    f"Submission file already exists: {filepath}. "
                    f"This indicates a double-submit."
                )

            with open(filepath, 'x') as f:
                json.dump(record, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved submission {number} for form {form_id}: {filepath.name}")
        return str(filepath.absolute())

    def load_all(self, form_id: str) -> List[dict]:
        form_dir = self._form_dir(form_id)
        if not form_dir.exists():
            return []

        records = []
        for path in sorted(form_dir.glob(f"FORM-{form_id}_SUB-*.json"), key=lambda p: p.name):
            with open(path, 'r') as f:
                records.append(json.load(f))
        return records


class InventoryLedger:
    """
    Inventory Source with stock limits and ordered totals per form.

    remaining = max(0, limit - ordered); sold out when ordered >= limit.
    Items without a limit are not tracked (unlimited).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._limits: Dict[str, Dict[Tuple[str, str], int]] = {}
        self._ordered: Dict[str, Dict[Tuple[str, str], int]] = {}
        self._labels: Dict[Tuple[str, str], str] = {}

    def register_graph(self, form_id: str, graph: FormGraph) -> None:
        """Track every limited quantity choice of a graph."""
        with self._lock:
            limits = self._limits.setdefault(form_id, {})
            self._ordered.setdefault(form_id, {})
            for step in graph.steps.values():
                if not isinstance(step, QuantityStep):
                    continue
                for choice in step.purchasable_choices():
                    if choice.limit is None:
                        continue
                    limits[(step.id, choice.id)] = choice.limit
                    self._labels[(step.id, choice.id)] = choice.label

    def set_limit(self, form_id: str, step_id: str, choice_id: str, limit: Optional[int]) -> None:
        with self._lock:
            limits = self._limits.setdefault(form_id, {})
            if limit is None:
                limits.pop((step_id, choice_id), None)
            else:
                limits[(step_id, choice_id)] = limit

    def ordered(self, form_id: str, step_id: str, choice_id: str) -> int:
        with self._lock:
            return self._ordered.get(form_id, {}).get((step_id, choice_id), 0)

    def fetch_status(self, form_id: str) -> List[InventoryStatus]:
        with self._lock:
            limits = self._limits.get(form_id, {})
            ordered = self._ordered.get(form_id, {})
            return [
                InventoryStatus(
                    step_id=step_id,
                    choice_id=choice_id,
                    remaining=max(0, limit - ordered.get((step_id, choice_id), 0)),
                    is_sold_out=ordered.get((step_id, choice_id), 0) >= limit,
                )
                for (step_id, choice_id), limit in limits.items()
            ]

    def commit(self, form_id: str, answers: Dict[str, Answer]) -> List[Tuple[Tuple[str, str], int]]:
        """
        Check and reserve stock for every quantity answer, all or nothing.

        Returns:
            The reserved ((step_id, choice_id), quantity) lines, for release()

        Raises:
            SubmissionFailed: Some item does not have enough stock left
        """
        with self._lock:
            limits = self._limits.get(form_id, {})
            ordered = self._ordered.setdefault(form_id, {})

            wanted = []
            for step_id, answer in answers.items():
                if not isinstance(answer, list):
                    continue
                for line in answer:
                    key = (step_id, line.choice_id)
                    if line.quantity <= 0 or key not in limits:
                        continue
                    remaining = max(0, limits[key] - ordered.get(key, 0))
                    if line.quantity > remaining:
                        raise SubmissionFailed(
                            f"Not enough stock for {line.label}. Only {remaining} remaining."
                        )
                    wanted.append((key, line.quantity))

            for key, quantity in wanted:
                ordered[key] = ordered.get(key, 0) + quantity

        if wanted:
            logger.info(f"Reserved {len(wanted)} item line(s) for form {form_id}")
        return wanted

    def release(self, form_id: str, reserved: List[Tuple[Tuple[str, str], int]]) -> None:
        """Give back stock taken by commit()."""
        with self._lock:
            ordered = self._ordered.setdefault(form_id, {})
            for key, quantity in reserved:
                ordered[key] = max(0, ordered.get(key, 0) - quantity)
        if reserved:
            logger.info(f"Released {len(reserved)} item line(s) for form {form_id}")


class BookingSink:
    """Submission Sink: reserve stock, then append the submission record."""

    def __init__(self, ledger: InventoryLedger, log: SubmissionLog):
        self.ledger = ledger
        self.log = log

    def submit(self, form_id: str, answers: Dict[str, Answer],
               customer_name: str, customer_phone: str) -> bool:
        reserved = self.ledger.commit(form_id, answers)
        try:
            self.log.append(form_id, {
                "form_id": form_id,
                "customer_name": customer_name,
                "customer_phone": customer_phone,
                "answers": answers_to_json(answers),
                "submitted_at": datetime.now().isoformat(),
            })
        except Exception:
            # Undo this attempt's reservation before the caller retries
            logger.warning(f"Submission record for form {form_id} not written, releasing stock")
            self.ledger.release(form_id, reserved)
            raise
        return True


class MemoryStorage:
    """
    Local Storage kept in a dict.

    quota_bytes caps the total size of stored values; a write beyond it
    raises StorageQuotaExceeded and leaves the previous value in place.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}

    def _check_quota(self, key: str, value: str) -> None:
        if self.quota_bytes is None:
            return
        used = sum(len(v.encode("utf-8")) for k, v in self._items.items() if k != key)
        if used + len(value.encode("utf-8")) > self.quota_bytes:
            raise StorageQuotaExceeded(f"Storage quota of {self.quota_bytes} bytes exceeded")

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._check_quota(key, value)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)


class JsonFileStorage(MemoryStorage):
    """Local Storage persisted to a single JSON file."""

    def __init__(self, path: str, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.path = Path(path)
        self._lock = threading.Lock()
        if self.path.exists():
            with open(self.path, 'r') as f:
                self._items = json.load(f)

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._items, f, indent=2, ensure_ascii=False)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            super().set_item(key, value)
            self._flush()

    def remove_item(self, key: str) -> None:
        with self._lock:
            super().remove_item(key)
            self._flush()
