"""
Editor Session - one operator editing one template

Wires the pieces an editing screen needs:
- the current graph (replaced, never mutated, on every edit)
- undo/redo history of graph snapshots
- the selected step (cleared by undo/redo, moved by insert/delete)
- autosave of {name, graph}

Each edit operation calls the matching pure function in graph_model,
pushes the result onto history and notifies autosave.
"""

import logging
from typing import Callable, List, Optional

from formflow.contracts import FormGraph, Step
from formflow.core import graph_model
from formflow.core.autosave import AutosaveCoordinator, DEFAULT_DEBOUNCE_SECONDS
from formflow.core.history_manager import HistoryManager
from formflow.core.traversal import TreeNode, build_tree, enumerate_steps, walk_path
from formflow.utils.helpers import generate_id

logger = logging.getLogger(__name__)


# Operations reachable through apply() (HTTP editor endpoint)
EDIT_OPERATIONS = (
    "create_first_step",
    "insert_step_after",
    "update_step",
    "delete_step",
    "add_choice",
    "update_choice",
    "delete_choice",
    "add_quantity_choice",
    "update_quantity_choice",
    "delete_quantity_choice",
    "rename",
    "select",
)


class EditorSession:
    """Editing state for one template."""

    def __init__(self, template_id: str, name: str, graph: FormGraph,
                 autosave: Optional[AutosaveCoordinator] = None):
        self.template_id = template_id
        self.name = name
        self.graph = graph.clone()
        self.selected_step_id: Optional[str] = graph.root_step_id if graph_model.is_usable(graph) else None
        self.history = HistoryManager(clear_selection=self._clear_selection)
        self.history.load(self.graph)
        self.autosave = autosave

    @classmethod
    def open(cls, template_id: str, store,
             debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
             timer_factory: Optional[Callable] = None,
             dispatch: Optional[Callable] = None) -> "EditorSession":
        """Load a template from the store and attach autosave to it."""
        name, graph = store.load(template_id)
        autosave = AutosaveCoordinator(
            template_id, store, name, graph,
            debounce_seconds=debounce_seconds,
            timer_factory=timer_factory,
            dispatch=dispatch,
        )
        logger.info(f"Editor session opened for template {template_id} ({len(graph.steps)} steps)")
        return cls(template_id, name, graph, autosave=autosave)

    # ========================
    # Views
    # ========================

    @property
    def selected_step(self) -> Optional[Step]:
        return self.graph.get(self.selected_step_id)

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo

    @property
    def save_status(self) -> Optional[str]:
        return self.autosave.status if self.autosave else None

    def tree(self) -> Optional[TreeNode]:
        return build_tree(self.graph)

    def ordered_steps(self) -> List[Step]:
        return enumerate_steps(self.graph)

    def preview_path(self, selections=None):
        return walk_path(self.graph, selections)

    def structural_issues(self) -> List[str]:
        return graph_model.find_structural_issues(self.graph)

    # ========================
    # Edits
    # ========================

    def create_first_step(self, step_type: str) -> str:
        if self.graph.steps:
            raise ValueError("Graph already has steps")
        graph = graph_model.create_first_step(self.graph, step_type)
        self._commit(graph, select=graph.root_step_id)
        return graph.root_step_id

    def insert_step_after(self, after_step_id: str, step_type: str,
                          choice_id: Optional[str] = None) -> str:
        """Insert a new step and select it. Returns the new step id."""
        new_id = generate_id("step")
        graph = graph_model.insert_step_after(self.graph, after_step_id, step_type,
                                              choice_id=choice_id, step_id=new_id)
        self._commit(graph, select=new_id)
        return new_id

    def update_step(self, step_id: str, **changes) -> None:
        self._commit(graph_model.update_step(self.graph, step_id, **changes))

    def revert_step(self, snapshot: Step) -> None:
        self._commit(graph_model.revert_step(self.graph, snapshot))

    def delete_step(self, step_id: str) -> None:
        """Delete a step; selection falls back to the root."""
        graph = graph_model.delete_step(self.graph, step_id)
        self._commit(graph, select=graph.root_step_id)

    def add_choice(self, step_id: str, label: Optional[str] = None) -> None:
        self._commit(graph_model.add_choice(self.graph, step_id, label))

    def update_choice(self, step_id: str, choice_id: str, **changes) -> None:
        self._commit(graph_model.update_choice(self.graph, step_id, choice_id, **changes))

    def delete_choice(self, step_id: str, choice_id: str) -> None:
        self._commit(graph_model.delete_choice(self.graph, step_id, choice_id))

    def add_quantity_choice(self, step_id: str, label: Optional[str] = None,
                            price: float = 0, limit: Optional[int] = None) -> None:
        self._commit(graph_model.add_quantity_choice(self.graph, step_id, label, price, limit))

    def update_quantity_choice(self, step_id: str, choice_id: str, **changes) -> None:
        self._commit(graph_model.update_quantity_choice(self.graph, step_id, choice_id, **changes))

    def delete_quantity_choice(self, step_id: str, choice_id: str) -> None:
        self._commit(graph_model.delete_quantity_choice(self.graph, step_id, choice_id))

    def rename(self, name: str) -> None:
        # Names are not part of undo history
        self.name = name
        self._notify_autosave()

    def select(self, step_id: Optional[str]) -> None:
        if step_id is not None and step_id not in self.graph.steps:
            raise ValueError(f"Step '{step_id}' does not exist")
        self.selected_step_id = step_id

    def apply(self, op: str, **kwargs):
        """
        Run a named edit operation (used by the HTTP editor endpoint).

        Raises:
            ValueError: Unknown operation or invalid arguments
        """
        if op not in EDIT_OPERATIONS:
            raise ValueError(f"Unknown edit operation '{op}'")
        try:
            return getattr(self, op)(**kwargs)
        except TypeError as e:
            raise ValueError(f"Invalid arguments for {op}: {e}") from e

    # ========================
    # Undo / redo
    # ========================

    def undo(self) -> bool:
        graph = self.history.undo()
        if graph is None:
            return False
        self.graph = graph
        self._notify_autosave()
        return True

    def redo(self) -> bool:
        graph = self.history.redo()
        if graph is None:
            return False
        self.graph = graph
        self._notify_autosave()
        return True

    # ========================
    # Lifecycle
    # ========================

    def save_now(self) -> bool:
        if self.autosave is None:
            return False
        return self.autosave.save_now()

    def on_hide(self) -> bool:
        """Tab hidden: advisory flush of unsaved edits. True when one was sent."""
        if self.autosave is None:
            return False
        return self.autosave.on_hide()

    def close(self) -> None:
        if self.autosave is not None:
            self.autosave.close()
        logger.info(f"Editor session closed for template {self.template_id}")

    # ========================
    # Internals
    # ========================

    def _commit(self, graph: FormGraph, select: Optional[str] = None) -> None:
        self.graph = graph
        self.history.push(graph)
        if select is not None:
            self.selected_step_id = select
        logger.debug(f"Edit committed for template {self.template_id} (history {len(self.history)})")
        self._notify_autosave()

    def _notify_autosave(self) -> None:
        if self.autosave is not None:
            self.autosave.notify_change(self.name, self.graph)

    def _clear_selection(self) -> None:
        self.selected_step_id = None
