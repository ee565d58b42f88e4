"""
Graph Model - validity rules and edit operations for form graphs

Responsibilities:
- Decide whether a graph is usable and which edge a step follows
- Validate raw JSON graphs on the way in (fail fast, all errors at once)
- Report non-fatal structural issues for the editor
- Produce new graph values for every editor operation

Design principles:
- Edit operations never mutate their input: each returns a new FormGraph,
  so history snapshots can never alias the live graph
- Absent or dangling edges mean "terminal", never an error
- Deleting a step rewrites every reference to it to None
"""

import copy
import logging
from typing import List, Optional

from formflow.contracts import (
    STEP_TYPES,
    Choice,
    ChoiceStep,
    ConclusionStep,
    FormGraph,
    QuantityChoice,
    QuantityStep,
    Step,
    TextStep,
)
from formflow.errors import GraphValidationError
from formflow.utils.helpers import generate_id

logger = logging.getLogger(__name__)


MIN_CHOICES = 2
MIN_QUANTITY_CHOICES = 1


# =========================================================================
# Reading
# =========================================================================

def is_usable(graph: Optional[FormGraph]) -> bool:
    """True iff the graph's root id resolves to a step."""
    if graph is None:
        return False
    return graph.get(graph.root_step_id) is not None


def resolve_next(step: Optional[Step], choice_id: Optional[str] = None) -> Optional[str]:
    """
    Return the edge a step follows.

    Args:
        step: Step being left
        choice_id: Selected choice (choice steps only)

    Returns:
        The next step id, or None for terminal. Whether that id exists in
        the graph is the caller's concern: a missing target is terminal too.
    """
    if step is None:
        return None

    if isinstance(step, ChoiceStep):
        choice = step.find_choice(choice_id)
        return choice.next_step_id if choice else None

    if isinstance(step, (TextStep, QuantityStep)):
        return step.next_step_id or None

    # Conclusion steps have no outgoing edge
    return None


def outgoing_edges(step: Step) -> List[Optional[str]]:
    """Every edge of a step in traversal order: primary edge, then choices."""
    if isinstance(step, (TextStep, QuantityStep)):
        return [step.next_step_id]
    if isinstance(step, ChoiceStep):
        return [c.next_step_id for c in step.choices]
    return []


# =========================================================================
# Validation
# =========================================================================

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_step(key: str, raw, errors: List[str]) -> None:
    if not isinstance(raw, dict):
        errors.append(f"Step '{key}' is not an object")
        return

    step_id = raw.get("id")
    if not isinstance(step_id, str) or not step_id:
        errors.append(f"Step '{key}' missing 'id'")
    elif step_id != key:
        errors.append(f"Step '{key}' has mismatched id '{step_id}'")

    step_type = raw.get("type")
    if step_type not in STEP_TYPES:
        errors.append(f"Step '{key}' has invalid type '{step_type}'")
        return

    if not isinstance(raw.get("question"), str):
        errors.append(f"Step '{key}' missing 'question'")

    next_step_id = raw.get("nextStepId")
    if next_step_id is not None and not isinstance(next_step_id, str):
        errors.append(f"Step '{key}' has non-string 'nextStepId'")

    if step_type == "choice":
        choices = raw.get("choices") or []
        if not isinstance(choices, list):
            errors.append(f"Step '{key}' 'choices' must be a list")
            return
        seen = set()
        for i, choice in enumerate(choices):
            if not isinstance(choice, dict) or not isinstance(choice.get("id"), str):
                errors.append(f"Choice at index {i} in step '{key}' missing 'id'")
                continue
            if not isinstance(choice.get("label"), str):
                errors.append(f"Choice '{choice['id']}' in step '{key}' missing 'label'")
            if choice["id"] in seen:
                errors.append(f"Duplicate choice id '{choice['id']}' in step '{key}'")
            seen.add(choice["id"])
            target = choice.get("nextStepId")
            if target is not None and not isinstance(target, str):
                errors.append(f"Choice '{choice['id']}' in step '{key}' has non-string 'nextStepId'")

    elif step_type == "quantity":
        choices = raw.get("quantityChoices") or []
        if not isinstance(choices, list):
            errors.append(f"Step '{key}' 'quantityChoices' must be a list")
            return
        for i, choice in enumerate(choices):
            if not isinstance(choice, dict) or not isinstance(choice.get("id"), str):
                errors.append(f"Quantity choice at index {i} in step '{key}' missing 'id'")
                continue
            choice_id = choice["id"]
            if not isinstance(choice.get("label"), str):
                errors.append(f"Quantity choice '{choice_id}' in step '{key}' missing 'label'")
            price = choice.get("price", 0)
            if not _is_number(price) or price < 0:
                errors.append(f"Quantity choice '{choice_id}' in step '{key}' has invalid price {price!r}")
            limit = choice.get("limit")
            if limit is not None and (not _is_number(limit) or limit < 0):
                errors.append(f"Quantity choice '{choice_id}' in step '{key}' has invalid limit {limit!r}")


def parse_graph(data) -> FormGraph:
    """
    Validate a raw JSON graph and build a FormGraph.

    Checks:
    - rootStepId present (may be empty while the editor has no steps)
    - steps is an object keyed by step id
    - every step has a known type, an id matching its key and a question
    - choice ids present and unique per step
    - quantity prices and limits are non-negative numbers

    Edges are NOT reference-checked: dangling targets and cycles are legal.

    Args:
        data: Decoded JSON payload

    Returns:
        FormGraph

    Raises:
        GraphValidationError: With every problem found
    """
    errors = []

    if not isinstance(data, dict):
        raise GraphValidationError(["Graph payload must be an object"])

    if not isinstance(data.get("rootStepId"), str):
        errors.append("Missing 'rootStepId'")

    steps = data.get("steps")
    if not isinstance(steps, dict):
        errors.append("Missing 'steps'")
    else:
        for key, raw in steps.items():
            _validate_step(key, raw, errors)

    if errors:
        raise GraphValidationError(errors)

    return FormGraph.from_json(data)


def find_structural_issues(graph: FormGraph) -> List[str]:
    """
    List non-fatal problems an operator may want to fix.

    None of these stop traversal; they are reported for the editor UI.

    Returns:
        list[str]: Human-readable issues, empty when the graph is clean
    """
    from formflow.core.traversal import enumerate_steps

    issues = []

    if not is_usable(graph):
        issues.append(f"Root step '{graph.root_step_id}' does not exist")

    for key, step in graph.steps.items():
        if step.id != key:
            issues.append(f"Step '{key}' is stored under a different id '{step.id}'")

        for target in outgoing_edges(step):
            if target and target not in graph.steps:
                issues.append(f"Step '{key}' points to missing step '{target}'")

        if isinstance(step, ChoiceStep):
            ids = [c.id for c in step.choices]
            for choice_id in sorted({i for i in ids if ids.count(i) > 1}):
                issues.append(f"Step '{key}' has duplicate choice id '{choice_id}'")

        if isinstance(step, QuantityStep):
            no_thanks = [c for c in step.quantity_choices if c.is_no_thanks]
            if len(no_thanks) > 1:
                issues.append(f"Step '{key}' has {len(no_thanks)} 'no thanks' entries")

    if is_usable(graph):
        reachable = {step.id for step in enumerate_steps(graph)}
        for key in graph.steps:
            if key not in reachable:
                issues.append(f"Step '{key}' is unreachable from the root")

    return issues


# =========================================================================
# Editing (each operation returns a new graph)
# =========================================================================

def _require_step(graph: FormGraph, step_id: str) -> Step:
    step = graph.get(step_id)
    if step is None:
        raise ValueError(f"Step '{step_id}' does not exist")
    return step


def new_step(step_type: str, step_id: Optional[str] = None) -> Step:
    """
    Build a step with the editor's default content.

    Args:
        step_type: One of text, choice, quantity, conclusion
        step_id: Explicit id (generated when omitted)

    Raises:
        ValueError: Unknown step type
    """
    step_id = step_id or generate_id("step")

    if step_type == "text":
        return TextStep(id=step_id, question="Enter your question", placeholder="Enter your answer")

    if step_type == "choice":
        return ChoiceStep(
            id=step_id,
            question="Select an option",
            choices=[
                Choice(id=generate_id("choice"), label="Option 1"),
                Choice(id=generate_id("choice"), label="Option 2"),
            ],
        )

    if step_type == "quantity":
        return QuantityStep(
            id=step_id,
            question="Select items and quantities",
            quantity_choices=[
                QuantityChoice(id=generate_id("qc"), label="Item 1", price=10),
                QuantityChoice(id=generate_id("qc"), label="Item 2", price=15),
                QuantityChoice(id=generate_id("qc"), label="No thanks", price=0, is_no_thanks=True),
            ],
        )

    if step_type == "conclusion":
        return ConclusionStep(
            id=step_id,
            question="Thank You!",
            thank_you_message="Thank you for completing this form. Please review your answers and submit.",
            submit_button_text="Submit",
        )

    raise ValueError(f"Unknown step type '{step_type}'")


def create_first_step(graph: FormGraph, step_type: str, step_id: Optional[str] = None) -> FormGraph:
    """Seed an empty graph with a root step."""
    step = new_step(step_type, step_id)
    result = graph.clone()
    result.steps[step.id] = step
    result.root_step_id = step.id
    logger.debug(f"Created first step {step.id} ({step_type})")
    return result


def insert_step_after(
    graph: FormGraph,
    after_step_id: str,
    step_type: str,
    choice_id: Optional[str] = None,
    step_id: Optional[str] = None,
) -> FormGraph:
    """
    Add a new step and point an edge of an existing step at it.

    The edge rewired is the parent's own next edge (text/quantity) or the
    given choice's edge (choice). The new step starts terminal.

    Args:
        graph: Current graph
        after_step_id: Parent step
        step_type: Type of the new step
        choice_id: Branch to attach to (required for choice parents)
        step_id: Explicit id for the new step

    Returns:
        New graph. Pass step_id to know the new step's id up front.

    Raises:
        ValueError: Unknown parent, unknown choice, or conclusion parent
    """
    _require_step(graph, after_step_id)
    step = new_step(step_type, step_id)

    result = graph.clone()
    result.steps[step.id] = step
    parent = result.steps[after_step_id]

    if isinstance(parent, ChoiceStep):
        choice = parent.find_choice(choice_id)
        if choice is None:
            raise ValueError(f"Choice '{choice_id}' does not exist on step '{after_step_id}'")
        choice.next_step_id = step.id
    elif isinstance(parent, (TextStep, QuantityStep)):
        parent.next_step_id = step.id
    else:
        raise ValueError(f"Step '{after_step_id}' is a conclusion and has no outgoing edge")

    logger.debug(f"Inserted {step.id} ({step_type}) after {after_step_id}")
    return result


def update_step(graph: FormGraph, step_id: str, **changes) -> FormGraph:
    """
    Replace fields of one step.

    Args:
        graph: Current graph
        step_id: Step to change
        **changes: Attribute name -> new value (snake_case)

    Raises:
        ValueError: Unknown step, unknown attribute, or an attempt to change the id
    """
    _require_step(graph, step_id)
    if "id" in changes:
        raise ValueError("Step id cannot be changed")

    result = graph.clone()
    step = result.steps[step_id]
    for name, value in changes.items():
        if not hasattr(step, name) or name == "type":
            raise ValueError(f"Step '{step_id}' ({step.type}) has no field '{name}'")
        setattr(step, name, copy.deepcopy(value))

    return result


def revert_step(graph: FormGraph, snapshot: Step) -> FormGraph:
    """Put back a previously captured copy of a step."""
    result = graph.clone()
    result.steps[snapshot.id] = copy.deepcopy(snapshot)
    return result


def delete_step(graph: FormGraph, step_id: str) -> FormGraph:
    """
    Remove a step and null every edge that pointed at it.

    Raises:
        ValueError: Unknown step, or an attempt to delete the root
    """
    _require_step(graph, step_id)
    if step_id == graph.root_step_id:
        raise ValueError("The root step cannot be deleted")

    result = graph.clone()
    del result.steps[step_id]

    rewritten = 0
    for step in result.steps.values():
        if isinstance(step, (TextStep, QuantityStep)) and step.next_step_id == step_id:
            step.next_step_id = None
            rewritten += 1
        elif isinstance(step, ChoiceStep):
            for choice in step.choices:
                if choice.next_step_id == step_id:
                    choice.next_step_id = None
                    rewritten += 1

    logger.debug(f"Deleted {step_id}, nulled {rewritten} reference(s)")
    return result


def _require_typed(graph: FormGraph, step_id: str, step_class) -> Step:
    step = _require_step(graph, step_id)
    if not isinstance(step, step_class):
        raise ValueError(f"Step '{step_id}' is not a {step_class.type} step")
    return step


def add_choice(graph: FormGraph, step_id: str, label: Optional[str] = None) -> FormGraph:
    step = _require_typed(graph, step_id, ChoiceStep)
    result = graph.clone()
    result.steps[step_id].choices.append(
        Choice(id=generate_id("choice"), label=label or f"Option {len(step.choices) + 1}")
    )
    return result


def update_choice(graph: FormGraph, step_id: str, choice_id: str, **changes) -> FormGraph:
    """Change label and/or next_step_id of one branch."""
    _require_typed(graph, step_id, ChoiceStep)
    result = graph.clone()
    choice = result.steps[step_id].find_choice(choice_id)
    if choice is None:
        raise ValueError(f"Choice '{choice_id}' does not exist on step '{step_id}'")
    for name, value in changes.items():
        if name not in ("label", "next_step_id"):
            raise ValueError(f"Choice has no editable field '{name}'")
        setattr(choice, name, value)
    return result


def delete_choice(graph: FormGraph, step_id: str, choice_id: str) -> FormGraph:
    """Remove a branch; a choice step keeps at least MIN_CHOICES branches."""
    step = _require_typed(graph, step_id, ChoiceStep)
    if len(step.choices) <= MIN_CHOICES:
        raise ValueError(f"A choice step needs at least {MIN_CHOICES} choices")
    result = graph.clone()
    result.steps[step_id].choices = [c for c in step.choices if c.id != choice_id]
    return result


def add_quantity_choice(graph: FormGraph, step_id: str, label: Optional[str] = None,
                        price: float = 0, limit: Optional[int] = None) -> FormGraph:
    step = _require_typed(graph, step_id, QuantityStep)
    result = graph.clone()
    result.steps[step_id].quantity_choices.append(
        QuantityChoice(
            id=generate_id("qc"),
            label=label or f"Item {len(step.quantity_choices) + 1}",
            price=price,
            limit=limit,
        )
    )
    return result


def update_quantity_choice(graph: FormGraph, step_id: str, choice_id: str, **changes) -> FormGraph:
    _require_typed(graph, step_id, QuantityStep)
    result = graph.clone()
    choice = result.steps[step_id].find_choice(choice_id)
    if choice is None:
        raise ValueError(f"Quantity choice '{choice_id}' does not exist on step '{step_id}'")
    for name, value in changes.items():
        if name not in ("label", "price", "limit", "is_no_thanks"):
            raise ValueError(f"Quantity choice has no editable field '{name}'")
        if name == "price" and (value is None or value < 0):
            raise ValueError("Price must be >= 0")
        if name == "limit" and value is not None and value < 0:
            raise ValueError("Limit must be >= 0 or None")
        setattr(choice, name, value)
    return result


def delete_quantity_choice(graph: FormGraph, step_id: str, choice_id: str) -> FormGraph:
    step = _require_typed(graph, step_id, QuantityStep)
    if len(step.quantity_choices) <= MIN_QUANTITY_CHOICES:
        raise ValueError(f"A quantity step needs at least {MIN_QUANTITY_CHOICES} item")
    result = graph.clone()
    result.steps[step_id].quantity_choices = [c for c in step.quantity_choices if c.id != choice_id]
    return result
