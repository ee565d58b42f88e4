"""
Traversal Engine - walking and enumerating form graphs

Three modes, one rule: a step id is never visited twice within a single
traversal. Graphs may contain cycles and dangling edges while they are
being edited, so every mode terminates and none of them raise.

Modes:
- walk_path(): single path from the root, driven by branch selections
  (live execution and the step-by-step graph viewer)
- enumerate_steps(): depth-first discovery order of every reachable step
  (non-committal preview browsing)
- build_tree(): recursive tree for visualization, with a per-branch
  visited set so branches may reconverge on a shared step
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from formflow.contracts import ChoiceStep, FormGraph, Step
from formflow.core.graph_model import outgoing_edges, resolve_next

logger = logging.getLogger(__name__)


# Safety valve against missed-cycle bugs, not a business rule
DEFAULT_MAX_WALK_STEPS = 50

NODE_ROOT = "root"
NODE_DECISION = "decision"
NODE_LEAF = "leaf"


@dataclass(frozen=True)
class PathNode:
    """
    One step on a walked path.

    Attributes:
        step_id: Step visited
        step: The step itself
        selected_choice_id: Branch taken (choice steps only)
        selected_choice_label: Label of that branch
    """
    step_id: str
    step: Step
    selected_choice_id: Optional[str] = None
    selected_choice_label: Optional[str] = None


@dataclass
class TreeEdge:
    node: "TreeNode"
    label: Optional[str] = None


@dataclass
class TreeNode:
    """
    Visualization node.

    type is 'root' for the graph root, 'decision' for choice steps and any
    step with a live child, 'leaf' otherwise. Synthetic dead-end leaves use
    step_id 'leaf-<choice id>' and carry the choice label as their question.
    """
    step_id: str
    step: Step
    type: str
    children: List[TreeEdge] = field(default_factory=list)

    def to_json(self) -> dict:
        return {
            "stepId": self.step_id,
            "type": self.type,
            "question": self.step.question,
            "stepType": self.step.type,
            "children": [
                {"label": edge.label, "node": edge.node.to_json()} for edge in self.children
            ],
        }


# =========================================================================
# Runtime walk
# =========================================================================

def walk_path(
    graph: Optional[FormGraph],
    selections: Optional[Dict[str, str]] = None,
    max_steps: int = DEFAULT_MAX_WALK_STEPS,
) -> List[PathNode]:
    """
    Walk one path from the root.

    Stops at a null edge, a missing step, a revisit, or after max_steps
    nodes. A choice step without a recorded selection (or with a selection
    that no longer exists) follows its first choice.

    Args:
        graph: Graph to walk
        selections: step id -> chosen choice id
        max_steps: Hard cap on path length

    Returns:
        list[PathNode]: Visited steps in order ([] for an unusable graph)
    """
    nodes: List[PathNode] = []
    if graph is None:
        return nodes

    selections = selections or {}
    visited = set()
    current_id = graph.root_step_id

    while current_id and current_id in graph.steps and current_id not in visited:
        if len(nodes) >= max_steps:
            logger.warning(f"Walk aborted after {max_steps} steps (root={graph.root_step_id})")
            break

        visited.add(current_id)
        step = graph.steps[current_id]

        if isinstance(step, ChoiceStep):
            if not step.choices:
                nodes.append(PathNode(step_id=current_id, step=step))
                break
            choice = step.find_choice(selections.get(current_id)) or step.choices[0]
            nodes.append(PathNode(
                step_id=current_id,
                step=step,
                selected_choice_id=choice.id,
                selected_choice_label=choice.label,
            ))
            current_id = choice.next_step_id
        else:
            nodes.append(PathNode(step_id=current_id, step=step))
            current_id = resolve_next(step)

    return nodes


def reselect_branch(
    graph: FormGraph,
    selections: Dict[str, str],
    step_id: str,
    choice_id: str,
    max_steps: int = DEFAULT_MAX_WALK_STEPS,
) -> Tuple[Dict[str, str], Optional[int]]:
    """
    Record a new branch selection and find where the viewer should go next.

    Returns:
        tuple: (new selections, index of the step after step_id on the new
        path, or None when step_id is now the last step)
    """
    new_selections = dict(selections)
    new_selections[step_id] = choice_id

    path = walk_path(graph, new_selections, max_steps=max_steps)
    for index, node in enumerate(path):
        if node.step_id == step_id:
            return new_selections, (index + 1 if index < len(path) - 1 else None)

    return new_selections, None


# =========================================================================
# Ordered enumeration
# =========================================================================

def enumerate_steps(graph: Optional[FormGraph]) -> List[Step]:
    """
    Every step reachable from the root, in depth-first discovery order.

    A step's primary edge is followed before its choice edges, choices in
    declared order. Uses an explicit stack so long chains cannot hit the
    recursion limit; the order matches a recursive pre-order walk.
    """
    ordered: List[Step] = []
    if graph is None:
        return ordered

    visited = set()
    stack = [graph.root_step_id]

    while stack:
        step_id = stack.pop()
        if not step_id or step_id in visited or step_id not in graph.steps:
            continue

        visited.add(step_id)
        step = graph.steps[step_id]
        ordered.append(step)

        # Reversed so the first edge is popped first
        for target in reversed(outgoing_edges(step)):
            if target and target not in visited:
                stack.append(target)

    return ordered


def preview_index(ordered: List[Step], step_id: Optional[str]) -> int:
    """Position of step_id in an enumeration, -1 when absent."""
    for index, step in enumerate(ordered):
        if step.id == step_id:
            return index
    return -1


def preview_neighbor(ordered: List[Step], step_id: Optional[str], direction: str) -> Optional[Step]:
    """
    Page through an enumeration.

    Args:
        ordered: Result of enumerate_steps()
        step_id: Step currently shown
        direction: 'prev' or 'next'

    Returns:
        The neighbouring step, clamped to the ends; None for an empty list
    """
    if not ordered:
        return None

    index = preview_index(ordered, step_id)
    if direction == "prev":
        index = max(0, index - 1)
    elif direction == "next":
        index = min(len(ordered) - 1, index + 1)
    else:
        raise ValueError(f"Unknown direction '{direction}'")

    return ordered[index]


# =========================================================================
# Tree construction
# =========================================================================

def _build_node(graph: FormGraph, step_id: str, visited: frozenset) -> Optional[TreeNode]:
    step = graph.get(step_id)
    if step is None or step_id in visited:
        return None

    # Each branch gets its own copy of the path so far
    branch_visited = visited | {step_id}
    children: List[TreeEdge] = []

    if isinstance(step, ChoiceStep):
        for choice in step.choices:
            if choice.next_step_id and choice.next_step_id in graph.steps:
                child = _build_node(graph, choice.next_step_id, branch_visited)
                if child is not None:
                    children.append(TreeEdge(node=child, label=choice.label))
            else:
                leaf = TreeNode(
                    step_id=f"leaf-{choice.id}",
                    step=dataclasses.replace(step, question=choice.label),
                    type=NODE_LEAF,
                )
                children.append(TreeEdge(node=leaf, label=choice.label))
    else:
        next_id = resolve_next(step)
        if next_id:
            child = _build_node(graph, next_id, branch_visited)
            if child is not None:
                children.append(TreeEdge(node=child))

    if step_id == graph.root_step_id:
        node_type = NODE_ROOT
    elif isinstance(step, ChoiceStep) or children:
        node_type = NODE_DECISION
    else:
        node_type = NODE_LEAF

    return TreeNode(step_id=step_id, step=step, type=node_type, children=children)


def build_tree(graph: Optional[FormGraph]) -> Optional[TreeNode]:
    """
    Build the visualization tree rooted at the graph root.

    A step reached by two branches appears under both. An edge back to a
    step already on the current branch is dropped, which ends the cycle.

    Returns:
        TreeNode, or None when the root does not resolve
    """
    if graph is None:
        return None
    return _build_node(graph, graph.root_step_id, frozenset())


def iter_tree(node: Optional[TreeNode]):
    """Pre-order iteration over a built tree."""
    if node is None:
        return
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        for edge in reversed(current.children):
            stack.append(edge.node)
