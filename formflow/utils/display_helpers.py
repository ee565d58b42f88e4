"""
Display Helpers - Convert runner and graph state to human-readable text

Used by main.py (console harness) and app.py (review payloads).
"""

from typing import Any, Dict, List, Optional

from formflow.contracts import Answer, ChoiceStep, ConclusionStep, QuantityStep, Step, TextStep
from formflow.core.traversal import TreeNode


STEP_TYPE_LABELS = {
    'text': 'Text',
    'choice': 'Choice',
    'quantity': 'Quantity',
    'conclusion': 'Conclusion',
}


def format_price(amount: float) -> str:
    """
    Format a price for display.

    Examples:
        >>> format_price(12.5)
        '$12.50'
    """
    return f"${amount:,.2f}"


def format_answer(answer: Optional[Answer]) -> str:
    """
    Convert a recorded answer to text.

    Quantity answers list only lines with a positive quantity; an all-zero
    answer reads as 'None selected'.
    """
    if answer is None:
        return ''

    if isinstance(answer, list):
        lines = [
            f"{line.label} x{line.quantity} ({format_price(line.quantity * line.price)})"
            for line in answer
            if line.quantity > 0
        ]
        return ', '.join(lines) if lines else 'None selected'

    return str(answer)


def format_review(items, total: float = 0) -> List[Dict[str, Any]]:
    """
    Build review rows for UI display.

    Args:
        items: FormRunner.review_items()
        total: FormRunner.total_price()

    Returns:
        list of {'index', 'stepId', 'question', 'answer'} dicts, plus a
        trailing total row when anything was ordered
    """
    rows = [
        {
            'index': item.index,
            'stepId': item.step_id,
            'question': item.question,
            'answer': format_answer(item.answer),
        }
        for item in items
    ]

    if total:
        rows.append({'index': None, 'stepId': None, 'question': 'Total', 'answer': format_price(total)})

    return rows


def describe_step(step: Step) -> List[str]:
    """Console lines for one step: the question and its options."""
    lines = [step.question]

    if isinstance(step, TextStep):
        if step.placeholder:
            lines.append(f"  ({step.placeholder})")
    elif isinstance(step, ChoiceStep):
        for number, choice in enumerate(step.choices, 1):
            lines.append(f"  {number}. {choice.label}")
    elif isinstance(step, QuantityStep):
        for number, choice in enumerate(step.quantity_choices, 1):
            if choice.is_no_thanks:
                lines.append(f"  {number}. {choice.label}")
                continue
            limit = f", {choice.limit} max" if choice.limit is not None else ''
            lines.append(f"  {number}. {choice.label} ({format_price(choice.price)} each{limit})")
    elif isinstance(step, ConclusionStep):
        lines.append(f"  {step.thank_you_message}")
        lines.append(f"  [{step.submit_button_text}]")

    return lines


def render_tree(node: Optional[TreeNode], indent: int = 0, label: Optional[str] = None) -> str:
    """
    Render a visualization tree as indented text.

    Example:
        [root] What is your name? (text)
          [decision] Pick one (choice)
            -- A --> [leaf] A
    """
    if node is None:
        return '(empty form)'

    prefix = '  ' * indent
    edge = f"-- {label} --> " if label else ''
    step_type = STEP_TYPE_LABELS.get(node.step.type, node.step.type).lower()
    lines = [f"{prefix}{edge}[{node.type}] {node.step.question} ({step_type})"]

    for child in node.children:
        lines.append(render_tree(child.node, indent + 1, child.label))

    return '\n'.join(lines)
