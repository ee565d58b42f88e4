"""
Command types for FormRunner control flow.

Outer surfaces (app.py, main.py) drive a fill session by handing commands
to FormRunner.handle(). Each command maps to exactly one transition.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SubmitText:
    """Answer the current text step."""
    value: str


@dataclass(frozen=True)
class SelectChoice:
    """Take one branch of the current choice step."""
    choice_id: str


@dataclass(frozen=True)
class SetInput:
    """In-progress text for the current text step (draft-only, no transition)."""
    value: str


@dataclass(frozen=True)
class SetQuantity:
    choice_id: str
    quantity: int


@dataclass(frozen=True)
class SubmitQuantities:
    """
    Commit the quantity selections of the current step.

    Stock is re-fetched first; over-limit selections are clamped and the
    transition is rejected so the user can confirm the adjusted amounts.
    """
    pass


@dataclass(frozen=True)
class SetContact:
    """In-progress contact fields (draft-only, no transition)."""
    phone: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class SubmitContact:
    phone: str
    name: str = ""


@dataclass(frozen=True)
class EditFromReview:
    """Jump back to the visited step at this history index."""
    index: int


@dataclass(frozen=True)
class GoBack:
    pass


@dataclass(frozen=True)
class Submit:
    """Final submission from the review screen."""
    pass


@dataclass(frozen=True)
class SubmitConclusion:
    """
    Final submission from a conclusion step.

    Contact capture is folded in: phone/name may be supplied here.
    """
    phone: Optional[str] = None
    name: Optional[str] = None


# Command union type for type hints
Command = (
    SubmitText | SelectChoice | SetInput | SetQuantity | SubmitQuantities
    | SetContact | SubmitContact | EditFromReview | GoBack | Submit | SubmitConclusion
)


COMMAND_TYPES = {
    cls.__name__: cls
    for cls in (
        SubmitText, SelectChoice, SetInput, SetQuantity, SubmitQuantities,
        SetContact, SubmitContact, EditFromReview, GoBack, Submit, SubmitConclusion,
    )
}


def command_from_json(data: dict) -> Command:
    """
    Build a command from {'type': <class name>, ...fields}.

    Raises:
        ValueError: Unknown type or bad fields
    """
    if not isinstance(data, dict):
        raise ValueError("Command must be a JSON object")

    fields = dict(data)
    command_type = fields.pop("type", None)
    command_class = COMMAND_TYPES.get(command_type)
    if command_class is None:
        raise ValueError(f"Unknown command type '{command_type}'")

    try:
        return command_class(**fields)
    except TypeError as e:
        raise ValueError(f"Invalid fields for {command_type}: {e}") from e
