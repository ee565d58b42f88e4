"""
Data contracts for the form graph engine.

This module defines the shapes shared by every other module: steps,
choices, the graph itself, answers, inventory status and filler drafts.
These are NOT validators - `from_json()` trusts its input. Validation of
raw payloads lives in graph_model.parse_graph().

Design principles:
- Plain dataclasses with snake_case attributes
- camelCase JSON wire shape via to_json() / from_json()
- No dependencies on other formflow modules
- An edge is Optional[str]: None means "intentionally terminal". A target id
  that is not in the graph is resolved as terminal at read time, never
  rejected at write time.

Usage:
    from formflow.contracts import FormGraph, TextStep, ChoiceStep, Choice
"""

import copy
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union


STEP_TYPES = ("text", "choice", "quantity", "conclusion")


@dataclass
class Choice:
    """
    Labeled branch option on a choice step.

    Attributes:
        id: Unique within its step
        label: Text shown to the user; also recorded as the answer
        next_step_id: Edge to follow when chosen (None = terminal)
    """
    id: str
    label: str
    next_step_id: Optional[str] = None

    def to_json(self) -> dict:
        return {"id": self.id, "label": self.label, "nextStepId": self.next_step_id}

    @staticmethod
    def from_json(data: dict) -> "Choice":
        return Choice(
            id=data["id"],
            label=data.get("label", ""),
            next_step_id=data.get("nextStepId"),
        )


@dataclass
class QuantityChoice:
    """
    Purchasable line item on a quantity step.

    Attributes:
        id: Unique within its step
        label: Item name
        price: Unit price (>= 0)
        limit: Stock limit, None for unlimited
        is_no_thanks: Opt-out entry; carries no price or limit and never
            appears in the recorded answer
    """
    id: str
    label: str
    price: float = 0
    limit: Optional[int] = None
    is_no_thanks: bool = False

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "price": self.price,
            "limit": self.limit,
            "isNoThanks": self.is_no_thanks,
        }

    @staticmethod
    def from_json(data: dict) -> "QuantityChoice":
        return QuantityChoice(
            id=data["id"],
            label=data.get("label", ""),
            price=data.get("price", 0),
            limit=data.get("limit"),
            is_no_thanks=bool(data.get("isNoThanks", False)),
        )


@dataclass
class Step:
    """
    Base class for graph nodes. Use one of the four concrete variants.

    Attributes:
        id: Unique id, also the key in FormGraph.steps
        question: Prompt shown to the user (heading for conclusion steps)
        info_popup: Optional presentation payload, carried opaquely
    """
    id: str
    question: str = ""
    info_popup: Optional[Dict[str, Any]] = None

    type: ClassVar[str] = ""

    def _base_json(self) -> dict:
        data = {"id": self.id, "type": self.type, "question": self.question}
        if self.info_popup is not None:
            data["infoPopup"] = copy.deepcopy(self.info_popup)
        return data

    def to_json(self) -> dict:
        return self._base_json()

    @staticmethod
    def from_json(data: dict) -> "Step":
        step_class = STEP_CLASSES[data["type"]]
        return step_class._from_json(data)


@dataclass
class TextStep(Step):
    placeholder: Optional[str] = None
    next_step_id: Optional[str] = None

    type: ClassVar[str] = "text"

    def to_json(self) -> dict:
        data = self._base_json()
        if self.placeholder is not None:
            data["placeholder"] = self.placeholder
        data["nextStepId"] = self.next_step_id
        return data

    @classmethod
    def _from_json(cls, data: dict) -> "TextStep":
        return cls(
            id=data["id"],
            question=data.get("question", ""),
            info_popup=copy.deepcopy(data.get("infoPopup")),
            placeholder=data.get("placeholder"),
            next_step_id=data.get("nextStepId"),
        )


@dataclass
class ChoiceStep(Step):
    choices: List[Choice] = field(default_factory=list)

    type: ClassVar[str] = "choice"

    def find_choice(self, choice_id: Optional[str]) -> Optional[Choice]:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None

    def to_json(self) -> dict:
        data = self._base_json()
        data["choices"] = [c.to_json() for c in self.choices]
        return data

    @classmethod
    def _from_json(cls, data: dict) -> "ChoiceStep":
        return cls(
            id=data["id"],
            question=data.get("question", ""),
            info_popup=copy.deepcopy(data.get("infoPopup")),
            choices=[Choice.from_json(c) for c in data.get("choices") or []],
        )


@dataclass
class QuantityStep(Step):
    quantity_choices: List[QuantityChoice] = field(default_factory=list)
    next_step_id: Optional[str] = None

    type: ClassVar[str] = "quantity"

    def find_choice(self, choice_id: Optional[str]) -> Optional[QuantityChoice]:
        for choice in self.quantity_choices:
            if choice.id == choice_id:
                return choice
        return None

    def purchasable_choices(self) -> List[QuantityChoice]:
        """Choices that appear in the answer (everything but no-thanks), declared order."""
        return [c for c in self.quantity_choices if not c.is_no_thanks]

    def to_json(self) -> dict:
        data = self._base_json()
        data["quantityChoices"] = [c.to_json() for c in self.quantity_choices]
        data["nextStepId"] = self.next_step_id
        return data

    @classmethod
    def _from_json(cls, data: dict) -> "QuantityStep":
        return cls(
            id=data["id"],
            question=data.get("question", ""),
            info_popup=copy.deepcopy(data.get("infoPopup")),
            quantity_choices=[QuantityChoice.from_json(c) for c in data.get("quantityChoices") or []],
            next_step_id=data.get("nextStepId"),
        )


@dataclass
class ConclusionStep(Step):
    """Terminal by construction: no outgoing edge, carries its own submit button."""
    thank_you_message: str = ""
    submit_button_text: str = "Submit"

    type: ClassVar[str] = "conclusion"

    def to_json(self) -> dict:
        data = self._base_json()
        data["thankYouMessage"] = self.thank_you_message
        data["submitButtonText"] = self.submit_button_text
        return data

    @classmethod
    def _from_json(cls, data: dict) -> "ConclusionStep":
        return cls(
            id=data["id"],
            question=data.get("question", ""),
            info_popup=copy.deepcopy(data.get("infoPopup")),
            thank_you_message=data.get("thankYouMessage", ""),
            submit_button_text=data.get("submitButtonText") or "Submit",
        )


STEP_CLASSES = {
    "text": TextStep,
    "choice": ChoiceStep,
    "quantity": QuantityStep,
    "conclusion": ConclusionStep,
}


@dataclass
class FormGraph:
    """
    Directed graph of question steps.

    The graph is usable only when root_step_id is a key of steps. It may
    contain cycles, dangling edges and unreachable steps; readers must
    cope with all three.
    """
    root_step_id: str = ""
    steps: Dict[str, Step] = field(default_factory=dict)

    def get(self, step_id: Optional[str]) -> Optional[Step]:
        if not step_id:
            return None
        return self.steps.get(step_id)

    def clone(self) -> "FormGraph":
        """Deep, independent copy."""
        return copy.deepcopy(self)

    def to_json(self) -> dict:
        return {
            "rootStepId": self.root_step_id,
            "steps": {step_id: step.to_json() for step_id, step in self.steps.items()},
        }

    @staticmethod
    def from_json(data: dict) -> "FormGraph":
        return FormGraph(
            root_step_id=data.get("rootStepId", ""),
            steps={step_id: Step.from_json(raw) for step_id, raw in (data.get("steps") or {}).items()},
        )


@dataclass(frozen=True)
class QuantityAnswer:
    """One recorded line of a quantity step answer."""
    choice_id: str
    label: str
    quantity: int
    price: float

    def to_json(self) -> dict:
        return {
            "choiceId": self.choice_id,
            "label": self.label,
            "quantity": self.quantity,
            "price": self.price,
        }

    @staticmethod
    def from_json(data: dict) -> "QuantityAnswer":
        return QuantityAnswer(
            choice_id=data["choiceId"],
            label=data.get("label", ""),
            quantity=int(data.get("quantity", 0)),
            price=data.get("price", 0),
        )


# step id -> typed text / chosen label, or the quantity lines
Answer = Union[str, List[QuantityAnswer]]


def answers_to_json(answers: Dict[str, Answer]) -> dict:
    result = {}
    for step_id, answer in answers.items():
        if isinstance(answer, list):
            result[step_id] = [qa.to_json() for qa in answer]
        else:
            result[step_id] = answer
    return result


def answers_from_json(data: dict) -> Dict[str, Answer]:
    result = {}
    for step_id, answer in (data or {}).items():
        if isinstance(answer, list):
            result[step_id] = [QuantityAnswer.from_json(qa) for qa in answer]
        else:
            result[step_id] = answer
    return result


@dataclass(frozen=True)
class InventoryStatus:
    """
    Stock snapshot for one quantity choice.

    remaining is None for unlimited stock.
    """
    step_id: str
    choice_id: str
    remaining: Optional[int] = None
    is_sold_out: bool = False

    def to_json(self) -> dict:
        return {
            "stepId": self.step_id,
            "choiceId": self.choice_id,
            "remaining": self.remaining,
            "isSoldOut": self.is_sold_out,
        }

    @staticmethod
    def from_json(data: dict) -> "InventoryStatus":
        return InventoryStatus(
            step_id=data["stepId"],
            choice_id=data["choiceId"],
            remaining=data.get("remaining"),
            is_sold_out=bool(data.get("isSoldOut", False)),
        )


@dataclass
class Draft:
    """
    Serializable mirror of an in-progress fill session.

    saved_at is epoch milliseconds, stamped by DraftStore.save().
    """
    answers: Dict[str, Answer] = field(default_factory=dict)
    history: List[str] = field(default_factory=list)
    current_step_id: Optional[str] = None
    customer_name: str = ""
    customer_phone: str = ""
    quantity_selections: Dict[str, int] = field(default_factory=dict)
    show_phone_input: bool = False
    input_value: str = ""
    saved_at: int = 0

    def referenced_step_ids(self) -> set:
        ids = set(self.history) | set(self.answers)
        if self.current_step_id:
            ids.add(self.current_step_id)
        return ids

    def to_json(self) -> dict:
        return {
            "answers": answers_to_json(self.answers),
            "history": list(self.history),
            "currentStepId": self.current_step_id,
            "customerName": self.customer_name,
            "customerPhone": self.customer_phone,
            "quantitySelections": dict(self.quantity_selections),
            "showPhoneInput": self.show_phone_input,
            "inputValue": self.input_value,
            "savedAt": self.saved_at,
        }

    @staticmethod
    def from_json(data: dict) -> "Draft":
        return Draft(
            answers=answers_from_json(data.get("answers")),
            history=list(data.get("history") or []),
            current_step_id=data.get("currentStepId"),
            customer_name=data.get("customerName") or "",
            customer_phone=data.get("customerPhone") or "",
            quantity_selections={k: int(v) for k, v in (data.get("quantitySelections") or {}).items()},
            show_phone_input=bool(data.get("showPhoneInput", False)),
            input_value=data.get("inputValue") or "",
            saved_at=int(data.get("savedAt") or 0),
        )
