"""
Result types returned by FormRunner.handle()

These are the ONLY return types from the command handler.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of one runner command.

    A rejected transition leaves the runner where it was (except where a
    stock check moved it back to the quantity step that needs fixing).

    Attributes:
        accepted: Whether the transition happened
        phase: Runner phase after the command
        current_step_id: Step shown after the command (None outside question phase)
        message: User-facing explanation, mainly for rejections
        issues: One line per stock problem or clamp notice
    """
    accepted: bool
    phase: str
    current_step_id: Optional[str]
    message: Optional[str] = None
    issues: List[str] = field(default_factory=list)

    def to_json(self) -> dict:
        return {
            "accepted": self.accepted,
            "phase": self.phase,
            "currentStepId": self.current_step_id,
            "message": self.message,
            "issues": list(self.issues),
        }


@dataclass(frozen=True)
class IllegalCommand:
    """
    Command rejected by the runner because it does not fit the lifecycle.

    Examples:
    - Unknown command object
    - Any command after the form has been submitted

    Attributes:
        reason: Human-readable explanation
        command_type: Name of rejected command type
    """
    reason: str
    command_type: str

    def to_json(self) -> dict:
        return {"reason": self.reason, "commandType": self.command_type}
