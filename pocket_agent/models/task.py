"""Plan, result and template models shared by the pipeline stages.

These dataclasses are shared between the TaskPlanner (which builds plans),
the ActionExecutor (which produces results), the ExperienceCache (which
memorises templates) and the Orchestrator.  Keeping them in the models
layer avoids circular imports between core modules.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from pocket_agent.models.actions import Action, SafetyLevel, new_id


class ErrorKind(Enum):
    """Taxonomy of pipeline failures.

    Attributes:
        PARSING_AMBIGUOUS: The request could not be classified.
        PLANNING_TIMEOUT: Plan construction exceeded its time budget.
        PLANNING_FAILURE: Plan construction raised.
        AUTOMATION_UNAVAILABLE: An action needed the automation backend
            but none is attached.
        ELEMENT_NOT_FOUND: A selector matched nothing on screen.
        ACTION_EXECUTION_FAILURE: The backend could not perform an
            action, or raised while doing so.
        NO_PENDING_CONSENT: A consent decision arrived while no plan
            was waiting for one.
        LANGUAGE_SERVICE_FAILURE: A text reply could not be produced.
    """

    PARSING_AMBIGUOUS = "parsing_ambiguous"
    PLANNING_TIMEOUT = "planning_timeout"
    PLANNING_FAILURE = "planning_failure"
    AUTOMATION_UNAVAILABLE = "automation_unavailable"
    ELEMENT_NOT_FOUND = "element_not_found"
    ACTION_EXECUTION_FAILURE = "action_execution_failure"
    NO_PENDING_CONSENT = "no_pending_consent"
    LANGUAGE_SERVICE_FAILURE = "language_service_failure"


def max_safety(actions: Sequence[Action]) -> SafetyLevel:
    """Highest safety level among *actions*, ``SAFE`` when empty."""
    return max((a.safety_level for a in actions), default=SafetyLevel.SAFE)


@dataclass(frozen=True)
class ActionPlan:
    """An ordered list of device actions awaiting consent or execution.

    ``safety_level`` is not a constructor argument: it is always the
    maximum safety level over ``actions``.

    Attributes:
        description: Human-readable summary, also the pattern under
            which the plan is memorised after a successful run.
        actions: Ordered actions to execute.
        requires_consent: Whether the user must approve the plan.
        rollback_actions: Undo sequence run after a non-recoverable
            failure.
        parameters: Slot values used to build the plan, e.g.
            ``{"contact": "John", "message": "hi"}``.
        id: Unique plan identifier.
        safety_level: Derived maximum safety level.
    """

    description: str
    actions: tuple[Action, ...] = ()
    requires_consent: bool = True
    rollback_actions: tuple[Action, ...] = ()
    parameters: dict[str, str] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    safety_level: SafetyLevel = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "actions", tuple(self.actions))
        object.__setattr__(self, "rollback_actions", tuple(self.rollback_actions))
        object.__setattr__(self, "safety_level", max_safety(self.actions))


# ---------------------------------------------------------------------------
# Action results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionSuccess:
    """An action completed.

    Attributes:
        action_id: Identifier of the executed action.
        duration_ms: Wall-clock execution time.
        message: Optional detail, e.g. what was launched.
    """

    action_id: str
    duration_ms: float
    message: str = ""

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class ActionFailure:
    """An action could not be completed.

    Attributes:
        action_id: Identifier of the failed action.
        duration_ms: Wall-clock time until the failure.
        error: Short human-readable reason.
        recoverable: Whether the rest of the plan may still run.
        kind: Taxonomy entry for the failure.
    """

    action_id: str
    duration_ms: float
    error: str
    recoverable: bool
    kind: ErrorKind = ErrorKind.ACTION_EXECUTION_FAILURE

    @property
    def success(self) -> bool:
        return False


ActionResult = Union[ActionSuccess, ActionFailure]


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class ParameterType(Enum):
    """Kind of value a template slot holds; selects the extractor."""

    TEXT = "text"
    TIME = "time"
    DATE = "date"
    CONTACT = "contact"
    APP = "app"
    NUMBER = "number"


@dataclass(frozen=True)
class ParameterSlot:
    """A named placeholder (``{name}``) inside a template's actions."""

    name: str
    type: ParameterType
    required: bool = True


@dataclass
class TaskTemplate:
    """A memorised (pattern, actions) pair with success statistics.

    Mutated in place each time a matching plan runs again.

    Attributes:
        pattern: Description of the plan the template was learned from.
        normalized_pattern: ``normalize(pattern)``, used for matching.
        actions: Actions with ``{slot}`` placeholders for parameters.
        parameter_slots: Slots appearing in ``actions``.
        success_rate: Running mean of per-run success rates.
        use_count: Number of runs folded into ``success_rate``.
        last_used: Unix timestamp of the last insert, update or match.
        id: Unique template identifier.
    """

    pattern: str
    normalized_pattern: str
    actions: list[Action] = field(default_factory=list)
    parameter_slots: list[ParameterSlot] = field(default_factory=list)
    success_rate: float = 1.0
    use_count: int = 1
    last_used: float = field(default_factory=time.time)
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class TemplateMatch:
    """Best template for a query, with its similarity score."""

    template: TaskTemplate
    confidence: float
    extracted_parameters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MemoryStats:
    """Externally observable memory statistics."""

    template_count: int = 0
    action_sequence_count: int = 0
    total_executions: int = 0
    average_success_rate: float = 0.0
