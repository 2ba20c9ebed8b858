"""Conversation-level models: queries, responses, consent and state.

The Orchestrator owns exactly one ``OrchestratorState`` at a time and an
append-only list of ``ConversationEntry`` values.  Everything here is an
immutable value.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

from pocket_agent.models.actions import new_id
from pocket_agent.models.task import ActionPlan, ErrorKind


class TimeOfDay(Enum):
    """Coarse part of the day, used as planning context."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"

    @classmethod
    def from_hour(cls, hour: int) -> TimeOfDay:
        """Map an hour (0-23) to its part of the day."""
        if 5 <= hour <= 11:
            return cls.MORNING
        if 12 <= hour <= 16:
            return cls.AFTERNOON
        if 17 <= hour <= 20:
            return cls.EVENING
        return cls.NIGHT


@dataclass(frozen=True)
class QueryContext:
    """Device context captured when the query was submitted."""

    time_of_day: TimeOfDay = TimeOfDay.MORNING
    current_app: str | None = None
    recent_apps: tuple[str, ...] = ()


@dataclass(frozen=True)
class Query:
    """One user submission.

    Attributes:
        text: Raw request text.
        context: Device context at submission time.
        id: Unique query identifier.
        timestamp: Unix timestamp of submission.
    """

    text: str
    context: QueryContext = field(default_factory=QueryContext)
    id: str = field(default_factory=new_id)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def create(
        cls,
        text: str,
        current_app: str | None = None,
        recent_apps: tuple[str, ...] = (),
    ) -> Query:
        """Build a query stamped with the current time of day."""
        now = time.time()
        context = QueryContext(
            time_of_day=TimeOfDay.from_hour(datetime.fromtimestamp(now).hour),
            current_app=current_app,
            recent_apps=recent_apps,
        )
        return cls(text=text, context=context, timestamp=now)


class ResponseStatus(Enum):
    """Outcome category of an ``AgentResponse``."""

    PENDING = "pending"
    AWAITING_CONSENT = "awaiting_consent"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AgentResponse:
    """What the Orchestrator returns for a query or a consent decision.

    Attributes:
        query_id: Query (or plan, for consent replies) this answers.
        text: Short human-readable message.
        status: Outcome category.
        plan: Plan awaiting consent or the plan that was executed.
        confidence: Cache match confidence, 1.0 for fresh plans.
        latency_ms: End-to-end processing time.
        error_kind: Taxonomy entry when ``status`` is ``FAILED``.
        id: Unique response identifier.
    """

    query_id: str
    text: str
    status: ResponseStatus
    plan: ActionPlan | None = None
    confidence: float = 1.0
    latency_ms: float = 0.0
    error_kind: ErrorKind | None = None
    id: str = field(default_factory=new_id)


class ConsentDecision(Enum):
    """User verdict on a pending plan."""

    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"


@dataclass(frozen=True)
class ConsentResponse:
    """User decision on a pending plan.

    ``modified_plan`` is only read when ``decision`` is ``MODIFIED``.
    """

    plan_id: str
    decision: ConsentDecision
    modified_plan: ActionPlan | None = None
    reason: str | None = None


# ---------------------------------------------------------------------------
# Orchestrator state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Idle:
    """No query in flight."""


@dataclass(frozen=True)
class Processing:
    query_id: str
    status: str


@dataclass(frozen=True)
class AwaitingConsent:
    query_id: str
    plan: ActionPlan


@dataclass(frozen=True)
class Executing:
    """Running ``plan_id``; ``step`` is 1-based."""

    plan_id: str
    step: int
    total: int


@dataclass(frozen=True)
class Error:
    message: str


OrchestratorState = Union[Idle, Processing, AwaitingConsent, Executing, Error]


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserMessage:
    text: str
    id: str = field(default_factory=new_id)
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class AgentMessage:
    text: str
    plan: ActionPlan | None = None
    id: str = field(default_factory=new_id)
    timestamp: float = field(default_factory=time.time)


ConversationEntry = Union[UserMessage, AgentMessage]
