"""Agent memory: profile, experience and action layers behind one facade.

Three layers:

1. **Profile memory** holds user preferences and per-interaction usage
   patterns (how often, at which hours, with which parameter values).
2. **Experience memory** is the ``ExperienceCache`` of reusable plan
   templates.
3. **Action memory** records the action sequences of successful runs in
   a bounded store; the oldest sequence is dropped first.

The ``MemoryManager`` is what the Orchestrator talks to.

Typical usage::

    memory = MemoryManager(settings)
    match = memory.find_matching_template("open spotify")
    memory.record_successful_execution(plan, results)
    print(memory.get_stats().template_count)
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pocket_agent.config.settings import Settings
from pocket_agent.core.experience_cache import ExperienceCache
from pocket_agent.models.actions import Action, new_id
from pocket_agent.models.task import (
    ActionPlan,
    ActionResult,
    MemoryStats,
    TaskTemplate,
    TemplateMatch,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Profile memory
# ---------------------------------------------------------------------------


@dataclass
class UserPattern:
    """Usage statistics for one interaction type.

    Attributes:
        type: Interaction type, e.g. ``"open_app"``.
        occurrence_count: How many times the interaction was recorded.
        hour_histogram: Hour of day (0-23) to occurrence count.
        parameters: Parameter name to the most recent observed values, in
            order.  Each holds at most *max_values*; the oldest is dropped
            first.
        max_values: Capacity of each parameter's value history.
    """

    type: str
    occurrence_count: int = 0
    hour_histogram: dict[int, int] = field(default_factory=dict)
    parameters: dict[str, deque[str]] = field(default_factory=dict)
    max_values: int = 1000

    def record(self, details: Mapping[str, Any], hour: int) -> None:
        self.occurrence_count += 1
        self.hour_histogram[hour] = self.hour_histogram.get(hour, 0) + 1
        for key, value in details.items():
            values = self.parameters.get(key)
            if values is None:
                values = self.parameters[key] = deque(maxlen=max(1, self.max_values))
            values.append(str(value))

    def most_common_hour(self) -> int | None:
        if not self.hour_histogram:
            return None
        return max(self.hour_histogram, key=lambda h: (self.hour_histogram[h], -h))


class ProfileMemory:
    """User preferences and interaction patterns.

    Args:
        max_pattern_values: Values kept per pattern parameter.
    """

    def __init__(self, max_pattern_values: int = 1000) -> None:
        self._max_pattern_values = max_pattern_values
        self._preferences: dict[str, str] = {}
        self._patterns: dict[str, UserPattern] = {}

    def get_preference(self, key: str) -> str | None:
        return self._preferences.get(key)

    def set_preference(self, key: str, value: str) -> None:
        self._preferences[key] = value

    def record_interaction(
        self,
        interaction_type: str,
        details: Mapping[str, Any],
        hour: int | None = None,
    ) -> UserPattern:
        """Count one interaction; *hour* defaults to the current hour."""
        if hour is None:
            hour = datetime.now().hour
        pattern = self._patterns.get(interaction_type)
        if pattern is None:
            pattern = UserPattern(interaction_type, max_values=self._max_pattern_values)
            self._patterns[interaction_type] = pattern
        pattern.record(details, hour)
        return pattern

    def get_pattern(self, interaction_type: str) -> UserPattern | None:
        return self._patterns.get(interaction_type)


# ---------------------------------------------------------------------------
# Action memory
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionSequence:
    """Actions of one run with their results."""

    actions: tuple[Action, ...]
    results: tuple[ActionResult, ...]
    timestamp: float = field(default_factory=time.time)
    id: str = field(default_factory=new_id)


class ActionMemory:
    """Bounded FIFO store of executed action sequences.

    Args:
        max_sequences: Capacity; the oldest sequence is dropped first.
    """

    def __init__(self, max_sequences: int = 1000) -> None:
        self._sequences: deque[ActionSequence] = deque(maxlen=max(1, max_sequences))

    @property
    def sequence_count(self) -> int:
        return len(self._sequences)

    def record_sequence(
        self,
        actions: Sequence[Action],
        results: Sequence[ActionResult],
    ) -> ActionSequence:
        sequence = ActionSequence(actions=tuple(actions), results=tuple(results))
        self._sequences.append(sequence)
        return sequence

    def find_similar_sequence(self, actions: Sequence[Action]) -> ActionSequence | None:
        """Oldest stored sequence with the same action kinds in order."""
        kinds = [a.kind for a in actions]
        for sequence in self._sequences:
            if [a.kind for a in sequence.actions] == kinds:
                return sequence
        return None


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


class MemoryManager:
    """Entry point to the three memory layers.

    Args:
        settings: Supplies capacities and thresholds.
        experience: Optional pre-built experience cache (tests inject one).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        experience: ExperienceCache | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self.profile = ProfileMemory(self._settings.max_pattern_values)
        if experience is None:
            experience = ExperienceCache(self._settings)
        self.experience = experience
        self.actions = ActionMemory(self._settings.max_action_sequences)

    def find_matching_template(self, query_text: str) -> TemplateMatch | None:
        return self.experience.find_match(query_text)

    def record_successful_execution(
        self,
        plan: ActionPlan,
        results: Sequence[ActionResult],
    ) -> TaskTemplate:
        """Learn a template from the run and keep its action sequence."""
        template = self.experience.learn_from_execution(plan, results)
        self.actions.record_sequence(plan.actions, results)
        return template

    def get_user_preference(self, key: str) -> str | None:
        return self.profile.get_preference(key)

    def set_user_preference(self, key: str, value: str) -> None:
        self.profile.set_preference(key, value)

    def record_interaction(self, interaction_type: str, details: Mapping[str, Any]) -> None:
        self.profile.record_interaction(interaction_type, details)

    def get_stats(self) -> MemoryStats:
        return MemoryStats(
            template_count=self.experience.template_count,
            action_sequence_count=self.actions.sequence_count,
            total_executions=self.experience.total_executions,
            average_success_rate=self.experience.average_success_rate,
        )
