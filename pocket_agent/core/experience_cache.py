"""Experience cache: memorised plans that can be reused for similar requests.

After a plan runs successfully its description and actions are stored as
a ``TaskTemplate``.  A later request whose words overlap the template's
pattern strongly enough is answered by adapting the template instead of
planning from scratch.

Matching uses word-set Jaccard similarity (``text_similarity.similarity``)
against each template's normalised pattern:

* ``find_match`` returns the best template scoring at least
  ``template_match_floor`` (0.70).  When several templates share the best
  score, the one inserted first wins.
* ``learn_from_execution`` folds a run into a template whose pattern
  scores above ``template_merge_threshold`` (0.90) against the plan
  description, or inserts a new template.

The store holds at most ``max_templates`` templates.  Inserting past
capacity evicts the least recently used template, where use means insert,
reinforcement or match.

Typical usage::

    cache = ExperienceCache(settings)
    cache.learn_from_execution(plan, results)
    match = cache.find_match("send a message to jane")
    if match is not None and match.confidence >= settings.similarity_threshold:
        ...
"""

from __future__ import annotations

import logging
import re
import time
from collections import OrderedDict
from collections.abc import Sequence

from pocket_agent.config.settings import Settings
from pocket_agent.core.intent_parser import extract_slot_values
from pocket_agent.core.text_similarity import normalize, similarity
from pocket_agent.models.actions import Action, map_text_fields
from pocket_agent.models.task import (
    ActionPlan,
    ActionResult,
    ActionSuccess,
    ParameterSlot,
    ParameterType,
    TaskTemplate,
    TemplateMatch,
)

logger = logging.getLogger(__name__)

# Slot values shorter than this are too ambiguous to templatise.
_MIN_SLOT_VALUE_LENGTH: int = 2

_SLOT_TYPES: dict[str, ParameterType] = {
    "contact": ParameterType.CONTACT,
    "time": ParameterType.TIME,
    "date": ParameterType.DATE,
    "app": ParameterType.APP,
    "app_name": ParameterType.APP,
    "count": ParameterType.NUMBER,
    "number": ParameterType.NUMBER,
}


def slot_type_for(name: str) -> ParameterType:
    """Parameter type implied by a slot name; ``TEXT`` by default."""
    return _SLOT_TYPES.get(name, ParameterType.TEXT)


def success_rate(results: Sequence[ActionResult]) -> float:
    """Fraction of successful results; 0.0 for an empty run."""
    if not results:
        return 0.0
    successes = sum(1 for r in results if isinstance(r, ActionSuccess))
    return successes / len(results)


class ExperienceCache:
    """Bounded, LRU-evicting store of ``TaskTemplate`` objects.

    Templates live in a dict that keeps insertion order (used for tie
    breaking); a separate ordered mapping tracks recency for eviction.

    Args:
        settings: Supplies the capacity and the similarity thresholds.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or Settings()
        self._templates: dict[str, TaskTemplate] = {}
        self._recency: OrderedDict[str, None] = OrderedDict()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def find_match(self, query_text: str) -> TemplateMatch | None:
        """Best template for *query_text*, or ``None`` below the floor.

        The returned confidence is the raw similarity score.
        """
        normalized_query = normalize(query_text)

        best: TaskTemplate | None = None
        best_score = 0.0
        for template in self._templates.values():
            score = similarity(normalized_query, template.normalized_pattern)
            if score > best_score:
                best = template
                best_score = score

        if best is None or best_score < self._settings.template_match_floor:
            return None

        self._touch(best)
        logger.debug(
            "Template %s matched %r with confidence %.2f",
            best.id,
            query_text,
            best_score,
        )
        return TemplateMatch(
            template=best,
            confidence=best_score,
            extracted_parameters=extract_slot_values(query_text, best.parameter_slots),
        )

    def learn_from_execution(
        self,
        plan: ActionPlan,
        results: Sequence[ActionResult],
    ) -> TaskTemplate:
        """Fold a run of *plan* into the store.

        Returns:
            The reinforced or newly inserted template.
        """
        rate = success_rate(results)
        normalized = normalize(plan.description)

        existing = self._find_mergeable(normalized)
        if existing is not None:
            existing.use_count += 1
            existing.success_rate = (
                existing.success_rate * (existing.use_count - 1) + rate
            ) / existing.use_count
            self._touch(existing)
            logger.info(
                "Reinforced template %r (uses=%d, success=%.2f)",
                existing.pattern,
                existing.use_count,
                existing.success_rate,
            )
            return existing

        slots, actions = self._templatize(plan)
        template = TaskTemplate(
            pattern=plan.description,
            normalized_pattern=normalized,
            actions=actions,
            parameter_slots=slots,
            success_rate=rate,
            use_count=1,
        )
        self._insert(template)
        logger.info(
            "Learned template %r with %d slot(s)",
            template.pattern,
            len(slots),
        )
        return template

    def get(self, template_id: str) -> TaskTemplate | None:
        return self._templates.get(template_id)

    def templates(self) -> list[TaskTemplate]:
        """All templates in insertion order."""
        return list(self._templates.values())

    def clear(self) -> None:
        self._templates.clear()
        self._recency.clear()

    def __len__(self) -> int:
        return len(self._templates)

    # -- Statistics -----------------------------------------------------------

    @property
    def template_count(self) -> int:
        return len(self._templates)

    @property
    def total_executions(self) -> int:
        return sum(t.use_count for t in self._templates.values())

    @property
    def average_success_rate(self) -> float:
        if not self._templates:
            return 0.0
        rates = [t.success_rate for t in self._templates.values()]
        return sum(rates) / len(rates)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_mergeable(self, normalized: str) -> TaskTemplate | None:
        threshold = self._settings.template_merge_threshold
        for template in self._templates.values():
            if similarity(template.normalized_pattern, normalized) > threshold:
                return template
        return None

    def _insert(self, template: TaskTemplate) -> None:
        self._templates[template.id] = template
        self._recency[template.id] = None
        while len(self._templates) > max(1, self._settings.max_templates):
            evicted_id, _ = self._recency.popitem(last=False)
            evicted = self._templates.pop(evicted_id)
            logger.debug("Evicted least recently used template %r", evicted.pattern)

    def _touch(self, template: TaskTemplate) -> None:
        template.last_used = time.time()
        self._recency.move_to_end(template.id)

    @staticmethod
    def _templatize(plan: ActionPlan) -> tuple[list[ParameterSlot], list[Action]]:
        """Replace plan parameter values in the actions with ``{slot}``.

        Only parameters whose value actually appears in the actions
        become slots.  Longer values are replaced first so that a value
        contained in another does not split it.  Values are replaced as
        whole words; a selector field is rewritten only when it is
        exactly the value, so fixed labels such as "Start chat" survive
        a short parameter like "at" or "chat".
        """
        candidates = sorted(
            (
                (name, value)
                for name, value in plan.parameters.items()
                if value and len(value) >= _MIN_SLOT_VALUE_LENGTH
            ),
            key=lambda item: len(item[1]),
            reverse=True,
        )

        actions = list(plan.actions)
        slots: list[ParameterSlot] = []
        for name, value in candidates:
            placeholder = "{" + name + "}"
            word = re.compile(r"(?<!\w)" + re.escape(value) + r"(?!\w)")

            def in_text(s: str, w: re.Pattern[str] = word, p: str = placeholder) -> str:
                return w.sub(lambda _: p, s)

            def in_selector(s: str, v: str = value, p: str = placeholder) -> str:
                return p if s == v else s

            rewritten = [map_text_fields(a, in_text, in_selector) for a in actions]
            if rewritten != actions:
                actions = rewritten
                slots.append(ParameterSlot(name=name, type=slot_type_for(name)))
        return slots, actions
