"""Orchestrator: the agent's conversation state machine.

The Orchestrator is the top-level component of Pocket Agent.  It accepts
natural-language queries, reuses a learned template when one matches
closely enough, otherwise asks the ``TaskPlanner`` for a fresh plan, gates
execution behind user consent, runs approved plans action by action
through the ``ActionExecutor`` and rolls back when a non-recoverable
failure stops the run.

State machine::

    Idle -> Processing -> AwaitingConsent -> Executing -> Idle
                       \\-> Idle (text reply)   \\-> Idle (rejected)
                       \\-> Error (failure)

No exception escapes this class: every stage turns its own errors into
an ``AgentResponse`` with status ``FAILED`` and an ``ErrorKind``.

Typical usage::

    orchestrator = Orchestrator(
        planner=planner,
        executor=executor,
        memory=memory,
        classifier=classifier,
        settings=settings,
    )
    response = await orchestrator.process_query("text Mom that I'm late")
    if response.status is ResponseStatus.AWAITING_CONSENT:
        response = await orchestrator.handle_consent(
            ConsentResponse(response.plan.id, ConsentDecision.APPROVED)
        )

Dependencies:
    * ``task_planner`` builds fresh plans, adapts templates and writes
      text replies
    * ``action_executor`` runs single actions on the device
    * ``memory_manager`` owns the experience cache and action memory
    * ``error_classifier`` decides how the run reacts to each failure
    * ``config.settings`` supplies thresholds, timeouts and safety policy
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import replace

from pocket_agent.config.settings import Settings
from pocket_agent.core.action_executor import ActionExecutor
from pocket_agent.core.error_classifier import ErrorClassifier, user_message
from pocket_agent.core.memory_manager import MemoryManager
from pocket_agent.core.task_planner import TaskPlanner
from pocket_agent.models.actions import Action, SafetyLevel
from pocket_agent.models.session import (
    AgentMessage,
    AgentResponse,
    AwaitingConsent,
    ConsentDecision,
    ConsentResponse,
    ConversationEntry,
    Error,
    Executing,
    Idle,
    OrchestratorState,
    Processing,
    Query,
    ResponseStatus,
    UserMessage,
)
from pocket_agent.models.task import (
    ActionFailure,
    ActionPlan,
    ActionResult,
    ErrorKind,
    MemoryStats,
    TaskTemplate,
)

logger = logging.getLogger(__name__)

PLAN_INTRO: str = "I'll help you with that. Here's what I'll do:"
CRITICAL_WARNING: str = "Warning: this includes sensitive actions that cannot be undone."
COMPLETED_TEXT: str = "Completed successfully!"
FAILED_TEXT: str = "Some actions failed"
CANCELLED_TEXT: str = "Action cancelled as requested."

# Confidence reported for freshly built plans and for text replies.
_PLAN_CONFIDENCE: float = 0.9
_TEXT_CONFIDENCE: float = 0.8


def describe_plan(plan: ActionPlan) -> str:
    """Numbered, human-readable preview of *plan*."""
    lines = [PLAN_INTRO, ""]
    lines.extend(
        f"{index}. {action.description}"
        for index, action in enumerate(plan.actions, start=1)
    )
    if plan.safety_level is SafetyLevel.CRITICAL:
        lines.extend(["", CRITICAL_WARNING])
    return "\n".join(lines)


class Orchestrator:
    """Drives one conversation from query to executed plan.

    One query is handled at a time.  The caller awaits each stage; there
    is no mid-execution cancellation once a plan is approved.

    Args:
        planner: Builds and adapts plans; writes text replies.
        executor: Runs single actions.
        memory: Learned templates and recorded action sequences.
        classifier: Maps action failures to continue or abort.
        settings: Thresholds, timeouts and safety policy.
    """

    def __init__(
        self,
        planner: TaskPlanner,
        executor: ActionExecutor,
        memory: MemoryManager,
        classifier: ErrorClassifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._planner = planner
        self._executor = executor
        self._memory = memory
        self._classifier = classifier or ErrorClassifier(self._settings)
        self._state: OrchestratorState = Idle()
        self._history: list[ConversationEntry] = []

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def conversation_history(self) -> list[ConversationEntry]:
        """Copy of the conversation so far, oldest first."""
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    def memory_stats(self) -> MemoryStats:
        return self._memory.get_stats()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process_query(self, text: str) -> AgentResponse:
        """Handle one user query.

        Returns a response whose status is ``AWAITING_CONSENT`` (a plan
        waits for ``handle_consent``), ``COMPLETED`` (text reply, or a
        plan that ran without needing consent), or ``FAILED``.
        """
        query = Query.create(text)
        self._history.append(UserMessage(text=text, id=query.id))
        self._state = Processing(query.id, "Understanding your request...")
        logger.info("Query %s: %r", query.id[:8], text)

        start = time.monotonic()
        executed = False
        try:
            match = self._memory.find_matching_template(text)
            if match is not None and match.confidence >= self._settings.similarity_threshold:
                self._state = Processing(query.id, "Found similar task in memory...")
                response = self._respond_from_template(query, match.template, match.confidence)
            else:
                response, executed = await self._respond_with_new_plan(query)
        except Exception as exc:
            logger.exception("Unexpected error while processing %r", text)
            response = self._failure(query.id, ErrorKind.PLANNING_FAILURE, exc)

        latency_ms = (time.monotonic() - start) * 1000
        response = replace(response, latency_ms=latency_ms)
        self._history.append(AgentMessage(text=response.text, plan=response.plan, id=response.id))

        # A directly executed plan has already returned the state to Idle.
        if not executed:
            self._state = _state_after(query.id, response)

        logger.info(
            "Query %s -> %s in %.0f ms",
            query.id[:8],
            response.status.value,
            latency_ms,
        )
        return response

    async def handle_consent(self, consent: ConsentResponse) -> AgentResponse:
        """Resolve the pending plan with the user's decision.

        Only valid in ``AwaitingConsent`` and only for the pending plan's
        id; anything else fails without side effects.
        """
        state = self._state
        if not isinstance(state, AwaitingConsent):
            logger.warning("Consent received while %s", type(state).__name__)
            return AgentResponse(
                query_id="",
                text="No action pending consent",
                status=ResponseStatus.FAILED,
                error_kind=ErrorKind.NO_PENDING_CONSENT,
            )

        if consent.plan_id != state.plan.id:
            logger.warning(
                "Consent for plan %s but plan %s is pending",
                consent.plan_id[:8],
                state.plan.id[:8],
            )
            return AgentResponse(
                query_id=state.query_id,
                text="Consent does not match the pending plan",
                status=ResponseStatus.FAILED,
                error_kind=ErrorKind.NO_PENDING_CONSENT,
            )

        if consent.decision is ConsentDecision.REJECTED:
            logger.info("Plan %s rejected: %s", state.plan.id[:8], consent.reason or "no reason")
            self._state = Idle()
            response = AgentResponse(
                query_id=state.query_id,
                text=CANCELLED_TEXT,
                status=ResponseStatus.CANCELLED,
                plan=state.plan,
            )
        elif consent.decision is ConsentDecision.MODIFIED:
            modified = consent.modified_plan
            if modified is None or not modified.actions:
                self._state = Idle()
                response = AgentResponse(
                    query_id=state.query_id,
                    text="Modified plan was empty",
                    status=ResponseStatus.FAILED,
                    error_kind=ErrorKind.PLANNING_FAILURE,
                )
            else:
                response = await self._execute_approved_plan(modified, state.query_id)
        else:
            response = await self._execute_approved_plan(state.plan, state.query_id)

        self._history.append(AgentMessage(text=response.text, plan=response.plan, id=response.id))
        return response

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _respond_from_template(
        self,
        query: Query,
        template: TaskTemplate,
        confidence: float,
    ) -> AgentResponse:
        plan = self._planner.adapt_template(template, query)
        logger.info(
            "Reusing template %r (confidence %.2f)",
            template.pattern,
            confidence,
        )
        return AgentResponse(
            query_id=query.id,
            text=describe_plan(plan),
            status=ResponseStatus.AWAITING_CONSENT,
            plan=plan,
            confidence=confidence,
        )

    async def _respond_with_new_plan(self, query: Query) -> tuple[AgentResponse, bool]:
        """Plan *query* from scratch.

        Returns:
            The response and whether the plan was already executed.
        """
        self._state = Processing(query.id, "Planning actions...")
        timeout = self._settings.planning_timeout_seconds
        try:
            plan = await asyncio.wait_for(self._planner.create_plan(query), timeout)
        except asyncio.TimeoutError:
            logger.error("Planning timed out after %.1f s", timeout)
            return self._failure(query.id, ErrorKind.PLANNING_TIMEOUT), False
        except Exception as exc:
            logger.error("Planning failed: %s", exc)
            return self._failure(query.id, ErrorKind.PLANNING_FAILURE, exc), False

        if plan is None:
            return await self._text_response(query), False

        needs_consent = (
            plan.requires_consent
            or plan.safety_level is SafetyLevel.CRITICAL
            or self._settings.always_preview
        )
        if needs_consent:
            return (
                AgentResponse(
                    query_id=query.id,
                    text=describe_plan(plan),
                    status=ResponseStatus.AWAITING_CONSENT,
                    plan=plan,
                    confidence=_PLAN_CONFIDENCE,
                ),
                False,
            )

        logger.info("Plan %s needs no consent, executing directly", plan.id[:8])
        return await self._execute_approved_plan(plan, query.id), True

    async def _text_response(self, query: Query) -> AgentResponse:
        try:
            text = await self._planner.generate_text_response(query)
        except Exception as exc:
            logger.error("Text reply failed: %s", exc)
            return self._failure(query.id, ErrorKind.LANGUAGE_SERVICE_FAILURE, exc)
        return AgentResponse(
            query_id=query.id,
            text=text,
            status=ResponseStatus.COMPLETED,
            confidence=_TEXT_CONFIDENCE,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute_approved_plan(self, plan: ActionPlan, query_id: str) -> AgentResponse:
        """Run *plan* in order, stopping at the first non-recoverable failure."""
        total = len(plan.actions)
        results: list[ActionResult] = []
        success = True
        logger.info("Executing plan %s: %r (%d actions)", plan.id[:8], plan.description, total)

        for step, action in enumerate(plan.actions, start=1):
            self._state = Executing(plan.id, step, total)
            result = await self._executor.execute(action)
            results.append(result)
            if result.success:
                continue

            success = False
            assert isinstance(result, ActionFailure)
            classification = self._classifier.classify(result, action.description)
            logger.warning("Step %d/%d: %s", step, total, classification.description)
            if self._classifier.should_continue(classification):
                continue

            if classification.should_rollback and plan.rollback_actions:
                await self._rollback(plan.rollback_actions)
            break

        if success:
            self._memory.record_successful_execution(plan, results)
            self._memory.record_interaction("plan_executed", {"description": plan.description})

        self._state = Idle()
        logger.info(
            "Plan %s %s after %d of %d actions",
            plan.id[:8],
            "completed" if success else "failed",
            len(results),
            total,
        )
        return AgentResponse(
            query_id=query_id,
            text=COMPLETED_TEXT if success else FAILED_TEXT,
            status=ResponseStatus.COMPLETED if success else ResponseStatus.FAILED,
            plan=plan,
            error_kind=None if success else _first_failure_kind(results),
        )

    async def _rollback(self, actions: Sequence[Action]) -> None:
        """Run every rollback action once; problems are only logged."""
        logger.info("Rolling back with %d action(s)", len(actions))
        for action in actions:
            try:
                result = await self._executor.execute(action)
            except Exception as exc:
                logger.error("Rollback action %s raised: %s", action.kind.value, exc)
                continue
            if not result.success:
                logger.error("Rollback action %s failed: %s", action.kind.value, result.error)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _failure(
        query_id: str,
        kind: ErrorKind,
        exc: BaseException | None = None,
    ) -> AgentResponse:
        text = user_message(kind)
        if exc is not None and str(exc):
            detail = str(exc).splitlines()[0][:80]
            text = f"{text} ({detail})"
        return AgentResponse(
            query_id=query_id,
            text=text,
            status=ResponseStatus.FAILED,
            error_kind=kind,
        )


def _first_failure_kind(results: Sequence[ActionResult]) -> ErrorKind | None:
    for result in results:
        if isinstance(result, ActionFailure):
            return result.kind
    return None


def _state_after(query_id: str, response: AgentResponse) -> OrchestratorState:
    if response.status is ResponseStatus.AWAITING_CONSENT and response.plan is not None:
        return AwaitingConsent(query_id, response.plan)
    if response.status is ResponseStatus.FAILED:
        return Error(response.text)
    return Idle()
